import base64

import pytest
from cryptography.hazmat.decrepit.ciphers.algorithms import TripleDES
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers import Cipher, modes

from rki_cmac import cmac
from rki_kdf import derive_cmac_keys, derive_variant_keys, triple_length_key

KBPK = bytes.fromhex("89E88CF7931444F334BD7547FC3F380C")
IPEK = bytes.fromhex("6AC292FAA1315B4D858AB3A3D7D5933A")
PASSPHRASE = "test-passphrase"
MAC_LEN = {"A": 4, "B": 8, "D": 8}


def _cbc_encrypt(key, iv, data):
    encryptor = Cipher(TripleDES(key), modes.CBC(iv)).encryptor()
    return encryptor.update(data) + encryptor.finalize()


def build_key_data(key, pad_to=24):
    """Bit-length prefix + key + zero padding to a whole number of blocks."""
    data = (len(key) * 8).to_bytes(2, "big") + key + bytes(pad_to - len(key))
    return data + bytes(-len(data) % 8)


def wrap_key_block(kbpk, key, version="A", usage="B1TX00N0000", pad_to=24):
    """Build a TR-31 key block the way a key injection host would."""
    key_data = build_key_data(key, pad_to)
    mac_len = MAC_LEN[version]
    total = 16 + len(key_data) * 2 + mac_len * 2
    header = f"{version}{total:04d}{usage}".encode("ascii")
    assert len(header) == 16

    if version == "A":
        kbek, kbmk = derive_variant_keys(triple_length_key(kbpk))
        encrypted = _cbc_encrypt(kbek, header[:8], key_data)
        mac = _cbc_encrypt(kbmk, bytes(8), header + encrypted)[-8:][:4]
    else:
        kbek, kbmk = derive_cmac_keys(triple_length_key(kbpk))
        mac = cmac(kbmk, header + key_data)
        encrypted = _cbc_encrypt(kbek, mac, key_data)

    return header.decode("ascii") + encrypted.hex().upper() + mac.hex().upper()


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_key):
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.BestAvailableEncryption(PASSPHRASE.encode("utf-8")),
    )


@pytest.fixture(scope="session")
def unencrypted_pem(rsa_key):
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture
def wrap_tmk(rsa_key):
    def _wrap(tmk: bytes, algorithm=None, fmt="base64"):
        algorithm = algorithm or hashes.SHA256()
        ciphertext = rsa_key.public_key().encrypt(
            tmk,
            padding.OAEP(mgf=padding.MGF1(algorithm=algorithm), algorithm=algorithm, label=None),
        )
        if fmt == "hex":
            return ciphertext.hex()
        return base64.b64encode(ciphertext).decode("ascii")
    return _wrap

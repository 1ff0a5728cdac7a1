"""
TMK Unwrap

Decrypts an RSA-wrapped Terminal Master Key (TMK) and returns it as a hex
string starting with the default string-to-key prefix 00008000.

Decryption order:
    1. RSA-OAEP with SHA-256 (OAEP and MGF1 hash)
    2. If the native primitive cannot do SHA-256 OAEP, the external decryptor
       (openssl pkeyutl by default)
    3. RSA-OAEP with SHA-1

Dependencies:
    pip install cryptography
"""
import base64
import binascii
import logging
import os
import subprocess
import tempfile

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from rki_errors import AsymmetricDecryptError, EncodingError, InputFormatError, KeyLoadError

logger = logging.getLogger(__name__)

DEFAULT_S2K_PREFIX = "00008000"
FORMATS = ("base64", "hex")
OPENSSL_BINARY = "openssl"
OPENSSL_TIMEOUT_SECONDS = 30


def pad_base64(s):
    return s + '=' * (-len(s) % 4)


def decode_wrapped_tmk(encrypted_tmk: str, fmt: str = "base64") -> bytes:
    if fmt not in FORMATS:
        raise InputFormatError(f"format must be 'base64' or 'hex', got {fmt!r}")
    try:
        if fmt == "hex":
            return binascii.unhexlify(encrypted_tmk)
        return base64.b64decode(pad_base64(encrypted_tmk), validate=True)
    except (binascii.Error, ValueError) as e:
        raise EncodingError(f"Failed to decode {fmt} TMK: {e}") from e


def load_private_key(private_key_pem: bytes, passphrase: str):
    password = passphrase.encode('utf-8') if passphrase else None
    try:
        try:
            private_key = serialization.load_pem_private_key(private_key_pem, password=password)
        except TypeError:
            # Unencrypted key given together with a passphrase
            if password is None:
                raise
            private_key = serialization.load_pem_private_key(private_key_pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyLoadError(f"Failed to load the private key: {e}") from e
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise KeyLoadError("Private key is not an RSA key")
    return private_key


def oaep_decrypt(private_key, ciphertext: bytes, algorithm) -> bytes:
    return private_key.decrypt(
        ciphertext,
        padding.OAEP(
            mgf=padding.MGF1(algorithm=algorithm),
            algorithm=algorithm,
            label=None
        )
    )


def _write_private(path, data):
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, 'wb') as f:
        f.write(data)


def openssl_pkeyutl_decrypt(ciphertext: bytes, private_key_pem: bytes, passphrase: str) -> bytes:
    """Decrypt with `openssl pkeyutl` using OAEP SHA-256 / MGF1 SHA-256.

    Key and ciphertext are written to a private temporary directory that is
    removed on every exit path.
    """
    with tempfile.TemporaryDirectory(prefix="rki_openssl_") as workdir:
        key_path = os.path.join(workdir, "key.pem")
        data_path = os.path.join(workdir, "tmk.bin")
        _write_private(key_path, private_key_pem)
        _write_private(data_path, ciphertext)

        command = [
            OPENSSL_BINARY, "pkeyutl", "-decrypt",
            "-inkey", key_path,
            "-passin", "stdin",
            "-pkeyopt", "rsa_padding_mode:oaep",
            "-pkeyopt", "rsa_oaep_md:sha256",
            "-pkeyopt", "rsa_mgf1_md:sha256",
            "-in", data_path,
        ]
        try:
            proc = subprocess.run(
                command,
                input=(passphrase + "\n").encode('utf-8'),
                capture_output=True,
                timeout=OPENSSL_TIMEOUT_SECONDS,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise AsymmetricDecryptError(f"openssl could not be run: {e}") from e

    if proc.returncode != 0 or not proc.stdout:
        raise AsymmetricDecryptError(f"openssl pkeyutl failed with exit code {proc.returncode}")
    return proc.stdout


def decrypt_tmk_bytes(private_key, ciphertext: bytes, private_key_pem: bytes, passphrase: str,
                      external_decryptor=openssl_pkeyutl_decrypt) -> bytes:
    try:
        return oaep_decrypt(private_key, ciphertext, hashes.SHA256())
    except UnsupportedAlgorithm as e:
        logger.debug("Native OAEP SHA-256 unavailable: %s", e)
        if external_decryptor is not None:
            try:
                return external_decryptor(ciphertext, private_key_pem, passphrase)
            except AsymmetricDecryptError as ext_error:
                logger.debug("External OAEP SHA-256 decryption failed: %s", ext_error)
    except ValueError:
        logger.debug("OAEP SHA-256 decryption failed, retrying with SHA-1")

    try:
        return oaep_decrypt(private_key, ciphertext, hashes.SHA1())
    except (ValueError, UnsupportedAlgorithm) as e:
        raise AsymmetricDecryptError("TMK decryption failed (both SHA-256 and SHA-1)") from e


def decrypt_tmk(private_key_pem: bytes, passphrase: str, encrypted_tmk: str, fmt: str = "base64",
                external_decryptor=openssl_pkeyutl_decrypt) -> str:
    """Return the decrypted TMK as a lowercase hex string.

    For hex input the default string-to-key prefix is added when the
    decrypted value does not already start with it.
    """
    ciphertext = decode_wrapped_tmk(encrypted_tmk, fmt)
    private_key = load_private_key(private_key_pem, passphrase)
    tmk = decrypt_tmk_bytes(private_key, ciphertext, private_key_pem, passphrase, external_decryptor)

    tmk_hex = tmk.hex()
    if fmt == "hex" and not tmk_hex.startswith(DEFAULT_S2K_PREFIX):
        tmk_hex = DEFAULT_S2K_PREFIX + tmk_hex
    return tmk_hex

"""
TR-31 Key Block Decoder

Unwraps a TR-31 key block (versions A, B and D, triple-DES) with a Key Block
Protecting Key and reports whether the block's MAC could be verified.

Key block layout (text):
    <16 char header><hex encrypted key data><hex MAC>

The MAC is 4 bytes for version A and 8 bytes for versions B and D.
Only decoding is supported; optional header blocks are not parsed.

Dependencies:
    pip install cryptography
"""
import binascii
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from cryptography.hazmat.decrepit.ciphers.algorithms import TripleDES
from cryptography.hazmat.primitives.ciphers import Cipher, modes

from rki_cmac import BLOCK_SIZE, cmac
from rki_errors import KeyBlockDecryptionError, KeyBlockFormatError
from rki_kdf import derive_keys, triple_length_key

logger = logging.getLogger(__name__)

HEADER_LEN = 16
# Minimum encrypted key data, in hex characters (one 8-byte block)
MIN_PAYLOAD_HEX_LEN = 16


@dataclass(frozen=True)
class KeyBlockMaterial:
    version: str
    header: bytes
    encrypted_key: bytes
    mac: bytes


@dataclass(frozen=True)
class KeyBlockResult:
    plain_key: bytes
    version: str
    mac_verified: Optional[bool]  # None: not applicable for this version

    @property
    def ipek(self) -> str:
        return self.plain_key.hex()


class KeyBlockVersion:
    """Behaviour that differs by key block version."""

    version = None
    mac_len = 8

    def min_length(self) -> int:
        return HEADER_LEN + MIN_PAYLOAD_HEX_LEN + self.mac_len * 2

    def derive_keys(self, kbpk):
        return derive_keys(kbpk, self.version)

    def select_iv(self, block: KeyBlockMaterial) -> bytes:
        raise NotImplementedError

    def verify_mac(self, block: KeyBlockMaterial, kbmk: bytes, decrypted: bytes) -> Optional[bool]:
        raise NotImplementedError


class VersionA(KeyBlockVersion):
    """Variant key derivation, header IV, legacy 4-byte CBC-MAC."""

    version = "A"
    mac_len = 4

    def select_iv(self, block):
        return block.header[:BLOCK_SIZE]

    def verify_mac(self, block, kbmk, decrypted):
        expected = legacy_cbc_mac(kbmk, block.header + block.encrypted_key)
        return hmac.compare_digest(expected, block.mac)


class VersionB(KeyBlockVersion):
    """CMAC key derivation, MAC used as IV, CMAC over header + clear key data."""

    version = "B"

    def select_iv(self, block):
        return block.mac[:BLOCK_SIZE]

    def verify_mac(self, block, kbmk, decrypted):
        expected = cmac(kbmk, block.header + decrypted)
        return hmac.compare_digest(expected, block.mac)


class VersionD(VersionB):
    """Same unwrap as version B; the MAC is not verified."""

    version = "D"

    def verify_mac(self, block, kbmk, decrypted):
        return None


VERSIONS = {v.version: v for v in (VersionA(), VersionB(), VersionD())}


def legacy_cbc_mac(kbmk: bytes, data: bytes) -> bytes:
    """Version A MAC: zero-padded CBC encryption (zero IV), last block, first 4 bytes."""
    if len(data) % BLOCK_SIZE:
        data = data + bytes(BLOCK_SIZE - len(data) % BLOCK_SIZE)
    encryptor = Cipher(TripleDES(kbmk), modes.CBC(bytes(BLOCK_SIZE))).encryptor()
    result = encryptor.update(data) + encryptor.finalize()
    return result[-BLOCK_SIZE:][:VersionA.mac_len]


def _unhex(text, what):
    try:
        return binascii.unhexlify(text)
    except (binascii.Error, ValueError) as e:
        raise KeyBlockFormatError(f"Invalid hex in key block {what}") from e


def parse_key_block(key_block: str) -> KeyBlockMaterial:
    if not key_block:
        raise KeyBlockFormatError("Key block is empty")
    handler = VERSIONS.get(key_block[0])
    if handler is None:
        raise KeyBlockFormatError(f"Unsupported key block version: {key_block[0]!r}")
    if len(key_block) < handler.min_length():
        raise KeyBlockFormatError(
            f"Key block too short for version {handler.version}: "
            f"{len(key_block)} < {handler.min_length()}"
        )

    try:
        header = key_block[:HEADER_LEN].encode("ascii")
    except UnicodeEncodeError as e:
        raise KeyBlockFormatError("Key block header is not ASCII") from e
    mac_hex_len = handler.mac_len * 2
    encrypted_key = _unhex(key_block[HEADER_LEN:len(key_block) - mac_hex_len], "key data")
    mac = _unhex(key_block[len(key_block) - mac_hex_len:], "MAC")

    return KeyBlockMaterial(
        version=handler.version,
        header=header,
        encrypted_key=encrypted_key,
        mac=mac,
    )


def _decrypt(kbek, iv, data):
    decryptor = Cipher(TripleDES(kbek), modes.CBC(iv)).decryptor()
    return decryptor.update(data) + decryptor.finalize()


def extract_plain_key(decrypted: bytes) -> bytes:
    """Strip the 2-byte big-endian bit-length prefix and the padding."""
    key_bits = int.from_bytes(decrypted[:2], "big")
    return decrypted[2:2 + key_bits // 8]


def decrypt_key_block(key_block: str, kbpk: bytes) -> KeyBlockResult:
    """Decrypt a TR-31 key block.

    Raises KeyBlockFormatError for malformed input and KeyBlockDecryptionError
    when the symmetric unwrap fails. A MAC mismatch is returned as
    mac_verified=False.
    """
    if not kbpk:
        raise KeyBlockFormatError("KBPK is empty")
    block = parse_key_block(key_block)
    handler = VERSIONS[block.version]

    try:
        kbek, kbmk = handler.derive_keys(triple_length_key(kbpk))
        decrypted = _decrypt(kbek, handler.select_iv(block), block.encrypted_key)
    except ValueError as e:
        raise KeyBlockDecryptionError(f"Key block decryption failed: {e}") from e

    plain_key = extract_plain_key(decrypted)
    mac_verified = handler.verify_mac(block, kbmk, decrypted)
    if mac_verified is False:
        logger.warning("Key block MAC verification failed (version %s)", block.version)

    return KeyBlockResult(plain_key=plain_key, version=block.version, mac_verified=mac_verified)

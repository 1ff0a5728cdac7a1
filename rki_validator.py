"""
RKI Encrypted Parameters Validator

Public entry points for recovering an IPEK from RKI parameters. Every
function here returns None on failure and logs the reason; no partial
results are returned.
"""
import binascii
import logging
from typing import Optional

from rki_errors import RKIError, TmkFormatError
from rki_tmk import DEFAULT_S2K_PREFIX, decrypt_tmk, openssl_pkeyutl_decrypt
from rki_tr31 import KeyBlockResult, decrypt_key_block

logger = logging.getLogger(__name__)


def get_decrypted_tmk(private_key_pem: bytes, passphrase: str, encrypted_tmk: str,
                      fmt: str = "base64", external_decryptor=openssl_pkeyutl_decrypt) -> Optional[str]:
    try:
        return decrypt_tmk(private_key_pem, passphrase, encrypted_tmk, fmt,
                           external_decryptor=external_decryptor)
    except RKIError as e:
        logger.error("%s", e)
        return None


def kbpk_from_tmk(tmk_str: str) -> bytes:
    """Strip the 00008000 prefix and return the KBPK bytes."""
    if not tmk_str.startswith(DEFAULT_S2K_PREFIX):
        raise TmkFormatError(f"TMK does not start with {DEFAULT_S2K_PREFIX}")
    try:
        return binascii.unhexlify(tmk_str[len(DEFAULT_S2K_PREFIX):])
    except (binascii.Error, ValueError) as e:
        raise TmkFormatError(f"TMK is not valid hex: {e}") from e


def get_ipek_from_tmk(tmk_str: str, key_block: str) -> Optional[KeyBlockResult]:
    """Decrypt key_block with the KBPK carried in tmk_str.

    A MAC mismatch still returns a result, with mac_verified=False.
    """
    try:
        return decrypt_key_block(key_block, kbpk_from_tmk(tmk_str))
    except RKIError as e:
        logger.error("%s", e)
        return None


def get_ipek_with_validation(private_key_pem: bytes, passphrase: str, encrypted_tmk: str,
                             key_block: str, fmt: str = "base64",
                             external_decryptor=openssl_pkeyutl_decrypt) -> Optional[str]:
    tmk_str = get_decrypted_tmk(private_key_pem, passphrase, encrypted_tmk, fmt, external_decryptor)
    if tmk_str is None:
        return None
    result = get_ipek_from_tmk(tmk_str, key_block)
    return result.ipek if result is not None else None

"""
TR-31 Key Derivation

Derives the Key Block Encryption Key (KBEK) and Key Block MAC Key (KBMK)
from a Key Block Protecting Key (KBPK).

- Version A: KBPK XOR 0x45 / 0x4D (variant method)
- Versions B and D: triple-DES CMAC used as a counter-mode KDF

Dependencies:
    pip install cryptography
"""
from rki_cmac import cmac

TRIPLE_KEY_LENGTH = 24

# Variant constants for version A ('E' and 'M')
KBEK_VARIANT = 0x45
KBMK_VARIANT = 0x4D

# CMAC-KDF inputs: counter, 00, key usage (00 enc / 01 mac), 00 00 00 00, length 0x80
KDF_ENC_INPUTS = (
    bytes([0x01, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x80]),
    bytes([0x02, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x80]),
)
KDF_MAC_INPUTS = (
    bytes([0x01, 0x00, 0x01, 0x00, 0x00, 0x00, 0x00, 0x80]),
    bytes([0x02, 0x00, 0x01, 0x00, 0x00, 0x00, 0x00, 0x80]),
)


def triple_length_key(key: bytes) -> bytes:
    """Return key[0:16] + key[0:8].

    Bytes 17-24 of a 24-byte input are dropped on purpose; counterpart
    systems expand keys exactly this way.
    """
    return key[:16] + key[:8]


def _variant(key, value):
    return bytes(b ^ value for b in key)


def derive_variant_keys(kbpk: bytes):
    kbek = triple_length_key(_variant(kbpk, KBEK_VARIANT))
    kbmk = triple_length_key(_variant(kbpk, KBMK_VARIANT))
    return kbek, kbmk


def derive_cmac_keys(kbpk: bytes):
    kbek = triple_length_key(b"".join(cmac(kbpk, data) for data in KDF_ENC_INPUTS))
    kbmk = triple_length_key(b"".join(cmac(kbpk, data) for data in KDF_MAC_INPUTS))
    return kbek, kbmk


_DERIVERS = {
    "A": derive_variant_keys,
    "B": derive_cmac_keys,
    "D": derive_cmac_keys,
}


def derive_keys(kbpk: bytes, version: str):
    """Return (KBEK, KBMK) for the given key block version."""
    try:
        deriver = _DERIVERS[version]
    except KeyError:
        raise ValueError(f"Unsupported key block version: {version!r}") from None
    return deriver(kbpk)

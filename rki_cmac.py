"""
Triple-DES CMAC

CMAC (NIST SP 800-38B) over the 8-byte DES-EDE3 block cipher. Used as the
key-derivation function for TR-31 versions B/D and as the version B MAC.

Dependencies:
    pip install cryptography
"""
from cryptography.hazmat.decrepit.ciphers.algorithms import TripleDES
from cryptography.hazmat.primitives.ciphers import Cipher, modes

BLOCK_SIZE = 8
RB = 0x1B  # Rb for 64-bit blocks


def xor_bytes(a, b):
    if len(a) != len(b):
        raise ValueError("XOR requires equal-length inputs")
    return bytes(x ^ y for x, y in zip(a, b))


def tdes_encrypt_block(key: bytes, block: bytes) -> bytes:
    """Encrypt one 8-byte block with DES-EDE3 in ECB mode."""
    encryptor = Cipher(TripleDES(key), modes.ECB()).encryptor()
    return encryptor.update(block) + encryptor.finalize()


def _left_shift_1(block):
    out = bytearray(len(block))
    carry = 0
    for i in range(len(block) - 1, -1, -1):
        out[i] = ((block[i] << 1) & 0xFF) | carry
        carry = (block[i] >> 7) & 1
    return bytes(out)


def _dbl(block):
    shifted = _left_shift_1(block)
    if block[0] & 0x80:
        shifted = shifted[:-1] + bytes([shifted[-1] ^ RB])
    return shifted


def generate_subkeys(key: bytes):
    """Return (K1, K2) derived from L = E_K(0^64)."""
    l_block = tdes_encrypt_block(key, bytes(BLOCK_SIZE))
    k1 = _dbl(l_block)
    k2 = _dbl(k1)
    return k1, k2


def cmac(key: bytes, message: bytes) -> bytes:
    """Compute the 8-byte triple-DES CMAC of message under a 24-byte key.

    Full final block is XORed with K1; a short (or empty) final block is
    padded with 0x80 then zeros and XORed with K2.
    """
    k1, k2 = generate_subkeys(key)

    n_blocks = max(1, -(-len(message) // BLOCK_SIZE))
    last_complete = len(message) > 0 and len(message) % BLOCK_SIZE == 0

    last = message[(n_blocks - 1) * BLOCK_SIZE:]
    if last_complete:
        last = xor_bytes(last, k1)
    else:
        padded = last + b"\x80" + bytes(BLOCK_SIZE - len(last) - 1)
        last = xor_bytes(padded, k2)

    x = bytes(BLOCK_SIZE)
    for i in range(n_blocks - 1):
        block = message[i * BLOCK_SIZE:(i + 1) * BLOCK_SIZE]
        x = tdes_encrypt_block(key, xor_bytes(x, block))

    return tdes_encrypt_block(key, xor_bytes(x, last))

"""
RKI Unwrap Errors

Exception kinds raised inside the TMK / TR-31 unwrapping pipeline. The public
functions in rki_validator catch RKIError and turn it into a None result.

A MAC mismatch is not an error: it is reported as mac_verified=False.
"""


class RKIError(Exception):
    """Base class for every unwrap failure."""


class InputFormatError(RKIError):
    """Unknown wrapped-TMK encoding format (not base64 or hex)."""


class EncodingError(RKIError):
    """Wrapped TMK text is not valid base64 / hex."""


class KeyLoadError(RKIError):
    """RSA private key or its passphrase could not be used."""


class AsymmetricDecryptError(RKIError):
    """OAEP decryption failed with every configured hash."""


class TmkFormatError(RKIError):
    """Decrypted TMK does not carry the default string-to-key prefix."""


class KeyBlockFormatError(RKIError):
    """TR-31 key block text is malformed (version tag, length, hex)."""


class KeyBlockDecryptionError(RKIError):
    """Symmetric unwrap of the key block failed."""

"""
RKI IPEK Extractor

This script decrypts an RSA-wrapped TMK with your private key, then uses it to
unwrap a TR-31 key block (versions A, B, D) and prints the recovered IPEK and
the MAC verification result.

Usage:
    python rki_extract_ipek.py <rsaPrivateKeyPemPath> <passphrase> <encryptedTMK> <tr31String> [format]

    format: 'base64' (default) or 'hex'

Dependencies:
    pip install cryptography
"""
import argparse
import logging
import sys

from rki_tmk import FORMATS
from rki_validator import get_decrypted_tmk, get_ipek_from_tmk

logger = logging.getLogger(__name__)

KEY_BLOCK_TAG = "R"
VERBOSE_FLAGS = ("-v", "--verbose")
HELP_FLAGS = ("-h", "--help")
POSITIONAL_COUNTS = (4, 5)


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        self.print_usage(sys.stderr)
        print(f"Error: {message}", file=sys.stderr)
        sys.exit(1)


def build_parser():
    parser = _ArgumentParser(
        description="RKI IPEK Extractor - TMK + TR-31 key block unwrap",
        epilog="-v, --verbose  show debug logging",
        add_help=False,
    )
    parser.add_argument('private_key', help='Path to the RSA private key (PEM)')
    parser.add_argument('passphrase', help='Passphrase of the private key')
    parser.add_argument('encrypted_tmk', help='RSA-OAEP encrypted TMK (base64 or hex)')
    parser.add_argument('tr31', help='TR-31 key block, optionally prefixed with R')
    parser.add_argument('format', nargs='?', default='base64', help="'base64' (default) or 'hex'")
    return parser


def split_flags(argv):
    """Separate -v/-h from the positional values.

    Positionals are read literally, so a passphrase may start with "-".
    Flags are only taken out when that leaves 4 or 5 positionals.
    """
    rest = [arg for arg in argv if arg not in VERBOSE_FLAGS + HELP_FLAGS]
    if len(argv) in POSITIONAL_COUNTS and len(rest) not in POSITIONAL_COUNTS:
        return False, False, list(argv)
    verbose = any(arg in VERBOSE_FLAGS for arg in argv)
    show_help = any(arg in HELP_FLAGS for arg in argv)
    return verbose, show_help, rest


def strip_key_block_tag(key_block: str) -> str:
    if key_block.startswith(KEY_BLOCK_TAG):
        return key_block[len(KEY_BLOCK_TAG):]
    return key_block


def format_mac_result(result) -> str:
    if result.mac_verified is None:
        return f"MAC Verification: Not applicable (Version {result.version})"
    status = "PASSED" if result.mac_verified else "FAILED"
    return f"MAC Verification: {status} (Version {result.version})"


def main(argv=None):
    parser = build_parser()
    argv = sys.argv[1:] if argv is None else list(argv)
    verbose, show_help, positionals = split_flags(argv)
    if show_help:
        parser.print_help()
        return 0
    args = parser.parse_args(["--", *positionals])

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.format not in FORMATS:
        print("Error: format must be 'base64' or 'hex'.")
        return 1

    try:
        with open(args.private_key, 'rb') as f:
            private_key_pem = f.read()
    except OSError as e:
        logger.error("Cannot read %s: %s", args.private_key, e)
        print("Failed to read the private key PEM file.")
        return 1

    tmk_str = get_decrypted_tmk(private_key_pem, args.passphrase, args.encrypted_tmk, args.format)
    if tmk_str is None:
        print("TMK decryption failed.")
        return 1

    print("=== RESULT ===")
    print(f"Decrypted TMK: {tmk_str} (leading 00008000 indicates default string-to-key parameters)")

    result = get_ipek_from_tmk(tmk_str, strip_key_block_tag(args.tr31))
    if result is None:
        print("IPEK extraction failed.")
        return 1

    print(f"Valid IPEK: {result.ipek}")
    print(format_mac_result(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())

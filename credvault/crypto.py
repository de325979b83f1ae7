"""
Cryptographic primitives for one-time password generation.

Secrets are stored as Base32 text (RFC 4648) and turned into HMAC keys here.
"""

import logging
import struct

from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.backends import default_backend

from credvault.errors import DecodeError
from . import config

logger = logging.getLogger(__name__)


class CryptoManager:
    """Handles the Base32 codec and the HMAC-SHA1 primitive."""

    # Constants
    COUNTER_SIZE = 8  # bytes, big-endian moving factor
    DIGEST_SIZE = 20  # bytes, SHA-1 output

    def __init__(self):
        """Initialize the crypto manager."""
        self.backend = default_backend()
        self._alphabet = {char: index for index, char in enumerate(config.BASE32_ALPHABET)}

    def decode_base32(self, secret: str) -> bytes:
        """
        Decode a Base32 secret into raw key bytes.

        Decoding is case-insensitive and stops at the first '=' pad
        character. Leftover bits that do not complete a byte are dropped.

        Args:
            secret: Base32 encoded secret

        Returns:
            Decoded key bytes

        Raises:
            DecodeError: If a character is outside the Base32 alphabet
        """
        output = bytearray()
        buffer = 0
        bits = 0

        for position, char in enumerate(secret):
            char = char.upper()
            if char == '=':
                break
            value = self._alphabet.get(char)
            if value is None:
                raise DecodeError(char, position)
            buffer = ((buffer << 5) | value) & 0xFFF
            bits += 5
            if bits >= 8:
                bits -= 8
                output.append((buffer >> bits) & 0xFF)

        return bytes(output)

    def hmac_sha1(self, key: bytes, message: bytes) -> bytes:
        """
        Compute HMAC-SHA1.

        Args:
            key: HMAC key
            message: Message to authenticate

        Returns:
            20-byte digest
        """
        mac = hmac.HMAC(key, hashes.SHA1(), backend=self.backend)
        mac.update(message)
        return mac.finalize()

    def counter_bytes(self, counter: int) -> bytes:
        """Pack a moving factor into the 8-byte big-endian HOTP counter."""
        return struct.pack('>Q', counter)

    def truncate(self, digest: bytes, digits: int = config.TOTP_DIGITS) -> str:
        """
        Apply RFC 4226 dynamic truncation to a digest.

        Args:
            digest: 20-byte HMAC-SHA1 digest
            digits: Number of decimal digits to return

        Returns:
            Zero-padded decimal code
        """
        offset = digest[self.DIGEST_SIZE - 1] & 0x0F
        value = struct.unpack('>I', digest[offset:offset + 4])[0] & 0x7FFFFFFF
        return str(value % (10 ** digits)).zfill(digits)

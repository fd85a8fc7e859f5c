"""RFC 4226 HOTP (HMAC-based One-Time Password) implementation."""

from enum import Enum
from typing import Type

from cryptography.hazmat.primitives import hashes, hmac

from twofactor.errors import DecodeError


COUNTER_SIZE = 8


class HashAlgorithm(Enum):
    """
    Hash functions usable in the HMAC construction.

    The member value is the tag written by the state codec.
    """

    SHA1 = 0
    SHA256 = 1
    SHA512 = 2

    @property
    def hash_class(self) -> Type[hashes.HashAlgorithm]:
        return _HASH_CLASSES[self]

    @property
    def digest_size(self) -> int:
        """Size in bytes of the digest, which is also the key size."""
        return self.hash_class.digest_size

    @classmethod
    def from_tag(cls, tag: int) -> "HashAlgorithm":
        """
        Look up an algorithm by its wire tag.

        Raises:
            DecodeError: If the tag is not 0, 1 or 2.
        """
        try:
            return cls(tag)
        except ValueError as e:
            raise DecodeError(f"Unknown hash function type: {tag}") from e

    @classmethod
    def from_name(cls, name: str) -> "HashAlgorithm":
        """
        Look up an algorithm by name, e.g. "sha256" or "SHA-256".

        Raises:
            ValueError: If the name does not denote a supported algorithm.
        """
        normalized = name.strip().upper().replace("-", "")
        try:
            return cls[normalized]
        except KeyError as e:
            raise ValueError(
                f"Invalid algorithm {name!r}, must be SHA1, SHA256 or SHA512"
            ) from e


_HASH_CLASSES = {
    HashAlgorithm.SHA1: hashes.SHA1,
    HashAlgorithm.SHA256: hashes.SHA256,
    HashAlgorithm.SHA512: hashes.SHA512,
}


def compute_code(
    key: bytes, algorithm: HashAlgorithm, counter_bytes: bytes, digits: int
) -> str:
    """
    Compute an HOTP code for an already encoded counter.

    Args:
        key: Raw secret key.
        algorithm: Hash function used in the HMAC.
        counter_bytes: The 8-byte big-endian counter.
        digits: Number of digits in the output code.

    Returns:
        A zero-padded code string of exactly ``digits`` characters.

    Raises:
        ValueError: If the counter is not 8 bytes or digits is not positive.
    """
    if len(counter_bytes) != COUNTER_SIZE:
        raise ValueError(
            f"Counter must be {COUNTER_SIZE} bytes, got {len(counter_bytes)}"
        )
    if digits < 1:
        raise ValueError(f"Digits must be positive, got {digits}")

    mac = hmac.HMAC(key, algorithm.hash_class())
    mac.update(counter_bytes)
    digest = mac.finalize()

    # Dynamic truncation (RFC 4226, Section 5.4)
    offset = digest[-1] & 0x0F
    binary = (
        ((digest[offset] & 0x7F) << 24)
        | ((digest[offset + 1] & 0xFF) << 16)
        | ((digest[offset + 2] & 0xFF) << 8)
        | (digest[offset + 3] & 0xFF)
    )

    code = binary % (10**digits)
    return f"{code:0{digits}d}"


def generate_hotp(
    key: bytes,
    counter: int,
    digits: int = 6,
    algorithm: HashAlgorithm = HashAlgorithm.SHA1,
) -> str:
    """
    Generate an HOTP code using RFC 4226.

    Args:
        key: Raw secret key.
        counter: The moving counter value.
        digits: Number of digits in the output code (default: 6).
        algorithm: Hash function (default: SHA1).

    Returns:
        A zero-padded HOTP code string.
    """
    return compute_code(
        key, algorithm, counter.to_bytes(COUNTER_SIZE, byteorder="big"), digits
    )

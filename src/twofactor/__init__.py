"""Time-based one-time passwords with drift tolerance, lockout and compact persistence."""

from twofactor.errors import (
    DecodeError,
    EntropyError,
    InvalidInputError,
    LockedError,
    MismatchError,
    TwoFactorError,
)
from twofactor.hotp import HashAlgorithm, compute_code, generate_hotp
from twofactor.totp import TOTP

__all__ = [
    "DecodeError",
    "EntropyError",
    "HashAlgorithm",
    "InvalidInputError",
    "LockedError",
    "MismatchError",
    "TOTP",
    "TwoFactorError",
    "compute_code",
    "generate_hotp",
]

__version__ = "0.1.0"

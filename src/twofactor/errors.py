"""Exception types raised by twofactor."""


class TwoFactorError(Exception):
    """Base class for every error raised by this package."""


class EntropyError(TwoFactorError):
    """The secure random source could not supply a key."""


class InvalidInputError(TwoFactorError, ValueError):
    """The user supplied token is empty."""


class LockedError(TwoFactorError):
    """Verification is locked because of too many failed attempts."""


class MismatchError(TwoFactorError):
    """The user supplied token does not match any accepted code."""


class DecodeError(TwoFactorError, ValueError):
    """A persisted credential buffer is malformed."""

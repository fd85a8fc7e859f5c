"""TOTP credential: code generation, verification and persistence."""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography.hazmat.primitives import constant_time

from twofactor import codec
from twofactor.counter import counter_bytes, step_counter, unix_time
from twofactor.errors import (
    DecodeError,
    EntropyError,
    InvalidInputError,
    LockedError,
    MismatchError,
)
from twofactor.hotp import COUNTER_SIZE, HashAlgorithm, compute_code
from twofactor.provisioning import build_label, build_uri


logger = logging.getLogger(__name__)

DEFAULT_STEP_SIZE = 30
FALLBACK_DIGITS = 8
VALID_DIGITS = (6, 7, 8)
VALID_OFFSETS = (-1, 0, 1)
MAX_FAILURES = 3
BACKOFF = timedelta(minutes=5)
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _as_utc(moment: Optional[datetime]) -> datetime:
    if moment is None:
        return datetime.now(timezone.utc)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class TOTP:
    """
    A time-based one-time password credential.

    Instances are mutated by :meth:`otp` and :meth:`validate` and are not
    safe for concurrent use; callers must serialize access per credential.
    The key is not encrypted by :meth:`to_bytes`, protect the output.
    """

    def __init__(
        self,
        key: bytes,
        account: str,
        issuer: str,
        algorithm: HashAlgorithm = HashAlgorithm.SHA1,
        digits: int = 6,
        step_size: int = DEFAULT_STEP_SIZE,
        client_offset: int = 0,
        total_verification_failures: int = 0,
        last_verification_time: datetime = EPOCH,
        counter: bytes = bytes(COUNTER_SIZE),
    ):
        """
        Initialize a TOTP instance.

        Args:
            key: Shared secret, sized to the digest of ``algorithm``.
            account: Account name, usually the user email.
            issuer: Name of the service issuing the credential.
            algorithm: Hash function used in the HMAC.
            digits: Code length, 6, 7 or 8.
            step_size: Seconds each code is valid for.
            client_offset: Drift correction in steps.
            total_verification_failures: Failed attempts so far.
            last_verification_time: Time of the last failed attempt.
            counter: Last computed 8-byte counter.

        Raises:
            ValueError: If any parameter breaks the credential invariants.
        """
        if len(key) != algorithm.digest_size:
            raise ValueError(
                f"Key must be {algorithm.digest_size} bytes for "
                f"{algorithm.name}, got {len(key)}"
            )
        if digits not in VALID_DIGITS:
            raise ValueError(f"Digits must be 6, 7 or 8, got {digits}")
        if step_size <= 0:
            raise ValueError(f"Step size must be positive, got {step_size}")
        if client_offset not in VALID_OFFSETS:
            raise ValueError(f"Client offset must be -1, 0 or 1, got {client_offset}")
        if total_verification_failures < 0:
            raise ValueError("Total verification failures cannot be negative")
        if len(counter) != COUNTER_SIZE:
            raise ValueError(f"Counter must be {COUNTER_SIZE} bytes")

        self.key = bytes(key)
        self.account = account
        self.issuer = issuer
        self.algorithm = algorithm
        self.digits = digits
        self.step_size = step_size
        self.client_offset = client_offset
        self.total_verification_failures = total_verification_failures
        self.last_verification_time = _as_utc(last_verification_time)
        self.counter = bytes(counter)

    def __repr__(self) -> str:
        return (
            f"TOTP(issuer={self.issuer!r}, account={self.account!r}, "
            f"algorithm={self.algorithm.name}, digits={self.digits})"
        )

    @classmethod
    def create(
        cls,
        account: str,
        issuer: str,
        algorithm: HashAlgorithm = HashAlgorithm.SHA1,
        digits: int = 6,
    ) -> "TOTP":
        """
        Create a credential with a fresh random key.

        Digit counts outside 6-8 are replaced by 8 so that no invalid
        tokens can be produced.

        Raises:
            EntropyError: If the system random source fails.
        """
        size = algorithm.digest_size
        try:
            key = secrets.token_bytes(size)
        except (OSError, NotImplementedError) as e:
            raise EntropyError(
                f"TOTP failed to create because there is not enough entropy: {e}"
            ) from e
        if len(key) != size:
            raise EntropyError(
                f"TOTP failed to create because there is not enough entropy, "
                f"we got only {len(key)} random bytes"
            )

        if digits not in VALID_DIGITS:
            logger.warning(
                "Unsupported digit count %s, using %d", digits, FALLBACK_DIGITS
            )
            digits = FALLBACK_DIGITS

        return cls(
            key=key,
            account=account,
            issuer=issuer,
            algorithm=algorithm,
            digits=digits,
        )

    @property
    def int_counter(self) -> int:
        """The last computed counter as an unsigned integer."""
        return int.from_bytes(self.counter, byteorder="big")

    def _calculate(self, index: int, now: int) -> str:
        # Every computation refreshes the stored counter
        step = step_counter(now, index, self.step_size, self.client_offset)
        logger.debug(
            "Computing code for %s at step index %d (counter %d)",
            self.account,
            index,
            step,
        )
        self.counter = counter_bytes(step)
        return compute_code(self.key, self.algorithm, self.counter, self.digits)

    def otp(self, now: Optional[datetime] = None) -> str:
        """Return the code for the current step."""
        return self._calculate(0, unix_time(now))

    def _backoff_elapsed(self, now: datetime) -> bool:
        return now - _as_utc(self.last_verification_time) >= BACKOFF

    def is_locked(self, now: Optional[datetime] = None) -> bool:
        """Whether :meth:`validate` would currently refuse any token."""
        return (
            self.total_verification_failures >= MAX_FAILURES
            and not self._backoff_elapsed(_as_utc(now))
        )

    def validate(self, code: str, now: Optional[datetime] = None) -> None:
        """
        Verify a user supplied token.

        The tokens of the previous, current and next step are accepted.
        Matching a neighbouring step moves the client offset to it. Every
        mismatch counts as a failure; after MAX_FAILURES failures all tokens
        are refused until BACKOFF has passed since the last one.

        Raises:
            InvalidInputError: If the token is empty.
            LockedError: If verification is locked.
            MismatchError: If the token matches none of the three steps.
        """
        if not code:
            raise InvalidInputError("User provided token is empty")

        now = _as_utc(now)
        if self.total_verification_failures >= MAX_FAILURES:
            if not self._backoff_elapsed(now):
                logger.warning(
                    "Verification locked for %s after %d failures",
                    self.account,
                    self.total_verification_failures,
                )
                raise LockedError(
                    "The verification is locked down, because of too many trials."
                )
            logger.info("Backoff elapsed for %s, resetting failures", self.account)
            self.total_verification_failures = 0

        timestamp = unix_time(now)
        candidate = code.encode("utf-8", errors="surrogatepass")
        matches = {
            index: constant_time.bytes_eq(
                candidate, self._calculate(index, timestamp).encode("ascii")
            )
            for index in (-1, 0, 1)
        }

        if matches[0]:
            return
        for index in (-1, 1):
            if matches[index]:
                logger.debug(
                    "Resynchronizing %s to client offset %d", self.account, index
                )
                self.client_offset = index
                return

        self.total_verification_failures += 1
        self.last_verification_time = now
        raise MismatchError("Tokens mismatch.")

    def label(self) -> str:
        """Percent-encoded ``issuer:account`` label."""
        return build_label(self.issuer, self.account)

    def url(self) -> str:
        """Provisioning URI for authenticator apps."""
        return build_uri(
            key=self.key,
            issuer=self.issuer,
            account=self.account,
            counter=self.int_counter,
            digits=self.digits,
            period=self.step_size,
            algorithm=self.algorithm,
        )

    def to_bytes(self) -> bytes:
        """
        Serialize the credential, state included.

        The stored counter is the last computed one; it is refreshed from
        the clock before any new code is produced.
        """
        return codec.encode(
            {
                "key": self.key,
                "counter": self.int_counter,
                "digits": self.digits,
                "issuer": self.issuer.encode("utf-8"),
                "account": self.account.encode("utf-8"),
                "step_size": self.step_size,
                "client_offset": self.client_offset,
                "total_failures": self.total_verification_failures,
                "last_verification": unix_time(self.last_verification_time),
                "hash_type": self.algorithm.value,
            }
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "TOTP":
        """
        Restore a credential serialized by :meth:`to_bytes`.

        Raises:
            DecodeError: If the buffer is malformed or violates invariants.
        """
        fields = codec.decode(data)
        algorithm = HashAlgorithm.from_tag(fields["hash_type"])

        try:
            issuer = fields["issuer"].decode("utf-8")
            account = fields["account"].decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Invalid UTF-8 in issuer or account: {e}") from e

        try:
            last_verification = EPOCH + timedelta(seconds=fields["last_verification"])
        except OverflowError as e:
            raise DecodeError(
                f"Invalid last verification time: {fields['last_verification']}"
            ) from e

        try:
            return cls(
                key=fields["key"],
                account=account,
                issuer=issuer,
                algorithm=algorithm,
                digits=fields["digits"],
                step_size=fields["step_size"],
                client_offset=fields["client_offset"],
                total_verification_failures=fields["total_failures"],
                last_verification_time=last_verification,
                counter=counter_bytes(fields["counter"]),
            )
        except ValueError as e:
            raise DecodeError(f"Invalid credential data: {e}") from e

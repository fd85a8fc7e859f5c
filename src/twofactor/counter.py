"""Derivation of the TOTP counter from wall-clock time (RFC 6238)."""

import math
from datetime import datetime, timezone
from typing import Optional

from twofactor.hotp import COUNTER_SIZE


def unix_time(now: Optional[datetime] = None) -> int:
    """
    Return whole Unix seconds for ``now``, or for the current UTC time.

    Naive datetimes are read as UTC.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return math.floor(now.timestamp())


def counter_for_step(unix_seconds: int, step_size: int) -> int:
    """Return T = floor(unix_seconds / step_size), with T0 = 0."""
    return unix_seconds // step_size


def counter_bytes(value: int) -> bytes:
    """Encode a counter as an 8-byte unsigned big-endian value."""
    return value.to_bytes(COUNTER_SIZE, byteorder="big")


def step_counter(
    now: int, step_index: int, step_size: int, client_offset: int = 0
) -> int:
    """
    Counter for the step ``step_index`` away from ``now``.

    Args:
        now: Current Unix time in seconds.
        step_index: -1, 0 or +1 relative to the current step.
        step_size: Seconds per step.
        client_offset: Persisted drift correction in steps.
    """
    return counter_for_step(now + (step_index + client_offset) * step_size, step_size)


def remaining_seconds(step_size: int, now: Optional[datetime] = None) -> int:
    """Return seconds until the current step expires."""
    return step_size - (unix_time(now) % step_size)

"""Tests for TOTP generation and verification."""

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from urllib.parse import parse_qs, unquote, urlparse

import pytest

from twofactor.errors import (
    EntropyError,
    InvalidInputError,
    LockedError,
    MismatchError,
)
from twofactor.hotp import HashAlgorithm
from twofactor.totp import BACKOFF, EPOCH, MAX_FAILURES, TOTP


SHA1_KEY = bytes.fromhex("3132333435363738393031323334353637383930")
SHA256_KEY = bytes.fromhex(
    "3132333435363738393031323334353637383930313233343536373839303132"
)
SHA512_KEY = bytes.fromhex(
    "3132333435363738393031323334353637383930313233343536373839303132"
    "3334353637383930313233343536373839303132333435363738393031323334"
)

# RFC 6238 Appendix B
TIMESTAMPS = [59, 1111111109, 1111111111, 1234567890, 2000000000, 20000000000]
RFC6238_VECTORS = {
    HashAlgorithm.SHA1: (
        SHA1_KEY,
        ["94287082", "07081804", "14050471", "89005924", "69279037", "65353130"],
    ),
    HashAlgorithm.SHA256: (
        SHA256_KEY,
        ["46119246", "68084774", "67062674", "91819424", "90698825", "77737706"],
    ),
    HashAlgorithm.SHA512: (
        SHA512_KEY,
        ["90693936", "25091201", "99943326", "93441116", "38618901", "47863826"],
    ),
}

NOW = datetime(2015, 8, 3, 11, 29, 47, tzinfo=timezone.utc)


def at(seconds):
    return EPOCH + timedelta(seconds=seconds)


def make_totp(**kwargs):
    params = dict(
        key=SHA1_KEY,
        account="info@sec51.com",
        issuer="Sec51",
        algorithm=HashAlgorithm.SHA1,
        digits=8,
    )
    params.update(kwargs)
    return TOTP(**params)


@pytest.mark.parametrize(
    "algorithm,index",
    [(alg, i) for alg in RFC6238_VECTORS for i in range(len(TIMESTAMPS))],
)
def test_rfc6238_vectors(algorithm, index):
    """Test TOTP codes against RFC 6238 test vectors."""
    key, expected = RFC6238_VECTORS[algorithm]
    otp = make_totp(key=key, algorithm=algorithm)
    assert otp.otp(now=at(TIMESTAMPS[index])) == expected[index]


def test_otp_updates_counter():
    """Test that computing a code stores the step counter."""
    otp = make_totp()
    otp.otp(now=NOW)
    assert otp.int_counter == 47953379
    assert otp.counter == (47953379).to_bytes(8, "big")


def test_otp_applies_client_offset():
    """Test that the client offset shifts the displayed code."""
    otp = make_totp(client_offset=1)
    assert otp.otp(now=NOW) == make_totp().otp(now=NOW + timedelta(seconds=30))


# ── Creation ─────────────────────────────────────────────────────────────────


@pytest.mark.parametrize("algorithm", list(HashAlgorithm))
def test_create_sizes_key_to_digest(algorithm):
    """Test that created keys match the digest size."""
    otp = TOTP.create("info@sec51.com", "Sec51", algorithm, 6)
    assert len(otp.key) == algorithm.digest_size
    assert otp.step_size == 30
    assert otp.client_offset == 0
    assert otp.total_verification_failures == 0
    assert otp.last_verification_time == EPOCH


def test_create_generates_distinct_keys():
    """Test that every credential gets a fresh key."""
    first = TOTP.create("a", "b")
    second = TOTP.create("a", "b")
    assert first.key != second.key


@pytest.mark.parametrize("digits", [6, 7, 8])
def test_create_keeps_valid_digits(digits):
    """Test that supported digit counts are kept."""
    assert TOTP.create("a", "b", digits=digits).digits == digits


@pytest.mark.parametrize("digits", [0, 5, 9, 10, -1])
def test_create_clamps_invalid_digits(digits, caplog):
    """Test that unsupported digit counts become 8."""
    with caplog.at_level(logging.WARNING, logger="twofactor.totp"):
        otp = TOTP.create("a", "b", digits=digits)
    assert otp.digits == 8
    assert "Unsupported digit count" in caplog.text


def test_create_entropy_failure():
    """Test that a failing random source raises EntropyError."""
    with patch("twofactor.totp.secrets.token_bytes", side_effect=OSError("no entropy")):
        with pytest.raises(EntropyError, match="not enough entropy"):
            TOTP.create("a", "b")


def test_create_short_random_read():
    """Test that a short random read raises EntropyError."""
    with patch("twofactor.totp.secrets.token_bytes", return_value=b"\x00" * 5):
        with pytest.raises(EntropyError, match="only 5 random bytes"):
            TOTP.create("a", "b")


def test_constructor_rejects_key_size_mismatch():
    """Test that the key must match the digest size."""
    with pytest.raises(ValueError, match="Key must be 32 bytes"):
        make_totp(algorithm=HashAlgorithm.SHA256)


def test_constructor_rejects_invalid_digits():
    """Test that the constructor refuses instead of clamping."""
    with pytest.raises(ValueError, match="Digits"):
        make_totp(digits=9)


def test_constructor_rejects_out_of_range_offset():
    """Test that only offsets produced by resynchronization are accepted."""
    with pytest.raises(ValueError, match="Client offset"):
        make_totp(client_offset=2)


def test_constructor_rejects_non_positive_step():
    """Test that the step size must be positive."""
    with pytest.raises(ValueError, match="Step size"):
        make_totp(step_size=0)


def test_repr_hides_key():
    """Test that the key never shows up in repr."""
    otp = make_totp()
    assert SHA1_KEY.hex() not in repr(otp)
    assert "12345678901234567890" not in repr(otp)


# ── Validation ───────────────────────────────────────────────────────────────


def test_validate_current_code():
    """Test that the current code validates without state changes."""
    otp = make_totp()
    otp.validate(otp.otp(now=NOW), now=NOW)
    assert otp.client_offset == 0
    assert otp.total_verification_failures == 0


def test_validate_wall_clock():
    """Test validation against the real clock."""
    otp = TOTP.create("info@sec51.com", "Sec51", HashAlgorithm.SHA1, 7)
    otp.validate(otp.otp())
    assert otp.total_verification_failures == 0


def test_validate_previous_step_resynchronizes():
    """Test that a code one step behind sets the offset to -1."""
    otp = make_totp()
    previous = otp.otp(now=NOW - timedelta(seconds=30))
    otp.validate(previous, now=NOW)
    assert otp.client_offset == -1
    assert otp.total_verification_failures == 0


def test_validate_next_step_resynchronizes():
    """Test that a code one step ahead sets the offset to +1."""
    otp = make_totp()
    upcoming = otp.otp(now=NOW + timedelta(seconds=30))
    otp.validate(upcoming, now=NOW)
    assert otp.client_offset == 1


def test_validate_offset_persists():
    """Test that after resync the window is centred on the offset."""
    otp = make_totp()
    otp.validate(otp.otp(now=NOW + timedelta(seconds=30)), now=NOW)
    assert otp.client_offset == 1

    # Two steps ahead is now inside the window
    otp.validate(make_totp().otp(now=NOW + timedelta(seconds=60)), now=NOW)
    assert otp.client_offset == 1
    assert otp.total_verification_failures == 0


def test_validate_outside_window():
    """Test that a code two steps away is a mismatch."""
    otp = make_totp()
    stale = otp.otp(now=NOW - timedelta(seconds=60))
    with pytest.raises(MismatchError):
        otp.validate(stale, now=NOW)
    assert otp.client_offset == 0
    assert otp.total_verification_failures == 1


@pytest.mark.parametrize("code", ["", None])
def test_validate_empty_input(code):
    """Test that an empty token is rejected without state changes."""
    otp = make_totp()
    with pytest.raises(InvalidInputError, match="empty"):
        otp.validate(code, now=NOW)
    assert otp.total_verification_failures == 0
    assert otp.counter == bytes(8)


def test_invalid_input_is_value_error():
    """Test that InvalidInputError can be caught as ValueError."""
    with pytest.raises(ValueError):
        make_totp().validate("", now=NOW)


def test_validate_mismatch_records_failure():
    """Test that a wrong token records the failure time in UTC."""
    otp = make_totp()
    with pytest.raises(MismatchError, match="mismatch"):
        otp.validate("00000000", now=NOW)
    assert otp.total_verification_failures == 1
    assert otp.last_verification_time == NOW
    assert otp.last_verification_time.tzinfo == timezone.utc


def test_validate_success_keeps_failure_count():
    """Test that success does not reset failures below the threshold."""
    otp = make_totp()
    for _ in range(2):
        with pytest.raises(MismatchError):
            otp.validate("00000000", now=NOW)
    otp.validate(otp.otp(now=NOW), now=NOW)
    assert otp.total_verification_failures == 2


def test_verification_failures_lockout():
    """Test three failures lock the credential for the backoff window."""
    otp = TOTP.create("info@sec51.com", "Sec51", HashAlgorithm.SHA1, 7)
    expected_token = otp.otp(now=NOW)
    otp.validate(expected_token, now=NOW)

    for _ in range(MAX_FAILURES):
        with pytest.raises(MismatchError):
            otp.validate("1234567", now=NOW)
    assert otp.total_verification_failures == 3
    assert otp.is_locked(now=NOW)

    # Even the right token is refused while locked
    for _ in range(10):
        with pytest.raises(LockedError, match="locked"):
            otp.validate(expected_token, now=NOW + timedelta(seconds=10))
    assert otp.total_verification_failures == 3
    assert otp.last_verification_time == NOW


def test_lockout_expires_after_backoff():
    """Test that the backoff window is measured from the last failure."""
    otp = make_totp()
    for _ in range(MAX_FAILURES):
        with pytest.raises(MismatchError):
            otp.validate("00000000", now=NOW)

    almost = NOW + BACKOFF - timedelta(seconds=1)
    with pytest.raises(LockedError):
        otp.validate(otp.otp(now=almost), now=almost)

    later = NOW + BACKOFF
    assert not otp.is_locked(now=later)
    otp.validate(otp.otp(now=later), now=later)
    assert otp.total_verification_failures == 0


def test_lockout_reset_with_last_verification_in_past():
    """Test that a last failure 10 minutes ago resets the failure count."""
    otp = TOTP.create("info@sec51.com", "Sec51", HashAlgorithm.SHA1, 7)
    expected_token = otp.otp()
    for _ in range(MAX_FAILURES):
        with pytest.raises(MismatchError):
            otp.validate("1234567")

    otp.last_verification_time = datetime.now(timezone.utc) - timedelta(minutes=10)

    for i in range(10):
        otp.validate(expected_token)
        if i == 0:
            assert otp.total_verification_failures == 0


def test_lockout_reset_then_mismatch_counts_from_zero():
    """Test that a failed attempt after expiry restarts the count."""
    otp = make_totp()
    for _ in range(MAX_FAILURES):
        with pytest.raises(MismatchError):
            otp.validate("00000000", now=NOW)

    later = NOW + timedelta(minutes=10)
    with pytest.raises(MismatchError):
        otp.validate("00000000", now=later)
    assert otp.total_verification_failures == 1
    assert otp.last_verification_time == later


def test_validate_accepts_naive_datetimes():
    """Test that naive times are treated as UTC during validation."""
    otp = make_totp()
    naive = NOW.replace(tzinfo=None)
    otp.validate(otp.otp(now=naive), now=naive)
    assert otp.client_offset == 0


# ── Provisioning ─────────────────────────────────────────────────────────────


def test_label():
    """Test the percent-encoded issuer:account label."""
    otp = make_totp()
    assert unquote(otp.label()) == "Sec51:info@sec51.com"
    assert ":" not in otp.label()


def test_url():
    """Test the provisioning URI fields."""
    otp = make_totp(algorithm=HashAlgorithm.SHA256, key=SHA256_KEY, step_size=60)
    otp.otp(now=NOW)
    parsed = urlparse(otp.url())
    query = parse_qs(parsed.query)

    assert parsed.scheme == "otpauth"
    assert parsed.netloc == "totp"
    assert unquote(parsed.path[1:]) == "Sec51:info@sec51.com"
    assert query["issuer"] == ["Sec51"]
    assert query["digits"] == ["8"]
    assert query["period"] == ["60"]
    assert query["algorithm"] == ["SHA256"]
    assert query["counter"] == [str(otp.int_counter)]
    assert "=" not in query["secret"][0]


def test_validate_unencodable_code_is_mismatch():
    """Test that a lone surrogate in the token counts as a wrong code."""
    otp = make_totp()
    with pytest.raises(MismatchError):
        otp.validate("\ud800", now=NOW)
    assert otp.total_verification_failures == 1


def test_code_computation_is_logged_without_code(caplog):
    """Test debug logging of computed steps, never of the code itself."""
    otp = make_totp()
    with caplog.at_level(logging.DEBUG, logger="twofactor.totp"):
        code = otp.otp(now=NOW)
    assert "counter 47953379" in caplog.text
    assert code not in caplog.text

"""Provisioning label and otpauth:// URI for authenticator apps."""

import base64
from urllib.parse import quote, urlencode

from twofactor.hotp import HashAlgorithm


def encode_secret(key: bytes) -> str:
    """Encode a raw key as unpadded base32, as the otpauth scheme expects."""
    return base64.b32encode(key).decode("ascii").rstrip("=")


def build_label(issuer: str, account: str) -> str:
    """Return the percent-encoded ``issuer:account`` label."""
    return quote(f"{issuer}:{account}", safe="")


def build_uri(
    key: bytes,
    issuer: str,
    account: str,
    counter: int,
    digits: int,
    period: int,
    algorithm: HashAlgorithm,
) -> str:
    """
    Build the provisioning URI, e.g.
    ``otpauth://totp/Example:alice?secret=...&issuer=Example&...``.

    The URI contains the shared key and must only travel over a secure channel.
    """
    params = {
        "secret": encode_secret(key),
        "counter": str(counter),
        "issuer": issuer,
        "digits": str(digits),
        "period": str(period),
        "algorithm": algorithm.name,
    }
    return f"otpauth://totp/{build_label(issuer, account)}?{urlencode(params)}"

# backend/app/security/twofa.py
"""
RFC 6238 time-based one-time passwords.

Time is always passed in explicitly (``at``); nothing here reads the
wall clock except ``utcnow``, which callers hand in as their clock.
"""
from __future__ import annotations

import base64
import hmac
import secrets
from datetime import datetime, timezone
from typing import Callable, Optional, Union

import pyotp

from app.core.config import settings

SECRET_BYTES = 20  # 160 bits, the RFC 4226 recommendation for SHA-1
DIGITS = 6
INTERVAL = 30

Clock = Callable[[], datetime]
Instant = Union[datetime, int, float]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_secret() -> bytes:
    return secrets.token_bytes(SECRET_BYTES)


def secret_to_base32(secret: bytes) -> str:
    """Base32 without padding, the form authenticator apps expect."""
    return base64.b32encode(secret).decode("ascii").rstrip("=")


def base32_to_secret(encoded: str) -> bytes:
    encoded = encoded.strip().replace(" ", "").upper()
    return base64.b32decode(encoded + "=" * (-len(encoded) % 8))


def _unix(at: Instant) -> int:
    if isinstance(at, datetime):
        if at.tzinfo is None:
            # naive values are UTC throughout the app
            at = at.replace(tzinfo=timezone.utc)
        return int(at.timestamp())
    return int(at)


def time_step(at: Instant) -> int:
    return _unix(at) // INTERVAL


def _hotp(secret: bytes) -> pyotp.HOTP:
    return pyotp.HOTP(secret_to_base32(secret), digits=DIGITS)


def code_for_step(secret: bytes, step: int) -> str:
    return _hotp(secret).at(step)


def current_code(secret: bytes, at: Instant) -> str:
    return code_for_step(secret, time_step(at))


def _well_formed(code: object) -> bool:
    return (
        isinstance(code, str)
        and len(code) == DIGITS
        and code.isascii()
        and code.isdigit()
    )


def match_step(secret: bytes, code: str, at: Instant, window: Optional[int] = None) -> Optional[int]:
    """
    Return the time step ``code`` belongs to, or None.

    Every step in the window is computed and compared so the work done
    does not depend on where (or whether) the code matched.
    """
    if window is None:
        window = settings.TWO_FACTOR_WINDOW
    if isinstance(code, str):
        code = code.strip()
    well_formed = _well_formed(code)
    candidate = code if well_formed else "0" * DIGITS

    hotp = _hotp(secret)
    current = time_step(at)
    matched = None
    for offset in range(-window, window + 1):
        step = current + offset
        if hmac.compare_digest(candidate, hotp.at(step)) and matched is None:
            matched = step
    return matched if well_formed else None


def verify_totp(secret: bytes, code: str, at: Instant, window: Optional[int] = None) -> bool:
    return match_step(secret, code, at, window) is not None


def build_totp_uri(secret: bytes, label: str, issuer: Optional[str] = None) -> str:
    issuer = issuer or settings.two_factor_issuer
    totp = pyotp.TOTP(secret_to_base32(secret), digits=DIGITS, interval=INTERVAL)
    return totp.provisioning_uri(name=label, issuer_name=issuer)

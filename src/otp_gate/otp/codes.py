"""Helpers for generating one-time passwords."""
from __future__ import annotations

import binascii
import re
import secrets
import time
from typing import Optional

import pyotp

from otp_gate.config.settings import CODE_DIGITS

RANDOM_CODE_MIN = 10 ** (CODE_DIGITS - 1)
RANDOM_CODE_MAX = 10**CODE_DIGITS - 1
# 32 Base32 characters carry the 20 bytes of entropy an RFC 4226 secret should have.
SECRET_LENGTH = 32

_CODE_PATTERN = re.compile(r"[0-9]{%d}" % CODE_DIGITS)


def is_well_formed(value: object) -> bool:
    """Return True when ``value`` is exactly six ASCII digits."""
    return isinstance(value, str) and _CODE_PATTERN.fullmatch(value) is not None


def generate_random_code() -> str:
    """Draw a uniform code in ``[100000, 999999]`` from the OS CSPRNG."""
    return str(RANDOM_CODE_MIN + secrets.randbelow(RANDOM_CODE_MAX - RANDOM_CODE_MIN + 1))


def provision_secret() -> str:
    """Return a new Base32 TOTP secret."""
    return pyotp.random_base32(length=SECRET_LENGTH)


def time_counter(timestamp: float, step: int) -> int:
    return int(timestamp) // step


def derive_code(secret: str, counter: int) -> str:
    """HOTP value of ``secret`` for ``counter`` (HMAC-SHA1, dynamic truncation, 6 digits).

    Raises ``ValueError`` when ``secret`` is not valid Base32.
    """
    if counter < 0:
        raise ValueError("counter must not be negative")
    try:
        return pyotp.HOTP(secret, digits=CODE_DIGITS).at(counter)
    except (binascii.Error, TypeError) as exc:
        raise ValueError("Invalid Base32 secret") from exc


def generate_totp(secret: str, *, timestamp: Optional[int] = None, interval: int = 30) -> str:
    """Generate a TOTP code for ``secret``.

    ``timestamp`` allows deterministic outputs for testing.
    """
    if timestamp is None:
        timestamp = int(time.time())
    return derive_code(secret, time_counter(timestamp, interval))

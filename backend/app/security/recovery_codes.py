"""
Single-use recovery codes.

Codes are plain strings such as ``Xk3mQ9ZpLw-7TbH2vNcRa``. The functions
here never mutate their inputs; callers persist the returned list.
"""
from __future__ import annotations

import hmac
import secrets
import string
from typing import Optional, Sequence

from app.core.config import settings

_ALPHABET = string.ascii_letters + string.digits
GROUP_LEN = 10


def _random_group() -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(GROUP_LEN))


def generate_recovery_code() -> str:
    return f"{_random_group()}-{_random_group()}"


def generate_recovery_codes(count: Optional[int] = None) -> list[str]:
    if count is None:
        count = settings.TWO_FACTOR_RECOVERY_CODES
    if count < 1:
        raise ValueError("At least one recovery code is required")

    codes: list[str] = []
    seen: set[str] = set()
    while len(codes) < count:
        code = generate_recovery_code()
        if code in seen:
            continue
        seen.add(code)
        codes.append(code)
    return codes


def consume_recovery_code(codes: Sequence[str], submitted: Optional[str]) -> tuple[bool, list[str]]:
    """
    Remove ``submitted`` from ``codes`` if present (exact, case-sensitive).

    Returns ``(True, remaining)`` on success, ``(False, codes)`` otherwise.
    """
    remaining = list(codes)
    if not isinstance(submitted, str):
        return False, remaining
    submitted = submitted.strip()
    if not submitted:
        return False, remaining

    wanted = submitted.encode("utf-8")
    index = None
    for i, code in enumerate(remaining):
        if hmac.compare_digest(code.encode("utf-8"), wanted) and index is None:
            index = i
    if index is None:
        return False, remaining

    del remaining[index]
    return True, remaining

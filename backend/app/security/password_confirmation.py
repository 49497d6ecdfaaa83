"""
Step-up re-authentication capability.

A ``PasswordConfirmation`` records when an account last proved its
password. Sensitive two-factor operations take one as an argument and
refuse to run unless it is recent enough.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.core.config import settings
from app.security.exceptions import PasswordConfirmationRequired


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class PasswordConfirmation:
    account_id: int
    confirmed_at: datetime

    def is_fresh(self, now: datetime, timeout: Optional[int] = None) -> bool:
        if timeout is None:
            timeout = settings.PASSWORD_TIMEOUT
        age = _aware(now) - _aware(self.confirmed_at)
        # a confirmation from the future is a forged or skewed token
        return timedelta(0) <= age <= timedelta(seconds=timeout)


def require_password_confirmation(
    confirmation: Optional[PasswordConfirmation],
    account_id: int,
    now: datetime,
    timeout: Optional[int] = None,
) -> None:
    if (
        confirmation is None
        or confirmation.account_id != account_id
        or not confirmation.is_fresh(now, timeout)
    ):
        raise PasswordConfirmationRequired()

"""
Two-factor login challenge.

After the password check succeeds for an account with confirmed 2FA the
login flow parks a ``PendingChallenge`` here and hands the client its
``login_id``. ``complete_challenge`` then accepts either a TOTP code or a
recovery code. Pending challenges live in process memory only.
"""
from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.crud.two_factor import load_profile, save_profile
from app.models.user import User
from app.security.exceptions import (
    InvalidChallenge,
    TwoFactorConcurrencyError,
    TwoFactorValidationError,
)
from app.security.recovery_codes import consume_recovery_code
from app.security.secret_codec import SecretCodec
from app.security.twofa import match_step, utcnow
from app.security.two_factor_profile import TwoFactorStatus

logger = logging.getLogger(__name__)

INVALID_CODE = "The provided two factor authentication code was invalid."
INVALID_RECOVERY_CODE = "The provided two factor recovery code was invalid."


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class PendingChallenge:
    login_id: str
    account_id: int
    remember: bool
    created_at: datetime
    ttl: int

    def is_expired(self, now: datetime) -> bool:
        return _aware(now) >= _aware(self.created_at) + timedelta(seconds=self.ttl)


class PendingChallengeStore:
    """Thread-safe in-memory registry of pending logins keyed by login_id."""

    def __init__(self):
        self._pending: Dict[str, PendingChallenge] = {}
        self._lock = threading.RLock()

    def create(
        self,
        account_id: int,
        remember: bool = False,
        now: Optional[datetime] = None,
        ttl: Optional[int] = None,
    ) -> PendingChallenge:
        pending = PendingChallenge(
            login_id=secrets.token_urlsafe(32),
            account_id=account_id,
            remember=bool(remember),
            created_at=now or utcnow(),
            ttl=settings.TWO_FACTOR_CHALLENGE_TTL if ttl is None else ttl,
        )
        with self._lock:
            self._purge(pending.created_at)
            self._pending[pending.login_id] = pending
        return pending

    def restore(self, pending: PendingChallenge) -> None:
        """Put back a challenge that was taken but not completed."""
        with self._lock:
            self._pending.setdefault(pending.login_id, pending)

    def get(self, login_id: Optional[str]) -> Optional[PendingChallenge]:
        if not login_id:
            return None
        with self._lock:
            return self._pending.get(login_id)

    def take(self, login_id: str) -> Optional[PendingChallenge]:
        """Remove and return the challenge; only one caller ever gets it."""
        with self._lock:
            return self._pending.pop(login_id, None)

    def discard(self, login_id: str) -> None:
        with self._lock:
            self._pending.pop(login_id, None)

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        with self._lock:
            return self._purge(now or utcnow())

    def _purge(self, now: datetime) -> int:
        expired = [k for k, p in self._pending.items() if p.is_expired(now)]
        for k in expired:
            del self._pending[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def clear(self) -> None:
        with self._lock:
            self._pending.clear()


class UsedCodeRegistry:
    """
    Remembers the last TOTP time step accepted per account so a code
    cannot be replayed while it is still inside the skew window.
    """

    def __init__(self):
        self._last_step: Dict[int, int] = {}
        self._lock = threading.Lock()

    def claim(self, account_id: int, step: int) -> bool:
        with self._lock:
            last = self._last_step.get(account_id)
            if last is not None and step <= last:
                return False
            self._last_step[account_id] = step
            return True

    def clear(self) -> None:
        with self._lock:
            self._last_step.clear()


_pending_store = PendingChallengeStore()
_used_codes = UsedCodeRegistry()


def get_pending_store() -> PendingChallengeStore:
    return _pending_store


def get_used_codes() -> UsedCodeRegistry:
    return _used_codes


@dataclass(frozen=True)
class ChallengeResult:
    user: User
    remember: bool
    used_recovery_code: bool = False


def _present(value: Optional[str]) -> bool:
    return isinstance(value, str) and bool(value.strip())


def complete_challenge(
    db: Session,
    pending: Optional[PendingChallenge],
    code: Optional[str] = None,
    recovery_code: Optional[str] = None,
    now: Optional[datetime] = None,
    codec: Optional[SecretCodec] = None,
    store: Optional[PendingChallengeStore] = None,
    used_codes: Optional[UsedCodeRegistry] = None,
) -> ChallengeResult:
    """
    Finish a pending login with a TOTP code or a recovery code.

    The challenge is taken out of the store before anything is verified, so
    concurrent attempts on one login_id cannot both spend a code. A rejected
    code puts the challenge back for another try.
    """
    now = now or utcnow()
    if store is None:
        store = _pending_store
    if used_codes is None:
        used_codes = _used_codes

    has_code, has_recovery = _present(code), _present(recovery_code)
    if has_code == has_recovery:
        raise TwoFactorValidationError("code", "Provide either a code or a recovery code.")

    if pending is None:
        raise InvalidChallenge("code", INVALID_CODE)
    if pending.is_expired(now):
        store.discard(pending.login_id)
        raise InvalidChallenge("code", INVALID_CODE)

    taken = store.take(pending.login_id)
    if taken is None:
        raise InvalidChallenge("code", INVALID_CODE)

    try:
        user = _verify(db, taken, code if has_code else None, recovery_code, now, codec, used_codes)
    except InvalidChallenge:
        raise
    except TwoFactorValidationError:
        store.restore(taken)
        raise

    return ChallengeResult(user=user, remember=taken.remember, used_recovery_code=has_recovery)


def _verify(
    db: Session,
    pending: PendingChallenge,
    code: Optional[str],
    recovery_code: Optional[str],
    now: datetime,
    codec: Optional[SecretCodec],
    used_codes: UsedCodeRegistry,
) -> User:
    loaded = load_profile(db, pending.account_id, for_update=code is None, codec=codec)
    if loaded is None or loaded[1].status is not TwoFactorStatus.CONFIRMED:
        db.rollback()
        raise InvalidChallenge("code", INVALID_CODE)
    user, profile = loaded

    if code is not None:
        step = match_step(profile.secret, code, at=now)
        if step is None or not used_codes.claim(user.id, step):
            logger.warning("Failed two-factor challenge for user %s", user.id)
            raise TwoFactorValidationError("code", INVALID_CODE)
        return user

    ok, remaining = consume_recovery_code(profile.recovery_codes, recovery_code)
    if not ok:
        db.rollback()
        logger.warning("Failed recovery-code challenge for user %s", user.id)
        raise TwoFactorValidationError("recovery_code", INVALID_RECOVERY_CODE)
    try:
        save_profile(db, user, profile.with_changes(recovery_codes=remaining), codec)
    except TwoFactorConcurrencyError:
        raise TwoFactorValidationError("recovery_code", INVALID_RECOVERY_CODE)
    logger.info("Recovery code used for user %s, %d left", user.id, len(remaining))
    return user

"""
Two-factor state machine for a single account.

    Disabled --enable--> Pending --confirm--> Confirmed
    Pending|Confirmed --disable--> Disabled
    Pending|Confirmed --regenerate_recovery_codes--> (same state)

enable, disable and regenerate_recovery_codes need a fresh
PasswordConfirmation. Every mutation re-reads the row under lock and is
version-checked on save.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional, Union

from sqlalchemy.orm import Session

from app.crud.two_factor import load_profile, save_profile
from app.models.user import User
from app.security.exceptions import TwoFactorStateConflict, TwoFactorValidationError
from app.security.password_confirmation import PasswordConfirmation, require_password_confirmation
from app.security.qr import render_svg
from app.security.recovery_codes import generate_recovery_codes
from app.security.secret_codec import SecretCodec
from app.security.twofa import build_totp_uri, generate_secret, secret_to_base32, utcnow, verify_totp
from app.security.two_factor_profile import TwoFactorProfile, TwoFactorStatus

logger = logging.getLogger(__name__)

INVALID_CODE = "The provided two factor authentication code was invalid."


class NotEnabled:
    """Two-factor material was requested for an account without any."""

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_ENABLED"


NOT_ENABLED = NotEnabled()


def _db_timestamp(now: datetime) -> datetime:
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=0)


def _load(db: Session, user_id: int, for_update: bool, codec: Optional[SecretCodec]):
    loaded = load_profile(db, user_id, for_update=for_update, codec=codec)
    if loaded is None:
        raise LookupError(f"Unknown user {user_id}")
    return loaded


def get_status(db: Session, user_id: int, codec: Optional[SecretCodec] = None) -> TwoFactorStatus:
    _, profile = _load(db, user_id, False, codec)
    return profile.status


def enable(
    db: Session,
    user_id: int,
    confirmation: Optional[PasswordConfirmation],
    now: Optional[datetime] = None,
    codec: Optional[SecretCodec] = None,
) -> TwoFactorProfile:
    """
    Start enrollment. From Pending this restarts enrollment with a fresh
    secret; from Confirmed it changes nothing.
    """
    now = now or utcnow()
    require_password_confirmation(confirmation, user_id, now)

    user, profile = _load(db, user_id, True, codec)
    if profile.status is TwoFactorStatus.CONFIRMED:
        db.rollback()
        return profile

    profile = profile.with_changes(
        secret=generate_secret(),
        recovery_codes=generate_recovery_codes(),
        confirmed_at=None,
    )
    save_profile(db, user, profile, codec)
    logger.info("Two-factor enrollment started for user %s", user_id)
    return profile


def confirm(
    db: Session,
    user_id: int,
    code: str,
    now: Optional[datetime] = None,
    codec: Optional[SecretCodec] = None,
) -> TwoFactorProfile:
    now = now or utcnow()
    user, profile = _load(db, user_id, True, codec)

    if profile.status is TwoFactorStatus.DISABLED:
        db.rollback()
        raise TwoFactorValidationError("code", INVALID_CODE)
    if profile.status is TwoFactorStatus.CONFIRMED:
        db.rollback()
        raise TwoFactorStateConflict("code", "Two factor authentication is already confirmed.")

    if not verify_totp(profile.secret, code, at=now):
        db.rollback()
        raise TwoFactorValidationError("code", INVALID_CODE)

    profile = profile.with_changes(
        confirmed_at=_db_timestamp(now),
        recovery_codes=profile.recovery_codes or generate_recovery_codes(),
    )
    save_profile(db, user, profile, codec)
    logger.info("Two-factor authentication confirmed for user %s", user_id)
    return profile


def disable(
    db: Session,
    user_id: int,
    confirmation: Optional[PasswordConfirmation],
    now: Optional[datetime] = None,
    codec: Optional[SecretCodec] = None,
) -> TwoFactorProfile:
    """Clear all two-factor data. Disabling a disabled account is a no-op."""
    now = now or utcnow()
    require_password_confirmation(confirmation, user_id, now)

    user = db.get(User, user_id, with_for_update=True, populate_existing=True)
    if user is None:
        raise LookupError(f"Unknown user {user_id}")

    # the stored blobs are not decrypted here: a corrupt secret must still be removable
    if (
        user.two_factor_secret is None
        and user.two_factor_recovery_codes is None
        and user.two_factor_confirmed_at is None
    ):
        db.rollback()
        return TwoFactorProfile(account_id=user_id)

    cleared = TwoFactorProfile(account_id=user_id)
    save_profile(db, user, cleared, codec)
    logger.info("Two-factor authentication disabled for user %s", user_id)
    return cleared


def regenerate_recovery_codes(
    db: Session,
    user_id: int,
    confirmation: Optional[PasswordConfirmation],
    now: Optional[datetime] = None,
    codec: Optional[SecretCodec] = None,
) -> list[str]:
    now = now or utcnow()
    require_password_confirmation(confirmation, user_id, now)

    user, profile = _load(db, user_id, True, codec)
    if profile.status is TwoFactorStatus.DISABLED:
        db.rollback()
        raise TwoFactorStateConflict("recovery_codes", "Two factor authentication is not enabled.")

    codes = generate_recovery_codes()
    save_profile(db, user, profile.with_changes(recovery_codes=codes), codec)
    logger.info("Two-factor recovery codes regenerated for user %s", user_id)
    return codes


def secret_key(
    db: Session, user_id: int, codec: Optional[SecretCodec] = None
) -> Union[str, NotEnabled]:
    _, profile = _load(db, user_id, False, codec)
    if profile.status is TwoFactorStatus.DISABLED:
        return NOT_ENABLED
    return secret_to_base32(profile.secret)


def qr_code(
    db: Session, user_id: int, codec: Optional[SecretCodec] = None
) -> Union[dict, NotEnabled]:
    user, profile = _load(db, user_id, False, codec)
    if profile.status is TwoFactorStatus.DISABLED:
        return NOT_ENABLED
    url = build_totp_uri(profile.secret, label=user.email)
    return {"svg": render_svg(url), "url": url}


def recovery_codes(
    db: Session, user_id: int, codec: Optional[SecretCodec] = None
) -> Union[list[str], NotEnabled]:
    _, profile = _load(db, user_id, False, codec)
    if profile.status is TwoFactorStatus.DISABLED:
        return NOT_ENABLED
    return list(profile.recovery_codes)

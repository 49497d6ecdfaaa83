# backend/app/crud/two_factor.py
"""
Persistence boundary for the two-factor fields of a user row.

Reads meant for a read-modify-write cycle take a row lock
(``SELECT ... FOR UPDATE`` where the database supports it). Every write is
additionally guarded by the row's version column, so a save based on a
stale read is rejected rather than half-applied.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.models.user import User
from app.security.exceptions import TwoFactorConcurrencyError
from app.security.secret_codec import SecretCodec, get_codec
from app.security.two_factor_profile import TwoFactorProfile

logger = logging.getLogger(__name__)


def get_user(db: Session, user_id: int, for_update: bool = False) -> User | None:
    stmt = select(User).where(User.id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
        return db.execute(stmt.execution_options(populate_existing=True)).scalar_one_or_none()
    return db.execute(stmt).scalar_one_or_none()


def profile_from_user(user: User, codec: Optional[SecretCodec] = None) -> TwoFactorProfile:
    if user.two_factor_secret is not None or user.two_factor_recovery_codes is not None:
        codec = codec or get_codec()

    secret = None
    if user.two_factor_secret is not None:
        secret = codec.decrypt_secret(user.id, user.two_factor_secret)

    codes: list[str] = []
    if user.two_factor_recovery_codes is not None:
        codes = codec.decrypt_recovery_codes(user.id, user.two_factor_recovery_codes)

    return TwoFactorProfile(
        account_id=user.id,
        secret=secret,
        recovery_codes=tuple(codes),
        confirmed_at=user.two_factor_confirmed_at,
    )


def load_profile(
    db: Session,
    user_id: int,
    for_update: bool = False,
    codec: Optional[SecretCodec] = None,
) -> tuple[User, TwoFactorProfile] | None:
    u = get_user(db, user_id, for_update=for_update)
    if u is None:
        return None
    return u, profile_from_user(u, codec)


def save_profile(
    db: Session,
    user: User,
    profile: TwoFactorProfile,
    codec: Optional[SecretCodec] = None,
) -> User:
    if profile.account_id != user.id:
        raise ValueError("Profile does not belong to this user")
    if profile.secret is None:
        user.two_factor_secret = None
        user.two_factor_recovery_codes = None
    else:
        codec = codec or get_codec()
        user.two_factor_secret = codec.encrypt_secret(user.id, profile.secret)
        user.two_factor_recovery_codes = codec.encrypt_recovery_codes(
            user.id, list(profile.recovery_codes)
        )
    user.two_factor_confirmed_at = profile.confirmed_at

    db.add(user)
    try:
        db.commit()
    except StaleDataError as e:
        db.rollback()
        logger.warning("Concurrent two-factor update rejected for user %s", user.id)
        raise TwoFactorConcurrencyError(f"Two-factor profile of user {user.id} changed concurrently") from e
    db.refresh(user)
    return user

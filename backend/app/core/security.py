from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from jose import jwt, JWTError

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.security.password_confirmation import PasswordConfirmation

ACCESS_TOKEN = "access"
PASSWORD_CONFIRMATION_TOKEN = "password_confirmation"

_ph = PasswordHasher(
    time_cost=2,
    memory_cost=102400,  # ~100 MB
    parallelism=8,
    hash_len=32,
    salt_len=16,
)


def hash_password(password: str) -> str:
    return _ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return _ph.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def create_access_token(
    subject: str,
    extra: dict | None = None,
    expires_minutes: int | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "typ": ACCESS_TOKEN,
        "iat": int(now.timestamp()),
        "exp": now + timedelta(minutes=expires_minutes or settings.JWT_EXPIRE_MINUTES),
    }
    if extra:
        payload.update(extra)

    return jwt.encode(
        payload,
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_access_token(token: str) -> dict | None:
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError:
        return None


def issue_token(user, remember: bool = False) -> dict:
    """
    Token issuer handoff: the only place that knows what a bearer token is.
    """
    minutes = settings.JWT_REMEMBER_EXPIRE_MINUTES if remember else settings.JWT_EXPIRE_MINUTES
    token = create_access_token(
        subject=str(user.id),
        extra={"mfa": True, "remember": bool(remember)},
        expires_minutes=minutes,
    )
    return {
        "user": user.to_public_dict(),
        "token_type": "Bearer",
        "access_token": token,
        "expires_in": minutes * 60,
    }


def create_password_confirmation_token(user_id: int, confirmed_at: datetime) -> str:
    payload = {
        "sub": str(user_id),
        "typ": PASSWORD_CONFIRMATION_TOKEN,
        "pwc": int(confirmed_at.timestamp()),
        "exp": confirmed_at + timedelta(seconds=settings.PASSWORD_TIMEOUT),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def read_password_confirmation_token(token: str | None) -> Optional[PasswordConfirmation]:
    if not token:
        return None
    payload = decode_access_token(token)
    if not payload or payload.get("typ") != PASSWORD_CONFIRMATION_TOKEN:
        return None
    try:
        return PasswordConfirmation(
            account_id=int(payload["sub"]),
            confirmed_at=datetime.fromtimestamp(int(payload["pwc"]), tz=timezone.utc),
        )
    except (KeyError, TypeError, ValueError):
        return None


_security = HTTPBearer(auto_error=False)


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthenticated.",
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
    db: Session = Depends(get_db),
):
    """
    Dependency: resolve the bearer token to a User.
    Expects: Authorization: Bearer <token>
    Raises: HTTPException 401 if token invalid/expired/user not found
    """
    from app.models.user import User  # avoid circular imports

    if credentials is None:
        raise _unauthorized()

    payload = decode_access_token(credentials.credentials)
    if not payload or not payload.get("sub") or payload.get("typ") != ACCESS_TOKEN:
        raise _unauthorized()

    # only tokens issued after the full login (2FA included) are accepted
    if not payload.get("mfa"):
        raise _unauthorized()

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise _unauthorized()

    user = db.get(User, user_id)
    if not user:
        raise _unauthorized()

    return user


def get_password_confirmation(
    x_password_confirmation: str | None = Header(default=None),
) -> Optional[PasswordConfirmation]:
    return read_password_confirmation_token(x_password_confirmation)

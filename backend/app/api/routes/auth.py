# backend/app/api/routes/auth.py
from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import (
    create_password_confirmation_token,
    get_current_user,
    get_password_confirmation,
    issue_token,
    verify_password,
)
from app.crud.two_factor import load_profile
from app.crud.users import create_user, get_by_email as get_user_by_email
from app.db.session import get_db
from app.models.user import User
from app.schemas.auth import (
    ConfirmedPasswordStatusOut,
    ConfirmPasswordIn,
    LoginIn,
    PasswordConfirmationOut,
    RegisterIn,
    TokenOut,
    TwoFactorRequiredOut,
)
from app.schemas.twofa import TwoFAChallengeRequest
from app.security.challenge import complete_challenge, get_pending_store
from app.security.exceptions import FieldValidationError
from app.security.password_confirmation import PasswordConfirmation
from app.security.two_factor_profile import TwoFactorStatus

router = APIRouter(tags=["auth"])


@router.post("/register", status_code=status.HTTP_201_CREATED, response_model=TokenOut)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    if payload.password_confirmation != payload.password:
        raise FieldValidationError("password", "The password field confirmation does not match.")
    if get_user_by_email(db, payload.email):
        raise FieldValidationError("email", "The email has already been taken.")

    u = create_user(db, payload.name, payload.email, payload.password)
    return issue_token(u)


@router.post("/login", response_model=TokenOut | TwoFactorRequiredOut)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    u = get_user_by_email(db, payload.email)
    if not u or not verify_password(payload.password, u.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    _, profile = load_profile(db, u.id)
    if profile.status is TwoFactorStatus.CONFIRMED:
        pending = get_pending_store().create(u.id, remember=payload.remember)
        return TwoFactorRequiredOut(login_id=pending.login_id)

    return issue_token(u, remember=payload.remember)


@router.post("/two-factor-challenge", response_model=TokenOut)
def two_factor_challenge(payload: TwoFAChallengeRequest, db: Session = Depends(get_db)):
    pending = get_pending_store().get(payload.login_id)
    result = complete_challenge(
        db,
        pending,
        code=payload.code,
        recovery_code=payload.recovery_code,
    )
    return issue_token(result.user, remember=result.remember)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(current_user: User = Depends(get_current_user)):
    """The client discards its bearer token; nothing is kept server side."""
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/user/confirm-password",
    status_code=status.HTTP_201_CREATED,
    response_model=PasswordConfirmationOut,
)
def confirm_password(
    payload: ConfirmPasswordIn,
    current_user: User = Depends(get_current_user),
):
    if not payload.password or not verify_password(payload.password, current_user.password_hash):
        raise FieldValidationError("password", "The provided password was incorrect.")

    confirmed_at = datetime.now(timezone.utc).replace(microsecond=0)
    return PasswordConfirmationOut(
        password_confirmation_token=create_password_confirmation_token(current_user.id, confirmed_at),
        confirmed_at=confirmed_at,
        expires_in=settings.PASSWORD_TIMEOUT,
    )


@router.get("/user/confirmed-password-status", response_model=ConfirmedPasswordStatusOut)
def confirmed_password_status(
    current_user: User = Depends(get_current_user),
    confirmation: PasswordConfirmation | None = Depends(get_password_confirmation),
):
    confirmed = (
        confirmation is not None
        and confirmation.account_id == current_user.id
        and confirmation.is_fresh(datetime.now(timezone.utc))
    )
    return ConfirmedPasswordStatusOut(confirmed=confirmed)

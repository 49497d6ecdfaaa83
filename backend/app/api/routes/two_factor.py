# backend/app/api/routes/two_factor.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.security import get_current_user, get_password_confirmation
from app.db.session import get_db
from app.models.user import User
from app.schemas.twofa import (
    TwoFAConfirmRequest,
    TwoFAQrCodeResponse,
    TwoFASecretKeyResponse,
    TwoFAStatusResponse,
)
from app.security import two_factor
from app.security.password_confirmation import PasswordConfirmation, require_password_confirmation
from app.security.twofa import utcnow

router = APIRouter(prefix="/user", tags=["two-factor"])


def require_recent_password(
    current_user: User = Depends(get_current_user),
    confirmation: PasswordConfirmation | None = Depends(get_password_confirmation),
) -> PasswordConfirmation:
    require_password_confirmation(confirmation, current_user.id, utcnow())
    return confirmation


@router.post("/two-factor-authentication", response_model=TwoFAStatusResponse)
def enable_two_factor(
    current_user: User = Depends(get_current_user),
    confirmation: PasswordConfirmation = Depends(require_recent_password),
    db: Session = Depends(get_db),
):
    profile = two_factor.enable(db, current_user.id, confirmation)
    return TwoFAStatusResponse(status=profile.status.value)


@router.post("/confirmed-two-factor-authentication", response_model=TwoFAStatusResponse)
def confirm_two_factor(
    payload: TwoFAConfirmRequest,
    current_user: User = Depends(get_current_user),
    confirmation: PasswordConfirmation = Depends(require_recent_password),
    db: Session = Depends(get_db),
):
    profile = two_factor.confirm(db, current_user.id, payload.code)
    return TwoFAStatusResponse(status=profile.status.value)


@router.delete("/two-factor-authentication", response_model=TwoFAStatusResponse)
def disable_two_factor(
    current_user: User = Depends(get_current_user),
    confirmation: PasswordConfirmation = Depends(require_recent_password),
    db: Session = Depends(get_db),
):
    profile = two_factor.disable(db, current_user.id, confirmation)
    return TwoFAStatusResponse(status=profile.status.value)


@router.get("/two-factor-qr-code")
def two_factor_qr_code(
    current_user: User = Depends(get_current_user),
    confirmation: PasswordConfirmation = Depends(require_recent_password),
    db: Session = Depends(get_db),
):
    qr = two_factor.qr_code(db, current_user.id)
    if qr is two_factor.NOT_ENABLED:
        return {}
    return TwoFAQrCodeResponse(**qr).model_dump()


@router.get("/two-factor-secret-key")
def two_factor_secret_key(
    current_user: User = Depends(get_current_user),
    confirmation: PasswordConfirmation = Depends(require_recent_password),
    db: Session = Depends(get_db),
):
    key = two_factor.secret_key(db, current_user.id)
    if key is two_factor.NOT_ENABLED:
        return {}
    return TwoFASecretKeyResponse(secret_key=key).model_dump(by_alias=True)


@router.get("/two-factor-recovery-codes", response_model=list[str])
def two_factor_recovery_codes(
    current_user: User = Depends(get_current_user),
    confirmation: PasswordConfirmation = Depends(require_recent_password),
    db: Session = Depends(get_db),
):
    codes = two_factor.recovery_codes(db, current_user.id)
    if codes is two_factor.NOT_ENABLED:
        return []
    return codes


@router.post("/two-factor-recovery-codes", response_model=list[str])
def regenerate_two_factor_recovery_codes(
    current_user: User = Depends(get_current_user),
    confirmation: PasswordConfirmation = Depends(require_recent_password),
    db: Session = Depends(get_db),
):
    return two_factor.regenerate_recovery_codes(db, current_user.id, confirmation)

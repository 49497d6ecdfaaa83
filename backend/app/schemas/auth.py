from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, EmailStr, field_validator, ConfigDict


class RegisterIn(BaseModel):
    """Registration request; the email is stored lowercased."""
    model_config = ConfigDict(extra='forbid')

    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    password_confirmation: str | None = Field(default=None, max_length=128)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('Name cannot be empty')
        return v

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()


class LoginIn(BaseModel):
    model_config = ConfigDict(extra='forbid')

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    remember: bool = False

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()

    @field_validator('password')
    @classmethod
    def validate_password_not_empty(cls, v: str) -> str:
        """Ensure password is not whitespace-only."""
        if not v.strip():
            raise ValueError('Password cannot be empty')
        return v


class UserOut(BaseModel):
    id: int
    name: str
    email: str
    two_factor_confirmed_at: str | None = None
    created_at: str | None = None


class TokenOut(BaseModel):
    """Bearer token handed out after a completed login."""
    model_config = ConfigDict(extra='forbid')

    user: UserOut
    token_type: str = "Bearer"
    access_token: str
    expires_in: int


class TwoFactorRequiredOut(BaseModel):
    """Password accepted, a two-factor challenge must follow."""
    model_config = ConfigDict(extra='forbid')

    two_factor: bool = True
    login_id: str


class ConfirmPasswordIn(BaseModel):
    password: str = Field(default="", max_length=128)


class PasswordConfirmationOut(BaseModel):
    password_confirmation_token: str
    confirmed_at: datetime
    expires_in: int


class ConfirmedPasswordStatusOut(BaseModel):
    confirmed: bool

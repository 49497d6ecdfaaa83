from pydantic import BaseModel, ConfigDict, Field


class TwoFAStatusResponse(BaseModel):
    status: str


class TwoFAConfirmRequest(BaseModel):
    code: str = Field(default="", max_length=16)


class TwoFAChallengeRequest(BaseModel):
    model_config = ConfigDict(extra='forbid')

    login_id: str = Field(default="", max_length=128)
    code: str | None = Field(default=None, max_length=16)
    recovery_code: str | None = Field(default=None, max_length=64)


class TwoFAQrCodeResponse(BaseModel):
    svg: str
    url: str


class TwoFASecretKeyResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    secret_key: str = Field(serialization_alias="secretKey")

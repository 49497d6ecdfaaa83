import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.db.init_db import init_db
from app.api.routes.auth import router as auth_router
from app.api.routes.two_factor import router as two_factor_router
from app.core.config import settings
from app.security.exceptions import (
    FieldValidationError,
    PasswordConfirmationRequired,
    SecretDecryptionError,
    TwoFactorConcurrencyError,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Fortify Bridge", version="0.1.0")

app.include_router(auth_router)
app.include_router(two_factor_router)


@app.exception_handler(FieldValidationError)
async def _validation_error(request: Request, exc: FieldValidationError):
    return JSONResponse(status_code=422, content=exc.to_dict())


@app.exception_handler(PasswordConfirmationRequired)
async def _password_confirmation_required(request: Request, exc: PasswordConfirmationRequired):
    return JSONResponse(status_code=status.HTTP_423_LOCKED, content={"message": exc.message})


@app.exception_handler(TwoFactorConcurrencyError)
async def _concurrent_update(request: Request, exc: TwoFactorConcurrencyError):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"message": "The two factor settings changed, please retry."},
    )


@app.exception_handler(SecretDecryptionError)
async def _decryption_error(request: Request, exc: SecretDecryptionError):
    logger.error("Stored two-factor data could not be decrypted: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Server Error"},
    )


@app.on_event("startup")
def _startup() -> None:
    init_db()
    logger.info("%s started (%s)", settings.app_name, settings.app_env)


@app.get("/health")
def health():
    return {"status": "ok"}

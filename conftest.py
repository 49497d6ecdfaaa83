import base64
import os

# settings are read at import time, so configure the environment first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["TWO_FACTOR_ENCRYPTION_KEY"] = base64.b64encode(b"0123456789abcdef0123456789abcdef").decode()

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.crud.two_factor import get_user, save_profile  # noqa: E402
from app.crud.users import create_user  # noqa: E402
from app.db.init_db import init_db  # noqa: E402
from app.db.session import get_db, make_engine  # noqa: E402
from app.main import app  # noqa: E402
from app.security.challenge import get_pending_store, get_used_codes  # noqa: E402
from app.security.password_confirmation import PasswordConfirmation  # noqa: E402
from app.security.secret_codec import SecretCodec  # noqa: E402
from app.security.twofa import generate_secret  # noqa: E402
from app.security.two_factor_profile import TwoFactorProfile  # noqa: E402

PASSWORD = "Password123!"

# 2026-01-01T00:00:00Z, the start of a 30 second time step
T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture(autouse=True)
def _reset_memory_stores():
    get_pending_store().clear()
    get_used_codes().clear()
    yield
    get_pending_store().clear()
    get_used_codes().clear()


@pytest.fixture
def codec():
    return SecretCodec.from_settings()


@pytest.fixture
def client(session_factory):
    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def user(db):
    return create_user(db, "Test User", "test@example.com", PASSWORD)


@pytest.fixture
def fresh_confirmation(user):
    return PasswordConfirmation(account_id=user.id, confirmed_at=T0)


@pytest.fixture
def make_confirmed(db, codec):
    """Put a user straight into the Confirmed state with known material."""

    def _make(u, secret=None, codes=("recovery-code-1", "recovery-code-2")):
        secret = secret or generate_secret()
        row = get_user(db, u.id, for_update=True)
        save_profile(
            db,
            row,
            TwoFactorProfile(
                account_id=u.id,
                secret=secret,
                recovery_codes=tuple(codes),
                confirmed_at=T0.replace(tzinfo=None),
            ),
            codec,
        )
        return secret

    return _make

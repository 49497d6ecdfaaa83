"""
HTTP tests for the bearer-token auth surface.

Covers login with and without 2FA, password confirmation (step-up),
the /user/two-factor-* endpoints and the two-factor challenge.
"""
import pyotp
import pytest

from app.core.config import settings
from app.crud.two_factor import load_profile, save_profile
from app.crud.users import get_by_email
from app.security import challenge, two_factor
from app.security.challenge import get_pending_store
from app.security.twofa import secret_to_base32
from app.security.two_factor_profile import TwoFactorStatus
from conftest import PASSWORD, T0


def _login(client, email="test@example.com", password=PASSWORD, remember=False):
    return client.post("/login", json={"email": email, "password": password, "remember": remember})


@pytest.fixture
def token(client, user):
    resp = _login(client)
    assert resp.status_code == 200
    return resp.json()["access_token"]


@pytest.fixture
def auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def confirmed_auth(client, auth):
    resp = client.post("/user/confirm-password", json={"password": PASSWORD}, headers=auth)
    assert resp.status_code == 201
    return {**auth, "X-Password-Confirmation": resp.json()["password_confirmation_token"]}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


class TestLogin:
    def test_login_without_two_factor_returns_token(self, client, user):
        resp = _login(client)
        assert resp.status_code == 200
        data = resp.json()
        assert data["token_type"] == "Bearer"
        assert data["access_token"]
        assert data["expires_in"] == 3600
        assert data["user"]["email"] == "test@example.com"

    def test_remember_me_extends_token_lifetime(self, client, user):
        data = _login(client, remember=True).json()
        assert data["expires_in"] == 60 * 24 * 30 * 60

    def test_wrong_password(self, client, user):
        assert _login(client, password="WrongPassword!").status_code == 401

    def test_unknown_email(self, client, user):
        assert _login(client, email="nobody@example.com").status_code == 401

    def test_login_with_two_factor_requires_challenge(self, client, user, make_confirmed):
        make_confirmed(user)
        resp = _login(client)
        assert resp.status_code == 200
        data = resp.json()
        assert data["two_factor"] is True
        assert data["login_id"]
        assert "access_token" not in data

    def test_logout(self, client, auth):
        assert client.post("/logout", headers=auth).status_code == 204

    def test_logout_requires_token(self, client):
        assert client.post("/logout").status_code == 401


class TestPasswordConfirmation:
    def test_confirm_password(self, client, auth):
        resp = client.post("/user/confirm-password", json={"password": PASSWORD}, headers=auth)
        assert resp.status_code == 201
        assert resp.json()["expires_in"] == 10800

    @pytest.mark.parametrize("password", ["WrongPassword!", ""])
    def test_wrong_or_empty_password(self, client, auth, password):
        resp = client.post("/user/confirm-password", json={"password": password}, headers=auth)
        assert resp.status_code == 422
        assert "password" in resp.json()["errors"]

    def test_status_false_without_confirmation(self, client, auth):
        resp = client.get("/user/confirmed-password-status", headers=auth)
        assert resp.json() == {"confirmed": False}

    def test_status_true_after_confirmation(self, client, confirmed_auth):
        resp = client.get("/user/confirmed-password-status", headers=confirmed_auth)
        assert resp.json() == {"confirmed": True}

    def test_requires_authentication(self, client):
        assert client.post("/user/confirm-password", json={"password": PASSWORD}).status_code == 401
        assert client.get("/user/confirmed-password-status").status_code == 401

    def test_confirmation_token_is_not_a_bearer_token(self, client, confirmed_auth):
        headers = {"Authorization": f"Bearer {confirmed_auth['X-Password-Confirmation']}"}
        assert client.get("/user/confirmed-password-status", headers=headers).status_code == 401


class TestTwoFactorManagement:
    def test_enable_requires_authentication(self, client):
        assert client.post("/user/two-factor-authentication").status_code == 401

    def test_enable_requires_password_confirmation(self, client, auth):
        resp = client.post("/user/two-factor-authentication", headers=auth)
        assert resp.status_code == 423

    def test_enable_and_confirm(self, client, db, codec, user, confirmed_auth):
        resp = client.post("/user/two-factor-authentication", headers=confirmed_auth)
        assert resp.status_code == 200
        assert resp.json() == {"status": "pending"}

        db.expire_all()
        _, profile = load_profile(db, user.id, codec=codec)
        assert profile.secret is not None
        assert len(profile.recovery_codes) == 8

        secret_key = client.get("/user/two-factor-secret-key", headers=confirmed_auth).json()["secretKey"]
        assert secret_key == secret_to_base32(profile.secret)

        resp = client.post(
            "/user/confirmed-two-factor-authentication",
            json={"code": pyotp.TOTP(secret_key).now()},
            headers=confirmed_auth,
        )
        assert resp.status_code == 200
        assert resp.json() == {"status": "confirmed"}

        db.expire_all()
        assert load_profile(db, user.id, codec=codec)[1].confirmed_at is not None

    def test_confirm_with_invalid_code(self, client, confirmed_auth):
        client.post("/user/two-factor-authentication", headers=confirmed_auth)
        secret_key = client.get("/user/two-factor-secret-key", headers=confirmed_auth).json()["secretKey"]
        totp = pyotp.TOTP(secret_key)
        wrong = next(c for c in ("000000", "111111", "222222") if not totp.verify(c, valid_window=1))

        resp = client.post(
            "/user/confirmed-two-factor-authentication", json={"code": wrong}, headers=confirmed_auth
        )
        assert resp.status_code == 422
        assert list(resp.json()["errors"]) == ["code"]

    def test_qr_code_after_enable(self, client, confirmed_auth):
        client.post("/user/two-factor-authentication", headers=confirmed_auth)
        resp = client.get("/user/two-factor-qr-code", headers=confirmed_auth)
        assert resp.status_code == 200
        data = resp.json()
        assert set(data) == {"svg", "url"}
        assert data["url"].startswith("otpauth://totp/")

    def test_reads_when_not_enabled_are_empty(self, client, confirmed_auth):
        assert client.get("/user/two-factor-qr-code", headers=confirmed_auth).json() == {}
        assert client.get("/user/two-factor-secret-key", headers=confirmed_auth).json() == {}
        assert client.get("/user/two-factor-recovery-codes", headers=confirmed_auth).json() == []

    def test_recovery_codes(self, client, user, confirmed_auth, make_confirmed):
        codes = ["code-1", "code-2", "code-3", "code-4"]
        make_confirmed(user, codes=codes)
        resp = client.get("/user/two-factor-recovery-codes", headers=confirmed_auth)
        assert resp.status_code == 200
        assert resp.json() == codes

    def test_regenerate_recovery_codes(self, client, user, confirmed_auth, make_confirmed):
        make_confirmed(user, codes=["old-code-1", "old-code-2"])
        resp = client.post("/user/two-factor-recovery-codes", headers=confirmed_auth)
        assert resp.status_code == 200
        new_codes = resp.json()
        assert len(new_codes) == 8
        assert not {"old-code-1", "old-code-2"} & set(new_codes)
        assert client.get("/user/two-factor-recovery-codes", headers=confirmed_auth).json() == new_codes

    def test_disable(self, client, db, user, confirmed_auth, make_confirmed):
        make_confirmed(user)
        resp = client.delete("/user/two-factor-authentication", headers=confirmed_auth)
        assert resp.status_code == 200
        assert resp.json() == {"status": "disabled"}

        db.expire_all()
        row = db.get(type(user), user.id)
        assert row.two_factor_secret is None
        assert row.two_factor_recovery_codes is None
        assert row.two_factor_confirmed_at is None

        again = client.delete("/user/two-factor-authentication", headers=confirmed_auth)
        assert again.status_code == 200

    def test_disable_requires_authentication(self, client):
        assert client.delete("/user/two-factor-authentication").status_code == 401

    def test_corrupt_secret_is_a_server_error(self, client, db, user, confirmed_auth, make_confirmed):
        make_confirmed(user)
        row = db.get(type(user), user.id)
        row.two_factor_secret = b"\x00" * 40
        db.commit()
        resp = client.get("/user/two-factor-secret-key", headers=confirmed_auth)
        assert resp.status_code == 500


class TestTwoFactorChallenge:
    def _pending_login(self, client, remember=False):
        return _login(client, remember=remember).json()["login_id"]

    def test_valid_totp_code(self, client, user, make_confirmed):
        secret = make_confirmed(user)
        login_id = self._pending_login(client)

        resp = client.post(
            "/two-factor-challenge",
            json={"login_id": login_id, "code": pyotp.TOTP(secret_to_base32(secret)).now()},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert set(data) == {"user", "token_type", "access_token", "expires_in"}
        assert data["token_type"] == "Bearer"

        me = client.get("/user/confirmed-password-status", headers={"Authorization": f"Bearer {data['access_token']}"})
        assert me.status_code == 200

    def test_remember_flag_carried_through(self, client, user, make_confirmed):
        secret = make_confirmed(user)
        login_id = self._pending_login(client, remember=True)
        resp = client.post(
            "/two-factor-challenge",
            json={"login_id": login_id, "code": pyotp.TOTP(secret_to_base32(secret)).now()},
        )
        assert resp.json()["expires_in"] == 60 * 24 * 30 * 60

    def test_valid_recovery_code(self, client, db, codec, user, make_confirmed):
        make_confirmed(user, codes=["recovery-code-1", "recovery-code-2", "recovery-code-3"])
        login_id = self._pending_login(client)

        resp = client.post("/two-factor-challenge", json={"login_id": login_id, "recovery_code": "recovery-code-1"})
        assert resp.status_code == 200

        db.expire_all()
        _, profile = load_profile(db, user.id, codec=codec)
        assert "recovery-code-1" not in profile.recovery_codes
        assert list(profile.recovery_codes) == ["recovery-code-2", "recovery-code-3"]

    def test_invalid_code(self, client, user, make_confirmed):
        secret = make_confirmed(user)
        totp = pyotp.TOTP(secret_to_base32(secret))
        wrong = next(c for c in ("000000", "111111", "222222") if not totp.verify(c, valid_window=1))
        login_id = self._pending_login(client)

        resp = client.post("/two-factor-challenge", json={"login_id": login_id, "code": wrong})
        assert resp.status_code == 422
        assert "code" in resp.json()["errors"]

    def test_invalid_recovery_code(self, client, user, make_confirmed):
        make_confirmed(user, codes=["valid-recovery-code"])
        login_id = self._pending_login(client)
        resp = client.post(
            "/two-factor-challenge", json={"login_id": login_id, "recovery_code": "invalid-recovery-code"}
        )
        assert resp.status_code == 422
        assert "recovery_code" in resp.json()["errors"]

    def test_without_pending_login(self, client):
        resp = client.post("/two-factor-challenge", json={"code": "123456"})
        assert resp.status_code == 422

    def test_login_id_is_single_use(self, client, user, make_confirmed):
        make_confirmed(user, codes=["recovery-code-1", "recovery-code-2"])
        login_id = self._pending_login(client)
        first = client.post("/two-factor-challenge", json={"login_id": login_id, "recovery_code": "recovery-code-1"})
        assert first.status_code == 200
        second = client.post("/two-factor-challenge", json={"login_id": login_id, "recovery_code": "recovery-code-2"})
        assert second.status_code == 422

    def test_recovery_code_lost_to_concurrent_disable(
        self, client, db, codec, session_factory, user, make_confirmed, fresh_confirmation, monkeypatch
    ):
        make_confirmed(user, codes=["recovery-code-1", "recovery-code-2"])
        login_id = self._pending_login(client)

        def _save_after_disable(*args, **kwargs):
            other = session_factory()
            try:
                two_factor.disable(other, user.id, fresh_confirmation, now=T0, codec=codec)
            finally:
                other.close()
            return save_profile(*args, **kwargs)

        monkeypatch.setattr(challenge, "save_profile", _save_after_disable)

        resp = client.post("/two-factor-challenge", json={"login_id": login_id, "recovery_code": "recovery-code-1"})
        assert resp.status_code == 422
        assert "recovery_code" in resp.json()["errors"]
        assert "access_token" not in resp.json()

        _, profile = load_profile(db, user.id, for_update=True, codec=codec)
        assert profile.status is TwoFactorStatus.DISABLED

    def test_abandoned_logins_do_not_accumulate(self, client, user, make_confirmed, monkeypatch):
        make_confirmed(user)
        monkeypatch.setattr(settings, "TWO_FACTOR_CHALLENGE_TTL", 0)
        for _ in range(50):
            assert "login_id" in _login(client).json()
        assert len(get_pending_store()) == 1


class TestRegistration:
    def _register(self, client, **overrides):
        payload = {
            "name": "New User",
            "email": "new@example.com",
            "password": PASSWORD,
            "password_confirmation": PASSWORD,
        }
        payload.update(overrides)
        return client.post("/register", json={k: v for k, v in payload.items() if v is not None})

    def test_register_returns_token(self, client, db):
        resp = self._register(client)
        assert resp.status_code == 201
        body = resp.json()
        assert body["token_type"] == "Bearer"
        assert body["access_token"]
        assert body["user"]["email"] == "new@example.com"
        assert body["user"]["name"] == "New User"

        me = {"Authorization": f"Bearer {body['access_token']}"}
        assert client.post("/logout", headers=me).status_code == 204
        assert get_by_email(db, "new@example.com") is not None

    def test_registered_user_can_log_in(self, client):
        self._register(client)
        resp = _login(client, email="new@example.com")
        assert resp.status_code == 200
        assert "access_token" in resp.json()

    def test_email_is_lowercased(self, client, db):
        assert self._register(client, email="New@Example.COM").status_code == 201
        assert get_by_email(db, "new@example.com") is not None

    @pytest.mark.parametrize("field", ["name", "email", "password"])
    def test_missing_field(self, client, field):
        resp = self._register(client, **{field: None})
        assert resp.status_code == 422
        assert any(err["loc"][-1] == field for err in resp.json()["detail"])

    def test_invalid_email(self, client):
        resp = self._register(client, email="not-an-email")
        assert resp.status_code == 422
        assert any(err["loc"][-1] == "email" for err in resp.json()["detail"])

    def test_short_password(self, client):
        resp = self._register(client, password="123", password_confirmation="123")
        assert resp.status_code == 422
        assert any(err["loc"][-1] == "password" for err in resp.json()["detail"])

    @pytest.mark.parametrize("confirmation", ["DifferentPassword123!", None])
    def test_password_confirmation_must_match(self, client, confirmation):
        resp = self._register(client, password_confirmation=confirmation)
        assert resp.status_code == 422
        assert "password" in resp.json()["errors"]

    def test_duplicate_email(self, client, user):
        resp = self._register(client, email="test@example.com")
        assert resp.status_code == 422
        assert "email" in resp.json()["errors"]

"""
At-rest encoding for the TOTP secret and the recovery-code list.

Both are sealed with AES-256-GCM. The associated data binds every blob to
its column and account, so a blob copied onto another row (or into the
other column) fails to decrypt instead of silently verifying.
"""
from __future__ import annotations

import json

from cryptography.exceptions import InvalidTag

from app.core.config import settings
from app.crypto.aead import decrypt_aesgcm, encrypt_aesgcm, load_key
from app.security.exceptions import SecretDecryptionError

SECRET_FIELD = "two_factor_secret"
RECOVERY_CODES_FIELD = "two_factor_recovery_codes"


def _aad(field: str, account_id: int) -> bytes:
    return f"{field}:{account_id}".encode("utf-8")


class SecretCodec:
    def __init__(self, key: bytes):
        self._key = key

    @classmethod
    def from_settings(cls) -> "SecretCodec":
        return cls(load_key(settings.TWO_FACTOR_ENCRYPTION_KEY))

    def _open(self, field: str, account_id: int, blob: bytes) -> bytes:
        try:
            return decrypt_aesgcm(self._key, blob, aad=_aad(field, account_id))
        except InvalidTag as e:
            raise SecretDecryptionError(f"Unable to decrypt {field} for account {account_id}") from e

    def encrypt_secret(self, account_id: int, secret: bytes) -> bytes:
        return encrypt_aesgcm(self._key, secret, aad=_aad(SECRET_FIELD, account_id))

    def decrypt_secret(self, account_id: int, blob: bytes) -> bytes:
        secret = self._open(SECRET_FIELD, account_id, blob)
        if not secret:
            raise SecretDecryptionError(f"Empty {SECRET_FIELD} for account {account_id}")
        return secret

    def encrypt_recovery_codes(self, account_id: int, codes: list[str]) -> bytes:
        payload = json.dumps(list(codes), separators=(",", ":")).encode("utf-8")
        return encrypt_aesgcm(self._key, payload, aad=_aad(RECOVERY_CODES_FIELD, account_id))

    def decrypt_recovery_codes(self, account_id: int, blob: bytes) -> list[str]:
        raw = self._open(RECOVERY_CODES_FIELD, account_id, blob)
        try:
            codes = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise SecretDecryptionError(
                f"Malformed {RECOVERY_CODES_FIELD} for account {account_id}"
            ) from e
        if not isinstance(codes, list) or not all(isinstance(c, str) for c in codes):
            raise SecretDecryptionError(f"Malformed {RECOVERY_CODES_FIELD} for account {account_id}")
        return codes


def get_codec() -> SecretCodec:
    return SecretCodec.from_settings()

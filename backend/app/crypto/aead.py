# app/crypto/aead.py
import base64
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

KEY_LEN = 32
NONCE_LEN = 12
TAG_LEN = 16


def load_key(encoded: str) -> bytes:
    """Decode a base64 AES-256 key from configuration."""
    if not encoded:
        raise RuntimeError("TWO_FACTOR_ENCRYPTION_KEY not set")
    try:
        key = base64.b64decode(encoded, validate=True)
    except ValueError as e:
        raise ValueError("TWO_FACTOR_ENCRYPTION_KEY is not valid base64") from e
    if len(key) != KEY_LEN:
        raise ValueError("TWO_FACTOR_ENCRYPTION_KEY must be 32 bytes (base64-encoded)")
    return key


def encrypt_aesgcm(key: bytes, plaintext: bytes, aad: bytes = b"") -> bytes:
    if len(key) != KEY_LEN:
        raise ValueError("AES-256-GCM requires 32-byte key")
    nonce = os.urandom(NONCE_LEN)
    ct = AESGCM(key).encrypt(nonce, plaintext, aad)
    return nonce + ct


def decrypt_aesgcm(key: bytes, blob: bytes, aad: bytes = b"") -> bytes:
    """Raises InvalidTag when the blob was tampered with or the key/aad differ."""
    if len(key) != KEY_LEN:
        raise ValueError("AES-256-GCM requires 32-byte key")
    if len(blob) < NONCE_LEN + TAG_LEN:
        raise InvalidTag()
    nonce = blob[:NONCE_LEN]
    ct = blob[NONCE_LEN:]
    return AESGCM(key).decrypt(nonce, ct, aad)

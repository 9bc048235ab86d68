import base64
import hashlib
import os
from typing import Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from shared.config import get_required_setting, get_setting

SEALED_PREFIX = "enc1:"
KEY_SETTING = "PAGE_TOKEN_ENC_KEY"
NONCE_BYTES = 12


def _b64decode(value: str) -> bytes:
    return base64.urlsafe_b64decode((value + "=" * (-len(value) % 4)).encode("utf-8"))


def _derive_key(raw: str) -> bytes:
    """Use the setting as a raw AES key when it decodes to one, else hash it."""
    try:
        decoded = _b64decode(raw)
    except ValueError:
        decoded = b""
    if len(decoded) in (16, 24, 32):
        return decoded
    return hashlib.sha256(raw.encode("utf-8")).digest()


def is_sealed(value: Optional[str]) -> bool:
    return bool(value) and str(value).startswith(SEALED_PREFIX)


def seal_token(token: Optional[str]) -> Optional[str]:
    """
    Encrypt a Graph access token for storage.
    Without PAGE_TOKEN_ENC_KEY the token is stored as given.
    """
    raw_key = get_setting(KEY_SETTING)
    if not token or not raw_key or is_sealed(token):
        return token
    nonce = os.urandom(NONCE_BYTES)
    ciphertext = AESGCM(_derive_key(raw_key)).encrypt(nonce, token.encode("utf-8"), None)
    payload = base64.urlsafe_b64encode(nonce + ciphertext).decode("utf-8").rstrip("=")
    return f"{SEALED_PREFIX}{payload}"


def open_token(stored: Optional[str]) -> Optional[str]:
    """Return the plaintext token; values stored before encryption pass through."""
    if not is_sealed(stored):
        return stored
    key = _derive_key(get_required_setting(KEY_SETTING))
    try:
        blob = _b64decode(stored[len(SEALED_PREFIX):])
    except ValueError as exc:
        raise ValueError("Invalid sealed token encoding") from exc
    if len(blob) <= NONCE_BYTES:
        raise ValueError("Invalid sealed token payload")
    return AESGCM(key).decrypt(blob[:NONCE_BYTES], blob[NONCE_BYTES:], None).decode("utf-8")

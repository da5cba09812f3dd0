"""At-rest encryption for stored OAuth credentials.

Tokens are sealed with AES-GCM under a key derived from
``TOKENS_ENCRYPTION_KEY``. Ciphertexts carry an ``enc1:`` prefix so rows
written before a key was configured still read back as plaintext.
"""

from __future__ import annotations

import base64
import hashlib
import json
import os

from cryptography.exceptions import InvalidTag
from cryptography.fernet import InvalidToken
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import get_settings

PREFIX = "enc1:"
KEY_ID = os.getenv("TOKENS_ENCRYPTION_KEY_ID", "k1")


def base64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def base64url_decode(data: str) -> bytes:
    pad = -len(data) % 4
    if pad:
        data += "=" * pad
    return base64.urlsafe_b64decode(data.encode("utf-8"))


def _aead(key: str) -> AESGCM:
    return AESGCM(hashlib.sha256(key.encode("utf-8")).digest())


def encrypt_token(plain: str | None, key: str | None = None) -> str | None:
    """Seal a token for storage; pass-through when no key is configured."""
    if plain is None:
        return None
    key = key if key is not None else get_settings().tokens_encryption_key
    if not key:
        return plain
    nonce = os.urandom(12)
    ct = _aead(key).encrypt(nonce, plain.encode("utf-8"), None)
    envelope = json.dumps(
        {"kid": KEY_ID, "n": base64url_encode(nonce), "ct": base64url_encode(ct)}
    ).encode("utf-8")
    return PREFIX + base64url_encode(envelope)


def decrypt_token(stored: str | None, key: str | None = None) -> str | None:
    """Open a stored token.

    Raises InvalidToken when the value is sealed but cannot be opened with
    the configured key.
    """
    if stored is None or not stored.startswith(PREFIX):
        return stored
    key = key if key is not None else get_settings().tokens_encryption_key
    if not key:
        raise InvalidToken("TOKENS_ENCRYPTION_KEY not configured for sealed token")
    try:
        env = json.loads(base64url_decode(stored[len(PREFIX):]))
        nonce = base64url_decode(env["n"])
        ct = base64url_decode(env["ct"])
        return _aead(key).decrypt(nonce, ct, None).decode("utf-8")
    except (InvalidTag, KeyError, ValueError) as exc:
        raise InvalidToken("Decryption failed") from exc

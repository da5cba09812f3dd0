"""
Signed OAuth state for the Google connect flow.

The state is an HS256 JWT carrying the initiating user, the business being
connected and an optional post-connect redirect path. It expires ten minutes
after issue.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass

import jwt

from ...config import get_settings
from .constants import STATE_TTL_SECONDS
from .errors import STATE_EXPIRED_MESSAGE, ErrorKind, IntegrationError, Result

logger = logging.getLogger(__name__)

_ALGORITHM = "HS256"


@dataclass(frozen=True)
class OAuthState:
    user_id: str
    business_id: str
    issued_at: int
    redirect_path: str | None = None


def _secret(secret: str | None) -> str:
    secret = secret or get_settings().oauth_state_secret
    if not secret:
        raise IntegrationError(ErrorKind.CONFIGURATION_MISSING, details={"missing": ["OAUTH_STATE_SECRET"]})
    return secret


def generate_state(
    user_id: str,
    business_id: str,
    redirect_path: str | None = None,
    *,
    secret: str | None = None,
    now: int | None = None,
) -> str:
    issued = int(now if now is not None else time.time())
    payload = {
        "uid": user_id,
        "bid": business_id,
        "iat": issued,
        "exp": issued + STATE_TTL_SECONDS,
        "nonce": secrets.token_hex(8),
    }
    # Only relative paths, so the state cannot become an open redirect
    if redirect_path and redirect_path.startswith("/") and not redirect_path.startswith("//"):
        payload["rp"] = redirect_path
    return jwt.encode(payload, _secret(secret), algorithm=_ALGORITHM)


def verify_state(token: str | None, *, secret: str | None = None) -> Result[OAuthState]:
    """Validate signature and age of a callback state."""
    if not token:
        return Result.failure(ErrorKind.INVALID_OR_EXPIRED_STATE)
    try:
        payload = jwt.decode(
            token,
            _secret(secret),
            algorithms=[_ALGORITHM],
            options={"require": ["exp", "iat", "uid", "bid"]},
        )
    except jwt.ExpiredSignatureError:
        logger.info("oauth state expired")
        return Result.failure(ErrorKind.INVALID_OR_EXPIRED_STATE, STATE_EXPIRED_MESSAGE)
    except jwt.InvalidTokenError as exc:
        logger.warning("oauth state rejected", extra={"meta": {"error": type(exc).__name__}})
        return Result.failure(ErrorKind.INVALID_OR_EXPIRED_STATE)
    return Result.success(
        OAuthState(
            user_id=str(payload["uid"]),
            business_id=str(payload["bid"]),
            issued_at=int(payload["iat"]),
            redirect_path=payload.get("rp"),
        )
    )

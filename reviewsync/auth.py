"""Caller identity for API routes.

Session management lives elsewhere; this module only verifies the bearer
token it issues and exposes the caller's user and business ids.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

import jwt
from fastapi import HTTPException, Request

from .config import get_settings

_ALGORITHM = "HS256"


@dataclass(frozen=True)
class Caller:
    user_id: str
    business_id: str


def _secret() -> str:
    secret = get_settings().jwt_secret
    if not secret:
        raise HTTPException(status_code=500, detail="JWT_SECRET not configured")
    return secret


def make_access_token(user_id: str, business_id: str, ttl_seconds: int = 3600) -> str:
    now = int(time.time())
    payload = {"user_id": user_id, "business_id": business_id, "iat": now, "exp": now + ttl_seconds}
    return jwt.encode(payload, _secret(), algorithm=_ALGORITHM)


def get_caller(request: Request) -> Caller:
    auth = request.headers.get("Authorization") or ""
    scheme, _, token = auth.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="authentication required")
    try:
        claims = jwt.decode(token.strip(), _secret(), algorithms=[_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="invalid token")
    user_id = claims.get("user_id")
    business_id = claims.get("business_id")
    if not user_id or not business_id:
        raise HTTPException(status_code=403, detail="token is not bound to a business")
    return Caller(user_id=str(user_id), business_id=str(business_id))

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx

from ...config import Settings, get_settings, validate_google_config
from .constants import AUTH_URL, TOKEN_URL, USERINFO_URL
from .errors import ErrorKind

logger = logging.getLogger(__name__)


class GoogleOAuthError(Exception):
    """Token-endpoint failure, already mapped to a taxonomy kind."""

    def __init__(self, kind: ErrorKind, detail: str = "") -> None:
        super().__init__(detail or kind.code)
        self.kind = kind


class InvalidGrantError(GoogleOAuthError):
    """The refresh token or authorization code was rejected (consent revoked)."""

    def __init__(self, detail: str = "invalid_grant") -> None:
        super().__init__(ErrorKind.CREDENTIAL_REVOKED, detail)


@dataclass
class GoogleTokenResponse:
    access_token: str
    refresh_token: str | None
    scope: str
    expires_at: dt.datetime | None

    @classmethod
    def from_payload(cls, td: dict[str, Any], now: dt.datetime | None = None) -> GoogleTokenResponse:
        access_token = td.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise GoogleOAuthError(ErrorKind.UNKNOWN, "token response missing access_token")
        now = now or dt.datetime.now(dt.timezone.utc)
        expires_in = td.get("expires_in")
        try:
            expires_at = now + dt.timedelta(seconds=int(expires_in)) if expires_in is not None else None
        except (TypeError, ValueError) as exc:
            raise GoogleOAuthError(ErrorKind.UNKNOWN, "token response has invalid expires_in") from exc
        return cls(
            access_token=access_token,
            refresh_token=td.get("refresh_token"),
            scope=td.get("scope", ""),
            expires_at=expires_at,
        )


class GoogleOAuth:
    def __init__(self, settings: Settings | None = None, timeout: float = 30.0) -> None:
        self.settings = settings or get_settings()
        self.timeout = timeout

    def _require_config(self) -> None:
        missing = validate_google_config(self.settings)
        if missing:
            logger.error("google oauth not configured", extra={"meta": {"missing": missing}})
            raise GoogleOAuthError(ErrorKind.CONFIGURATION_MISSING, ",".join(missing))

    def get_authorization_url(self, state: str) -> str:
        self._require_config()
        params = {
            "client_id": self.settings.google_client_id,
            "response_type": "code",
            "redirect_uri": self.settings.google_redirect_uri,
            "scope": self.settings.google_scopes,
            "state": state,
            "access_type": "offline",
            "include_granted_scopes": "true",
            "prompt": "consent",
        }
        return f"{AUTH_URL}?{urlencode(params)}"

    async def _post_token(self, data: dict[str, str]) -> dict[str, Any]:
        self._require_config()
        data = {
            **data,
            "client_id": self.settings.google_client_id,
            "client_secret": self.settings.google_client_secret,
        }
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                r = await client.post(TOKEN_URL, data=data, headers=headers)
            except (httpx.RequestError, httpx.TimeoutException) as exc:
                logger.warning("google token endpoint unreachable", extra={"meta": {"error": str(exc)}})
                raise GoogleOAuthError(ErrorKind.NETWORK_TIMEOUT, str(exc)) from exc

        # Never log the response body; it carries tokens on success
        if r.status_code != 200:
            try:
                err = r.json()
            except ValueError:
                err = {}
            error_code = err.get("error") if isinstance(err, dict) else None
            logger.warning(
                "google token endpoint error",
                extra={"meta": {"status": r.status_code, "error": error_code}},
            )
            if error_code == "invalid_grant":
                raise InvalidGrantError()
            if r.status_code >= 500:
                raise GoogleOAuthError(ErrorKind.PROVIDER_UNAVAILABLE, f"status {r.status_code}")
            raise GoogleOAuthError(ErrorKind.UNKNOWN, f"status {r.status_code}: {error_code}")
        try:
            td = r.json()
        except ValueError as exc:
            raise GoogleOAuthError(ErrorKind.UNKNOWN, "token response is not JSON") from exc
        if not isinstance(td, dict):
            raise GoogleOAuthError(ErrorKind.UNKNOWN, "token response is not an object")
        return td

    async def exchange_code_for_tokens(self, code: str) -> GoogleTokenResponse:
        td = await self._post_token(
            {
                "code": code,
                "redirect_uri": self.settings.google_redirect_uri,
                "grant_type": "authorization_code",
            }
        )
        return GoogleTokenResponse.from_payload(td)

    async def refresh_access_token(self, refresh_token: str) -> GoogleTokenResponse:
        td = await self._post_token({"refresh_token": refresh_token, "grant_type": "refresh_token"})
        return GoogleTokenResponse.from_payload(td)

    async def fetch_user_info(self, access_token: str) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                r = await client.get(USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"})
            except (httpx.RequestError, httpx.TimeoutException) as exc:
                raise GoogleOAuthError(ErrorKind.NETWORK_TIMEOUT, str(exc)) from exc
        if r.status_code != 200:
            raise GoogleOAuthError(ErrorKind.UNKNOWN, f"userinfo status {r.status_code}")
        return r.json()

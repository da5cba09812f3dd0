"""Access-token lifecycle for connected Google accounts.

Callers ask for a usable access token and get a :class:`Result`. Refreshes
go through a per-account single-flight so a burst of requests for the same
expired account produces one call to Google's token endpoint.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from cryptography.fernet import InvalidToken
from sqlalchemy.exc import SQLAlchemyError

from ...metrics import GOOGLE_REFRESH_DEDUPED, GOOGLE_REFRESH_FAILED, GOOGLE_REFRESH_SUCCESS
from ...stores.accounts import AccountCredentials, AccountStore
from .constants import TOKEN_EXPIRY_SKEW_SECONDS
from .errors import ErrorKind, IntegrationError, Result
from .oauth import GoogleOAuth, GoogleOAuthError, InvalidGrantError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """At most one running call per key; concurrent callers share its outcome."""

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Future] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, key: str) -> bool:
        return key in self._inflight

    async def run(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        async with self._lock:
            fut = self._inflight.get(key)
            if fut is None:
                fut = asyncio.get_running_loop().create_future()
                self._inflight[key] = fut
                is_initiator = True
            else:
                is_initiator = False

        if not is_initiator:
            GOOGLE_REFRESH_DEDUPED.inc()
            return await asyncio.shield(fut)

        try:
            result = await fn()
            fut.set_result(result)
            return result
        except asyncio.CancelledError:
            fut.cancel()
            raise
        except Exception as e:
            fut.set_exception(e)
            # Mark retrieved so a flight with no waiters does not warn at GC
            fut.exception()
            raise
        finally:
            async with self._lock:
                self._inflight.pop(key, None)


class TokenManager:
    def __init__(
        self,
        store: AccountStore | None = None,
        oauth: GoogleOAuth | None = None,
        skew_seconds: int = TOKEN_EXPIRY_SKEW_SECONDS,
    ) -> None:
        self.store = store or AccountStore()
        self.oauth = oauth
        self.skew_seconds = skew_seconds
        self._flights: SingleFlight[Result[str]] = SingleFlight()

    def _oauth(self) -> GoogleOAuth:
        # Built lazily so settings changes in tests are picked up
        if self.oauth is None:
            self.oauth = GoogleOAuth()
        return self.oauth

    async def _load(self, account_id: str) -> Result[AccountCredentials]:
        try:
            account = await self.store.get(account_id)
        except InvalidToken:
            # Sealed under a different TOKENS_ENCRYPTION_KEY; only a reconnect recovers
            GOOGLE_REFRESH_FAILED.labels(reason="undecryptable").inc()
            logger.error("stored google tokens cannot be decrypted", extra={"meta": {"account_id": account_id}})
            return Result.failure(
                IntegrationError(ErrorKind.CREDENTIAL_REVOKED, details={"reason": "token_decrypt_failed"})
            )
        if account is None:
            return Result.failure(
                IntegrationError(ErrorKind.RESOURCE_NOT_FOUND, details={"account_id": account_id})
            )
        return Result.success(account)

    async def get_valid_access_token(self, account_id: str) -> Result[str]:
        loaded = await self._load(account_id)
        if not loaded.ok:
            return Result.failure(loaded.error)
        account = loaded.value
        if not account.is_expired(self.skew_seconds):
            return Result.success(account.access_token)
        if not account.refresh_token:
            logger.info("google token expired without refresh token", extra={"meta": {"account_id": account_id}})
            return Result.failure(ErrorKind.CREDENTIAL_REVOKED)
        return await self._flights.run(account_id, lambda: self._refresh(account_id, force=False))

    async def force_refresh(self, account_id: str) -> Result[str]:
        """Refresh regardless of the stored expiry (used after a provider 401)."""
        return await self._flights.run(account_id, lambda: self._refresh(account_id, force=True))

    async def _refresh(self, account_id: str, *, force: bool) -> Result[str]:
        # Re-read inside the flight: an earlier flight may have rotated tokens
        loaded = await self._load(account_id)
        if not loaded.ok:
            return Result.failure(loaded.error)
        account = loaded.value
        if not force and not account.is_expired(self.skew_seconds):
            return Result.success(account.access_token)
        if not account.refresh_token:
            return Result.failure(ErrorKind.CREDENTIAL_REVOKED)

        try:
            token = await self._oauth().refresh_access_token(account.refresh_token)
        except InvalidGrantError:
            GOOGLE_REFRESH_FAILED.labels(reason="invalid_grant").inc()
            logger.warning("google refresh token revoked", extra={"meta": {"account_id": account_id}})
            try:
                await self.store.clear_tokens(account_id)
            except SQLAlchemyError as exc:
                logger.error(
                    "failed to clear revoked google tokens",
                    extra={"meta": {"account_id": account_id, "error": str(exc)}},
                )
            return Result.failure(ErrorKind.CREDENTIAL_REVOKED)
        except GoogleOAuthError as exc:
            GOOGLE_REFRESH_FAILED.labels(reason=exc.kind.code).inc()
            logger.warning(
                "google token refresh failed",
                extra={"meta": {"account_id": account_id, "reason": exc.kind.code}},
            )
            if exc.kind is ErrorKind.CONFIGURATION_MISSING:
                return Result.failure(ErrorKind.CONFIGURATION_MISSING)
            return Result.failure(ErrorKind.CREDENTIAL_EXPIRED)

        GOOGLE_REFRESH_SUCCESS.inc()
        try:
            await self.store.update_tokens(
                account_id,
                access_token=token.access_token,
                expires_at=token.expires_at,
                refresh_token=token.refresh_token,
            )
        except (SQLAlchemyError, LookupError) as exc:
            # The fresh token is still valid for this call; the next caller refreshes again
            logger.warning(
                "refreshed google token not persisted",
                extra={"meta": {"account_id": account_id, "error": str(exc)}},
            )
        return Result.success(token.access_token)

"""The single egress point for Google Business Profile data endpoints.

Every call gets a bounded timeout, classified errors, exponential backoff on
retryable kinds and one forced token refresh when the first attempt comes
back with an expired credential.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from ...config import Settings, get_settings
from ...metrics import GOOGLE_API_LATENCY, GOOGLE_API_REQUESTS, GOOGLE_API_RETRIES
from .constants import (
    ACCOUNTS_URL,
    BACKOFF_BASE_SECONDS,
    LOCATIONS_READ_MASK,
    LOCATIONS_URL,
    MAX_ATTEMPTS,
    REPLY_URL,
    REVIEWS_URL,
    SYNC_MAX_PAGES,
    SYNC_PAGE_SIZE,
)
from .errors import ErrorKind, IntegrationError, Result, classify_response
from .token_manager import TokenManager

logger = logging.getLogger(__name__)


class GoogleApiClient:
    def __init__(
        self,
        tokens: TokenManager,
        *,
        settings: Settings | None = None,
        timeout: float | None = None,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_base: float = BACKOFF_BASE_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.tokens = tokens
        self.settings = settings or get_settings()
        self.timeout = timeout if timeout is not None else self.settings.google_api_timeout
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self._transport = transport
        self._sleep = sleep

    def backoff_delay(self, attempt: int, error: IntegrationError) -> float:
        """Delay before the retry that follows failed attempt number ``attempt``."""
        delay = self.backoff_base * (2 ** (attempt - 1))
        if error.retry_after is not None:
            delay = max(delay, error.retry_after)
        return delay

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        token: str,
        json: Any,
        params: dict[str, Any] | None,
    ) -> Result[dict]:
        started = time.perf_counter()
        try:
            r = await client.request(
                method,
                url,
                json=json,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException:
            return Result.failure(IntegrationError(ErrorKind.NETWORK_TIMEOUT, details={"reason": "timeout"}))
        except httpx.RequestError as exc:
            return Result.failure(
                IntegrationError(ErrorKind.NETWORK_TIMEOUT, details={"reason": type(exc).__name__})
            )
        finally:
            GOOGLE_API_LATENCY.labels(method=method).observe(time.perf_counter() - started)

        if 200 <= r.status_code < 300:
            if not r.content:
                return Result.success({})
            try:
                return Result.success(r.json())
            except ValueError:
                return Result.failure(IntegrationError(ErrorKind.UNKNOWN, details={"reason": "invalid_json"}))

        try:
            body = r.json()
        except ValueError:
            body = None
        return Result.failure(classify_response(r.status_code, body, r.headers))

    async def call(
        self,
        account_id: str,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Result[dict]:
        tok = await self.tokens.get_valid_access_token(account_id)
        if not tok.ok:
            GOOGLE_API_REQUESTS.labels(method=method, outcome=tok.error.code).inc()
            return Result.failure(tok.error)
        token = tok.value

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            attempt = 1
            result = await self._send(client, method, url, token, json, params)

            if not result.ok and result.error.kind is ErrorKind.CREDENTIAL_EXPIRED:
                # One refresh-and-retry, outside the retry budget
                logger.info("google api 401; forcing token refresh", extra={"meta": {"account_id": account_id}})
                refreshed = await self.tokens.force_refresh(account_id)
                if not refreshed.ok:
                    GOOGLE_API_REQUESTS.labels(method=method, outcome=refreshed.error.code).inc()
                    return Result.failure(refreshed.error)
                token = refreshed.value
                result = await self._send(client, method, url, token, json, params)
                if not result.ok and result.error.kind is ErrorKind.CREDENTIAL_EXPIRED:
                    # A brand new token rejected again will not improve with waiting
                    GOOGLE_API_REQUESTS.labels(method=method, outcome=result.error.code).inc()
                    return result

            while not result.ok and result.error.retryable and attempt < self.max_attempts:
                delay = self.backoff_delay(attempt, result.error)
                GOOGLE_API_RETRIES.labels(code=result.error.code).inc()
                logger.info(
                    "google api retry",
                    extra={"meta": {"code": result.error.code, "attempt": attempt, "delay": delay}},
                )
                await self._sleep(delay)
                attempt += 1
                result = await self._send(client, method, url, token, json, params)

        outcome = "ok" if result.ok else result.error.code
        GOOGLE_API_REQUESTS.labels(method=method, outcome=outcome).inc()
        if not result.ok:
            logger.warning(
                "google api call failed",
                extra={"meta": {"code": result.error.code, "attempts": attempt, "method": method}},
            )
        return result

    # ---- typed operations ----

    async def list_accounts(self, account_id: str) -> Result[list[dict]]:
        accounts: list[dict] = []
        page_token: str | None = None
        for _ in range(SYNC_MAX_PAGES):
            params = {"pageToken": page_token} if page_token else None
            res = await self.call(account_id, "GET", ACCOUNTS_URL, params=params)
            if not res.ok:
                return Result.failure(res.error)
            accounts.extend(res.value.get("accounts") or [])
            page_token = res.value.get("nextPageToken")
            if not page_token:
                break
        return Result.success(accounts)

    async def list_locations(self, account_id: str, account_name: str) -> Result[list[dict]]:
        url = LOCATIONS_URL.format(account_name=account_name)
        locations: list[dict] = []
        page_token: str | None = None
        for _ in range(SYNC_MAX_PAGES):
            params: dict[str, Any] = {"readMask": LOCATIONS_READ_MASK, "pageSize": 100}
            if page_token:
                params["pageToken"] = page_token
            res = await self.call(account_id, "GET", url, params=params)
            if not res.ok:
                return Result.failure(res.error)
            for loc in res.value.get("locations") or []:
                name = loc.get("name", "")
                # Business Information returns "locations/{id}"; v4 reviews need the account prefix
                if name.startswith("locations/"):
                    loc = {**loc, "name": f"{account_name}/{name}"}
                locations.append(loc)
            page_token = res.value.get("nextPageToken")
            if not page_token:
                break
        return Result.success(locations)

    async def list_reviews(
        self,
        account_id: str,
        location_name: str,
        page_token: str | None = None,
        page_size: int = SYNC_PAGE_SIZE,
    ) -> Result[dict]:
        """Fetch one page of reviews: ``{"reviews": [...], "nextPageToken": ...}``."""
        params: dict[str, Any] = {"pageSize": page_size}
        if page_token:
            params["pageToken"] = page_token
        return await self.call(account_id, "GET", REVIEWS_URL.format(location_name=location_name), params=params)

    async def post_reply(self, account_id: str, review_name: str, comment: str) -> Result[dict]:
        if self.settings.google_mock_post and self.settings.is_dev:
            logger.info("mock google reply post", extra={"meta": {"review_name": review_name}})
            return Result.success(
                {"comment": comment, "updateTime": dt.datetime.now(dt.timezone.utc).isoformat()}
            )
        return await self.call(account_id, "PUT", REPLY_URL.format(review_name=review_name), json={"comment": comment})

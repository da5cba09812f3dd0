from __future__ import annotations

import logging
from urllib.parse import urlencode, urljoin, urlsplit

from cryptography.fernet import InvalidToken
from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from ...auth import Caller, get_caller
from ...config import get_settings
from ...db.models import as_utc
from ...deps import Services, get_services
from ...metrics import OAUTH_CALLBACK, OAUTH_START
from .constants import BUSINESS_MANAGE_SCOPE
from .errors import ErrorKind, IntegrationError, parse_oauth_error
from .oauth import GoogleOAuthError
from .state import generate_state, verify_state

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/google", tags=["Google"])


class SelectLocationBody(BaseModel):
    location_name: str
    location_title: str | None = None


class DisconnectBody(BaseModel):
    remove_account: bool = False


def _settings_redirect(params: dict[str, str], redirect_path: str | None = None) -> RedirectResponse:
    base = get_settings().settings_url
    if redirect_path:
        parts = urlsplit(base)
        base = urljoin(f"{parts.scheme}://{parts.netloc}", redirect_path)
    sep = "&" if "?" in base else "?"
    return RedirectResponse(url=f"{base}{sep}{urlencode(params)}", status_code=302)


def _error_redirect(error: IntegrationError, redirect_path: str | None = None) -> RedirectResponse:
    OAUTH_CALLBACK.labels(provider="google", result=error.code).inc()
    return _settings_redirect({"google_error": error.code}, redirect_path)


async def _account_id_for(caller: Caller, services: Services) -> str:
    conn = await services.connections.get_for_business(caller.business_id)
    if conn is not None:
        return conn.account_id
    try:
        account = await services.accounts.get_for_user(caller.user_id)
    except InvalidToken:
        raise IntegrationError(ErrorKind.CREDENTIAL_REVOKED, details={"reason": "token_decrypt_failed"})
    if account is None:
        raise IntegrationError(ErrorKind.NO_CONNECTION)
    return account.id


@router.get("/auth/start")
async def auth_start(
    redirect: str | None = Query(default=None),
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    state = generate_state(caller.user_id, caller.business_id, redirect)
    try:
        url = services.oauth.get_authorization_url(state)
    except GoogleOAuthError as exc:
        raise IntegrationError(exc.kind)
    OAUTH_START.labels(provider="google").inc()
    return {"auth_url": url}


@router.get("/auth/callback")
async def auth_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    services: Services = Depends(get_services),
):
    if error:
        logger.info("google oauth callback error", extra={"meta": {"error": error}})
        return _error_redirect(parse_oauth_error(error))

    verified = verify_state(state)
    if not verified.ok:
        return _error_redirect(verified.error)
    st = verified.value
    if not code:
        return _error_redirect(IntegrationError(ErrorKind.UNKNOWN), st.redirect_path)

    try:
        token = await services.oauth.exchange_code_for_tokens(code)
        if BUSINESS_MANAGE_SCOPE not in token.scope.split():
            logger.warning("google consent missing business.manage", extra={"meta": {"user_id": st.user_id}})
            return _error_redirect(IntegrationError(ErrorKind.INSUFFICIENT_SCOPE), st.redirect_path)
        profile = await services.oauth.fetch_user_info(token.access_token)
    except GoogleOAuthError as exc:
        return _error_redirect(IntegrationError(exc.kind), st.redirect_path)

    google_sub = str(profile.get("id") or profile.get("sub") or "")
    if not google_sub:
        return _error_redirect(IntegrationError(ErrorKind.UNKNOWN), st.redirect_path)

    account_id = await services.accounts.upsert_from_oauth(
        user_id=st.user_id,
        google_sub=google_sub,
        email=profile.get("email"),
        access_token=token.access_token,
        refresh_token=token.refresh_token,
        scopes=token.scope,
        expires_at=token.expires_at,
    )
    existing = await services.connections.get_for_business(st.business_id)
    await services.connections.upsert(
        st.business_id,
        account_id=account_id,
        location_name=existing.location_name if existing else None,
        location_title=existing.location_title if existing else None,
    )
    OAUTH_CALLBACK.labels(provider="google", result="connected").inc()
    logger.info(
        "google account connected",
        extra={"meta": {"user_id": st.user_id, "business_id": st.business_id, "account_id": account_id}},
    )
    return _settings_redirect({"google": "connected"}, st.redirect_path)


@router.get("/locations")
async def list_locations(caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    account_id = await _account_id_for(caller, services)
    accounts = (await services.client.list_accounts(account_id)).unwrap()
    out = []
    for acct in accounts:
        account_name = acct.get("name")
        if not account_name:
            continue
        for loc in (await services.client.list_locations(account_id, account_name)).unwrap():
            address = loc.get("storefrontAddress") or {}
            out.append(
                {
                    "name": loc.get("name"),
                    "title": loc.get("title"),
                    "account_name": account_name,
                    "account_display_name": acct.get("accountName"),
                    "address": ", ".join(
                        p for p in [*(address.get("addressLines") or []), address.get("locality")] if p
                    ),
                }
            )
    return {"locations": out}


@router.post("/locations/select")
async def select_location(
    body: SelectLocationBody,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    if not body.location_name.startswith("accounts/") or "/locations/" not in body.location_name:
        raise IntegrationError(ErrorKind.RESOURCE_NOT_FOUND, details={"location_name": body.location_name})
    account_id = await _account_id_for(caller, services)
    conn = await services.connections.upsert(
        caller.business_id,
        account_id=account_id,
        location_name=body.location_name,
        location_title=body.location_title,
    )
    return {"business_id": conn.business_id, "location_name": conn.location_name, "location_title": conn.location_title}


@router.get("/status")
async def status(caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    conn = await services.connections.get_for_business(caller.business_id)
    if conn is None:
        return {"connected": False}
    try:
        account = await services.accounts.get(conn.account_id)
    except InvalidToken:
        logger.error("stored google tokens cannot be decrypted", extra={"meta": {"account_id": conn.account_id}})
        account = None
    last_synced = as_utc(conn.last_synced_at)
    return {
        "connected": account is not None and bool(account.refresh_token or account.access_token),
        "email": account.email if account else None,
        "has_business_scope": bool(account and BUSINESS_MANAGE_SCOPE in account.scopes),
        "location_name": conn.location_name,
        "location_title": conn.location_title,
        "sync_enabled": conn.sync_enabled,
        "last_synced_at": last_synced.isoformat() if last_synced else None,
    }


@router.post("/disconnect")
async def disconnect(
    body: DisconnectBody | None = None,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    conn = await services.connections.delete(caller.business_id)
    if conn is not None and body is not None and body.remove_account:
        await services.accounts.delete(conn.account_id)
    logger.info("google disconnected", extra={"meta": {"business_id": caller.business_id}})
    return {"disconnected": conn is not None}


@router.post("/sync")
async def sync(caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    summary = (await services.sync.sync_business(caller.business_id)).unwrap()
    return {
        "imported_count": summary.imported_count,
        "updated_count": summary.updated_count,
        "skipped_count": summary.skipped_count,
        "partial": summary.partial,
    }

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from reviewsync.integrations.google.errors import ErrorKind
from reviewsync.integrations.google.oauth import GoogleOAuth, GoogleOAuthError, InvalidGrantError
from reviewsync.integrations.google.token_manager import TokenManager
from reviewsync.stores.accounts import AccountCredentials


class DummyResponse:
    def __init__(self, status_code, json_data):
        self.status_code = status_code
        self._json = json_data

    def json(self):
        return self._json


class DummyAsyncClient:
    def __init__(self, resp: DummyResponse = None, raise_exc: Exception | None = None):
        self._resp = resp
        self._raise = raise_exc
        self.posted = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, url, data=None, headers=None):
        if self._raise:
            raise self._raise
        self.posted = data
        return self._resp


def _patch(monkeypatch, client):
    monkeypatch.setattr(
        "reviewsync.integrations.google.oauth.httpx.AsyncClient",
        lambda timeout: client,
    )


def test_authorization_url_requests_offline_consent():
    url = GoogleOAuth().get_authorization_url("st")
    q = parse_qs(urlsplit(url).query)
    assert q["access_type"] == ["offline"]
    assert q["prompt"] == ["consent"]
    assert q["state"] == ["st"]
    assert "https://www.googleapis.com/auth/business.manage" in q["scope"][0].split()


def test_authorization_url_requires_config(monkeypatch):
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "")
    from reviewsync.config import reset_settings

    reset_settings()
    with pytest.raises(GoogleOAuthError) as ei:
        GoogleOAuth().get_authorization_url("st")
    assert ei.value.kind is ErrorKind.CONFIGURATION_MISSING


@pytest.mark.asyncio
async def test_refresh_success(monkeypatch):
    client = DummyAsyncClient(DummyResponse(200, {"access_token": "at", "expires_in": 3600}))
    _patch(monkeypatch, client)

    token = await GoogleOAuth().refresh_access_token("rt")
    assert token.access_token == "at"
    assert token.refresh_token is None
    assert token.expires_at is not None
    assert client.posted["grant_type"] == "refresh_token"
    assert client.posted["refresh_token"] == "rt"


@pytest.mark.asyncio
async def test_refresh_invalid_grant(monkeypatch):
    _patch(monkeypatch, DummyAsyncClient(DummyResponse(400, {"error": "invalid_grant", "error_description": "revoked"})))
    with pytest.raises(InvalidGrantError) as ei:
        await GoogleOAuth().refresh_access_token("rt")
    assert ei.value.kind is ErrorKind.CREDENTIAL_REVOKED


@pytest.mark.asyncio
async def test_refresh_server_error(monkeypatch):
    _patch(monkeypatch, DummyAsyncClient(DummyResponse(503, {})))
    with pytest.raises(GoogleOAuthError) as ei:
        await GoogleOAuth().refresh_access_token("rt")
    assert ei.value.kind is ErrorKind.PROVIDER_UNAVAILABLE


@pytest.mark.asyncio
async def test_exchange_timeout(monkeypatch):
    _patch(monkeypatch, DummyAsyncClient(raise_exc=httpx.TimeoutException("timeout")))
    with pytest.raises(GoogleOAuthError) as ei:
        await GoogleOAuth().exchange_code_for_tokens("code123")
    assert ei.value.kind is ErrorKind.NETWORK_TIMEOUT


class NotJsonResponse(DummyResponse):
    def json(self):
        raise ValueError("Expecting value: line 1 column 1 (char 0)")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "resp",
    [
        DummyResponse(200, {"error": "weird"}),
        DummyResponse(200, {"access_token": "at", "expires_in": "soon"}),
        DummyResponse(200, ["at"]),
        NotJsonResponse(200, None),
    ],
)
async def test_refresh_malformed_success_body(monkeypatch, resp):
    _patch(monkeypatch, DummyAsyncClient(resp))
    with pytest.raises(GoogleOAuthError) as ei:
        await GoogleOAuth().refresh_access_token("rt")
    assert ei.value.kind is ErrorKind.UNKNOWN


@pytest.mark.asyncio
async def test_token_manager_maps_malformed_refresh_to_expired(monkeypatch):
    _patch(monkeypatch, DummyAsyncClient(DummyResponse(200, {"error": "weird"})))

    class ExpiredStore:
        async def get(self, account_id):
            return AccountCredentials(
                id=account_id, user_id="u", google_sub="s", access_token="stale", refresh_token="rt"
            )

    res = await TokenManager(ExpiredStore(), GoogleOAuth()).get_valid_access_token("acct-1")
    assert res.error.kind is ErrorKind.CREDENTIAL_EXPIRED

import json
import httpx
import pytest

from reviewsync.integrations.google.client import GoogleApiClient
from reviewsync.integrations.google.errors import ErrorKind, Result


class FakeTokens:
    def __init__(self, token="t1", refreshed="t2", refresh_result: Result | None = None):
        self.token = token
        self.refreshed = refreshed
        self.refresh_result = refresh_result
        self.force_calls = 0

    async def get_valid_access_token(self, account_id):
        return Result.success(self.token)

    async def force_refresh(self, account_id):
        self.force_calls += 1
        if self.refresh_result is not None:
            return self.refresh_result
        return Result.success(self.refreshed)


class Recorder:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _client(recorder, tokens=None, sleeps=None):
    async def fake_sleep(delay):
        if sleeps is not None:
            sleeps.append(delay)

    return GoogleApiClient(
        tokens or FakeTokens(),
        transport=httpx.MockTransport(recorder),
        sleep=fake_sleep,
    )


URL = "https://mybusiness.googleapis.com/v4/accounts/1/locations/2/reviews"


@pytest.mark.asyncio
async def test_success_sends_bearer_token():
    rec = Recorder([httpx.Response(200, json={"reviews": []})])
    res = await _client(rec).call("acct", "GET", URL)
    assert res.ok and res.value == {"reviews": []}
    assert rec.requests[0].headers["Authorization"] == "Bearer t1"


@pytest.mark.asyncio
async def test_empty_body_is_empty_dict():
    rec = Recorder([httpx.Response(204)])
    res = await _client(rec).call("acct", "PUT", URL)
    assert res.ok and res.value == {}


@pytest.mark.asyncio
async def test_429_retried_with_backoff_up_to_three_attempts():
    sleeps = []
    rec = Recorder([httpx.Response(429, json={}) for _ in range(3)])
    res = await _client(rec, sleeps=sleeps).call("acct", "GET", URL)
    assert res.error.kind is ErrorKind.RATE_LIMITED
    assert res.error.retryable is True
    assert len(rec.requests) == 3
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retry_after_hint_extends_backoff():
    sleeps = []
    rec = Recorder([httpx.Response(429, headers={"Retry-After": "5"}), httpx.Response(200, json={"ok": 1})])
    res = await _client(rec, sleeps=sleeps).call("acct", "GET", URL)
    assert res.ok
    assert sleeps == [5.0]


@pytest.mark.asyncio
async def test_5xx_then_success():
    sleeps = []
    rec = Recorder([httpx.Response(503), httpx.Response(502), httpx.Response(200, json={"a": 1})])
    res = await _client(rec, sleeps=sleeps).call("acct", "GET", URL)
    assert res.value == {"a": 1}
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_timeout_is_retryable_network_error():
    rec = Recorder([httpx.ReadTimeout("slow"), httpx.Response(200, json={})])
    res = await _client(rec).call("acct", "GET", URL)
    assert res.ok
    assert len(rec.requests) == 2


@pytest.mark.asyncio
async def test_timeouts_exhaust_budget():
    rec = Recorder([httpx.ConnectTimeout("x") for _ in range(3)])
    res = await _client(rec).call("acct", "GET", URL)
    assert res.error.kind is ErrorKind.NETWORK_TIMEOUT
    assert len(rec.requests) == 3


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,body,kind",
    [
        (401, {"error": "invalid_token"}, ErrorKind.CREDENTIAL_REVOKED),
        (403, {"error": {"errors": [{"reason": "insufficientPermissions"}]}}, ErrorKind.INSUFFICIENT_SCOPE),
        (404, {}, ErrorKind.RESOURCE_NOT_FOUND),
        (400, {}, ErrorKind.UNKNOWN),
    ],
)
async def test_non_retryable_fail_immediately(status, body, kind):
    sleeps = []
    rec = Recorder([httpx.Response(status, json=body)])
    tokens = FakeTokens()
    res = await _client(rec, tokens, sleeps).call("acct", "GET", URL)
    assert res.error.kind is kind
    assert res.error.retryable is False
    assert len(rec.requests) == 1
    assert sleeps == []
    assert tokens.force_calls == 0


@pytest.mark.asyncio
async def test_expired_credential_forces_one_refresh():
    rec = Recorder([httpx.Response(401, json={"error": {"status": "UNAUTHENTICATED"}}), httpx.Response(200, json={"x": 1})])
    tokens = FakeTokens()
    res = await _client(rec, tokens).call("acct", "GET", URL)
    assert res.value == {"x": 1}
    assert tokens.force_calls == 1
    assert rec.requests[1].headers["Authorization"] == "Bearer t2"


@pytest.mark.asyncio
async def test_escalation_attempt_is_outside_retry_budget():
    sleeps = []
    rec = Recorder(
        [
            httpx.Response(401, json={}),
            httpx.Response(503),
            httpx.Response(503),
            httpx.Response(200, json={"done": True}),
        ]
    )
    tokens = FakeTokens()
    res = await _client(rec, tokens, sleeps).call("acct", "GET", URL)
    assert res.value == {"done": True}
    assert len(rec.requests) == 4
    assert tokens.force_calls == 1


@pytest.mark.asyncio
async def test_expired_again_after_refresh_gives_up():
    rec = Recorder([httpx.Response(401, json={}), httpx.Response(401, json={})])
    tokens = FakeTokens()
    res = await _client(rec, tokens).call("acct", "GET", URL)
    assert res.error.kind is ErrorKind.CREDENTIAL_EXPIRED
    assert len(rec.requests) == 2
    assert tokens.force_calls == 1


@pytest.mark.asyncio
async def test_failed_forced_refresh_short_circuits():
    rec = Recorder([httpx.Response(401, json={})])
    tokens = FakeTokens(refresh_result=Result.failure(ErrorKind.CREDENTIAL_REVOKED))
    res = await _client(rec, tokens).call("acct", "GET", URL)
    assert res.error.kind is ErrorKind.CREDENTIAL_REVOKED
    assert len(rec.requests) == 1


@pytest.mark.asyncio
async def test_token_manager_failure_short_circuits():
    class NoTokens(FakeTokens):
        async def get_valid_access_token(self, account_id):
            return Result.failure(ErrorKind.CREDENTIAL_REVOKED)

    rec = Recorder([])
    res = await _client(rec, NoTokens()).call("acct", "GET", URL)
    assert res.error.kind is ErrorKind.CREDENTIAL_REVOKED
    assert rec.requests == []


@pytest.mark.asyncio
async def test_list_locations_prefixes_account_name():
    rec = Recorder(
        [httpx.Response(200, json={"locations": [{"name": "locations/9", "title": "Main St"}]})]
    )
    res = await _client(rec).list_locations("acct", "accounts/1")
    assert res.value == [{"name": "accounts/1/locations/9", "title": "Main St"}]
    assert rec.requests[0].url.params["readMask"] == "name,title,storefrontAddress"


@pytest.mark.asyncio
async def test_post_reply_puts_comment():
    rec = Recorder([httpx.Response(200, json={"comment": "Thanks!", "updateTime": "2024-05-01T00:00:00Z"})])
    res = await _client(rec).post_reply("acct", "accounts/1/locations/2/reviews/r1", "Thanks!")
    assert res.value["updateTime"] == "2024-05-01T00:00:00Z"
    req = rec.requests[0]
    assert req.method == "PUT"
    assert str(req.url) == "https://mybusiness.googleapis.com/v4/accounts/1/locations/2/reviews/r1/reply"
    assert json.loads(req.content) == {"comment": "Thanks!"}


@pytest.mark.asyncio
async def test_mock_post_mode_skips_google(monkeypatch):
    monkeypatch.setenv("GOOGLE_MOCK_POST", "1")
    from reviewsync.config import reset_settings

    reset_settings()
    rec = Recorder([])
    res = await _client(rec).post_reply("acct", "accounts/1/locations/2/reviews/r1", "Thanks!")
    assert res.ok and res.value["comment"] == "Thanks!"
    assert rec.requests == []

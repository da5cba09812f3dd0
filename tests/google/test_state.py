import time

from reviewsync.integrations.google.errors import STATE_EXPIRED_MESSAGE, ErrorKind
from reviewsync.integrations.google.state import generate_state, verify_state


def test_state_round_trip():
    token = generate_state("user-1", "biz-1", "/settings/integrations")
    res = verify_state(token)
    assert res.ok
    assert res.value.user_id == "user-1"
    assert res.value.business_id == "biz-1"
    assert res.value.redirect_path == "/settings/integrations"


def test_state_drops_absolute_redirect():
    res = verify_state(generate_state("u", "b", "https://evil.example/"))
    assert res.ok
    assert res.value.redirect_path is None


def test_expired_state():
    old = int(time.time()) - 601
    res = verify_state(generate_state("u", "b", now=old))
    assert not res.ok
    assert res.error.kind is ErrorKind.INVALID_OR_EXPIRED_STATE
    assert res.error.message == STATE_EXPIRED_MESSAGE


def test_tampered_state():
    token = generate_state("u", "b")
    res = verify_state(token, secret="another-secret")
    assert not res.ok
    assert res.error.kind is ErrorKind.INVALID_OR_EXPIRED_STATE


def test_missing_state():
    assert verify_state(None).error.kind is ErrorKind.INVALID_OR_EXPIRED_STATE

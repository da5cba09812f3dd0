import pytest
from cryptography.fernet import InvalidToken

from reviewsync.crypto_tokens import PREFIX, decrypt_token, encrypt_token


def test_passthrough_without_key():
    assert encrypt_token("abc", key="") == "abc"
    assert decrypt_token("abc", key="") == "abc"
    assert encrypt_token(None) is None


def test_sealed_tokens_round_trip_and_hide_plaintext():
    sealed = encrypt_token("ya29.secret", key="k")
    assert sealed.startswith(PREFIX)
    assert "ya29" not in sealed
    assert decrypt_token(sealed, key="k") == "ya29.secret"


def test_legacy_plaintext_still_reads_with_key():
    assert decrypt_token("plain-token", key="k") == "plain-token"


def test_wrong_key_raises():
    sealed = encrypt_token("ya29.secret", key="k1")
    with pytest.raises(InvalidToken):
        decrypt_token(sealed, key="k2")


@pytest.mark.asyncio
async def test_account_store_seals_tokens_at_rest(db, monkeypatch):
    monkeypatch.setenv("TOKENS_ENCRYPTION_KEY", "at-rest-key")
    from reviewsync.config import reset_settings
    from reviewsync.db.core import get_async_session
    from reviewsync.db.models import GoogleAccount
    from reviewsync.stores import AccountStore

    reset_settings()
    store = AccountStore()
    account_id = await store.upsert_from_oauth(
        user_id="u", google_sub="s", email=None, access_token="at", refresh_token="rt", scopes="", expires_at=None
    )
    async with get_async_session() as session:
        row = await session.get(GoogleAccount, account_id)
        assert row.access_token.startswith(PREFIX)
        assert row.refresh_token.startswith(PREFIX)

    creds = await store.get(account_id)
    assert (creds.access_token, creds.refresh_token) == ("at", "rt")

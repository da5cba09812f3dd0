from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field

from sqlalchemy import select

from ..crypto_tokens import decrypt_token, encrypt_token
from ..db.core import get_async_session
from ..db.models import GoogleAccount, as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class AccountCredentials:
    """Decrypted view of a connected Google account."""

    id: str
    user_id: str
    google_sub: str
    access_token: str | None
    refresh_token: str | None = None
    email: str | None = None
    scopes: set[str] = field(default_factory=set)
    expires_at: dt.datetime | None = None

    def is_expired(self, buffer_seconds: int = 300, now: dt.datetime | None = None) -> bool:
        """True when the access token is within ``buffer_seconds`` of expiry.

        An unknown expiry counts as expired.
        """
        if self.expires_at is None or not self.access_token:
            return True
        now = now or utcnow()
        return self.expires_at - dt.timedelta(seconds=buffer_seconds) <= now

    @classmethod
    def from_row(cls, row: GoogleAccount) -> AccountCredentials:
        return cls(
            id=row.id,
            user_id=row.user_id,
            google_sub=row.google_sub,
            access_token=decrypt_token(row.access_token),
            refresh_token=decrypt_token(row.refresh_token),
            email=row.email,
            scopes=row.scope_set,
            expires_at=as_utc(row.expires_at),
        )


class AccountStore:
    """Credential store for connected Google accounts."""

    async def get(self, account_id: str) -> AccountCredentials | None:
        async with get_async_session() as session:
            row = await session.get(GoogleAccount, account_id)
            return AccountCredentials.from_row(row) if row else None

    async def get_for_user(self, user_id: str) -> AccountCredentials | None:
        async with get_async_session() as session:
            stmt = (
                select(GoogleAccount)
                .where(GoogleAccount.user_id == user_id)
                .order_by(GoogleAccount.updated_at.desc())
                .limit(1)
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            return AccountCredentials.from_row(row) if row else None

    async def upsert_from_oauth(
        self,
        *,
        user_id: str,
        google_sub: str,
        email: str | None,
        access_token: str,
        refresh_token: str | None,
        scopes: str,
        expires_at: dt.datetime | None,
    ) -> str:
        """Create or refresh the account row for (user, google sub); returns its id.

        A reconnect without a refresh token keeps the stored one.
        """
        async with get_async_session() as session:
            stmt = select(GoogleAccount).where(
                GoogleAccount.user_id == user_id, GoogleAccount.google_sub == google_sub
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                row = GoogleAccount(user_id=user_id, google_sub=google_sub)
                session.add(row)
            row.email = email
            row.access_token = encrypt_token(access_token)
            if refresh_token:
                row.refresh_token = encrypt_token(refresh_token)
            row.scopes = scopes
            row.expires_at = expires_at
            await session.commit()
            return row.id

    async def update_tokens(
        self,
        account_id: str,
        *,
        access_token: str,
        expires_at: dt.datetime | None,
        refresh_token: str | None = None,
    ) -> None:
        async with get_async_session() as session:
            row = await session.get(GoogleAccount, account_id)
            if row is None:
                raise LookupError(f"google account {account_id} not found")
            row.access_token = encrypt_token(access_token)
            row.expires_at = expires_at
            if refresh_token:
                row.refresh_token = encrypt_token(refresh_token)
            await session.commit()

    async def clear_tokens(self, account_id: str) -> None:
        """Null both credentials; the account must be reconnected."""
        async with get_async_session() as session:
            row = await session.get(GoogleAccount, account_id)
            if row is None:
                return
            row.access_token = None
            row.refresh_token = None
            row.expires_at = None
            await session.commit()
        logger.info("google credentials cleared", extra={"meta": {"account_id": account_id}})

    async def delete(self, account_id: str) -> None:
        async with get_async_session() as session:
            row = await session.get(GoogleAccount, account_id)
            if row is not None:
                await session.delete(row)
                await session.commit()

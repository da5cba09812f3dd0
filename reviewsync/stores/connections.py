from __future__ import annotations

import datetime as dt

from sqlalchemy import select

from ..db.core import get_async_session
from ..db.models import LocationConnection, utcnow


class ConnectionStore:
    async def get_for_business(self, business_id: str) -> LocationConnection | None:
        async with get_async_session() as session:
            stmt = select(LocationConnection).where(LocationConnection.business_id == business_id)
            return (await session.execute(stmt)).scalar_one_or_none()

    async def list_sync_enabled(self) -> list[LocationConnection]:
        async with get_async_session() as session:
            stmt = (
                select(LocationConnection)
                .where(LocationConnection.sync_enabled.is_(True))
                .order_by(LocationConnection.business_id)
            )
            return list((await session.execute(stmt)).scalars())

    async def upsert(
        self,
        business_id: str,
        *,
        account_id: str,
        location_name: str | None,
        location_title: str | None = None,
        sync_enabled: bool = True,
    ) -> LocationConnection:
        async with get_async_session() as session:
            stmt = select(LocationConnection).where(LocationConnection.business_id == business_id)
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                row = LocationConnection(business_id=business_id, account_id=account_id)
                session.add(row)
            elif row.location_name != location_name:
                # New location: previous sync watermark no longer applies
                row.last_synced_at = None
            row.account_id = account_id
            row.location_name = location_name
            row.location_title = location_title
            row.sync_enabled = sync_enabled
            await session.commit()
            return row

    async def mark_synced(self, business_id: str, when: dt.datetime | None = None) -> None:
        async with get_async_session() as session:
            stmt = select(LocationConnection).where(LocationConnection.business_id == business_id)
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                return
            row.last_synced_at = when or utcnow()
            await session.commit()

    async def delete(self, business_id: str) -> LocationConnection | None:
        async with get_async_session() as session:
            stmt = select(LocationConnection).where(LocationConnection.business_id == business_id)
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is not None:
                await session.delete(row)
                await session.commit()
            return row

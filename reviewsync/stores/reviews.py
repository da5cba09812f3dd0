from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..db.core import get_async_session
from ..db.models import REVIEW_SOURCE_GOOGLE, Review

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewPayload:
    """Canonical review shape produced by provider mapping."""

    business_id: str
    external_id: str
    author_name: str
    rating: int
    text: str | None
    reviewed_at: dt.datetime | None
    source: str = REVIEW_SOURCE_GOOGLE
    external_name: str | None = None
    reviewer_profile_url: str | None = None


def _apply(row: Review, payload: ReviewPayload) -> None:
    row.author_name = payload.author_name
    row.rating = payload.rating
    row.text = payload.text
    row.reviewed_at = payload.reviewed_at
    row.reviewer_profile_url = payload.reviewer_profile_url
    if payload.external_name:
        row.external_name = payload.external_name


class ReviewStore:
    async def get(self, review_id: str) -> Review | None:
        async with get_async_session() as session:
            return await session.get(Review, review_id)

    async def get_by_external(self, business_id: str, source: str, external_id: str) -> Review | None:
        async with get_async_session() as session:
            stmt = select(Review).where(
                Review.business_id == business_id,
                Review.source == source,
                Review.external_id == external_id,
            )
            return (await session.execute(stmt)).scalar_one_or_none()

    async def upsert(self, payload: ReviewPayload) -> tuple[str, bool]:
        """Insert or update by (business, source, external id).

        Returns ``(review_id, is_new)``. Only mutable fields are touched on
        update; status and ids are left alone.
        """
        async with get_async_session() as session:
            stmt = select(Review).where(
                Review.business_id == payload.business_id,
                Review.source == payload.source,
                Review.external_id == payload.external_id,
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is not None:
                _apply(row, payload)
                await session.commit()
                return row.id, False

            row = Review(
                business_id=payload.business_id,
                source=payload.source,
                external_id=payload.external_id,
            )
            _apply(row, payload)
            session.add(row)
            try:
                await session.commit()
                return row.id, True
            except IntegrityError:
                # A concurrent sync inserted the same key first
                await session.rollback()

        logger.info(
            "review upsert lost insert race; updating",
            extra={"meta": {"business_id": payload.business_id, "external_id": payload.external_id}},
        )
        async with get_async_session() as session:
            row = (await session.execute(stmt)).scalar_one()
            _apply(row, payload)
            await session.commit()
            return row.id, False

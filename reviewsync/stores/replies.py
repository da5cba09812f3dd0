from __future__ import annotations

import datetime as dt

from sqlalchemy import func, or_, select, update

from ..db.core import get_async_session
from ..db.models import REPLY_CHANNEL_GOOGLE, ReplyGeneration, ReplyStatus, Review, ReviewReply, utcnow

_EDITABLE = (ReplyStatus.DRAFT.value, ReplyStatus.APPROVED.value, ReplyStatus.FAILED.value)


class ReplyStore:
    async def get(self, reply_id: str) -> ReviewReply | None:
        async with get_async_session() as session:
            return await session.get(ReviewReply, reply_id)

    async def get_for_review(self, review_id: str, channel: str = REPLY_CHANNEL_GOOGLE) -> ReviewReply | None:
        async with get_async_session() as session:
            stmt = select(ReviewReply).where(ReviewReply.review_id == review_id, ReviewReply.channel == channel)
            return (await session.execute(stmt)).scalar_one_or_none()

    async def count_generations_since(self, business_id: str, since: dt.datetime) -> int:
        """Every generation counts, including regenerations of an existing reply."""
        async with get_async_session() as session:
            stmt = select(func.count(ReplyGeneration.id)).where(
                ReplyGeneration.business_id == business_id, ReplyGeneration.created_at >= since
            )
            return int((await session.execute(stmt)).scalar_one())

    async def save_generation(
        self,
        *,
        review_id: str,
        business_id: str,
        text: str,
        risk_tags: list[str],
        channel: str = REPLY_CHANNEL_GOOGLE,
    ) -> ReviewReply:
        """Store a freshly generated draft and bump the generation count."""
        async with get_async_session() as session:
            stmt = select(ReviewReply).where(ReviewReply.review_id == review_id, ReviewReply.channel == channel)
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                row = ReviewReply(review_id=review_id, business_id=business_id, channel=channel, generation_count=0)
                session.add(row)
                await session.flush()
            row.draft_text = text
            row.risk_tags = list(risk_tags)
            row.status = ReplyStatus.DRAFT.value
            row.generation_count = (row.generation_count or 0) + 1
            row.last_error_code = None
            row.last_error_message = None
            session.add(ReplyGeneration(reply_id=row.id, business_id=business_id))
            await session.commit()
            return row

    async def save_draft(self, reply_id: str, text: str) -> ReviewReply | None:
        """Replace the draft text and return the reply to Draft.

        None when the reply is missing, posted or being published.
        """
        stmt = (
            update(ReviewReply)
            .where(ReviewReply.id == reply_id, ReviewReply.status.in_(_EDITABLE))
            .values(draft_text=text, status=ReplyStatus.DRAFT.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        async with get_async_session() as session:
            result = await session.execute(stmt)
            await session.commit()
            if result.rowcount != 1:
                return None
            return await session.get(ReviewReply, reply_id)

    async def set_status(self, reply_id: str, status: ReplyStatus) -> ReviewReply | None:
        async with get_async_session() as session:
            row = await session.get(ReviewReply, reply_id)
            if row is None:
                return None
            row.status = status.value
            await session.commit()
            return row

    async def claim_for_publish(self, reply_id: str, *, stale_after: dt.timedelta) -> bool:
        """Move a publishable reply to Publishing; False when another caller holds it.

        A claim older than ``stale_after`` is treated as abandoned and can be taken over.
        """
        now = utcnow()
        stmt = (
            update(ReviewReply)
            .where(
                ReviewReply.id == reply_id,
                or_(
                    ReviewReply.status.in_(_EDITABLE),
                    (ReviewReply.status == ReplyStatus.PUBLISHING.value) & (ReviewReply.updated_at < now - stale_after),
                ),
            )
            .values(status=ReplyStatus.PUBLISHING.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        async with get_async_session() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def mark_failed(self, reply_id: str, code: str, message: str) -> ReviewReply | None:
        async with get_async_session() as session:
            row = await session.get(ReviewReply, reply_id)
            if row is None:
                return None
            row.status = ReplyStatus.FAILED.value
            row.last_error_code = code
            row.last_error_message = message
            await session.commit()
            return row

    async def mark_posted(
        self,
        reply_id: str,
        *,
        final_text: str,
        platform_reply_id: str | None,
        posted_at: dt.datetime | None = None,
    ) -> ReviewReply:
        """Set the reply Posted and flag its review, in one transaction."""
        async with get_async_session() as session:
            row = await session.get(ReviewReply, reply_id)
            if row is None:
                raise LookupError(f"reply {reply_id} not found")
            row.status = ReplyStatus.POSTED.value
            row.final_text = final_text
            row.platform_reply_id = platform_reply_id
            row.posted_at = posted_at or utcnow()
            row.last_error_code = None
            row.last_error_message = None
            review = await session.get(Review, row.review_id)
            if review is not None:
                review.status = "posted"
            await session.commit()
            return row

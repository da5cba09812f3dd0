"""Reply lifecycle: Draft -> (Approved) -> Posted | Failed.

A reply that has been posted to Google is final. Publishing it again
returns the stored outcome without calling Google.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from ..db.models import ReplyStatus, ReviewReply, as_utc
from ..integrations.google.client import GoogleApiClient
from ..integrations.google.errors import ErrorKind, IntegrationError, Result
from ..integrations.google.mapping import review_resource_name
from ..metrics import REPLY_GENERATIONS, REPLY_PUBLISH
from ..stores.connections import ConnectionStore
from ..stores.replies import ReplyStore
from ..stores.reviews import ReviewStore
from .generation import ReplyGenerator, ReplyPrompt, parse_generation
from .rate_limit import GenerationRateLimiter

logger = logging.getLogger(__name__)

_EDITABLE = {ReplyStatus.DRAFT.value, ReplyStatus.APPROVED.value, ReplyStatus.FAILED.value}

# Longer than a full retry cycle against Google
PUBLISH_CLAIM_TTL = dt.timedelta(minutes=5)

_IN_PROGRESS = "This reply is already being posted."


@dataclass
class PublishOutcome:
    reply_id: str
    status: str
    posted_at: dt.datetime | None = None
    platform_reply_id: str | None = None
    error: IntegrationError | None = None
    already_posted: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def retryable(self) -> bool:
        return self.error.retryable if self.error else False

    def as_dict(self) -> dict:
        return {
            "reply_id": self.reply_id,
            "status": self.status,
            "posted_at": self.posted_at.isoformat() if self.posted_at else None,
            "platform_reply_id": self.platform_reply_id,
            "already_posted": self.already_posted,
            "error_code": self.error.code if self.error else None,
            "message": self.error.message if self.error else None,
            "retryable": self.retryable,
        }


def _posted_outcome(reply: ReviewReply, *, already_posted: bool) -> PublishOutcome:
    return PublishOutcome(
        reply_id=reply.id,
        status=ReplyStatus.POSTED.value,
        posted_at=as_utc(reply.posted_at),
        platform_reply_id=reply.platform_reply_id,
        already_posted=already_posted,
    )


class ReplyWorkflow:
    def __init__(
        self,
        client: GoogleApiClient,
        generator: ReplyGenerator,
        *,
        reviews: ReviewStore | None = None,
        replies: ReplyStore | None = None,
        connections: ConnectionStore | None = None,
        limiter: GenerationRateLimiter | None = None,
    ) -> None:
        self.client = client
        self.generator = generator
        self.reviews = reviews or ReviewStore()
        self.replies = replies or ReplyStore()
        self.connections = connections or ConnectionStore()
        self.limiter = limiter or GenerationRateLimiter(self.replies)

    async def _owned_reply(self, reply_id: str, business_id: str) -> ReviewReply | None:
        reply = await self.replies.get(reply_id)
        if reply is None or reply.business_id != business_id:
            return None
        return reply

    async def generate(self, review_id: str, business_id: str) -> Result[ReviewReply]:
        review = await self.reviews.get(review_id)
        if review is None or review.business_id != business_id:
            return Result.failure(IntegrationError(ErrorKind.RESOURCE_NOT_FOUND, "Review not found."))

        reply = await self.replies.get_for_review(review_id)
        if reply is not None and reply.status == ReplyStatus.POSTED.value:
            return Result.failure(
                IntegrationError(
                    ErrorKind.INVALID_TRANSITION,
                    "This reply has already been posted and cannot be regenerated.",
                )
            )
        if reply is not None and reply.status == ReplyStatus.PUBLISHING.value:
            return Result.failure(IntegrationError(ErrorKind.INVALID_TRANSITION, _IN_PROGRESS))

        decision = await self.limiter.check(business_id, reply)
        if not decision.allowed:
            return Result.failure(decision.to_error())

        prompt = ReplyPrompt(
            source=review.source,
            rating=review.rating,
            review_text=review.text,
            author_name=review.author_name,
        )
        try:
            raw = await self.generator.generate(prompt)
        except IntegrationError as exc:
            REPLY_GENERATIONS.labels(result=exc.code).inc()
            return Result.failure(exc)

        parsed = parse_generation(raw)
        if not parsed.text:
            REPLY_GENERATIONS.labels(result="empty").inc()
            return Result.failure(IntegrationError(ErrorKind.UNKNOWN, "AI returned an empty reply. Please try again."))

        saved = await self.replies.save_generation(
            review_id=review_id, business_id=business_id, text=parsed.text, risk_tags=parsed.risk_tags
        )
        REPLY_GENERATIONS.labels(result="ok").inc()
        logger.info(
            "reply generated",
            extra={"meta": {"reply_id": saved.id, "review_id": review_id, "count": saved.generation_count}},
        )
        return Result.success(saved)

    async def edit(self, reply_id: str, business_id: str, text: str) -> Result[ReviewReply]:
        reply = await self._owned_reply(reply_id, business_id)
        if reply is None:
            return Result.failure(IntegrationError(ErrorKind.RESOURCE_NOT_FOUND, "Reply not found."))
        if reply.status not in _EDITABLE:
            return Result.failure(ErrorKind.INVALID_TRANSITION)
        saved = await self.replies.save_draft(reply_id, text)
        if saved is None:
            return Result.failure(ErrorKind.INVALID_TRANSITION)
        return Result.success(saved)

    async def approve(self, reply_id: str, business_id: str) -> Result[ReviewReply]:
        reply = await self._owned_reply(reply_id, business_id)
        if reply is None:
            return Result.failure(IntegrationError(ErrorKind.RESOURCE_NOT_FOUND, "Reply not found."))
        if reply.status == ReplyStatus.APPROVED.value:
            return Result.success(reply)
        if reply.status != ReplyStatus.DRAFT.value:
            return Result.failure(
                IntegrationError(ErrorKind.INVALID_TRANSITION, "Only draft replies can be approved.")
            )
        if not (reply.draft_text or "").strip():
            return Result.failure(ErrorKind.EMPTY_REPLY)
        return Result.success(await self.replies.set_status(reply_id, ReplyStatus.APPROVED))

    async def _fail(self, reply: ReviewReply, error: IntegrationError) -> PublishOutcome:
        await self.replies.mark_failed(reply.id, error.code, error.message)
        REPLY_PUBLISH.labels(outcome=error.code).inc()
        logger.warning(
            "reply publish failed",
            extra={"meta": {"reply_id": reply.id, "code": error.code, "retryable": error.retryable}},
        )
        return PublishOutcome(reply_id=reply.id, status=ReplyStatus.FAILED.value, error=error)

    async def _not_claimed(self, reply_id: str) -> PublishOutcome:
        current = await self.replies.get(reply_id)
        if current is not None and current.status == ReplyStatus.POSTED.value:
            REPLY_PUBLISH.labels(outcome="already_posted").inc()
            return _posted_outcome(current, already_posted=True)
        REPLY_PUBLISH.labels(outcome="in_progress").inc()
        return PublishOutcome(
            reply_id=reply_id,
            status=current.status if current is not None else "missing",
            error=IntegrationError(ErrorKind.INVALID_TRANSITION, _IN_PROGRESS),
        )

    async def publish(self, reply_id: str, business_id: str, text: str | None = None) -> PublishOutcome:
        reply = await self._owned_reply(reply_id, business_id)
        if reply is None:
            return PublishOutcome(
                reply_id=reply_id, status="missing", error=IntegrationError(ErrorKind.RESOURCE_NOT_FOUND, "Reply not found.")
            )

        if reply.status == ReplyStatus.POSTED.value:
            REPLY_PUBLISH.labels(outcome="already_posted").inc()
            return _posted_outcome(reply, already_posted=True)

        if text is not None and text != reply.draft_text:
            saved = await self.replies.save_draft(reply_id, text)
            if saved is None:
                return await self._not_claimed(reply_id)
            reply = saved

        final_text = (reply.draft_text or "").strip()
        if not final_text:
            return PublishOutcome(
                reply_id=reply.id, status=reply.status, error=IntegrationError(ErrorKind.EMPTY_REPLY)
            )

        # Only the caller that moves the reply to Publishing talks to Google
        if not await self.replies.claim_for_publish(reply.id, stale_after=PUBLISH_CLAIM_TTL):
            return await self._not_claimed(reply.id)

        conn = await self.connections.get_for_business(business_id)
        if conn is None:
            return await self._fail(
                reply,
                IntegrationError(ErrorKind.CREDENTIAL_REVOKED, "Google connection not found. Please reconnect."),
            )
        if not conn.location_name:
            return await self._fail(reply, IntegrationError(ErrorKind.NO_LOCATION))

        review = await self.reviews.get(reply.review_id)
        if review is None:
            return await self._fail(reply, IntegrationError(ErrorKind.RESOURCE_NOT_FOUND, "Review not found."))

        review_name = review_resource_name(conn.location_name, review.external_name or review.external_id)
        res = await self.client.post_reply(conn.account_id, review_name, final_text)
        if not res.ok:
            return await self._fail(reply, res.error)

        platform_reply_id = res.value.get("updateTime") or res.value.get("name")
        try:
            posted = await self.replies.mark_posted(
                reply.id, final_text=final_text, platform_reply_id=platform_reply_id
            )
        except SQLAlchemyError:
            # Google already has the reply; surface loudly so it is reconciled by hand
            logger.exception("reply posted to google but not recorded", extra={"meta": {"reply_id": reply.id}})
            raise
        REPLY_PUBLISH.labels(outcome="posted").inc()
        logger.info("reply posted", extra={"meta": {"reply_id": reply.id, "review_id": review.id}})
        return _posted_outcome(posted, already_posted=False)

"""Generation ceilings: per reply and per business per day.

Both checks are reads followed by an increment once the generation has
succeeded. Concurrent requests can overshoot a ceiling by a few.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..config import get_settings
from ..db.models import ReviewReply, utcnow
from ..integrations.google.errors import ErrorKind, IntegrationError
from ..metrics import REPLY_RATE_LIMITED
from ..stores.replies import ReplyStore

logger = logging.getLogger(__name__)

REASON_REPLY = "reply_limit"
REASON_DAILY = "daily_limit"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    reason: str | None = None
    current: int = 0
    limit: int = 0
    reset_at: dt.datetime | None = None
    message: str = ""

    def to_error(self) -> IntegrationError:
        details = {"reason": self.reason, "current": self.current, "limit": self.limit}
        if self.reset_at is not None:
            details["reset_at"] = self.reset_at.isoformat()
        return IntegrationError(ErrorKind.RATE_LIMITED, self.message, details=details)


class GenerationRateLimiter:
    def __init__(
        self,
        replies: ReplyStore | None = None,
        *,
        per_reply_limit: int | None = None,
        daily_limit: int | None = None,
        timezone: str | None = None,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        settings = get_settings()
        self.replies = replies or ReplyStore()
        self.per_reply_limit = per_reply_limit if per_reply_limit is not None else settings.max_generations_per_reply
        self.daily_limit = daily_limit if daily_limit is not None else settings.max_generations_per_business_daily
        self.tz = _zone(timezone or settings.business_timezone)
        self.clock = clock

    def day_window(self, now: dt.datetime | None = None) -> tuple[dt.datetime, dt.datetime]:
        """Current local calendar day as a UTC ``[start, end)`` pair."""
        local = (now or self.clock()).astimezone(self.tz)
        start = dt.datetime.combine(local.date(), dt.time.min, tzinfo=self.tz)
        end = dt.datetime.combine(local.date() + dt.timedelta(days=1), dt.time.min, tzinfo=self.tz)
        return start.astimezone(dt.timezone.utc), end.astimezone(dt.timezone.utc)

    async def check(self, business_id: str, reply: ReviewReply | None) -> RateLimitDecision:
        used = reply.generation_count if reply is not None else 0
        if used >= self.per_reply_limit:
            REPLY_RATE_LIMITED.labels(reason=REASON_REPLY).inc()
            return RateLimitDecision(
                allowed=False,
                reason=REASON_REPLY,
                current=used,
                limit=self.per_reply_limit,
                message=(
                    f"This review has reached the maximum of {self.per_reply_limit} AI generations. "
                    "Please edit the existing reply instead."
                ),
            )

        start, end = self.day_window()
        today = await self.replies.count_generations_since(business_id, start)
        if today >= self.daily_limit:
            REPLY_RATE_LIMITED.labels(reason=REASON_DAILY).inc()
            logger.info(
                "daily generation limit reached",
                extra={"meta": {"business_id": business_id, "count": today, "limit": self.daily_limit}},
            )
            return RateLimitDecision(
                allowed=False,
                reason=REASON_DAILY,
                current=today,
                limit=self.daily_limit,
                reset_at=end,
                message=f"Daily AI generation limit ({self.daily_limit}) reached. Limit resets at midnight.",
            )
        return RateLimitDecision(allowed=True, current=today, limit=self.daily_limit)


def _zone(name: str) -> dt.tzinfo:
    if name.strip().upper() in {"UTC", "Z", "ETC/UTC"}:
        return dt.timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("unknown business timezone; using UTC", extra={"meta": {"timezone": name}})
        return dt.timezone.utc

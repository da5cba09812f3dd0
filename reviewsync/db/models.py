# reviewsync/db/models.py
from __future__ import annotations

import datetime as dt
import uuid
from enum import Enum

import sqlalchemy as sa
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# ---------- Base with naming convention ----------
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    __abstract__ = True
    metadata = sa.MetaData(naming_convention=NAMING_CONVENTION)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def as_utc(value: dt.datetime | None) -> dt.datetime | None:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value


def _new_id() -> str:
    return str(uuid.uuid4())


class ReplyStatus(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    PUBLISHING = "publishing"
    POSTED = "posted"
    FAILED = "failed"


REVIEW_SOURCE_GOOGLE = "google"
REPLY_CHANNEL_GOOGLE = "google"


# =====================================================================
# Connected Google accounts and location bindings
# =====================================================================


class GoogleAccount(Base):
    """Delegated Google credentials for one dashboard user.

    Token columns hold values sealed by ``crypto_tokens`` when a key is set.
    A null ``refresh_token`` means the account cannot be renewed silently.
    """

    __tablename__ = "google_accounts"
    __table_args__ = (UniqueConstraint("user_id", "google_sub", name="uq_google_accounts_user_sub"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    google_sub: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320))
    access_token: Mapped[str | None] = mapped_column(Text)
    refresh_token: Mapped[str | None] = mapped_column(Text)
    scopes: Mapped[str] = mapped_column(Text, default="", nullable=False)
    expires_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    @property
    def scope_set(self) -> set[str]:
        return {s for s in (self.scopes or "").split() if s}


class LocationConnection(Base):
    __tablename__ = "location_connections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    business_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("google_accounts.id", ondelete="CASCADE"), nullable=False
    )
    location_name: Mapped[str | None] = mapped_column(String(255))
    location_title: Mapped[str | None] = mapped_column(String(255))
    sync_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_synced_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


# =====================================================================
# Reviews and replies
# =====================================================================


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("business_id", "source", "external_id", name="uq_reviews_business_source_external"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    business_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    source: Mapped[str] = mapped_column(String(32), default=REVIEW_SOURCE_GOOGLE, nullable=False)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    # Provider resource name (accounts/.../reviews/...) used when replying
    external_name: Mapped[str | None] = mapped_column(String(512))
    author_name: Mapped[str] = mapped_column(String(255), default="Anonymous", nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str | None] = mapped_column(Text)
    reviewed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    reviewer_profile_url: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(16), default="new", nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class ReviewReply(Base):
    __tablename__ = "review_replies"
    __table_args__ = (UniqueConstraint("review_id", "channel", name="uq_review_replies_review_channel"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    review_id: Mapped[str] = mapped_column(String(36), ForeignKey("reviews.id", ondelete="CASCADE"), nullable=False)
    business_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    channel: Mapped[str] = mapped_column(String(32), default=REPLY_CHANNEL_GOOGLE, nullable=False)
    draft_text: Mapped[str | None] = mapped_column(Text)
    final_text: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(16), default=ReplyStatus.DRAFT.value, nullable=False)
    last_error_code: Mapped[str | None] = mapped_column(String(64))
    last_error_message: Mapped[str | None] = mapped_column(Text)
    platform_reply_id: Mapped[str | None] = mapped_column(String(255))
    posted_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    generation_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    risk_tags: Mapped[list[str]] = mapped_column(sa.JSON, default=list, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True, nullable=False
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class ReplyGeneration(Base):
    """One row per successful AI generation; the daily ceiling counts these."""

    __tablename__ = "reply_generations"
    __table_args__ = (sa.Index("ix_reply_generations_business_created", "business_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    reply_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("review_replies.id", ondelete="CASCADE"), index=True, nullable=False
    )
    business_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
"""Explicit mapping from Google review payloads to the canonical review shape."""

from __future__ import annotations

import datetime as dt
import re
from typing import Any

from ...stores.reviews import ReviewPayload

UNRATED = 0

STAR_RATINGS = {
    "ONE": 1,
    "TWO": 2,
    "THREE": 3,
    "FOUR": 4,
    "FIVE": 5,
}

_FRACTION = re.compile(r"\.(\d{6})\d+")


class MappingError(ValueError):
    """Raised when a provider record cannot be mapped."""


def star_rating_to_score(value: Any) -> int:
    """ONE..FIVE to 1..5; anything else (including STAR_RATING_UNSPECIFIED) is unrated."""
    if isinstance(value, str):
        return STAR_RATINGS.get(value.upper(), UNRATED)
    return UNRATED


def parse_timestamp(value: Any) -> dt.datetime | None:
    if not isinstance(value, str) or not value:
        return None
    # Google may send nanosecond precision; datetime holds microseconds
    text = _FRACTION.sub(r".\1", value.strip())
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed.astimezone(dt.timezone.utc)


def external_review_id(raw: dict[str, Any]) -> str:
    review_id = raw.get("reviewId")
    if isinstance(review_id, str) and review_id:
        return review_id
    name = raw.get("name") or ""
    if not isinstance(name, str):
        raise MappingError(f"review name must be a string, got {type(name).__name__}")
    tail = name.rsplit("/", 1)[-1]
    if not tail:
        raise MappingError("review has neither reviewId nor name")
    return tail


def _optional_str(raw: dict[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if value is None or isinstance(value, str):
        return value
    raise MappingError(f"{key} must be a string, got {type(value).__name__}")


def map_review(raw: Any, business_id: str) -> ReviewPayload:
    if not isinstance(raw, dict):
        raise MappingError(f"expected review object, got {type(raw).__name__}")
    reviewer = raw.get("reviewer")
    if reviewer is None:
        reviewer = {}
    elif not isinstance(reviewer, dict):
        raise MappingError(f"reviewer must be an object, got {type(reviewer).__name__}")
    comment = _optional_str(raw, "comment")
    author = _optional_str(reviewer, "displayName")
    photo = reviewer.get("profilePhotoUrl")
    return ReviewPayload(
        business_id=business_id,
        external_id=external_review_id(raw),
        external_name=_optional_str(raw, "name"),
        author_name=(author or "").strip() or "Anonymous",
        rating=star_rating_to_score(raw.get("starRating")),
        text=comment if comment else None,
        reviewed_at=parse_timestamp(raw.get("updateTime") or raw.get("createTime")),
        reviewer_profile_url=photo if isinstance(photo, str) else None,
    )


def review_resource_name(location_name: str, review_ref: str) -> str:
    """Full ``accounts/.../reviews/...`` name for a stored review reference."""
    if review_ref.startswith("accounts/"):
        return review_ref
    return f"{location_name}/reviews/{review_ref}"

import datetime as dt

import pytest

from reviewsync.integrations.google.mapping import (
    UNRATED,
    MappingError,
    map_review,
    parse_timestamp,
    review_resource_name,
    star_rating_to_score,
)


@pytest.mark.parametrize(
    "value,score",
    [("ONE", 1), ("TWO", 2), ("THREE", 3), ("FOUR", 4), ("FIVE", 5), ("STAR_RATING_UNSPECIFIED", UNRATED), (None, UNRATED), (5, UNRATED)],
)
def test_star_rating(value, score):
    assert star_rating_to_score(value) == score


def test_map_full_review():
    raw = {
        "name": "accounts/1/locations/2/reviews/abc",
        "reviewId": "abc",
        "reviewer": {"displayName": "Jane Doe", "profilePhotoUrl": "https://photo"},
        "starRating": "FOUR",
        "comment": "Lovely cut",
        "createTime": "2024-01-01T10:00:00Z",
        "updateTime": "2024-01-02T10:00:00.123456789Z",
    }
    p = map_review(raw, "biz-1")
    assert p.business_id == "biz-1"
    assert p.source == "google"
    assert p.external_id == "abc"
    assert p.external_name == "accounts/1/locations/2/reviews/abc"
    assert p.author_name == "Jane Doe"
    assert p.rating == 4
    assert p.text == "Lovely cut"
    assert p.reviewed_at == dt.datetime(2024, 1, 2, 10, 0, 0, 123456, tzinfo=dt.timezone.utc)
    assert p.reviewer_profile_url == "https://photo"


def test_map_sparse_review():
    p = map_review({"name": "accounts/1/locations/2/reviews/xyz", "starRating": "FIVE", "comment": ""}, "b")
    assert p.external_id == "xyz"
    assert p.author_name == "Anonymous"
    assert p.text is None
    assert p.reviewed_at is None


def test_map_rejects_record_without_id():
    with pytest.raises(MappingError):
        map_review({"starRating": "FIVE"}, "b")
    with pytest.raises(MappingError):
        map_review(["not", "a", "dict"], "b")


@pytest.mark.parametrize(
    "raw",
    [
        {"reviewId": "r1", "reviewer": "Jane"},
        {"reviewId": "r1", "reviewer": {"displayName": 42}},
        {"name": 7, "starRating": "FIVE"},
        {"reviewId": "r1", "comment": {"text": "nested"}},
    ],
)
def test_map_rejects_wrongly_typed_fields(raw):
    with pytest.raises(MappingError):
        map_review(raw, "b")


def test_parse_timestamp_offsets():
    assert parse_timestamp("2024-03-01T12:00:00+02:00") == dt.datetime(2024, 3, 1, 10, tzinfo=dt.timezone.utc)
    assert parse_timestamp("garbage") is None


def test_review_resource_name():
    assert review_resource_name("accounts/1/locations/2", "accounts/1/locations/2/reviews/r") == (
        "accounts/1/locations/2/reviews/r"
    )
    assert review_resource_name("accounts/1/locations/2", "r") == "accounts/1/locations/2/reviews/r"

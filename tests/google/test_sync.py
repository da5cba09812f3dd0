import datetime as dt

import pytest

from reviewsync.db.models import as_utc
from reviewsync.integrations.google.errors import ErrorKind, Result
from reviewsync.integrations.google.sync import ReviewSyncEngine
from reviewsync.stores import AccountStore, ConnectionStore, ReviewStore

LOCATION = "accounts/1/locations/2"


def _review(i, comment="Great", rating="FIVE"):
    return {
        "name": f"{LOCATION}/reviews/r{i}",
        "reviewId": f"r{i}",
        "reviewer": {"displayName": f"Customer {i}"},
        "starRating": rating,
        "comment": comment,
        "updateTime": "2024-05-01T10:00:00Z",
    }


class FakeClient:
    """Serves scripted review pages keyed by page token."""

    def __init__(self, pages: list, endless: bool = False):
        self.pages = pages
        self.endless = endless
        self.calls = []

    async def list_reviews(self, account_id, location_name, page_token=None, page_size=50):
        self.calls.append(page_token)
        if self.endless:
            n = len(self.calls)
            return Result.success({"reviews": [_review(f"{n}")], "nextPageToken": f"p{n}"})
        idx = int(page_token[1:]) if page_token else 0
        page = self.pages[idx]
        if isinstance(page, Result):
            return page
        body = {"reviews": page}
        if idx + 1 < len(self.pages):
            body["nextPageToken"] = f"p{idx + 1}"
        return Result.success(body)


async def _connect(business_id="biz-1", location_name=LOCATION, sync_enabled=True):
    account_id = await AccountStore().upsert_from_oauth(
        user_id="user-1",
        google_sub="sub-1",
        email=None,
        access_token="at",
        refresh_token="rt",
        scopes="",
        expires_at=None,
    )
    await ConnectionStore().upsert(
        business_id, account_id=account_id, location_name=location_name, sync_enabled=sync_enabled
    )
    return account_id


@pytest.mark.asyncio
async def test_two_pages_import_53(db):
    await _connect()
    before = dt.datetime.now(dt.timezone.utc)
    client = FakeClient([[_review(i) for i in range(50)], [_review(i) for i in range(50, 53)]])

    res = await ReviewSyncEngine(client).sync_business("biz-1")

    assert res.ok
    s = res.value
    assert (s.imported_count, s.updated_count, s.skipped_count) == (53, 0, 0)
    assert client.calls == [None, "p1"]
    conn = await ConnectionStore().get_for_business("biz-1")
    assert as_utc(conn.last_synced_at) >= before


@pytest.mark.asyncio
async def test_second_run_updates_instead_of_duplicating(db):
    await _connect()
    await ReviewSyncEngine(FakeClient([[_review(1, "Good", "FOUR")]])).sync_business("biz-1")

    res = await ReviewSyncEngine(FakeClient([[_review(1, "Actually great", "FIVE")]])).sync_business("biz-1")

    assert (res.value.imported_count, res.value.updated_count) == (0, 1)
    row = await ReviewStore().get_by_external("biz-1", "google", "r1")
    assert row.text == "Actually great"
    assert row.rating == 5


@pytest.mark.asyncio
async def test_pagination_is_capped_at_ten_pages(db):
    await _connect()
    client = FakeClient([], endless=True)
    res = await ReviewSyncEngine(client).sync_business("biz-1")
    assert res.ok
    assert len(client.calls) == 10
    assert res.value.imported_count == 10
    assert res.value.partial is True


@pytest.mark.asyncio
async def test_zero_records_still_marks_synced(db):
    await _connect()
    res = await ReviewSyncEngine(FakeClient([[]])).sync_business("biz-1")
    assert res.ok and res.value.imported_count == 0
    conn = await ConnectionStore().get_for_business("biz-1")
    assert conn.last_synced_at is not None


@pytest.mark.asyncio
async def test_bad_record_is_skipped_not_fatal(db):
    await _connect()
    page = [_review(1), {"starRating": "FIVE"}, "junk", _review(2)]
    res = await ReviewSyncEngine(FakeClient([page])).sync_business("biz-1")
    assert (res.value.imported_count, res.value.skipped_count) == (2, 2)


@pytest.mark.asyncio
async def test_malformed_reviewer_between_good_records_is_skipped(db):
    await _connect()
    bad = {"reviewId": "r2", "reviewer": "Jane", "starRating": "FOUR"}
    res = await ReviewSyncEngine(FakeClient([[_review(1), bad, _review(3)]])).sync_business("biz-1")
    assert res.ok
    assert (res.value.imported_count, res.value.skipped_count) == (2, 1)
    assert await ReviewStore().get_by_external("biz-1", "google", "r3") is not None
    conn = await ConnectionStore().get_for_business("biz-1")
    assert conn.last_synced_at is not None


@pytest.mark.asyncio
async def test_unknown_rating_stored_as_unrated(db):
    await _connect()
    await ReviewSyncEngine(FakeClient([[_review(1, rating="STAR_RATING_UNSPECIFIED")]])).sync_business("biz-1")
    row = await ReviewStore().get_by_external("biz-1", "google", "r1")
    assert row.rating == 0


@pytest.mark.asyncio
async def test_no_connection(db):
    res = await ReviewSyncEngine(FakeClient([[]])).sync_business("biz-404")
    assert res.error.kind is ErrorKind.NO_CONNECTION


@pytest.mark.asyncio
async def test_sync_disabled_counts_as_no_connection(db):
    await _connect(sync_enabled=False)
    res = await ReviewSyncEngine(FakeClient([[]])).sync_business("biz-1")
    assert res.error.kind is ErrorKind.NO_CONNECTION


@pytest.mark.asyncio
async def test_no_location(db):
    await _connect(location_name=None)
    client = FakeClient([[]])
    res = await ReviewSyncEngine(client).sync_business("biz-1")
    assert res.error.kind is ErrorKind.NO_LOCATION
    assert client.calls == []


@pytest.mark.asyncio
async def test_first_page_failure_aborts(db):
    await _connect()
    client = FakeClient([Result.failure(ErrorKind.CREDENTIAL_REVOKED)])
    res = await ReviewSyncEngine(client).sync_business("biz-1")
    assert res.error.kind is ErrorKind.CREDENTIAL_REVOKED
    conn = await ConnectionStore().get_for_business("biz-1")
    assert conn.last_synced_at is None


@pytest.mark.asyncio
async def test_later_page_failure_keeps_partial_results(db):
    await _connect()
    client = FakeClient([[_review(1), _review(2)], Result.failure(ErrorKind.PROVIDER_UNAVAILABLE)])
    res = await ReviewSyncEngine(client).sync_business("biz-1")
    assert res.ok
    assert res.value.imported_count == 2
    assert res.value.partial is True


@pytest.mark.asyncio
async def test_sync_all_runs_each_enabled_business(db):
    await _connect("biz-1")
    await _connect("biz-2", location_name=None)
    await _connect("biz-3", sync_enabled=False)
    results = await ReviewSyncEngine(FakeClient([[_review(1)]])).sync_all()
    assert set(results) == {"biz-1", "biz-2"}
    assert results["biz-1"].ok
    assert results["biz-2"].error.kind is ErrorKind.NO_LOCATION

import pytest

from reviewsync.integrations.google.errors import ErrorKind, Result
from reviewsync.integrations.google.sync import SyncSummary
from reviewsync.jobs import run_scheduled_sync


class DummyEngine:
    async def sync_all(self):
        return {
            "biz-1": Result.success(SyncSummary(imported_count=3)),
            "biz-2": Result.failure(ErrorKind.CREDENTIAL_REVOKED),
        }


@pytest.mark.asyncio
async def test_scheduled_sync_counts_failures():
    assert await run_scheduled_sync(DummyEngine()) == 1

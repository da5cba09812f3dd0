from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from sqlalchemy.exc import SQLAlchemyError

from ...db.models import utcnow
from ...metrics import SYNC_RECORDS, SYNC_RUNS
from ...stores.connections import ConnectionStore
from ...stores.reviews import ReviewStore
from .client import GoogleApiClient
from .constants import SYNC_MAX_PAGES, SYNC_PAGE_SIZE
from .errors import ErrorKind, IntegrationError, Result
from .mapping import MappingError, map_review

logger = logging.getLogger(__name__)


@dataclass
class SyncSummary:
    imported_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    pages: int = 0
    partial: bool = False

    def as_dict(self) -> dict:
        return asdict(self)


class ReviewSyncEngine:
    """Pull reviews for a business's selected location into the local store.

    Each invocation keeps its own counters; nothing is shared between runs.
    Two runs for the same business are not deduplicated here.
    """

    def __init__(
        self,
        client: GoogleApiClient,
        connections: ConnectionStore | None = None,
        reviews: ReviewStore | None = None,
        *,
        max_pages: int = SYNC_MAX_PAGES,
        page_size: int = SYNC_PAGE_SIZE,
    ) -> None:
        self.client = client
        self.connections = connections or ConnectionStore()
        self.reviews = reviews or ReviewStore()
        self.max_pages = max_pages
        self.page_size = page_size

    async def _ingest(self, business_id: str, raw: object, summary: SyncSummary) -> None:
        try:
            payload = map_review(raw, business_id)
            _, is_new = await self.reviews.upsert(payload)
        except (MappingError, SQLAlchemyError) as exc:
            summary.skipped_count += 1
            SYNC_RECORDS.labels(outcome="skipped").inc()
            logger.warning(
                "review skipped",
                extra={"meta": {"business_id": business_id, "error": f"{type(exc).__name__}: {exc}"}},
            )
            return
        if is_new:
            summary.imported_count += 1
            SYNC_RECORDS.labels(outcome="imported").inc()
        else:
            summary.updated_count += 1
            SYNC_RECORDS.labels(outcome="updated").inc()

    async def sync_business(self, business_id: str) -> Result[SyncSummary]:
        conn = await self.connections.get_for_business(business_id)
        if conn is None or not conn.sync_enabled:
            SYNC_RUNS.labels(result=ErrorKind.NO_CONNECTION.code).inc()
            return Result.failure(ErrorKind.NO_CONNECTION)
        if not conn.location_name:
            SYNC_RUNS.labels(result=ErrorKind.NO_LOCATION.code).inc()
            return Result.failure(ErrorKind.NO_LOCATION)

        summary = SyncSummary()
        page_token: str | None = None
        while summary.pages < self.max_pages:
            page = await self.client.list_reviews(
                conn.account_id, conn.location_name, page_token=page_token, page_size=self.page_size
            )
            if not page.ok:
                if summary.pages == 0:
                    SYNC_RUNS.labels(result=page.error.code).inc()
                    logger.warning(
                        "review sync failed",
                        extra={"meta": {"business_id": business_id, "code": page.error.code}},
                    )
                    return Result.failure(page.error)
                # Keep what earlier pages delivered
                summary.partial = True
                logger.warning(
                    "review sync stopped early",
                    extra={"meta": {"business_id": business_id, "code": page.error.code, "pages": summary.pages}},
                )
                break

            summary.pages += 1
            for raw in page.value.get("reviews") or []:
                await self._ingest(business_id, raw, summary)

            page_token = page.value.get("nextPageToken")
            if not page_token:
                break
        else:
            if page_token:
                summary.partial = True
                logger.info(
                    "review sync hit page cap",
                    extra={"meta": {"business_id": business_id, "max_pages": self.max_pages}},
                )

        await self.connections.mark_synced(business_id, utcnow())
        SYNC_RUNS.labels(result="partial" if summary.partial else "ok").inc()
        logger.info("review sync complete", extra={"meta": {"business_id": business_id, **summary.as_dict()}})
        return Result.success(summary)

    async def sync_all(self) -> dict[str, Result[SyncSummary]]:
        """Sync every enabled connection, one business at a time."""
        results: dict[str, Result[SyncSummary]] = {}
        for conn in await self.connections.list_sync_enabled():
            try:
                results[conn.business_id] = await self.sync_business(conn.business_id)
            except SQLAlchemyError as exc:
                logger.error(
                    "review sync crashed",
                    extra={"meta": {"business_id": conn.business_id, "error": str(exc)}},
                )
                results[conn.business_id] = Result.failure(
                    IntegrationError(ErrorKind.UNKNOWN, details={"reason": "storage"})
                )
        return results

"""Scheduled review sync.

Run as ``python -m reviewsync.jobs`` from cron or a scheduler; exits
non-zero when any business failed to sync.
"""

from __future__ import annotations

import asyncio
import logging
import sys

from .db.core import dispose_engine, init_models
from .integrations.google.client import GoogleApiClient
from .integrations.google.sync import ReviewSyncEngine
from .integrations.google.token_manager import TokenManager
from .logging_config import configure_logging

logger = logging.getLogger(__name__)


async def run_scheduled_sync(engine: ReviewSyncEngine | None = None) -> int:
    """Sync every enabled business; returns the number of failures."""
    engine = engine or ReviewSyncEngine(GoogleApiClient(TokenManager()))
    results = await engine.sync_all()
    failures = 0
    for business_id, result in results.items():
        if result.ok:
            continue
        failures += 1
        logger.warning(
            "scheduled sync failed",
            extra={"meta": {"business_id": business_id, "code": result.error.code}},
        )
    logger.info("scheduled sync finished", extra={"meta": {"businesses": len(results), "failures": failures}})
    return failures


async def _main() -> int:
    await init_models()
    try:
        return await run_scheduled_sync()
    finally:
        await dispose_engine()


def main() -> None:
    configure_logging()
    failures = asyncio.run(_main())
    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()

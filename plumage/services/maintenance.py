"""Scheduled upkeep: cache expiry, LRU eviction and metrics snapshots.

Nothing here runs on its own. An external scheduler calls ``run_maintenance``
through the ``cache_maintenance`` tool or the internal HTTP route.
"""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plumage.db import session_scope
from plumage.models import MetricsSnapshot
from plumage.services.cache import CacheService, cache_service
from plumage.services.stats import StatsAggregator, stats_aggregator

logger = logging.getLogger(__name__)


async def run_maintenance(
    max_entries: int | None = None,
    cache: CacheService | None = None,
    stats: StatsAggregator | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> dict[str, Any]:
    """Expire, evict, then snapshot the dashboard."""
    cache = cache or cache_service
    stats = stats or stats_aggregator

    expired = await cache.expire()
    evicted = await cache.evict_lru(max_entries)
    data = await stats.dashboard()

    snapshot = MetricsSnapshot(scope="dashboard", data=data)
    async with session_scope(session_factory) as session:
        session.add(snapshot)

    logger.info("Maintenance: expired %d, evicted %d, snapshot %s", expired, evicted, snapshot.id)
    return {
        "status": "completed",
        "expired": expired,
        "evicted": evicted,
        "snapshot_id": str(snapshot.id),
        "captured_at": snapshot.captured_at.isoformat(),
    }


async def latest_snapshot(
    scope: str = "dashboard",
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> MetricsSnapshot | None:
    async with session_scope(session_factory) as session:
        result = await session.execute(
            select(MetricsSnapshot)
            .where(MetricsSnapshot.scope == scope)
            .order_by(MetricsSnapshot.captured_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

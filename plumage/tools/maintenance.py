"""cache_maintenance tool, called by the external scheduler."""

from plumage.services import run_maintenance


async def cache_maintenance(max_entries: int | None = None) -> dict:
    """Expire stale cache entries, evict least recently used ones and snapshot metrics.

    Args:
        max_entries: Cache size limit for eviction (default from settings).

    Returns:
        dict with counts of expired and evicted entries and the snapshot id.
    """
    if max_entries is not None and max_entries < 0:
        return {"status": "error", "reason": "max_entries must be >= 0"}
    return await run_maintenance(max_entries=max_entries)

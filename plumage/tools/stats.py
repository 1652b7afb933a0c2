"""pipeline_stats tool for cache, job and review health."""

from plumage.services import latest_snapshot, stats_aggregator

_SCOPES = ("summary", "cache", "jobs", "reviewers", "queue", "stuck", "review", "snapshot")


async def pipeline_stats(scope: str = "summary", provider: str | None = None) -> dict:
    """Get content pipeline statistics.

    Args:
        scope: Level of detail. Options:
            - "summary": Everything below in one dashboard
            - "cache": Hit rate and cost saved per provider
            - "jobs": Job counts and turnaround per provider and status
            - "reviewers": Decisions and review latency per reviewer
            - "queue": Review queue depth and recent generation failures
            - "stuck": Jobs stuck in processing
            - "review": Item counts by kind and status
            - "snapshot": Latest stored maintenance snapshot
        provider: Restrict cache statistics to one provider.

    Returns:
        dict with statistics based on scope.

    Example:
        >>> pipeline_stats(scope="queue")
        {"state": "pending", "pending_items": 12, "oldest_pending_age_seconds": 5400.0, ...}
    """
    if scope == "summary":
        return await stats_aggregator.dashboard()
    elif scope == "cache":
        return {"cache": await stats_aggregator.cache_stats(provider)}
    elif scope == "jobs":
        return {"jobs": await stats_aggregator.job_throughput()}
    elif scope == "reviewers":
        return {"reviewers": await stats_aggregator.reviewer_workload()}
    elif scope == "queue":
        return await stats_aggregator.queue_health()
    elif scope == "stuck":
        jobs = await stats_aggregator.stuck_jobs()
        return {"count": len(jobs), "jobs": jobs}
    elif scope == "review":
        return await stats_aggregator.review_breakdown()
    elif scope == "snapshot":
        snapshot = await latest_snapshot()
        if snapshot is None:
            return {"status": "error", "reason": "No snapshot recorded yet"}
        return snapshot.to_dict()
    return {
        "status": "error",
        "reason": f"Unknown scope: {scope}. Use {', '.join(_SCOPES)}.",
    }

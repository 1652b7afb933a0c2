"""Read-only rollups over the cache, jobs and review queue."""

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plumage.config import settings
from plumage.db import session_scope
from plumage.models import ContentItem, GenerationJob, JobStatus, ReviewStatus
from plumage.services.cache import CacheService, cache_service


def _seconds_between(session: AsyncSession, start, end):
    """Dialect-specific SQL expression for ``end - start`` in seconds."""
    if session.get_bind().dialect.name == "postgresql":
        return func.extract("epoch", end - start)
    return (func.julianday(end) - func.julianday(start)) * 86400.0


def _round(value, digits: int = 2) -> float | None:
    return round(float(value), digits) if value is not None else None


class StatsAggregator:
    """Dashboard statistics. Never writes."""

    def __init__(
        self,
        cache: CacheService | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        stuck_threshold_minutes: int = settings.plumage_stuck_job_threshold_minutes,
        failure_window_hours: int = settings.plumage_failure_window_hours,
    ):
        self._cache = cache or cache_service
        self._session_factory = session_factory
        self._stuck_threshold_minutes = stuck_threshold_minutes
        self._failure_window_hours = failure_window_hours

    async def cache_stats(self, provider: str | None = None) -> list[dict[str, Any]]:
        return [stats.to_dict() for stats in await self._cache.stats(provider)]

    async def job_throughput(self) -> list[dict[str, Any]]:
        """Job counts and average turnaround per provider and status."""
        async with session_scope(self._session_factory) as session:
            turnaround = _seconds_between(
                session, GenerationJob.created_at, GenerationJob.completed_at
            )
            rows = (
                await session.execute(
                    select(
                        GenerationJob.provider,
                        GenerationJob.status,
                        func.count(GenerationJob.id),
                        func.avg(turnaround),
                        func.coalesce(func.sum(GenerationJob.cost_usd), 0.0),
                    )
                    .group_by(GenerationJob.provider, GenerationJob.status)
                    .order_by(GenerationJob.provider)
                )
            ).all()

        return [
            {
                "provider": provider,
                "status": status.value,
                "count": count,
                "avg_turnaround_seconds": _round(avg_seconds),
                "total_cost_usd": round(float(cost or 0.0), 6),
            }
            for provider, status, count, avg_seconds, cost in rows
        ]

    async def reviewer_workload(self) -> list[dict[str, Any]]:
        """Decisions per reviewer and how long items waited for them."""
        async with session_scope(self._session_factory) as session:
            wait = _seconds_between(session, ContentItem.created_at, ContentItem.reviewed_at)
            rows = (
                await session.execute(
                    select(
                        ContentItem.reviewed_by,
                        func.count(ContentItem.id),
                        func.sum(case((ContentItem.status == ReviewStatus.APPROVED, 1), else_=0)),
                        func.sum(case((ContentItem.status == ReviewStatus.REJECTED, 1), else_=0)),
                        func.avg(wait),
                    )
                    .where(ContentItem.reviewed_by.is_not(None))
                    .group_by(ContentItem.reviewed_by)
                    .order_by(func.count(ContentItem.id).desc())
                )
            ).all()

        return [
            {
                "reviewer": reviewer,
                "reviewed": reviewed,
                "approved": int(approved or 0),
                "rejected": int(rejected or 0),
                "avg_review_seconds": _round(avg_seconds),
            }
            for reviewer, reviewed, approved, rejected, avg_seconds in rows
        ]

    async def queue_health(self) -> dict[str, Any]:
        """Review queue depth plus recent generation failures.

        ``state`` separates an empty queue ("idle") from a queue that is empty
        because generation keeps failing ("failing").
        """
        now = datetime.utcnow()
        since = now - timedelta(hours=self._failure_window_hours)
        async with session_scope(self._session_factory) as session:
            depth = dict(
                (
                    await session.execute(
                        select(ContentItem.status, func.count(ContentItem.id))
                        .where(ContentItem.status.in_([ReviewStatus.PENDING, ReviewStatus.EDITED]))
                        .group_by(ContentItem.status)
                    )
                ).all()
            )
            oldest = (
                await session.execute(
                    select(func.min(ContentItem.created_at)).where(
                        ContentItem.status.in_([ReviewStatus.PENDING, ReviewStatus.EDITED])
                    )
                )
            ).scalar_one_or_none()
            recent = dict(
                (
                    await session.execute(
                        select(GenerationJob.status, func.count(GenerationJob.id))
                        .where(GenerationJob.completed_at >= since)
                        .group_by(GenerationJob.status)
                    )
                ).all()
            )
            processing = (
                await session.execute(
                    select(func.count(GenerationJob.id)).where(
                        GenerationJob.status == JobStatus.PROCESSING
                    )
                )
            ).scalar_one()

        pending = depth.get(ReviewStatus.PENDING, 0)
        edited = depth.get(ReviewStatus.EDITED, 0)
        failed = recent.get(JobStatus.FAILED, 0)
        completed = recent.get(JobStatus.COMPLETED, 0)

        if failed and not completed:
            state = "failing"
        elif pending or edited:
            state = "pending"
        else:
            state = "idle"

        return {
            "state": state,
            "pending_items": pending,
            "edited_items": edited,
            "oldest_pending_age_seconds": (
                round((now - oldest).total_seconds(), 1) if oldest else None
            ),
            "processing_jobs": processing,
            "failed_jobs_recent": failed,
            "completed_jobs_recent": completed,
            "window_hours": self._failure_window_hours,
        }

    async def stuck_jobs(self, threshold_minutes: int | None = None) -> list[dict[str, Any]]:
        """Jobs left in processing longer than the threshold."""
        minutes = self._stuck_threshold_minutes if threshold_minutes is None else threshold_minutes
        cutoff = datetime.utcnow() - timedelta(minutes=minutes)
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(GenerationJob)
                .where(
                    GenerationJob.status == JobStatus.PROCESSING,
                    GenerationJob.started_at < cutoff,
                )
                .order_by(GenerationJob.started_at.asc())
            )
            return [job.to_dict() for job in result.scalars().all()]

    async def review_breakdown(self) -> dict[str, Any]:
        async with session_scope(self._session_factory) as session:
            rows = (
                await session.execute(
                    select(
                        ContentItem.content_kind,
                        ContentItem.status,
                        func.count(ContentItem.id),
                        func.avg(ContentItem.confidence),
                    ).group_by(ContentItem.content_kind, ContentItem.status)
                )
            ).all()

        by_kind: dict[str, dict[str, Any]] = {}
        for kind, status, count, avg_confidence in rows:
            entry = by_kind.setdefault(kind, {"total": 0, "by_status": {}})
            entry["total"] += count
            entry["by_status"][status.value] = {
                "count": count,
                "avg_confidence": _round(avg_confidence, 3),
            }

        return {
            "total": sum(entry["total"] for entry in by_kind.values()),
            "by_kind": by_kind,
        }

    async def dashboard(self) -> dict[str, Any]:
        return {
            "generated_at": datetime.utcnow().isoformat(),
            "cache": await self.cache_stats(),
            "jobs": await self.job_throughput(),
            "reviewers": await self.reviewer_workload(),
            "queue": await self.queue_health(),
            "stuck_jobs": await self.stuck_jobs(),
            "review": await self.review_breakdown(),
        }


# Global service instance
stats_aggregator = StatsAggregator()

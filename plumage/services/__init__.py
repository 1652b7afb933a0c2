"""Services layer for plumage."""

from plumage.services.cache import CacheService, cache_service
from plumage.services.jobs import GenerationOutcome, JobOrchestrator, job_orchestrator
from plumage.services.maintenance import latest_snapshot, run_maintenance
from plumage.services.review import ReviewWorkflow, review_workflow
from plumage.services.stats import StatsAggregator, stats_aggregator

__all__ = [
    "CacheService",
    "cache_service",
    "GenerationOutcome",
    "JobOrchestrator",
    "job_orchestrator",
    "ReviewWorkflow",
    "review_workflow",
    "StatsAggregator",
    "stats_aggregator",
    "latest_snapshot",
    "run_maintenance",
]

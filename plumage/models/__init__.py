"""Data models for plumage."""

from plumage.models.batch_job import BatchItemError, BatchJob, BatchJobStatus
from plumage.models.cache_entry import CacheEntry
from plumage.models.content_item import ChangeType, ContentItem, ReviewHistoryEntry, ReviewStatus
from plumage.models.generation_job import GenerationJob, JobStatus
from plumage.models.metrics_snapshot import MetricsSnapshot
from plumage.models.payloads import ContentKind, GeneratedBundle

__all__ = [
    "BatchItemError",
    "BatchJob",
    "BatchJobStatus",
    "CacheEntry",
    "ChangeType",
    "ContentItem",
    "ContentKind",
    "GeneratedBundle",
    "GenerationJob",
    "JobStatus",
    "MetricsSnapshot",
    "ReviewHistoryEntry",
    "ReviewStatus",
]

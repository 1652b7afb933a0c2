"""MCP tool implementations for plumage."""

from plumage.tools.batch import batch_cancel, batch_start, batch_status
from plumage.tools.generate import content_generate
from plumage.tools.maintenance import cache_maintenance
from plumage.tools.review import (
    review_approve,
    review_bulk_approve,
    review_bulk_reject,
    review_edit,
    review_history,
    review_queue,
    review_reject,
)
from plumage.tools.stats import pipeline_stats

__all__ = [
    "batch_cancel",
    "batch_start",
    "batch_status",
    "cache_maintenance",
    "content_generate",
    "pipeline_stats",
    "review_approve",
    "review_bulk_approve",
    "review_bulk_reject",
    "review_edit",
    "review_history",
    "review_queue",
    "review_reject",
]

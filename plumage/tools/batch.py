"""Batch generation tools: start, poll and cancel."""

from uuid import UUID

from pydantic import ValidationError

from plumage.errors import NotFoundError, PlumageError
from plumage.providers import GenerationRequest
from plumage.services import job_orchestrator


async def batch_start(items: list[dict], concurrency: int | None = None) -> dict:
    """Queue a batch of generation requests and process them in the background.

    Each item is processed with up to three attempts and exponential backoff.
    Failed items do not stop the batch; they are counted and their errors
    are available through batch_status.

    Args:
        items: Requests, each with target_id, provider, content_kind and optional params.
        concurrency: Parallel workers for this batch (default from settings).

    Returns:
        dict with status ("queued" or "error") and the batch with its progress counters.
    """
    if not items:
        return {"status": "error", "reason": "items must not be empty"}

    requests = []
    for index, item in enumerate(items):
        try:
            requests.append(GenerationRequest.model_validate(item))
        except ValidationError as exc:
            return {
                "status": "error",
                "reason": f"Invalid item {index}: {exc.errors()[0]['msg']}",
            }

    try:
        batch = await job_orchestrator.launch_batch(requests, concurrency)
    except (PlumageError, ValueError) as exc:
        return {"status": "error", "reason": str(exc)}

    return {"status": "queued", "batch": batch.to_dict()}


async def batch_status(batch_id: str) -> dict:
    """Get progress, estimated time remaining and recent item errors for a batch."""
    try:
        bid = UUID(batch_id)
    except ValueError:
        return {"status": "error", "reason": f"Invalid batch_id format: {batch_id}"}

    try:
        return await job_orchestrator.get_batch_progress(bid)
    except NotFoundError as exc:
        return {"status": "error", "reason": str(exc)}


async def batch_cancel(batch_id: str) -> dict:
    """Cancel a batch. Items already running finish; no new items start."""
    try:
        bid = UUID(batch_id)
    except ValueError:
        return {"status": "error", "reason": f"Invalid batch_id format: {batch_id}"}

    try:
        cancelled = await job_orchestrator.cancel_batch(bid)
    except NotFoundError as exc:
        return {"status": "error", "reason": str(exc)}

    if not cancelled:
        batch = await job_orchestrator.get_batch(bid)
        return {
            "status": "error",
            "reason": f"Batch already {batch.status.value}",
        }
    return {"status": "cancelled", "batch_id": batch_id}

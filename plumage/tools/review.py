"""Review tools for approving, rejecting and editing generated content."""

from plumage.errors import PlumageError
from plumage.services import review_workflow


async def review_approve(item_id: str, reviewer: str, notes: str | None = None) -> dict:
    """Approve a pending or edited content item.

    Args:
        item_id: UUID of the content item.
        reviewer: Who is approving.
        notes: Optional review notes.

    Returns:
        dict with status ("approved" or "error") and the updated item.
    """
    try:
        item = await review_workflow.approve(item_id, reviewer, notes)
    except PlumageError as exc:
        return {"status": "error", "reason": str(exc)}
    return {"status": "approved", "item": item.to_dict()}


async def review_reject(item_id: str, reviewer: str, reason: str) -> dict:
    """Reject a pending or edited content item with a reason."""
    try:
        item = await review_workflow.reject(item_id, reviewer, reason)
    except PlumageError as exc:
        return {"status": "error", "reason": str(exc)}
    return {"status": "rejected", "item": item.to_dict()}


async def review_edit(
    item_id: str,
    reviewer: str,
    payload: dict,
    notes: str | None = None,
    approve: bool = True,
) -> dict:
    """Correct a content item's payload.

    By default the corrected item is approved in the same step. Pass
    approve=False to save the correction and leave the item in the queue
    with status "edited".

    Args:
        item_id: UUID of the content item.
        reviewer: Who is editing.
        payload: Replacement payload; must match the item's content kind.
        notes: Optional review notes.
        approve: Publish the corrected item immediately (default: True).

    Returns:
        dict with status ("approved", "edited" or "error") and the updated item.
    """
    try:
        item = await review_workflow.edit(item_id, payload, reviewer, notes, approve=approve)
    except PlumageError as exc:
        return {"status": "error", "reason": str(exc)}
    return {"status": item.status.value, "item": item.to_dict()}


async def review_bulk_approve(
    item_ids: list[str],
    reviewer: str,
    notes: str | None = None,
) -> dict:
    """Approve many items. Each item succeeds or fails on its own."""
    results = await review_workflow.bulk_approve(item_ids, reviewer, notes)
    return _bulk_summary(results, "approved")


async def review_bulk_reject(item_ids: list[str], reviewer: str, reason: str) -> dict:
    """Reject many items. Each item succeeds or fails on its own."""
    results = await review_workflow.bulk_reject(item_ids, reviewer, reason)
    return _bulk_summary(results, "rejected")


async def review_queue(limit: int = 50, content_kind: str | None = None) -> dict:
    """List items awaiting review (pending or edited), oldest first."""
    items = await review_workflow.pending_queue(limit=limit, content_kind=content_kind)
    return {
        "count": len(items),
        "items": [item.to_dict() for item in items],
    }


async def review_history(item_id: str) -> dict:
    """Full audit trail of a content item."""
    try:
        item = await review_workflow.get_item(item_id)
    except PlumageError as exc:
        return {"status": "error", "reason": str(exc)}
    entries = await review_workflow.history(item.id)
    return {
        "item": item.to_dict(),
        "history": [entry.to_dict() for entry in entries],
    }


def _bulk_summary(results: list[dict], success_status: str) -> dict:
    succeeded = sum(1 for r in results if r["status"] == success_status)
    return {
        "status": "completed",
        "succeeded": succeeded,
        "failed": len(results) - succeeded,
        "results": results,
    }

"""FastMCP server for plumage - AI content generation and review for bird vocabulary lessons."""

import logging

from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse

from plumage.config import settings

logging.basicConfig(
    level=getattr(logging, settings.plumage_log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
# Suppress noisy MCP streamable_http ClosedResourceError logs (stateless mode)
logging.getLogger("mcp.server.streamable_http").setLevel(logging.CRITICAL)

from plumage.tools import (  # noqa: E402
    batch_cancel,
    batch_start,
    batch_status,
    cache_maintenance,
    content_generate,
    pipeline_stats,
    review_approve,
    review_bulk_approve,
    review_bulk_reject,
    review_edit,
    review_history,
    review_queue,
    review_reject,
)

logger = logging.getLogger("plumage.server")

# Authentication is handled in front of this service
mcp = FastMCP("plumage", stateless_http=True, json_response=True)


# Health check endpoint
@mcp.custom_route("/health", methods=["GET"])
async def health_check(request: Request) -> PlainTextResponse:
    """Health check endpoint for container orchestration."""
    return PlainTextResponse("OK")


def _check_localhost(request: Request) -> bool:
    """Verify request is from localhost."""
    client_host = request.client.host if request.client else None
    return client_host in ("127.0.0.1", "localhost", "::1")


@mcp.custom_route("/internal/maintenance", methods=["POST"])
async def internal_maintenance(request: Request) -> JSONResponse:
    """Internal endpoint for the scheduler: expire, evict and snapshot metrics."""
    if not _check_localhost(request):
        return JSONResponse({"error": "Forbidden: localhost only"}, status_code=403)

    try:
        data = await request.json() if await request.body() else {}
        result = await cache_maintenance(max_entries=data.get("max_entries"))
        return JSONResponse(result)
    except Exception as e:
        logger.error("Maintenance run failed: %s", e, exc_info=True)
        return JSONResponse({"error": str(e)}, status_code=500)


# Register MCP tools
@mcp.tool()
async def generate(
    target_id: str,
    provider: str,
    content_kind: str,
    params: dict | None = None,
) -> dict:
    """Generate annotations or exercises for a target, served from cache when possible.

    Args:
        target_id: Identifier of the bird image or vocabulary set.
        provider: Provider name. Options: claude-vision, openai-exercises.
        content_kind: Options: vision_annotation, fill_in_blank, term_matching.
        params: Provider parameters, e.g. {"image_url": ..., "species": ...} for
            vision or {"topics": [...], "difficulty": 2, "count": 3} for exercises.

    Returns:
        dict with status ("cached", "generated" or "error"), cache_key,
        payload, job and content_item_ids.
    """
    return await content_generate(
        target_id=target_id,
        provider=provider,
        content_kind=content_kind,
        params=params,
    )


@mcp.tool()
async def batch_generate(items: list[dict], concurrency: int | None = None) -> dict:
    """Queue many generation requests as one background batch.

    Args:
        items: Requests, each with target_id, provider, content_kind and optional params.
        concurrency: Parallel workers (default: 5).

    Returns:
        dict with status and the batch id and progress counters.
    """
    return await batch_start(items=items, concurrency=concurrency)


@mcp.tool()
async def batch_progress(batch_id: str) -> dict:
    """Get progress, estimated time remaining and recent item errors for a batch."""
    return await batch_status(batch_id=batch_id)


@mcp.tool()
async def cancel_batch(batch_id: str) -> dict:
    """Cancel a batch. Running items finish; no new items start."""
    return await batch_cancel(batch_id=batch_id)


@mcp.tool()
async def approve(item_id: str, reviewer: str, notes: str | None = None) -> dict:
    """Approve a content item awaiting review."""
    return await review_approve(item_id=item_id, reviewer=reviewer, notes=notes)


@mcp.tool()
async def reject(item_id: str, reviewer: str, reason: str) -> dict:
    """Reject a content item awaiting review."""
    return await review_reject(item_id=item_id, reviewer=reviewer, reason=reason)


@mcp.tool()
async def edit(
    item_id: str,
    reviewer: str,
    payload: dict,
    notes: str | None = None,
    approve: bool = True,
) -> dict:
    """Correct a content item's payload.

    Args:
        item_id: UUID of the content item.
        reviewer: Who is editing.
        payload: Replacement payload matching the item's content kind.
        notes: Optional review notes.
        approve: Approve the corrected item in the same step (default: True).
            With False the item stays in the queue as "edited".

    Returns:
        dict with the new status and the updated item.
    """
    return await review_edit(
        item_id=item_id,
        reviewer=reviewer,
        payload=payload,
        notes=notes,
        approve=approve,
    )


@mcp.tool()
async def bulk_approve(item_ids: list[str], reviewer: str, notes: str | None = None) -> dict:
    """Approve several items; returns a result per item."""
    return await review_bulk_approve(item_ids=item_ids, reviewer=reviewer, notes=notes)


@mcp.tool()
async def bulk_reject(item_ids: list[str], reviewer: str, reason: str) -> dict:
    """Reject several items; returns a result per item."""
    return await review_bulk_reject(item_ids=item_ids, reviewer=reviewer, reason=reason)


@mcp.tool()
async def queue(limit: int = 50, content_kind: str | None = None) -> dict:
    """List content items awaiting review, oldest first."""
    return await review_queue(limit=limit, content_kind=content_kind)


@mcp.tool()
async def history(item_id: str) -> dict:
    """Get the full review audit trail of a content item."""
    return await review_history(item_id=item_id)


@mcp.tool()
async def stats(scope: str = "summary", provider: str | None = None) -> dict:
    """Get pipeline statistics and health metrics.

    Args:
        scope: Level of detail. Options: summary, cache, jobs, reviewers,
            queue, stuck, review, snapshot.
        provider: Restrict cache statistics to one provider.

    Returns:
        dict with statistics based on scope.
    """
    return await pipeline_stats(scope=scope, provider=provider)


@mcp.tool()
async def maintenance(max_entries: int | None = None) -> dict:
    """Expire and evict cache entries, then snapshot dashboard metrics."""
    return await cache_maintenance(max_entries=max_entries)


# ASGI app for uvicorn
app = mcp.http_app()

if __name__ == "__main__":
    mcp.run(
        transport="http",
        host=settings.plumage_host,
        port=settings.plumage_port,
        stateless_http=True,
    )

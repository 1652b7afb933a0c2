"""content_generate tool for single generation requests."""

import logging

from pydantic import ValidationError

from plumage.errors import GenerationError, PlumageError
from plumage.providers import GenerationRequest
from plumage.services import job_orchestrator

logger = logging.getLogger(__name__)


async def content_generate(
    target_id: str,
    provider: str,
    content_kind: str,
    params: dict | None = None,
) -> dict:
    """Generate content for a target, reusing a cached result when one exists.

    Identical requests (same target, provider, kind and parameters, in any
    order) are generated once and then served from the cache until their
    entry expires. Freshly generated items enter the review queue as pending.

    Args:
        target_id: Identifier of the bird image or vocabulary set.
        provider: Registered provider name, e.g. "claude-vision" or "openai-exercises".
        content_kind: One of vision_annotation, fill_in_blank, term_matching.
        params: Provider parameters (image_url, species, topics, difficulty, count...).

    Returns:
        dict with status ("cached", "generated" or "error"), cache_key, the
        generated payload, the job (if one ran) and created content item ids.

    Example:
        >>> content_generate(
        ...     target_id="cardinal-001",
        ...     provider="claude-vision",
        ...     content_kind="vision_annotation",
        ...     params={"image_url": "https://example.org/cardinal.jpg"},
        ... )
        {"status": "generated", "cache_key": "9f2c...", "content_item_ids": ["..."], ...}
    """
    try:
        request = GenerationRequest(
            target_id=target_id,
            provider=provider,
            content_kind=content_kind,
            params=params or {},
        )
    except ValidationError as exc:
        return {"status": "error", "reason": f"Invalid request: {exc.errors()[0]['msg']}"}

    try:
        outcome = await job_orchestrator.generate(request)
    except GenerationError as exc:
        return {"status": "error", "reason": str(exc), "error_kind": exc.kind}
    except PlumageError as exc:
        return {"status": "error", "reason": str(exc)}

    return {
        "status": "cached" if outcome.cached else "generated",
        **outcome.to_dict(),
    }

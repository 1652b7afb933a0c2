"""Bird image annotation provider backed by Claude vision."""

import json
import logging
import time

import anthropic
from anthropic import AsyncAnthropic

from plumage.config import settings
from plumage.errors import (
    GenerationTimeoutError,
    InvalidRequestError,
    PayloadValidationError,
    RateLimitError,
    TransientProviderError,
)
from plumage.models.payloads import ContentKind
from plumage.providers.base import GenerationRequest, ProviderResult, strip_code_fences, token_cost

logger = logging.getLogger(__name__)


ANNOTATION_SYSTEM_PROMPT = """You annotate bird photographs for Spanish vocabulary learners. Only output valid JSON. No markdown, no explanations."""

ANNOTATION_PROMPT = """Analyze this bird image{species_hint} and identify visible anatomical features that would be useful for Spanish language learning.

Return a JSON array with this exact structure:
[
  {{
    "spanish_term": "el pico",
    "english_term": "beak",
    "bounding_box": {{"x": 0.45, "y": 0.30, "width": 0.10, "height": 0.08}},
    "annotation_type": "anatomical",
    "difficulty_level": 1,
    "pronunciation": "el PEE-koh",
    "confidence": 0.95
  }}
]

Guidelines:
- Focus on: pico (beak), alas (wings), cola (tail), patas (legs), plumas (feathers), ojos (eyes), cuello (neck), pecho (breast), cabeza (head)
- Bounding boxes use normalized 0-1 coordinates; x and y are the top-left corner
- Only include features that are clearly visible
- difficulty_level: 1 (basic body parts), 2-3 (common features), 4-5 (advanced features)
- annotation_type must be one of: anatomical, behavioral, color, pattern
- confidence is 0.0-1.0
- Provide {min_items}-{max_items} annotations"""


class ClaudeVisionProvider:
    """Generate vision annotations for an image URL with the Anthropic API."""

    name = "claude-vision"

    def __init__(self, client: AsyncAnthropic | None = None):
        self._client = client

    @property
    def client(self) -> AsyncAnthropic:
        """Lazily initialize the Anthropic client."""
        if self._client is None:
            self._client = AsyncAnthropic(api_key=settings.anthropic_api_key)
        return self._client

    async def generate(self, request: GenerationRequest) -> ProviderResult:
        if request.content_kind != ContentKind.VISION_ANNOTATION:
            raise InvalidRequestError(f"{self.name} only generates vision_annotation content")

        image_url = request.params.get("image_url")
        if not image_url:
            raise InvalidRequestError("vision annotation requests need params.image_url")

        species = request.params.get("species")
        prompt = ANNOTATION_PROMPT.format(
            species_hint=f" of a {species}" if species else "",
            min_items=request.params.get("min_annotations", 3),
            max_items=request.params.get("max_annotations", 8),
        )

        started = time.monotonic()
        try:
            response = await self.client.messages.create(
                model=settings.plumage_vision_model,
                max_tokens=settings.plumage_vision_max_tokens,
                system=ANNOTATION_SYSTEM_PROMPT,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "image", "source": {"type": "url", "url": image_url}},
                            {"type": "text", "text": prompt},
                        ],
                    }
                ],
            )
        except anthropic.RateLimitError as exc:
            raise RateLimitError(str(exc), retry_after=_retry_after(exc)) from exc
        except anthropic.APITimeoutError as exc:
            raise GenerationTimeoutError(str(exc)) from exc
        except anthropic.APIConnectionError as exc:
            raise TransientProviderError(str(exc)) from exc
        except anthropic.APIStatusError as exc:
            if exc.status_code >= 500:
                raise TransientProviderError(str(exc)) from exc
            raise InvalidRequestError(str(exc)) from exc
        duration_ms = int((time.monotonic() - started) * 1000)

        content = "".join(block.text for block in response.content if block.type == "text")
        items = _parse_annotations(content)

        cost = token_cost(
            response.usage.input_tokens,
            response.usage.output_tokens,
            settings.plumage_vision_input_price_per_mtok,
            settings.plumage_vision_output_price_per_mtok,
        )
        logger.debug(
            "Claude vision annotated %s: %d items in %dms ($%.4f)",
            request.target_id, len(items), duration_ms, cost,
        )
        return ProviderResult(
            payload={"kind": ContentKind.VISION_ANNOTATION.value, "items": items},
            cost_usd=cost,
            duration_ms=duration_ms,
        )


def _parse_annotations(content: str) -> list[dict]:
    try:
        parsed = json.loads(strip_code_fences(content))
    except json.JSONDecodeError as exc:
        raise PayloadValidationError(f"Vision response is not valid JSON: {exc}") from exc

    if isinstance(parsed, dict) and isinstance(parsed.get("annotations"), list):
        parsed = parsed["annotations"]
    if not isinstance(parsed, list):
        raise PayloadValidationError("Vision response is not a JSON array")

    return [
        {"kind": ContentKind.VISION_ANNOTATION.value, **item} if isinstance(item, dict) else item
        for item in parsed
    ]


def _retry_after(exc: anthropic.RateLimitError) -> float | None:
    raw = exc.response.headers.get("retry-after") if exc.response is not None else None
    try:
        return float(raw) if raw is not None else None
    except ValueError:
        return None

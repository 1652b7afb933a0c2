"""Spanish vocabulary exercise provider backed by OpenAI chat completions."""

import json
import logging
import time

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict, Field, ValidationError

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


SYSTEM_PROMPT = (
    "You are a Spanish language teacher creating bird vocabulary exercises "
    "for English speakers. Always respond with a JSON object."
)

FILL_IN_BLANK_PROMPT = """Create {count} fill-in-the-blank exercises practicing these Spanish bird vocabulary terms: {terms}.
Difficulty: {difficulty} (1 = beginner, 5 = advanced). Topic: {topic}.

Respond with JSON:
{{
  "items": [
    {{
      "sentence": "El ___ del loro es muy fuerte.",
      "correct_answer": "pico",
      "options": ["pico", "ala", "cola", "pata"],
      "translation": "The parrot's beak is very strong."
    }}
  ]
}}

Each sentence must contain exactly one ___ blank and the options must include the correct answer."""

TERM_MATCHING_PROMPT = """Create {count} term matching exercises using Spanish bird vocabulary. Use these terms where possible: {terms}.
Difficulty: {difficulty} (1 = beginner, 5 = advanced). Topic: {topic}.

Respond with JSON:
{{
  "items": [
    {{
      "pairs": [
        {{"spanish": "el pico", "english": "beak"}},
        {{"spanish": "las alas", "english": "wings"}}
      ]
    }}
  ]
}}

Each exercise needs between 4 and 8 pairs."""

_PROMPTS = {
    ContentKind.FILL_IN_BLANK: FILL_IN_BLANK_PROMPT,
    ContentKind.TERM_MATCHING: TERM_MATCHING_PROMPT,
}


class ExerciseParams(BaseModel):
    """Request parameters the exercise prompts understand."""

    model_config = ConfigDict(extra="ignore")

    count: int = Field(default=3, ge=1, le=20)
    difficulty: int = Field(default=2, ge=1, le=5)
    topic: str | None = None
    topics: list[str] = Field(default_factory=list)
    terms: list[str] = Field(default_factory=list)


class OpenAIExerciseProvider:
    """Generate fill-in-the-blank and term matching exercises."""

    name = "openai-exercises"

    def __init__(self, client: AsyncOpenAI | None = None):
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        """Lazily initialize the OpenAI client."""
        if self._client is None:
            self._client = AsyncOpenAI(api_key=settings.openai_api_key)
        return self._client

    async def generate(self, request: GenerationRequest) -> ProviderResult:
        template = _PROMPTS.get(request.content_kind)
        if template is None:
            raise InvalidRequestError(
                f"{self.name} cannot generate {request.content_kind.value} content"
            )

        try:
            params = ExerciseParams.model_validate(request.params)
        except ValidationError as exc:
            error = exc.errors()[0]
            location = ".".join(str(part) for part in error.get("loc", ()))
            raise InvalidRequestError(f"Invalid exercise params: {location}: {error['msg']}") from exc

        difficulty = params.difficulty
        topic = params.topic
        terms = params.topics or params.terms
        prompt = template.format(
            count=params.count,
            terms=", ".join(terms) if terms else "common bird anatomy",
            difficulty=difficulty,
            topic=topic or "general",
        )

        started = time.monotonic()
        try:
            response = await self.client.chat.completions.create(
                model=settings.plumage_exercise_model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=settings.plumage_exercise_temperature,
                max_tokens=settings.plumage_exercise_max_tokens,
                response_format={"type": "json_object"},
            )
        except openai.RateLimitError as exc:
            raise RateLimitError(str(exc), retry_after=_retry_after(exc)) from exc
        except openai.APITimeoutError as exc:
            raise GenerationTimeoutError(str(exc)) from exc
        except openai.APIConnectionError as exc:
            raise TransientProviderError(str(exc)) from exc
        except openai.APIStatusError as exc:
            if exc.status_code >= 500:
                raise TransientProviderError(str(exc)) from exc
            raise InvalidRequestError(str(exc)) from exc
        duration_ms = int((time.monotonic() - started) * 1000)

        content = response.choices[0].message.content or ""
        try:
            parsed = json.loads(strip_code_fences(content))
        except json.JSONDecodeError as exc:
            raise PayloadValidationError(f"Exercise response is not valid JSON: {exc}") from exc

        raw_items = parsed.get("items") if isinstance(parsed, dict) else None
        if not isinstance(raw_items, list):
            raise PayloadValidationError("Exercise response has no items list")

        kind = request.content_kind.value
        items = []
        for raw in raw_items:
            if not isinstance(raw, dict):
                items.append(raw)
                continue
            item = {"difficulty": difficulty, **raw, "kind": kind}
            if topic and "topic" not in raw:
                item["topic"] = topic
            items.append(item)

        usage = response.usage
        cost = token_cost(
            usage.prompt_tokens if usage else 0,
            usage.completion_tokens if usage else 0,
            settings.plumage_exercise_input_price_per_mtok,
            settings.plumage_exercise_output_price_per_mtok,
        )
        logger.debug(
            "OpenAI generated %d %s exercises for %s in %dms ($%.4f)",
            len(items), kind, request.target_id, duration_ms, cost,
        )
        return ProviderResult(
            payload={"kind": kind, "items": items},
            cost_usd=cost,
            duration_ms=duration_ms,
        )


def _retry_after(exc: openai.RateLimitError) -> float | None:
    raw = exc.response.headers.get("retry-after") if exc.response is not None else None
    try:
        return float(raw) if raw is not None else None
    except ValueError:
        return None

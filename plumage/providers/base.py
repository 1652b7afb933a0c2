"""Provider interface and registry for upstream generation calls."""

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from plumage.errors import UnknownProviderError
from plumage.models.payloads import ContentKind


class GenerationRequest(BaseModel):
    """What to generate, for which target, with which provider."""

    target_id: str = Field(min_length=1)
    provider: str = Field(min_length=1)
    content_kind: ContentKind
    params: dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


@dataclass
class ProviderResult:
    """Raw provider output plus what it cost."""

    payload: Any
    cost_usd: float
    duration_ms: int


@runtime_checkable
class GenerationProvider(Protocol):
    """An upstream generation service (vision model, LLM, ...)."""

    name: str

    async def generate(self, request: GenerationRequest) -> ProviderResult: ...


class ProviderRegistry:
    """Named providers available to the orchestrator."""

    def __init__(self, providers: list[GenerationProvider] | None = None):
        self._providers: dict[str, GenerationProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: GenerationProvider) -> None:
        self._providers[provider.name] = provider

    def get(self, name: str) -> GenerationProvider:
        try:
            return self._providers[name]
        except KeyError:
            raise UnknownProviderError(
                f"Unknown provider: {name}. Registered: {', '.join(sorted(self._providers)) or 'none'}"
            ) from None

    def names(self) -> list[str]:
        return sorted(self._providers)

    def __contains__(self, name: str) -> bool:
        return name in self._providers


def token_cost(
    input_tokens: int,
    output_tokens: int,
    input_price_per_mtok: float,
    output_price_per_mtok: float,
) -> float:
    """Estimate call cost in USD from token usage and per-million-token prices."""
    cost = (input_tokens / 1_000_000) * input_price_per_mtok
    cost += (output_tokens / 1_000_000) * output_price_per_mtok
    return round(cost, 6)


def strip_code_fences(content: str) -> str:
    """Remove markdown ```json fences models sometimes wrap around JSON."""
    text = content.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()

"""Upstream generation providers."""

from plumage.providers.base import (
    GenerationProvider,
    GenerationRequest,
    ProviderRegistry,
    ProviderResult,
    token_cost,
)
from plumage.providers.claude_vision import ClaudeVisionProvider
from plumage.providers.openai_exercises import OpenAIExerciseProvider


def build_default_registry() -> ProviderRegistry:
    """Registry with the bundled vision and exercise providers."""
    return ProviderRegistry([ClaudeVisionProvider(), OpenAIExerciseProvider()])


__all__ = [
    "ClaudeVisionProvider",
    "GenerationProvider",
    "GenerationRequest",
    "OpenAIExerciseProvider",
    "ProviderRegistry",
    "ProviderResult",
    "build_default_registry",
    "token_cost",
]

"""Unit tests for provider adapters and the registry."""

import json
from types import SimpleNamespace

import pytest

from plumage.errors import InvalidRequestError, PayloadValidationError, UnknownProviderError
from plumage.models.payloads import ContentKind, parse_bundle
from plumage.providers import (
    ClaudeVisionProvider,
    GenerationRequest,
    OpenAIExerciseProvider,
    ProviderRegistry,
    build_default_registry,
    token_cost,
)
from plumage.providers.base import strip_code_fences


class _FakeAnthropicMessages:
    def __init__(self, text: str):
        self.text = text
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        return SimpleNamespace(
            content=[SimpleNamespace(type="text", text=self.text)],
            usage=SimpleNamespace(input_tokens=1000, output_tokens=500),
        )


class _FakeOpenAICompletions:
    def __init__(self, text: str):
        self.text = text
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=self.text))],
            usage=SimpleNamespace(prompt_tokens=2000, completion_tokens=1000),
        )


ANNOTATIONS = [
    {
        "spanish_term": "el pico",
        "english_term": "beak",
        "bounding_box": {"x": 0.45, "y": 0.3, "width": 0.1, "height": 0.08},
        "annotation_type": "anatomical",
        "difficulty_level": 1,
        "pronunciation": "el PEE-koh",
        "confidence": 0.95,
    },
    {
        "spanish_term": "las plumas rojas",
        "english_term": "red feathers",
        "bounding_box": {"x": 0.2, "y": 0.4, "width": 0.5, "height": 0.4},
        "annotation_type": "color",
        "difficulty_level": 3,
    },
]


def _vision_request(**params) -> GenerationRequest:
    return GenerationRequest(
        target_id="cardinal-001",
        provider="claude-vision",
        content_kind=ContentKind.VISION_ANNOTATION,
        params=params,
    )


class TestProviderRegistry:
    def test_unknown_provider(self):
        """Unknown names raise with the registered names listed."""
        registry = ProviderRegistry([ClaudeVisionProvider()])
        with pytest.raises(UnknownProviderError, match="claude-vision"):
            registry.get("dall-e")

    def test_default_registry(self):
        """Both bundled providers are registered by name."""
        registry = build_default_registry()
        assert registry.names() == ["claude-vision", "openai-exercises"]
        assert "claude-vision" in registry


class TestHelpers:
    def test_token_cost(self):
        """Cost uses per-million-token prices."""
        assert token_cost(1_000_000, 0, 3.0, 15.0) == 3.0
        assert token_cost(1000, 500, 3.0, 15.0) == 0.0105

    def test_strip_code_fences(self):
        """Markdown fences around JSON are removed."""
        assert strip_code_fences('```json\n[{"a": 1}]\n```') == '[{"a": 1}]'
        assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'


class TestClaudeVisionProvider:
    """Tests for the vision adapter with a stubbed client."""

    async def test_parses_annotations(self):
        """JSON array output becomes a vision_annotation bundle."""
        messages = _FakeAnthropicMessages(json.dumps(ANNOTATIONS))
        provider = ClaudeVisionProvider(client=SimpleNamespace(messages=messages))

        result = await provider.generate(
            _vision_request(image_url="https://images.example.org/cardinal.jpg", species="Northern Cardinal")
        )

        bundle = parse_bundle(result.payload, ContentKind.VISION_ANNOTATION)
        assert len(bundle.items) == 2
        assert bundle.items[1].confidence == 0.8
        assert result.cost_usd == 0.0105

        content = messages.kwargs["messages"][0]["content"]
        assert content[0]["source"]["url"] == "https://images.example.org/cardinal.jpg"
        assert "Northern Cardinal" in content[1]["text"]

    async def test_fenced_output(self):
        """Fenced JSON is accepted."""
        text = "```json\n" + json.dumps(ANNOTATIONS) + "\n```"
        provider = ClaudeVisionProvider(client=SimpleNamespace(messages=_FakeAnthropicMessages(text)))

        result = await provider.generate(_vision_request(image_url="https://x.example/a.jpg"))
        assert len(result.payload["items"]) == 2

    async def test_invalid_json(self):
        """Unparsable output is a validation error, not retried."""
        provider = ClaudeVisionProvider(
            client=SimpleNamespace(messages=_FakeAnthropicMessages("I see a red bird"))
        )
        with pytest.raises(PayloadValidationError):
            await provider.generate(_vision_request(image_url="https://x.example/a.jpg"))

    async def test_missing_image_url(self):
        """Requests without an image cannot be annotated."""
        messages = _FakeAnthropicMessages("[]")
        provider = ClaudeVisionProvider(client=SimpleNamespace(messages=messages))

        with pytest.raises(InvalidRequestError):
            await provider.generate(_vision_request())
        assert messages.kwargs is None


class TestOpenAIExerciseProvider:
    """Tests for the exercise adapter with a stubbed client."""

    async def test_fill_in_blank(self):
        """Items get the requested kind, difficulty and topic."""
        text = json.dumps(
            {
                "items": [
                    {
                        "sentence": "El ___ del loro es fuerte.",
                        "correct_answer": "pico",
                        "options": ["pico", "ala", "cola"],
                        "translation": "The parrot's beak is strong.",
                    }
                ]
            }
        )
        completions = _FakeOpenAICompletions(text)
        provider = OpenAIExerciseProvider(
            client=SimpleNamespace(chat=SimpleNamespace(completions=completions))
        )

        result = await provider.generate(
            GenerationRequest(
                target_id="anatomy-set",
                provider="openai-exercises",
                content_kind=ContentKind.FILL_IN_BLANK,
                params={"topics": ["pico", "ala"], "difficulty": 3, "topic": "anatomy"},
            )
        )

        bundle = parse_bundle(result.payload, ContentKind.FILL_IN_BLANK)
        assert bundle.items[0].difficulty == 3
        assert bundle.items[0].topic == "anatomy"
        assert result.cost_usd == 0.0009
        assert completions.kwargs["response_format"] == {"type": "json_object"}

    async def test_rejects_vision_kind(self):
        """Vision annotation is not an exercise kind."""
        provider = OpenAIExerciseProvider(
            client=SimpleNamespace(chat=SimpleNamespace(completions=_FakeOpenAICompletions("{}")))
        )
        with pytest.raises(InvalidRequestError):
            await provider.generate(_vision_request(image_url="https://x.example/a.jpg"))

    async def test_missing_items(self):
        """A JSON object without items is a validation error."""
        provider = OpenAIExerciseProvider(
            client=SimpleNamespace(
                chat=SimpleNamespace(completions=_FakeOpenAICompletions('{"exercises": []}'))
            )
        )
        with pytest.raises(PayloadValidationError):
            await provider.generate(
                GenerationRequest(
                    target_id="anatomy-set",
                    provider="openai-exercises",
                    content_kind=ContentKind.TERM_MATCHING,
                )
            )

    @pytest.mark.parametrize(
        "params",
        [
            {"difficulty": "hard"},
            {"difficulty": 9},
            {"topics": "cardinal"},
            {"topics": [1, 2]},
            {"count": 0},
        ],
    )
    async def test_invalid_params(self, params):
        """Malformed parameters are rejected before the API is called."""
        completions = _FakeOpenAICompletions('{"items": []}')
        provider = OpenAIExerciseProvider(
            client=SimpleNamespace(chat=SimpleNamespace(completions=completions))
        )

        with pytest.raises(InvalidRequestError, match="Invalid exercise params"):
            await provider.generate(
                GenerationRequest(
                    target_id="anatomy-set",
                    provider="openai-exercises",
                    content_kind=ContentKind.FILL_IN_BLANK,
                    params=params,
                )
            )
        assert completions.kwargs is None

    async def test_numeric_strings_accepted(self):
        """Difficulty given as a numeric string is coerced."""
        completions = _FakeOpenAICompletions('{"items": []}')
        provider = OpenAIExerciseProvider(
            client=SimpleNamespace(chat=SimpleNamespace(completions=completions))
        )

        result = await provider.generate(
            GenerationRequest(
                target_id="anatomy-set",
                provider="openai-exercises",
                content_kind=ContentKind.FILL_IN_BLANK,
                params={"difficulty": "4", "terms": ["pico", "ala"]},
            )
        )

        assert result.payload == {"kind": "fill_in_blank", "items": []}
        prompt = completions.kwargs["messages"][1]["content"]
        assert "Difficulty: 4" in prompt
        assert "pico, ala" in prompt

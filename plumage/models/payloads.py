"""Typed payload variants for generated content.

Every generation result and every content item carries one of a closed set of
payload shapes, discriminated by ``kind``. Raw provider output is validated
here before it reaches the cache or the review queue.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, model_validator

from plumage.errors import PayloadValidationError


class ContentKind(str, Enum):
    """Kinds of generated content."""

    VISION_ANNOTATION = "vision_annotation"
    FILL_IN_BLANK = "fill_in_blank"
    TERM_MATCHING = "term_matching"


class BoundingBox(BaseModel):
    """Normalized (0-1) box; x and y are the top-left corner."""

    x: float = Field(ge=0.0, le=1.0)
    y: float = Field(ge=0.0, le=1.0)
    width: float = Field(gt=0.0, le=1.0)
    height: float = Field(gt=0.0, le=1.0)


class AnnotationPayload(BaseModel):
    """A labelled region on a bird image."""

    kind: Literal["vision_annotation"] = "vision_annotation"
    spanish_term: str = Field(min_length=1)
    english_term: str = Field(min_length=1)
    bounding_box: BoundingBox
    annotation_type: Literal["anatomical", "behavioral", "color", "pattern"]
    difficulty_level: int = Field(ge=1, le=5)
    pronunciation: str | None = None
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)


class FillInBlankPayload(BaseModel):
    """Sentence with a single ``___`` gap and multiple-choice options."""

    kind: Literal["fill_in_blank"] = "fill_in_blank"
    sentence: str
    correct_answer: str = Field(min_length=1)
    options: list[str] = Field(min_length=2, max_length=6)
    difficulty: int = Field(ge=1, le=5)
    topic: str | None = None
    translation: str | None = None

    @model_validator(mode="after")
    def _check_blank_and_answer(self) -> "FillInBlankPayload":
        if "___" not in self.sentence:
            raise ValueError("sentence must contain a ___ blank")
        if self.correct_answer not in self.options:
            raise ValueError("options must include the correct answer")
        return self


class TermPair(BaseModel):
    spanish: str = Field(min_length=1)
    english: str = Field(min_length=1)


class TermMatchingPayload(BaseModel):
    """Spanish/English pairs to be matched."""

    kind: Literal["term_matching"] = "term_matching"
    pairs: list[TermPair] = Field(min_length=2, max_length=10)
    difficulty: int = Field(ge=1, le=5)
    topic: str | None = None


ContentPayload = Annotated[
    Union[AnnotationPayload, FillInBlankPayload, TermMatchingPayload],
    Field(discriminator="kind"),
]


class GeneratedBundle(BaseModel):
    """Result of one generation call: one or more items of the same kind."""

    kind: ContentKind
    items: list[ContentPayload] = Field(min_length=1, max_length=20)

    @model_validator(mode="after")
    def _check_item_kinds(self) -> "GeneratedBundle":
        for index, item in enumerate(self.items):
            if item.kind != self.kind.value:
                raise ValueError(f"item {index} has kind {item.kind}, expected {self.kind.value}")
        return self


_content_adapter: TypeAdapter = TypeAdapter(ContentPayload)


def parse_bundle(raw: Any, expected_kind: ContentKind | str | None = None) -> GeneratedBundle:
    """Validate raw provider output as a GeneratedBundle.

    Raises:
        PayloadValidationError: if the shape is wrong or the kind is unexpected.
    """
    try:
        bundle = GeneratedBundle.model_validate(raw)
    except ValidationError as exc:
        raise PayloadValidationError(f"Malformed generation payload: {_summarize(exc)}") from exc

    if expected_kind is not None and bundle.kind != ContentKind(expected_kind):
        raise PayloadValidationError(
            f"Expected {ContentKind(expected_kind).value} payload, got {bundle.kind.value}"
        )
    return bundle


def parse_content(raw: Any, expected_kind: ContentKind | str | None = None):
    """Validate a single content item payload."""
    try:
        item = _content_adapter.validate_python(raw)
    except ValidationError as exc:
        raise PayloadValidationError(f"Malformed content payload: {_summarize(exc)}") from exc

    if expected_kind is not None and item.kind != ContentKind(expected_kind).value:
        raise PayloadValidationError(
            f"Expected {ContentKind(expected_kind).value} payload, got {item.kind}"
        )
    return item


def _summarize(exc: ValidationError) -> str:
    errors = exc.errors()
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    suffix = f" (+{len(errors) - 1} more)" if len(errors) > 1 else ""
    return f"{location}: {first.get('msg')}{suffix}"

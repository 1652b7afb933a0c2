"""Unit tests for payload variant validation."""

import pytest

from plumage.errors import PayloadValidationError
from plumage.models.payloads import (
    AnnotationPayload,
    ContentKind,
    FillInBlankPayload,
    TermMatchingPayload,
    parse_bundle,
    parse_content,
)
from tests.factories import AnnotationPayloadFactory, annotation_bundle, fill_in_blank_bundle


class TestParseBundle:
    """Tests for bundle validation at the provider boundary."""

    def test_valid_annotation_bundle(self):
        """A well-formed bundle parses into typed items."""
        bundle = parse_bundle(annotation_bundle(3))

        assert bundle.kind == ContentKind.VISION_ANNOTATION
        assert len(bundle.items) == 3
        assert all(isinstance(item, AnnotationPayload) for item in bundle.items)

    def test_confidence_defaults(self):
        """Missing confidence falls back to 0.8."""
        item = AnnotationPayloadFactory()
        del item["confidence"]
        bundle = parse_bundle({"kind": "vision_annotation", "items": [item]})

        assert bundle.items[0].confidence == 0.8

    def test_bounding_box_out_of_range(self):
        """Coordinates must be normalized to 0-1."""
        item = AnnotationPayloadFactory(bounding_box={"x": 1.4, "y": 0.1, "width": 0.1, "height": 0.1})
        with pytest.raises(PayloadValidationError, match="bounding_box"):
            parse_bundle({"kind": "vision_annotation", "items": [item]})

    def test_unknown_annotation_type(self):
        """annotation_type is a closed set."""
        item = AnnotationPayloadFactory(annotation_type="habitat")
        with pytest.raises(PayloadValidationError):
            parse_bundle({"kind": "vision_annotation", "items": [item]})

    def test_mixed_kinds_rejected(self):
        """Every item must match the bundle kind."""
        raw = annotation_bundle(1)
        raw["items"].extend(fill_in_blank_bundle(1)["items"])
        with pytest.raises(PayloadValidationError, match="expected vision_annotation"):
            parse_bundle(raw)

    def test_empty_bundle_rejected(self):
        """A bundle needs at least one item."""
        with pytest.raises(PayloadValidationError):
            parse_bundle({"kind": "vision_annotation", "items": []})

    def test_expected_kind_mismatch(self):
        """Bundles of another kind than requested are rejected."""
        with pytest.raises(PayloadValidationError, match="Expected fill_in_blank"):
            parse_bundle(annotation_bundle(1), ContentKind.FILL_IN_BLANK)

    def test_not_a_dict(self):
        """Arbitrary JSON never reaches the cache."""
        with pytest.raises(PayloadValidationError):
            parse_bundle(["el pico", "beak"])


class TestExercisePayloads:
    """Tests for exercise variants."""

    def test_fill_in_blank_requires_blank(self):
        """Sentence needs a ___ gap."""
        with pytest.raises(ValueError):
            FillInBlankPayload(
                sentence="El pico es rojo.",
                correct_answer="pico",
                options=["pico", "ala"],
                difficulty=1,
            )

    def test_fill_in_blank_answer_in_options(self):
        """The correct answer must be one of the options."""
        with pytest.raises(ValueError):
            FillInBlankPayload(
                sentence="El ___ es rojo.",
                correct_answer="pico",
                options=["ala", "cola"],
                difficulty=1,
            )

    def test_term_matching_needs_two_pairs(self):
        """Matching with a single pair is not an exercise."""
        with pytest.raises(PayloadValidationError):
            parse_content(
                {"kind": "term_matching", "pairs": [{"spanish": "el pico", "english": "beak"}], "difficulty": 1}
            )

    def test_term_matching_valid(self):
        """Valid term matching payload parses."""
        item = parse_content(
            {
                "kind": "term_matching",
                "pairs": [
                    {"spanish": "el pico", "english": "beak"},
                    {"spanish": "la cola", "english": "tail"},
                ],
                "difficulty": 2,
            },
            ContentKind.TERM_MATCHING,
        )
        assert isinstance(item, TermMatchingPayload)
        assert len(item.pairs) == 2


class TestParseContent:
    def test_kind_discriminates(self):
        """The kind tag selects the variant."""
        item = parse_content(AnnotationPayloadFactory())
        assert isinstance(item, AnnotationPayload)

    def test_unknown_kind(self):
        """Unknown kinds fail validation."""
        with pytest.raises(PayloadValidationError):
            parse_content({"kind": "crossword"})

    def test_expected_kind_mismatch(self):
        """An edit cannot change an item's kind."""
        with pytest.raises(PayloadValidationError, match="Expected fill_in_blank"):
            parse_content(AnnotationPayloadFactory(), "fill_in_blank")

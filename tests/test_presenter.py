"""Tests for mapping classifications to emoji."""

from __future__ import annotations

import pytest

from catmoji.errors import BackendError, ImageDecodeError
from catmoji.ml.image_classifier import ClassificationResult
from catmoji.presenter import (
    DEFAULT_SIGN,
    UNKNOWN_TOKEN,
    present,
    present_failure,
    sign_for,
)


class TestSignFor:
    @pytest.mark.parametrize(
        ("label", "expected"),
        [("happy", "😺"), ("sad", "😿"), ("mad", "😾"), ("surprised", "🙀")],
    )
    def test_known_moods(self, label: str, expected: str) -> None:
        assert sign_for(label) == expected

    @pytest.mark.parametrize("label", ["relaxed", "Happy", "", "dog"])
    def test_unknown_moods_get_default(self, label: str) -> None:
        assert sign_for(label) == DEFAULT_SIGN == "😸"


class TestPresent:
    def test_second_entry_below_threshold_keeps_blank_line(self) -> None:
        result = ClassificationResult.from_pairs([("happy", 0.91), ("sad", 0.2)])
        assert present(result) == "😺\n"

    def test_two_confident_entries(self) -> None:
        result = ClassificationResult.from_pairs([("surprised", 0.75), ("mad", 0.65)])
        assert present(result) == "🙀\n😾"

    def test_empty_result_is_unknown(self) -> None:
        assert present(ClassificationResult()) == UNKNOWN_TOKEN == "🤷"

    def test_threshold_is_exclusive(self) -> None:
        result = ClassificationResult.from_pairs([("happy", 0.6), ("sad", 0.1)])
        assert present(result) == "\n"

    def test_only_top_two_are_shown(self) -> None:
        result = ClassificationResult.from_pairs([("sad", 0.7), ("happy", 0.95), ("mad", 0.9)])
        assert present(result) == "😺\n😾"

    def test_single_classification(self) -> None:
        result = ClassificationResult.from_pairs([("relaxed", 0.99)])
        assert present(result) == "😸"

    def test_unsorted_input_is_ranked(self) -> None:
        result = ClassificationResult.from_pairs([("mad", 0.65), ("surprised", 0.75)])
        assert present(result) == "🙀\n😾"

    def test_custom_threshold_and_top_k(self) -> None:
        result = ClassificationResult.from_pairs([("happy", 0.5), ("sad", 0.4), ("mad", 0.35)])
        assert present(result, threshold=0.3, top_k=3) == "😺\n😿\n😾"

    def test_is_idempotent(self) -> None:
        result = ClassificationResult.from_pairs([("happy", 0.91), ("sad", 0.2)])
        assert present(result) == present(result)


class TestPresentFailure:
    def test_embeds_reason(self) -> None:
        text = present_failure(BackendError("timeout"))
        assert "timeout" in text
        assert text.startswith("Unable to classify image.")

    def test_falls_back_to_kind_without_message(self) -> None:
        assert present_failure(ImageDecodeError()).endswith("unreadable_image")

"""Tests for the ONNX classification adapter."""

from __future__ import annotations

import dataclasses
from unittest.mock import MagicMock

import numpy as np
import pytest

from catmoji.config import Settings
from catmoji.errors import BackendError, ModelLoadError
from catmoji.ml.image_classifier import (
    Classification,
    ClassificationResult,
    OnnxImageClassifier,
    load_classifier,
    softmax,
)
from catmoji.ml.model_manager import MODEL_REGISTRY
from catmoji.ml.orientation import Orientation
from catmoji.ml.preprocessing import PillowPreprocessor

SPEC = MODEL_REGISTRY["cat_emotion_v1"]

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_session(
    scores: list[float],
    shape: list[object] | None = None,
    metadata: dict[str, str] | None = None,
) -> MagicMock:
    session = MagicMock()
    model_input = MagicMock()
    model_input.name = "pixel_values"
    model_input.shape = shape if shape is not None else [1, 3, 32, 32]
    session.get_inputs.return_value = [model_input]
    session.get_modelmeta.return_value.custom_metadata_map = metadata or {}
    session.run.return_value = [np.asarray([scores], dtype=np.float32)]
    return session


def _preprocessor() -> PillowPreprocessor:
    return PillowPreprocessor(max_image_pixels=16_777_216)


def _image(height: int = 12, width: int = 20) -> np.ndarray:
    return np.zeros((height, width, 3), dtype=np.uint8)


# ---------------------------------------------------------------------------
# ClassificationResult
# ---------------------------------------------------------------------------


class TestClassificationResult:
    def test_sorts_by_descending_confidence(self) -> None:
        result = ClassificationResult.from_pairs([("sad", 0.1), ("happy", 0.7), ("mad", 0.2)])
        assert [c.label for c in result] == ["happy", "mad", "sad"]

    def test_top_and_indexing(self) -> None:
        result = ClassificationResult.from_pairs([("sad", 0.1), ("happy", 0.7)])
        assert result.top(1) == (Classification("happy", 0.7),)
        assert result[1].label == "sad"
        assert len(result) == 2

    def test_empty(self) -> None:
        assert ClassificationResult().is_empty
        assert not ClassificationResult.from_pairs([("happy", 0.5)]).is_empty

    def test_is_immutable(self) -> None:
        result = ClassificationResult()
        with pytest.raises(dataclasses.FrozenInstanceError):
            result.classifications = ()  # type: ignore[misc]


# ---------------------------------------------------------------------------
# OnnxImageClassifier
# ---------------------------------------------------------------------------


class TestOnnxImageClassifier:
    def test_classify_ranks_registry_labels(self) -> None:
        session = _make_session([0.05, 0.1, 0.05, 0.75, 0.05])
        classifier = OnnxImageClassifier(session, SPEC, _preprocessor())

        result = classifier.classify(_image(), Orientation.UP)

        assert result[0] == Classification("surprised", pytest.approx(0.75))
        assert result[1].label == "mad"
        assert len(result) == 5

    def test_runs_session_with_model_input_shape(self) -> None:
        session = _make_session([0.2] * 5, shape=[1, 3, 16, 24])
        classifier = OnnxImageClassifier(session, SPEC, _preprocessor())

        classifier.classify(_image(), Orientation.UP)

        output_names, feeds = session.run.call_args.args
        assert output_names is None
        assert feeds["pixel_values"].shape == (1, 3, 16, 24)
        assert classifier.input_size == (24, 16)

    def test_dynamic_input_shape_uses_spec_default(self) -> None:
        session = _make_session([0.2] * 5, shape=["batch", 3, "height", "width"])
        classifier = OnnxImageClassifier(session, SPEC, _preprocessor())
        assert classifier.input_size == SPEC.input_size

    def test_orientation_is_applied_before_preprocessing(self) -> None:
        preprocessor = MagicMock()
        preprocessor.prepare_input.return_value = np.zeros((1, 3, 32, 32), dtype=np.float32)
        classifier = OnnxImageClassifier(_make_session([0.2] * 5), SPEC, preprocessor)

        classifier.classify(_image(height=12, width=20), Orientation.RIGHT)

        upright = preprocessor.prepare_input.call_args.args[0]
        assert upright.shape == (20, 12, 3)

    def test_labels_from_json_metadata(self) -> None:
        session = _make_session([0.9, 0.1], metadata={"labels": '["happy", "grumpy"]'})
        classifier = OnnxImageClassifier(session, SPEC, _preprocessor())
        assert classifier.labels == ("happy", "grumpy")
        assert classifier.classify(_image(), Orientation.UP)[0].label == "happy"

    def test_labels_from_comma_separated_metadata(self) -> None:
        session = _make_session([0.9, 0.1], metadata={"labels": "sad, mad"})
        classifier = OnnxImageClassifier(session, SPEC, _preprocessor())
        assert classifier.labels == ("sad", "mad")

    def test_labels_from_index_mapping_metadata(self) -> None:
        session = _make_session([0.9, 0.1], metadata={"labels": '{"1": "mad", "0": "sad"}'})
        classifier = OnnxImageClassifier(session, SPEC, _preprocessor())
        assert classifier.labels == ("sad", "mad")

    def test_labels_from_label_to_index_metadata(self) -> None:
        session = _make_session([0.9, 0.1], metadata={"labels": '{"sad": 1, "happy": 0}'})
        classifier = OnnxImageClassifier(session, SPEC, _preprocessor())
        assert classifier.labels == ("happy", "sad")

    def test_unreadable_label_metadata_raises_model_load_error(self) -> None:
        session = _make_session([0.9, 0.1], metadata={"labels": '{"happy": "first", "sad": "second"}'})
        with pytest.raises(ModelLoadError, match="label metadata"):
            OnnxImageClassifier(session, SPEC, _preprocessor())

    def test_explicit_labels_win(self) -> None:
        session = _make_session([0.9, 0.1], metadata={"labels": "sad,mad"})
        classifier = OnnxImageClassifier(session, SPEC, _preprocessor(), labels=["happy", "surprised"])
        assert classifier.labels == ("happy", "surprised")

    def test_softmax_applied_for_logit_models(self) -> None:
        spec = MODEL_REGISTRY["cat_emotion_v1_logits"]
        session = _make_session([5.0, 1.0, 0.0, -1.0, 0.5])
        classifier = OnnxImageClassifier(session, spec, _preprocessor())

        result = classifier.classify(_image(), Orientation.UP)

        assert sum(c.confidence for c in result) == pytest.approx(1.0, abs=1e-5)
        assert result[0].label == "happy"
        assert result[0].confidence > 0.9

    def test_score_label_mismatch_raises(self) -> None:
        classifier = OnnxImageClassifier(_make_session([0.5, 0.5]), SPEC, _preprocessor())
        with pytest.raises(BackendError, match="2 scores for 5 labels"):
            classifier.classify(_image(), Orientation.UP)

    @pytest.mark.parametrize("bad", [float("nan"), float("inf")])
    def test_non_finite_scores_raise(self, bad: float) -> None:
        classifier = OnnxImageClassifier(_make_session([bad, 0.1, 0.1, 0.1, 0.1]), SPEC, _preprocessor())
        with pytest.raises(BackendError, match="non-finite"):
            classifier.classify(_image(), Orientation.UP)

    def test_empty_scores_give_empty_result(self) -> None:
        classifier = OnnxImageClassifier(_make_session([]), SPEC, _preprocessor())
        assert classifier.classify(_image(), Orientation.UP).is_empty

    def test_session_failure_raises_backend_error(self) -> None:
        session = _make_session([0.2] * 5)
        session.run.side_effect = RuntimeError("device lost")
        classifier = OnnxImageClassifier(session, SPEC, _preprocessor())

        with pytest.raises(BackendError, match="device lost"):
            classifier.classify(_image(), Orientation.UP)

    def test_model_name(self) -> None:
        classifier = OnnxImageClassifier(_make_session([0.2] * 5), SPEC, _preprocessor())
        assert classifier.model_name == "cat_emotion_v1"


class TestSoftmax:
    def test_sums_to_one(self) -> None:
        probs = softmax(np.asarray([1.0, 2.0, 3.0], dtype=np.float32))
        assert probs.sum() == pytest.approx(1.0)
        assert probs.argmax() == 2

    def test_stable_for_large_logits(self) -> None:
        probs = softmax(np.asarray([1000.0, 1000.0], dtype=np.float32))
        np.testing.assert_allclose(probs, [0.5, 0.5])


class TestLoadClassifier:
    def test_builds_classifier_from_manager_session(self) -> None:
        manager = MagicMock()
        manager.spec = dataclasses.replace(SPEC, labels=("happy", "sad"))
        manager.get_session.return_value = _make_session([0.3, 0.7])

        classifier = load_classifier(Settings(), manager=manager)

        manager.get_session.assert_called_once_with()
        assert classifier.labels == ("happy", "sad")
        assert classifier.classify(_image(), Orientation.UP)[0].label == "sad"

    def test_bad_label_metadata_surfaces_as_model_load_error(self) -> None:
        manager = MagicMock()
        manager.spec = SPEC
        manager.get_session.return_value = _make_session([0.3, 0.7], metadata={"labels": '{"happy": "x", "sad": 1}'})

        with pytest.raises(ModelLoadError):
            load_classifier(Settings(), manager=manager)

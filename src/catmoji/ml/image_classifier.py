"""Image classification adapter around an opaque ONNX model.

The adapter owns no algorithm of its own: it turns the input image upright,
converts it to the model's tensor layout, runs the session, and pairs the
scores with labels.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

import numpy as np

from catmoji.errors import BackendError, ModelLoadError
from catmoji.ml.model_manager import OnnxModelManager
from catmoji.ml.orientation import Orientation, to_upright
from catmoji.ml.preprocessing import PillowPreprocessor

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from catmoji.config import Settings
    from catmoji.ml.model_manager import ModelManager, ModelSpec
    from catmoji.ml.preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Classification:
    """A single classification prediction."""

    label: str
    confidence: float


@dataclass(frozen=True)
class ClassificationResult:
    """Classifications for one image, ordered by descending confidence."""

    classifications: tuple[Classification, ...] = field(default=())

    def __post_init__(self) -> None:
        ranked = tuple(sorted(self.classifications, key=lambda c: c.confidence, reverse=True))
        object.__setattr__(self, "classifications", ranked)

    @classmethod
    def from_pairs(cls, pairs: Sequence[tuple[str, float]]) -> ClassificationResult:
        return cls(tuple(Classification(label=label, confidence=float(conf)) for label, conf in pairs))

    @property
    def is_empty(self) -> bool:
        return not self.classifications

    def top(self, k: int) -> tuple[Classification, ...]:
        """Return the ``k`` highest-ranked classifications."""
        return self.classifications[:k]

    def __len__(self) -> int:
        return len(self.classifications)

    def __iter__(self) -> Iterator[Classification]:
        return iter(self.classifications)

    def __getitem__(self, index: int) -> Classification:
        return self.classifications[index]


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def classify(self, image: NDArray[np.uint8], orientation: Orientation) -> ClassificationResult:
        """Classify an image and return ranked labels.

        Args:
            image: HxWx3 RGB uint8 array, as stored.
            orientation: How the stored pixels map to upright.

        Returns:
            Classification results sorted by confidence (descending).

        Raises:
            ImageDecodeError: If the image cannot be converted to the model input.
            BackendError: If the model fails to run.
        """
        ...


def softmax(scores: NDArray[np.float32]) -> NDArray[np.float32]:
    shifted = scores - np.max(scores)
    exp = np.exp(shifted)
    return (exp / exp.sum()).astype(np.float32)


class OnnxImageClassifier:
    """Runs an ONNX classification session on upright, normalized images."""

    def __init__(
        self,
        session: InferenceSession,
        spec: ModelSpec,
        preprocessor: ImagePreprocessor,
        labels: Sequence[str] | None = None,
    ) -> None:
        self._session = session
        self._spec = spec
        self._preprocessor = preprocessor

        model_input = session.get_inputs()[0]
        self._input_name: str = model_input.name
        self._input_size = self._resolve_input_size(model_input.shape, spec.input_size)
        self._labels: tuple[str, ...] = tuple(labels or self._read_metadata_labels(session) or spec.labels)

    @property
    def model_name(self) -> str:
        return self._spec.name

    @property
    def labels(self) -> tuple[str, ...]:
        return self._labels

    @property
    def input_size(self) -> tuple[int, int]:
        """Model input as (width, height)."""
        return self._input_size

    def classify(self, image: NDArray[np.uint8], orientation: Orientation) -> ClassificationResult:
        upright = to_upright(image, orientation)
        tensor = self._preprocessor.prepare_input(upright, self._input_size, self._spec.mean, self._spec.std)

        try:
            outputs = self._session.run(None, {self._input_name: tensor})
        except Exception as exc:
            raise BackendError(f"Inference failed: {exc}") from exc

        if not outputs:
            raise BackendError("Model returned no outputs")
        scores = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        if scores.size == 0:
            return ClassificationResult()
        if scores.size != len(self._labels):
            raise BackendError(f"Model returned {scores.size} scores for {len(self._labels)} labels")

        if self._spec.softmax:
            scores = softmax(scores)
        if not np.all(np.isfinite(scores)):
            raise BackendError("Model returned non-finite scores")
        scores = np.clip(scores, 0.0, 1.0)

        result = ClassificationResult.from_pairs(list(zip(self._labels, scores.tolist(), strict=True)))
        logger.debug("Classified image with %s: %s", self.model_name, result.top(3))
        return result

    @staticmethod
    def _resolve_input_size(shape: Sequence[object], default: tuple[int, int]) -> tuple[int, int]:
        # NCHW; dynamic dimensions come back as strings or None
        if len(shape) == 4:
            height, width = shape[2], shape[3]
            if isinstance(height, int) and isinstance(width, int) and height > 0 and width > 0:
                return (width, height)
        return default

    @staticmethod
    def _read_metadata_labels(session: InferenceSession) -> tuple[str, ...] | None:
        """Read labels from the ONNX 'labels' metadata entry.

        Raises:
            ModelLoadError: If the entry is present but cannot be turned into labels.
        """
        raw = session.get_modelmeta().custom_metadata_map.get("labels")
        if not isinstance(raw, str) or not raw.strip():
            return None
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = raw.split(",")
        if not isinstance(parsed, list | dict):
            parsed = raw.split(",")
        if isinstance(parsed, dict):
            parsed = _labels_from_mapping(parsed)
        labels = tuple(str(label).strip() for label in parsed)
        return labels or None


def _labels_from_mapping(mapping: dict[str, object]) -> list[str]:
    try:
        if all(key.isdigit() for key in mapping):
            # {"0": "happy", "1": "mad", ...}
            return [str(mapping[key]) for key in sorted(mapping, key=int)]
        # {"happy": 0, "mad": 1, ...}
        return [label for label, _ in sorted(mapping.items(), key=lambda item: int(item[1]))]  # type: ignore[call-overload]
    except (TypeError, ValueError) as exc:
        raise ModelLoadError(f"Unreadable label metadata: {exc}") from exc


def load_classifier(
    settings: Settings,
    manager: ModelManager | None = None,
    preprocessor: ImagePreprocessor | None = None,
) -> OnnxImageClassifier:
    """Build the process-wide classifier.

    Raises:
        ModelLoadError: If the model artifact cannot be found or loaded.
    """
    manager = manager or OnnxModelManager(settings)
    preprocessor = preprocessor or PillowPreprocessor(settings.max_image_pixels, settings.crop_mode)
    session = manager.get_session()
    classifier = OnnxImageClassifier(session, manager.spec, preprocessor)
    logger.info(
        "Classifier %s ready (input=%sx%s, labels=%s)",
        classifier.model_name,
        classifier.input_size[0],
        classifier.input_size[1],
        ",".join(classifier.labels),
    )
    return classifier

"""Error types raised by the classification workflow."""

from __future__ import annotations

from enum import StrEnum


class InferenceErrorKind(StrEnum):
    MODEL_LOAD = "model_load"
    UNREADABLE_IMAGE = "unreadable_image"
    UNSUPPORTED_ORIENTATION = "unsupported_orientation"
    BACKEND = "backend"


class InferenceError(Exception):
    """Base class for classification failures.

    Each subclass carries a ``kind`` so callers can decide whether to
    terminate, retry, or degrade without matching on exception types.
    """

    kind: InferenceErrorKind = InferenceErrorKind.BACKEND

    @property
    def reason(self) -> str:
        """Human-readable failure description."""
        return str(self) or self.kind.value


class ModelLoadError(InferenceError):
    """The model artifact is missing or cannot be parsed."""

    kind = InferenceErrorKind.MODEL_LOAD


class ImageDecodeError(InferenceError):
    """The image cannot be converted to the classifier's input representation."""

    kind = InferenceErrorKind.UNREADABLE_IMAGE


class UnsupportedOrientationError(InferenceError):
    """An orientation value outside the known enumeration."""

    kind = InferenceErrorKind.UNSUPPORTED_ORIENTATION


class BackendError(InferenceError):
    """The inference backend failed while running the model."""

    kind = InferenceErrorKind.BACKEND

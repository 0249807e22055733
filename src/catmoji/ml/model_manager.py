"""Model manager: locate, download, and load the ONNX classifier.

Resolves the model artifact (a local file or a HuggingFace download),
creates one InferenceSession per process and caches it. Every failure
along the way is reported as a ModelLoadError.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from huggingface_hub.errors import HfHubHTTPError
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from catmoji.errors import ModelLoadError

if TYPE_CHECKING:
    from catmoji.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    @property
    def spec(self) -> ModelSpec:
        """Return the registry entry of the configured model."""
        ...

    def resolve_model_path(self) -> Path:
        """Return the local path of the model artifact, downloading it if needed."""
        ...

    def get_session(self) -> InferenceSession:
        """Return the cached or newly created InferenceSession."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently loaded models."""
        ...

    def shutdown(self) -> None:
        """Release the cached session."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------

IMAGENET_MEAN: tuple[float, float, float] = (0.485, 0.456, 0.406)
IMAGENET_STD: tuple[float, float, float] = (0.229, 0.224, 0.225)


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX classifier."""

    name: str
    repo_id: str
    filename: str
    subfolder: str | None
    labels: tuple[str, ...]
    license: str
    input_size: tuple[int, int] = (224, 224)
    mean: tuple[float, float, float] = IMAGENET_MEAN
    std: tuple[float, float, float] = IMAGENET_STD
    # True when the model emits logits rather than probabilities
    softmax: bool = False


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "cat_emotion_v1": ModelSpec(
        name="cat_emotion_v1",
        repo_id="catmoji/cat-emotion-classifier",
        filename="cat_emotion_v1.onnx",
        subfolder=None,
        labels=("happy", "mad", "sad", "surprised", "relaxed"),
        license="MIT",
    ),
    "cat_emotion_v1_logits": ModelSpec(
        name="cat_emotion_v1_logits",
        repo_id="catmoji/cat-emotion-classifier",
        filename="cat_emotion_v1_logits.onnx",
        subfolder="raw",
        labels=("happy", "mad", "sad", "surprised", "relaxed"),
        license="MIT",
        softmax=True,
    ),
}


def get_model_spec(model_name: str) -> ModelSpec:
    """Look up a registry entry.

    Raises:
        ModelLoadError: If the model is not in the registry.
    """
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise ModelLoadError(f"Unknown model: {model_name}") from None


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Resolves, loads, and caches the configured ONNX inference session."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._spec = get_model_spec(settings.classifier_model)
        self._models_dir = Path(settings.models_dir)

        self._lock = threading.Lock()
        self._session: InferenceSession | None = None
        self._model_path: Path | None = None

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    @property
    def spec(self) -> ModelSpec:
        return self._spec

    def resolve_model_path(self) -> Path:
        """Return the configured local model file, or download it from HuggingFace."""
        if self._settings.model_path is not None:
            path = Path(self._settings.model_path)
            if not path.is_file():
                raise ModelLoadError(f"Model file not found: {path}")
            return path

        if self._model_path is not None and self._model_path.exists():
            return self._model_path

        self._models_dir.mkdir(parents=True, exist_ok=True)
        try:
            downloaded = Path(
                hf_hub_download(
                    repo_id=self._spec.repo_id,
                    filename=self._spec.filename,
                    subfolder=self._spec.subfolder,
                    local_dir=str(self._models_dir),
                )
            )
        except (HfHubHTTPError, OSError, ValueError) as exc:
            raise ModelLoadError(f"Could not download model '{self._spec.name}': {exc}") from exc

        self._model_path = downloaded
        logger.info("Downloaded %s to %s", self._spec.name, downloaded)
        return downloaded

    def get_session(self) -> InferenceSession:
        """Return the cached InferenceSession, creating it on first use."""
        with self._lock:
            if self._session is not None:
                return self._session

            model_path = self.resolve_model_path()
            try:
                session = InferenceSession(
                    str(model_path),
                    sess_options=self._session_options,
                    providers=self._providers,
                )
            except Exception as exc:
                raise ModelLoadError(f"Could not load model from {model_path}: {exc}") from exc

            self._session = session
            logger.info("Loaded session for %s from %s", self._spec.name, model_path)
            return session

    def get_loaded_models(self) -> list[str]:
        """Return the name of the model if its session is loaded."""
        with self._lock:
            return [self._spec.name] if self._session is not None else []

    def shutdown(self) -> None:
        """Drop the cached session."""
        with self._lock:
            self._session = None
            logger.info("Model session released")

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts

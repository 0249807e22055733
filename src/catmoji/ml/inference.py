"""Inference concurrency layer.

Architecture:
    FastAPI (async) -> ClassificationWorkflow -> asyncio.Semaphore(1) -> ThreadPoolExecutor(1) -> ONNX inference

One inference runs at a time on a single worker thread. Requests beyond it
queue for ``queue_timeout`` seconds, then get 503. Results are rendered back
on the event loop, and only the most recent request may write to the display.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from catmoji import presenter
from catmoji.errors import BackendError, InferenceError

if TYPE_CHECKING:
    from collections.abc import Callable

    from catmoji.config import Settings
    from catmoji.display import Display
    from catmoji.ml.image_classifier import ClassificationResult, ImageClassifier
    from catmoji.ml.orientation import Orientation
    from catmoji.ml.preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_QUEUE_TIMEOUT_SECONDS: float = 5.0


class InferencePool:
    """Manages the semaphore and the single inference worker thread."""

    def __init__(self, queue_timeout: float = DEFAULT_QUEUE_TIMEOUT_SECONDS) -> None:
        self._queue_timeout = queue_timeout
        self._semaphore = asyncio.Semaphore(1)
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="onnx-inference",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> InferencePool:
        return cls(queue_timeout=settings.queue_timeout)

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Submit a synchronous function to the inference worker.

        Acquires the semaphore (with timeout), runs the function in the
        executor, then releases.

        Raises:
            TimeoutError: If the semaphore cannot be acquired within the timeout.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(
                self._semaphore.acquire(),
                timeout=self._queue_timeout,
            )
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of currently running inference tasks."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for the worker."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)


@dataclass(frozen=True)
class WorkflowOutcome:
    """What a single classification request produced."""

    request_id: int
    text: str
    # False when a newer request superseded this one before it finished
    current: bool
    result: ClassificationResult | None = None
    error: InferenceError | None = None


class ClassificationWorkflow:
    """Runs one classification per user request and delivers it to the display.

    Every request gets a monotonically increasing id. A completion whose id
    is no longer the latest is returned to its caller but never shown.
    """

    def __init__(
        self,
        classifier: ImageClassifier,
        preprocessor: ImagePreprocessor,
        pool: InferencePool,
        display: Display,
        threshold: float = presenter.CONFIDENCE_THRESHOLD,
        top_k: int = presenter.TOP_K,
    ) -> None:
        self._classifier = classifier
        self._preprocessor = preprocessor
        self._pool = pool
        self._display = display
        self._threshold = threshold
        self._top_k = top_k
        self._sequence = itertools.count(1)
        self._latest: int = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        classifier: ImageClassifier,
        preprocessor: ImagePreprocessor,
        pool: InferencePool,
        display: Display,
    ) -> ClassificationWorkflow:
        return cls(
            classifier,
            preprocessor,
            pool,
            display,
            threshold=settings.confidence_threshold,
            top_k=settings.top_k,
        )

    @property
    def classifier(self) -> ImageClassifier:
        return self._classifier

    @property
    def latest_request(self) -> int:
        """Id of the most recently submitted request (0 before the first)."""
        return self._latest

    async def submit(self, image_bytes: bytes, orientation: Orientation | None = None) -> WorkflowOutcome:
        """Classify an uploaded image and deliver the rendered text.

        Args:
            image_bytes: Encoded image as uploaded.
            orientation: Explicit orientation; None uses the image's EXIF tag.

        Raises:
            TimeoutError: If the inference worker stays busy past the queue timeout.

        Any failure other than an InferenceError is shown on the display
        and then re-raised.
        """
        request_id = next(self._sequence)
        self._latest = request_id
        self._display.show(presenter.IN_FLIGHT_TOKEN)
        logger.debug("Request %d submitted", request_id)

        result: ClassificationResult | None = None
        error: InferenceError | None = None
        try:
            result = await self._pool.run(self._classify_bytes, image_bytes, orientation)
        except InferenceError as exc:
            logger.warning("Request %d failed (%s): %s", request_id, exc.kind, exc.reason)
            error = exc
        except TimeoutError:
            logger.warning("Request %d timed out waiting for the inference worker", request_id)
            self._deliver(request_id, presenter.present_failure(BackendError("Inference worker is busy")))
            raise
        except Exception as exc:
            logger.exception("Request %d failed unexpectedly", request_id)
            self._deliver(request_id, presenter.present_failure(BackendError(str(exc))))
            raise

        if error is not None:
            text = presenter.present_failure(error)
        else:
            assert result is not None
            text = presenter.present(result, threshold=self._threshold, top_k=self._top_k)

        current = self._deliver(request_id, text)
        return WorkflowOutcome(request_id=request_id, text=text, current=current, result=result, error=error)

    def _deliver(self, request_id: int, text: str) -> bool:
        if request_id != self._latest:
            logger.info("Discarding result of request %d, superseded by %d", request_id, self._latest)
            return False
        self._display.show(text)
        return True

    def _classify_bytes(self, image_bytes: bytes, orientation: Orientation | None) -> ClassificationResult:
        # Runs on the inference worker thread.
        decoded = self._preprocessor.decode_image(image_bytes)
        if orientation is None:
            orientation = decoded.orientation
        return self._classifier.classify(decoded.pixels, orientation)

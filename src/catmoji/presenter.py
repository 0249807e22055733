"""Maps classification results to the emoji shown to the user."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from catmoji.errors import InferenceError
    from catmoji.ml.image_classifier import ClassificationResult

CONFIDENCE_THRESHOLD: float = 0.6
TOP_K: int = 2

DEFAULT_SIGN = "😸"
UNKNOWN_TOKEN = "🤷"
IN_FLIGHT_TOKEN = "🧭"
FAILURE_PREFIX = "Unable to classify image."

SIGNS: dict[str, str] = {
    "happy": "😺",
    "sad": "😿",
    "mad": "😾",
    "surprised": "🙀",
}


def sign_for(label: str) -> str:
    """Return the emoji for a cat mood label; unknown moods get the default grin."""
    return SIGNS.get(label, DEFAULT_SIGN)


def present(
    result: ClassificationResult,
    threshold: float = CONFIDENCE_THRESHOLD,
    top_k: int = TOP_K,
) -> str:
    """Render the top classifications, one line per ranked slot.

    A classification at or below ``threshold`` keeps its line but leaves it
    blank, so ``[("happy", 0.91), ("sad", 0.2)]`` renders as ``"😺\\n"``.
    """
    if result.is_empty:
        return UNKNOWN_TOKEN
    lines = [sign_for(c.label) if c.confidence > threshold else "" for c in result.top(top_k)]
    return "\n".join(lines)


def present_failure(error: InferenceError) -> str:
    return f"{FAILURE_PREFIX}\n{error.reason}"

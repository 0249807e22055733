"""The single text surface results are written to."""

from __future__ import annotations

import time
from typing import Protocol


class Display(Protocol):
    """Protocol for the presentation surface."""

    @property
    def text(self) -> str:
        """Return the currently shown text."""
        ...

    def show(self, text: str) -> None:
        """Replace the shown text."""
        ...


class TextDisplay:
    """In-memory display surface.

    Only the event loop writes to it, so it needs no locking.
    """

    def __init__(self, text: str = "") -> None:
        self._text = text
        self._updated_at: float | None = None

    @property
    def text(self) -> str:
        return self._text

    @property
    def updated_at(self) -> float | None:
        """Wall-clock time of the last update, or None while idle."""
        return self._updated_at

    def show(self, text: str) -> None:
        self._text = text
        self._updated_at = time.time()

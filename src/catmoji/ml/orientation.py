"""Image orientation descriptors and conversion to upright pixels.

Orientation values follow the EXIF / image-properties convention: the
descriptor says where the stored pixel rows and columns belong when the
image is displayed upright.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

import numpy as np

from catmoji.errors import UnsupportedOrientationError

if TYPE_CHECKING:
    from numpy.typing import NDArray


class Orientation(StrEnum):
    UP = "up"
    UP_MIRRORED = "up-mirrored"
    DOWN = "down"
    DOWN_MIRRORED = "down-mirrored"
    LEFT = "left"
    LEFT_MIRRORED = "left-mirrored"
    RIGHT = "right"
    RIGHT_MIRRORED = "right-mirrored"

    @property
    def exif_tag(self) -> int:
        """EXIF orientation tag (1-8) for this value."""
        return _EXIF_TAGS[self]

    @classmethod
    def from_exif(cls, tag: int) -> Orientation:
        """Look up an orientation by EXIF tag.

        Raises:
            UnsupportedOrientationError: If the tag is not in 1-8.
        """
        for orientation, value in _EXIF_TAGS.items():
            if value == tag:
                return orientation
        raise UnsupportedOrientationError(f"Unknown EXIF orientation tag: {tag}")


_EXIF_TAGS: dict[Orientation, int] = {
    Orientation.UP: 1,
    Orientation.UP_MIRRORED: 2,
    Orientation.DOWN: 3,
    Orientation.DOWN_MIRRORED: 4,
    Orientation.LEFT_MIRRORED: 5,
    Orientation.RIGHT: 6,
    Orientation.RIGHT_MIRRORED: 7,
    Orientation.LEFT: 8,
}


def parse_orientation(value: str | int | None) -> Orientation:
    """Parse an orientation name (``"left-mirrored"``) or EXIF tag (``6``, ``"6"``).

    ``None`` and the empty string mean upright. Underscores and case are
    accepted in names.

    Raises:
        UnsupportedOrientationError: For anything outside the enumeration.
    """
    if value is None:
        return Orientation.UP
    if isinstance(value, int):
        return Orientation.from_exif(value)

    text = value.strip().lower().replace("_", "-")
    if not text:
        return Orientation.UP
    if text.isdigit():
        return Orientation.from_exif(int(text))
    try:
        return Orientation(text)
    except ValueError:
        raise UnsupportedOrientationError(f"Unknown image orientation: {value!r}") from None


def to_upright(image: NDArray[np.uint8], orientation: Orientation) -> NDArray[np.uint8]:
    """Return ``image`` transformed so that it displays upright.

    Args:
        image: HxWxC pixel array as stored.
        orientation: Descriptor of how the stored pixels are laid out.

    Returns:
        A contiguous array; height and width are swapped for the
        left/right orientations.
    """
    if orientation is Orientation.UP:
        out = image
    elif orientation is Orientation.UP_MIRRORED:
        out = image[:, ::-1]
    elif orientation is Orientation.DOWN:
        out = image[::-1, ::-1]
    elif orientation is Orientation.DOWN_MIRRORED:
        out = image[::-1, :]
    elif orientation is Orientation.LEFT_MIRRORED:
        out = np.swapaxes(image, 0, 1)
    elif orientation is Orientation.RIGHT:
        out = np.rot90(image, k=-1)
    elif orientation is Orientation.RIGHT_MIRRORED:
        out = np.swapaxes(image, 0, 1)[::-1, ::-1]
    elif orientation is Orientation.LEFT:
        out = np.rot90(image, k=1)
    else:
        raise UnsupportedOrientationError(f"Unknown image orientation: {orientation!r}")
    return np.ascontiguousarray(out)

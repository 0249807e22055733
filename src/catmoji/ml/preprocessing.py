"""Image preprocessing pipeline.

Decodes uploaded bytes into RGB pixel arrays (keeping the stored layout and
reporting the EXIF orientation separately), and converts upright pixel
arrays into the NCHW float tensors the classifier expects.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, Protocol

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from catmoji.errors import ImageDecodeError
from catmoji.ml.orientation import Orientation

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

CropMode = Literal["center_crop", "scale_fit", "scale_fill"]

_EXIF_ORIENTATION_TAG = 0x0112


@dataclass(frozen=True)
class DecodedImage:
    """Raw RGB pixels as stored, plus the orientation found in their metadata."""

    pixels: NDArray[np.uint8]
    orientation: Orientation


class ImagePreprocessor(Protocol):
    """Protocol for image preprocessing."""

    def decode_image(self, image_bytes: bytes) -> DecodedImage:
        """Decode raw image bytes into an RGB uint8 numpy array.

        Raises:
            ImageDecodeError: If the image cannot be decoded or exceeds size limits.
        """
        ...

    def prepare_input(
        self,
        image: NDArray[np.uint8],
        input_size: tuple[int, int],
        mean: Sequence[float],
        std: Sequence[float],
    ) -> NDArray[np.float32]:
        """Prepare an upright image for the classification model."""
        ...


class PillowPreprocessor:
    """Pillow-backed implementation of :class:`ImagePreprocessor`."""

    def __init__(self, max_image_pixels: int, crop_mode: CropMode = "center_crop") -> None:
        self._max_image_pixels = max_image_pixels
        self._crop_mode = crop_mode

    def decode_image(self, image_bytes: bytes) -> DecodedImage:
        if not image_bytes:
            raise ImageDecodeError("Image data is empty")

        try:
            with Image.open(io.BytesIO(image_bytes)) as image:
                width, height = image.size
                if width * height > self._max_image_pixels:
                    raise ImageDecodeError(
                        f"Image is {width}x{height} pixels, limit is {self._max_image_pixels}"
                    )
                tag = int(image.getexif().get(_EXIF_ORIENTATION_TAG, 1))
                pixels = np.asarray(image.convert("RGB"), dtype=np.uint8)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, TypeError, ValueError) as exc:
            raise ImageDecodeError(f"Unable to decode image: {exc}") from exc

        orientation = Orientation.from_exif(tag)
        logger.debug("Decoded %sx%s image (orientation=%s)", width, height, orientation)
        return DecodedImage(pixels=pixels, orientation=orientation)

    def prepare_input(
        self,
        image: NDArray[np.uint8],
        input_size: tuple[int, int],
        mean: Sequence[float],
        std: Sequence[float],
    ) -> NDArray[np.float32]:
        """Crop/scale, normalize, and lay out an image as a (1, 3, H, W) tensor.

        Args:
            image: Upright HxWx3 RGB uint8 array.
            input_size: Model input as (width, height).
            mean: Per-channel mean applied after scaling to [0, 1].
            std: Per-channel standard deviation.
        """
        if image.ndim != 3 or image.shape[2] != 3:
            raise ImageDecodeError(f"Expected an HxWx3 image, got shape {image.shape}")

        try:
            pil_image = Image.fromarray(image)
        except (TypeError, ValueError) as exc:
            raise ImageDecodeError(f"Unable to convert image: {exc}") from exc

        if self._crop_mode == "center_crop":
            pil_image = ImageOps.fit(pil_image, input_size, method=Image.Resampling.BILINEAR)
        elif self._crop_mode == "scale_fit":
            pil_image = ImageOps.pad(pil_image, input_size, method=Image.Resampling.BILINEAR, color=(0, 0, 0))
        else:
            pil_image = pil_image.resize(input_size, Image.Resampling.BILINEAR)

        array = np.asarray(pil_image, dtype=np.float32) / 255.0
        array = (array - np.asarray(mean, dtype=np.float32)) / np.asarray(std, dtype=np.float32)
        return np.ascontiguousarray(array.transpose(2, 0, 1)[np.newaxis], dtype=np.float32)

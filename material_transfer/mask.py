"""Alpha-channel masks built from brush strokes or a single marker."""

from __future__ import annotations

import logging
from typing import Optional

import cv2  # type: ignore
import numpy as np  # type: ignore
from PIL import Image

from material_transfer.config import CanvasConfig
from material_transfer.coordinates import Point
from material_transfer.imaging import ImageBuffer, ImageSource, encode, load_image, to_data_url

logger = logging.getLogger("material_transfer.mask")

# Integer drawing with 4 fractional bits keeps sub-pixel stroke positions.
_SHIFT = 4
_SCALE = 1 << _SHIFT


def marker_radius(width: int, height: int, canvas: Optional[CanvasConfig] = None) -> float:
    canvas = canvas or CanvasConfig()
    return max(canvas.marker_min_radius, min(width, height) * canvas.marker_radius_fraction)


def _fixed(value: float) -> int:
    return int(round(value * _SCALE))


class MaskRaster:
    """A selection raster the same size as its source image.

    Only the alpha plane is stored; ``commit()`` serializes it as a PNG whose
    RGB is white and whose alpha is the selection.
    """

    def __init__(self, width: int, height: int, alpha: Optional[np.ndarray] = None):
        if width <= 0 or height <= 0:
            raise ValueError(f"mask size must be positive, got {width}x{height}")
        if alpha is None:
            alpha = np.zeros((height, width), dtype=np.uint8)
        elif alpha.shape != (height, width):
            raise ValueError(f"alpha plane {alpha.shape} does not match {width}x{height}")
        self.width = width
        self.height = height
        self.alpha = np.ascontiguousarray(alpha, dtype=np.uint8)
        self._last: Optional[Point] = None
        self._stroke_width = 1.0

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    @property
    def is_empty(self) -> bool:
        return not self.alpha.any()

    @property
    def drawing(self) -> bool:
        return self._last is not None

    def begin_stroke(self, point: Point, stroke_width: float) -> None:
        """Start a gesture; a tap alone leaves a dot."""
        self._stroke_width = max(1.0, float(stroke_width))
        self._last = None
        self.extend_stroke(point)

    def extend_stroke(self, point: Point) -> None:
        if self._last is None:
            self._segment(point, point)
        else:
            self._segment(self._last, point)
        self._last = point

    def end_stroke(self) -> Optional[str]:
        """Finish the gesture (pointer up) and return the committed mask."""
        if self._last is None:
            return None
        self._last = None
        return self.commit()

    def _segment(self, start: Point, end: Point) -> None:
        # Round caps and joins: a disc at each end plus the connecting line.
        radius = self._stroke_width / 2
        p0 = (_fixed(start.x), _fixed(start.y))
        p1 = (_fixed(end.x), _fixed(end.y))
        r = max(1, _fixed(radius))
        cv2.circle(self.alpha, p0, r, 255, thickness=-1, lineType=cv2.LINE_8, shift=_SHIFT)
        if p1 != p0:
            cv2.circle(self.alpha, p1, r, 255, thickness=-1, lineType=cv2.LINE_8, shift=_SHIFT)
            thickness = max(1, int(round(self._stroke_width)))
            cv2.line(self.alpha, p0, p1, 255, thickness=thickness, lineType=cv2.LINE_8, shift=_SHIFT)

    def commit(self) -> str:
        return to_data_url(encode(self.to_buffer(), "PNG"), "image/png")

    def clear(self) -> None:
        """Zero the raster; ``None`` is the caller's "no mask" signal."""
        self.alpha.fill(0)
        self._last = None
        return None

    def to_buffer(self) -> ImageBuffer:
        pixels = np.full((self.height, self.width, 4), 255, dtype=np.uint8)
        pixels[:, :, 3] = self.alpha
        return ImageBuffer(pixels)

    @classmethod
    def from_marker(
        cls,
        point: Point,
        width: int,
        height: int,
        canvas: Optional[CanvasConfig] = None,
    ) -> MaskRaster:
        """A filled disc centred on ``point``."""
        radius = marker_radius(width, height, canvas)
        ys, xs = np.ogrid[0:height, 0:width]
        disc = (xs - point.x) ** 2 + (ys - point.y) ** 2 <= radius * radius
        mask = cls(width, height)
        mask.alpha[disc] = 255
        logger.debug("Marker mask at (%.1f, %.1f) radius %.1f", point.x, point.y, radius)
        return mask

    @classmethod
    def from_image(cls, image: ImageSource, width: Optional[int] = None, height: Optional[int] = None) -> MaskRaster:
        """Load a serialized mask, resizing it explicitly when a size is given."""
        buffer = load_image(image)
        if width is not None and height is not None and buffer.size != (width, height):
            buffer = fit_mask(buffer, width, height)
        return cls(buffer.width, buffer.height, buffer.alpha.copy())

    @classmethod
    def from_data_url(cls, url: str, width: Optional[int] = None, height: Optional[int] = None) -> MaskRaster:
        return cls.from_image(url, width, height)


def fit_mask(mask: ImageBuffer, width: int, height: int) -> ImageBuffer:
    """Resize a mask to an image's size with nearest-neighbour sampling."""
    if mask.size == (width, height):
        return mask
    logger.info("Resizing mask from %dx%d to %dx%d", mask.width, mask.height, width, height)
    return mask.resized(width, height, resample=Image.NEAREST)


def mask_centroid(alpha: np.ndarray) -> Optional[Point]:
    ys, xs = np.nonzero(alpha)
    if len(xs) == 0:
        return None
    return Point(float(xs.mean()), float(ys.mean()))


__all__ = [
    "MaskRaster",
    "fit_mask",
    "marker_radius",
    "mask_centroid",
]

"""Mapping between on-screen "contain"-fitted elements and natural image pixels.

The same fit rule is used for pointer mapping, letterbox padding and the inverse
crop, so a point, a padded image and a cropped model output always line up.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple, Optional

from material_transfer.config import BrushConfig


class Point(NamedTuple):
    """A position in natural image pixel space."""

    x: float
    y: float

    def rounded(self) -> tuple[int, int]:
        return int(round(self.x)), int(round(self.y))


class Rect(NamedTuple):
    """An element's bounding box in client (display) coordinates."""

    left: float
    top: float
    width: float
    height: float

    def contains(self, x: float, y: float) -> bool:
        return self.left <= x <= self.left + self.width and self.top <= y <= self.top + self.height


class Box(NamedTuple):
    """Integer pixel box, ``right``/``bottom`` exclusive."""

    left: int
    top: int
    right: int
    bottom: int

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top


@dataclass(frozen=True)
class LetterboxTransform:
    """Where an image of natural size lands inside a box under "contain" fitting."""

    natural_width: float
    natural_height: float
    box_width: float
    box_height: float
    scale: float
    offset_x: float
    offset_y: float

    @property
    def fitted_width(self) -> float:
        return self.natural_width * self.scale

    @property
    def fitted_height(self) -> float:
        return self.natural_height * self.scale

    @property
    def content_box(self) -> Box:
        """The fitted rectangle snapped to whole pixels, clamped to the box."""
        left = int(round(self.offset_x))
        top = int(round(self.offset_y))
        width = max(1, int(round(self.fitted_width)))
        height = max(1, int(round(self.fitted_height)))
        right = min(int(round(self.box_width)), left + width)
        bottom = min(int(round(self.box_height)), top + height)
        return Box(left, top, right, bottom)

    def to_box(self, x: float, y: float) -> tuple[float, float]:
        return self.offset_x + x * self.scale, self.offset_y + y * self.scale

    def from_box(self, x: float, y: float) -> tuple[float, float]:
        return (x - self.offset_x) / self.scale, (y - self.offset_y) / self.scale


def fit_contain(natural_width: float, natural_height: float, box_width: float, box_height: float) -> LetterboxTransform:
    """Fit ``natural`` inside ``box`` preserving aspect ratio, centred.

    Wider-than-box images fit to width (bars top and bottom); everything else,
    including an exact aspect match, fits to height.
    """
    if natural_width <= 0 or natural_height <= 0:
        raise ValueError(f"natural size must be positive, got {natural_width}x{natural_height}")
    if box_width <= 0 or box_height <= 0:
        raise ValueError(f"box size must be positive, got {box_width}x{box_height}")

    image_aspect = natural_width / natural_height
    box_aspect = box_width / box_height
    if image_aspect > box_aspect:
        scale = box_width / natural_width
    else:
        scale = box_height / natural_height
    return LetterboxTransform(
        natural_width=natural_width,
        natural_height=natural_height,
        box_width=box_width,
        box_height=box_height,
        scale=scale,
        offset_x=(box_width - natural_width * scale) / 2,
        offset_y=(box_height - natural_height * scale) / 2,
    )


def letterbox(natural_width: float, natural_height: float, target_dimension: float) -> LetterboxTransform:
    """``fit_contain`` into a ``target_dimension`` square."""
    return fit_contain(natural_width, natural_height, target_dimension, target_dimension)


class CoordinateMapper:
    """Converts pointer positions over a displayed image into natural pixels.

    Args:
        rect: the element's bounding box in client coordinates.
        natural_width, natural_height: the image's natural pixel size.
        brush: limits applied to on-screen brush sizes (defaults to BrushConfig()).
    """

    def __init__(
        self,
        rect: Rect,
        natural_width: int,
        natural_height: int,
        brush: Optional[BrushConfig] = None,
    ):
        self.rect = rect
        self.natural_width = natural_width
        self.natural_height = natural_height
        self.brush = brush or BrushConfig()
        self.transform = fit_contain(natural_width, natural_height, rect.width, rect.height)

    def to_natural(self, client_x: float, client_y: float) -> Optional[Point]:
        """Natural pixel under the pointer, or ``None`` outside the element.

        Positions over the letterbox bars map to coordinates outside the image;
        drawing there is clipped by the raster.
        """
        if not self.rect.contains(client_x, client_y):
            return None
        x, y = self.transform.from_box(client_x - self.rect.left, client_y - self.rect.top)
        return Point(x, y)

    def to_display(self, point: Point) -> tuple[float, float]:
        """Client coordinates at which ``point`` is drawn."""
        x, y = self.transform.to_box(point.x, point.y)
        return self.rect.left + x, self.rect.top + y

    @property
    def brush_scale(self) -> float:
        """Raster pixels per display unit along the fitted width."""
        return self.natural_width / self.transform.fitted_width

    def stroke_width(self, brush_size: float) -> float:
        """Raster stroke diameter for an on-screen brush, clamped to the brush limits."""
        return self.brush.clamp(brush_size) * self.brush_scale


__all__ = [
    "Point",
    "Rect",
    "Box",
    "LetterboxTransform",
    "fit_contain",
    "letterbox",
    "CoordinateMapper",
]

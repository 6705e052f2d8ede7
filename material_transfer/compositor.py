"""Image-level transforms that prepare model inputs and undo model-side padding."""

from __future__ import annotations

import logging
from typing import Literal, Optional

import cv2  # type: ignore
import numpy as np  # type: ignore
from PIL import Image

from material_transfer.config import CanvasConfig
from material_transfer.coordinates import Box, Point, letterbox
from material_transfer.imaging import ImageBuffer, ImageSource, load_image
from material_transfer.mask import fit_mask, marker_radius

logger = logging.getLogger("material_transfer.compositor")

MIN_CROP_FRACTION = 0.1
MAX_CROP_FRACTION = 1.0

MAGENTA = (255, 0, 255)


def pad_to_square(
    image: ImageSource,
    target_dimension: int,
    fill_color: tuple[int, int, int] = (0, 0, 0),
    resample: int = Image.LANCZOS,
) -> ImageBuffer:
    """Letterbox ``image`` into an opaque ``target_dimension`` square."""
    source = load_image(image)
    box = letterbox(source.width, source.height, target_dimension).content_box
    canvas = Image.new("RGBA", (target_dimension, target_dimension), (*fill_color, 255))
    content = source.to_pil().resize((box.width, box.height), resample=resample)
    canvas.alpha_composite(content, dest=(box.left, box.top))
    return ImageBuffer.from_pil(canvas)


def content_box_in_square(
    original_width: int,
    original_height: int,
    target_dimension: int,
    square_size: Optional[int] = None,
) -> Box:
    """Where ``pad_to_square`` put the original content, in ``square_size`` pixels."""
    box = letterbox(original_width, original_height, target_dimension).content_box
    if square_size is None or square_size == target_dimension:
        return box
    scale = square_size / target_dimension
    left = int(round(box.left * scale))
    top = int(round(box.top * scale))
    right = min(square_size, max(left + 1, int(round(box.right * scale))))
    bottom = min(square_size, max(top + 1, int(round(box.bottom * scale))))
    return Box(left, top, right, bottom)


def crop_to_original_aspect(
    square: ImageSource,
    original_width: int,
    original_height: int,
    target_dimension: int,
) -> ImageBuffer:
    """Inverse of ``pad_to_square``: keep only the fitted content rectangle.

    A model may answer with a square of a different resolution; the content
    box is then scaled to match.
    """
    image = load_image(square)
    if image.width != image.height:
        logger.warning("Expected a square image to crop, got %dx%d", image.width, image.height)
    box = content_box_in_square(original_width, original_height, target_dimension, image.width)
    bottom = min(box.bottom, image.height)
    return ImageBuffer(np.ascontiguousarray(image.pixels[box.top:bottom, box.left:box.right]))


def isolate_by_mask(image: ImageSource, mask: ImageSource) -> ImageBuffer:
    """Keep image pixels only where the mask is opaque (alpha intersection).

    Fully transparent results also have their colour zeroed.
    """
    source = load_image(image)
    mask_alpha = fit_mask(load_image(mask), source.width, source.height).alpha
    pixels = source.copy_pixels()
    combined = (pixels[:, :, 3].astype(np.uint16) * mask_alpha.astype(np.uint16) + 127) // 255
    pixels[:, :, 3] = combined.astype(np.uint8)
    pixels[combined == 0] = 0
    return ImageBuffer(pixels)


def square_crop_box(width: int, height: int, point: Point, size_fraction: float) -> Box:
    fraction = min(max(size_fraction, MIN_CROP_FRACTION), MAX_CROP_FRACTION)
    side = max(1, int(round(fraction * min(width, height))))
    left = int(round(point.x - side / 2))
    top = int(round(point.y - side / 2))
    left = min(max(left, 0), width - side)
    top = min(max(top, 0), height - side)
    return Box(left, top, left + side, top + side)


def crop_square_around_point(image: ImageSource, point: Point, size_fraction: float) -> ImageBuffer:
    """Square crop centred on ``point``, shifted rather than padded at the edges."""
    source = load_image(image)
    box = square_crop_box(source.width, source.height, point, size_fraction)
    return ImageBuffer(np.ascontiguousarray(source.pixels[box.top:box.bottom, box.left:box.right]))


def draw_marker(image: ImageSource, point: Point, canvas: Optional[CanvasConfig] = None) -> ImageBuffer:
    """Red disc with a white outline at ``point``."""
    canvas = canvas or CanvasConfig()
    source = load_image(image)
    radius = marker_radius(source.width, source.height, canvas)
    pixels = source.copy_pixels()
    center = point.rounded()
    r = int(round(radius))
    cv2.circle(pixels, center, r, (*canvas.highlight_color, 255), thickness=-1, lineType=cv2.LINE_AA)
    outline = max(1, int(round(radius * 0.2)))
    cv2.circle(pixels, center, r, (255, 255, 255, 255), thickness=outline, lineType=cv2.LINE_AA)
    return ImageBuffer(pixels)


def create_model_input_image(
    image: ImageSource,
    mask: ImageSource,
    mode: Literal["isolate", "inpaint"],
    target_dimension: int,
) -> ImageBuffer:
    """Letterbox image and mask together, then isolate or paint the masked area.

    ``isolate`` keeps only the material under the mask; ``inpaint`` paints the
    mask opaque magenta over the scene.
    """
    if mode not in ("isolate", "inpaint"):
        raise ValueError(f"mode must be 'isolate' or 'inpaint', got '{mode}'")
    source = load_image(image)
    mask_image = fit_mask(load_image(mask), source.width, source.height)
    padded = pad_to_square(source, target_dimension)
    padded_mask = pad_to_square(_alpha_only(mask_image), target_dimension, resample=Image.NEAREST)
    # pad_to_square makes the bars opaque; the mask lives in the red channel here.
    selection = padded_mask.pixels[:, :, 0]

    if mode == "isolate":
        mask_buffer = ImageBuffer.blank(target_dimension, target_dimension, (255, 255, 255, 0))
        pixels = mask_buffer.copy_pixels()
        pixels[:, :, 3] = selection
        return isolate_by_mask(padded, ImageBuffer(pixels))

    pixels = padded.copy_pixels()
    pixels[selection > 0] = (*MAGENTA, 255)
    return ImageBuffer(pixels)


def _alpha_only(mask: ImageBuffer) -> ImageBuffer:
    """Mask alpha copied into an opaque grey image so padding cannot select anything."""
    pixels = np.empty_like(mask.pixels)
    pixels[:, :, 0] = mask.alpha
    pixels[:, :, 1] = mask.alpha
    pixels[:, :, 2] = mask.alpha
    pixels[:, :, 3] = 255
    return ImageBuffer(pixels)


__all__ = [
    "pad_to_square",
    "content_box_in_square",
    "crop_to_original_aspect",
    "isolate_by_mask",
    "square_crop_box",
    "crop_square_around_point",
    "draw_marker",
    "create_model_input_image",
]

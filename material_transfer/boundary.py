"""Mask boundary tracing and region fills for debug and model-guidance images.

The traced outline is visual guidance only. The greedy walk can split a
branching or multi-region boundary into several strokes, which is fine for a
highlight but means the paths are not a topologically exact contour.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

import cv2  # type: ignore
import numpy as np  # type: ignore

from material_transfer.config import CanvasConfig
from material_transfer.imaging import ImageAsset, ImageBuffer, ImageSource, load_image
from material_transfer.mask import fit_mask

logger = logging.getLogger("material_transfer.boundary")

# Scan order for 8-connected neighbours: NW, N, NE, W, E, SW, S, SE.
NEIGHBOURS: tuple[tuple[int, int], ...] = (
    (-1, -1), (0, -1), (1, -1),
    (-1, 0),           (1, 0),
    (-1, 1),  (0, 1),  (1, 1),
)

Path = list[tuple[int, int]]


def find_edge_pixels(alpha: np.ndarray) -> np.ndarray:
    """Boolean map of opaque pixels touching a fully transparent 8-neighbour.

    The outermost row and column are never marked.
    """
    h, w = alpha.shape
    edges = np.zeros((h, w), dtype=bool)
    if h < 3 or w < 3:
        return edges

    transparent = alpha == 0
    touches_transparent = np.zeros((h - 2, w - 2), dtype=bool)
    for dx, dy in NEIGHBOURS:
        touches_transparent |= transparent[1 + dy:h - 1 + dy, 1 + dx:w - 1 + dx]

    edges[1:-1, 1:-1] = (alpha[1:-1, 1:-1] > 0) & touches_transparent
    return edges


def trace_paths(edges: np.ndarray) -> list[Path]:
    """Stitch edge pixels into polylines by greedy 8-connected walks.

    Walks start from unvisited edge pixels in row-major order and always step
    to the first unvisited neighbour in ``NEIGHBOURS`` order.
    """
    remaining = {(int(x), int(y)) for y, x in np.argwhere(edges)}
    visited: set[tuple[int, int]] = set()
    paths: list[Path] = []

    for y, x in np.argwhere(edges):
        start = (int(x), int(y))
        if start in visited:
            continue
        visited.add(start)
        path = [start]
        cx, cy = start
        while True:
            for dx, dy in NEIGHBOURS:
                candidate = (cx + dx, cy + dy)
                if candidate in remaining and candidate not in visited:
                    visited.add(candidate)
                    path.append(candidate)
                    cx, cy = candidate
                    break
            else:
                break
        paths.append(path)
    return paths


def stroke_paths(
    image: ImageBuffer,
    paths: Iterable[Sequence[tuple[int, int]]],
    color: tuple[int, int, int],
    width: int,
) -> ImageBuffer:
    pixels = image.copy_pixels()
    rgba = (*color, 255)
    polylines = [np.asarray(path, dtype=np.int32).reshape(-1, 1, 2) for path in paths if len(path) > 1]
    if polylines:
        cv2.polylines(pixels, polylines, isClosed=False, color=rgba, thickness=width, lineType=cv2.LINE_AA)
    return ImageBuffer(pixels)


def _mask_alpha(base: ImageBuffer, mask: ImageSource) -> np.ndarray:
    return fit_mask(load_image(mask), base.width, base.height).alpha


def draw_boundary(
    base: ImageSource,
    mask: ImageSource,
    color: Optional[tuple[int, int, int]] = None,
    width: Optional[int] = None,
    canvas: Optional[CanvasConfig] = None,
) -> ImageBuffer:
    """Outline the mask's silhouette on top of the base image."""
    canvas = canvas or CanvasConfig()
    base_image = load_image(base)
    edges = find_edge_pixels(_mask_alpha(base_image, mask))
    paths = trace_paths(edges)
    logger.debug("Traced %d edge pixels into %d paths", int(edges.sum()), len(paths))
    return stroke_paths(
        base_image,
        paths,
        color or canvas.highlight_color,
        width or canvas.highlight_width,
    )


def trace_boundary(base: ImageSource, mask: ImageSource, canvas: Optional[CanvasConfig] = None) -> ImageAsset:
    """Red-bordered debug image, encoded as JPEG."""
    canvas = canvas or CanvasConfig()
    bordered = draw_boundary(base, mask, canvas=canvas)
    return ImageAsset.from_buffer(bordered, "JPEG", canvas.jpeg_quality, name="red-border-image.jpeg")


def fill_overlay(
    base: ImageSource,
    mask: ImageSource,
    color: Optional[tuple[int, int, int]] = None,
    alpha: Optional[float] = None,
    canvas: Optional[CanvasConfig] = None,
) -> ImageBuffer:
    """Blend a flat colour over every selected pixel of the base image."""
    canvas = canvas or CanvasConfig()
    color = color or canvas.fill_color
    opacity = canvas.fill_alpha if alpha is None else alpha
    if not 0 <= opacity <= 1:
        raise ValueError(f"alpha must be within [0, 1], got {opacity}")

    base_image = load_image(base)
    selected = _mask_alpha(base_image, mask) > 0
    pixels = base_image.copy_pixels()
    region = pixels[selected].astype(np.float32)
    region[:, :3] = region[:, :3] * (1 - opacity) + np.asarray(color, dtype=np.float32) * opacity
    region[:, 3] = region[:, 3] * (1 - opacity) + 255 * opacity
    pixels[selected] = np.clip(np.round(region), 0, 255).astype(np.uint8)
    return ImageBuffer(pixels)


def fill_region(base: ImageSource, mask: ImageSource, canvas: Optional[CanvasConfig] = None) -> ImageAsset:
    """Scene image with the target region filled, encoded as PNG."""
    canvas = canvas or CanvasConfig()
    return ImageAsset.from_buffer(fill_overlay(base, mask, canvas=canvas), "PNG", name="purple-fill-image.png")


__all__ = [
    "NEIGHBOURS",
    "find_edge_pixels",
    "trace_paths",
    "stroke_paths",
    "draw_boundary",
    "trace_boundary",
    "fill_overlay",
    "fill_region",
]

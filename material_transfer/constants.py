"""Default values re-exported from the typed config module.

New code should use the config classes directly:

    from material_transfer.config import TransferConfig

Shorthand usage:
    from material_transfer.constants import DEFAULT_TARGET_DIMENSION, DEFAULT_IMAGE_MODEL
"""

from material_transfer.config import BrushConfig, CanvasConfig, ModelConfig, RetryConfig

# Model defaults (from ModelConfig)
_model = ModelConfig()
DEFAULT_ANALYSIS_MODEL = _model.analysis_model
DEFAULT_IMAGE_MODEL = _model.image_model

# Retry defaults (from RetryConfig)
_retry = RetryConfig()
SINGLE_IMAGE_ATTEMPTS = _retry.single_image_attempts
TWO_IMAGE_ATTEMPTS = _retry.two_image_attempts
TRANSPORT_BACKOFF_SECONDS = _retry.transport_backoff
CROP_FRACTION_INITIAL = _retry.crop_fraction_initial
CROP_FRACTION_STEP = _retry.crop_fraction_step
CROP_FRACTION_FLOOR = _retry.crop_fraction_floor

# Canvas defaults (from CanvasConfig)
_canvas = CanvasConfig()
DEFAULT_TARGET_DIMENSION = _canvas.target_dimension
DEFAULT_JPEG_QUALITY = _canvas.jpeg_quality
HIGHLIGHT_COLOR = _canvas.highlight_color
HIGHLIGHT_WIDTH = _canvas.highlight_width
FILL_COLOR = _canvas.fill_color
MARKER_RADIUS_FRACTION = _canvas.marker_radius_fraction
MARKER_MIN_RADIUS = _canvas.marker_min_radius

# Brush defaults (from BrushConfig)
_brush = BrushConfig()
MIN_BRUSH_SIZE = _brush.min_size
MAX_BRUSH_SIZE = _brush.max_size
DEFAULT_BRUSH_SIZE = _brush.default_size

__all__ = [
    "DEFAULT_ANALYSIS_MODEL",
    "DEFAULT_IMAGE_MODEL",
    "SINGLE_IMAGE_ATTEMPTS",
    "TWO_IMAGE_ATTEMPTS",
    "TRANSPORT_BACKOFF_SECONDS",
    "CROP_FRACTION_INITIAL",
    "CROP_FRACTION_STEP",
    "CROP_FRACTION_FLOOR",
    "DEFAULT_TARGET_DIMENSION",
    "DEFAULT_JPEG_QUALITY",
    "HIGHLIGHT_COLOR",
    "HIGHLIGHT_WIDTH",
    "FILL_COLOR",
    "MARKER_RADIUS_FRACTION",
    "MARKER_MIN_RADIUS",
    "MIN_BRUSH_SIZE",
    "MAX_BRUSH_SIZE",
    "DEFAULT_BRUSH_SIZE",
]

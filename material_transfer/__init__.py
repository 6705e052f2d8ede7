"""
Material Transfer - mask geometry and resilient generation for material transfer

This package turns pointer input into pixel-accurate masks, prepares bordered,
filled and letterboxed model inputs, and drives Gemini image generation with a
bounded retry policy for recitation rejections.
"""

from .config import TransferConfig
from .coordinates import CoordinateMapper, Point
from .errors import RecitationRejected, TransferError
from .mask import MaskRaster
from .pipeline import MaterialTransferPipeline, TransferResult

__version__ = "0.1.0"

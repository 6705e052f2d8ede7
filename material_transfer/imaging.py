"""Image values shared by every transform.

``ImageBuffer`` holds decoded RGBA pixels; ``ImageAsset`` holds an encoded,
immutable payload. Transforms elsewhere in the package take and return
``ImageBuffer`` values and never touch files or encoders directly.
"""

from __future__ import annotations

import base64
import binascii
import io
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import numpy as np
from PIL import Image

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^;,]*)*),(?P<payload>.*)$", re.DOTALL)

_FORMAT_MIME = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
}


@dataclass(frozen=True)
class ImageBuffer:
    """Decoded RGBA pixels, shape ``(height, width, 4)``, dtype ``uint8``."""

    pixels: np.ndarray

    def __post_init__(self) -> None:
        pixels = self.pixels
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise ValueError(f"ImageBuffer expects an (h, w, 4) array, got shape {pixels.shape}")
        if pixels.dtype != np.uint8:
            raise ValueError(f"ImageBuffer expects uint8 pixels, got {pixels.dtype}")

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    @property
    def alpha(self) -> np.ndarray:
        return self.pixels[:, :, 3]

    @classmethod
    def blank(cls, width: int, height: int, color: tuple[int, int, int, int] = (0, 0, 0, 0)) -> ImageBuffer:
        pixels = np.empty((height, width, 4), dtype=np.uint8)
        pixels[:, :] = color
        return cls(pixels)

    @classmethod
    def from_pil(cls, img: Image.Image) -> ImageBuffer:
        if img.mode != "RGBA":
            img = img.convert("RGBA")
        return cls(np.array(img, dtype=np.uint8))

    def to_pil(self) -> Image.Image:
        return Image.fromarray(self.pixels, "RGBA")

    def copy_pixels(self) -> np.ndarray:
        """Writable, C-contiguous copy for in-place drawing."""
        return np.ascontiguousarray(self.pixels.copy())

    def resized(self, width: int, height: int, resample: int = Image.LANCZOS) -> ImageBuffer:
        if (width, height) == self.size:
            return self
        return ImageBuffer.from_pil(self.to_pil().resize((width, height), resample=resample))


def decode(data: bytes) -> ImageBuffer:
    """Decode any Pillow-readable payload into RGBA pixels."""
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        return ImageBuffer.from_pil(img)


def encode(image: ImageBuffer, fmt: str = "PNG", quality: int = 95) -> bytes:
    fmt = fmt.upper()
    img = image.to_pil()
    out = io.BytesIO()
    if fmt == "JPEG":
        # JPEG has no alpha; composite over black like a canvas export would.
        background = Image.new("RGBA", img.size, (0, 0, 0, 255))
        Image.alpha_composite(background, img).convert("RGB").save(out, format="JPEG", quality=quality)
    else:
        img.save(out, format=fmt)
    return out.getvalue()


def mime_for_format(fmt: str) -> str:
    try:
        return _FORMAT_MIME[fmt.upper()]
    except KeyError as exc:
        raise ValueError(f"Unsupported image format '{fmt}'") from exc


def parse_data_url(url: str) -> tuple[str, bytes]:
    """Split ``data:<mime>;base64,<payload>`` into its MIME type and raw bytes."""
    match = _DATA_URL_RE.match(url.strip())
    if not match:
        raise ValueError("Invalid data URL")
    mime = match.group("mime")
    if not mime:
        raise ValueError("Could not parse MIME type from data URL")
    if ";base64" not in match.group("params"):
        raise ValueError("Only base64 data URLs are supported")
    try:
        payload = base64.b64decode(match.group("payload"), validate=True)
    except binascii.Error as exc:
        raise ValueError("Invalid base64 payload in data URL") from exc
    return mime, payload


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


@dataclass(frozen=True)
class ImageAsset:
    """An encoded image payload with its MIME type and natural size."""

    data: bytes
    mime_type: str
    width: int
    height: int
    name: str = "image"

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str | None = None, name: str = "image") -> ImageAsset:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            detected = Image.MIME.get(img.format or "")
        mime = mime_type or detected
        if not mime:
            raise ValueError(f"Could not determine the MIME type of {name}")
        return cls(data=data, mime_type=mime, width=width, height=height, name=name)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> ImageAsset:
        path = Path(path)
        return cls.from_bytes(path.read_bytes(), name=path.name)

    @classmethod
    def from_data_url(cls, url: str, name: str = "image") -> ImageAsset:
        mime, payload = parse_data_url(url)
        return cls.from_bytes(payload, mime, name=name)

    @classmethod
    def from_buffer(cls, image: ImageBuffer, fmt: str = "PNG", quality: int = 95, name: str = "image") -> ImageAsset:
        return cls(
            data=encode(image, fmt, quality),
            mime_type=mime_for_format(fmt),
            width=image.width,
            height=image.height,
            name=name,
        )

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def decode(self) -> ImageBuffer:
        return decode(self.data)

    def to_data_url(self) -> str:
        return to_data_url(self.data, self.mime_type)

    def save(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.data)
        return path


ImageSource = Union[ImageAsset, ImageBuffer, str]


def load_image(source: ImageSource) -> ImageBuffer:
    """Accept an asset, a buffer or a data URL and return pixels."""
    if isinstance(source, ImageBuffer):
        return source
    if isinstance(source, ImageAsset):
        return source.decode()
    if isinstance(source, str):
        _, payload = parse_data_url(source)
        return decode(payload)
    raise TypeError(f"Unsupported image source: {type(source).__name__}")


__all__ = [
    "ImageBuffer",
    "ImageAsset",
    "ImageSource",
    "decode",
    "encode",
    "load_image",
    "mime_for_format",
    "parse_data_url",
    "to_data_url",
]

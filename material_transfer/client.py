"""Model call contract and the Gemini adapter behind it.

The orchestrator only ever sees ``ModelRequest`` and ``ModelResponse``; the
``google-genai`` SDK objects stay inside ``GenAIModelClient``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from material_transfer.config import ModelConfig
from material_transfer.errors import ConfigurationError, NoContentReturned, RecitationRejected, TransportError
from material_transfer.imaging import ImageAsset, parse_data_url, to_data_url

logger = logging.getLogger("material_transfer.client")

FINISH_STOP = "STOP"
FINISH_RECITATION = "RECITATION"


class ResponseKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"


@dataclass(frozen=True)
class ImagePart:
    data: bytes
    mime_type: str

    @classmethod
    def from_asset(cls, asset: ImageAsset) -> ImagePart:
        return cls(asset.data, asset.mime_type)

    @classmethod
    def from_data_url(cls, url: str) -> ImagePart:
        mime, data = parse_data_url(url)
        return cls(data, mime)

    def to_data_url(self) -> str:
        return to_data_url(self.data, self.mime_type)


@dataclass(frozen=True)
class ModelRequest:
    model: str
    prompt: str
    images: tuple[ImagePart, ...] = ()
    expect: ResponseKind = ResponseKind.IMAGE

    def with_prompt(self, prompt: str) -> ModelRequest:
        return ModelRequest(self.model, prompt, self.images, self.expect)

    def with_images(self, images: Sequence[ImagePart]) -> ModelRequest:
        return ModelRequest(self.model, self.prompt, tuple(images), self.expect)


@dataclass(frozen=True)
class ModelResponse:
    finish_reason: Optional[str] = None
    text: Optional[str] = None
    image: Optional[ImagePart] = None
    raw: Any = field(default=None, compare=False, repr=False)

    @property
    def is_recitation(self) -> bool:
        return (self.finish_reason or "").upper() == FINISH_RECITATION


@runtime_checkable
class ModelClient(Protocol):
    async def generate(self, request: ModelRequest) -> ModelResponse: ...


def _finish_reason_name(reason: Any) -> Optional[str]:
    if reason is None:
        return None
    value = getattr(reason, "value", None) or getattr(reason, "name", None) or reason
    return str(value).upper()


def response_from_genai(response: Any) -> ModelResponse:
    """Flatten the first candidate of an SDK response."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return ModelResponse(raw=response)
    candidate = candidates[0]
    finish_reason = _finish_reason_name(getattr(candidate, "finish_reason", None))
    content = getattr(candidate, "content", None)
    parts = getattr(content, "parts", None) or []

    text: Optional[str] = None
    image: Optional[ImagePart] = None
    for part in parts:
        inline = getattr(part, "inline_data", None)
        if image is None and inline is not None and getattr(inline, "data", None):
            image = ImagePart(inline.data, getattr(inline, "mime_type", None) or "image/png")
            continue
        part_text = getattr(part, "text", None)
        if text is None and part_text:
            text = part_text
    return ModelResponse(finish_reason=finish_reason, text=text, image=image, raw=response)


def extract_text(response: ModelResponse) -> str:
    if not response.text:
        raise NoContentReturned("AI model did not return valid text content")
    return response.text


def extract_image(response: ModelResponse) -> ImagePart:
    if response.is_recitation:
        raise RecitationRejected(attempts=1)
    if response.image is None:
        logger.error("Response has no image data (finish reason %s)", response.finish_reason)
        raise NoContentReturned("The AI model did not return an image. Please try again.")
    return response.image


def build_config(expect: ResponseKind) -> Optional[types.GenerateContentConfig]:
    if expect is ResponseKind.TEXT:
        return None
    return types.GenerateContentConfig(
        response_modalities=["IMAGE"],
        image_config=types.ImageConfig(aspect_ratio="1:1"),
    )


class GenAIModelClient:
    """``ModelClient`` backed by ``google.genai.Client.aio``."""

    def __init__(self, client: genai.Client):
        self._client = client

    async def generate(self, request: ModelRequest) -> ModelResponse:
        parts = [types.Part.from_bytes(data=image.data, mime_type=image.mime_type) for image in request.images]
        parts.append(types.Part.from_text(text=request.prompt))
        try:
            response = await self._client.aio.models.generate_content(
                model=request.model,
                contents=parts,
                config=build_config(request.expect),
            )
        except genai_errors.ClientError as exc:
            if exc.code in (401, 403):
                raise ConfigurationError(f"Gemini rejected the credentials: {exc}") from exc
            raise TransportError(f"Gemini request failed: {exc}") from exc
        except (genai_errors.APIError, httpx.HTTPError, ValueError) as exc:
            raise TransportError(f"Gemini request failed: {exc}") from exc
        return response_from_genai(response)


def make_client(config: Optional[ModelConfig] = None) -> GenAIModelClient:
    """API key from the environment, else Vertex AI with a project."""
    config = config or ModelConfig()
    api_key = os.environ.get(config.api_key_env)
    if api_key:
        return GenAIModelClient(genai.Client(api_key=api_key))
    project = config.project or os.environ.get("GOOGLE_CLOUD_PROJECT")
    if not project:
        raise ConfigurationError(
            f"{config.api_key_env} environment variable is not set and no Vertex AI project is configured"
        )
    location = config.location or os.environ.get("GOOGLE_CLOUD_LOCATION", "global")
    return GenAIModelClient(genai.Client(vertexai=True, project=project, location=location))


__all__ = [
    "FINISH_STOP",
    "FINISH_RECITATION",
    "ResponseKind",
    "ImagePart",
    "ModelRequest",
    "ModelResponse",
    "ModelClient",
    "GenAIModelClient",
    "build_config",
    "extract_image",
    "extract_text",
    "make_client",
    "response_from_genai",
]

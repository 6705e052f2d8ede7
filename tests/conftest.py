"""Pytest configuration and fixtures for material_transfer tests."""

from __future__ import annotations

from typing import Sequence, Union

import numpy as np
import pytest

from material_transfer.client import ImagePart, ModelRequest, ModelResponse, ResponseKind
from material_transfer.config import TransferConfig
from material_transfer.imaging import ImageAsset, ImageBuffer


def solid_image(width: int, height: int, color=(255, 255, 255, 255)) -> ImageBuffer:
    return ImageBuffer.blank(width, height, color)


def png_part(width: int, height: int, color=(10, 200, 30, 255)) -> ImagePart:
    return ImagePart.from_asset(ImageAsset.from_buffer(solid_image(width, height, color), "PNG"))


def image_response(width: int = 64, height: int = 64, color=(10, 200, 30, 255)) -> ModelResponse:
    return ModelResponse(finish_reason="STOP", image=png_part(width, height, color))


def text_response(text: str) -> ModelResponse:
    return ModelResponse(finish_reason="STOP", text=text)


def recitation_response() -> ModelResponse:
    return ModelResponse(finish_reason="RECITATION")


Outcome = Union[ModelResponse, BaseException]


class StubModelClient:
    """Replays scripted outcomes and records every request it receives.

    When the script runs out the last outcome repeats.
    """

    def __init__(self, outcomes: Sequence[Outcome]):
        if not outcomes:
            raise ValueError("StubModelClient needs at least one outcome")
        self.outcomes = list(outcomes)
        self.requests: list[ModelRequest] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    @property
    def prompts(self) -> list[str]:
        return [request.prompt for request in self.requests]

    async def generate(self, request: ModelRequest) -> ModelResponse:
        self.requests.append(request)
        index = min(len(self.requests), len(self.outcomes)) - 1
        outcome = self.outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class RoutingModelClient:
    """Answers text requests and image requests from separate scripts."""

    def __init__(self, text: Sequence[Outcome], image: Sequence[Outcome]):
        self.text = StubModelClient(text)
        self.image = StubModelClient(image)

    @property
    def requests(self) -> list[ModelRequest]:
        return self.text.requests + self.image.requests

    async def generate(self, request: ModelRequest) -> ModelResponse:
        if request.expect is ResponseKind.TEXT:
            return await self.text.generate(request)
        return await self.image.generate(request)


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def square_mask(width: int, height: int, left: int, top: int, size: int, url: bool = False):
    """White mask, opaque only inside the given square."""
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[:, :, :3] = 255
    pixels[top:top + size, left:left + size, 3] = 255
    buffer = ImageBuffer(pixels)
    if url:
        return ImageAsset.from_buffer(buffer, "PNG").to_data_url()
    return buffer


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def small_config() -> TransferConfig:
    """Config with a small canvas so pipeline tests stay fast."""
    config = TransferConfig()
    config.update({"canvas.target_dimension": 64, "retry.transport_backoff": 0.0})
    return config


@pytest.fixture
def material_image() -> ImageBuffer:
    pixels = np.zeros((80, 120, 4), dtype=np.uint8)
    pixels[:, :, 0] = np.arange(120, dtype=np.uint8)[None, :]
    pixels[:, :, 1] = np.arange(80, dtype=np.uint8)[:, None]
    pixels[:, :, 2] = 90
    pixels[:, :, 3] = 255
    return ImageBuffer(pixels)


@pytest.fixture
def scene_image() -> ImageBuffer:
    return solid_image(100, 50, (200, 200, 200, 255))


def request_images(request: ModelRequest) -> list[ImageBuffer]:
    return [ImageAsset.from_bytes(part.data, part.mime_type).decode() for part in request.images]


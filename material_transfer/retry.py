"""Request mutation strategies for recitation retries.

A policy decides the attempt budget and how a request changes after the
model refuses it for similarity. Transport retries never mutate the request.
"""

from __future__ import annotations

import logging
import secrets
import time
from abc import ABC, abstractmethod
from typing import Optional

from material_transfer.client import ImagePart, ModelRequest, ResponseKind
from material_transfer.compositor import crop_square_around_point, pad_to_square
from material_transfer.config import CanvasConfig, RetryConfig
from material_transfer.coordinates import Point
from material_transfer.imaging import ImageAsset, ImageBuffer

logger = logging.getLogger("material_transfer.retry")

ORIGINALITY_DIRECTIVE = (
    "[Important: do not reproduce the input images directly. Always synthesize an original result.]"
)


def random_token(length: int = 6) -> str:
    return secrets.token_hex(length)[:length]


def session_nonce() -> str:
    return f"[Session: {random_token(8)}_{int(time.time() * 1000)}]"


def attach_nonce(prompt: str) -> str:
    return f"{prompt}\n\n{ORIGINALITY_DIRECTIVE}\n{session_nonce()}"


def salted(prompt: str, tokens: int) -> str:
    salt = "\n".join(f"[Originality salt {index + 1}: {random_token()}]" for index in range(tokens))
    return f"{prompt}\n{salt}"


class RetryPolicy(ABC):
    """How many attempts a call gets and how to mutate it after a rejection."""

    def __init__(self, max_attempts: int, transport_backoff: float = 1.0):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.transport_backoff = transport_backoff
        self._base_prompt: Optional[str] = None

    def prepare(self, request: ModelRequest) -> ModelRequest:
        """First attempt: the prompt gets a uniqueness nonce."""
        self._base_prompt = attach_nonce(request.prompt)
        return request.with_prompt(self._base_prompt)

    @abstractmethod
    def on_rejected(self, attempt: int, request: ModelRequest) -> ModelRequest:
        """Request to send after ``attempt`` (1-based) was rejected for recitation."""


class PromptSaltPolicy(RetryPolicy):
    """Re-salt the prompt after every rejection; images stay as they are."""

    def __init__(self, max_attempts: int, transport_backoff: float = 1.0, salt_tokens: int = 2):
        super().__init__(max_attempts, transport_backoff)
        self.salt_tokens = salt_tokens

    @classmethod
    def for_images(cls, image_count: int, config: Optional[RetryConfig] = None) -> PromptSaltPolicy:
        """Budget by call type: single-image calls get more attempts than composites."""
        config = config or RetryConfig()
        attempts = config.single_image_attempts if image_count <= 1 else config.two_image_attempts
        return cls(attempts, config.transport_backoff, config.salt_tokens)

    def on_rejected(self, attempt: int, request: ModelRequest) -> ModelRequest:
        base = self._base_prompt or request.prompt
        return request.with_prompt(salted(base, self.salt_tokens))


class NarrowingCropPolicy(PromptSaltPolicy):
    """Re-salt and also shrink the source crop around the marker.

    The first request uses ``initial`` (0.45 of the shorter side); each
    recitation rejection removes ``step`` down to ``floor``. Transport retries
    resend the request unchanged and do not count.
    """

    def __init__(
        self,
        source: ImageBuffer,
        point: Point,
        max_attempts: int,
        transport_backoff: float = 1.0,
        salt_tokens: int = 2,
        initial: float = 0.45,
        step: float = 0.1,
        floor: float = 0.2,
        canvas: Optional[CanvasConfig] = None,
    ):
        super().__init__(max_attempts, transport_backoff, salt_tokens)
        self.source = source
        self.point = point
        self.initial = initial
        self.step = step
        self.floor = floor
        self.canvas = canvas or CanvasConfig()
        self.rejections = 0

    @classmethod
    def from_config(
        cls,
        source: ImageBuffer,
        point: Point,
        retry: Optional[RetryConfig] = None,
        canvas: Optional[CanvasConfig] = None,
    ) -> NarrowingCropPolicy:
        retry = retry or RetryConfig()
        return cls(
            source,
            point,
            max_attempts=retry.single_image_attempts,
            transport_backoff=retry.transport_backoff,
            salt_tokens=retry.salt_tokens,
            initial=retry.crop_fraction_initial,
            step=retry.crop_fraction_step,
            floor=retry.crop_fraction_floor,
            canvas=canvas,
        )

    def prepare(self, request: ModelRequest) -> ModelRequest:
        self.rejections = 0
        return super().prepare(request)

    def fraction_for(self, rejections: int) -> float:
        return max(self.floor, round(self.initial - rejections * self.step, 6))

    def crop(self, fraction: float) -> ImagePart:
        cropped = crop_square_around_point(self.source, self.point, fraction)
        padded = pad_to_square(cropped, self.canvas.target_dimension, self.canvas.pad_color)
        asset = ImageAsset.from_buffer(padded, "JPEG", self.canvas.jpeg_quality, name="texture-source.jpeg")
        return ImagePart.from_asset(asset)

    def initial_request(self, model: str, prompt: str) -> ModelRequest:
        return ModelRequest(model, prompt, (self.crop(self.fraction_for(0)),), ResponseKind.IMAGE)

    def on_rejected(self, attempt: int, request: ModelRequest) -> ModelRequest:
        self.rejections += 1
        fraction = self.fraction_for(self.rejections)
        logger.info(
            "Narrowing texture crop to %.2f after rejection %d (attempt %d)", fraction, self.rejections, attempt
        )
        salted_request = super().on_rejected(attempt, request)
        return salted_request.with_images([self.crop(fraction)])


__all__ = [
    "ORIGINALITY_DIRECTIVE",
    "RetryPolicy",
    "PromptSaltPolicy",
    "NarrowingCropPolicy",
    "attach_nonce",
    "salted",
    "session_nonce",
]

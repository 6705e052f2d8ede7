"""Self-documenting configuration with Pydantic validation.

This module provides typed, validated configuration classes for the material
transfer core. Every knob the pipeline uses (model ids, attempt budgets, canvas
sizes, highlight colours, brush limits) lives here with a description and
validation constraints.

Usage:
    # Create a config with defaults
    config = TransferConfig()

    # Override nested values using dot notation
    config.override("retry.single_image_attempts", 3)

    # Pick up MATERIAL_TRANSFER_* environment overrides
    config = TransferConfig.from_env()

    # Serialize for reproducibility
    config_json = config.model_dump_json()
"""

from __future__ import annotations

import os
from typing import Any, ClassVar, Mapping, NoReturn, Optional, Self, Union, get_args, get_origin

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

ENV_PREFIX = "MATERIAL_TRANSFER_"

RGB = tuple[int, int, int]


class Config(BaseModel):
    """Base configuration class with override support and validation.

    This class extends Pydantic's BaseModel to provide:
    - Strict field validation (extra="forbid")
    - Dot-notation path overrides (config.override("nested.field", value))
    - Batch updates (config.update({"a.b": 1, "c.d": 2}))
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", validate_assignment=True)

    def _unwrap_optional(self, field_type: Any) -> Any:
        """Unwrap Optional[T] to T if applicable, else return original type."""
        if get_origin(field_type) is Union:
            non_none_types = [arg for arg in get_args(field_type) if arg is not type(None)]
            return non_none_types[0] if len(non_none_types) == 1 else field_type
        return field_type

    def override(self, key: str, value: Any) -> Self:
        """Override a value in the config using dot-notation path.

        Examples:
            config.override("retry.transport_backoff", 0.5)
            config.override("canvas.target_dimension", 512)
        """
        key_path = key.split(".")

        def fail(error: str) -> NoReturn:
            raise ValueError(f"Override {key} failed: {error}")

        inner_cfg: Config = self
        for depth, key_part in enumerate(key_path[:-1]):
            if key_part not in type(inner_cfg).model_fields:
                fail(f"key {'.'.join(key_path[: depth + 1])} not found")
            next_inner_cfg = getattr(inner_cfg, key_part)
            if not isinstance(next_inner_cfg, Config):
                fail(f"key {'.'.join(key_path[: depth + 1])} is not a Config object")
            inner_cfg = next_inner_cfg

        field = type(inner_cfg).model_fields.get(key_path[-1])
        if field is None:
            fail(f"key {key} not found")
        if isinstance(self._unwrap_optional(field.annotation), type) and issubclass(
            self._unwrap_optional(field.annotation), Config
        ):
            fail(f"key {key} is a section, not a value")

        value = TypeAdapter(field.annotation).validate_python(value)
        setattr(inner_cfg, key_path[-1], value)
        return self

    def update(self, updates: Mapping[str, Any]) -> Self:
        """Apply multiple overrides to the config."""
        for key, value in updates.items():
            self.override(key, value)
        return self


class ModelConfig(Config):
    """Which generative models to call and how to reach them."""

    analysis_model: str = Field(
        default="gemini-2.5-flash-lite",
        description="Model used for the text-only material and scene descriptions",
    )
    image_model: str = Field(
        default="gemini-2.5-flash-image",
        description="Model used for texture generation and texture application",
    )
    api_key_env: str = Field(
        default="GOOGLE_API_KEY",
        description="Environment variable holding the Gemini API key",
    )
    project: Optional[str] = Field(
        default=None,
        description="GCP project for Vertex AI when no API key is set",
    )
    location: Optional[str] = Field(
        default=None,
        description="Vertex AI location; falls back to GOOGLE_CLOUD_LOCATION, then the global endpoint",
    )


class RetryConfig(Config):
    """Attempt budgets and request mutation parameters.

    Recitation rejections are retried immediately with a mutated request;
    transport failures are retried after a fixed backoff.
    """

    single_image_attempts: int = Field(
        default=5,
        ge=1,
        description="Attempt budget for single-image analysis and generation calls",
    )
    two_image_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempt budget for two-image composite calls",
    )
    transport_backoff: float = Field(
        default=1.0,
        ge=0,
        description="Seconds to wait before retrying after a transport failure",
    )
    salt_tokens: int = Field(
        default=2,
        ge=1,
        description="Random salt tokens appended to the prompt after a recitation rejection",
    )
    crop_fraction_initial: float = Field(
        default=0.45,
        ge=0.1,
        le=1.0,
        description="Square crop size (fraction of the shorter side) for the first texture attempt",
    )
    crop_fraction_step: float = Field(
        default=0.1,
        ge=0,
        description="How much the texture crop shrinks after each recitation rejection",
    )
    crop_fraction_floor: float = Field(
        default=0.2,
        ge=0.1,
        le=1.0,
        description="Smallest texture crop fraction the narrowing policy will use",
    )

    @model_validator(mode="after")
    def validate_crop_range(self) -> RetryConfig:
        if self.crop_fraction_floor > self.crop_fraction_initial:
            raise ValueError(
                "crop_fraction_floor must not exceed crop_fraction_initial, "
                f"got {self.crop_fraction_floor} > {self.crop_fraction_initial}"
            )
        return self


class CanvasConfig(Config):
    """Raster sizes, colours and encodings for model-input and debug images."""

    target_dimension: int = Field(
        default=1024,
        ge=16,
        description="Side of the square canvas images are letterboxed into for the model",
    )
    jpeg_quality: int = Field(
        default=95,
        ge=1,
        le=100,
        description="JPEG quality for bordered debug images and cropped results",
    )
    pad_color: RGB = Field(
        default=(0, 0, 0),
        description="Fill colour for letterbox padding",
    )
    highlight_color: RGB = Field(
        default=(255, 0, 0),
        description="Stroke colour for traced mask boundaries",
    )
    highlight_width: int = Field(
        default=3,
        ge=1,
        description="Stroke width in pixels for traced mask boundaries",
    )
    fill_color: RGB = Field(
        default=(160, 32, 240),
        description="Overlay colour marking the target region in the scene",
    )
    fill_alpha: float = Field(
        default=1.0,
        ge=0,
        le=1,
        description="Opacity of the target-region overlay",
    )
    marker_radius_fraction: float = Field(
        default=0.03,
        gt=0,
        le=0.5,
        description="Marker disc radius as a fraction of the image's shorter side",
    )
    marker_min_radius: float = Field(
        default=10.0,
        gt=0,
        description="Minimum marker disc radius in pixels",
    )

    @field_validator("pad_color", "highlight_color", "fill_color")
    @classmethod
    def validate_color(cls, v: RGB) -> RGB:
        if any(channel < 0 or channel > 255 for channel in v):
            raise ValueError(f"colour channels must be in 0..255, got {v}")
        return v


class BrushConfig(Config):
    """On-screen brush limits for painting masks."""

    min_size: int = Field(default=5, ge=1, description="Smallest brush diameter in display units")
    max_size: int = Field(default=50, ge=1, description="Largest brush diameter in display units")
    default_size: int = Field(default=20, ge=1, description="Initial brush diameter in display units")

    @model_validator(mode="after")
    def validate_range(self) -> BrushConfig:
        if not self.min_size <= self.default_size <= self.max_size:
            raise ValueError(
                f"default_size must be within [{self.min_size}, {self.max_size}], got {self.default_size}"
            )
        return self

    def clamp(self, size: float) -> float:
        return min(max(size, self.min_size), self.max_size)


class TransferConfig(Config):
    """Top-level configuration for a material transfer session."""

    model: ModelConfig = Field(default_factory=ModelConfig, description="Model selection")
    retry: RetryConfig = Field(default_factory=RetryConfig, description="Retry budgets and mutation")
    canvas: CanvasConfig = Field(default_factory=CanvasConfig, description="Canvas and debug rendering")
    brush: BrushConfig = Field(default_factory=BrushConfig, description="Brush limits")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> TransferConfig:
        """Build a config from defaults plus ``MATERIAL_TRANSFER_<SECTION>__<FIELD>`` variables.

        Example:
            MATERIAL_TRANSFER_RETRY__TRANSPORT_BACKOFF=0.5
            MATERIAL_TRANSFER_MODEL__IMAGE_MODEL=gemini-3-pro-image-preview
        """
        environ = os.environ if environ is None else environ
        updates: dict[str, Any] = {}
        for name, raw in environ.items():
            if not name.startswith(ENV_PREFIX):
                continue
            path = name[len(ENV_PREFIX):].lower().replace("__", ".")
            updates[path] = raw
        return cls().update(updates)


__all__ = [
    "Config",
    "ModelConfig",
    "RetryConfig",
    "CanvasConfig",
    "BrushConfig",
    "TransferConfig",
    "ENV_PREFIX",
]

"""Material transfer workflow: analysis, seamless texture, application.

Image work is CPU-bound and runs in worker threads via ``asyncio.to_thread``,
including the re-crops a retry policy makes between attempts; model calls go
through a ``GenerationOrchestrator``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Optional

from material_transfer.boundary import fill_region, trace_boundary
from material_transfer.client import ImagePart, ModelClient, ModelRequest, ResponseKind
from material_transfer.compositor import crop_to_original_aspect, draw_marker, pad_to_square
from material_transfer.config import TransferConfig
from material_transfer.coordinates import Point
from material_transfer.imaging import ImageAsset, ImageBuffer, ImageSource, load_image
from material_transfer.mask import MaskRaster
from material_transfer.orchestrator import GenerationOrchestrator, ProgressChannel, Sleep
from material_transfer.prompts import (
    MATERIAL_ANALYSIS_PROMPT,
    SCENE_ANALYSIS_PROMPT,
    SEAMLESS_TEXTURE_PROMPT,
    application_prompt,
)
from material_transfer.retry import NarrowingCropPolicy, PromptSaltPolicy

logger = logging.getLogger("material_transfer.pipeline")


@dataclass(frozen=True)
class TextureResult:
    texture: ImagePart
    prompt: str
    bordered: ImageAsset


@dataclass(frozen=True)
class TransferResult:
    """Everything a caller needs to show the result and its debug views.

    Images are data URLs; the pipeline keeps no reference after returning.
    """

    final_image_url: str
    debug_image_url: str
    final_prompt: str
    material_debug_url: Optional[str] = None
    scene_debug_url: Optional[str] = None
    seamless_texture_url: Optional[str] = None
    seamless_texture_prompt: Optional[str] = None
    material_input_image_url: Optional[str] = None
    result_debug_input_image_url: Optional[str] = None
    material_border_url: Optional[str] = None
    material_description: Optional[str] = None
    scene_description: Optional[str] = None

    def to_dict(self) -> dict[str, Optional[str]]:
        return asdict(self)


def _validate_marker(marker: Optional[Point], image: ImageBuffer) -> Point:
    if marker is None:
        raise ValueError("Material marker position is required")
    if not (0 <= marker.x < image.width and 0 <= marker.y < image.height):
        raise ValueError(f"Marker ({marker.x:.1f}, {marker.y:.1f}) lies outside the {image.width}x{image.height} image")
    return marker


def _validate_mask(mask_url: Optional[str], what: str) -> str:
    if not mask_url:
        raise ValueError(f"{what} mask is required")
    return mask_url


class MaterialTransferPipeline:
    def __init__(
        self,
        client: ModelClient,
        config: Optional[TransferConfig] = None,
        progress: Optional[ProgressChannel] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.config = config or TransferConfig()
        self.orchestrator = GenerationOrchestrator(client, progress=progress, sleep=sleep)

    def _padded_part(self, image: ImageSource, fmt: str = "JPEG") -> ImagePart:
        canvas = self.config.canvas
        padded = pad_to_square(image, canvas.target_dimension, canvas.pad_color)
        return ImagePart.from_asset(ImageAsset.from_buffer(padded, fmt, canvas.jpeg_quality))

    async def _describe(
        self,
        image: ImageSource,
        mask_url: str,
        prompt: str,
        stage: str,
        cancel: Optional[asyncio.Event],
    ) -> str:
        bordered = await asyncio.to_thread(trace_boundary, image, mask_url, self.config.canvas)
        part = await asyncio.to_thread(self._padded_part, bordered)
        request = ModelRequest(self.config.model.analysis_model, prompt, (part,), ResponseKind.TEXT)
        policy = PromptSaltPolicy.for_images(1, self.config.retry)
        text, _ = await self.orchestrator.generate_text(request, policy, stage=stage, cancel=cancel)
        return text.strip()

    async def describe_material(
        self, image: ImageSource, mask_url: str, cancel: Optional[asyncio.Event] = None
    ) -> str:
        """Colour, texture and character of the outlined material."""
        return await self._describe(
            image, _validate_mask(mask_url, "Material"), MATERIAL_ANALYSIS_PROMPT, "material analysis", cancel
        )

    async def describe_scene_area(
        self, image: ImageSource, mask_url: str, cancel: Optional[asyncio.Event] = None
    ) -> str:
        """Where the outlined target region sits in the scene."""
        return await self._describe(
            image, _validate_mask(mask_url, "Scene"), SCENE_ANALYSIS_PROMPT, "scene analysis", cancel
        )

    async def analyze(
        self,
        material: ImageSource,
        material_mask_url: str,
        scene: ImageSource,
        scene_mask_url: str,
        cancel: Optional[asyncio.Event] = None,
    ) -> tuple[str, str]:
        """Both descriptions, requested concurrently."""
        material_description, scene_description = await asyncio.gather(
            self.describe_material(material, material_mask_url, cancel),
            self.describe_scene_area(scene, scene_mask_url, cancel),
        )
        return material_description, scene_description

    async def generate_seamless_texture(
        self,
        material: ImageSource,
        marker: Optional[Point],
        cancel: Optional[asyncio.Event] = None,
    ) -> TextureResult:
        """Tileable texture synthesized from a square crop around the marker.

        Recitation rejections narrow the crop before the next attempt.
        """
        source = await asyncio.to_thread(load_image, material)
        marker = _validate_marker(marker, source)
        canvas = self.config.canvas

        marker_mask = await asyncio.to_thread(MaskRaster.from_marker, marker, source.width, source.height, canvas)
        bordered = await asyncio.to_thread(trace_boundary, source, marker_mask.to_buffer(), canvas)

        policy = NarrowingCropPolicy.from_config(source, marker, self.config.retry, canvas)
        request = await asyncio.to_thread(policy.initial_request, self.config.model.image_model, SEAMLESS_TEXTURE_PROMPT)
        logger.info("Generating seamless texture around (%.0f, %.0f)", marker.x, marker.y)
        texture, prompt = await self.orchestrator.generate_image(request, policy, stage="seamless texture", cancel=cancel)
        return TextureResult(texture=texture, prompt=prompt, bordered=bordered)

    async def apply_material(
        self,
        material: ImageSource,
        marker: Optional[Point],
        scene: ImageSource,
        scene_mask_url: Optional[str],
        describe: bool = False,
        cancel: Optional[asyncio.Event] = None,
    ) -> TransferResult:
        """Run the full transfer and return the result bundle.

        Raises:
            ValueError: the marker or the scene mask is missing.
            RecitationRejected, TransportError, NoContentReturned: from the model stages.
        """
        canvas = self.config.canvas
        scene_mask_url = _validate_mask(scene_mask_url, "Scene")
        material_image, scene_image = await asyncio.gather(
            asyncio.to_thread(load_image, material),
            asyncio.to_thread(load_image, scene),
        )
        marker = _validate_marker(marker, material_image)

        logger.info("Creating debug images")
        marker_image, filled_scene = await asyncio.gather(
            asyncio.to_thread(draw_marker, material_image, marker, canvas),
            asyncio.to_thread(fill_region, scene_image, scene_mask_url, canvas),
        )
        material_debug = await asyncio.to_thread(
            ImageAsset.from_buffer, marker_image, "PNG", name="red-marker-image.png"
        )

        material_description = scene_description = None
        if describe:
            material_mask = await asyncio.to_thread(
                MaskRaster.from_marker, marker, material_image.width, material_image.height, canvas
            )
            material_mask_url = await asyncio.to_thread(material_mask.commit)
            material_description, scene_description = await self.analyze(
                material_image, material_mask_url, scene_image, scene_mask_url, cancel
            )

        texture = await self.generate_seamless_texture(material_image, marker, cancel)

        logger.info("Applying texture to scene")
        scene_part = await asyncio.to_thread(self._padded_part, filled_scene, "PNG")
        request = ModelRequest(
            self.config.model.image_model,
            application_prompt(material_description, scene_description),
            (texture.texture, scene_part),
            ResponseKind.IMAGE,
        )
        policy = PromptSaltPolicy.for_images(2, self.config.retry)
        generated, final_prompt = await self.orchestrator.generate_image(
            request, policy, stage="material application", cancel=cancel
        )

        logger.info("Cropping generated image to the scene aspect ratio")
        cropped = await asyncio.to_thread(
            crop_to_original_aspect,
            generated.to_data_url(),
            scene_image.width,
            scene_image.height,
            canvas.target_dimension,
        )
        final, scene_asset = await asyncio.gather(
            asyncio.to_thread(
                ImageAsset.from_buffer, cropped, "JPEG", canvas.jpeg_quality, name="material-transfer-result.jpeg"
            ),
            asyncio.to_thread(ImageAsset.from_buffer, scene_image, "PNG", name="scene.png"),
        )

        return TransferResult(
            final_image_url=final.to_data_url(),
            debug_image_url=scene_asset.to_data_url(),
            final_prompt=final_prompt,
            material_debug_url=material_debug.to_data_url(),
            scene_debug_url=filled_scene.to_data_url(),
            seamless_texture_url=texture.texture.to_data_url(),
            seamless_texture_prompt=texture.prompt,
            material_input_image_url=material_debug.to_data_url(),
            result_debug_input_image_url=filled_scene.to_data_url(),
            material_border_url=texture.bordered.to_data_url(),
            material_description=material_description,
            scene_description=scene_description,
        )


__all__ = ["MaterialTransferPipeline", "TextureResult", "TransferResult"]

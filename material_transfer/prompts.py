"""Prompt templates sent with each model call."""

from __future__ import annotations

import time
from typing import Optional

MATERIAL_ANALYSIS_PROMPT = """\
# Role
You are a materials analyst. The image shows a region outlined in red. Describe the
material inside that region.

# What to describe
* Colour: base hue, shading, gloss, transparency, with an approximate hex code
* Texture: roughness or smoothness, surface pattern
* Character: kind of material, reflectivity, physical properties

# Examples
* "A deep reddish brown (#8B4513) wood with vertical grain and a smooth, softly glossy surface."
* "A matte navy (#1E3A8A) fabric with a fine visible weave and a slightly fuzzy feel."

# Output
Three or four precise, reproducible sentences. The text is consumed by a material
transfer system.
"""

SCENE_ANALYSIS_PROMPT = """\
# Role
You are a spatial analyst. The image shows a region outlined in red. Describe exactly
where that region sits in the scene.

# What to describe
* Relation to nearby objects and structures
* Physical location: wall, floor, ceiling, furniture
* Shape and extent of the region

# Examples
* "The region is the centre of the white plaster wall behind the grey fabric sofa."
* "The region is the oak floor in front of the dining table, near the legs of the black chair."

# Output
One or two sentences that use fixed objects as reference points.
"""

SEAMLESS_TEXTURE_PROMPT = """\
# Seamless texture synthesis
You are an expert texture artist. Study the material around the red marker and
synthesize a NEW, ORIGINAL seamless texture that repeats in every direction.

## Input
- A square crop of the material. Ignore black padding and anything that is not the material.

## Requirements
- Seamless: left/right and top/bottom edges tile without visible joins
- High resolution with natural surface detail
- Square, 1:1 aspect ratio
- Reconstruct colour, roughness, pattern and gloss; do not copy or trace the input

## Forbidden
- Reproducing, tracing, cropping or enlarging the input directly
- Visible seams or unnatural repetition
- Finishing without producing an image

## Output
Only the square texture image. No text.
"""

MATERIAL_APPLICATION_PROMPT = """\
# Texture application
You are an expert compositor. Apply the seamless texture from the first image to the
region filled with purple in the second image.

## Input
- Image 1: the seamless texture to apply
- Image 2: the scene, with the target region filled in purple

## Steps
1. Identify the purple region in image 2 exactly
2. Map the texture onto that region
3. Match the scene's lighting, perspective and scale
4. Render contact shadows, reflections and edge blending

## Forbidden
- Copying or tracing the input images directly
- Pasting the texture flat without adapting it to the scene
- Returning the scene unchanged or altering anything outside the region
- Finishing without producing an image

## Output
Only the final composited image. No explanation.
"""


def process_id(timestamp_ms: Optional[int] = None) -> str:
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"[Process ID: {timestamp_ms}]"


def application_prompt(
    material_description: Optional[str] = None,
    scene_description: Optional[str] = None,
    timestamp_ms: Optional[int] = None,
) -> str:
    """Application prompt with optional analysis context and a process id suffix."""
    sections = [MATERIAL_APPLICATION_PROMPT.rstrip()]
    if material_description:
        sections.append(f"## Material description\n{material_description.strip()}")
    if scene_description:
        sections.append(f"## Target region\n{scene_description.strip()}")
    sections.append(process_id(timestamp_ms))
    return "\n\n".join(sections)


__all__ = [
    "MATERIAL_ANALYSIS_PROMPT",
    "SCENE_ANALYSIS_PROMPT",
    "SEAMLESS_TEXTURE_PROMPT",
    "MATERIAL_APPLICATION_PROMPT",
    "application_prompt",
    "process_id",
]

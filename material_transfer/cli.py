from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from material_transfer.boundary import trace_boundary
from material_transfer.client import make_client
from material_transfer.compositor import create_model_input_image, pad_to_square
from material_transfer.config import TransferConfig
from material_transfer.constants import DEFAULT_TARGET_DIMENSION
from material_transfer.coordinates import Point
from material_transfer.errors import TransferError, describe_failure
from material_transfer.imaging import ImageAsset, parse_data_url
from material_transfer.mask import MaskRaster, mask_centroid
from material_transfer.orchestrator import ProgressChannel
from material_transfer.pipeline import MaterialTransferPipeline, TransferResult

app = typer.Typer(
    help="CLI for transferring a material from one image onto a region of another",
    pretty_exceptions_show_locals=False,
    rich_markup_mode="rich",
    add_completion=False,
)
console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _parse_point(value: str) -> Point:
    try:
        x, y = (float(part) for part in value.split(","))
    except ValueError as exc:
        raise typer.BadParameter(f"expected 'x,y', got '{value}'") from exc
    return Point(x, y)


def _load(path: Path) -> ImageAsset:
    try:
        return ImageAsset.from_path(path)
    except (OSError, ValueError) as exc:
        console.print(f"[red]Could not read image {path}: {exc}[/red]")
        raise typer.Exit(1)


def _load_mask(path: Path, image: ImageAsset) -> str:
    """Mask file as a data URL, resized to the image when the sizes differ."""
    return MaskRaster.from_image(_load(path), image.width, image.height).commit()


def _resolve_marker(marker: Optional[str], material_mask: Optional[Path], material: ImageAsset) -> Point:
    if marker is not None:
        return _parse_point(marker)
    if material_mask is None:
        console.print("[red]Either --marker or --material-mask is required.[/red]")
        raise typer.Exit(1)
    mask = MaskRaster.from_image(_load(material_mask), material.width, material.height)
    point = mask_centroid(mask.alpha)
    if point is None:
        console.print(f"[red]Material mask {material_mask} selects nothing.[/red]")
        raise typer.Exit(1)
    console.print(f"[dim]Using mask centroid ({point.x:.0f}, {point.y:.0f}) as the material marker[/dim]")
    return point


def _write_data_url(url: str, path: Path) -> None:
    _, payload = parse_data_url(url)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)


def _save_debug(result: TransferResult, debug_dir: Path) -> None:
    images = {
        "material-marker.png": result.material_debug_url,
        "material-border.jpeg": result.material_border_url,
        "scene-filled.png": result.scene_debug_url,
        "seamless-texture.png": result.seamless_texture_url,
    }
    for name, url in images.items():
        if url:
            _write_data_url(url, debug_dir / name)
    (debug_dir / "final-prompt.txt").write_text(result.final_prompt, encoding="utf-8")
    if result.seamless_texture_prompt:
        (debug_dir / "texture-prompt.txt").write_text(result.seamless_texture_prompt, encoding="utf-8")
    console.print(f"[dim]Debug artifacts written to {debug_dir}[/dim]")


async def _run_transfer(
    pipeline: MaterialTransferPipeline,
    progress: ProgressChannel,
    material: ImageAsset,
    marker: Point,
    scene: ImageAsset,
    scene_mask: str,
    describe: bool,
) -> TransferResult:
    async def report() -> None:
        async for event in progress:
            if event.message:
                console.print(f"[cyan]{event.stage}[/cyan] {event.message}")

    reporter = asyncio.create_task(report())
    try:
        return await pipeline.apply_material(material, marker, scene, scene_mask, describe=describe)
    finally:
        progress.close()
        await reporter


@app.command("transfer", help="Apply the material under MARKER to the masked region of SCENE")
def transfer(
    material: Path = typer.Argument(..., exists=True, dir_okay=False, help="Image containing the material"),
    scene: Path = typer.Argument(..., exists=True, dir_okay=False, help="Scene to apply the material to"),
    marker: Optional[str] = typer.Option(None, "--marker", "-m", help="Material marker in natural pixels, as x,y"),
    material_mask: Optional[Path] = typer.Option(
        None, "--material-mask", exists=True, dir_okay=False, help="PNG mask painted over the material; its centroid becomes the marker"
    ),
    mask: Path = typer.Option(..., "--mask", exists=True, dir_okay=False, help="PNG mask of the scene target region"),
    output: Path = typer.Option(Path("result.jpeg"), "--output", "-o", help="Where to write the final image"),
    describe: bool = typer.Option(False, "--describe/--no-describe", help="Ask the analysis model for descriptions first"),
    debug_dir: Optional[Path] = typer.Option(None, "--debug-dir", help="Write debug images and prompts here"),
    target_dimension: Optional[int] = typer.Option(
        None, "--target-dimension", help="Square canvas size sent to the model", min=16
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    _configure_logging(verbose)
    try:
        config = TransferConfig.from_env()
        if target_dimension is not None:
            config.override("canvas.target_dimension", target_dimension)
        client = make_client(config.model)
    except (TransferError, ValueError) as exc:
        console.print(f"[red]{describe_failure(exc)}[/red]")
        raise typer.Exit(1)

    material_asset = _load(material)
    point = _resolve_marker(marker, material_mask, material_asset)
    scene_asset = _load(scene)
    scene_mask = _load_mask(mask, scene_asset)
    progress = ProgressChannel()
    pipeline = MaterialTransferPipeline(client, config, progress=progress)

    console.print("[cyan]Starting material transfer...[/cyan]")
    try:
        result = asyncio.run(
            _run_transfer(pipeline, progress, material_asset, point, scene_asset, scene_mask, describe)
        )
    except (TransferError, ValueError) as exc:
        console.print(f"[red]{describe_failure(exc)}[/red]")
        raise typer.Exit(1)

    _write_data_url(result.final_image_url, output)
    console.print(f"[green]Result written to {output}[/green]")
    if result.material_description:
        console.print(f"[bold]Material:[/bold] {result.material_description}")
    if result.scene_description:
        console.print(f"[bold]Target:[/bold] {result.scene_description}")
    if debug_dir is not None:
        _save_debug(result, debug_dir)


@app.command("trace", help="Outline a mask's boundary on top of its image")
def trace(
    image: Path = typer.Argument(..., exists=True, dir_okay=False, help="Base image"),
    mask: Path = typer.Argument(..., exists=True, dir_okay=False, help="PNG mask (alpha marks the selection)"),
    output: Path = typer.Option(Path("red-border-image.jpeg"), "--output", "-o", help="Where to write the traced image"),
) -> None:
    base = _load(image)
    bordered = trace_boundary(base, _load_mask(mask, base), TransferConfig.from_env().canvas)
    bordered.save(output)
    console.print(f"[green]Traced boundary written to {output}[/green]")


@app.command("marker-mask", help="Build a disc mask around a marker point")
def marker_mask(
    image: Path = typer.Argument(..., exists=True, dir_okay=False, help="Image the mask belongs to"),
    marker: str = typer.Option(..., "--marker", "-m", help="Marker in natural pixels, as x,y"),
    output: Path = typer.Option(Path("marker-mask.png"), "--output", "-o", help="Where to write the PNG mask"),
) -> None:
    base = _load(image)
    point = _parse_point(marker)
    mask = MaskRaster.from_marker(point, base.width, base.height, TransferConfig.from_env().canvas)
    _write_data_url(mask.commit(), output)
    console.print(f"[green]Mask {base.width}x{base.height} written to {output}[/green]")


@app.command("pad", help="Letterbox an image into a square canvas")
def pad(
    image: Path = typer.Argument(..., exists=True, dir_okay=False, help="Image to pad"),
    size: int = typer.Option(DEFAULT_TARGET_DIMENSION, "--size", "-s", help="Side of the square canvas", min=16),
    output: Path = typer.Option(Path("padded.png"), "--output", "-o", help="Where to write the padded PNG"),
) -> None:
    canvas = TransferConfig.from_env().canvas
    padded = pad_to_square(_load(image), size, canvas.pad_color)
    ImageAsset.from_buffer(padded, "PNG", name=output.name).save(output)
    console.print(f"[green]Padded {size}x{size} image written to {output}[/green]")


@app.command("model-input", help="Build the square model input for an image and its mask")
def model_input(
    image: Path = typer.Argument(..., exists=True, dir_okay=False, help="Image to prepare"),
    mask: Path = typer.Argument(..., exists=True, dir_okay=False, help="PNG mask (alpha marks the selection)"),
    mode: str = typer.Option("isolate", "--mode", help="isolate keeps the masked area, inpaint paints it magenta"),
    size: int = typer.Option(DEFAULT_TARGET_DIMENSION, "--size", "-s", help="Side of the square canvas", min=16),
    output: Path = typer.Option(Path("model-input.png"), "--output", "-o", help="Where to write the PNG"),
) -> None:
    base = _load(image)
    try:
        prepared = create_model_input_image(base, _load_mask(mask, base), mode, size)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    ImageAsset.from_buffer(prepared, "PNG", name=output.name).save(output)
    console.print(f"[green]{mode.capitalize()} input {size}x{size} written to {output}[/green]")


if __name__ == "__main__":
    app()

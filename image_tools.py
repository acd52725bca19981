"""
Stability AI image tools exposed over MCP.

Tools take ``file://`` URIs (as returned by ``POST /upload``) or absolute
paths for their input images, write results into the image storage
directory and leave a metadata sidecar next to every output.
"""

import logging
import re
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional
from urllib.parse import unquote, urlparse

import aiofiles
from fastmcp import FastMCP, Context
from pydantic import BaseModel, ConfigDict

from app_config import AppConfig
from metadata_utils import MetadataResponse, RequestParams, save_metadata, utc_timestamp
from request_utils import UNKNOWN_IP
from stability_client import StabilityAIClient

logger = logging.getLogger(__name__)

AspectRatio = Literal["16:9", "1:1", "21:9", "2:3", "3:2", "4:5", "5:4", "9:16", "9:21"]
StylePreset = Literal[
    "3d-model", "analog-film", "anime", "cinematic", "comic-book", "digital-art",
    "enhance", "fantasy-art", "isometric", "line-art", "low-poly", "modeling-compound",
    "neon-punk", "origami", "photographic", "pixel-art", "tile-texture",
]
SD35Model = Literal["sd3.5-large", "sd3.5-large-turbo", "sd3.5-medium", "sd3.5-flash"]

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".webp"}


class AppContext(BaseModel):
    """Shared resources for the tools"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    config: AppConfig
    stability: StabilityAIClient


_global_app_context: Optional[AppContext] = None


def set_app_context(context: Optional[AppContext]) -> None:
    global _global_app_context
    _global_app_context = context


def get_app_context() -> AppContext:
    """Get application context from global reference"""
    if _global_app_context is not None:
        return _global_app_context
    raise RuntimeError("Application context not initialized")


mcp = FastMCP("Stability AI MCP Server")

# =============================================================================
# HELPERS
# =============================================================================

def caller_ip(ctx: Optional[Context]) -> str:
    """IP injected by the SSE transport into ``params._meta``"""
    if ctx is None:
        return UNKNOWN_IP
    try:
        meta = ctx.request_context.meta
    except (AttributeError, LookupError, ValueError):
        return UNKNOWN_IP
    return getattr(meta, "ip", None) or UNKNOWN_IP


def resolve_image_input(image_uri: str) -> Path:
    """Turn a ``file://`` URI or absolute path into an existing local file"""
    if not image_uri or not image_uri.strip():
        raise ValueError("Image input cannot be empty")

    image_uri = image_uri.strip()
    if image_uri.startswith("file://"):
        path = Path(unquote(urlparse(image_uri).path))
    else:
        path = Path(image_uri)

    if ".." in path.parts:
        raise ValueError("Invalid file path: potential security risk")
    if not path.is_absolute():
        raise ValueError("Invalid image input: must be a file:// URI or an absolute path")
    if not path.is_file():
        raise FileNotFoundError(f"File not found: {path}")
    return path


def build_output_path(storage_dir: Path, requested_name: Optional[str], tool: str) -> Path:
    """Sanitized, non-clobbering ``.png`` path inside the storage directory"""
    stem = Path(requested_name).stem if requested_name else ""
    stem = re.sub(r"[^A-Za-z0-9._-]+", "-", stem).strip("-.")
    if not stem:
        stem = f"{tool}-{int(time.time() * 1000)}"

    candidate = storage_dir / f"{stem}.png"
    counter = 1
    while candidate.exists():
        candidate = storage_dir / f"{stem}-{counter}.png"
        counter += 1
    return candidate


async def read_image(image_uri: str) -> tuple[bytes, str]:
    path = resolve_image_input(image_uri)
    async with aiofiles.open(path, "rb") as f:
        return await f.read(), path.name


async def run_image_job(
    tool: str,
    produce: Callable[[StabilityAIClient], Awaitable[bytes]],
    params: Dict[str, Any],
    output_image_file_name: Optional[str],
    ctx: Optional[Context] = None,
) -> Dict[str, Any]:
    """Call the API, store the image and its sidecar, describe the result.

    ``params`` holds the RequestParams fields other than the output name.
    Failures are recorded in the sidecar and re-raised as ValueError.
    """
    app_context = get_app_context()
    storage_dir = app_context.config.ensure_storage_directory()
    output_path = build_output_path(storage_dir, output_image_file_name, tool)
    request_params = RequestParams(output_image_file_name=output_path.name, **params)

    logger.info(f"🎨 {tool} requested by {caller_ip(ctx)} -> {output_path.name}")
    if ctx:
        await ctx.info(f"Running {tool} with model {request_params.model}")

    try:
        image_bytes = await produce(app_context.stability)
    except Exception as e:
        logger.error(f"{tool} failed: {e}")
        await save_metadata(output_path, request_params, error=e)
        if ctx:
            await ctx.error(f"{tool} failed: {e}")
        raise ValueError(f"Failed to run {tool}: {e}") from e

    async with aiofiles.open(output_path, "wb") as f:
        await f.write(image_bytes)
    await save_metadata(
        output_path,
        request_params,
        MetadataResponse(response_type="success", time_generated=utc_timestamp()),
    )

    if ctx:
        await ctx.info(f"Saved {output_path.name}")
    return {
        "success": True,
        "tool": tool,
        "fileUri": output_path.resolve().as_uri(),
        "filename": output_path.name,
        "size": len(image_bytes),
    }

# =============================================================================
# TEXT-TO-IMAGE TOOLS
# =============================================================================

@mcp.tool()
async def generate_image(
    prompt: str,
    ctx: Context = None,
    aspect_ratio: AspectRatio = "1:1",
    negative_prompt: Optional[str] = None,
    style_preset: Optional[StylePreset] = None,
    output_image_file_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Generate an image from a text prompt with Stable Image Core.

    Args:
        prompt: What you wish to see in the output image (max 10000 chars)
        aspect_ratio: Aspect ratio of the generated image
        negative_prompt: What you do not wish to see in the output image
        style_preset: Guides the model towards a particular style
        output_image_file_name: Name for the stored image, without extension

    Returns:
        file:// URI and filename of the stored PNG
    """
    if len(prompt) > 10000:
        raise ValueError("Prompt must be 10000 characters or less")

    return await run_image_job(
        "generate_image",
        lambda client: client.generate_core(prompt, aspect_ratio, negative_prompt, style_preset),
        {
            "prompt": prompt,
            "aspect_ratio": aspect_ratio,
            "negative_prompt": negative_prompt,
            "style_preset": style_preset,
            "model": "stable-image-core",
        },
        output_image_file_name,
        ctx,
    )


@mcp.tool()
async def generate_image_ultra(
    prompt: str,
    ctx: Context = None,
    aspect_ratio: AspectRatio = "1:1",
    negative_prompt: Optional[str] = None,
    output_image_file_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Generate a high-detail image from a text prompt with Stable Image Ultra."""
    if len(prompt) > 10000:
        raise ValueError("Prompt must be 10000 characters or less")

    return await run_image_job(
        "generate_image_ultra",
        lambda client: client.generate_ultra(prompt, aspect_ratio, negative_prompt),
        {
            "prompt": prompt,
            "aspect_ratio": aspect_ratio,
            "negative_prompt": negative_prompt,
            "model": "stable-image-ultra",
        },
        output_image_file_name,
        ctx,
    )


@mcp.tool()
async def generate_image_sd35(
    prompt: str,
    ctx: Context = None,
    model: SD35Model = "sd3.5-large",
    aspect_ratio: AspectRatio = "1:1",
    negative_prompt: Optional[str] = None,
    output_image_file_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Generate an image with one of the Stable Diffusion 3.5 models.

    Args:
        prompt: What you wish to see in the output image
        model: sd3.5-large, sd3.5-large-turbo, sd3.5-medium or sd3.5-flash
        aspect_ratio: Aspect ratio of the generated image
        negative_prompt: What you do not wish to see (ignored by turbo models upstream)
        output_image_file_name: Name for the stored image, without extension
    """
    return await run_image_job(
        "generate_image_sd35",
        lambda client: client.generate_sd35(prompt, model, aspect_ratio, negative_prompt),
        {
            "prompt": prompt,
            "aspect_ratio": aspect_ratio,
            "negative_prompt": negative_prompt,
            "model": model,
        },
        output_image_file_name,
        ctx,
    )

# =============================================================================
# EDITING TOOLS
# =============================================================================

@mcp.tool()
async def remove_background(
    image_file_uri: str,
    ctx: Context = None,
    output_image_file_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Remove the background from an image, leaving the foreground subject.

    Args:
        image_file_uri: file:// URI from /upload, or an absolute path
        output_image_file_name: Name for the stored image, without extension
    """
    image, image_name = await read_image(image_file_uri)
    return await run_image_job(
        "remove_background",
        lambda client: client.remove_background(image, image_name),
        {"prompt": "", "model": "remove-background"},
        output_image_file_name,
        ctx,
    )


@mcp.tool()
async def search_and_replace(
    image_file_uri: str,
    search_prompt: str,
    prompt: str,
    ctx: Context = None,
    output_image_file_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Find an object in an image and replace it with something else.

    Args:
        image_file_uri: file:// URI from /upload, or an absolute path
        search_prompt: Short description of the object to replace
        prompt: What the object should be replaced with
        output_image_file_name: Name for the stored image, without extension
    """
    image, image_name = await read_image(image_file_uri)
    return await run_image_job(
        "search_and_replace",
        lambda client: client.search_and_replace(image, prompt, search_prompt, image_name),
        {"prompt": prompt, "model": "search-and-replace"},
        output_image_file_name,
        ctx,
    )


@mcp.tool()
async def outpaint(
    image_file_uri: str,
    ctx: Context = None,
    left: int = 0,
    right: int = 0,
    up: int = 0,
    down: int = 0,
    prompt: Optional[str] = None,
    output_image_file_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Extend an image in any direction, filling the new area to match.

    Args:
        image_file_uri: file:// URI from /upload, or an absolute path
        left/right/up/down: Pixels to add on each side (0-2000)
        prompt: Optional guidance for the generated area
        output_image_file_name: Name for the stored image, without extension
    """
    for name, value in (("left", left), ("right", right), ("up", up), ("down", down)):
        if value < 0 or value > 2000:
            raise ValueError(f"{name} must be between 0 and 2000 pixels")

    image, image_name = await read_image(image_file_uri)
    return await run_image_job(
        "outpaint",
        lambda client: client.outpaint(image, left, right, up, down, prompt, image_name),
        {"prompt": prompt or "", "model": "outpaint"},
        output_image_file_name,
        ctx,
    )


@mcp.tool()
async def upscale_fast(
    image_file_uri: str,
    ctx: Context = None,
    output_image_file_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Upscale an image 4x while keeping its content."""
    image, image_name = await read_image(image_file_uri)
    return await run_image_job(
        "upscale_fast",
        lambda client: client.upscale_fast(image, image_name),
        {"prompt": "", "model": "upscale-fast"},
        output_image_file_name,
        ctx,
    )


@mcp.tool()
async def list_resources() -> List[Dict[str, Any]]:
    """List the images stored in the image storage directory."""
    return list_stored_images(get_app_context().config.image_storage_directory)


def list_stored_images(storage_dir: Path) -> List[Dict[str, Any]]:
    if not storage_dir.exists():
        return []
    images = []
    for p in sorted(storage_dir.iterdir()):
        if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES:
            images.append({
                "name": p.name,
                "uri": p.resolve().as_uri(),
                "size": p.stat().st_size,
            })
    return images

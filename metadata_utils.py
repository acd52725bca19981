"""
Sidecar metadata for generated images.

Each generated image gets a JSON document next to it (same basename,
``.txt`` extension) describing the request that produced it and the
outcome. Writing is best effort: failures are logged and never raised.
"""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union

import aiofiles
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

_IMAGE_EXTENSION = re.compile(r"\.(png|jpg|jpeg)$", re.IGNORECASE)


class RequestParams(BaseModel):
    """Parameters of a generation request, serialized with camelCase keys"""
    model_config = ConfigDict(populate_by_name=True)

    prompt: str
    aspect_ratio: Optional[str] = Field(default=None, alias="aspectRatio")
    negative_prompt: Optional[str] = Field(default=None, alias="negativePrompt")
    style_preset: Optional[str] = Field(default=None, alias="stylePreset")
    model: str
    output_image_file_name: str = Field(alias="outputImageFileName")


class MetadataResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    response_type: Literal["success", "error"] = Field(alias="responseType")
    time_generated: Optional[str] = Field(default=None, alias="timeGenerated")
    error: Optional[str] = None


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def metadata_path_for(file_path: Union[str, Path]) -> Path:
    """Sidecar path for an image: png/jpg/jpeg (any case) becomes .txt"""
    path_str = str(file_path)
    if _IMAGE_EXTENSION.search(path_str):
        return Path(_IMAGE_EXTENSION.sub(".txt", path_str))
    # Unknown extensions keep it and gain .txt so the image is never overwritten
    return Path(path_str + ".txt")


def _dump(value: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, exclude_none=True)
    return dict(value)


async def save_metadata(
    file_path: Union[str, Path],
    request_params: Union[RequestParams, Dict[str, Any]],
    response: Optional[Union[MetadataResponse, Dict[str, Any]]] = None,
    error: Optional[Union[BaseException, str]] = None,
) -> None:
    """Write the JSON sidecar for ``file_path``.

    Args:
        file_path: Path of the generated (or attempted) image
        request_params: The request parameters, stored verbatim
        response: Success descriptor; when omitted the error is recorded
        error: Exception or message describing a failed generation
    """
    try:
        if response is not None:
            response_data = _dump(response)
        else:
            if isinstance(error, BaseException):
                message = str(error) or type(error).__name__
            else:
                message = str(error)
            response_data = {"responseType": "error", "error": message}

        metadata = {
            "timestamp": utc_timestamp(),
            "request": _dump(request_params),
            "response": response_data,
        }

        target = metadata_path_for(file_path)
        async with aiofiles.open(target, "w") as f:
            await f.write(json.dumps(metadata, indent=2))
        logger.debug(f"Metadata written to {target}")
    except Exception as e:
        logger.error(f"Failed to save metadata: {e}")

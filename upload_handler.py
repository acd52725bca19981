"""
Image upload endpoint.

Stores a single multipart image under the configured storage directory
and hands back a ``file://`` URI that the image tools accept as input.
"""

import logging
import random
import time
from pathlib import Path

import aiofiles
from starlette.datastructures import UploadFile
from starlette.requests import Request
from starlette.responses import JSONResponse

from app_config import AppConfig

logger = logging.getLogger(__name__)

UPLOAD_FIELD = "image"
CHUNK_SIZE = 1024 * 1024


def generate_upload_filename(field_name: str, original_name: str) -> str:
    """``<field>-<epoch millis>-<random>.<original extension>``"""
    suffix = Path(original_name or "").suffix
    return f"{field_name}-{int(time.time() * 1000)}-{random.randint(0, 10**9)}{suffix}"


async def store_upload(upload: UploadFile, storage_dir: Path, field_name: str = UPLOAD_FIELD) -> dict:
    """Write an uploaded file to ``storage_dir`` and describe the stored copy"""
    storage_dir.mkdir(parents=True, exist_ok=True)
    filename = generate_upload_filename(field_name, upload.filename or "")
    target = storage_dir / filename

    size = 0
    async with aiofiles.open(target, "wb") as f:
        while True:
            chunk = await upload.read(CHUNK_SIZE)
            if not chunk:
                break
            await f.write(chunk)
            size += len(chunk)

    logger.info(f"Stored upload {upload.filename!r} as {target} ({size} bytes)")
    return {
        "success": True,
        "fileUri": target.resolve().as_uri(),
        "filename": filename,
        "originalName": upload.filename,
        "size": size,
    }


async def upload_image(request: Request) -> JSONResponse:
    """POST /upload"""
    config: AppConfig = request.app.state.config

    form = await request.form()
    try:
        upload = form.get(UPLOAD_FIELD)
        if not isinstance(upload, UploadFile):
            logger.warning("Upload rejected: no image field in request")
            return JSONResponse({"error": "No image file provided"}, status_code=400)

        result = await store_upload(upload, config.ensure_storage_directory())
        return JSONResponse(result)
    finally:
        await form.close()

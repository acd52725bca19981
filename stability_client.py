"""
Thin async client for the Stability AI REST API (v2beta stable-image).

Every endpoint takes a multipart form and, with ``Accept: application/json``,
answers with ``{"image": <base64>, "finish_reason": ..., "seed": ...}``.
"""

import base64
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

SD35_MODELS = ("sd3.5-large", "sd3.5-large-turbo", "sd3.5-medium", "sd3.5-flash")


class StabilityAPIError(Exception):
    """Non-success answer from the Stability AI API"""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"Stability AI API error ({status_code}): {message}")
        self.status_code = status_code
        self.message = message


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    errors = payload.get("errors") if isinstance(payload, dict) else None
    if errors:
        return "; ".join(str(e) for e in errors)
    if isinstance(payload, dict):
        return str(payload.get("message") or payload.get("name") or payload)
    return str(payload)


class StabilityAIClient:
    """Calls the Stability AI image endpoints over a shared httpx client"""

    def __init__(self, api_key: Optional[str], http_client: httpx.AsyncClient,
                 base_url: str = "https://api.stability.ai"):
        self.api_key = api_key
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")

    async def _post_image(
        self,
        path: str,
        data: Dict[str, Any],
        image: Optional[bytes] = None,
        image_name: str = "image.png",
    ) -> bytes:
        if not self.api_key:
            raise ValueError("Stability AI API key not configured. Please set STABILITY_AI_API_KEY environment variable.")

        form = {k: str(v) for k, v in data.items() if v is not None}
        if image is not None:
            files = {"image": (image_name, image)}
        else:
            # The API insists on multipart even when no file is sent
            files = {"none": (None, b"")}

        url = f"{self.base_url}{path}"
        logger.info(f"POST {url}")
        response = await self.http_client.post(
            url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Accept": "application/json",
            },
            data=form,
            files=files,
        )

        if response.status_code != 200:
            message = _error_message(response)
            logger.error(f"Stability AI request to {path} failed: {response.status_code} {message}")
            raise StabilityAPIError(response.status_code, message)

        payload = response.json()
        if payload.get("finish_reason") == "CONTENT_FILTERED":
            raise StabilityAPIError(response.status_code, "Generation was blocked by the content filter")
        return base64.b64decode(payload["image"])

    async def generate_core(self, prompt: str, aspect_ratio: Optional[str] = None,
                            negative_prompt: Optional[str] = None,
                            style_preset: Optional[str] = None) -> bytes:
        return await self._post_image("/v2beta/stable-image/generate/core", {
            "prompt": prompt,
            "aspect_ratio": aspect_ratio,
            "negative_prompt": negative_prompt,
            "style_preset": style_preset,
            "output_format": "png",
        })

    async def generate_ultra(self, prompt: str, aspect_ratio: Optional[str] = None,
                             negative_prompt: Optional[str] = None) -> bytes:
        return await self._post_image("/v2beta/stable-image/generate/ultra", {
            "prompt": prompt,
            "aspect_ratio": aspect_ratio,
            "negative_prompt": negative_prompt,
            "output_format": "png",
        })

    async def generate_sd35(self, prompt: str, model: str = "sd3.5-large",
                            aspect_ratio: Optional[str] = None,
                            negative_prompt: Optional[str] = None) -> bytes:
        if model not in SD35_MODELS:
            raise ValueError(f"Unknown SD3.5 model '{model}'. Choose one of: {', '.join(SD35_MODELS)}")
        return await self._post_image("/v2beta/stable-image/generate/sd3", {
            "prompt": prompt,
            "model": model,
            "mode": "text-to-image",
            "aspect_ratio": aspect_ratio,
            "negative_prompt": negative_prompt,
            "output_format": "png",
        })

    async def remove_background(self, image: bytes, image_name: str = "image.png") -> bytes:
        return await self._post_image("/v2beta/stable-image/edit/remove-background",
                                      {"output_format": "png"}, image, image_name)

    async def search_and_replace(self, image: bytes, prompt: str, search_prompt: str,
                                 image_name: str = "image.png") -> bytes:
        return await self._post_image("/v2beta/stable-image/edit/search-and-replace", {
            "prompt": prompt,
            "search_prompt": search_prompt,
            "output_format": "png",
        }, image, image_name)

    async def outpaint(self, image: bytes, left: int = 0, right: int = 0, up: int = 0,
                       down: int = 0, prompt: Optional[str] = None,
                       image_name: str = "image.png") -> bytes:
        if not any((left, right, up, down)):
            raise ValueError("At least one of left, right, up or down must be greater than 0")
        return await self._post_image("/v2beta/stable-image/edit/outpaint", {
            "left": left,
            "right": right,
            "up": up,
            "down": down,
            "prompt": prompt,
            "output_format": "png",
        }, image, image_name)

    async def upscale_fast(self, image: bytes, image_name: str = "image.png") -> bytes:
        return await self._post_image("/v2beta/stable-image/upscale/fast",
                                      {"output_format": "png"}, image, image_name)

"""
Runtime configuration for the Stability AI MCP Server.

Built once at startup and handed to every component that needs it.
"""

import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

DEFAULT_PORT = 3020
DEFAULT_STORAGE_DIRECTORY = Path(tempfile.gettempdir()) / "stability_ai_mcp_images"
DEFAULT_STABILITY_BASE_URL = "https://api.stability.ai"

logger = logging.getLogger(__name__)


class AppConfig(BaseModel):
    """Server settings resolved from the environment"""

    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    image_storage_directory: Path = DEFAULT_STORAGE_DIRECTORY
    stability_api_key: Optional[str] = None
    stability_base_url: str = DEFAULT_STABILITY_BASE_URL
    request_timeout: float = 120.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AppConfig":
        load_dotenv()
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", str(DEFAULT_PORT))),
            image_storage_directory=Path(
                os.getenv("IMAGE_STORAGE_DIRECTORY", str(DEFAULT_STORAGE_DIRECTORY))
            ),
            stability_api_key=os.getenv("STABILITY_AI_API_KEY") or None,
            stability_base_url=os.getenv("STABILITY_AI_BASE_URL", DEFAULT_STABILITY_BASE_URL),
            request_timeout=float(os.getenv("STABILITY_AI_TIMEOUT", "120")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def stability_configured(self) -> bool:
        return bool(self.stability_api_key)

    def ensure_storage_directory(self) -> Path:
        """Create the storage directory (and parents) if it does not exist yet"""
        self.image_storage_directory.mkdir(parents=True, exist_ok=True)
        return self.image_storage_directory


def configure_logging(level: str = "INFO") -> None:
    # stderr keeps stdout clean for anything piping the process
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr
    )

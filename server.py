#!/usr/bin/env python3
"""
Stability AI MCP Server - SSE transport

Exposes the Stability AI image tools over the Model Context Protocol using
Server-Sent Events:

  GET  /          status banner
  POST /          informational acknowledgement
  GET  /health    health status
  GET  /sse       open the SSE stream (replaces any current stream)
  POST /messages  JSON-RPC messages for the current stream
  POST /upload    multipart image upload ("image" field)
  *    anything   404 JSON
"""

import argparse
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from app_config import AppConfig, configure_logging
from image_tools import AppContext, mcp, set_app_context
from metadata_utils import utc_timestamp
from sse_transport import MESSAGES_PATH, SSETransportManager
from stability_client import StabilityAIClient
from upload_handler import upload_image

logger = logging.getLogger(__name__)

SERVICE_NAME = "stability-ai-mcp-server"
ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

# =============================================================================
# ROUTES
# =============================================================================

async def root_endpoint(request: Request):
    """Root endpoint for basic connectivity test"""
    return JSONResponse({
        "status": "MCP Stability AI Server is running 🚀",
        "endpoints": {
            "sse": "/sse",
            "messages": MESSAGES_PATH,
            "health": "/health",
            "upload": "/upload",
        },
        "description": "This server provides Stability AI image processing tools via MCP protocol",
        "timestamp": utc_timestamp(),
    })


async def root_post(request: Request):
    """POST / is not an MCP endpoint; point the caller at the right ones"""
    logger.info(f"POST / from {request.client.host if request.client else 'unknown'}")
    return JSONResponse({
        "status": "ok",
        "message": f"MCP messages go to POST {MESSAGES_PATH} after opening a stream with GET /sse",
        "timestamp": utc_timestamp(),
    })


async def health_check(request: Request):
    """Health check endpoint"""
    logger.debug("Health check endpoint called")
    manager: SSETransportManager = request.app.state.transport_manager
    config: AppConfig = request.app.state.config
    return JSONResponse({
        "status": "healthy",
        "service": SERVICE_NAME,
        "active_connection": manager.current is not None,
        "stability_configured": config.stability_configured,
        "timestamp": utc_timestamp(),
    })


async def not_found(request: Request):
    return JSONResponse({
        "error": "Not Found",
        "message": f"Route {request.method} {request.url.path} not found",
        "timestamp": utc_timestamp(),
    }, status_code=404)

# =============================================================================
# APPLICATION
# =============================================================================

def create_app(config: Optional[AppConfig] = None,
               transport_manager: Optional[SSETransportManager] = None) -> Starlette:
    """Build the ASGI application around one SSE transport manager"""
    config = config or AppConfig.from_env()
    manager = transport_manager or SSETransportManager(mcp._mcp_server)

    @asynccontextmanager
    async def lifespan(app: Starlette):
        config.ensure_storage_directory()
        async with httpx.AsyncClient(timeout=httpx.Timeout(config.request_timeout, connect=10.0)) as http_client:
            set_app_context(AppContext(
                config=config,
                stability=StabilityAIClient(config.stability_api_key, http_client, config.stability_base_url),
            ))
            if not config.stability_configured:
                logger.warning("No STABILITY_AI_API_KEY found - image tools will fail until it is set")
            try:
                yield
            finally:
                set_app_context(None)

    routes = [
        Route("/", root_endpoint, methods=["GET"]),
        Route("/", root_post, methods=["POST"]),
        Route("/health", health_check, methods=["GET"]),
        Route("/sse", manager.open_stream, methods=["GET"]),
        Route(MESSAGES_PATH, manager.messages_endpoint, methods=["POST"]),
        Route("/upload", upload_image, methods=["POST"]),
        Route("/{path:path}", not_found, methods=ALL_METHODS),
    ]

    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.config = config
    app.state.transport_manager = manager
    return app


def main(argv: Optional[list] = None) -> None:
    config = AppConfig.from_env()

    parser = argparse.ArgumentParser(description="Stability AI MCP Server (SSE transport)")
    parser.add_argument("--host", default=config.host, help="Host to bind to")
    parser.add_argument("--port", type=int, default=config.port, help="Port to bind to")
    parser.add_argument("--log-level", default=config.log_level, help="Logging level")
    args = parser.parse_args(argv)

    config = config.model_copy(update={"host": args.host, "port": args.port, "log_level": args.log_level.upper()})
    configure_logging(config.log_level)

    logger.info("=" * 50)
    logger.info("STARTING STABILITY AI MCP SERVER")
    logger.info("=" * 50)
    logger.info(f"  Host: {config.host}")
    logger.info(f"  Port: {config.port}")
    logger.info(f"  Image storage: {config.image_storage_directory}")
    logger.info(f"  Stability AI configured: {config.stability_configured}")
    logger.info("Available endpoints:")
    logger.info(f"  SSE: http://localhost:{config.port}/sse")
    logger.info(f"  Messages: http://localhost:{config.port}{MESSAGES_PATH}")
    logger.info(f"  Upload: http://localhost:{config.port}/upload")
    logger.info(f"  Health check: http://localhost:{config.port}/health")

    uvicorn.run(create_app(config), host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()

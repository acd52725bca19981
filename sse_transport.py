"""
SSE transport lifecycle for the MCP server.

Exactly one SSE stream is routable at a time. Opening a new stream
replaces the current one without telling the old client; POSTs to the
message endpoint are enriched with caller metadata and handed to the
stream that is current when they arrive.

The slot is written under an ``asyncio.Lock`` and every stream gets a
generation number. Closing any stream empties the slot, including a
replaced one closing after its successor opened; the generation only
tells the two cases apart in the logs.

Routes:
  GET  /sse       -> open_stream
  POST /messages  -> messages_endpoint (raw ASGI, the SDK writes the response)
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from mcp.server.sse import SseServerTransport
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.types import Message, Receive, Scope, Send

from request_utils import collect_headers, enrich_message, get_client_ip

logger = logging.getLogger(__name__)

MESSAGES_PATH = "/messages"
NO_ACTIVE_CONNECTION = "No active SSE connection"


@dataclass
class SSEConnection:
    """The one routable client stream"""
    transport: Any
    generation: int
    client_ip: str = "unknown"
    opened_at: float = field(default_factory=time.time)


def _replay_receive(body: bytes, receive: Receive) -> Receive:
    """ASGI receive that yields ``body`` once, then defers to the real channel"""
    sent = False

    async def replay() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


class SSETransportManager:
    """Owns the single SSE connection slot and routes posted messages to it"""

    def __init__(self, mcp_server: Any, messages_path: str = MESSAGES_PATH):
        # mcp_server is the low-level mcp Server (FastMCP keeps it in _mcp_server)
        self.mcp_server = mcp_server
        self.messages_path = messages_path
        self._lock = asyncio.Lock()
        self._connection: Optional[SSEConnection] = None
        self._generation = 0
        self.messages_endpoint = _MessagesEndpoint(self)

    @property
    def current(self) -> Optional[SSEConnection]:
        return self._connection

    @property
    def generation(self) -> int:
        return self._generation

    def create_transport(self) -> SseServerTransport:
        return SseServerTransport(self.messages_path)

    async def register(self, transport: Any, client_ip: str = "unknown") -> SSEConnection:
        """Make ``transport`` the routable stream, replacing any current one"""
        async with self._lock:
            self._generation += 1
            connection = SSEConnection(transport=transport, generation=self._generation, client_ip=client_ip)
            previous = self._connection
            self._connection = connection

        if previous is not None:
            logger.info(
                f"SSE stream #{previous.generation} ({previous.client_ip}) replaced by "
                f"#{connection.generation} ({client_ip})"
            )
        else:
            logger.info(f"SSE stream #{connection.generation} opened by {client_ip}")
        return connection

    async def release(self, connection: SSEConnection) -> bool:
        """Clear the slot when ``connection`` closes.

        Any close empties the slot, even when ``connection`` was already
        replaced: the successor stays open but is no longer routable.
        Returns True when the closing stream was the current one.
        """
        async with self._lock:
            current = self._connection
            self._connection = None

        if current is not None and current.generation == connection.generation:
            logger.info(f"SSE stream #{connection.generation} closed")
            return True
        if current is not None:
            logger.warning(
                f"Replaced SSE stream #{connection.generation} closed; "
                f"stream #{current.generation} is no longer routable"
            )
        else:
            logger.info(f"SSE stream #{connection.generation} closed")
        return False

    async def open_stream(self, request: Request) -> Response:
        """GET /sse: hold the stream open and run the MCP server over it"""
        transport = self.create_transport()
        connection = await self.register(transport, get_client_ip(request))
        try:
            async with transport.connect_sse(request.scope, request.receive, request._send) as streams:
                read_stream, write_stream = streams
                await self.mcp_server.run(
                    read_stream,
                    write_stream,
                    self.mcp_server.create_initialization_options(),
                )
        finally:
            await self.release(connection)
        # connect_sse already sent the response; this keeps Starlette satisfied
        return Response()

    async def post_message(self, scope: Scope, receive: Receive, send: Send) -> None:
        """POST /messages: enrich the JSON-RPC body and hand it to the current stream"""
        connection = self._connection
        if connection is None:
            logger.warning("Message rejected: no active SSE connection")
            response = PlainTextResponse(NO_ACTIVE_CONNECTION, status_code=400)
            await response(scope, receive, send)
            return

        request = Request(scope, receive)
        raw_body = await request.body()
        body = raw_body
        try:
            message = json.loads(raw_body)
        except ValueError:
            # Left for the protocol engine to reject
            message = None
        if isinstance(message, dict):
            enriched = enrich_message(message, get_client_ip(request), collect_headers(request))
            body = json.dumps(enriched).encode("utf-8")

        await connection.transport.handle_post_message(scope, _replay_receive(body, receive), send)


class _MessagesEndpoint:
    """ASGI app for the message route; Starlette hands it scope/receive/send as-is"""

    def __init__(self, manager: SSETransportManager):
        self.manager = manager

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.manager.post_message(scope, receive, send)

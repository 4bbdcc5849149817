"""
Session-scoped MCP endpoint backed by the SDK's streamable-HTTP transport.

The SDK server answers every JSON-RPC message statelessly; this module puts
the session registry in front of it. ``POST`` without ``Mcp-Session-Id``
opens a session, unknown ids are refused with ``-32001`` and ``DELETE`` ends
the session. ``GET`` opens a keep-alive event stream for a known session.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass, field
from http import HTTPStatus
from typing import Any, AsyncContextManager, AsyncIterator, Dict, List, Optional

import mcp.types as types
from fastapi import Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from mcp.server.lowlevel import Server
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from starlette.types import Message

from vault_mcp.core.errors import InternalError, UnauthorizedError, ValidationError
from vault_mcp.services.session_registry import SessionNotFoundError, SessionRegistry
from vault_mcp.services.vault_tools import VaultTools
from vault_mcp.utils.http import SESSION_HEADER, bearer_token, session_id as header_session_id

logger = logging.getLogger(__name__)

SESSION_NOT_FOUND = -32001
MIN_TOKEN_LENGTH = 10


@dataclass
class SessionState:
    """What the registry keeps about a session between requests."""

    initialized: bool = False
    protocol_version: Optional[str] = None
    client_info: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, blob: str) -> "SessionState":
        if not blob:
            return cls()
        try:
            data = json.loads(blob)
            return cls(
                initialized=bool(data.get("initialized")),
                protocol_version=data.get("protocol_version"),
                client_info=dict(data.get("client_info") or {}),
            )
        except (ValueError, AttributeError, TypeError):
            logger.warning("Discarding unreadable session state")
            return cls()

    def dump(self) -> str:
        return json.dumps(asdict(self))

    def record_initialize(self, request: Dict[str, Any], reply: bytes) -> None:
        """Remember the client and the protocol version the server agreed to."""
        params = request.get("params")
        client_info = params.get("clientInfo") if isinstance(params, dict) else None
        try:
            result = json.loads(reply).get("result") or {}
        except (ValueError, AttributeError):
            result = {}
        self.initialized = True
        self.protocol_version = result.get("protocolVersion")
        self.client_info = client_info if isinstance(client_info, dict) else {}


def session_not_found_response() -> JSONResponse:
    error = types.ErrorData(code=SESSION_NOT_FOUND, message="Session not found")
    return JSONResponse(
        status_code=HTTPStatus.NOT_FOUND,
        content={"jsonrpc": "2.0", "id": None, "error": error.model_dump(exclude_none=True)},
    )


def build_mcp_server(tools: VaultTools, *, name: str, version: str) -> Server:
    """SDK server whose tool handlers delegate to ``tools``."""
    server: Server = Server(name, version=version)

    @server.list_tools()
    async def list_tools() -> List[types.Tool]:
        return tools.list_tools()

    @server.call_tool()
    async def call_tool(tool_name: str, arguments: Dict[str, Any]) -> types.CallToolResult:
        return tools.call(tool_name, arguments)

    return server


class _BufferedSend:
    """Collect an ASGI response so session headers can be added before it is sent."""

    def __init__(self) -> None:
        self.status: Optional[int] = None
        self.headers: List[tuple] = []
        self.body = bytearray()

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.status = message["status"]
            self.headers = list(message.get("headers", []))
        elif message["type"] == "http.response.body":
            self.body.extend(message.get("body", b""))

    def to_response(self) -> Response:
        if self.status is None:
            raise InternalError("Protocol transport returned no response")
        response = Response(content=bytes(self.body), status_code=self.status)
        for raw_name, raw_value in self.headers:
            name = raw_name.decode("latin-1")
            if name.lower() != "content-length":
                response.headers.append(name, raw_value.decode("latin-1"))
        return response


def _decode(body: bytes) -> Optional[Dict[str, Any]]:
    try:
        message = json.loads(body)
    except ValueError:
        return None
    return message if isinstance(message, dict) else None


class ProtocolHandler:
    """Serve the protocol endpoint on top of the session registry and vault tools."""

    def __init__(
        self,
        registry: SessionRegistry,
        tools: VaultTools,
        *,
        server_name: str = "vault-mcp",
        server_version: str = "0.1.0",
        auth_required: bool = False,
        keepalive_seconds: float = 15.0,
    ) -> None:
        self._registry = registry
        self._server = build_mcp_server(tools, name=server_name, version=server_version)
        self._transport = StreamableHTTPSessionManager(
            app=self._server, json_response=True, stateless=True
        )
        self._auth_required = auth_required
        self._keepalive_seconds = keepalive_seconds

    def run(self) -> AsyncContextManager[None]:
        """Transport lifetime; must wrap the application's lifespan."""
        return self._transport.run()

    def _authorize(self, request: Request) -> None:
        if not self._auth_required:
            return
        token = bearer_token(request)
        if token is None or len(token) < MIN_TOKEN_LENGTH:
            raise UnauthorizedError("invalid_token", "Missing or invalid bearer token")

    async def _forward(self, request: Request, body: bytes) -> Response:
        replayed = False

        async def receive() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await request.receive()

        buffered = _BufferedSend()
        await self._transport.handle_request(request.scope, receive, buffered)
        return buffered.to_response()

    async def handle_post(self, request: Request) -> Response:
        self._authorize(request)
        body = await request.body()
        message = _decode(body)

        session_id = header_session_id(request)
        if session_id is None:
            if message is None:
                # unparseable; the transport reports the JSON-RPC error
                return await self._forward(request, body)
            session_id = self._registry.create().session_id

        async with self._registry.lock(session_id):
            try:
                handle = self._registry.resolve(session_id)
            except SessionNotFoundError:
                return session_not_found_response()
            response = await self._forward(request, body)
            if (
                message is not None
                and message.get("method") == "initialize"
                and response.status_code == HTTPStatus.OK
            ):
                state = SessionState.load(handle.handler_state)
                state.record_initialize(message, response.body)
                self._registry.save(session_id, state.dump())
                logger.info(
                    "Initialized session %s for client %s (protocol %s)",
                    session_id[:8],
                    state.client_info.get("name", "unknown"),
                    state.protocol_version,
                )

        response.headers[SESSION_HEADER] = session_id
        return response

    def _require_session(self, request: Request) -> str:
        session_id = header_session_id(request)
        if session_id is None:
            raise ValidationError("invalid_request", f"{SESSION_HEADER} header required")
        return session_id

    async def handle_get(self, request: Request) -> Response:
        self._authorize(request)
        session_id = self._require_session(request)
        try:
            self._registry.resolve(session_id)
        except SessionNotFoundError:
            return session_not_found_response()
        logger.info("Event stream opened for session %s", session_id[:8])
        return StreamingResponse(
            self._keepalive(request, session_id),
            media_type="text/event-stream",
            headers={SESSION_HEADER: session_id, "Cache-Control": "no-cache"},
        )

    async def _keepalive(self, request: Request, session_id: str) -> AsyncIterator[str]:
        yield ": stream open\n\n"
        while not await request.is_disconnected():
            await asyncio.sleep(self._keepalive_seconds)
            yield ": keep-alive\n\n"
        logger.info("Event stream closed for session %s", session_id[:8])

    async def handle_delete(self, request: Request) -> Response:
        self._authorize(request)
        session_id = self._require_session(request)
        async with self._registry.lock(session_id):
            closed = self._registry.close(session_id)
        if not closed:
            return session_not_found_response()
        return Response(status_code=HTTPStatus.NO_CONTENT)


__all__ = [
    "ProtocolHandler",
    "SESSION_NOT_FOUND",
    "SessionState",
    "build_mcp_server",
    "session_not_found_response",
]

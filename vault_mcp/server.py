"""
Application factory, lifespan and command-line runner for the vault MCP server.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from contextlib import asynccontextmanager, suppress
from datetime import timedelta
from typing import AsyncIterator, Optional
from uuid import uuid4

import httpx
import uvicorn
from fastapi import FastAPI, Request
from pydantic import ValidationError as SettingsValidationError

from vault_mcp.api.routes import build_router
from vault_mcp.core.config import AppSettings, get_settings
from vault_mcp.core.errors import AppError, InternalError, UpstreamError, app_error_response
from vault_mcp.core.logging import configure_logging
from vault_mcp.dependencies import ServerContext, build_context
from vault_mcp.services.sweeper import run_sweeper
from vault_mcp.utils.http import session_id as header_session_id

logger = logging.getLogger(__name__)


def _lifespan(context: ServerContext):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        storage = context.settings.storage
        sweeper = asyncio.create_task(
            run_sweeper(
                context.store,
                timedelta(hours=storage.retention_hours),
                storage.sweep_interval_seconds,
            )
        )
        for route in context.oauth_router.describe_routes():
            logger.info("OAuth route: %s", route)
        logger.info(
            "Serving vault %s on %s (auth %s)",
            context.vault.root,
            context.settings.server.mcp_path,
            "enabled" if context.settings.auth.enabled else "disabled",
        )
        try:
            async with context.protocol.run():
                yield
        finally:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper
            context.sessions.close_all()
            context.store.close()
            logger.info("Shutdown complete")

    return lifespan


def create_app(
    settings: Optional[AppSettings] = None,
    *,
    provider_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Factory for the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    context = build_context(settings, provider_transport=provider_transport)

    app = FastAPI(
        title="Vault MCP Server",
        version="0.1.0",
        description="MCP server exposing a note vault, with an OAuth intermediary.",
        lifespan=_lifespan(context),
    )
    app.state.context = context

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        if isinstance(exc, UpstreamError):
            logger.error(
                "Upstream failure on %s: status=%s body=%s",
                request.url.path,
                exc.upstream_status,
                exc.upstream_body,
            )
        return app_error_response(exc)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(
            "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
        )
        return app_error_response(InternalError())

    @app.middleware("http")
    async def oauth_and_request_logging(request: Request, call_next):
        request_id = uuid4().hex[:8]
        started = time.perf_counter()
        response = await context.oauth_router.dispatch(request)
        if response is None:
            response = await call_next(request)
        session = response.headers.get("mcp-session-id") or header_session_id(request)
        logger.info(
            "[%s] %s %s session=%s -> %s (%.1fms)",
            request_id,
            request.method,
            request.url.path,
            session[:8] if session else "-",
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        response.headers["X-Request-ID"] = request_id
        return response

    app.include_router(build_router(settings.server.mcp_path))
    return app


def main() -> None:
    """Run the server under uvicorn, refusing to start on invalid settings."""
    try:
        settings = get_settings()
    except SettingsValidationError as exc:
        configure_logging("INFO")
        logger.error("Invalid configuration: %s", exc)
        sys.exit(1)
    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.log_level.lower(),
    )


__all__ = ["create_app", "main"]


if __name__ == "__main__":
    main()

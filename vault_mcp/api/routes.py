"""
FastAPI routes for health reporting and the protocol endpoint.
"""

from __future__ import annotations

from dataclasses import asdict
from http import HTTPStatus
from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response

from vault_mcp.clients.vault import Vault
from vault_mcp.core.config import AppSettings
from vault_mcp.dependencies import (
    SettingsDependency,
    get_protocol_handler,
    get_session_registry,
    get_vault,
)
from vault_mcp.services.protocol import ProtocolHandler
from vault_mcp.services.session_registry import SessionRegistry

ProtocolDependency = Annotated[ProtocolHandler, Depends(get_protocol_handler)]


async def healthcheck(
    vault: Annotated[Vault, Depends(get_vault)],
    sessions: Annotated[SessionRegistry, Depends(get_session_registry)],
    settings: AppSettings = SettingsDependency,
) -> dict:
    """Liveness plus vault accessibility and the live session count."""
    access = vault.accessibility()
    usable = access.is_directory and access.readable
    return {
        "status": "ok" if usable else "degraded",
        "vault": {"path": str(vault.root), **asdict(access)},
        "sessions": sessions.count(),
        "auth_enabled": settings.auth.enabled,
    }


async def protocol_post(request: Request, protocol: ProtocolDependency) -> Response:
    return await protocol.handle_post(request)


async def protocol_get(request: Request, protocol: ProtocolDependency) -> Response:
    return await protocol.handle_get(request)


async def protocol_delete(request: Request, protocol: ProtocolDependency) -> Response:
    return await protocol.handle_delete(request)


def build_router(mcp_path: str) -> APIRouter:
    """Router with the health check and the protocol endpoint at ``mcp_path``."""
    router = APIRouter()
    router.add_api_route("/health", healthcheck, methods=["GET"], status_code=HTTPStatus.OK)
    router.add_api_route(mcp_path, protocol_post, methods=["POST"])
    router.add_api_route(mcp_path, protocol_get, methods=["GET"])
    router.add_api_route(mcp_path, protocol_delete, methods=["DELETE"])
    return router


__all__ = ["build_router", "healthcheck"]

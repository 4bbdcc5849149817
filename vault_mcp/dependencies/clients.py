"""
Factory functions that assemble shared clients and services, and the FastAPI
dependencies that hand them to route handlers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request

from vault_mcp.api.oauth_routes import OAuthRouter
from vault_mcp.clients.oauth_provider import ProviderOAuthClient
from vault_mcp.clients.record_store import RecordStore
from vault_mcp.clients.vault import Vault
from vault_mcp.core.config import AppSettings
from vault_mcp.services.oauth_flow import OAuthFlow
from vault_mcp.services.protocol import ProtocolHandler
from vault_mcp.services.session_registry import SessionRegistry
from vault_mcp.services.vault_tools import VaultTools


@dataclass
class ServerContext:
    """Everything a running server shares across requests."""

    settings: AppSettings
    store: RecordStore
    sessions: SessionRegistry
    provider: ProviderOAuthClient
    oauth_flow: OAuthFlow
    oauth_router: OAuthRouter
    vault: Vault
    tools: VaultTools
    protocol: ProtocolHandler


def build_context(
    settings: AppSettings,
    *,
    provider_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ServerContext:
    """Open the record store and wire services from ``settings``."""
    store = RecordStore(settings.storage.db_path)
    sessions = SessionRegistry(store, max_sessions=settings.server.max_sessions)
    provider = ProviderOAuthClient(
        settings.auth,
        callback_url=settings.callback_url(),
        transport=provider_transport,
    )
    oauth_flow = OAuthFlow(store, provider, settings.auth)
    oauth_router = OAuthRouter(
        oauth_flow,
        provider,
        settings.auth,
        base_url=settings.server.base_url,
        sessions=sessions,
    )
    vault = Vault(settings.storage.vault_path)
    tools = VaultTools(vault)
    protocol = ProtocolHandler(
        sessions,
        tools,
        auth_required=settings.auth.enabled,
    )
    return ServerContext(
        settings=settings,
        store=store,
        sessions=sessions,
        provider=provider,
        oauth_flow=oauth_flow,
        oauth_router=oauth_router,
        vault=vault,
        tools=tools,
        protocol=protocol,
    )


def get_context(request: Request) -> ServerContext:
    """FastAPI dependency returning the context attached to the application."""
    return request.app.state.context


def get_session_registry(request: Request) -> SessionRegistry:
    return get_context(request).sessions


def get_vault(request: Request) -> Vault:
    return get_context(request).vault


def get_protocol_handler(request: Request) -> ProtocolHandler:
    return get_context(request).protocol


__all__ = [
    "ServerContext",
    "build_context",
    "get_context",
    "get_protocol_handler",
    "get_session_registry",
    "get_vault",
]

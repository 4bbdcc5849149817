"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    ServerContext,
    build_context,
    get_context,
    get_protocol_handler,
    get_session_registry,
    get_vault,
)
from .config import SettingsDependency, get_app_settings

__all__ = [
    "ServerContext",
    "SettingsDependency",
    "build_context",
    "get_app_settings",
    "get_context",
    "get_protocol_handler",
    "get_session_registry",
    "get_vault",
]

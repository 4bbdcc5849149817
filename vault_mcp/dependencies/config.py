"""
FastAPI dependency utilities for injecting configuration.
"""

from fastapi import Depends, Request

from vault_mcp.core.config import AppSettings


def get_app_settings(request: Request) -> AppSettings:
    """FastAPI dependency returning the settings the application was built with."""
    return request.app.state.context.settings


SettingsDependency = Depends(get_app_settings)

__all__ = ["SettingsDependency", "get_app_settings"]

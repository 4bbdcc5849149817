"""
ASGI entrypoint for the vault MCP server (``uvicorn vault_mcp.main:app``).
"""

from __future__ import annotations

from vault_mcp.server import create_app

app = create_app()

__all__ = ["app"]

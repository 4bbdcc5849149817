"""HTTP request helpers shared by the OAuth and protocol endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import Request

SESSION_HEADER = "Mcp-Session-Id"


def bearer_token(request: Request) -> Optional[str]:
    """Return the bearer credential from the Authorization header, if any."""
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def session_id(request: Request) -> Optional[str]:
    value = request.headers.get(SESSION_HEADER)
    return value.strip() if value and value.strip() else None


__all__ = ["SESSION_HEADER", "bearer_token", "session_id"]

"""
Error taxonomy shared by the OAuth flow, the session registry and the vault.

Every client-facing failure is rendered with the same JSON envelope::

    {"error": "<reason>", "error_description": "<optional message>"}
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, Optional

from fastapi.responses import JSONResponse


class AppError(Exception):
    """Base class for errors that map onto an HTTP status and reason code."""

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, reason: str, message: Optional[str] = None) -> None:
        super().__init__(message or reason)
        self.reason = reason
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.reason}
        if self.message:
            payload["error_description"] = self.message
        return payload


class ValidationError(AppError):
    """Malformed or missing request fields."""

    status_code = HTTPStatus.BAD_REQUEST


class UnauthorizedError(AppError):
    """Missing or unusable credentials."""

    status_code = HTTPStatus.UNAUTHORIZED


class NotFoundError(AppError):
    """Unknown session, OAuth state or vault path."""

    status_code = HTTPStatus.NOT_FOUND


class ConflictError(AppError):
    """The target already exists and replacing it was not requested."""

    status_code = HTTPStatus.CONFLICT


class UpstreamError(AppError):
    """The identity provider failed or timed out.

    ``upstream_status`` and ``upstream_body`` are kept for logging only and
    never reach the client.
    """

    status_code = HTTPStatus.BAD_GATEWAY

    def __init__(
        self,
        message: str,
        *,
        upstream_status: Optional[int] = None,
        upstream_body: Optional[str] = None,
    ) -> None:
        super().__init__("upstream_error", message)
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body


class SessionLimitError(AppError):
    """No more protocol sessions may be opened."""

    status_code = HTTPStatus.SERVICE_UNAVAILABLE


class InternalError(AppError):
    """Unexpected failure; the client only sees a generic message."""

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__("Internal server error", None)
        self.detail = message


def error_response(
    status_code: int,
    reason: str,
    description: Optional[str] = None,
    *,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    """Build a JSON error envelope response."""
    payload: dict[str, Any] = {"error": reason}
    if description:
        payload["error_description"] = description
    return JSONResponse(status_code=int(status_code), content=payload, headers=headers)


def app_error_response(exc: AppError) -> JSONResponse:
    headers = None
    if isinstance(exc, UnauthorizedError):
        headers = {"WWW-Authenticate": 'Bearer realm="vault-mcp"'}
    return JSONResponse(
        status_code=int(exc.status_code), content=exc.to_payload(), headers=headers
    )


__all__ = [
    "AppError",
    "ConflictError",
    "InternalError",
    "NotFoundError",
    "SessionLimitError",
    "UnauthorizedError",
    "UpstreamError",
    "ValidationError",
    "app_error_response",
    "error_response",
]

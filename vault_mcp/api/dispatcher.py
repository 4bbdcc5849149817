"""
Minimal path/method dispatcher used in front of FastAPI routing.

Routes are matched in registration order; the first exact path or regex
match wins. ``dispatch`` returns ``None`` when no route claims the request so
the caller can hand it on to the next layer.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Awaitable, Callable, List, Optional, Pattern, Sequence, Union

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from vault_mcp.core.errors import AppError, InternalError, UpstreamError, app_error_response

logger = logging.getLogger(__name__)

Handler = Callable[[Request], Awaitable[Response]]


@dataclass(slots=True)
class Route:
    handler: Handler
    path: Optional[str] = None
    pattern: Optional[Pattern[str]] = None
    methods: List[str] = field(default_factory=list)

    def matches(self, path: str) -> bool:
        if self.path is not None:
            return path == self.path
        return bool(self.pattern and self.pattern.match(path))

    def describe(self) -> str:
        target = self.path if self.path is not None else f"~{self.pattern.pattern}"
        methods = ", ".join(self.methods) if self.methods else "*"
        return f"{methods} {target}"


class RouteDispatcher:
    """Ordered route table with a uniform error boundary."""

    def __init__(self) -> None:
        self._routes: List[Route] = []

    def add_route(
        self,
        handler: Handler,
        *,
        path: Optional[str] = None,
        pattern: Optional[Union[str, Pattern[str]]] = None,
        methods: Optional[Sequence[str]] = None,
    ) -> None:
        if (path is None) == (pattern is None):
            raise ValueError("Exactly one of path or pattern must be given")
        compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
        self._routes.append(
            Route(
                handler=handler,
                path=path,
                pattern=compiled,
                methods=[method.upper() for method in methods or ()],
            )
        )

    def describe_routes(self) -> List[str]:
        return [route.describe() for route in self._routes]

    def _match(self, path: str) -> Optional[Route]:
        for route in self._routes:
            if route.matches(path):
                return route
        return None

    async def dispatch(self, request: Request) -> Optional[Response]:
        route = self._match(request.url.path)
        if route is None:
            return None

        if route.methods and request.method.upper() not in route.methods:
            allowed = ", ".join(route.methods)
            return JSONResponse(
                status_code=HTTPStatus.METHOD_NOT_ALLOWED,
                content={"error": "Method not allowed", "allowed_methods": allowed},
                headers={"Allow": allowed},
            )

        try:
            return await route.handler(request)
        except UpstreamError as exc:
            logger.error(
                "Upstream failure on %s %s: %s (status=%s body=%s)",
                request.method,
                request.url.path,
                exc.message,
                exc.upstream_status,
                exc.upstream_body,
            )
            return app_error_response(exc)
        except AppError as exc:
            return app_error_response(exc)
        except Exception:
            logger.exception("Unhandled error on %s %s", request.method, request.url.path)
            return app_error_response(InternalError())


__all__ = ["Handler", "Route", "RouteDispatcher"]

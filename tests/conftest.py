"""Pytest configuration shared across the suite."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from vault_mcp.core.config import AppSettings, AuthSettings, ServerSettings, StorageSettings

CLIENT_ID = "client-123"
CLIENT_SECRET = "secret-456"


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., AppSettings]:
    """Build settings rooted in ``tmp_path``; keyword arguments tweak the auth group."""
    vault_dir = tmp_path / "vault"
    vault_dir.mkdir(exist_ok=True)

    def _make(*, auth_enabled: bool = False, max_sessions: int = 1000, **auth: Any) -> AppSettings:
        auth_values: dict[str, Any] = {"enabled": auth_enabled}
        if auth_enabled:
            auth_values.update(
                provider="google", client_id=CLIENT_ID, client_secret=CLIENT_SECRET
            )
        auth_values.update(auth)
        return AppSettings(
            environment="test",
            log_level="WARNING",
            server=ServerSettings(
                base_url="http://testserver", max_sessions=max_sessions
            ),
            storage=StorageSettings(
                db_path=str(tmp_path / "records.db"), vault_path=str(vault_dir)
            ),
            auth=AuthSettings(**auth_values),
        )

    return _make


class FakeProvider:
    """Stand-in identity provider served through ``httpx.MockTransport``."""

    TOKEN_URL = "https://oauth2.googleapis.com/token"
    USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

    def __init__(self) -> None:
        self.token_status = 200
        self.token_body: dict[str, Any] = {
            "access_token": "provider-access-token",
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": "provider-refresh-token",
        }
        self.userinfo_status = 200
        self.userinfo_body: dict[str, Any] = {"email": "ada@example.com", "name": "Ada"}
        self.requests: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url.copy_with(query=None))
        if url == self.TOKEN_URL:
            return httpx.Response(self.token_status, json=self.token_body)
        if url == self.USERINFO_URL:
            return httpx.Response(self.userinfo_status, json=self.userinfo_body)
        return httpx.Response(404, json={"error": "unexpected request"})

    def token_requests(self) -> list[httpx.Request]:
        return [req for req in self.requests if str(req.url) == self.TOKEN_URL]


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()

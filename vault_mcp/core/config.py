"""
Application configuration models and helpers.

Settings are read once at startup from the environment (and an optional
``.env`` file). Incomplete authentication settings fail validation here so a
misconfigured server never starts accepting traffic.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ProviderName = Literal["google", "github", "microsoft", "generic-oauth"]

_ENV_CONFIG = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
    populate_by_name=True,
)

PROVIDER_ENDPOINTS: dict[str, dict[str, str]] = {
    "google": {
        "issuer": "https://accounts.google.com",
        "authorization_endpoint": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_endpoint": "https://oauth2.googleapis.com/token",
        "userinfo_endpoint": "https://www.googleapis.com/oauth2/v2/userinfo",
        "scope": "openid email profile",
    },
    "github": {
        "issuer": "https://github.com",
        "authorization_endpoint": "https://github.com/login/oauth/authorize",
        "token_endpoint": "https://github.com/login/oauth/access_token",
        "userinfo_endpoint": "https://api.github.com/user",
        "scope": "user:email read:user",
    },
    "microsoft": {
        "issuer": "https://login.microsoftonline.com/common/v2.0",
        "authorization_endpoint": (
            "https://login.microsoftonline.com/common/oauth2/v2.0/authorize"
        ),
        "token_endpoint": "https://login.microsoftonline.com/common/oauth2/v2.0/token",
        "userinfo_endpoint": "https://graph.microsoft.com/oidc/userinfo",
        "scope": "openid email profile",
    },
    "generic-oauth": {
        "issuer": "https://generic-oauth-provider.com",
        "authorization_endpoint": "https://generic-oauth-provider.com/oauth/authorize",
        "token_endpoint": "https://generic-oauth-provider.com/oauth/token",
        "userinfo_endpoint": "https://generic-oauth-provider.com/userinfo",
        "scope": "openid email profile",
    },
}


class ServerSettings(BaseSettings):
    """Listener and protocol surface configuration."""

    model_config = _ENV_CONFIG

    host: str = Field("0.0.0.0", validation_alias="HOST")
    port: int = Field(8765, validation_alias="PORT")
    mcp_path: str = Field("/mcp", validation_alias="MCP_PATH")
    base_url: Optional[str] = Field(
        None,
        validation_alias="SERVER_BASE_URL",
        description="Public base URL advertised in discovery documents.",
    )
    max_sessions: int = Field(
        1000,
        validation_alias="MCP_MAX_SESSIONS",
        description="Cap on live protocol sessions; 0 disables the cap.",
    )

    @model_validator(mode="after")
    def _normalise_path(self) -> "ServerSettings":
        if not self.mcp_path.startswith("/"):
            self.mcp_path = f"/{self.mcp_path}"
        return self


class StorageSettings(BaseSettings):
    """Durable state and vault locations."""

    model_config = _ENV_CONFIG

    db_path: str = Field("data/sessions.db", validation_alias="DB_PATH")
    vault_path: str = Field("/vault", validation_alias="VAULT_PATH")
    retention_hours: float = Field(24, validation_alias="SESSION_RETENTION_HOURS")
    sweep_interval_seconds: float = Field(3600, validation_alias="SWEEP_INTERVAL_SECONDS")


class AuthSettings(BaseSettings):
    """OAuth 2.1 intermediary configuration."""

    model_config = _ENV_CONFIG

    enabled: bool = Field(False, validation_alias="AUTH_ENABLED")
    provider: Optional[ProviderName] = Field(None, validation_alias="AUTH_PROVIDER")
    client_id: Optional[str] = Field(None, validation_alias="OAUTH_CLIENT_ID")
    client_secret: Optional[str] = Field(None, validation_alias="OAUTH_CLIENT_SECRET")
    issuer: Optional[str] = Field(None, validation_alias="OAUTH_ISSUER")
    scope: Optional[str] = Field(None, validation_alias="OAUTH_SCOPE")
    redirect_uri: Optional[str] = Field(None, validation_alias="OAUTH_REDIRECT_URI")
    authorization_endpoint: Optional[str] = Field(
        None, validation_alias="OAUTH_AUTHORIZATION_ENDPOINT"
    )
    token_endpoint: Optional[str] = Field(None, validation_alias="OAUTH_TOKEN_ENDPOINT")
    userinfo_endpoint: Optional[str] = Field(
        None, validation_alias="OAUTH_USERINFO_ENDPOINT"
    )
    http_timeout_seconds: float = Field(10.0, validation_alias="OAUTH_HTTP_TIMEOUT")

    @model_validator(mode="after")
    def _require_complete_config(self) -> "AuthSettings":
        """Reject enabled authentication without a provider or credentials."""
        if not self.enabled:
            return self
        if not self.provider:
            raise ValueError("AUTH_PROVIDER must be specified when AUTH_ENABLED is true")
        if not self.client_id or not self.client_secret:
            raise ValueError(
                "OAuth authentication is enabled but OAUTH_CLIENT_ID and "
                "OAUTH_CLIENT_SECRET are not provided"
            )
        return self

    def endpoint(self, name: str) -> Optional[str]:
        """Return an explicitly configured endpoint or the provider default."""
        override = getattr(self, name, None)
        if override:
            return override
        defaults = PROVIDER_ENDPOINTS.get(self.provider or "", {})
        return defaults.get(name)

    @property
    def effective_scope(self) -> str:
        return self.scope or self.endpoint("scope") or "openid email profile"


class AppSettings(BaseSettings):
    """Root settings object for the server."""

    model_config = _ENV_CONFIG

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    server: ServerSettings = Field(default_factory=ServerSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)

    def callback_url(self) -> str:
        """Redirect URI registered with the upstream provider."""
        if self.auth.redirect_uri:
            return self.auth.redirect_uri
        if self.server.base_url:
            return f"{self.server.base_url.rstrip('/')}/auth/callback"
        host = "localhost" if self.server.host == "0.0.0.0" else self.server.host
        return f"http://{host}:{self.server.port}/auth/callback"


def load_settings(env_file: Optional[str] = ".env") -> AppSettings:
    """Read every settings group from the environment and ``env_file``."""
    return AppSettings(
        _env_file=env_file,
        server=ServerSettings(_env_file=env_file),
        storage=StorageSettings(_env_file=env_file),
        auth=AuthSettings(_env_file=env_file),
    )


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return load_settings()


__all__ = [
    "AppSettings",
    "AuthSettings",
    "PROVIDER_ENDPOINTS",
    "ServerSettings",
    "StorageSettings",
    "get_settings",
    "load_settings",
]

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import pytest
from pydantic import ValidationError

from vault_mcp.core.config import AppSettings, AuthSettings, ServerSettings, load_settings


def test_enabled_auth_requires_provider() -> None:
    with pytest.raises(ValidationError) as excinfo:
        AuthSettings(enabled=True, client_id="id", client_secret="secret")

    assert "AUTH_PROVIDER" in str(excinfo.value)


def test_enabled_auth_requires_credentials() -> None:
    with pytest.raises(ValidationError) as excinfo:
        AuthSettings(enabled=True, provider="github", client_id="id")

    assert "OAUTH_CLIENT_SECRET" in str(excinfo.value)


def test_provider_defaults_and_overrides() -> None:
    auth = AuthSettings(
        enabled=True,
        provider="github",
        client_id="id",
        client_secret="secret",
        token_endpoint="https://ghe.example/login/oauth/access_token",
    )

    assert auth.endpoint("authorization_endpoint") == "https://github.com/login/oauth/authorize"
    assert auth.endpoint("token_endpoint") == "https://ghe.example/login/oauth/access_token"
    assert auth.effective_scope == "user:email read:user"


def test_mcp_path_is_normalised() -> None:
    assert ServerSettings(mcp_path="mcp").mcp_path == "/mcp"


def test_callback_url_prefers_explicit_redirect() -> None:
    settings = AppSettings(
        server=ServerSettings(base_url="https://vault.example/"),
        auth=AuthSettings(),
    )
    assert settings.callback_url() == "https://vault.example/auth/callback"

    settings.auth = AuthSettings(redirect_uri="https://other.example/cb")
    assert settings.callback_url() == "https://other.example/cb"


def test_load_settings_reads_env_file(tmp_path, monkeypatch) -> None:
    for key in ("VAULT_PATH", "PORT", "APP_ENV"):
        monkeypatch.delenv(key, raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("VAULT_PATH=/srv/notes\nPORT=9001\nAPP_ENV=staging\n", encoding="utf-8")

    settings = load_settings(str(env_file))

    assert settings.storage.vault_path == "/srv/notes"
    assert settings.server.port == 9001
    assert settings.environment == "staging"

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from vault_mcp.core.config import AuthSettings
from vault_mcp.server import create_app

AUTH_PARAMS = {
    "response_type": "code",
    "client_id": "client-123",
    "redirect_uri": "https://client.example/cb?keep=1",
    "state": "S",
}


@pytest.fixture()
def oauth_app(make_settings, fake_provider):
    app = create_app(make_settings(auth_enabled=True), provider_transport=fake_provider.transport)
    yield app
    app.state.context.store.close()


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    )


@pytest.mark.anyio
async def test_authorize_redirects_to_provider(oauth_app):
    async with _client(oauth_app) as client:
        response = await client.get("/auth", params=AUTH_PARAMS)

    assert response.status_code == 302
    location = response.headers["location"]
    assert location.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
    query = parse_qs(urlsplit(location).query)
    assert query["state"] == ["S"]
    assert query["client_id"] == ["client-123"]
    assert query["redirect_uri"] == ["http://testserver/auth/callback"]


@pytest.mark.anyio
async def test_authorize_rejects_token_response_type(oauth_app):
    async with _client(oauth_app) as client:
        response = await client.get("/auth", params={**AUTH_PARAMS, "response_type": "token"})

    assert response.status_code == 400
    assert response.json()["error"] == "unsupported_response_type"


@pytest.mark.anyio
async def test_authorize_rejects_unknown_client(oauth_app):
    async with _client(oauth_app) as client:
        response = await client.get("/auth", params={**AUTH_PARAMS, "client_id": "nope"})

    assert response.status_code == 401
    assert response.json()["error"] == "invalid_client"
    assert response.headers["www-authenticate"].startswith("Bearer")


@pytest.mark.anyio
async def test_callback_redirects_with_code_and_state(oauth_app):
    async with _client(oauth_app) as client:
        await client.get("/auth", params=AUTH_PARAMS)
        response = await client.get("/auth/callback", params={"code": "C1", "state": "S"})

    assert response.status_code == 302
    assert response.headers["location"] == "https://client.example/cb?keep=1&code=C1&state=S"


@pytest.mark.anyio
async def test_callback_without_request_renders_confirmation_page(oauth_app):
    async with _client(oauth_app) as client:
        response = await client.get(
            "/auth/callback", params={"code": "C1", "state": "<direct>"}
        )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert "&lt;direct&gt;" in response.text


@pytest.mark.anyio
async def test_token_is_delivered_at_most_once(oauth_app):
    async with _client(oauth_app) as client:
        await client.get("/auth", params=AUTH_PARAMS)
        await client.get("/auth/callback", params={"code": "C1", "state": "S"})
        first = await client.get("/auth/token", params={"state": "S"})
        second = await client.get("/auth/token", params={"state": "S"})

    assert first.status_code == 200
    payload = first.json()
    assert payload["access_token"] == "provider-access-token"
    assert payload["user"]["email"] == "ada@example.com"
    assert payload["expires_at"] is not None
    assert second.status_code == 404


@pytest.mark.anyio
async def test_provider_error_fails_the_flow(oauth_app):
    async with _client(oauth_app) as client:
        await client.get("/auth", params=AUTH_PARAMS)
        callback = await client.get(
            "/auth/callback", params={"error": "access_denied", "state": "S"}
        )
        token = await client.get("/auth/token", params={"state": "S"})

    assert callback.status_code == 400
    assert callback.json()["error"] == "access_denied"
    assert token.status_code == 404
    assert oauth_app.state.context.store.count("oauth") == 0


@pytest.mark.anyio
async def test_failed_exchange_returns_502_without_upstream_body(oauth_app, fake_provider):
    fake_provider.token_status = 500
    fake_provider.token_body = {"detail": "provider exploded"}
    async with _client(oauth_app) as client:
        await client.get("/auth", params=AUTH_PARAMS)
        response = await client.get("/auth/callback", params={"code": "C1", "state": "S"})

    assert response.status_code == 502
    assert response.json()["error"] == "upstream_error"
    assert "exploded" not in response.text


@pytest.mark.anyio
async def test_token_requires_state(oauth_app):
    async with _client(oauth_app) as client:
        response = await client.get("/auth/token")

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


@pytest.mark.anyio
async def test_metadata_advertises_endpoints(oauth_app):
    async with _client(oauth_app) as client:
        response = await client.get("/.well-known/oauth-authorization-server")

    assert response.status_code == 200
    document = response.json()
    assert document["issuer"] == "http://testserver"
    assert document["authorization_endpoint"] == "http://testserver/auth"
    assert document["token_endpoint"] == "http://testserver/auth/token"
    assert document["registration_endpoint"] == "http://testserver/client-registration"
    assert document["code_challenge_methods_supported"] == ["S256", "plain"]
    assert document["response_types_supported"] == ["code"]


@pytest.mark.anyio
async def test_jwks_is_empty(oauth_app):
    async with _client(oauth_app) as client:
        response = await client.get("/.well-known/jwks.json")

    assert response.json() == {"keys": []}


@pytest.mark.anyio
async def test_userinfo_proxies_provider(oauth_app, fake_provider):
    async with _client(oauth_app) as client:
        missing = await client.get("/userinfo")
        ok = await client.get("/userinfo", headers={"Authorization": "Bearer tok-abcdef"})
        fake_provider.userinfo_status = 401
        rejected = await client.get("/userinfo", headers={"Authorization": "Bearer bad-token"})

    assert missing.status_code == 401
    assert missing.json()["error_description"] == "Authorization header required"
    assert ok.status_code == 200
    assert ok.json()["email"] == "ada@example.com"
    assert fake_provider.requests[0].headers["authorization"] == "Bearer tok-abcdef"
    assert rejected.status_code == 401
    assert rejected.json()["error"] == "invalid_token"


@pytest.mark.anyio
async def test_client_registration_returns_static_credentials(oauth_app):
    async with _client(oauth_app) as client:
        response = await client.post(
            "/client-registration",
            json={"redirect_uris": ["https://client.example/cb"], "client_name": "Notes"},
        )

    assert response.status_code == 201
    body = response.json()
    assert body["client_id"] == "client-123"
    assert body["client_secret"] == "secret-456"
    assert body["redirect_uris"] == ["https://client.example/cb"]
    assert body["client_name"] == "Notes"
    assert body["client_secret_expires_at"] == 0


@pytest.mark.anyio
async def test_client_registration_rejects_malformed_body(oauth_app):
    async with _client(oauth_app) as client:
        response = await client.post(
            "/client-registration",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_client_metadata"


@pytest.mark.anyio
async def test_client_registration_without_credentials(make_settings, fake_provider):
    settings = make_settings()
    settings.auth = AuthSettings.model_construct(
        enabled=True,
        provider="google",
        client_id=None,
        client_secret=None,
        scope=None,
        issuer=None,
        redirect_uri=None,
        authorization_endpoint=None,
        token_endpoint=None,
        userinfo_endpoint=None,
        http_timeout_seconds=10.0,
    )
    app = create_app(settings, provider_transport=fake_provider.transport)
    try:
        async with _client(app) as client:
            response = await client.post("/client-registration", json={})
    finally:
        app.state.context.store.close()

    assert response.status_code == 500
    assert response.json() == {"error": "OAuth client credentials not configured"}


@pytest.mark.anyio
async def test_wrong_method_on_oauth_route(oauth_app):
    async with _client(oauth_app) as client:
        response = await client.post("/auth/token")

    assert response.status_code == 405
    assert response.headers["allow"] == "GET"


@pytest.mark.anyio
async def test_oauth_routes_fall_through_when_auth_disabled(make_settings):
    app = create_app(make_settings())
    try:
        async with _client(app) as client:
            response = await client.get("/auth", params=AUTH_PARAMS)
    finally:
        app.state.context.store.close()

    assert response.status_code == 404


@pytest.mark.anyio
async def test_authorize_links_pending_auth_to_session(oauth_app):
    registry = oauth_app.state.context.sessions
    session_id = registry.create().session_id
    async with _client(oauth_app) as client:
        await client.get("/auth", params=AUTH_PARAMS, headers={"Mcp-Session-Id": session_id})

    assert registry.get(session_id).pending_auth == "S"

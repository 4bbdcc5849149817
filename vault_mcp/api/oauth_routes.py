"""
OAuth intermediary endpoints served ahead of the protocol routes.

The router only answers while authentication is enabled; otherwise every
request falls through to the regular application.
"""

from __future__ import annotations

import html
import logging
import time
from http import HTTPStatus
from typing import Optional

from fastapi import Request, Response
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import ValidationError as PydanticValidationError

from vault_mcp.api.dispatcher import RouteDispatcher
from vault_mcp.clients.oauth_provider import ProviderOAuthClient
from vault_mcp.core.config import AuthSettings
from vault_mcp.core.errors import UnauthorizedError, UpstreamError, ValidationError, error_response
from vault_mcp.schemas.auth import (
    AuthorizationServerMetadata,
    ClientRegistrationRequest,
    ClientRegistrationResponse,
)
from vault_mcp.services.oauth_flow import OAuthFlow
from vault_mcp.services.session_registry import SessionNotFoundError, SessionRegistry
from vault_mcp.utils.http import bearer_token, session_id as header_session_id

logger = logging.getLogger(__name__)

_COMPLETED_PAGE = """<!DOCTYPE html>
<html>
  <head><title>Authorization complete</title></head>
  <body>
    <h1>Authorization complete</h1>
    <p>You can close this window and return to your client.</p>
    <p>State: <code>{state}</code></p>
  </body>
</html>
"""


class OAuthRouter(RouteDispatcher):
    """Route table for authorization, discovery, user-info and registration."""

    def __init__(
        self,
        flow: OAuthFlow,
        provider: ProviderOAuthClient,
        auth_settings: AuthSettings,
        *,
        base_url: Optional[str] = None,
        sessions: Optional[SessionRegistry] = None,
    ) -> None:
        super().__init__()
        self._flow = flow
        self._provider = provider
        self._auth = auth_settings
        self._base_url = base_url.rstrip("/") if base_url else None
        self._sessions = sessions

        self.add_route(self.authorize, path="/auth", methods=["GET"])
        self.add_route(self.callback, path="/auth/callback", methods=["GET"])
        self.add_route(self.token, path="/auth/token", methods=["GET"])
        self.add_route(
            self.metadata, path="/.well-known/oauth-authorization-server", methods=["GET"]
        )
        self.add_route(self.jwks, path="/.well-known/jwks.json", methods=["GET"])
        self.add_route(self.userinfo, path="/userinfo", methods=["GET"])
        self.add_route(self.register_client, path="/client-registration", methods=["POST"])

    async def dispatch(self, request: Request) -> Optional[Response]:
        if not self._auth.enabled:
            return None
        return await super().dispatch(request)

    def _issuer(self, request: Request) -> str:
        return self._base_url or str(request.base_url).rstrip("/")

    async def authorize(self, request: Request) -> Response:
        redirect = await self._flow.begin_authorization(request.query_params)
        session_id = header_session_id(request)
        if session_id and self._sessions is not None:
            try:
                self._sessions.attach_pending_auth(session_id, redirect.state)
            except SessionNotFoundError:
                logger.info("Authorization started from unknown session %s", session_id[:8])
        return RedirectResponse(redirect.url, status_code=HTTPStatus.FOUND)

    async def callback(self, request: Request) -> Response:
        outcome = await self._flow.complete_authorization(request.query_params)
        if outcome.failed:
            return error_response(
                HTTPStatus.BAD_REQUEST, outcome.error, outcome.error_description
            )
        if outcome.redirect_url:
            return RedirectResponse(outcome.redirect_url, status_code=HTTPStatus.FOUND)
        return HTMLResponse(_COMPLETED_PAGE.format(state=html.escape(outcome.state or "")))

    async def token(self, request: Request) -> Response:
        token = await self._flow.retrieve_token(request.query_params.get("state"))
        return JSONResponse(token.to_response())

    async def metadata(self, request: Request) -> Response:
        issuer = self._issuer(request)
        document = AuthorizationServerMetadata(
            issuer=issuer,
            authorization_endpoint=f"{issuer}/auth",
            token_endpoint=f"{issuer}/auth/token",
            userinfo_endpoint=f"{issuer}/userinfo",
            registration_endpoint=f"{issuer}/client-registration",
            jwks_uri=f"{issuer}/.well-known/jwks.json",
            scopes_supported=self._auth.effective_scope.split(),
        )
        return JSONResponse(document.model_dump())

    async def jwks(self, request: Request) -> Response:
        return JSONResponse({"keys": []})

    async def userinfo(self, request: Request) -> Response:
        access_token = bearer_token(request)
        if access_token is None:
            raise UnauthorizedError("invalid_request", "Authorization header required")
        try:
            claims = await self._provider.fetch_user_info(access_token)
        except UpstreamError as exc:
            logger.warning(
                "User info lookup rejected: status=%s", exc.upstream_status
            )
            raise UnauthorizedError("invalid_token", "Failed to fetch user info") from exc
        return JSONResponse(claims)

    async def register_client(self, request: Request) -> Response:
        if not self._auth.client_id or not self._auth.client_secret:
            logger.error("Client registration requested without configured credentials")
            return JSONResponse(
                status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
                content={"error": "OAuth client credentials not configured"},
            )

        body = await request.body()
        try:
            metadata = (
                ClientRegistrationRequest.model_validate_json(body)
                if body.strip()
                else ClientRegistrationRequest()
            )
        except PydanticValidationError as exc:
            raise ValidationError(
                "invalid_client_metadata", "Registration body is not valid client metadata"
            ) from exc

        registration = ClientRegistrationResponse(
            client_id=self._auth.client_id,
            client_secret=self._auth.client_secret,
            client_id_issued_at=int(time.time()),
            redirect_uris=metadata.redirect_uris,
            client_name=metadata.client_name,
        )
        logger.info("Issued static client credentials to %s", metadata.client_name or "client")
        return JSONResponse(
            status_code=HTTPStatus.CREATED, content=registration.model_dump(exclude_none=True)
        )


__all__ = ["OAuthRouter"]

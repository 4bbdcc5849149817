"""
Upstream identity provider client.

Builds authorization URLs, exchanges authorization codes and fetches user
info. Every outbound call is bounded by the configured timeout; failures are
raised as ``UpstreamError`` and never retried here.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from vault_mcp.core.config import AuthSettings
from vault_mcp.core.errors import InternalError, UpstreamError

logger = logging.getLogger(__name__)


class ProviderOAuthClient:
    """Talk to the configured provider's authorization, token and user-info endpoints."""

    def __init__(
        self,
        auth_settings: AuthSettings,
        *,
        callback_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._auth = auth_settings
        self._callback_url = callback_url
        self._transport = transport

    @property
    def callback_url(self) -> str:
        return self._callback_url

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._auth.http_timeout_seconds, transport=self._transport
        )

    def _require_endpoint(self, name: str) -> str:
        endpoint = self._auth.endpoint(name)
        if not endpoint:
            logger.error("No %s configured for provider %s", name, self._auth.provider)
            raise InternalError(f"No {name} configured for provider {self._auth.provider!r}")
        return endpoint

    def build_authorization_url(
        self,
        *,
        state: str,
        scope: Optional[str] = None,
        code_challenge: Optional[str] = None,
        code_challenge_method: Optional[str] = None,
    ) -> str:
        """Construct the provider consent URL, passing PKCE parameters through untouched."""
        params = {
            "client_id": self._auth.client_id or "",
            "redirect_uri": self._callback_url,
            "response_type": "code",
            "scope": scope or self._auth.effective_scope,
            "state": state,
        }
        if code_challenge:
            params["code_challenge"] = code_challenge
        if code_challenge_method:
            params["code_challenge_method"] = code_challenge_method
        endpoint = self._require_endpoint("authorization_endpoint")
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"

    async def exchange_authorization_code(self, code: str) -> Dict[str, Any]:
        """Exchange an authorization code for the provider's token payload."""
        payload = {
            "client_id": self._auth.client_id,
            "client_secret": self._auth.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self._callback_url,
        }
        endpoint = self._require_endpoint("token_endpoint")
        try:
            async with self._client() as client:
                response = await client.post(
                    endpoint, data=payload, headers={"Accept": "application/json"}
                )
        except httpx.TimeoutException as exc:
            logger.error("Token exchange timed out calling %s", endpoint)
            raise UpstreamError("Token exchange timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("Token exchange transport failure: %s", exc)
            raise UpstreamError("Token exchange failed") from exc

        if response.status_code != httpx.codes.OK:
            logger.error(
                "Token exchange failed: status=%s body=%s",
                response.status_code,
                response.text,
            )
            raise UpstreamError(
                "Token exchange failed",
                upstream_status=response.status_code,
                upstream_body=response.text,
            )

        try:
            token_payload = response.json()
        except ValueError as exc:
            raise UpstreamError(
                "Token endpoint returned a non-JSON payload",
                upstream_status=response.status_code,
                upstream_body=response.text,
            ) from exc

        if not isinstance(token_payload, dict) or token_payload.get("error"):
            logger.error("Token exchange rejected by provider: %s", response.text)
            raise UpstreamError(
                "Token exchange rejected by provider",
                upstream_status=response.status_code,
                upstream_body=response.text,
            )
        if not token_payload.get("access_token"):
            raise UpstreamError(
                "Incomplete token payload returned by provider",
                upstream_status=response.status_code,
                upstream_body=response.text,
            )
        return token_payload

    async def fetch_user_info(self, access_token: str) -> Dict[str, Any]:
        """Fetch the claims bag for an access token."""
        endpoint = self._require_endpoint("userinfo_endpoint")
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }
        try:
            async with self._client() as client:
                response = await client.get(endpoint, headers=headers)
        except httpx.TimeoutException as exc:
            logger.error("User info request timed out calling %s", endpoint)
            raise UpstreamError("User info request timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("User info transport failure: %s", exc)
            raise UpstreamError("User info request failed") from exc

        if response.status_code != httpx.codes.OK:
            logger.warning(
                "User info request failed: status=%s body=%s",
                response.status_code,
                response.text,
            )
            raise UpstreamError(
                "User info request failed",
                upstream_status=response.status_code,
                upstream_body=response.text,
            )
        try:
            claims = response.json()
        except ValueError as exc:
            raise UpstreamError(
                "User info endpoint returned a non-JSON payload",
                upstream_status=response.status_code,
                upstream_body=response.text,
            ) from exc
        return claims if isinstance(claims, dict) else {"claims": claims}


__all__ = ["ProviderOAuthClient"]

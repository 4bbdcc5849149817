"""
OAuth authorization-code flow, brokered on behalf of protocol clients.

Per ``state`` token the flow moves ``NONE -> PENDING`` when an authorization
request is accepted, ``PENDING -> EXCHANGED`` once the provider callback has
been turned into a token, and ``EXCHANGED -> NONE`` when the token is
retrieved (at most once). Provider errors and exchange failures drop the
pending request. Records past the retention window are removed by the sweep.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import urlencode

from vault_mcp.clients.oauth_provider import ProviderOAuthClient
from vault_mcp.clients.record_store import RecordNotFound, RecordStore, StoredRecord
from vault_mcp.core.config import AuthSettings
from vault_mcp.core.errors import (
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    UpstreamError,
    ValidationError,
)
from vault_mcp.models.records import (
    AUTH_REQUEST_KIND,
    TOKEN_KIND,
    AuthRequestRecord,
    TokenRecord,
)
from vault_mcp.utils.locks import KeyedLock

logger = logging.getLogger(__name__)

OAUTH_COLLECTION = "oauth"
SUPPORTED_CHALLENGE_METHODS = ("S256", "plain")


class FlowState(str, Enum):
    NONE = "none"
    PENDING = "pending"
    EXCHANGED = "exchanged"


@dataclass(slots=True)
class AuthorizationRedirect:
    state: str
    url: str


@dataclass(slots=True)
class CallbackOutcome:
    """What the callback endpoint should tell the caller."""

    state: Optional[str]
    redirect_url: Optional[str] = None
    token: Optional[TokenRecord] = None
    error: Optional[str] = None
    error_description: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


def append_query(uri: str, params: Mapping[str, str]) -> str:
    """Append query parameters, leaving the rest of ``uri`` byte-identical."""
    base, hash_sign, fragment = uri.partition("#")
    if "?" not in base:
        joiner = "?"
    elif base.endswith(("?", "&")):
        joiner = ""
    else:
        joiner = "&"
    result = f"{base}{joiner}{urlencode(params)}"
    return f"{result}#{fragment}" if hash_sign else result


def _param(params: Mapping[str, Any], name: str) -> Optional[str]:
    value = params.get(name)
    if value is None:
        return None
    value = str(value)
    return value or None


class OAuthFlow:
    """Drive authorization requests, callbacks and one-time token retrieval."""

    def __init__(
        self,
        store: RecordStore,
        provider: ProviderOAuthClient,
        auth_settings: AuthSettings,
        *,
        state_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self._records = store.collection(OAUTH_COLLECTION)
        self._provider = provider
        self._auth = auth_settings
        self._state_factory = state_factory or (lambda: secrets.token_urlsafe(32))
        self._locks = KeyedLock()

    def _lookup(self, state: str) -> Optional[StoredRecord]:
        try:
            return self._records.peek(state)
        except RecordNotFound:
            return None

    def status(self, state: str) -> FlowState:
        record = self._lookup(state)
        if record is None:
            return FlowState.NONE
        if record.kind == TOKEN_KIND:
            return FlowState.EXCHANGED
        return FlowState.PENDING

    async def begin_authorization(self, params: Mapping[str, Any]) -> AuthorizationRedirect:
        """Validate an authorization request, record it and build the provider redirect."""
        response_type = _param(params, "response_type")
        if response_type and response_type != "code":
            raise ValidationError(
                "unsupported_response_type", "Only response_type=code is supported"
            )

        client_id = _param(params, "client_id")
        redirect_uri = _param(params, "redirect_uri")
        missing = [
            name
            for name, value in (
                ("client_id", client_id),
                ("redirect_uri", redirect_uri),
                ("response_type", response_type),
            )
            if not value
        ]
        if missing:
            raise ValidationError(
                "invalid_request", f"Missing required parameter(s): {', '.join(missing)}"
            )

        if client_id != self._auth.client_id:
            raise UnauthorizedError("invalid_client", "Unknown client_id")

        code_challenge = _param(params, "code_challenge")
        code_challenge_method = _param(params, "code_challenge_method")
        if code_challenge_method and code_challenge_method not in SUPPORTED_CHALLENGE_METHODS:
            raise ValidationError(
                "invalid_request", "Unsupported code_challenge_method"
            )

        state = _param(params, "state") or self._state_factory()
        scope = _param(params, "scope")
        url = self._provider.build_authorization_url(
            state=state,
            scope=scope,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
        )
        async with self._locks.hold(state):
            existing = self._lookup(state)
            if existing is not None and existing.kind == TOKEN_KIND:
                raise ConflictError(
                    "state_in_use", "A completed authorization is pending retrieval for this state"
                )
            request = AuthRequestRecord(
                state=state,
                redirect_uri=redirect_uri,
                client_id=client_id,
                scope=scope,
                code_challenge=code_challenge,
                code_challenge_method=code_challenge_method,
                timestamp=self._records.now(),
            )
            self._records.put(state, AUTH_REQUEST_KIND, request.model_dump(mode="json"))

        logger.info("Authorization request accepted for client %s", client_id)
        return AuthorizationRedirect(state=state, url=url)

    async def complete_authorization(self, params: Mapping[str, Any]) -> CallbackOutcome:
        """Handle the provider callback for a pending authorization."""
        state = _param(params, "state")
        error = _param(params, "error")
        if error:
            description = _param(params, "error_description")
            logger.warning("Provider returned error %s for state %s", error, (state or "")[:8])
            if state:
                async with self._locks.hold(state):
                    existing = self._lookup(state)
                    if existing is not None and existing.kind == AUTH_REQUEST_KIND:
                        self._records.delete(state)
            return CallbackOutcome(state=state, error=error, error_description=description)

        code = _param(params, "code")
        if not code or not state:
            raise ValidationError("invalid_request", "Missing code or state")

        async with self._locks.hold(state):
            existing = self._lookup(state)
            if existing is not None and existing.kind == TOKEN_KIND:
                raise ConflictError(
                    "state_in_use", "Authorization for this state was already completed"
                )
            request = (
                AuthRequestRecord.model_validate(existing.payload)
                if existing is not None
                else None
            )

            try:
                token_payload = await self._provider.exchange_authorization_code(code)
                user = await self._provider.fetch_user_info(token_payload["access_token"])
            except UpstreamError:
                if existing is not None:
                    self._records.delete(state)
                raise

            token = self._build_token(token_payload, user, request)
            self._records.put(
                state,
                TOKEN_KIND,
                token.model_dump(mode="json"),
                created_at=existing.created_at if existing is not None else None,
            )

        logger.info("Token exchange completed for state %s", state[:8])
        if request is None:
            return CallbackOutcome(state=state, token=token)
        redirect_url = append_query(request.redirect_uri, {"code": code, "state": state})
        return CallbackOutcome(state=state, token=token, redirect_url=redirect_url)

    def _build_token(
        self,
        token_payload: Dict[str, Any],
        user: Dict[str, Any],
        request: Optional[AuthRequestRecord],
    ) -> TokenRecord:
        expires_in = token_payload.get("expires_in")
        return TokenRecord(
            access_token=token_payload["access_token"],
            token_type=token_payload.get("token_type") or "Bearer",
            expires_in=int(expires_in) if expires_in not in (None, "") else None,
            refresh_token=token_payload.get("refresh_token"),
            scope=token_payload.get("scope") or (request.scope if request else None),
            user=user,
            issued_at=self._records.now(),
        )

    async def retrieve_token(self, state: Optional[str]) -> TokenRecord:
        """Return the completed token for ``state`` exactly once."""
        if not state:
            raise ValidationError("invalid_request", "Missing state")
        async with self._locks.hold(state):
            existing = self._lookup(state)
            if existing is None or existing.kind != TOKEN_KIND:
                raise NotFoundError("not_found", "Token not found or expired")
            record = self._records.take(state)
        token = TokenRecord.model_validate(record.payload)
        if token.is_expired(self._records.now()):
            logger.info("Discarded expired token for state %s", state[:8])
            raise NotFoundError("not_found", "Token not found or expired")
        return token


__all__ = [
    "AuthorizationRedirect",
    "CallbackOutcome",
    "FlowState",
    "OAUTH_COLLECTION",
    "OAuthFlow",
    "append_query",
]

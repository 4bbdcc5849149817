"""Schemas for the OAuth discovery and registration documents."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthorizationServerMetadata(BaseModel):
    """RFC 8414 authorization server metadata."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    registration_endpoint: str
    jwks_uri: str
    response_types_supported: List[str] = Field(default_factory=lambda: ["code"])
    grant_types_supported: List[str] = Field(
        default_factory=lambda: ["authorization_code"]
    )
    code_challenge_methods_supported: List[str] = Field(
        default_factory=lambda: ["S256", "plain"]
    )
    scopes_supported: List[str] = Field(default_factory=list)
    token_endpoint_auth_methods_supported: List[str] = Field(
        default_factory=lambda: ["client_secret_post", "client_secret_basic"]
    )


class ClientRegistrationRequest(BaseModel):
    """Subset of RFC 7591 client metadata the server echoes back."""

    model_config = ConfigDict(extra="ignore")

    redirect_uris: List[str] = Field(default_factory=list)
    client_name: Optional[str] = None
    grant_types: Optional[List[str]] = None
    response_types: Optional[List[str]] = None


class ClientRegistrationResponse(BaseModel):
    """RFC 7591 registration response carrying the static client credentials."""

    client_id: str
    client_secret: str
    client_id_issued_at: int
    client_secret_expires_at: int = 0
    redirect_uris: List[str] = Field(default_factory=list)
    client_name: Optional[str] = None
    grant_types: List[str] = Field(default_factory=lambda: ["authorization_code"])
    response_types: List[str] = Field(default_factory=lambda: ["code"])
    token_endpoint_auth_method: str = "client_secret_post"


__all__ = [
    "AuthorizationServerMetadata",
    "ClientRegistrationRequest",
    "ClientRegistrationResponse",
]

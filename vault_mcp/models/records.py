"""
Domain models for records persisted in the durable record store.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

SESSION_KIND = "session"
AUTH_REQUEST_KIND = "auth_request"
TOKEN_KIND = "token"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionRecord(BaseModel):
    """A protocol session bound to server-side handler state."""

    id: str = Field(..., description="Opaque session identifier sent in Mcp-Session-Id.")
    created_at: datetime
    last_accessed_at: datetime
    handler_state: str = Field(
        "",
        description="Serialized state owned by the protocol handler.",
    )
    pending_auth: Optional[str] = Field(
        None, description="OAuth state of an authorization started from this session."
    )


class AuthRequestRecord(BaseModel):
    """A pending authorization-code request keyed by its OAuth state."""

    state: str
    redirect_uri: str
    client_id: str
    scope: Optional[str] = None
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class TokenRecord(BaseModel):
    """The result of a completed code-for-token exchange."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None
    user: Dict[str, Any] = Field(default_factory=dict)
    issued_at: datetime = Field(default_factory=_utcnow)

    @property
    def expires_at(self) -> Optional[datetime]:
        if self.expires_in is None:
            return None
        return self.issued_at + timedelta(seconds=self.expires_in)

    def is_expired(self, now: datetime) -> bool:
        expires_at = self.expires_at
        return expires_at is not None and expires_at < now

    def to_response(self) -> Dict[str, Any]:
        """Wire representation returned by the token retrieval endpoint."""
        payload = self.model_dump(mode="json")
        expires_at = self.expires_at
        payload["expires_at"] = expires_at.isoformat() if expires_at else None
        return payload


__all__ = [
    "AUTH_REQUEST_KIND",
    "AuthRequestRecord",
    "SESSION_KIND",
    "SessionRecord",
    "TOKEN_KIND",
    "TokenRecord",
]

"""Registry binding client-visible session ids to protocol handler state."""

from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import uuid4

from vault_mcp.clients.record_store import RecordNotFound, RecordStore, StoredRecord
from vault_mcp.core.errors import NotFoundError, SessionLimitError
from vault_mcp.models.records import SESSION_KIND, SessionRecord
from vault_mcp.utils.locks import KeyedLock

logger = logging.getLogger(__name__)

SESSIONS_COLLECTION = "sessions"


class SessionNotFoundError(NotFoundError):
    """The client presented a session id the server does not know."""

    def __init__(self, session_id: str) -> None:
        super().__init__("session_not_found", "Session not found")
        self.session_id = session_id


@dataclass(slots=True)
class SessionHandle:
    """Result of resolving a request's session."""

    session_id: str
    handler_state: str
    created: bool


def _to_session(record: StoredRecord) -> SessionRecord:
    return SessionRecord(
        id=record.key,
        created_at=record.created_at,
        last_accessed_at=record.last_accessed_at,
        handler_state=record.payload.get("handler_state") or "",
        pending_auth=record.payload.get("pending_auth"),
    )


class SessionRegistry:
    """Create, look up and tear down protocol sessions.

    Sessions are created lazily for requests without an id. An id the
    registry has never issued, or has already evicted, is an error rather
    than an implicit new session.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        max_sessions: int = 0,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self._sessions = store.collection(SESSIONS_COLLECTION)
        self._max_sessions = max_sessions
        self._id_factory = id_factory or (lambda: uuid4().hex)
        self._locks = KeyedLock()

    def lock(self, session_id: str) -> AbstractAsyncContextManager[None]:
        return self._locks.hold(session_id)

    def _new_id(self) -> str:
        while True:
            candidate = self._id_factory()
            try:
                self._sessions.peek(candidate)
            except RecordNotFound:
                return candidate

    def create(self) -> SessionHandle:
        if self._max_sessions and self._sessions.count() >= self._max_sessions:
            logger.warning("Refusing new session: %d sessions live", self._sessions.count())
            raise SessionLimitError(
                "session_limit_reached", "Too many open sessions; retry later"
            )
        session_id = self._new_id()
        self._sessions.put(
            session_id, SESSION_KIND, {"handler_state": "", "pending_auth": None}
        )
        logger.info(
            "Session created: %s (total active: %d)", session_id[:8], self._sessions.count()
        )
        return SessionHandle(session_id=session_id, handler_state="", created=True)

    def resolve(self, session_id: Optional[str]) -> SessionHandle:
        """Return the session for ``session_id``, creating one when absent."""
        if not session_id:
            return self.create()
        try:
            record = self._sessions.get(session_id)
        except RecordNotFound as exc:
            logger.info("Unknown session requested: %s", session_id[:8])
            raise SessionNotFoundError(session_id) from exc
        return SessionHandle(
            session_id=session_id,
            handler_state=record.payload.get("handler_state") or "",
            created=False,
        )

    def get(self, session_id: str) -> SessionRecord:
        try:
            return _to_session(self._sessions.peek(session_id))
        except RecordNotFound as exc:
            raise SessionNotFoundError(session_id) from exc

    def save(self, session_id: str, handler_state: str) -> None:
        try:
            self._sessions.patch(session_id, {"handler_state": handler_state})
        except RecordNotFound as exc:
            raise SessionNotFoundError(session_id) from exc

    def attach_pending_auth(self, session_id: str, state: Optional[str]) -> None:
        try:
            self._sessions.patch(session_id, {"pending_auth": state})
        except RecordNotFound as exc:
            raise SessionNotFoundError(session_id) from exc

    def close(self, session_id: str) -> bool:
        closed = self._sessions.delete(session_id)
        if closed:
            logger.info("Session closed: %s", session_id[:8])
        return closed

    def close_all(self) -> int:
        removed = self._sessions.clear()
        if removed:
            logger.info("Closed %d sessions", removed)
        return removed

    def count(self) -> int:
        return self._sessions.count()


__all__ = [
    "SESSIONS_COLLECTION",
    "SessionHandle",
    "SessionNotFoundError",
    "SessionRegistry",
]

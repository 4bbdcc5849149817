try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from pathlib import Path

import pytest

from vault_mcp.clients.record_store import RecordStore
from vault_mcp.core.errors import SessionLimitError
from vault_mcp.services.session_registry import SessionNotFoundError, SessionRegistry


@pytest.fixture()
def store(tmp_path: Path):
    instance = RecordStore(str(tmp_path / "records.db"))
    yield instance
    instance.close()


def test_resolve_without_id_creates_session(store: RecordStore) -> None:
    registry = SessionRegistry(store)

    handle = registry.resolve(None)

    assert handle.created is True
    assert handle.handler_state == ""
    assert len(handle.session_id) == 32
    assert registry.count() == 1


def test_unknown_session_is_not_recreated(store: RecordStore) -> None:
    registry = SessionRegistry(store)

    with pytest.raises(SessionNotFoundError) as excinfo:
        registry.resolve("does-not-exist")

    assert excinfo.value.status_code == 404
    assert registry.count() == 0


def test_handler_state_round_trips_through_store(store: RecordStore) -> None:
    registry = SessionRegistry(store)
    session_id = registry.create().session_id

    registry.save(session_id, '{"initialized": true}')
    handle = registry.resolve(session_id)

    assert handle.created is False
    assert handle.handler_state == '{"initialized": true}'


def test_sessions_survive_store_reopen(tmp_path: Path) -> None:
    path = str(tmp_path / "records.db")
    first = RecordStore(path)
    session_id = SessionRegistry(first).create().session_id
    first.close()

    second = RecordStore(path)
    try:
        assert SessionRegistry(second).resolve(session_id).session_id == session_id
    finally:
        second.close()


def test_close_deletes_immediately(store: RecordStore) -> None:
    registry = SessionRegistry(store)
    session_id = registry.create().session_id

    assert registry.close(session_id) is True
    assert registry.close(session_id) is False
    with pytest.raises(SessionNotFoundError):
        registry.resolve(session_id)


def test_session_cap_is_enforced(store: RecordStore) -> None:
    registry = SessionRegistry(store, max_sessions=2)
    registry.create()
    registry.create()

    with pytest.raises(SessionLimitError) as excinfo:
        registry.create()

    assert excinfo.value.reason == "session_limit_reached"
    assert excinfo.value.status_code == 503


def test_id_collisions_are_skipped(store: RecordStore) -> None:
    ids = iter(["dup", "dup", "fresh"])
    registry = SessionRegistry(store, id_factory=lambda: next(ids))

    assert registry.create().session_id == "dup"
    assert registry.create().session_id == "fresh"


def test_pending_auth_is_recorded(store: RecordStore) -> None:
    registry = SessionRegistry(store)
    session_id = registry.create().session_id

    registry.attach_pending_auth(session_id, "state-1")

    assert registry.get(session_id).pending_auth == "state-1"
    with pytest.raises(SessionNotFoundError):
        registry.attach_pending_auth("missing", "state-2")


def test_close_all_leaves_oauth_records(store: RecordStore) -> None:
    registry = SessionRegistry(store)
    registry.create()
    registry.create()
    store.put("oauth", "state-1", "token", {"access_token": "t"})

    assert registry.close_all() == 2
    assert registry.count() == 0
    assert store.count("oauth") == 1

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from vault_mcp.clients.record_store import RecordNotFound, RecordStore


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(tmp_path: Path, clock: FakeClock):
    instance = RecordStore(str(tmp_path / "records.db"), clock=clock)
    yield instance
    instance.close()


def test_put_then_get_returns_detached_copy(store: RecordStore) -> None:
    store.put("sessions", "abc", "session", {"handler_state": "x", "nested": {"n": 1}})

    record = store.get("sessions", "abc")
    record.payload["nested"]["n"] = 99

    assert store.get("sessions", "abc").payload["nested"]["n"] == 1
    assert record.kind == "session"


def test_collections_do_not_share_keys(store: RecordStore) -> None:
    store.put("sessions", "same", "session", {"v": 1})
    store.put("oauth", "same", "auth_request", {"v": 2})

    assert store.get("sessions", "same").payload == {"v": 1}
    assert store.get("oauth", "same").payload == {"v": 2}
    assert store.count("sessions") == 1
    assert store.delete("oauth", "same") is True
    assert store.get("sessions", "same").payload == {"v": 1}


def test_records_survive_reopen(tmp_path: Path, clock: FakeClock) -> None:
    path = str(tmp_path / "records.db")
    first = RecordStore(path, clock=clock)
    first.put("oauth", "state-1", "token", {"access_token": "t"})
    first.close()

    second = RecordStore(path, clock=clock)
    try:
        record = second.peek("oauth", "state-1")
        assert record.payload == {"access_token": "t"}
        assert record.created_at == clock.now
    finally:
        second.close()


def test_get_refreshes_freshness_but_peek_does_not(store: RecordStore, clock: FakeClock) -> None:
    store.put("sessions", "abc", "session", {})
    clock.advance(minutes=5)

    assert store.peek("sessions", "abc").last_accessed_at == clock.now - timedelta(minutes=5)
    assert store.get("sessions", "abc").last_accessed_at == clock.now


def test_patch_merges_fields(store: RecordStore) -> None:
    store.put("sessions", "abc", "session", {"handler_state": "", "pending_auth": None})
    store.patch("sessions", "abc", {"pending_auth": "state-9"})

    assert store.peek("sessions", "abc").payload == {
        "handler_state": "",
        "pending_auth": "state-9",
    }
    with pytest.raises(RecordNotFound):
        store.patch("sessions", "missing", {"a": 1})


def test_take_removes_record_exactly_once(store: RecordStore) -> None:
    store.put("oauth", "state-1", "token", {"access_token": "t"})

    assert store.take("oauth", "state-1").payload["access_token"] == "t"
    with pytest.raises(RecordNotFound):
        store.take("oauth", "state-1")


def test_sweep_uses_strict_cutoff(
    tmp_path: Path, store: RecordStore, clock: FakeClock
) -> None:
    store.put("sessions", "old", "session", {})
    clock.advance(minutes=30)
    store.put("sessions", "boundary", "session", {"handler": {"initialized": True}})
    store.put("oauth", "S1", "auth_request", {"redirect_uri": "https://c.example/cb"})
    clock.advance(hours=1)
    survivors = [store.peek("sessions", "boundary"), store.peek("oauth", "S1")]

    removed = store.sweep(timedelta(hours=1))

    assert removed == 1
    with pytest.raises(RecordNotFound):
        store.peek("sessions", "old")
    assert [store.peek("sessions", "boundary"), store.peek("oauth", "S1")] == survivors

    reopened = RecordStore(str(tmp_path / "records.db"), clock=clock)
    try:
        assert [reopened.peek("sessions", "boundary"), reopened.peek("oauth", "S1")] == survivors
    finally:
        reopened.close()


def test_sweep_removes_rows_from_disk(tmp_path: Path, store: RecordStore, clock: FakeClock) -> None:
    store.put("oauth", "stale", "auth_request", {})
    clock.advance(hours=2)
    store.sweep(timedelta(hours=1))

    with sqlite3.connect(tmp_path / "records.db") as conn:
        rows = conn.execute("SELECT COUNT(*) FROM records").fetchone()[0]
    assert rows == 0


def test_clear_only_touches_one_collection(store: RecordStore) -> None:
    store.put("sessions", "a", "session", {})
    store.put("sessions", "b", "session", {})
    store.put("oauth", "s", "token", {})

    assert store.clear("sessions") == 2
    assert store.count("sessions") == 0
    assert store.count("oauth") == 1


def test_closed_store_rejects_operations(tmp_path: Path) -> None:
    closed = RecordStore(str(tmp_path / "closed.db"))
    closed.close()

    with pytest.raises(RuntimeError):
        closed.put("sessions", "a", "session", {})


def test_collection_view_scopes_operations(store: RecordStore) -> None:
    sessions = store.collection("sessions")
    sessions.put("abc", "session", {"handler_state": "1"})

    assert sessions.count() == 1
    assert store.peek("sessions", "abc").payload["handler_state"] == "1"
    assert sessions.delete("abc") is True
    assert sessions.delete("abc") is False

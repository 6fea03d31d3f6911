"""Tests for the storage backends and the local task store."""

import sqlite3
from datetime import timedelta

import pytest

from todo_sync.errors import LocalStorageUnavailable
from todo_sync.storage import MemoryBackend, SQLiteBackend, TaskStore, open_backend
from todo_sync.task import Task
from todo_sync.utils.datetime import now_utc


def make_task(task_id, title="Task", owner="user1", age_minutes=0, **kwargs):
    return Task(id=task_id, owner_id=owner, title=title,
                created_at=now_utc() - timedelta(minutes=age_minutes), **kwargs)


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    """A task store on each backend."""
    if request.param == "memory":
        return TaskStore(MemoryBackend())
    return TaskStore(SQLiteBackend(tmp_path / "offline.db"))


class TestTaskStore:

    async def test_put_and_get(self, any_store):
        await any_store.put(make_task("srv1", "Older", age_minutes=10))
        await any_store.put(make_task("srv2", "Newer", age_minutes=1))
        await any_store.put(make_task("srv3", "Other owner", owner="user2"))

        tasks = await any_store.get("user1")

        assert [t.id for t in tasks] == ["srv1", "srv2"]
        assert (await any_store.get_task("srv3")).owner_id == "user2"

    async def test_put_is_idempotent_upsert(self, any_store):
        task = make_task("srv1", "First")
        await any_store.put(task)
        await any_store.put(task)
        await any_store.put(task.apply_changes({"title": "Second"}))

        tasks = await any_store.get("user1")

        assert len(tasks) == 1
        assert tasks[0].title == "Second"

    async def test_round_trip_preserves_fields(self, any_store):
        task = make_task("srv1", "Full", description="desc", priority="high",
                         tags=["a", "b"], due_date=now_utc(), is_unconfirmed=True)
        await any_store.put(task)

        assert await any_store.get_task("srv1") == task

    async def test_delete_is_idempotent(self, any_store):
        await any_store.put(make_task("srv1"))

        assert await any_store.delete("srv1") is True
        assert await any_store.delete("srv1") is False
        assert await any_store.get_task("srv1") is None

    async def test_clear_only_affects_owner(self, any_store):
        await any_store.put(make_task("srv1"))
        await any_store.put(make_task("srv2", owner="user2"))

        assert await any_store.clear("user1") == 1
        assert await any_store.get("user1") == []
        assert len(await any_store.get("user2")) == 1

    async def test_put_many(self, any_store):
        await any_store.put_many([make_task(f"srv{i}", age_minutes=10 - i) for i in range(3)])
        assert len(await any_store.get("user1")) == 3

    async def test_meta(self, any_store):
        assert await any_store.get_meta("lastSync") is None
        await any_store.set_meta("lastSync", "2024-01-01T00:00:00+00:00")
        assert await any_store.get_meta("lastSync") == "2024-01-01T00:00:00+00:00"


class TestDurability:

    async def test_sqlite_survives_reopen(self, tmp_path):
        path = tmp_path / "offline.db"
        await TaskStore(SQLiteBackend(path)).put(make_task("srv1", "Persisted"))

        reopened = TaskStore(SQLiteBackend(path))

        assert reopened.durable
        assert (await reopened.get_task("srv1")).title == "Persisted"

    async def test_sqlite_connections_are_closed(self, tmp_path, monkeypatch):
        backend = SQLiteBackend(tmp_path / "offline.db")
        opened = []
        connect = backend._connect

        def tracking_connect():
            conn = connect()
            opened.append(conn)
            return conn

        monkeypatch.setattr(backend, "_connect", tracking_connect)
        store = TaskStore(backend)
        await store.put(make_task("srv1"))
        await store.get_task("srv1")
        await store.delete("srv1")

        assert len(opened) == 3
        for conn in opened:
            with pytest.raises(sqlite3.ProgrammingError):
                conn.execute("SELECT 1")

    def test_unopenable_database_raises(self, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("file in the way")

        with pytest.raises(LocalStorageUnavailable):
            SQLiteBackend(blocker / "offline.db")

    def test_open_backend_degrades_to_memory(self, tmp_path, caplog):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("file in the way")

        backend = open_backend("sqlite", blocker / "offline.db")

        assert isinstance(backend, MemoryBackend)
        assert backend.durable is False
        assert backend.degraded_reason
        assert "Offline storage unavailable" in caplog.text

    def test_open_backend_prefers_sqlite(self, tmp_path):
        backend = open_backend("sqlite", tmp_path / "offline.db")
        assert isinstance(backend, SQLiteBackend)
        assert backend.degraded_reason is None

    def test_open_backend_memory_and_unknown(self):
        assert isinstance(open_backend("memory"), MemoryBackend)
        with pytest.raises(ValueError):
            open_backend("redis")

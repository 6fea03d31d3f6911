"""Tests for the durable operation queue."""

import asyncio

import pytest

from todo_sync.storage import MemoryBackend, OperationQueue, SQLiteBackend
from todo_sync.sync_models import OperationType, QueuedOperation


@pytest.fixture(params=["memory", "sqlite"])
def any_queue(request, tmp_path):
    if request.param == "memory":
        return OperationQueue(MemoryBackend())
    return OperationQueue(SQLiteBackend(tmp_path / "offline.db"))


class TestOperationQueue:

    async def test_enqueue_assigns_id_and_timestamp(self, any_queue):
        op = await any_queue.enqueue(OperationType.CREATE, "offline_1", {"title": "Buy milk"})

        assert op.id.startswith("CREATE_")
        assert op.enqueued_at is not None
        assert op.attempts == 0
        assert await any_queue.list() == [op]

    async def test_list_keeps_enqueue_order(self, any_queue):
        kinds = [OperationType.CREATE, OperationType.UPDATE, OperationType.DELETE, OperationType.UPDATE]
        for index, kind in enumerate(kinds):
            await any_queue.enqueue(kind, f"task{index}")

        listed = await any_queue.list()

        assert [op.task_id for op in listed] == ["task0", "task1", "task2", "task3"]
        assert len({op.id for op in listed}) == 4

    async def test_remove_and_clear(self, any_queue):
        first = await any_queue.enqueue(OperationType.DELETE, "srv1")
        await any_queue.enqueue(OperationType.DELETE, "srv2")

        assert await any_queue.remove(first.id) is True
        assert await any_queue.remove(first.id) is False
        assert await any_queue.pending_count() == 1

        assert await any_queue.clear() == 1
        assert await any_queue.list() == []

    async def test_concurrent_enqueues_are_not_lost(self, any_queue):
        await asyncio.gather(*[
            any_queue.enqueue(OperationType.UPDATE, "srv1", {"priority": "high"})
            for _ in range(20)
        ])
        assert await any_queue.pending_count() == 20

    async def test_record_failure_persists_attempts(self, any_queue):
        op = await any_queue.enqueue(OperationType.UPDATE, "srv1", {"title": "x"})

        await any_queue.record_failure(op, "HTTP error! status: 500")
        await any_queue.record_failure(op, "HTTP error! status: 502")

        stored = (await any_queue.list())[0]
        assert stored.attempts == 2
        assert stored.last_error == "HTTP error! status: 502"

    async def test_retarget_rewrites_temp_ids_in_place(self, any_queue):
        await any_queue.enqueue(OperationType.UPDATE, "offline_1", {"title": "a"})
        await any_queue.enqueue(OperationType.UPDATE, "srv9", {"title": "b"})
        await any_queue.enqueue(OperationType.DELETE, "offline_1")

        assert await any_queue.retarget("offline_1", "srv1") == 2

        listed = await any_queue.list()
        assert [op.task_id for op in listed] == ["srv1", "srv9", "srv1"]


class TestQueuePersistence:

    async def test_queue_survives_reopen(self, tmp_path):
        path = tmp_path / "offline.db"
        op = await OperationQueue(SQLiteBackend(path)).enqueue(
            OperationType.CREATE, "offline_1", {"title": "Persist me"}
        )

        reopened = await OperationQueue(SQLiteBackend(path)).list()

        assert reopened == [op]

    def test_serialized_form(self):
        op = QueuedOperation.from_dict({
            "id": "UPDATE_abc",
            "type": "UPDATE",
            "taskId": "srv1",
            "payload": {"completed": True},
            "timestamp": "2024-01-01T00:00:00+00:00",
        })
        assert op.type == OperationType.UPDATE
        assert op.attempts == 0
        assert op.to_dict()["taskId"] == "srv1"

"""Pytest configuration and shared fixtures."""

import sys
import asyncio
import inspect
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Ensure src directory is in Python path for all tests
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from todo_sync.errors import GatewayNotFound, NetworkUnavailable
from todo_sync.state import TaskStateStore
from todo_sync.storage import MemoryBackend, OperationQueue, TaskStore
from todo_sync.sync import ConnectivityMonitor, RemoteTaskGateway, Synchronizer
from todo_sync.task import Task
from todo_sync.utils.datetime import now_utc


OWNER = "user1"


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):
    """Execute async tests without external plugins."""
    testfunction = pyfuncitem.obj
    if inspect.iscoroutinefunction(testfunction):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            sig = inspect.signature(testfunction)
            call_kwargs = {name: pyfuncitem.funcargs[name] for name in sig.parameters}
            loop.run_until_complete(testfunction(**call_kwargs))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


class FakeGateway(RemoteTaskGateway):
    """In-memory task server that records every call.

    Failures are scripted with ``fail_on``; ``reachable = False`` makes every
    call fail as if the network were down.
    """

    def __init__(self, owner_id: str = OWNER):
        self.owner_id = owner_id
        self.tasks: Dict[str, Task] = {}
        self.calls: List[tuple] = []
        self.reachable = True
        self.delay = 0.0
        self.gate: Optional[asyncio.Event] = None
        self._rules: List[Dict[str, Any]] = []
        self._next_id = 1

    def seed(self, task: Task) -> Task:
        self.tasks[task.id] = task
        return task

    def fail_on(self, method: str, error: Exception, key: Optional[str] = None, times: int = 1):
        """Raise ``error`` on the next ``times`` calls of ``method``.

        ``key`` narrows the rule to a task id (update/delete) or title (create).
        """
        self._rules.append({"method": method, "error": error, "key": key, "times": times})

    def mutations(self) -> List[tuple]:
        return [call for call in self.calls if call[0] != "list"]

    async def _enter(self, method: str, key: Optional[str]):
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.reachable:
            raise NetworkUnavailable("connection refused")
        for rule in self._rules:
            if rule["method"] == method and rule["times"] > 0 and rule["key"] in (None, key):
                rule["times"] -= 1
                raise rule["error"]

    @staticmethod
    def _copy(task: Task) -> Task:
        return Task.from_dict(task.to_dict())

    async def list_tasks(self, owner_id, filters=None):
        self.calls.append(("list", owner_id))
        await self._enter("list", None)
        return [self._copy(t) for t in self.tasks.values() if t.owner_id == owner_id]

    async def create_task(self, payload):
        self.calls.append(("create", payload.get("title")))
        await self._enter("create", payload.get("title"))
        now = now_utc()
        task = Task.from_dict({
            **payload,
            "_id": f"srv{self._next_id}",
            "userId": self.owner_id,
            "createdAt": now.isoformat(),
            "updatedAt": now.isoformat(),
        })
        if task.completed:
            task.completed_at = now
        self._next_id += 1
        self.tasks[task.id] = task
        return self._copy(task)

    async def update_task(self, task_id, payload):
        self.calls.append(("update", task_id, dict(payload)))
        await self._enter("update", task_id)
        if task_id not in self.tasks:
            raise GatewayNotFound()
        task = self.tasks[task_id].apply_changes(payload)
        self.tasks[task_id] = task
        return self._copy(task)

    async def delete_task(self, task_id):
        self.calls.append(("delete", task_id))
        await self._enter("delete", task_id)
        if self.tasks.pop(task_id, None) is None:
            raise GatewayNotFound()

    async def ping(self):
        return self.reachable


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def owner():
    return OWNER


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def store(backend):
    return TaskStore(backend)


@pytest.fixture
def queue(backend):
    return OperationQueue(backend)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def monitor():
    return ConnectivityMonitor(initially_online=True)


@pytest.fixture
def state():
    return TaskStateStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_synchronizer(store, queue, gateway, state, monitor, clock):
    """Build a synchronizer on the shared fixtures with keyword overrides."""

    def factory(**overrides):
        options = {
            "sink": state,
            "monitor": monitor,
            "interval": 30.0,
            "request_timeout": 5.0,
            "max_attempts": 5,
            "backoff_max": 300.0,
            "clock": clock,
        }
        options.update(overrides)
        return Synchronizer(OWNER, store, queue, gateway, **options)

    return factory


@pytest.fixture
def synchronizer(make_synchronizer):
    return make_synchronizer()

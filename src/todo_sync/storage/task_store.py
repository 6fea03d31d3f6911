"""Durable local store of task records."""

import logging
from typing import Iterable, List, Optional

from ..task import Task
from .backend import StorageBackend


logger = logging.getLogger(__name__)


class TaskStore:
    """Key-indexed task records for one or more owners.
    
    Every operation is idempotent: a repeated put leaves the same record, a
    delete of an absent id is a no-op.
    """
    
    def __init__(self, backend: StorageBackend):
        self.backend = backend
        self.logger = logging.getLogger(__name__)
    
    @property
    def durable(self) -> bool:
        """Whether records survive a restart."""
        return self.backend.durable
    
    async def get(self, owner_id: str) -> List[Task]:
        """Return all tasks of an owner in creation order."""
        return [Task.from_dict(record) for record in await self.backend.load_tasks(owner_id)]
    
    async def get_task(self, task_id: str) -> Optional[Task]:
        """Return a single task or None."""
        record = await self.backend.load_task(task_id)
        return Task.from_dict(record) if record else None
    
    async def put(self, task: Task):
        """Insert or replace a task by id."""
        await self.backend.save_tasks([task.to_dict()])
        self.logger.debug(f"Stored task {task.id}")
    
    async def put_many(self, tasks: Iterable[Task]):
        """Insert or replace several tasks in one write."""
        await self.backend.save_tasks([task.to_dict() for task in tasks])
    
    async def delete(self, task_id: str) -> bool:
        """Delete a task. Returns False if it was not stored."""
        deleted = await self.backend.delete_task(task_id)
        if deleted:
            self.logger.debug(f"Deleted task {task_id}")
        return deleted
    
    async def clear(self, owner_id: str) -> int:
        """Delete every task of an owner."""
        count = await self.backend.clear_tasks(owner_id)
        self.logger.info(f"Cleared {count} local tasks for {owner_id}")
        return count
    
    async def get_meta(self, key: str):
        """Read a metadata value kept beside the task records."""
        return await self.backend.get_meta(key)
    
    async def set_meta(self, key: str, value):
        """Write a metadata value kept beside the task records."""
        await self.backend.set_meta(key, value)

"""Durable ordered log of mutations waiting for server acknowledgement."""

import logging
from typing import Any, Dict, List, Optional

from ..sync_models import OperationType, QueuedOperation, new_operation_id
from ..utils.datetime import now_utc
from .backend import StorageBackend


logger = logging.getLogger(__name__)


class OperationQueue:
    """Pending create/update/delete operations in enqueue order.
    
    Appends are a single backend write, so concurrent enqueues from separate
    user actions cannot lose each other.
    """
    
    def __init__(self, backend: StorageBackend):
        self.backend = backend
        self.logger = logging.getLogger(__name__)
    
    async def enqueue(self, op_type: OperationType, task_id: str,
                      payload: Optional[Dict[str, Any]] = None) -> QueuedOperation:
        """Append an operation with a fresh id and the current timestamp.
        
        Args:
            op_type: Kind of mutation
            task_id: Temporary or server id of the affected task
            payload: Mutation payload for creates and updates
            
        Returns:
            The stored operation
        """
        operation = QueuedOperation(
            id=new_operation_id(op_type),
            type=op_type,
            task_id=task_id,
            payload=dict(payload or {}),
            enqueued_at=now_utc(),
        )
        await self.backend.append_operation(operation.to_dict())
        self.logger.debug(f"Queued {op_type.value} for task {task_id} ({operation.id})")
        return operation
    
    async def list(self) -> List[QueuedOperation]:
        """Return queued operations in enqueue order."""
        return [QueuedOperation.from_dict(r) for r in await self.backend.load_operations()]
    
    async def remove(self, op_id: str) -> bool:
        """Remove an operation. Absent ids are ignored."""
        return await self.backend.delete_operation(op_id)
    
    async def clear(self) -> int:
        """Remove every queued operation."""
        count = await self.backend.clear_operations()
        if count:
            self.logger.info(f"Discarded {count} queued operations")
        return count
    
    async def pending_count(self) -> int:
        """Number of operations still waiting."""
        return len(await self.backend.load_operations())
    
    async def record_failure(self, operation: QueuedOperation, error: str) -> QueuedOperation:
        """Persist a failed attempt on an operation and return the updated copy."""
        operation.attempts += 1
        operation.last_error = error
        await self.backend.update_operation(operation.to_dict())
        return operation
    
    async def retarget(self, old_task_id: str, new_task_id: str) -> int:
        """Point every queued operation for ``old_task_id`` at ``new_task_id``.
        
        Used once a temporary id has been confirmed so later updates and
        deletes reach the server record.
        
        Returns:
            Number of operations rewritten
        """
        count = 0
        for operation in await self.list():
            if operation.task_id == old_task_id:
                operation.task_id = new_task_id
                await self.backend.update_operation(operation.to_dict())
                count += 1
        if count:
            self.logger.debug(f"Retargeted {count} queued operations {old_task_id} -> {new_task_id}")
        return count

"""Local persistence for the offline task list and its operation queue."""

import logging
from pathlib import Path
from typing import Optional

from ..errors import LocalStorageUnavailable
from .backend import MemoryBackend, SQLiteBackend, StorageBackend
from .operation_queue import OperationQueue
from .task_store import TaskStore


logger = logging.getLogger(__name__)


def open_backend(kind: str = "sqlite", db_path: Optional[Path] = None) -> StorageBackend:
    """Select the storage strategy once at startup.
    
    The durable SQLite backend is preferred; if it cannot be opened the
    in-memory backend is returned with ``durable = False`` and the reason in
    ``degraded_reason``, and a single warning is logged.
    
    Args:
        kind: "sqlite" or "memory"
        db_path: Database file for the SQLite backend
        
    Returns:
        The negotiated backend
    """
    if kind == "memory":
        return MemoryBackend()
    
    if kind != "sqlite":
        raise ValueError(f"Unknown storage backend: {kind}")
    
    if db_path is None:
        raise ValueError("db_path is required for the sqlite backend")
    
    try:
        return SQLiteBackend(db_path)
    except LocalStorageUnavailable as e:
        logger.warning(
            f"Offline storage unavailable ({e}); changes will only be kept in memory "
            "until they reach the server"
        )
        return MemoryBackend(degraded_reason=str(e))


__all__ = [
    "StorageBackend",
    "SQLiteBackend",
    "MemoryBackend",
    "TaskStore",
    "OperationQueue",
    "open_backend",
]

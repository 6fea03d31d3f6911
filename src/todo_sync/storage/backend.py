"""Storage backends for the offline task store and the operation queue.

Two strategies implement the same interface: a SQLite database file that
survives restarts, and an in-memory fallback used when the database cannot be
opened. The strategy is chosen once by ``open_backend`` and never switched
at runtime.
"""

import copy
import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import closing
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import LocalStorageUnavailable


logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Key-indexed persistence for task records, queued operations and metadata.

    Records are exchanged as plain dictionaries in wire form. All methods are
    coroutines so callers await durability even though the bundled backends
    complete synchronously.
    """

    name = "abstract"
    durable = False
    degraded_reason: Optional[str] = None

    # Tasks

    @abstractmethod
    async def load_tasks(self, owner_id: str) -> List[Dict[str, Any]]:
        """Return every task record for an owner, oldest first."""

    @abstractmethod
    async def load_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        """Return one task record or None."""

    @abstractmethod
    async def save_tasks(self, records: List[Dict[str, Any]]):
        """Upsert task records by ``_id``."""

    @abstractmethod
    async def delete_task(self, task_id: str) -> bool:
        """Delete a task record. Returns False if it was absent."""

    @abstractmethod
    async def clear_tasks(self, owner_id: str) -> int:
        """Delete every task record of an owner."""

    # Operation queue

    @abstractmethod
    async def append_operation(self, record: Dict[str, Any]):
        """Append an operation record to the end of the queue."""

    @abstractmethod
    async def load_operations(self) -> List[Dict[str, Any]]:
        """Return the queued operation records in enqueue order."""

    @abstractmethod
    async def update_operation(self, record: Dict[str, Any]) -> bool:
        """Rewrite a queued operation in place, keeping its position."""

    @abstractmethod
    async def delete_operation(self, op_id: str) -> bool:
        """Remove an operation record. Returns False if it was absent."""

    @abstractmethod
    async def clear_operations(self) -> int:
        """Remove every queued operation."""

    # Metadata

    @abstractmethod
    async def get_meta(self, key: str) -> Optional[Any]:
        """Return a JSON metadata value or None."""

    @abstractmethod
    async def set_meta(self, key: str, value: Any):
        """Store a JSON metadata value."""

    def close(self):
        """Release resources held by the backend."""


class SQLiteBackend(StorageBackend):
    """Durable backend on a single SQLite database file."""

    name = "sqlite"
    durable = True

    def __init__(self, db_path: Path):
        """Open (and create if needed) the database.

        Args:
            db_path: Path of the database file

        Raises:
            LocalStorageUnavailable: If the file cannot be created or opened
        """
        self.db_path = Path(db_path)
        self.logger = logging.getLogger(__name__)
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_database(self):
        """Initialize the SQLite database with required tables."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with closing(self._connect()) as conn, conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS tasks (
                        id TEXT PRIMARY KEY,
                        owner_id TEXT NOT NULL,
                        completed INTEGER NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL,
                        data TEXT NOT NULL  -- JSON serialized Task
                    )
                """)

                conn.execute("""
                    CREATE TABLE IF NOT EXISTS sync_queue (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        id TEXT NOT NULL UNIQUE,
                        type TEXT NOT NULL,
                        task_id TEXT NOT NULL,
                        enqueued_at TEXT NOT NULL,
                        data TEXT NOT NULL  -- JSON serialized QueuedOperation
                    )
                """)

                conn.execute("""
                    CREATE TABLE IF NOT EXISTS meta (
                        key TEXT PRIMARY KEY,
                        value TEXT
                    )
                """)

                conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_owner ON tasks(owner_id)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_completed ON tasks(completed)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_created ON tasks(created_at)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_queue_enqueued ON sync_queue(enqueued_at)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_queue_task ON sync_queue(task_id)")

                conn.commit()
                self.logger.debug(f"Initialized offline database at {self.db_path}")

        except (sqlite3.Error, OSError) as e:
            raise LocalStorageUnavailable(f"Cannot open {self.db_path}: {e}") from e

    def _execute(self, sql: str, params: tuple = ()) -> int:
        try:
            with closing(self._connect()) as conn, conn:
                cursor = conn.execute(sql, params)
                conn.commit()
                return cursor.rowcount
        except sqlite3.Error as e:
            self.logger.error(f"Offline database write failed: {e}")
            raise LocalStorageUnavailable(str(e)) from e

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        try:
            with closing(self._connect()) as conn, conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            self.logger.error(f"Offline database read failed: {e}")
            raise LocalStorageUnavailable(str(e)) from e

    async def load_tasks(self, owner_id: str) -> List[Dict[str, Any]]:
        rows = self._query(
            "SELECT data FROM tasks WHERE owner_id = ? ORDER BY created_at, id",
            (owner_id,)
        )
        return [json.loads(row["data"]) for row in rows]

    async def load_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        rows = self._query("SELECT data FROM tasks WHERE id = ?", (task_id,))
        return json.loads(rows[0]["data"]) if rows else None

    async def save_tasks(self, records: List[Dict[str, Any]]):
        if not records:
            return
        try:
            with closing(self._connect()) as conn, conn:
                conn.executemany("""
                    INSERT OR REPLACE INTO tasks (id, owner_id, completed, created_at, data)
                    VALUES (?, ?, ?, ?, ?)
                """, [
                    (
                        record["_id"],
                        record.get("userId") or "",
                        1 if record.get("completed") else 0,
                        record.get("createdAt") or "",
                        json.dumps(record),
                    )
                    for record in records
                ])
                conn.commit()
        except sqlite3.Error as e:
            self.logger.error(f"Failed to save tasks: {e}")
            raise LocalStorageUnavailable(str(e)) from e

    async def delete_task(self, task_id: str) -> bool:
        rowcount = self._execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        return rowcount > 0

    async def clear_tasks(self, owner_id: str) -> int:
        return self._execute("DELETE FROM tasks WHERE owner_id = ?", (owner_id,))

    async def append_operation(self, record: Dict[str, Any]):
        self._execute("""
            INSERT INTO sync_queue (id, type, task_id, enqueued_at, data)
            VALUES (?, ?, ?, ?, ?)
        """, (
            record["id"],
            record["type"],
            record["taskId"],
            record["timestamp"],
            json.dumps(record),
        ))

    async def load_operations(self) -> List[Dict[str, Any]]:
        rows = self._query("SELECT data FROM sync_queue ORDER BY seq")
        return [json.loads(row["data"]) for row in rows]

    async def update_operation(self, record: Dict[str, Any]) -> bool:
        rowcount = self._execute("""
            UPDATE sync_queue SET task_id = ?, data = ? WHERE id = ?
        """, (record["taskId"], json.dumps(record), record["id"]))
        return rowcount > 0

    async def delete_operation(self, op_id: str) -> bool:
        rowcount = self._execute("DELETE FROM sync_queue WHERE id = ?", (op_id,))
        return rowcount > 0

    async def clear_operations(self) -> int:
        return self._execute("DELETE FROM sync_queue")

    async def get_meta(self, key: str) -> Optional[Any]:
        rows = self._query("SELECT value FROM meta WHERE key = ?", (key,))
        return json.loads(rows[0]["value"]) if rows else None

    async def set_meta(self, key: str, value: Any):
        self._execute(
            "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
            (key, json.dumps(value))
        )


class MemoryBackend(StorageBackend):
    """Best-effort backend that keeps everything in process memory."""

    name = "memory"
    durable = False

    def __init__(self, degraded_reason: Optional[str] = None):
        self.degraded_reason = degraded_reason
        self._tasks: Dict[str, Dict[str, Any]] = {}
        self._operations: List[Dict[str, Any]] = []
        self._meta: Dict[str, Any] = {}

    async def load_tasks(self, owner_id: str) -> List[Dict[str, Any]]:
        records = [r for r in self._tasks.values() if r.get("userId") == owner_id]
        records.sort(key=lambda r: (r.get("createdAt") or "", r["_id"]))
        return copy.deepcopy(records)

    async def load_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        record = self._tasks.get(task_id)
        return copy.deepcopy(record) if record else None

    async def save_tasks(self, records: List[Dict[str, Any]]):
        for record in records:
            self._tasks[record["_id"]] = copy.deepcopy(record)

    async def delete_task(self, task_id: str) -> bool:
        return self._tasks.pop(task_id, None) is not None

    async def clear_tasks(self, owner_id: str) -> int:
        doomed = [tid for tid, r in self._tasks.items() if r.get("userId") == owner_id]
        for task_id in doomed:
            del self._tasks[task_id]
        return len(doomed)

    async def append_operation(self, record: Dict[str, Any]):
        self._operations.append(copy.deepcopy(record))

    async def load_operations(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._operations)

    async def update_operation(self, record: Dict[str, Any]) -> bool:
        for index, existing in enumerate(self._operations):
            if existing["id"] == record["id"]:
                self._operations[index] = copy.deepcopy(record)
                return True
        return False

    async def delete_operation(self, op_id: str) -> bool:
        before = len(self._operations)
        self._operations = [r for r in self._operations if r["id"] != op_id]
        return len(self._operations) < before

    async def clear_operations(self) -> int:
        count = len(self._operations)
        self._operations = []
        return count

    async def get_meta(self, key: str) -> Optional[Any]:
        return copy.deepcopy(self._meta.get(key))

    async def set_meta(self, key: str, value: Any):
        self._meta[key] = copy.deepcopy(value)

"""Data models for the offline synchronization subsystem.

This module contains the queued operation record that the local queue
persists, the synchronizer's state enumeration, and the result and status
structures reported back to callers.
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .utils.datetime import now_utc, parse_iso, to_iso_string


class OperationType(Enum):
    """Kinds of mutation recorded in the operation queue."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class SyncState(Enum):
    """States of the synchronizer."""
    IDLE = "idle"
    SYNCING = "syncing"
    OFFLINE = "offline"


class SyncStatus(Enum):
    """Outcome of a sync pass."""
    SUCCESS = "success"
    PARTIAL = "partial"
    OFFLINE = "offline"
    SKIPPED = "skipped"
    NO_CHANGES = "no_changes"
    ERROR = "error"


def new_operation_id(op_type: OperationType) -> str:
    """Generate a unique operation id."""
    return f"{op_type.value}_{uuid.uuid4().hex}"


@dataclass
class QueuedOperation:
    """A local mutation that the server has not acknowledged yet."""

    id: str
    type: OperationType
    task_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    enqueued_at: datetime = field(default_factory=now_utc)
    attempts: int = 0
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "type": self.type.value,
            "taskId": self.task_id,
            "payload": dict(self.payload),
            "timestamp": to_iso_string(self.enqueued_at),
            "attempts": self.attempts,
            "lastError": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueuedOperation":
        """Create from dictionary representation."""
        return cls(
            id=data["id"],
            type=OperationType(data["type"]),
            task_id=data["taskId"],
            payload=data.get("payload") or {},
            enqueued_at=parse_iso(data.get("timestamp")) or now_utc(),
            attempts=data.get("attempts", 0),
            last_error=data.get("lastError"),
        )


@dataclass
class SyncResult:
    """Result of a sync pass."""

    status: SyncStatus
    created: int = 0
    updated: int = 0
    deleted: int = 0
    cancelled: int = 0
    dropped: int = 0
    abandoned: int = 0
    failed: int = 0
    deferred: int = 0
    inserted: int = 0
    overwritten: int = 0
    errors: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=now_utc)
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    @property
    def operations_applied(self) -> int:
        return self.created + self.updated + self.deleted

    def has_changes(self) -> bool:
        return bool(
            self.operations_applied or self.cancelled or self.dropped
            or self.abandoned or self.inserted or self.overwritten
        )

    def add_error(self, error: str):
        """Add an error to the result."""
        self.errors.append(error)

    def complete(self):
        """Mark the pass as completed and calculate duration."""
        self.completed_at = now_utc()
        self.duration_seconds = (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data = asdict(self)
        data["status"] = self.status.value
        data["started_at"] = to_iso_string(self.started_at)
        data["completed_at"] = to_iso_string(self.completed_at)
        return data


@dataclass
class SyncStatusReport:
    """Snapshot answered by the sync-status query."""

    is_online: bool
    state: SyncState
    pending_operations: int
    last_sync: Optional[datetime] = None
    storage_durable: bool = True
    storage_warning: Optional[str] = None
    consecutive_failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "isOnline": self.is_online,
            "state": self.state.value,
            "pendingOperations": self.pending_operations,
            "lastSync": to_iso_string(self.last_sync),
            "storageDurable": self.storage_durable,
            "storageWarning": self.storage_warning,
            "consecutiveFailures": self.consecutive_failures,
        }

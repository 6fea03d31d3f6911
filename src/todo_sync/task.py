"""Task record model shared by the local store, the queue and the gateway."""

import secrets
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .utils.datetime import bump_timestamp, ensure_aware, now_utc, parse_iso, to_iso_string


TEMP_ID_PREFIX = "offline_"


class Priority(Enum):
    """Task priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Category(Enum):
    """Planning horizon of a task."""
    SHORT_TERM = "short-term"
    LONG_TERM = "long-term"
    CUSTOM = "custom"


class Frequency(Enum):
    """How often a task repeats."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ONCE = "once"


def new_temporary_id() -> str:
    """Generate an identifier for a task the server has not confirmed yet."""
    return f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def is_temporary_id(task_id: Optional[str]) -> bool:
    """Check whether an id belongs to the unconfirmed namespace."""
    return bool(task_id) and str(task_id).startswith(TEMP_ID_PREFIX)


def _unique_tags(tags) -> List[str]:
    seen: List[str] = []
    for tag in tags or []:
        if tag not in seen:
            seen.append(tag)
    return seen


@dataclass
class Task:
    """A single to-do item as held locally and on the server."""

    id: str
    owner_id: str
    title: str
    description: Optional[str] = None

    completed: bool = False
    completed_at: Optional[datetime] = None

    priority: Priority = Priority.MEDIUM
    category: Category = Category.SHORT_TERM
    frequency: Frequency = Frequency.ONCE
    due_date: Optional[datetime] = None
    tags: List[str] = field(default_factory=list)

    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    # True until the server has acknowledged the record
    is_unconfirmed: bool = False

    def __post_init__(self):
        """Normalize enums, timestamps and tags."""
        self.priority = Priority(getattr(self.priority, "value", self.priority))
        self.category = Category(getattr(self.category, "value", self.category))
        self.frequency = Frequency(getattr(self.frequency, "value", self.frequency))
        self.created_at = ensure_aware(self.created_at)
        self.updated_at = ensure_aware(self.updated_at)
        self.due_date = ensure_aware(self.due_date)
        self.completed_at = ensure_aware(self.completed_at)
        self.tags = _unique_tags(self.tags)

    @classmethod
    def new_local(cls, owner_id: str, payload: Dict[str, Any]) -> "Task":
        """Build an unconfirmed task from a validated create payload."""
        now = now_utc()
        task = cls.from_dict({
            **payload,
            "_id": new_temporary_id(),
            "userId": owner_id,
        })
        task.created_at = now
        task.updated_at = now
        task.is_unconfirmed = True
        return task

    def apply_changes(self, changes: Dict[str, Any]) -> "Task":
        """Return a copy with a validated update payload applied.

        The completion timestamp follows the completion flag the same way the
        server computes it, and updated_at moves strictly forward.
        """
        updated = replace(self, tags=list(self.tags))

        for key, value in changes.items():
            if key == "title":
                updated.title = value
            elif key == "description":
                updated.description = value
            elif key == "priority":
                updated.priority = Priority(value)
            elif key == "category":
                updated.category = Category(value)
            elif key == "frequency":
                updated.frequency = Frequency(value)
            elif key == "dueDate":
                updated.due_date = parse_iso(value)
            elif key == "tags":
                updated.tags = _unique_tags(value)
            elif key == "completed":
                if value and not self.completed:
                    updated.completed_at = now_utc()
                elif not value:
                    updated.completed_at = None
                updated.completed = value

        updated.updated_at = bump_timestamp(self.updated_at)
        return updated

    def is_overdue(self) -> bool:
        """Check if the task is overdue."""
        if self.due_date and not self.completed:
            return now_utc() > self.due_date
        return False

    def is_newer_than(self, other: "Task") -> bool:
        """Last-write-wins comparison on updated_at."""
        return self.updated_at > other.updated_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert the Task to its wire representation."""
        return {
            "_id": self.id,
            "userId": self.owner_id,
            "title": self.title,
            "description": self.description,
            "completed": self.completed,
            "completedAt": to_iso_string(self.completed_at),
            "priority": self.priority.value,
            "category": self.category.value,
            "frequency": self.frequency.value,
            "dueDate": to_iso_string(self.due_date),
            "tags": list(self.tags),
            "createdAt": to_iso_string(self.created_at),
            "updatedAt": to_iso_string(self.updated_at),
            "isOffline": self.is_unconfirmed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Create a Task from its wire representation.

        Server payloads carry ``_id``; ``id`` is accepted as a fallback since
        the server also serializes the virtual. Missing timestamps default to
        now so a partial record still orders sensibly.
        """
        owner = data.get("userId", "")
        if isinstance(owner, dict):
            owner = owner.get("_id", "")

        return cls(
            id=str(data.get("_id") or data.get("id") or ""),
            owner_id=str(owner or ""),
            title=data.get("title", ""),
            description=data.get("description"),
            completed=bool(data.get("completed", False)),
            completed_at=parse_iso(data.get("completedAt")),
            priority=Priority(data.get("priority") or "medium"),
            category=Category(data.get("category") or "short-term"),
            frequency=Frequency(data.get("frequency") or "once"),
            due_date=parse_iso(data.get("dueDate")),
            tags=data.get("tags") or [],
            created_at=parse_iso(data.get("createdAt")) or now_utc(),
            updated_at=parse_iso(data.get("updatedAt")) or now_utc(),
            is_unconfirmed=bool(data.get("isOffline", False)),
        )

"""todo-sync - offline-first synchronization for a to-do list client."""

__version__ = "0.1.0"

from .errors import SyncError
from .session import SyncContext
from .sync_models import SyncResult, SyncState, SyncStatus
from .task import Category, Frequency, Priority, Task

__all__ = [
    "Task",
    "Priority",
    "Category",
    "Frequency",
    "SyncContext",
    "SyncError",
    "SyncResult",
    "SyncState",
    "SyncStatus",
    "__version__",
]

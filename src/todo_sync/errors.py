"""Exception hierarchy for local persistence and synchronization."""

from typing import Optional


class SyncError(Exception):
    """Base exception for todo_sync operations."""
    pass


class TaskNotFoundError(SyncError):
    """A mutation referenced a task the local store does not hold."""
    
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class LocalStorageUnavailable(SyncError):
    """The persistent storage medium cannot be opened or written."""
    pass


class NetworkUnavailable(SyncError):
    """The server could not be reached at all."""
    pass


class GatewayError(SyncError):
    """The server was reached but the request did not succeed."""
    
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class GatewayTimeout(GatewayError):
    """A request did not complete within its timeout."""
    pass


class GatewayServerError(GatewayError):
    """The server answered with a 5xx status."""
    pass


class GatewayRejected(GatewayError):
    """The server refused the request with a 4xx status other than 404."""
    pass


class AuthenticationError(GatewayRejected):
    """The bearer credential was missing, invalid or expired."""
    pass


class GatewayNotFound(GatewayError):
    """The target task does not exist on the server."""
    
    def __init__(self, message: str = "Task not found"):
        super().__init__(message, status_code=404)

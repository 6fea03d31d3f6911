"""Remote task gateway: the only network-facing piece of the sync subsystem.

The abstract ``RemoteTaskGateway`` is what the synchronizer talks to; the
``HttpTaskGateway`` implementation speaks the task server's REST API and maps
transport and status failures onto the error taxonomy in ``todo_sync.errors``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

from ..errors import (
    AuthenticationError,
    GatewayError,
    GatewayNotFound,
    GatewayRejected,
    GatewayServerError,
    GatewayTimeout,
    NetworkUnavailable,
)
from ..task import Task


logger = logging.getLogger(__name__)


TokenProvider = Callable[[], Optional[str]]


class RemoteTaskGateway(ABC):
    """CRUD interface of the task server."""

    @abstractmethod
    async def list_tasks(self, owner_id: str, filters: Optional[Dict[str, Any]] = None) -> List[Task]:
        """Fetch the full current task list of the authenticated owner.

        Raises:
            NetworkUnavailable: If the server cannot be reached
            GatewayError: If the server answers with an error
        """

    @abstractmethod
    async def create_task(self, payload: Dict[str, Any]) -> Task:
        """Create a task; the server assigns id, createdAt and updatedAt."""

    @abstractmethod
    async def update_task(self, task_id: str, payload: Dict[str, Any]) -> Task:
        """Update a task; the server recomputes updatedAt and completedAt.

        Raises:
            GatewayNotFound: If the task no longer exists on the server
        """

    @abstractmethod
    async def delete_task(self, task_id: str) -> None:
        """Delete a task.

        Raises:
            GatewayNotFound: If the task no longer exists on the server
        """

    async def ping(self) -> bool:
        """Check whether the server is reachable."""
        return True

    async def close(self):
        """Release network resources."""


class HttpTaskGateway(RemoteTaskGateway):
    """Task server client over HTTP with bearer authentication."""

    def __init__(self, base_url: str, token: Union[str, TokenProvider, None] = None,
                 timeout: float = 10.0, page_size: int = 100,
                 client: Optional[httpx.AsyncClient] = None):
        """Initialize the HTTP gateway.

        Args:
            base_url: API root, e.g. ``http://localhost:5000/api``
            token: Bearer token, or a callable returning the current token
            timeout: Per-request timeout in seconds
            page_size: Page size used when listing tasks
            client: Optional preconfigured client (tests inject a mock transport)
        """
        self.base_url = base_url.rstrip("/")
        self._token = token
        self.page_size = page_size
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.logger = logging.getLogger(__name__)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        await self.client.aclose()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self._token() if callable(self._token) else self._token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return f"HTTP error! status: {response.status_code}"

    async def _request(self, method: str, endpoint: str, params: Optional[Dict[str, Any]] = None,
                       json_body: Optional[Dict[str, Any]] = None) -> Any:
        """Make an HTTP request to the task server.

        Returns:
            Decoded JSON body, or None for empty responses

        Raises:
            NetworkUnavailable: On connection failures
            GatewayTimeout: When the request times out
            GatewayNotFound: On 404
            AuthenticationError: On 401/403
            GatewayRejected: On other 4xx
            GatewayServerError: On 5xx
        """
        url = f"{self.base_url}{endpoint}"

        try:
            response = await self.client.request(
                method, url, headers=self._headers(), params=params, json=json_body
            )
        except httpx.TimeoutException as e:
            raise GatewayTimeout(f"{method} {endpoint} timed out") from e
        except (httpx.ConnectError, httpx.NetworkError) as e:
            raise NetworkUnavailable(f"Network error. Please check your connection. ({e})") from e
        except httpx.RequestError as e:
            raise GatewayError(f"{method} {endpoint} failed: {e}") from e

        status = response.status_code
        if status == 404:
            raise GatewayNotFound(self._error_message(response))
        if status in (401, 403):
            raise AuthenticationError(self._error_message(response), status_code=status)
        if 400 <= status < 500:
            raise GatewayRejected(self._error_message(response), status_code=status)
        if status >= 500:
            raise GatewayServerError(self._error_message(response), status_code=status)

        if status == 204 or not response.content:
            return None

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            return None
        return response.json()

    def _task_from_body(self, body: Any) -> Task:
        if not isinstance(body, dict):
            raise GatewayError("Server returned no task")
        data = body.get("task", body)
        if not isinstance(data, dict) or not (data.get("_id") or data.get("id")):
            raise GatewayError("Server returned a task without an id")
        return self._decode(data)

    def _decode(self, record: Dict[str, Any]) -> Task:
        try:
            return Task.from_dict(record)
        except (ValueError, TypeError, AttributeError) as e:
            raise GatewayError(f"Server returned a malformed task: {e}") from e

    async def list_tasks(self, owner_id: str, filters: Optional[Dict[str, Any]] = None) -> List[Task]:
        """Fetch every page of the owner's tasks."""
        tasks: List[Task] = []
        page = 1

        while True:
            params = {k: v for k, v in (filters or {}).items() if v not in (None, "")}
            if isinstance(params.get("completed"), bool):
                params["completed"] = "true" if params["completed"] else "false"
            params.update({"page": page, "limit": self.page_size})

            body = await self._request("GET", "/tasks", params=params)
            if isinstance(body, list):
                records, pages = body, 1
            else:
                body = body or {}
                records = body.get("tasks", [])
                pages = (body.get("pagination") or {}).get("pages", 1)

            for record in records:
                task = self._decode(record)
                if not task.owner_id:
                    task.owner_id = owner_id
                tasks.append(task)

            if page >= pages or not records:
                break
            page += 1

        self.logger.debug(f"Fetched {len(tasks)} tasks from server")
        return tasks

    async def create_task(self, payload: Dict[str, Any]) -> Task:
        body = await self._request("POST", "/tasks", json_body=payload)
        return self._task_from_body(body)

    async def update_task(self, task_id: str, payload: Dict[str, Any]) -> Task:
        body = await self._request("PUT", f"/tasks/{task_id}", json_body=payload)
        return self._task_from_body(body)

    async def delete_task(self, task_id: str) -> None:
        await self._request("DELETE", f"/tasks/{task_id}")

    async def ping(self) -> bool:
        """Probe the health endpoint."""
        try:
            await self._request("GET", "/health")
            return True
        except (NetworkUnavailable, GatewayTimeout):
            return False
        except GatewayError as e:
            # The server answered, so the network is up
            self.logger.debug(f"Health check answered with an error: {e}")
            return True

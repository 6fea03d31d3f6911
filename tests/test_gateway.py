"""Tests for the HTTP task gateway against a mocked transport."""

import json

import httpx
import pytest

from todo_sync.errors import (
    AuthenticationError,
    GatewayError,
    GatewayNotFound,
    GatewayRejected,
    GatewayServerError,
    GatewayTimeout,
    NetworkUnavailable,
)
from todo_sync.sync import HttpTaskGateway


API = "http://tasks.test/api"


def server_task(task_id, title="Task", **extra):
    record = {
        "_id": task_id,
        "userId": "user1",
        "title": title,
        "completed": False,
        "priority": "medium",
        "category": "short-term",
        "frequency": "once",
        "tags": [],
        "createdAt": "2024-01-01T00:00:00.000Z",
        "updatedAt": "2024-01-01T00:00:00.000Z",
    }
    record.update(extra)
    return record


def make_gateway(handler, token="secret-token"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpTaskGateway(API, token=token, client=client, page_size=2)


class TestRequests:

    async def test_list_follows_pages(self):
        pages = {
            "1": [server_task("srv1"), server_task("srv2")],
            "2": [server_task("srv3")],
        }
        seen = []

        def handler(request):
            seen.append(dict(request.url.params))
            page = request.url.params["page"]
            return httpx.Response(200, json={
                "success": True,
                "tasks": pages[page],
                "pagination": {"page": int(page), "limit": 2, "total": 3, "pages": 2},
            })

        gateway = make_gateway(handler)
        tasks = await gateway.list_tasks("user1", {"completed": False, "search": None})
        await gateway.close()

        assert [t.id for t in tasks] == ["srv1", "srv2", "srv3"]
        assert seen[0] == {"completed": "false", "page": "1", "limit": "2"}
        assert len(seen) == 2

    async def test_create_sends_bearer_and_payload(self):
        captured = {}

        def handler(request):
            captured["auth"] = request.headers["Authorization"]
            captured["body"] = json.loads(request.content)
            captured["method"] = request.method
            return httpx.Response(201, json={"success": True, "task": server_task("srv1", "Buy milk")})

        gateway = make_gateway(handler)
        task = await gateway.create_task({"title": "Buy milk"})
        await gateway.close()

        assert task.id == "srv1"
        assert captured == {
            "auth": "Bearer secret-token",
            "body": {"title": "Buy milk"},
            "method": "POST",
        }

    async def test_token_provider_is_called_per_request(self):
        tokens = iter(["first", "second"])
        seen = []

        def handler(request):
            seen.append(request.headers.get("Authorization"))
            return httpx.Response(200, json={"task": server_task("srv1")})

        gateway = make_gateway(handler, token=lambda: next(tokens))
        await gateway.update_task("srv1", {"title": "x"})
        await gateway.update_task("srv1", {"title": "y"})
        await gateway.close()

        assert seen == ["Bearer first", "Bearer second"]

    async def test_update_and_delete_paths(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            if request.method == "DELETE":
                return httpx.Response(200, json={"success": True, "message": "Task deleted successfully"})
            return httpx.Response(200, json={"task": server_task("srv1", completed=True)})

        gateway = make_gateway(handler)
        updated = await gateway.update_task("srv1", {"completed": True})
        await gateway.delete_task("srv1")
        await gateway.close()

        assert updated.completed
        assert seen == [("PUT", "/api/tasks/srv1"), ("DELETE", "/api/tasks/srv1")]


class TestErrorMapping:

    @pytest.mark.parametrize("status,error", [
        (404, GatewayNotFound),
        (401, AuthenticationError),
        (403, AuthenticationError),
        (400, GatewayRejected),
        (422, GatewayRejected),
        (500, GatewayServerError),
        (503, GatewayServerError),
    ])
    async def test_status_mapping(self, status, error):
        gateway = make_gateway(lambda request: httpx.Response(status, json={"message": "Nope"}))

        with pytest.raises(error) as exc:
            await gateway.update_task("srv1", {"title": "x"})
        await gateway.close()

        assert str(exc.value) == "Nope"
        assert exc.value.status_code == status

    async def test_message_fallback(self):
        gateway = make_gateway(lambda request: httpx.Response(500, text="<html>oops</html>"))

        with pytest.raises(GatewayServerError, match="status: 500"):
            await gateway.delete_task("srv1")
        await gateway.close()

    async def test_connect_error_is_network_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        gateway = make_gateway(handler)
        with pytest.raises(NetworkUnavailable):
            await gateway.list_tasks("user1")
        assert await gateway.ping() is False
        await gateway.close()

    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        gateway = make_gateway(handler)
        with pytest.raises(GatewayTimeout):
            await gateway.create_task({"title": "x"})
        await gateway.close()

    async def test_ping_treats_http_errors_as_reachable(self):
        gateway = make_gateway(lambda request: httpx.Response(500))
        assert await gateway.ping() is True
        await gateway.close()

    async def test_create_without_task_body_is_an_error(self):
        gateway = make_gateway(lambda request: httpx.Response(201, json={"success": True}))
        with pytest.raises(GatewayError, match="without an id"):
            await gateway.create_task({"title": "x"})
        await gateway.close()

    async def test_unknown_enum_value_in_list_is_a_gateway_error(self):
        def handler(request):
            return httpx.Response(200, json={
                "success": True,
                "tasks": [server_task("srv1", priority="urgent")],
                "pagination": {"page": 1, "limit": 2, "total": 1, "pages": 1},
            })

        gateway = make_gateway(handler)
        with pytest.raises(GatewayError, match="malformed task"):
            await gateway.list_tasks("user1")
        await gateway.close()

    async def test_malformed_task_body_is_a_gateway_error(self):
        body = {"task": server_task("srv1", category="someday")}
        gateway = make_gateway(lambda request: httpx.Response(200, json=body))
        with pytest.raises(GatewayError, match="malformed task"):
            await gateway.update_task("srv1", {"title": "x"})
        await gateway.close()

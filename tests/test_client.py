"""
Tests for the async API client and the polling chat session.
"""
import asyncio
import json
from datetime import datetime

import httpx
import pytest
from httpx import ASGITransport

from finops_api.client import ApiClient, ApiError, ChatMessage, ChatSession, conversation_key
from finops_api.main import app
from finops_api.models import User

from conftest import TEST_PASSWORD


def _mock_api(handler) -> ApiClient:
    return ApiClient("http://api.finops.app", access_token="old-token", session_id="s1",
                     transport=httpx.MockTransport(handler))


def _app_api() -> ApiClient:
    return ApiClient("http://test", transport=ASGITransport(app=app))


def _server_message(message_id: str, sender_id: str, content: str, created_at: str) -> dict:
    return {
        "id": message_id,
        "conversation_id": "c1",
        "sender_id": sender_id,
        "content": content,
        "image_url": None,
        "created_at": created_at,
        "reactions": [],
        "read_by": [],
    }


class TestApiClient:

    @pytest.mark.asyncio
    async def test_sends_auth_and_tenant_headers(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        api = _mock_api(handler)
        api.tenant_id = "tenant-1"
        async with api:
            assert await api.get("/api/budgets") == {"ok": True}

        assert seen[0].headers["Authorization"] == "Bearer old-token"
        assert seen[0].headers["X-Tenant-ID"] == "tenant-1"

    @pytest.mark.asyncio
    async def test_refreshes_once_on_401(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append((request.method, request.url.path, request.headers.get("Authorization")))
            if request.url.path == "/api/auth/refresh":
                assert json.loads(request.content) == {"session_id": "s1"}
                return httpx.Response(200, json={
                    "access_token": "new-token",
                    "session_id": "s1",
                    "user": {"tenant_id": "tenant-1"},
                })
            if request.headers["Authorization"] == "Bearer old-token":
                return httpx.Response(401, json={"detail": "Invalid or expired token"})
            return httpx.Response(200, json={"budgets": []})

        async with _mock_api(handler) as api:
            result = await api.get("/api/budgets")

            assert result == {"budgets": []}
            assert api.access_token == "new-token"
            assert api.tenant_id == "tenant-1"
        assert [c[1] for c in calls] == ["/api/budgets", "/api/auth/refresh", "/api/budgets"]

    @pytest.mark.asyncio
    async def test_failed_refresh_raises_original_401(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/auth/refresh":
                return httpx.Response(404, json={"detail": "Session not found: s1"})
            return httpx.Response(401, json={"detail": "Invalid or expired token"})

        async with _mock_api(handler) as api:
            with pytest.raises(ApiError) as exc_info:
                await api.get("/api/budgets")

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Invalid or expired token"

    @pytest.mark.asyncio
    async def test_no_session_no_refresh(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(401, json={"detail": "Not authenticated"})

        async with ApiClient("http://api.finops.app", transport=httpx.MockTransport(handler)) as api:
            with pytest.raises(ApiError):
                await api.get("/api/budgets")

        assert paths == ["/api/budgets"]

    @pytest.mark.asyncio
    async def test_empty_body_and_plain_text_errors(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "DELETE":
                return httpx.Response(204)
            return httpx.Response(502, text="Bad gateway")

        async with _mock_api(handler) as api:
            assert await api.delete("/api/budgets/b1") is None
            with pytest.raises(ApiError) as exc_info:
                await api.get("/api/budgets")

        assert exc_info.value.status_code == 502
        assert exc_info.value.detail == "Bad gateway"

    @pytest.mark.asyncio
    async def test_login_against_app(self, admin: User, tenant):
        async with _app_api() as api:
            data = await api.login("admin@acme.com", TEST_PASSWORD)
            me = await api.get("/api/users/me")

            assert api.session_id == data["session_id"]
            assert api.tenant_id == tenant.id
            assert me["id"] == admin.id


class TestChatSessionMerge:

    @pytest.mark.asyncio
    async def test_poll_replaces_pending_message(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"messages": [
                _server_message("m1", "u1", "hello", "2024-05-01T10:00:00"),
            ]})

        async with _mock_api(handler) as api:
            session = ChatSession(api, "u1", "u2")
            session._messages["temp-1"] = ChatMessage(
                id="temp-1", sender_id="u1", content="hello", created_at=datetime(2024, 5, 1, 9, 59), pending=True
            )

            added = await session.poll_once()

        assert added == []
        assert [(m.id, m.pending) for m in session.messages] == [("m1", False)]

    @pytest.mark.asyncio
    async def test_poll_sends_since_of_last_confirmed(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(dict(request.url.params))
            return httpx.Response(200, json={"messages": []})

        async with _mock_api(handler) as api:
            session = ChatSession(api, "u1", "u2")
            session._merge([ChatMessage(**_server_message("m1", "u2", "hi", "2024-05-01T10:00:00"))])
            session._messages["temp-1"] = ChatMessage(
                id="temp-1", sender_id="u1", content="later", created_at=datetime(2024, 5, 2), pending=True
            )

            await session.poll_once()

        assert seen == [{"since": "2024-05-01T10:00:00"}]

    @pytest.mark.asyncio
    async def test_failed_send_drops_pending(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"detail": "Internal server error"})

        async with _mock_api(handler) as api:
            session = ChatSession(api, "u1", "u2")
            with pytest.raises(ApiError):
                await session.send("will fail")

        assert session.messages == []

    @pytest.mark.asyncio
    async def test_concurrent_sends_keep_distinct_pending(self):
        seen_pending = []

        async def handler(request: httpx.Request) -> httpx.Response:
            seen_pending.append([m.id for m in session.messages if m.pending])
            number = len(seen_pending)
            await asyncio.sleep(0.01)
            content = json.loads(request.content)["content"]
            return httpx.Response(201, json=_server_message(f"m{number}", "u1", content, f"2024-05-01T10:00:0{number}"))

        async with _mock_api(handler) as api:
            session = ChatSession(api, "u1", "u2")
            await asyncio.gather(session.send("first"), session.send("second"))

        assert len(seen_pending[1]) == 2
        assert len(set(seen_pending[1])) == 2
        assert all(pending_id.startswith("temp-") for pending_id in seen_pending[1])
        assert sorted(m.content for m in session.messages) == ["first", "second"]
        assert not any(m.pending for m in session.messages)


class TestChatSessionCache:

    @pytest.mark.asyncio
    async def test_offline_falls_back_to_cache(self, tmp_path):
        key = conversation_key("u1", "u2")
        (tmp_path / f"messages_{key}.json").write_text(json.dumps([
            _server_message("m1", "u2", "cached", "2024-05-01T10:00:00"),
        ]))

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        async with _mock_api(handler) as api:
            session = ChatSession(api, "u1", "u2", cache_dir=str(tmp_path))
            messages = await session.load()

        assert session.offline is True
        assert [m.content for m in messages] == ["cached"]

    @pytest.mark.asyncio
    async def test_client_errors_are_not_masked(self, tmp_path):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"detail": "Not a participant in this conversation"})

        async with _mock_api(handler) as api:
            session = ChatSession(api, "u1", "u2", cache_dir=str(tmp_path))
            with pytest.raises(ApiError) as exc_info:
                await session.load()

        assert exc_info.value.status_code == 403
        assert session.offline is False

    @pytest.mark.asyncio
    async def test_corrupt_cache_is_ignored(self, tmp_path):
        key = conversation_key("u1", "u2")
        (tmp_path / f"messages_{key}.json").write_text("{not json")

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"detail": "Service unavailable"})

        async with _mock_api(handler) as api:
            session = ChatSession(api, "u1", "u2", cache_dir=str(tmp_path))
            messages = await session.load()

        assert session.offline is True
        assert messages == []


class TestChatSessionAgainstApp:

    @pytest.mark.asyncio
    async def test_send_and_poll(self, admin: User, viewer: User, tmp_path):
        async with _app_api() as admin_api, _app_api() as viewer_api:
            await admin_api.login("admin@acme.com", TEST_PASSWORD)
            await viewer_api.login("viewer@acme.com", TEST_PASSWORD)

            admin_chat = ChatSession(admin_api, admin.id, viewer.id, cache_dir=str(tmp_path / "admin"))
            viewer_chat = ChatSession(viewer_api, viewer.id, admin.id, cache_dir=str(tmp_path / "viewer"))
            await viewer_chat.load()

            sent = await admin_chat.send("  Forecast is over budget  ")
            received = await viewer_chat.poll_once()
            again = await viewer_chat.poll_once()

        assert sent.content == "Forecast is over budget"
        assert sent.pending is False
        assert [m.id for m in received] == [sent.id]
        assert again == []
        cached = json.loads((tmp_path / "viewer" / f"messages_{viewer_chat.key}.json").read_text())
        assert [m["id"] for m in cached] == [sent.id]

    @pytest.mark.asyncio
    async def test_background_polling(self, admin: User, viewer: User):
        async with _app_api() as admin_api, _app_api() as viewer_api:
            await admin_api.login("admin@acme.com", TEST_PASSWORD)
            await viewer_api.login("viewer@acme.com", TEST_PASSWORD)
            viewer_chat = ChatSession(viewer_api, viewer.id, admin.id, poll_interval=0.01)

            await ChatSession(admin_api, admin.id, viewer.id).send("ping")
            viewer_chat.start_polling()
            await asyncio.sleep(0.1)
            await viewer_chat.stop_polling()

        assert [m.content for m in viewer_chat.messages] == ["ping"]

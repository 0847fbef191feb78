"""
tests.test_client_store
~~~~~~~~~~~~~~~~~~~~~~~

客户端持久化测试：本地键值存储、偏好设置、会话存储 REST 客户端。
"""
from __future__ import annotations

import json

import httpx
import pytest

from texthooker.client.preferences import CapturePreferences, LocalStore
from texthooker.client.store_api import SessionStoreClient
from texthooker.core.errors import NotAuthenticated, StoreError
from texthooker.schemas.relay import LineData


class TestLocalStore:
    """测试 JSON 文件键值存储。"""

    def test_persists_across_instances(self, tmp_path) -> None:
        path = tmp_path / "state.json"
        LocalStore(path).set("timer_m1", 42)

        assert LocalStore(path).get("timer_m1") == 42

    def test_delete(self, tmp_path) -> None:
        store = LocalStore(tmp_path / "state.json")
        store.set("k", "v")

        store.delete("k")

        assert LocalStore(tmp_path / "state.json").get("k") is None

    def test_corrupt_file_ignored(self, tmp_path) -> None:
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")

        assert LocalStore(path).get("anything", "default") == "default"

    def test_memory_only(self) -> None:
        store = LocalStore()
        store.set("k", 1)

        assert store.get("k") == 1


class TestCapturePreferences:
    """测试偏好默认值与读写。"""

    def test_defaults(self) -> None:
        prefs = CapturePreferences()

        assert prefs.auto_pause_timeout == 120
        assert prefs.autostart_timer_by_line is False
        assert prefs.autostart_timer_by_paste is False
        assert prefs.allow_new_line_during_pause is True
        assert prefs.allow_paste_during_pause is True
        assert prefs.continuous_reconnect is False
        assert prefs.reconnect_interval == 3
        assert prefs.websocket_url == "ws://localhost:6677"

    def test_round_trip_through_store(self) -> None:
        store = LocalStore()
        CapturePreferences(font_size=30, vertical=True).save(store)

        loaded = CapturePreferences.load(store)

        assert loaded.font_size == 30
        assert loaded.vertical is True

    def test_invalid_stored_value_falls_back(self) -> None:
        store = LocalStore()
        store.set("preferences", {"font_size": -1})

        assert CapturePreferences.load(store) == CapturePreferences()


def _envelope(data) -> dict:
    return {"code": 200, "data": data, "msg": "success"}


class TestSessionStoreClient:
    """测试 REST 客户端（httpx MockTransport）。"""

    @pytest.mark.asyncio
    async def test_get_session_sends_bearer(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_envelope({"mediaId": "m 1", "timerSeconds": 7, "lines": []}))

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = SessionStoreClient("http://api/api/text-sessions/", token="tok", client=http)

        session = await client.get_session("m 1")

        assert session.timer_seconds == 7
        assert seen[0].url.raw_path == b"/api/text-sessions/m%201"
        assert seen[0].headers["Authorization"] == "Bearer tok"
        await http.aclose()

    @pytest.mark.asyncio
    async def test_append_lines_body(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=_envelope({"lines": []}))

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = SessionStoreClient("http://api/x", client=http)

        await client.append_lines("m1", [LineData(id="a", text="猫", japanese_count=1)])

        assert bodies == [{"lines": [{"id": "a", "text": "猫", "charsCount": 1}]}]
        await http.aclose()

    @pytest.mark.asyncio
    async def test_update_timer(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "PATCH"
            assert json.loads(request.content) == {"timerSeconds": 30}
            return httpx.Response(200, json=_envelope({"timerSeconds": 30}))

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        assert await SessionStoreClient("http://api/x", client=http).update_timer("m1", 30) == 30
        await http.aclose()

    @pytest.mark.asyncio
    async def test_unauthorized_raises(self) -> None:
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(401, json={"code": 401, "data": None, "msg": "x"})),
        )

        with pytest.raises(NotAuthenticated):
            await SessionStoreClient("http://api/x", client=http).get_session("m1")
        await http.aclose()

    @pytest.mark.asyncio
    async def test_server_error_raises_http_error(self) -> None:
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500, json={})))

        with pytest.raises(httpx.HTTPStatusError):
            await SessionStoreClient("http://api/x", client=http).room_exists("r1")
        await http.aclose()

    @pytest.mark.asyncio
    async def test_non_json_success_body_raises_store_error(self) -> None:
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, text="<html>proxy</html>")),
        )

        with pytest.raises(StoreError):
            await SessionStoreClient("http://api/x", client=http).update_timer("m1", 30)
        await http.aclose()

    @pytest.mark.asyncio
    async def test_envelope_with_wrong_data_raises_store_error(self) -> None:
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json=_envelope({"seconds": 30}))),
        )

        with pytest.raises(StoreError):
            await SessionStoreClient("http://api/x", client=http).update_timer("m1", 30)
        await http.aclose()

    @pytest.mark.asyncio
    async def test_failed_envelope_code_raises_store_error(self) -> None:
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(
                lambda r: httpx.Response(200, json={"code": 500, "data": None, "msg": "db down"}),
            ),
        )

        with pytest.raises(StoreError) as exc:
            await SessionStoreClient("http://api/x", client=http).room_exists("r1")
        assert exc.value.msg == "db down"
        await http.aclose()

    @pytest.mark.asyncio
    async def test_room_exists(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/x/room/r1/exists"
            return httpx.Response(200, json=_envelope({"exists": True}))

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        assert await SessionStoreClient("http://api/x", client=http).room_exists("r1") is True
        await http.aclose()

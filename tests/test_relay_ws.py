"""
tests.test_relay_ws
~~~~~~~~~~~~~~~~~~~

广播中继 WebSocket 端点测试。
"""
from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from texthooker.api import relay_ws
from texthooker.api.relay_ws import handle_frame
from texthooker.core.rate_limit import LineRateLimiter
from texthooker.core.security import create_token
from texthooker.services.room_registry import RoomRegistry


@pytest.fixture()
def client() -> Iterator[TestClient]:
    app = FastAPI()
    app.include_router(relay_ws.router)
    app.state.registry = RoomRegistry(line_limiter=LineRateLimiter(0))
    with TestClient(app) as c:
        yield c


def _events(ws, count: int) -> list[dict]:
    return [ws.receive_json() for _ in range(count)]


class TestHandleFrame:
    """测试单帧分发。"""

    @pytest.mark.asyncio
    async def test_invalid_json(self, connection_factory) -> None:
        conn = connection_factory("c")

        await handle_frame(RoomRegistry(), conn, "not json")

        assert conn.websocket.events() == [("error_message", "invalid frame")]

    @pytest.mark.asyncio
    async def test_unknown_event(self, connection_factory) -> None:
        conn = connection_factory("c")

        await handle_frame(RoomRegistry(), conn, '{"event": "dance", "data": null}')

        assert conn.websocket.events() == [("error_message", "unknown event")]

    @pytest.mark.asyncio
    async def test_admission_error_reported(self, connection_factory) -> None:
        conn = connection_factory("c")

        await handle_frame(RoomRegistry(), conn, '{"event": "join_room", "data": "missing"}')

        assert conn.websocket.events() == [("error_message", "room not found")]


class TestRelayEndpoint:
    """端到端：主持人与访客通过同一个应用实例通信。"""

    def test_host_and_guest_session(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/relay") as host:
            host.send_json({"event": "join_room", "data": {"roomId": "r1", "role": "host"}})
            created, joined, members = _events(host, 3)
            assert created["event"] == "room_created"
            assert created["data"]["hostToken"]
            assert joined == {"event": "room_joined", "data": {"role": "host", "roomId": "r1"}}
            assert members["event"] == "room_users_update"

            with client.websocket_connect("/ws/relay") as guest:
                guest.send_json({"event": "join_room", "data": "r1"})
                names = [frame["event"] for frame in _events(guest, 3)]
                assert names == ["room_joined", "load_history", "room_users_update"]
                update = host.receive_json()
                assert update["event"] == "room_users_update"
                assert len(update["data"]) == 2

                for i in range(3):
                    host.send_json(
                        {
                            "event": "send_line",
                            "data": {"roomId": "r1", "lineData": {"id": f"l{i}", "text": "テスト"}},
                        },
                    )
                received = _events(guest, 3)
                assert [frame["data"]["id"] for frame in received] == ["l0", "l1", "l2"]
                assert all(frame["event"] == "receive_line" for frame in received)

    def test_error_keeps_connection_open(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/relay") as ws:
            ws.send_json({"event": "join_room", "data": "missing"})
            assert ws.receive_json() == {"event": "error_message", "data": "room not found"}

            ws.send_json({"event": "join_room", "data": {"roomId": "r2", "role": "host"}})
            assert ws.receive_json()["event"] == "room_created"

    def test_guest_send_rejected(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/relay") as host:
            host.send_json({"event": "join_room", "data": {"roomId": "r1", "role": "host"}})
            _events(host, 3)
            with client.websocket_connect("/ws/relay") as guest:
                guest.send_json({"event": "join_room", "data": "r1"})
                _events(guest, 3)

                guest.send_json(
                    {"event": "send_line", "data": {"roomId": "r1", "lineData": {"id": "x", "text": "x"}}},
                )

                assert guest.receive_json() == {
                    "event": "error_message",
                    "data": "only the host can send lines",
                }

    def test_authenticated_identity_in_members(self, client: TestClient) -> None:
        token = create_token("u1", "alice")
        with client.websocket_connect("/ws/relay", headers={"Authorization": f"Bearer {token}"}) as ws:
            ws.send_json({"event": "join_room", "data": {"roomId": "r1", "role": "host"}})
            members = _events(ws, 3)[2]["data"]

        assert members[0]["username"] == "alice"
        assert members[0]["userId"] == "u1"

"""
texthooker.services.connection
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

中继侧的单个 WebSocket 连接封装：连接 ID、可选的用户身份、
当前所在房间，以及按协议信封发送事件的能力。
"""
from __future__ import annotations

import uuid
from typing import Any

from fastapi import WebSocket

from texthooker.core.security import CurrentUser
from texthooker.schemas.relay import encode_event


class RelayConnection:
    """一个接入中继的客户端连接。

    Attributes:
        websocket: 底层 FastAPI WebSocket。
        id: 连接唯一标识，出现在成员快照中。
        user: 握手阶段认证得到的用户（匿名时为 None）。
        room_id: 当前已被准入的房间，未加入时为 None。
    """

    def __init__(
        self,
        websocket: WebSocket,
        user: CurrentUser | None = None,
        connection_id: str | None = None,
    ) -> None:
        self.websocket = websocket
        self.id = connection_id or uuid.uuid4().hex
        self.user = user
        self.room_id: str | None = None

    async def send_text(self, message: str) -> None:
        await self.websocket.send_text(message)

    async def send_event(self, event: str, data: Any = None) -> None:
        """按 ``{"event", "data"}`` 信封发送一个事件。"""
        await self.websocket.send_text(encode_event(event, data))

    def __repr__(self) -> str:
        return f"RelayConnection(id={self.id!r}, room_id={self.room_id!r})"

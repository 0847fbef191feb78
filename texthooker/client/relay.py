"""
texthooker.client.relay
~~~~~~~~~~~~~~~~~~~~~~~

广播中继的客户端连接（websockets）。

打开后首先发送 ``join_room``，之后:
  - 读任务把收到的每个事件交给 ``on_event(event, data)``
  - 写任务按入队顺序逐帧发送，``send_line`` 只入队、不阻塞调用方
"""
from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from contextlib import suppress
from typing import Any

from websockets.asyncio.client import connect
from websockets.exceptions import WebSocketException

from texthooker.core.logging import get_logger
from texthooker.schemas.relay import (
    JOIN_ROOM,
    SEND_LINE,
    JoinRoomPayload,
    LineData,
    SendLinePayload,
    decode_event,
    encode_event,
)

logger = get_logger(__name__)


class RelayClient:
    """一条到中继的连接，对应一次房间会话。"""

    def __init__(
        self,
        url: str,
        on_event: Callable[[str, Any], Any],
        *,
        token: str | None = None,
        on_closed: Callable[[], Any] | None = None,
        connect_factory: Callable[..., Any] = connect,
    ) -> None:
        self.url = url
        self.on_event = on_event
        self.on_closed = on_closed
        self.token = token
        self._connect = connect_factory
        self._outbox: asyncio.Queue[str] = asyncio.Queue()
        self._reader: asyncio.Task | None = None
        self.connected = False

    @property
    def active(self) -> bool:
        return self._reader is not None and not self._reader.done()

    def open(self, payload: JoinRoomPayload) -> asyncio.Task:
        """连接中继并加入房间。"""
        if self.active:
            raise RuntimeError("relay connection already open")
        self._outbox.put_nowait(encode_event(JOIN_ROOM, payload))
        self._reader = asyncio.create_task(self._run(), name=f"relay-{payload.room_id}")
        return self._reader

    def send_line(self, room_id: str, line: LineData) -> None:
        """入队一行；连接已结束时直接丢弃。"""
        if not self.active:
            logger.debug("中继连接未打开，丢弃待发送行 | room=%s | line=%s", room_id, line.id)
            return
        self._outbox.put_nowait(encode_event(SEND_LINE, SendLinePayload(room_id=room_id, line_data=line)))

    async def _run(self) -> None:
        kwargs: dict[str, Any] = {}
        if self.token:
            kwargs["additional_headers"] = {"Authorization": f"Bearer {self.token}"}
        try:
            async with self._connect(self.url, **kwargs) as ws:
                self.connected = True
                writer = asyncio.create_task(self._write_loop(ws), name="relay-writer")
                try:
                    async for message in ws:
                        await self._handle(message)
                finally:
                    writer.cancel()
                    with suppress(asyncio.CancelledError):
                        await writer
        except (OSError, WebSocketException) as e:
            logger.warning("中继连接失败 | url=%s | %s", self.url, e)
        finally:
            self.connected = False
            if self.on_closed is not None:
                self.on_closed()

    async def _write_loop(self, ws: Any) -> None:
        while True:
            frame = await self._outbox.get()
            await ws.send(frame)

    async def _handle(self, message: str | bytes) -> None:
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")
        try:
            event, data = decode_event(message)
        except ValueError as e:
            logger.warning("中继帧格式错误，已忽略: %s", e)
            return
        result = self.on_event(event, data)
        if inspect.isawaitable(result):
            await result

    async def close(self) -> None:
        reader, self._reader = self._reader, None
        if reader is None or reader.done():
            return
        reader.cancel()
        # 事件处理器内部关闭自身连接时不能等待自己
        if reader is asyncio.current_task():
            return
        with suppress(asyncio.CancelledError):
            await reader

"""
texthooker.client.bridge
~~~~~~~~~~~~~~~~~~~~~~~~

本地采集桥接连接（websockets）。

状态: ``disconnected → connecting → connected``，失败时进入 ``error``。
重连由唯一持有的一个后台任务负责：开启后每隔 ``reconnect_interval``
秒检查一次，只有在没有活动连接时才发起新尝试，因此任何时刻最多
一个连接尝试在进行。
"""
from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import suppress
from enum import Enum
from typing import Any

from websockets.asyncio.client import connect
from websockets.exceptions import WebSocketException

from texthooker.core.logging import get_logger

logger = get_logger(__name__)


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class BridgeConnection:
    """到本地采集桥接的 WebSocket 连接。

    Args:
        url: 桥接地址，默认 ``ws://localhost:6677``。
        on_message: 每收到一条文本消息调用一次；处理器抛出的异常只记录日志。
        connect_factory: 打开连接的工厂，签名同 ``websockets.asyncio.client.connect``。
    """

    def __init__(
        self,
        url: str,
        on_message: Callable[[str], Any],
        *,
        reconnect_interval: float = 3.0,
        continuous_reconnect: bool = False,
        on_status: Callable[[ConnectionStatus], Any] | None = None,
        connect_factory: Callable[..., Any] = connect,
    ) -> None:
        self.url = url
        self.on_message = on_message
        self.on_status = on_status
        self.reconnect_interval = reconnect_interval
        self._connect = connect_factory
        self._status = ConnectionStatus.DISCONNECTED
        self._reader: asyncio.Task | None = None
        self._retry: asyncio.Task | None = None
        self._continuous = continuous_reconnect

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def continuous_reconnect(self) -> bool:
        return self._continuous

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self._status:
            return
        self._status = status
        logger.debug("桥接状态 -> %s | url=%s", status.value, self.url)
        if self.on_status is not None:
            self.on_status(status)

    @property
    def active(self) -> bool:
        return self._reader is not None and not self._reader.done()

    # ── 连接 ──────────────────────────────────────────────────────────

    def open(self) -> asyncio.Task:
        """发起一次连接；已有活动连接时直接返回它。"""
        if not self.active:
            self._set_status(ConnectionStatus.CONNECTING)
            self._reader = asyncio.create_task(self._read_loop(), name="bridge-reader")
        return self._reader

    async def _read_loop(self) -> None:
        try:
            async with self._connect(self.url) as ws:
                self._set_status(ConnectionStatus.CONNECTED)
                logger.info("桥接已连接 | url=%s", self.url)
                async for message in ws:
                    self._dispatch(message)
            self._set_status(ConnectionStatus.DISCONNECTED)
            logger.info("桥接已断开 | url=%s", self.url)
        except asyncio.CancelledError:
            self._set_status(ConnectionStatus.DISCONNECTED)
            raise
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            logger.warning("桥接连接失败 | url=%s | %s", self.url, e)
            self._set_status(ConnectionStatus.ERROR)

    def _dispatch(self, message: str | bytes) -> None:
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")
        try:
            self.on_message(message)
        except Exception as e:
            logger.error("桥接消息处理失败: %s", e, exc_info=True)

    async def close(self) -> None:
        """关闭当前连接（不影响持续重连开关）。"""
        reader, self._reader = self._reader, None
        if reader is not None and not reader.done():
            reader.cancel()
            with suppress(asyncio.CancelledError):
                await reader
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def toggle(self) -> ConnectionStatus:
        """已连接（或正在连接）则关闭，否则发起连接。"""
        if self.active:
            await self.close()
        else:
            self.open()
        return self._status

    # ── 持续重连 ──────────────────────────────────────────────────────

    def start(self) -> None:
        """按初始配置启动；开启了持续重连时立即开始尝试。"""
        if self._continuous:
            self.set_continuous_reconnect(True)

    def set_continuous_reconnect(self, enabled: bool) -> None:
        """运行时开关持续重连；关闭时取消唯一的重连任务。"""
        self._continuous = enabled
        if enabled:
            if self._retry is None or self._retry.done():
                self._retry = asyncio.create_task(self._retry_loop(), name="bridge-retry")
        elif self._retry is not None:
            self._retry.cancel()
            self._retry = None

    async def _retry_loop(self) -> None:
        while True:
            if not self.active:
                self.open()
            await asyncio.sleep(self.reconnect_interval)

    async def shutdown(self) -> None:
        """停止重连并关闭连接。"""
        retry, self._retry = self._retry, None
        self._continuous = False
        if retry is not None:
            retry.cancel()
            with suppress(asyncio.CancelledError):
                await retry
        await self.close()

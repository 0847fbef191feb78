"""
texthooker.services.room_broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间广播器：把同一帧并发发送给一组连接。

调用方负责串行化同一房间的多次广播（见 ``RoomRegistry``），
因此每个接收方看到的帧顺序与广播调用顺序一致。
"""
from __future__ import annotations

import asyncio
from collections.abc import Iterable

from texthooker.core.logging import get_logger
from texthooker.services.connection import RelayConnection

logger = get_logger(__name__)


class RoomBroadcaster:
    """WebSocket 帧广播器。"""

    async def broadcast(
        self,
        connections: Iterable[RelayConnection],
        message: str,
    ) -> list[RelayConnection]:
        """向给定连接广播一帧，返回发送失败的连接。

        失败的连接不在这里移除，断开流程会通过 ``RoomRegistry.leave`` 清理。
        """
        targets = list(connections)
        if not targets:
            return []
        results = await asyncio.gather(
            *(conn.send_text(message) for conn in targets),
            return_exceptions=True,
        )
        failed: list[RelayConnection] = []
        for conn, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("广播失败 | conn=%s | %s", conn.id, result)
                failed.append(conn)
        return failed

"""
texthooker.api.relay_ws
~~~~~~~~~~~~~~~~~~~~~~~

广播中继 WebSocket 端点 ``/ws/relay``。

一个连接可以加入一个房间；帧格式与事件表见 ``texthooker.schemas.relay``。
任何中继错误只以 ``error_message`` 通知发送方，是否断开由客户端决定。
"""
from __future__ import annotations

import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from texthooker.core.errors import RelayError
from texthooker.core.logging import get_logger, request_id_ctx_var
from texthooker.core.security import get_websocket_user
from texthooker.schemas.relay import ERROR_MESSAGE, JOIN_ROOM, SEND_LINE, decode_event
from texthooker.services.connection import RelayConnection
from texthooker.services.room_registry import RoomRegistry

logger = get_logger(__name__)

router: APIRouter = APIRouter()


async def handle_frame(registry: RoomRegistry, connection: RelayConnection, raw: str) -> None:
    """分发一帧客户端消息。"""
    try:
        event, data = decode_event(raw)
    except ValueError as e:
        logger.debug("无法解析的中继帧 | conn=%s | %s", connection.id, e)
        await connection.send_event(ERROR_MESSAGE, "invalid frame")
        return

    try:
        if event == JOIN_ROOM:
            await registry.join(connection, data)
        elif event == SEND_LINE:
            await registry.relay_line(connection, data)
        else:
            raise RelayError(RelayError.UNKNOWN_EVENT)
    except RelayError as e:
        await connection.send_event(ERROR_MESSAGE, e.message)


@router.websocket("/ws/relay")
async def relay_endpoint(websocket: WebSocket) -> None:
    """协作房间中继端点。

    同一连接上的帧按到达顺序逐个处理，因此主持人发出的行按原顺序转发。
    """
    ws_req_id = f"ws-{uuid.uuid4().hex[:8]}"
    token = request_id_ctx_var.set(ws_req_id)

    registry: RoomRegistry = websocket.app.state.registry
    await websocket.accept()
    connection = RelayConnection(websocket, user=get_websocket_user(websocket))
    logger.info(
        "中继连接建立 | conn=%s | user=%s",
        connection.id,
        connection.user.username if connection.user else "Anonymous",
    )

    try:
        while True:
            raw: str = await websocket.receive_text()
            await handle_frame(registry, connection, raw)
    except WebSocketDisconnect:
        pass  # 正常断开
    except Exception as e:
        logger.error("中继连接异常 | conn=%s | %s", connection.id, e, exc_info=True)
    finally:
        await registry.leave(connection)
        logger.info("中继连接断开 | conn=%s", connection.id)
        request_id_ctx_var.reset(token)

"""
texthooker.services.room_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间注册表 + 广播中继：进程内单例，挂载在 ``app.state.registry``。

职责:
  - ``join(conn, payload)``       → 按准入协议把连接加入房间
  - ``relay_line(conn, payload)`` → 把主持人的行转发给房间内其他连接
  - ``leave(conn)``               → 断开清理，房间空了就销毁
  - ``list_rooms()``              → 活跃房间摘要

同一房间 ID 的所有成员变更与广播都在该房间 ID 的锁内完成，
因此两个并发的"主持人创建同一房间"只会有一个成功，成员快照也不会乱序。
"""
from __future__ import annotations

import asyncio
import secrets
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from pydantic import ValidationError

from texthooker.core.config import settings
from texthooker.core.errors import AdmissionError, RelayError
from texthooker.core.logging import get_logger
from texthooker.core.rate_limit import LineRateLimiter
from texthooker.db.session_repository import SessionRepository
from texthooker.schemas.relay import (
    LOAD_HISTORY,
    RECEIVE_LINE,
    ROOM_CREATED,
    ROOM_JOINED,
    ROOM_USERS_UPDATE,
    JoinRoomPayload,
    LineData,
    RoomCreatedData,
    RoomJoinedData,
    SendLinePayload,
    encode_event,
)
from texthooker.schemas.text_session import RoomInfoData, RoomKey
from texthooker.services.connection import RelayConnection
from texthooker.services.room import Participant, Room
from texthooker.services.room_broadcaster import RoomBroadcaster

logger = get_logger(__name__)


def parse_join_payload(raw: Any) -> JoinRoomPayload:
    """解析 ``join_room`` 负载；裸字符串视为以访客身份加入该房间。"""
    try:
        if isinstance(raw, str):
            return JoinRoomPayload(room_id=raw)
        return JoinRoomPayload.model_validate(raw)
    except ValidationError as e:
        logger.debug("join_room 负载非法: %s", e)
        raise AdmissionError(AdmissionError.INVALID_PAYLOAD) from e


def mint_host_token() -> str:
    return secrets.token_urlsafe(24)


def _same_token(supplied: str | None, expected: str | None) -> bool:
    if not supplied or not expected:
        return False
    return secrets.compare_digest(supplied.encode(), expected.encode())


class RoomRegistry:
    """房间注册表。

    Attributes:
        repo: 会话存储，提供房间行历史与持久化；为 None 时纯内存运行。
        delete_empty_rooms: 房间清空时是否删除其持久化记录。
    """

    def __init__(
        self,
        repo: SessionRepository | None = None,
        *,
        delete_empty_rooms: bool | None = None,
        line_limiter: LineRateLimiter | None = None,
    ) -> None:
        self.repo = repo
        self.delete_empty_rooms = (
            settings.DELETE_EMPTY_ROOMS if delete_empty_rooms is None else delete_empty_rooms
        )
        self.line_limiter = line_limiter or LineRateLimiter(settings.RELAY_SEND_LINE_LIMIT)
        self.broadcaster = RoomBroadcaster()
        self._rooms: dict[str, Room] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()

    @asynccontextmanager
    async def _room_lock(self, room_id: str) -> AsyncIterator[None]:
        """按房间 ID 串行化；锁在没有等待者时释放，避免字典无限增长。"""
        lock = self._locks.setdefault(room_id, asyncio.Lock())
        self._lock_users[room_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[room_id] -= 1
            if self._lock_users[room_id] <= 0:
                del self._lock_users[room_id]
                self._locks.pop(room_id, None)

    # ── 查询 ──────────────────────────────────────────────────────────

    def get(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def list_rooms(self) -> list[RoomInfoData]:
        """列出所有活跃房间的摘要信息。"""
        return [room.info() for room in self._rooms.values()]

    # ── 加入 ──────────────────────────────────────────────────────────

    async def join(self, connection: RelayConnection, raw_payload: Any) -> Room:
        """按准入协议加入房间。

        Raises:
            AdmissionError: 房间不存在、主持人冲突或负载非法；此时不改变任何成员关系。
        """
        payload = parse_join_payload(raw_payload)
        room_id = payload.room_id

        if connection.room_id is not None and connection.room_id != room_id:
            await self.leave(connection)

        username = connection.user.username if connection.user else payload.username
        user_id = connection.user.user_id if connection.user else payload.user_id

        async with self._room_lock(room_id):
            room = self._rooms.get(room_id)
            created = False
            history: list[LineData] = []

            if payload.role == "host":
                if room is None:
                    room, created, history = await self._open_room_for_host(payload)
                elif not _same_token(payload.host_token, room.host_token):
                    logger.info("主持人冲突 | room=%s | conn=%s", room_id, connection.id)
                    raise AdmissionError(AdmissionError.HOST_COLLISION)
                else:
                    history = await self._load_history(room_id)
            else:
                if room is None:
                    logger.info("访客加入不存在的房间 | room=%s | conn=%s", room_id, connection.id)
                    raise AdmissionError(AdmissionError.ROOM_NOT_FOUND)
                history = await self._load_history(room_id)

            demoted = room.admit(
                Participant(
                    connection=connection,
                    role=payload.role,
                    username=username,
                    user_id=user_id,
                ),
            )
            self._rooms[room_id] = room
            connection.room_id = room_id

            if created:
                await connection.send_event(
                    ROOM_CREATED, RoomCreatedData(room_id=room_id, host_token=room.host_token),
                )
            await connection.send_event(
                ROOM_JOINED, RoomJoinedData(role=payload.role, room_id=room_id),
            )
            # 访客总是整体替换本地视图；主持人仅在有历史时补发
            if payload.role == "guest" or history:
                await connection.send_event(LOAD_HISTORY, history)
            for participant in demoted:
                await self._notify_demoted(room_id, participant)

            logger.info(
                "加入房间 | room=%s | conn=%s | role=%s | user=%s | 在线: %d",
                room_id, connection.id, payload.role, username or "Anonymous", room.online_count,
            )
            await self._broadcast_members(room)
        return room

    async def _open_room_for_host(
        self, payload: JoinRoomPayload,
    ) -> tuple[Room, bool, list[LineData]]:
        """内存中没有该房间时，由主持人打开它。

        持久化记录仍在（例如进程重启后）时，只有令牌匹配才能恢复；
        否则铸造新令牌并创建房间记录。
        """
        room_id = payload.room_id
        if self.repo is None:
            return Room(room_id, mint_host_token()), True, []

        try:
            record = await self.repo.get_room_record(room_id)
        except Exception as e:
            logger.warning("读取房间记录失败，按新房间处理 | room=%s | %s", room_id, e, exc_info=True)
            record = None

        if record is not None:
            if not _same_token(payload.host_token, record.host_token):
                raise AdmissionError(AdmissionError.HOST_COLLISION)
            history = [LineData.from_stored(line) for line in record.lines]
            logger.info("主持人恢复持久化房间 | room=%s | 历史 %d 行", room_id, len(history))
            return Room(room_id, record.host_token), False, history

        host_token = mint_host_token()
        try:
            created = await self.repo.create_room(room_id, host_token)
        except Exception as e:
            logger.warning("房间记录创建失败，仅在内存中创建 | room=%s | %s", room_id, e, exc_info=True)
            created = True
        if not created:
            raise AdmissionError(AdmissionError.HOST_COLLISION)
        logger.info("房间已创建 | room=%s", room_id)
        return Room(room_id, host_token), True, []

    async def _notify_demoted(self, room_id: str, participant: Participant) -> None:
        """告知被接管的原主持连接：它现在是访客。"""
        logger.info("主持人重连，原主持连接降级为访客 | room=%s | old=%s", room_id, participant.id)
        try:
            await participant.connection.send_event(
                ROOM_JOINED, RoomJoinedData(role="guest", room_id=room_id),
            )
        except Exception as e:
            logger.warning("降级通知发送失败 | room=%s | conn=%s | %s", room_id, participant.id, e)

    async def _load_history(self, room_id: str) -> list[LineData]:
        if self.repo is None:
            return []
        try:
            record = await self.repo.get_room_record(room_id)
        except Exception as e:
            logger.warning("读取房间历史失败 | room=%s | %s", room_id, e, exc_info=True)
            return []
        if record is None:
            return []
        return [LineData.from_stored(line) for line in record.lines]

    async def _broadcast_members(self, room: Room) -> None:
        message = encode_event(ROOM_USERS_UPDATE, room.members())
        await self.broadcaster.broadcast(room.connections(), message)

    # ── 转发 ──────────────────────────────────────────────────────────

    async def relay_line(self, connection: RelayConnection, raw_payload: Any) -> None:
        """持久化主持人发来的行，并按到达顺序转发给房间内其他连接。

        Raises:
            RelayError: 负载非法、发送方不是主持人或发送过快。
        """
        try:
            payload = SendLinePayload.model_validate(raw_payload)
        except ValidationError as e:
            logger.debug("send_line 负载非法: %s", e)
            raise RelayError(RelayError.INVALID_LINE) from e

        room_id = payload.room_id
        async with self._room_lock(room_id):
            room = self._rooms.get(room_id)
            participant = room.participants.get(connection.id) if room else None
            if room is None or participant is None or participant.role != "host":
                raise RelayError(RelayError.HOST_ONLY)
            if not self.line_limiter.is_allowed(connection.id):
                raise RelayError(RelayError.RATE_LIMITED)

            line = payload.line_data
            if self.repo is not None:
                try:
                    await self.repo.append_lines(RoomKey(room_id), [line.to_stored()])
                except Exception as e:
                    # 持久化失败不阻塞实时转发
                    logger.warning("房间行持久化失败 | room=%s | %s", room_id, e, exc_info=True)

            await self.broadcaster.broadcast(
                room.connections(exclude=connection),
                encode_event(RECEIVE_LINE, line),
            )

    # ── 离开 ──────────────────────────────────────────────────────────

    async def leave(self, connection: RelayConnection) -> None:
        """把连接移出所在房间；房间清空则销毁，否则广播新的成员快照。"""
        room_id = connection.room_id
        if room_id is None:
            return
        connection.room_id = None
        self.line_limiter.remove_client(connection.id)

        async with self._room_lock(room_id):
            room = self._rooms.get(room_id)
            if room is None:
                return
            participant = room.remove(connection.id)
            if participant is None:
                return

            if room.is_empty:
                del self._rooms[room_id]
                logger.info("房间已销毁（无剩余连接） | room=%s", room_id)
                if self.delete_empty_rooms and self.repo is not None:
                    try:
                        await self.repo.delete_room(room_id)
                    except Exception as e:
                        logger.warning("删除房间记录失败 | room=%s | %s", room_id, e, exc_info=True)
                return

            if participant.role == "host":
                logger.info("主持人离开，等待其携带令牌重连 | room=%s", room_id)
            logger.info("离开房间 | room=%s | conn=%s | 在线: %d", room_id, connection.id, room.online_count)
            await self._broadcast_members(room)

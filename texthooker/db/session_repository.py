"""
texthooker.db.session_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

会话存储仓库：封装 MongoDB ``text_sessions`` 集合。

一个会话一个文档，行以内嵌数组保存（插入顺序即采集顺序）::

    {
        "user_id": "...", "media_id": "...",      # 媒体会话
        "room_id": "...", "host_token": "...",    # 或独立房间会话
        "lines": [{"id", "text", "chars_count", "created_at"}],
        "timer_seconds": 0,
        "created_at": ..., "updated_at": ...,
        "expire_at": ...                          # 仅独立房间会话
    }

追加按行 ID 幂等；删除不存在的 ID 不报错；未找到的会话返回 None
由调用方视为"首次使用"。集合与索引在首次操作时惰性创建。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from texthooker.core.config import settings
from texthooker.core.logging import get_logger
from texthooker.schemas.text_session import (
    MediaKey,
    RecentSessionsData,
    RoomKey,
    SessionData,
    SessionKey,
    SessionStats,
    SessionSummary,
    StoredLine,
)

logger = get_logger(__name__)

# 集合名称
_COLLECTION_NAME = "text_sessions"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_expired(doc: dict[str, Any], now: datetime) -> bool:
    """TTL 索引的清理是惰性的，读取时需要自行过滤已过期的文档。"""
    expire_at: datetime | None = doc.get("expire_at")
    if expire_at is None:
        return False
    if expire_at.tzinfo is None:
        expire_at = expire_at.replace(tzinfo=timezone.utc)
    return expire_at <= now


def _line_document(line: StoredLine, now: datetime) -> dict[str, Any]:
    return {
        "id": line.id,
        "text": line.text,
        "chars_count": line.chars_count,
        "created_at": line.created_at or now,
    }


@dataclass
class RoomRecord:
    """持久化的独立房间：主持令牌 + 行历史。"""

    room_id: str
    host_token: str | None
    lines: list[StoredLine]


class SessionRepository:
    """会话存储。

    Attributes:
        db: MongoDB 数据库实例。
        room_ttl: 独立房间会话的存活时长。
    """

    def __init__(self, db: AsyncIOMotorDatabase, room_ttl: int | None = None) -> None:
        self.db = db
        self.room_ttl = timedelta(seconds=room_ttl or settings.ROOM_TTL_SECONDS)
        self._collection = db[_COLLECTION_NAME]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        await self._collection.create_index(
            [("room_id", 1)], name="uniq_room", unique=True, sparse=True,
        )
        await self._collection.create_index(
            [("user_id", 1), ("media_id", 1)],
            name="uniq_user_media",
            unique=True,
            sparse=True,
        )
        await self._collection.create_index(
            [("expire_at", 1)], name="ttl_expire", expireAfterSeconds=0,
        )
        await self._collection.create_index(
            [("user_id", 1), ("updated_at", -1)], name="idx_user_recent",
        )
        self._indexes_created = True
        logger.debug("text_sessions 索引已就绪")

    def _insert_defaults(self, key: SessionKey, now: datetime) -> dict[str, Any]:
        """upsert 新建文档时写入的字段（键字段由过滤条件自动带入）。"""
        defaults: dict[str, Any] = {"lines": [], "timer_seconds": 0, "created_at": now}
        if isinstance(key, RoomKey):
            defaults["expire_at"] = now + self.room_ttl
        return defaults

    async def _find(self, key: SessionKey) -> dict[str, Any] | None:
        doc = await self._collection.find_one(key.to_filter())
        if doc is None or _is_expired(doc, _utcnow()):
            return None
        return doc

    # ── 读取 ──────────────────────────────────────────────────────────

    async def get_session(self, key: SessionKey) -> SessionData | None:
        """按键获取会话，未找到（或已过期）返回 None。"""
        await self._ensure_indexes()
        doc = await self._find(key)
        return SessionData.from_document(doc) if doc else None

    async def open_session(self, key: MediaKey) -> SessionData:
        """获取媒体会话，不存在时创建一个空会话。"""
        await self._ensure_indexes()
        now = _utcnow()
        doc = await self._collection.find_one_and_update(
            key.to_filter(),
            {"$setOnInsert": {**self._insert_defaults(key, now), "updated_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return SessionData.from_document(doc)

    # ── 写入 ──────────────────────────────────────────────────────────

    async def append_lines(self, key: SessionKey, lines: list[StoredLine]) -> SessionData:
        """按顺序追加行；ID 已存在的行被跳过，会话不存在时自动创建。"""
        await self._ensure_indexes()
        now = _utcnow()
        base_filter = key.to_filter()
        await self._collection.update_one(
            base_filter,
            {
                "$setOnInsert": self._insert_defaults(key, now),
                "$set": {"updated_at": now},
            },
            upsert=True,
        )
        appended = 0
        for line in lines:
            # 过滤条件要求数组中没有同 ID 的行，重复追加自然成为空操作
            result = await self._collection.update_one(
                {**base_filter, "lines.id": {"$ne": line.id}},
                {"$push": {"lines": _line_document(line, now)}},
            )
            appended += result.modified_count
        if appended != len(lines):
            logger.debug("追加时跳过 %d 条重复行 | key=%s", len(lines) - appended, key)
        doc = await self._collection.find_one(base_filter)
        return SessionData.from_document(doc)

    async def remove_lines(self, key: SessionKey, line_ids: list[str]) -> SessionData | None:
        """按 ID 删除行，不存在的 ID 被忽略。"""
        await self._ensure_indexes()
        doc = await self._collection.find_one_and_update(
            key.to_filter(),
            {
                "$pull": {"lines": {"id": {"$in": line_ids}}},
                "$set": {"updated_at": _utcnow()},
            },
            return_document=ReturnDocument.AFTER,
        )
        return SessionData.from_document(doc) if doc else None

    async def clear_lines(self, key: SessionKey) -> SessionData | None:
        """清空全部行，保留会话记录与计时。"""
        await self._ensure_indexes()
        doc = await self._collection.find_one_and_update(
            key.to_filter(),
            {"$set": {"lines": [], "updated_at": _utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return SessionData.from_document(doc) if doc else None

    async def update_timer(self, key: SessionKey, seconds: int) -> int:
        """覆盖写入累计计时（后写者胜），会话不存在时自动创建。"""
        if seconds < 0:
            raise ValueError("timer seconds must be >= 0")
        await self._ensure_indexes()
        now = _utcnow()
        defaults = self._insert_defaults(key, now)
        defaults.pop("timer_seconds")
        doc = await self._collection.find_one_and_update(
            key.to_filter(),
            {
                "$set": {"timer_seconds": seconds, "updated_at": now},
                "$setOnInsert": defaults,
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return doc["timer_seconds"]

    async def delete_session(self, key: SessionKey) -> bool:
        """删除会话记录（幂等）。返回是否确有记录被删除。"""
        await self._ensure_indexes()
        result = await self._collection.delete_one(key.to_filter())
        return result.deleted_count > 0

    # ── 独立房间 ──────────────────────────────────────────────────────

    async def room_exists(self, room_id: str) -> bool:
        """检查持久化的房间会话是否存在（不看实时连接）。"""
        await self._ensure_indexes()
        return await self._find(RoomKey(room_id)) is not None

    async def create_room(self, room_id: str, host_token: str) -> bool:
        """创建独立房间会话。房间 ID 已被占用时返回 False。"""
        await self._ensure_indexes()
        now = _utcnow()
        doc = {
            "room_id": room_id,
            "host_token": host_token,
            "lines": [],
            "timer_seconds": 0,
            "created_at": now,
            "updated_at": now,
            "expire_at": now + self.room_ttl,
        }
        try:
            await self._collection.insert_one(doc)
        except DuplicateKeyError:
            existing = await self._collection.find_one({"room_id": room_id})
            if existing is None or not _is_expired(existing, now):
                logger.info("房间 ID 已被占用 | room=%s", room_id)
                return False
            # 已过期但尚未被 TTL 清理的旧房间，替换掉
            await self._collection.delete_one({"_id": existing["_id"]})
            await self._collection.insert_one(doc)
        return True

    async def get_room_record(self, room_id: str) -> RoomRecord | None:
        """读取房间的主持令牌与行历史。"""
        await self._ensure_indexes()
        doc = await self._find(RoomKey(room_id))
        if doc is None:
            return None
        return RoomRecord(
            room_id=room_id,
            host_token=doc.get("host_token"),
            lines=[StoredLine(**line) for line in doc.get("lines", [])],
        )

    async def delete_room(self, room_id: str) -> bool:
        """删除独立房间会话。绑定到媒体的会话不受影响。"""
        await self._ensure_indexes()
        result = await self._collection.delete_one(
            {"room_id": room_id, "media_id": {"$exists": False}},
        )
        return result.deleted_count > 0

    # ── 统计 ──────────────────────────────────────────────────────────

    async def list_recent(self, user_id: str, limit: int | None = None) -> RecentSessionsData:
        """最近更新的会话摘要 + 该用户全部会话的汇总统计。"""
        await self._ensure_indexes()
        limit = limit or settings.RECENT_SESSIONS_LIMIT
        cursor = self._collection.find({"user_id": user_id}).sort("updated_at", -1)
        docs = await cursor.to_list(length=None)

        summaries: list[SessionSummary] = []
        stats = SessionStats()
        for doc in docs:
            lines = doc.get("lines", [])
            chars = sum(line.get("chars_count", 0) or 0 for line in lines)
            timer = doc.get("timer_seconds", 0) or 0
            stats.total_sessions += 1
            stats.total_lines += len(lines)
            stats.total_chars += chars
            stats.total_timer_seconds += timer
            if len(summaries) < limit:
                summaries.append(
                    SessionSummary(
                        media_id=doc.get("media_id"),
                        room_id=doc.get("room_id"),
                        line_count=len(lines),
                        char_count=chars,
                        timer_seconds=timer,
                        updated_at=doc.get("updated_at"),
                    ),
                )
        return RecentSessionsData(sessions=summaries, stats=stats)

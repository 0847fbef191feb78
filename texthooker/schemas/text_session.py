"""
texthooker.schemas.text_session
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

会话存储相关的键类型与 REST 请求/响应模型。

一个会话要么由 ``(user_id, media_id)`` 定位，要么由独立的 ``room_id`` 定位，
两种寻址方式统一为 ``SessionKey``。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import Field

from texthooker.schemas.base import CamelModel


# ── 会话键 ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class MediaKey:
    """绑定到某个用户 + 媒体的会话。"""

    user_id: str
    media_id: str

    def to_filter(self) -> dict[str, Any]:
        return {"user_id": self.user_id, "media_id": self.media_id}


@dataclass(frozen=True)
class RoomKey:
    """由独立房间 ID 定位的会话。"""

    room_id: str

    def to_filter(self) -> dict[str, Any]:
        return {"room_id": self.room_id}


SessionKey = MediaKey | RoomKey


# ── 行 ────────────────────────────────────────────────────────────────

class StoredLine(CamelModel):
    """持久化的一行采集文本。"""

    id: str = Field(..., min_length=1, max_length=128, description="客户端生成的行 ID")
    text: str = Field(..., description="原始文本")
    chars_count: int = Field(default=0, ge=0, description="日文字符数")
    created_at: datetime | None = Field(default=None, description="采集时间")


# ── 会话 ──────────────────────────────────────────────────────────────

class SessionData(CamelModel):
    """会话完整视图。未找到时为空会话（``lines`` 为空、计时为 0）。"""

    user_id: str | None = None
    media_id: str | None = None
    room_id: str | None = None
    lines: list[StoredLine] = Field(default_factory=list)
    timer_seconds: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> SessionData:
        """从 MongoDB 文档构造，忽略 ``_id`` / ``host_token`` 等内部字段。"""
        user_id = doc.get("user_id")
        return cls(
            user_id=str(user_id) if user_id is not None else None,
            media_id=doc.get("media_id"),
            room_id=doc.get("room_id"),
            lines=[StoredLine(**line) for line in doc.get("lines", [])],
            timer_seconds=doc.get("timer_seconds", 0),
            created_at=doc.get("created_at"),
            updated_at=doc.get("updated_at"),
        )

    @classmethod
    def empty(cls, key: SessionKey) -> SessionData:
        if isinstance(key, MediaKey):
            return cls(user_id=key.user_id, media_id=key.media_id)
        return cls(room_id=key.room_id)


# ── 请求体 ────────────────────────────────────────────────────────────

class AppendLinesRequest(CamelModel):
    lines: list[StoredLine] = Field(..., description="要追加的行，按采集顺序")


class RemoveLinesRequest(CamelModel):
    line_ids: list[str] = Field(..., min_length=1, description="要删除的行 ID")


class TimerUpdateRequest(CamelModel):
    timer_seconds: int = Field(..., ge=0, description="累计计时（秒）")


# ── 响应数据 ──────────────────────────────────────────────────────────

class TimerData(CamelModel):
    timer_seconds: int


class RoomExistsData(CamelModel):
    exists: bool


class SessionStats(CamelModel):
    """用户全部会话的汇总统计。"""

    total_sessions: int = 0
    total_lines: int = 0
    total_chars: int = 0
    total_timer_seconds: int = 0


class SessionSummary(CamelModel):
    """最近会话列表中的单条摘要。"""

    media_id: str | None = None
    room_id: str | None = None
    line_count: int = 0
    char_count: int = 0
    timer_seconds: int = 0
    updated_at: datetime | None = None


class RecentSessionsData(CamelModel):
    sessions: list[SessionSummary]
    stats: SessionStats


class RoomInfoData(CamelModel):
    """活跃房间摘要。"""

    room_id: str
    online_count: int
    has_host: bool

"""
texthooker.schemas.relay
~~~~~~~~~~~~~~~~~~~~~~~~

广播中继协议。

每一帧都是一个 JSON 信封 ``{"event": <事件名>, "data": <负载>}``:

========================  ==============  ==================================
事件                      方向            负载
========================  ==============  ==================================
``join_room``             client → relay  ``JoinRoomPayload`` 或房间 ID 字符串
``room_created``          relay → client  ``{roomId, hostToken}``
``room_joined``           relay → client  ``{role, roomId}``
``error_message``         relay → client  字符串
``room_users_update``     relay → client  ``[MemberData]``
``send_line``             host → relay    ``SendLinePayload``
``receive_line``          relay → guests  ``LineData``
``load_history``          relay → joiner  ``[LineData]``
========================  ==============  ==================================
"""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from texthooker.schemas.base import CamelModel
from texthooker.schemas.text_session import StoredLine

Role = Literal["host", "guest"]

JOIN_ROOM = "join_room"
ROOM_CREATED = "room_created"
ROOM_JOINED = "room_joined"
ERROR_MESSAGE = "error_message"
ROOM_USERS_UPDATE = "room_users_update"
SEND_LINE = "send_line"
RECEIVE_LINE = "receive_line"
LOAD_HISTORY = "load_history"


class LineData(CamelModel):
    """协议中传输的一行文本。"""

    id: str = Field(..., min_length=1, max_length=128)
    text: str
    japanese_count: int = Field(default=0, ge=0)
    created_at: datetime | None = None

    def to_stored(self) -> StoredLine:
        return StoredLine(
            id=self.id,
            text=self.text,
            chars_count=self.japanese_count,
            created_at=self.created_at,
        )

    @classmethod
    def from_stored(cls, line: StoredLine) -> LineData:
        return cls(
            id=line.id,
            text=line.text,
            japanese_count=line.chars_count,
            created_at=line.created_at,
        )


class JoinRoomPayload(CamelModel):
    room_id: str = Field(..., min_length=1, max_length=128)
    role: Role = "guest"
    host_token: str | None = None
    username: str | None = None
    user_id: str | None = None


class SendLinePayload(CamelModel):
    room_id: str = Field(..., min_length=1, max_length=128)
    line_data: LineData


class MemberData(CamelModel):
    """成员快照中的一项，匿名连接不带用户名字段。"""

    id: str
    role: Role
    username: str | None = None
    user_id: str | None = None


class RoomCreatedData(CamelModel):
    room_id: str
    host_token: str


class RoomJoinedData(CamelModel):
    role: Role
    room_id: str


def _to_jsonable(data: Any) -> Any:
    if isinstance(data, CamelModel):
        return data.dump(exclude_none=True)
    if isinstance(data, list):
        return [_to_jsonable(item) for item in data]
    return data


def encode_event(event: str, data: Any = None) -> str:
    """把事件编码为一帧 JSON 文本。"""
    return json.dumps({"event": event, "data": _to_jsonable(data)}, ensure_ascii=False)


def decode_event(raw: str) -> tuple[str, Any]:
    """解析一帧 JSON 文本。

    Raises:
        ValueError: 不是 JSON 对象或缺少字符串 ``event`` 字段。
    """
    envelope = json.loads(raw)
    if not isinstance(envelope, dict) or not isinstance(envelope.get("event"), str):
        raise ValueError("relay frame must be an object with a string 'event'")
    return envelope["event"], envelope.get("data")

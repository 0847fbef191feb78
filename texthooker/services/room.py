"""
texthooker.services.room
~~~~~~~~~~~~~~~~~~~~~~~~

房间领域模型：一个实时协作频道及其在线成员。

房间只存在于内存中：由第一个主持人创建，最后一个连接离开时由
``RoomRegistry`` 销毁。任意时刻最多一个成员持有 ``host`` 角色。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from texthooker.schemas.relay import MemberData, Role
from texthooker.schemas.text_session import RoomInfoData
from texthooker.services.connection import RelayConnection


@dataclass
class Participant:
    """一个连接在房间中的成员身份。"""

    connection: RelayConnection
    role: Role
    username: str | None = None
    user_id: str | None = None
    joined_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def id(self) -> str:
        return self.connection.id

    def to_member(self) -> MemberData:
        return MemberData(
            id=self.id,
            role=self.role,
            username=self.username,
            user_id=self.user_id,
        )


class Room:
    """一个实时协作房间。

    Attributes:
        room_id: 房间唯一标识。
        host_token: 主持人密钥，重连时凭此恢复主持身份。
        participants: 连接 ID → 成员，按加入顺序排列。
    """

    def __init__(self, room_id: str, host_token: str) -> None:
        self.room_id = room_id
        self.host_token = host_token
        self.participants: dict[str, Participant] = {}

    @property
    def host(self) -> Participant | None:
        for participant in self.participants.values():
            if participant.role == "host":
                return participant
        return None

    @property
    def online_count(self) -> int:
        return len(self.participants)

    @property
    def is_empty(self) -> bool:
        return not self.participants

    def admit(self, participant: Participant) -> list[Participant]:
        """加入成员，返回因此被降级为访客的原主持人。"""
        demoted = []
        if participant.role == "host":
            for other in self.participants.values():
                if other.role == "host" and other.id != participant.id:
                    other.role = "guest"
                    demoted.append(other)
        # 同一连接重复加入时以新身份覆盖，并移到末尾
        self.participants.pop(participant.id, None)
        self.participants[participant.id] = participant
        return demoted

    def remove(self, connection_id: str) -> Participant | None:
        return self.participants.pop(connection_id, None)

    def connections(self, exclude: RelayConnection | None = None) -> list[RelayConnection]:
        return [
            p.connection for p in self.participants.values()
            if p.connection is not exclude
        ]

    def members(self) -> list[MemberData]:
        """当前成员快照。"""
        return [p.to_member() for p in self.participants.values()]

    def info(self) -> RoomInfoData:
        """返回房间摘要信息。"""
        return RoomInfoData(
            room_id=self.room_id,
            online_count=self.online_count,
            has_host=self.host is not None,
        )

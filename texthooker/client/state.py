"""
texthooker.client.state
~~~~~~~~~~~~~~~~~~~~~~~

采集客户端的显式状态对象。

每个客户端实例持有一个 ``CaptureState``，其中的行缓冲、房间成员关系与
桥接状态只通过这里的具名转换方法修改。计时子状态由 ``ActivityTimer``
自己维护。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from texthooker.client.bridge import ConnectionStatus
from texthooker.client.timer import ActivityTimer
from texthooker.schemas.relay import LineData, MemberData


class Mode(str, Enum):
    LOCAL = "local"
    HOST = "host"
    GUEST = "guest"


@dataclass
class RoomState:
    mode: Mode = Mode.LOCAL
    room_id: str | None = None
    joined: bool = False
    members: list[MemberData] = field(default_factory=list)


@dataclass
class CaptureState:
    timer: ActivityTimer
    lines: list[LineData] = field(default_factory=list)
    bridge_status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    room: RoomState = field(default_factory=RoomState)

    # ── 行缓冲 ────────────────────────────────────────────────────────

    def append_line(self, line: LineData) -> bool:
        """追加一行；行 ID 已存在时忽略并返回 False。"""
        if any(existing.id == line.id for existing in self.lines):
            return False
        self.lines.append(line)
        return True

    def replace_lines(self, lines: list[LineData]) -> None:
        self.lines = list(lines)

    def remove_line(self, line_id: str) -> LineData | None:
        for index, line in enumerate(self.lines):
            if line.id == line_id:
                return self.lines.pop(index)
        return None

    def clear_lines(self) -> None:
        self.lines = []

    # ── 房间 ──────────────────────────────────────────────────────────

    def enter_room(self, room_id: str, mode: Mode) -> None:
        if mode is Mode.LOCAL:
            raise ValueError("entering a room requires host or guest mode")
        self.room = RoomState(mode=mode, room_id=room_id)

    def mark_joined(self, mode: Mode) -> None:
        self.room.mode = mode
        self.room.joined = True

    def set_members(self, members: list[MemberData]) -> None:
        self.room.members = list(members)

    def leave_room(self) -> None:
        self.room = RoomState()

    # ── 桥接 ──────────────────────────────────────────────────────────

    def set_bridge_status(self, status: ConnectionStatus) -> None:
        self.bridge_status = status

    # ── 统计 ──────────────────────────────────────────────────────────

    @property
    def line_count(self) -> int:
        return len(self.lines)

    @property
    def char_count(self) -> int:
        return sum(line.japanese_count for line in self.lines)

    @property
    def chars_per_hour(self) -> int:
        elapsed = self.timer.elapsed
        if elapsed <= 0:
            return 0
        return round(self.char_count * 3600 / elapsed)

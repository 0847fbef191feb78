"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures：用 mongomock-motor 替代真实 MongoDB，
用内存假连接替代 WebSocket，使单元测试可在无网络环境下快速运行。
"""
from __future__ import annotations

import json
import os
from typing import Any

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET", "test-secret")

from mongomock_motor import AsyncMongoMockClient  # noqa: E402

from texthooker.db.session_repository import SessionRepository  # noqa: E402
from texthooker.services.connection import RelayConnection  # noqa: E402


# ── MongoDB Mock ──────────────────────────────────────────────────────

@pytest.fixture()
def mongo_db() -> Any:
    """每个测试一个独立的内存数据库。"""
    return AsyncMongoMockClient()["texthooker_test"]


@pytest.fixture()
def repo(mongo_db: Any) -> SessionRepository:
    """跳过索引创建的会话仓库（mongomock 对 TTL 索引支持有限）。"""
    repository = SessionRepository(mongo_db)
    repository._indexes_created = True
    return repository


# ── WebSocket Mock ────────────────────────────────────────────────────

class FakeWebSocket:
    """记录所有发出帧的假 WebSocket。"""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[str] = []
        self.fail = fail

    async def send_text(self, message: str) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(message)

    def events(self) -> list[tuple[str, Any]]:
        """按顺序解析出 ``(event, data)``。"""
        result = []
        for raw in self.sent:
            envelope = json.loads(raw)
            result.append((envelope["event"], envelope["data"]))
        return result

    def event_names(self) -> list[str]:
        return [name for name, _ in self.events()]

    def last(self, event: str) -> Any:
        for name, data in reversed(self.events()):
            if name == event:
                return data
        raise AssertionError(f"no {event!r} frame sent")


def make_connection(connection_id: str, fail: bool = False) -> RelayConnection:
    return RelayConnection(FakeWebSocket(fail=fail), connection_id=connection_id)  # type: ignore[arg-type]


@pytest.fixture()
def connection_factory():
    return make_connection

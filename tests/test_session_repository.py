"""
tests.test_session_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

会话存储仓库测试（mongomock-motor 内存数据库）。
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import DuplicateKeyError

from texthooker.db.session_repository import SessionRepository, _is_expired
from texthooker.schemas.text_session import MediaKey, RoomKey, StoredLine


def _line(line_id: str, text: str = "テスト", chars: int = 3) -> StoredLine:
    return StoredLine(id=line_id, text=text, chars_count=chars)


KEY = MediaKey(user_id="u1", media_id="m1")


class TestMediaSessions:
    """测试媒体会话的读写。"""

    @pytest.mark.asyncio
    async def test_get_missing_session_returns_none(self, repo: SessionRepository) -> None:
        assert await repo.get_session(KEY) is None

    @pytest.mark.asyncio
    async def test_open_session_creates_empty(self, repo: SessionRepository) -> None:
        session = await repo.open_session(KEY)

        assert session.user_id == "u1"
        assert session.media_id == "m1"
        assert session.lines == []
        assert session.timer_seconds == 0
        assert await repo.get_session(KEY) is not None

    @pytest.mark.asyncio
    async def test_open_session_keeps_existing_data(self, repo: SessionRepository) -> None:
        await repo.append_lines(KEY, [_line("a")])
        await repo.update_timer(KEY, 42)

        session = await repo.open_session(KEY)

        assert [line.id for line in session.lines] == ["a"]
        assert session.timer_seconds == 42

    @pytest.mark.asyncio
    async def test_append_preserves_order(self, repo: SessionRepository) -> None:
        session = await repo.append_lines(KEY, [_line("a"), _line("b"), _line("c")])

        assert [line.id for line in session.lines] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_append_is_idempotent_by_line_id(self, repo: SessionRepository) -> None:
        """重复 ID 的行被跳过，不会重复出现。"""
        await repo.append_lines(KEY, [_line("a"), _line("b")])
        session = await repo.append_lines(KEY, [_line("b", text="changed"), _line("c")])

        assert [line.id for line in session.lines] == ["a", "b", "c"]
        assert session.lines[1].text == "テスト"

    @pytest.mark.asyncio
    async def test_append_fills_created_at(self, repo: SessionRepository) -> None:
        session = await repo.append_lines(KEY, [_line("a")])

        assert session.lines[0].created_at is not None

    @pytest.mark.asyncio
    async def test_remove_lines_ignores_unknown_ids(self, repo: SessionRepository) -> None:
        await repo.append_lines(KEY, [_line("a"), _line("b"), _line("c")])

        session = await repo.remove_lines(KEY, ["b", "missing"])

        assert session is not None
        assert [line.id for line in session.lines] == ["a", "c"]

    @pytest.mark.asyncio
    async def test_remove_lines_on_missing_session(self, repo: SessionRepository) -> None:
        assert await repo.remove_lines(KEY, ["a"]) is None

    @pytest.mark.asyncio
    async def test_clear_lines_keeps_timer(self, repo: SessionRepository) -> None:
        await repo.append_lines(KEY, [_line("a")])
        await repo.update_timer(KEY, 100)

        session = await repo.clear_lines(KEY)

        assert session is not None
        assert session.lines == []
        assert session.timer_seconds == 100

    @pytest.mark.asyncio
    async def test_update_timer_last_write_wins(self, repo: SessionRepository) -> None:
        assert await repo.update_timer(KEY, 100) == 100
        assert await repo.update_timer(KEY, 30) == 30

        session = await repo.get_session(KEY)
        assert session is not None
        assert session.timer_seconds == 30
        assert session.lines == []

    @pytest.mark.asyncio
    async def test_update_timer_rejects_negative(self, repo: SessionRepository) -> None:
        with pytest.raises(ValueError):
            await repo.update_timer(KEY, -1)

    @pytest.mark.asyncio
    async def test_delete_session_is_idempotent(self, repo: SessionRepository) -> None:
        await repo.open_session(KEY)

        assert await repo.delete_session(KEY) is True
        assert await repo.delete_session(KEY) is False
        assert await repo.get_session(KEY) is None

    @pytest.mark.asyncio
    async def test_sessions_are_scoped_per_user(self, repo: SessionRepository) -> None:
        await repo.append_lines(KEY, [_line("a")])

        other = await repo.open_session(MediaKey(user_id="u2", media_id="m1"))

        assert other.lines == []


class TestRoomSessions:
    """测试独立房间会话。"""

    @pytest.mark.asyncio
    async def test_create_and_read_room(self, repo: SessionRepository) -> None:
        assert await repo.create_room("r1", "token-1") is True

        assert await repo.room_exists("r1") is True
        record = await repo.get_room_record("r1")
        assert record is not None
        assert record.host_token == "token-1"
        assert record.lines == []

    @pytest.mark.asyncio
    async def test_room_lines_append(self, repo: SessionRepository) -> None:
        await repo.create_room("r1", "token-1")

        await repo.append_lines(RoomKey("r1"), [_line("a"), _line("b")])

        record = await repo.get_room_record("r1")
        assert record is not None
        assert [line.id for line in record.lines] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_unknown_room(self, repo: SessionRepository) -> None:
        assert await repo.room_exists("nope") is False
        assert await repo.get_room_record("nope") is None

    @pytest.mark.asyncio
    async def test_expired_room_is_invisible(self, repo: SessionRepository, mongo_db) -> None:
        """TTL 尚未清理的过期文档在读取时被过滤。"""
        past = datetime.now(timezone.utc) - timedelta(minutes=1)
        await mongo_db["text_sessions"].insert_one(
            {"room_id": "old", "host_token": "t", "lines": [], "timer_seconds": 0, "expire_at": past},
        )

        assert await repo.room_exists("old") is False
        assert await repo.get_session(RoomKey("old")) is None

    @pytest.mark.asyncio
    async def test_delete_room(self, repo: SessionRepository) -> None:
        await repo.create_room("r1", "token-1")

        assert await repo.delete_room("r1") is True
        assert await repo.room_exists("r1") is False
        assert await repo.delete_room("r1") is False


class TestCreateRoomCollision:
    """房间 ID 冲突时的处理（模拟唯一索引）。"""

    @staticmethod
    def _repo_with_collection(collection: MagicMock) -> SessionRepository:
        repo = SessionRepository.__new__(SessionRepository)
        repo._collection = collection
        repo._indexes_created = True
        repo.room_ttl = timedelta(hours=24)
        return repo

    @pytest.mark.asyncio
    async def test_live_room_rejects_second_creator(self) -> None:
        collection = MagicMock()
        collection.insert_one = AsyncMock(side_effect=DuplicateKeyError("dup"))
        collection.find_one = AsyncMock(
            return_value={
                "_id": 1,
                "room_id": "r1",
                "expire_at": datetime.now(timezone.utc) + timedelta(hours=1),
            },
        )
        repo = self._repo_with_collection(collection)

        assert await repo.create_room("r1", "token-2") is False

    @pytest.mark.asyncio
    async def test_expired_room_is_replaced(self) -> None:
        collection = MagicMock()
        collection.insert_one = AsyncMock(side_effect=[DuplicateKeyError("dup"), None])
        collection.find_one = AsyncMock(
            return_value={
                "_id": 1,
                "room_id": "r1",
                "expire_at": datetime.now(timezone.utc) - timedelta(hours=1),
            },
        )
        collection.delete_one = AsyncMock()
        repo = self._repo_with_collection(collection)

        assert await repo.create_room("r1", "token-2") is True
        collection.delete_one.assert_awaited_once_with({"_id": 1})
        assert collection.insert_one.await_count == 2


class TestListRecent:
    """测试最近会话与汇总统计。"""

    @pytest.mark.asyncio
    async def test_recent_sorted_with_stats(self, repo: SessionRepository, mongo_db) -> None:
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        docs = [
            {
                "user_id": "u1",
                "media_id": f"m{i}",
                "lines": [{"id": f"l{i}", "text": "あ", "chars_count": i}],
                "timer_seconds": 10 * i,
                "updated_at": base + timedelta(hours=i),
            }
            for i in range(1, 4)
        ]
        docs.append({"user_id": "u2", "media_id": "x", "lines": [], "timer_seconds": 999, "updated_at": base})
        await mongo_db["text_sessions"].insert_many(docs)

        data = await repo.list_recent("u1", limit=2)

        assert [s.media_id for s in data.sessions] == ["m3", "m2"]
        assert data.sessions[0].char_count == 3
        assert data.stats.total_sessions == 3
        assert data.stats.total_lines == 3
        assert data.stats.total_chars == 6
        assert data.stats.total_timer_seconds == 60


class TestIsExpired:
    def test_naive_datetime_treated_as_utc(self) -> None:
        now = datetime.now(timezone.utc)
        naive_past = (now - timedelta(seconds=5)).replace(tzinfo=None)

        assert _is_expired({"expire_at": naive_past}, now) is True
        assert _is_expired({}, now) is False

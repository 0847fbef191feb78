"""
texthooker.client.capture
~~~~~~~~~~~~~~~~~~~~~~~~~

采集客户端编排器。

一行文本从桥接或粘贴进入后的流向:

  1. 按暂停规则决定接收或丢弃（可选自动恢复计时）
  2. 立即追加到本地行缓冲，刷新最后活动时间
  3. 会话绑定了媒体时入队持久化（单个后台 worker 按顺序执行，失败只记日志）
  4. 作为主持人在房间内时入队中继发送

计时器每秒推进一次，累计秒数写入本地存储（最多每 ``LOCAL_CACHE_INTERVAL``
秒一次，暂停、改写与关闭时立即写入）；每 ``checkpoint_interval`` 秒若数值
有变化就推送到会话存储。会话存储的任何失败都只记日志，不会终止后台任务。
关闭时取消所有后台任务，并做最后一次检查点。
"""
from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import httpx
from pydantic import ValidationError

from texthooker.client.bridge import BridgeConnection
from texthooker.client.ingest import ScratchPad, parse_bridge_payload
from texthooker.client.preferences import CapturePreferences, LocalStore, host_token_key, timer_key
from texthooker.client.relay import RelayClient
from texthooker.client.state import CaptureState, Mode
from texthooker.client.store_api import SessionStoreClient
from texthooker.client.timer import ActivityTimer
from texthooker.core.errors import AppError
from texthooker.core.logging import get_logger
from texthooker.schemas.relay import (
    ERROR_MESSAGE,
    LOAD_HISTORY,
    RECEIVE_LINE,
    ROOM_CREATED,
    ROOM_JOINED,
    ROOM_USERS_UPDATE,
    JoinRoomPayload,
    LineData,
    MemberData,
    RoomCreatedData,
    RoomJoinedData,
)
from texthooker.services.text_stats import count_japanese_characters, create_line_id

logger = get_logger(__name__)

_STORE_ERRORS = (httpx.HTTPError, AppError)


async def _stop_tasks(tasks: list[asyncio.Task]) -> None:
    """取消并等待后台任务；已因异常结束的任务只记日志。"""
    for task in tasks:
        task.cancel()
    results = await asyncio.gather(*tasks, return_exceptions=True)
    for task, result in zip(tasks, results):
        if isinstance(result, Exception):
            logger.error("后台任务异常退出 | task=%s | %r", task.get_name(), result)


class LineSource(str, Enum):
    BRIDGE = "bridge"
    PASTE = "paste"


class CaptureClient:
    """一个采集界面实例。

    Args:
        media_id: 绑定的媒体 ID；为 None 时不做服务端持久化。
        store: 会话存储客户端；也用于加入房间前的存在性预检。
        local_store: 本地键值存储（计时缓存、主持人令牌、偏好）。
        preferences: 采集偏好，缺省时从 ``local_store`` 读取。
        relay_factory / bridge_factory: 测试时替换连接实现。
    """

    LOCAL_CACHE_INTERVAL = 5.0

    def __init__(
        self,
        *,
        media_id: str | None = None,
        store: SessionStoreClient | None = None,
        local_store: LocalStore | None = None,
        preferences: CapturePreferences | None = None,
        username: str | None = None,
        user_id: str | None = None,
        token: str | None = None,
        clock: Callable[[], float] = time.monotonic,
        relay_factory: Callable[..., RelayClient] = RelayClient,
        bridge_factory: Callable[..., BridgeConnection] = BridgeConnection,
    ) -> None:
        self.media_id = media_id
        self.store = store
        self.local_store = local_store or LocalStore()
        self.preferences = preferences or CapturePreferences.load(self.local_store)
        self.username = username
        self.user_id = user_id
        self.token = token
        self._relay_factory = relay_factory
        self._clock = clock
        self._cache_pending: int | None = None
        self._cache_written_at = float("-inf")

        self.timer_store_key = timer_key(media_id or "local")
        timer = ActivityTimer(
            self.preferences.auto_pause_timeout,
            elapsed=int(self.local_store.get(self.timer_store_key, 0) or 0),
            clock=clock,
            on_change=self._cache_timer,
        )
        self.state = CaptureState(timer=timer)
        self.scratch = ScratchPad()
        self.bridge = bridge_factory(
            self.preferences.websocket_url,
            self.ingest_bridge_message,
            reconnect_interval=self.preferences.reconnect_interval,
            continuous_reconnect=self.preferences.continuous_reconnect,
            on_status=self.state.set_bridge_status,
        )
        self.relay: RelayClient | None = None

        self._last_saved_timer = 0
        self._outbox: asyncio.Queue[tuple[str, Callable[[], Awaitable[Any]]]] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._tasks: list[asyncio.Task] = []

    @property
    def timer(self) -> ActivityTimer:
        return self.state.timer

    @property
    def lines(self) -> list[LineData]:
        return self.state.lines

    @property
    def persistent(self) -> bool:
        return self.media_id is not None and self.store is not None

    # ── 生命周期 ──────────────────────────────────────────────────────

    async def load(self) -> None:
        """从会话存储恢复行与计时；计时取本地缓存与服务端较大者。"""
        local = int(self.local_store.get(self.timer_store_key, 0) or 0)
        server = 0
        if self.persistent:
            try:
                session = await self.store.get_session(self.media_id)
            except _STORE_ERRORS as e:
                logger.warning("会话加载失败，仅使用本地状态 | media=%s | %s", self.media_id, e)
            else:
                self.state.replace_lines([LineData.from_stored(line) for line in session.lines])
                server = session.timer_seconds
        best = self.timer.restore(local, server)
        # 以服务端已知值为基准，本地更大时下一个检查点会推送上去
        self._last_saved_timer = server
        logger.info(
            "会话已恢复 | media=%s | 行数=%d | 计时=%ds (本地 %d / 服务端 %d)",
            self.media_id, self.state.line_count, best, local, server,
        )

    async def start(self) -> None:
        await self.load()
        self._ensure_worker()
        self._tasks.append(asyncio.create_task(self._tick_loop(), name="capture-tick"))
        self._tasks.append(asyncio.create_task(self._checkpoint_loop(), name="capture-checkpoint"))
        self.bridge.start()

    async def close(self) -> None:
        """关闭：停止后台任务与连接，排空持久化队列，做最后一次检查点。"""
        tasks, self._tasks = self._tasks, []
        await _stop_tasks(tasks)
        await self.bridge.shutdown()
        await self.leave_room()
        await self.flush()
        worker, self._worker = self._worker, None
        if worker is not None:
            await _stop_tasks([worker])
        self.save_timer_cache()
        await self.checkpoint()

    # ── 后台循环 ──────────────────────────────────────────────────────

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(1)
            self.timer.tick()
            if not self.timer.running:
                self.save_timer_cache()

    async def _checkpoint_loop(self) -> None:
        while True:
            await asyncio.sleep(self.preferences.checkpoint_interval)
            await self.checkpoint()

    async def checkpoint(self) -> bool:
        """计时有变化时推送到会话存储，返回是否推送成功。"""
        elapsed = self.timer.elapsed
        if not self.persistent or elapsed == self._last_saved_timer:
            return False
        try:
            await self.store.update_timer(self.media_id, elapsed)
        except _STORE_ERRORS as e:
            logger.warning("计时检查点失败 | media=%s | %s", self.media_id, e)
            return False
        except Exception as e:
            logger.error("计时检查点异常 | media=%s | %s", self.media_id, e, exc_info=True)
            return False
        self._last_saved_timer = elapsed
        return True

    def _cache_timer(self, seconds: int) -> None:
        self._cache_pending = seconds
        if self._clock() - self._cache_written_at >= self.LOCAL_CACHE_INTERVAL:
            self.save_timer_cache()

    def save_timer_cache(self) -> None:
        """把尚未落盘的累计秒数写入本地存储。"""
        if self._cache_pending is None:
            return
        self.local_store.set(self.timer_store_key, self._cache_pending)
        self._cache_pending = None
        self._cache_written_at = self._clock()

    # ── 持久化队列 ────────────────────────────────────────────────────

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._persist_worker(), name="capture-persist")

    def _persist(self, op: str, factory: Callable[[], Awaitable[Any]]) -> None:
        if not self.persistent:
            return
        self._outbox.put_nowait((op, factory))
        self._ensure_worker()

    async def _persist_worker(self) -> None:
        while True:
            op, factory = await self._outbox.get()
            try:
                await factory()
            except _STORE_ERRORS as e:
                logger.warning("持久化失败 | op=%s | media=%s | %s", op, self.media_id, e)
            except Exception as e:
                logger.error("持久化异常 | op=%s | media=%s | %s", op, self.media_id, e, exc_info=True)
            finally:
                self._outbox.task_done()

    async def flush(self) -> None:
        """等待已入队的持久化操作全部完成。"""
        self._ensure_worker()
        await self._outbox.join()

    # ── 采集 ──────────────────────────────────────────────────────────

    def ingest_bridge_message(self, raw: str | bytes) -> LineData | None:
        text = parse_bridge_payload(raw)
        if text is None:
            logger.debug("忽略空白桥接消息")
            return None
        return self.ingest_text(text, LineSource.BRIDGE)

    def ingest_paste(self, markup: str) -> list[LineData]:
        captured = []
        for text in self.scratch.insert(markup):
            line = self.ingest_text(text, LineSource.PASTE)
            if line is not None:
                captured.append(line)
        return captured

    def ingest_text(self, text: str, source: LineSource) -> LineData | None:
        """按暂停规则采集一行，返回新行；被丢弃时返回 None。"""
        if not text.strip():
            return None
        prefs = self.preferences
        if not self.timer.running:
            if source is LineSource.BRIDGE:
                allowed, autostart = prefs.allow_new_line_during_pause, prefs.autostart_timer_by_line
            else:
                allowed, autostart = prefs.allow_paste_during_pause, prefs.autostart_timer_by_paste
            if not allowed:
                logger.debug("计时暂停中，丢弃新行 | source=%s", source.value)
                return None
            if autostart:
                self.timer.resume()

        line = LineData(
            id=create_line_id(),
            text=text,
            japanese_count=count_japanese_characters(text),
            created_at=datetime.now(timezone.utc),
        )
        self.state.append_line(line)
        self.timer.touch()

        self._persist("append_lines", lambda: self.store.append_lines(self.media_id, [line]))
        room = self.state.room
        if room.mode is Mode.HOST and self.relay is not None:
            self.relay.send_line(room.room_id, line)
        return line

    # ── 行编辑 ────────────────────────────────────────────────────────

    def delete_line(self, line_id: str) -> bool:
        if self.state.remove_line(line_id) is None:
            return False
        self._persist("remove_lines", lambda: self.store.remove_lines(self.media_id, [line_id]))
        return True

    def delete_last_line(self) -> LineData | None:
        if not self.state.lines:
            return None
        line = self.state.lines[-1]
        self.delete_line(line.id)
        return line

    def clear_lines(self) -> None:
        self.state.clear_lines()
        self._persist("clear_lines", lambda: self.store.clear_lines(self.media_id))

    def copy_all(self) -> str:
        return "\n".join(line.text for line in self.state.lines)

    # ── 计时操作 ──────────────────────────────────────────────────────

    def toggle_timer(self) -> None:
        status = self.timer.toggle()
        self.save_timer_cache()
        logger.debug("计时切换 -> %s", status.value)

    async def reset_timer(self) -> None:
        self.timer.reset()
        self.save_timer_cache()
        await self.checkpoint()

    async def edit_timer(self, hours: int = 0, minutes: int = 0, seconds: int = 0) -> None:
        self.timer.edit_hms(hours, minutes, seconds)
        self.save_timer_cache()
        await self.checkpoint()

    async def delete_session(self) -> bool:
        """删除绑定的会话：清空本地行与计时，并删除服务端记录。"""
        await self.flush()
        self.state.clear_lines()
        self.timer.reset()
        self._cache_pending = None
        self.local_store.delete(self.timer_store_key)
        self._last_saved_timer = 0
        if not self.persistent:
            return False
        try:
            await self.store.delete_session(self.media_id)
        except _STORE_ERRORS as e:
            logger.warning("会话删除失败 | media=%s | %s", self.media_id, e)
            return False
        logger.info("会话已删除 | media=%s", self.media_id)
        return True

    # ── 房间 ──────────────────────────────────────────────────────────

    async def join_room(self, room_id: str, mode: Mode = Mode.GUEST) -> bool:
        """以主持人或访客身份加入房间；主持人会出示本地保存的令牌。

        返回是否发起了中继连接。预检不通过时不打开连接，保持本地模式。
        """
        await self.leave_room()
        host_token = self.local_store.get(host_token_key(room_id)) if mode is Mode.HOST else None
        if not await self._room_precheck(room_id, mode, host_token):
            return False

        self.state.enter_room(room_id, mode)
        payload = JoinRoomPayload(
            room_id=room_id,
            role="host" if mode is Mode.HOST else "guest",
            host_token=host_token,
            username=self.username,
            user_id=self.user_id,
        )
        relay = self._relay_factory(
            self.preferences.relay_url,
            self.handle_relay_event,
            token=self.token,
            on_closed=lambda: self._relay_closed(relay),
        )
        self.relay = relay
        relay.open(payload)
        return True

    async def _room_precheck(self, room_id: str, mode: Mode, host_token: str | None) -> bool:
        """用会话存储的房间存在性校验加入意图。

        主持人没有本地令牌而房间已存在，或访客加入不存在的房间，都直接拒绝。
        会话存储不可用时放行，由中继的准入规则决定。
        """
        if self.store is None:
            return True
        try:
            exists = await self.store.room_exists(room_id)
        except _STORE_ERRORS as e:
            logger.warning("房间预检失败，交由中继准入判断 | room=%s | %s", room_id, e)
            return True
        if mode is Mode.HOST and exists and not host_token:
            logger.warning("房间已存在且本地没有主持人令牌，拒绝以主持人身份加入 | room=%s", room_id)
            return False
        if mode is Mode.GUEST and not exists:
            logger.warning("房间不存在，无法以访客身份加入 | room=%s", room_id)
            return False
        return True

    async def leave_room(self) -> None:
        relay, self.relay = self.relay, None
        self.state.leave_room()
        if relay is not None:
            await relay.close()

    def _relay_closed(self, relay: RelayClient) -> None:
        """中继连接意外断开：回到本地模式，不自动重连。"""
        if relay is not self.relay:
            return
        logger.warning("中继连接已断开，回到本地模式 | room=%s", self.state.room.room_id)
        self.relay = None
        self.state.leave_room()

    async def handle_relay_event(self, event: str, data: Any) -> None:
        room = self.state.room
        try:
            if event == ROOM_CREATED:
                created = RoomCreatedData.model_validate(data)
                if created.room_id == room.room_id:
                    self.local_store.set(host_token_key(created.room_id), created.host_token)
                    logger.info("房间已创建，主持人令牌已保存 | room=%s", created.room_id)
            elif event == ROOM_JOINED:
                joined = RoomJoinedData.model_validate(data)
                self.state.mark_joined(Mode(joined.role))
                logger.info("已加入房间 | room=%s | role=%s", joined.room_id, joined.role)
            elif event == ROOM_USERS_UPDATE:
                self.state.set_members([MemberData.model_validate(m) for m in data or []])
            elif event == RECEIVE_LINE:
                self.state.append_line(LineData.model_validate(data))
                self.timer.touch()
            elif event == LOAD_HISTORY:
                self.state.replace_lines([LineData.model_validate(item) for item in data or []])
            elif event == ERROR_MESSAGE:
                if room.joined:
                    logger.warning("中继错误: %s | room=%s", data, room.room_id)
                else:
                    # 准入失败：回到本地模式，不自动重试
                    logger.warning("加入房间被拒绝: %s | room=%s，回到本地模式", data, room.room_id)
                    await self.leave_room()
            else:
                logger.debug("忽略未知中继事件: %s", event)
        except ValidationError as e:
            logger.warning("中继事件负载非法 | event=%s | %s", event, e)

    # ── 统计 ──────────────────────────────────────────────────────────

    @property
    def stats(self) -> dict[str, int]:
        return {
            "line_count": self.state.line_count,
            "char_count": self.state.char_count,
            "chars_per_hour": self.state.chars_per_hour,
            "timer_seconds": self.timer.elapsed,
        }

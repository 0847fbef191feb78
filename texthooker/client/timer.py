"""
texthooker.client.timer
~~~~~~~~~~~~~~~~~~~~~~~

活动计时器状态机。

状态只有 ``RUNNING`` / ``PAUSED`` 两种:

- ``RUNNING → PAUSED``: 距最后一次活动超过 ``auto_pause_timeout``（自动），或手动切换
- ``PAUSED → RUNNING``: 手动切换，或新行到达且开启了"采集自动开始"
- ``reset`` / ``edit``: 任意状态下改写累计秒数并重新锚定最后活动时间

累计秒数按单调时钟的实际流逝量整秒累加（保留小数余量），
不依赖 tick 的调用间隔是否准确。
"""
from __future__ import annotations

import time
from collections.abc import Callable
from enum import Enum

from texthooker.core.logging import get_logger

logger = get_logger(__name__)


class TimerStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"


def reconcile_elapsed(local_seconds: int, server_seconds: int) -> int:
    """恢复计时：取本地缓存与服务端记录中较大的一个。

    本地值更大说明上次退出前的检查点没能送达服务端；
    服务端值更大说明在其他设备上有过进度。两种情况都不回退。
    """
    return max(int(local_seconds or 0), int(server_seconds or 0), 0)


class ActivityTimer:
    """累计阅读时长计时器。

    Attributes:
        auto_pause_timeout: 无活动多少秒后自动暂停，0 表示不自动暂停。
        on_change: 累计秒数变化时的回调（用于立即写入本地存储）。
    """

    def __init__(
        self,
        auto_pause_timeout: float = 120,
        *,
        elapsed: int = 0,
        running: bool = True,
        clock: Callable[[], float] = time.monotonic,
        on_change: Callable[[int], None] | None = None,
    ) -> None:
        self.auto_pause_timeout = auto_pause_timeout
        self.on_change = on_change
        self._clock = clock
        self._elapsed = max(0, int(elapsed))
        self._status = TimerStatus.RUNNING if running else TimerStatus.PAUSED
        now = clock()
        self._last_activity = now
        self._anchor = now

    @property
    def elapsed(self) -> int:
        return self._elapsed

    @property
    def status(self) -> TimerStatus:
        return self._status

    @property
    def running(self) -> bool:
        return self._status is TimerStatus.RUNNING

    @property
    def idle_seconds(self) -> float:
        return self._clock() - self._last_activity

    def _set_elapsed(self, seconds: int) -> None:
        if seconds == self._elapsed:
            return
        self._elapsed = seconds
        if self.on_change is not None:
            self.on_change(seconds)

    # ── 周期驱动 ──────────────────────────────────────────────────────

    def tick(self) -> bool:
        """推进计时，返回累计秒数是否变化。应约每秒调用一次。"""
        now = self._clock()
        if not self.running:
            self._anchor = now
            return False
        if self.auto_pause_timeout > 0 and now - self._last_activity >= self.auto_pause_timeout:
            self._status = TimerStatus.PAUSED
            self._anchor = now
            logger.debug("无活动 %.0f 秒，计时自动暂停", now - self._last_activity)
            return False
        whole = int(now - self._anchor)
        if whole <= 0:
            return False
        self._anchor += whole
        self._set_elapsed(self._elapsed + whole)
        return True

    def touch(self) -> None:
        """记录一次采集活动。"""
        self._last_activity = self._clock()

    # ── 手动操作 ──────────────────────────────────────────────────────

    def pause(self) -> None:
        if self.running:
            self.tick()
            self._status = TimerStatus.PAUSED

    def resume(self) -> None:
        """恢复计时，同时重置最后活动时间，避免立即再次自动暂停。"""
        now = self._clock()
        self._last_activity = now
        self._anchor = now
        self._status = TimerStatus.RUNNING

    def toggle(self) -> TimerStatus:
        if self.running:
            self.pause()
        else:
            self.resume()
        return self._status

    def reset(self) -> None:
        self.edit(0)

    def edit(self, seconds: int) -> None:
        """把累计秒数改为任意非负值。"""
        if seconds < 0:
            raise ValueError("elapsed seconds must be >= 0")
        now = self._clock()
        self._last_activity = now
        self._anchor = now
        self._set_elapsed(int(seconds))

    def edit_hms(self, hours: int = 0, minutes: int = 0, seconds: int = 0) -> None:
        """按时 / 分 / 秒改写（分、秒截断到 0-59）。"""
        hours = max(0, int(hours))
        minutes = min(59, max(0, int(minutes)))
        seconds = min(59, max(0, int(seconds)))
        self.edit(hours * 3600 + minutes * 60 + seconds)

    def restore(self, local_seconds: int, server_seconds: int) -> int:
        """按 ``reconcile_elapsed`` 恢复累计秒数，返回生效值。"""
        best = reconcile_elapsed(local_seconds, server_seconds)
        self._anchor = self._clock()
        self._set_elapsed(best)
        return best


def format_hms(seconds: int) -> str:
    hours, rest = divmod(max(0, int(seconds)), 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"

"""
tests.test_timer
~~~~~~~~~~~~~~~~

活动计时器状态机测试（可控时钟）。
"""
from __future__ import annotations

import pytest

from texthooker.client.timer import ActivityTimer, TimerStatus, format_hms, reconcile_elapsed


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


class TestTick:
    """测试计时推进。"""

    def test_counts_elapsed_seconds(self, clock: FakeClock) -> None:
        timer = ActivityTimer(120, clock=clock)

        for _ in range(5):
            clock.advance(1)
            timer.tick()

        assert timer.elapsed == 5

    def test_late_ticks_do_not_drift(self, clock: FakeClock) -> None:
        """tick 间隔不准时按实际流逝时间累加，小数部分留到下一次。"""
        timer = ActivityTimer(120, clock=clock)

        clock.advance(1.6)
        timer.tick()
        clock.advance(1.6)
        timer.tick()

        assert timer.elapsed == 3

    def test_paused_timer_does_not_count(self, clock: FakeClock) -> None:
        timer = ActivityTimer(120, running=False, clock=clock)

        clock.advance(10)
        timer.tick()

        assert timer.elapsed == 0

    def test_on_change_called_per_increment(self, clock: FakeClock) -> None:
        seen: list[int] = []
        timer = ActivityTimer(120, clock=clock, on_change=seen.append)

        clock.advance(1)
        timer.tick()
        timer.tick()

        assert seen == [1]


class TestAutoPause:
    """测试无活动自动暂停。"""

    def test_pauses_after_timeout(self, clock: FakeClock) -> None:
        timer = ActivityTimer(3, clock=clock)

        for _ in range(5):
            clock.advance(1)
            timer.tick()

        assert timer.status is TimerStatus.PAUSED
        assert timer.elapsed == 2

    def test_activity_keeps_running(self, clock: FakeClock) -> None:
        timer = ActivityTimer(3, clock=clock)

        for _ in range(10):
            clock.advance(1)
            timer.touch()
            timer.tick()

        assert timer.running
        assert timer.elapsed == 10

    def test_zero_timeout_disables(self, clock: FakeClock) -> None:
        timer = ActivityTimer(0, clock=clock)

        clock.advance(10_000)
        timer.tick()

        assert timer.running
        assert timer.elapsed == 10_000

    def test_resume_resets_last_activity(self, clock: FakeClock) -> None:
        """恢复时重置最后活动时间，不会立刻再次自动暂停。"""
        timer = ActivityTimer(3, clock=clock)
        clock.advance(5)
        timer.tick()
        assert not timer.running

        timer.toggle()
        clock.advance(1)
        timer.tick()

        assert timer.running
        assert timer.elapsed == 1


class TestManualOperations:
    """测试手动切换、重置与编辑。"""

    def test_toggle(self, clock: FakeClock) -> None:
        timer = ActivityTimer(120, clock=clock)

        assert timer.toggle() is TimerStatus.PAUSED
        assert timer.toggle() is TimerStatus.RUNNING

    def test_pause_counts_whole_seconds_so_far(self, clock: FakeClock) -> None:
        timer = ActivityTimer(120, clock=clock)
        clock.advance(2.5)

        timer.pause()
        clock.advance(100)
        timer.tick()

        assert timer.elapsed == 2

    def test_reset(self, clock: FakeClock) -> None:
        timer = ActivityTimer(120, elapsed=50, clock=clock)

        timer.reset()

        assert timer.elapsed == 0

    def test_edit_hms(self, clock: FakeClock) -> None:
        timer = ActivityTimer(120, clock=clock)

        timer.edit_hms(1, 2, 3)

        assert timer.elapsed == 3723

    def test_edit_hms_clamps_minutes_and_seconds(self, clock: FakeClock) -> None:
        timer = ActivityTimer(120, clock=clock)

        timer.edit_hms(0, 75, -4)

        assert timer.elapsed == 59 * 60

    def test_edit_rejects_negative(self, clock: FakeClock) -> None:
        timer = ActivityTimer(120, clock=clock)

        with pytest.raises(ValueError):
            timer.edit(-1)


class TestRestore:
    @pytest.mark.parametrize(
        ("local", "server", "expected"),
        [(0, 0, 0), (100, 40, 100), (40, 100, 100), (None, 7, 7)],
    )
    def test_reconcile_takes_max(self, local, server, expected) -> None:
        assert reconcile_elapsed(local, server) == expected

    def test_restore_sets_elapsed(self, clock: FakeClock) -> None:
        timer = ActivityTimer(120, clock=clock)

        assert timer.restore(30, 90) == 90
        assert timer.elapsed == 90


def test_format_hms() -> None:
    assert format_hms(3723) == "01:02:03"
    assert format_hms(0) == "00:00:00"

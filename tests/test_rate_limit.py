"""
tests.test_rate_limit
~~~~~~~~~~~~~~~~~~~~~

中继转发限流器测试。
"""
from __future__ import annotations

from texthooker.core.rate_limit import LineRateLimiter


class TestLineRateLimiter:
    """测试固定一秒窗口限流。"""

    def test_allows_up_to_limit_within_window(self) -> None:
        limiter = LineRateLimiter(per_second=3)

        results = [limiter.is_allowed("c1", now=10.0 + i * 0.1) for i in range(4)]

        assert results == [True, True, True, False]

    def test_window_resets_after_one_second(self) -> None:
        limiter = LineRateLimiter(per_second=1)

        assert limiter.is_allowed("c1", now=0.0)
        assert not limiter.is_allowed("c1", now=0.5)
        assert limiter.is_allowed("c1", now=1.0)

    def test_clients_are_independent(self) -> None:
        limiter = LineRateLimiter(per_second=1)

        assert limiter.is_allowed("a", now=0.0)
        assert limiter.is_allowed("b", now=0.0)

    def test_zero_disables(self) -> None:
        limiter = LineRateLimiter(per_second=0)

        assert all(limiter.is_allowed("c1", now=0.0) for _ in range(100))

    def test_remove_client_resets_window(self) -> None:
        limiter = LineRateLimiter(per_second=1)
        limiter.is_allowed("c1", now=0.0)

        limiter.remove_client("c1")

        assert limiter.is_allowed("c1", now=0.1)

"""
texthooker.core.rate_limit
~~~~~~~~~~~~~~~~~~~~~~~~~~

REST 接口与中继转发的限流配置。
"""
from __future__ import annotations

import time

from slowapi import Limiter
from slowapi.util import get_remote_address

# --------- HTTP 接口限流器 ---------
# 基于客户端 IP 地址进行限流
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)


# --------- 中继转发限流器 ---------
class LineRateLimiter:
    """基于内存的主持连接转发限流器。

    按固定一秒窗口统计每个连接转发的行数，超过 ``per_second`` 时拒绝。
    ``per_second`` 为 0 时不限流。
    """

    def __init__(self, per_second: float = 20.0) -> None:
        self.per_second = per_second
        # key 为连接 ID
        self._windows: dict[str, tuple[float, int]] = {}

    def is_allowed(self, client_id: str, now: float | None = None) -> bool:
        """检查连接是否允许再转发一行；允许时同时计数。"""
        if self.per_second <= 0:
            return True
        now = time.monotonic() if now is None else now
        window_start, count = self._windows.get(client_id, (now, 0))
        if now - window_start >= 1.0:
            window_start, count = now, 0
        if count >= self.per_second:
            self._windows[client_id] = (window_start, count)
            return False
        self._windows[client_id] = (window_start, count + 1)
        return True

    def remove_client(self, client_id: str) -> None:
        """清理断开连接的记录。"""
        self._windows.pop(client_id, None)

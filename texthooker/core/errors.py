"""
texthooker.core.errors
~~~~~~~~~~~~~~~~~~~~~~

业务异常定义。

HTTP 层的 ``AppError`` 由 ``main`` 中注册的异常处理器统一渲染为
``ApiResponse.fail()``；中继层的 ``RelayError`` 由 WebSocket 端点
转换为一次 ``error_message`` 事件，连接本身保持打开。
"""
from __future__ import annotations


class AppError(Exception):
    """带 HTTP 状态码的业务异常基类。"""

    status_code: int = 500

    def __init__(self, msg: str, status_code: int | None = None) -> None:
        super().__init__(msg)
        self.msg = msg
        if status_code is not None:
            self.status_code = status_code


class NotAuthenticated(AppError):
    status_code = 401

    def __init__(self, msg: str = "Not authenticated") -> None:
        super().__init__(msg)


class StoreError(AppError):
    """会话存储返回了无法解析的应答（非 JSON、信封缺失或数据不合法）。"""

    status_code = 502


class RelayError(Exception):
    """中继层错误，以一次 ``error_message`` 事件通知发送方。"""

    HOST_ONLY = "only the host can send lines"
    INVALID_LINE = "invalid line payload"
    RATE_LIMITED = "sending lines too fast"
    UNKNOWN_EVENT = "unknown event"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AdmissionError(RelayError):
    """房间准入失败（房间不存在 / 主持人冲突 / 请求体非法）。"""

    ROOM_NOT_FOUND = "room not found"
    HOST_COLLISION = "room already has a host"
    INVALID_PAYLOAD = "invalid join payload"

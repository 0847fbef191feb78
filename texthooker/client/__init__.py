"""
texthooker.client
~~~~~~~~~~~~~~~~~

采集客户端：桥接 / 粘贴采集、活动计时、会话持久化与房间协作。
"""
from texthooker.client.capture import CaptureClient, LineSource
from texthooker.client.preferences import CapturePreferences, LocalStore
from texthooker.client.state import CaptureState, Mode

__all__ = [
    "CaptureClient",
    "CapturePreferences",
    "CaptureState",
    "LineSource",
    "LocalStore",
    "Mode",
]

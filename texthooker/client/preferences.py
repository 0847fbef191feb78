"""
texthooker.client.preferences
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

采集客户端的本地持久化：一个 JSON 文件键值存储，以及其中保存的显示/采集偏好。

本地存储只在本机有效，不跨设备同步。除偏好外还保存:

- ``timer_<会话键>``: 每个会话的累计秒数（崩溃恢复用）
- ``host_token_<房间 ID>``: 主持人令牌（重连时出示）
"""
from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from texthooker.core.logging import get_logger

logger = get_logger(__name__)

_PREFERENCES_KEY = "preferences"


class LocalStore:
    """JSON 文件键值存储，每次写入都整体落盘（原子替换）。

    ``path`` 为 None 时只保存在内存里。
    """

    def __init__(self, path: str | os.PathLike[str] | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self._data: dict[str, Any] = {}
        if self.path is not None and self.path.exists():
            try:
                self._data = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("本地存储文件损坏，已忽略 | path=%s | %s", self.path, e)
                self._data = {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._flush()

    def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()

    def _flush(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".texthooker-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except OSError as e:
            logger.warning("本地存储写入失败 | path=%s | %s", self.path, e)
            Path(tmp).unlink(missing_ok=True)


def timer_key(session_key: str) -> str:
    return f"timer_{session_key}"


def host_token_key(room_id: str) -> str:
    return f"host_token_{room_id}"


class CapturePreferences(BaseModel):
    """显示与采集偏好。"""

    # ── 显示 ──────────────────────────────────────────────────────────
    font_family: str = Field(default="Noto Sans JP", description="字体")
    font_size: float = Field(default=24, gt=0, description="字号")
    vertical: bool = Field(default=False, description="竖排显示")

    # ── 计时 ──────────────────────────────────────────────────────────
    auto_pause_timeout: int = Field(default=120, ge=0, description="无活动自动暂停（秒），0 关闭")
    autostart_timer_by_line: bool = Field(default=False, description="桥接新行到达时自动开始计时")
    autostart_timer_by_paste: bool = Field(default=False, description="粘贴新行时自动开始计时")
    allow_new_line_during_pause: bool = Field(default=True, description="暂停时仍接收桥接新行")
    allow_paste_during_pause: bool = Field(default=True, description="暂停时仍接收粘贴新行")
    checkpoint_interval: float = Field(default=30, gt=0, description="计时检查点间隔（秒）")

    # ── 连接 ──────────────────────────────────────────────────────────
    websocket_url: str = Field(default="ws://localhost:6677", description="本地采集桥接地址")
    continuous_reconnect: bool = Field(default=False, description="桥接断开后持续重连")
    reconnect_interval: float = Field(default=3, gt=0, description="重连间隔（秒）")
    relay_url: str = Field(default="ws://localhost:3000/ws/relay", description="协作中继地址")
    api_url: str = Field(
        default="http://localhost:3000/api/text-sessions",
        description="会话存储 REST 地址",
    )

    @classmethod
    def load(cls, store: LocalStore) -> CapturePreferences:
        """从本地存储读取，缺失或非法时回退为默认值。"""
        raw = store.get(_PREFERENCES_KEY) or {}
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            logger.warning("偏好设置非法，使用默认值: %s", e)
            return cls()

    def save(self, store: LocalStore) -> None:
        store.set(_PREFERENCES_KEY, self.model_dump())

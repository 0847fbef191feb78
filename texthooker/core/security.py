"""
texthooker.core.security
~~~~~~~~~~~~~~~~~~~~~~~~

JWT 认证依赖。

令牌的签发属于外部的用户系统，这里只负责校验：优先读取
``Authorization: Bearer`` 头，其次读取 ``settings.AUTH_COOKIE_NAME`` Cookie。
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import Request, WebSocket
from jose import JWTError, jwt

from texthooker.core.config import settings
from texthooker.core.errors import NotAuthenticated
from texthooker.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    """已认证的用户上下文。"""

    user_id: str
    username: str | None = None


def decode_token(token: str) -> dict[str, Any] | None:
    """解码并校验 JWT，无效时返回 None。"""
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.debug("JWT 校验失败: %s", e)
        return None


def create_token(user_id: str, username: str | None = None) -> str:
    """签发一个 JWT（供本地调试与测试使用）。"""
    payload: dict[str, Any] = {"sub": user_id}
    if username:
        payload["username"] = username
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def _extract_token(headers: Any, cookies: dict[str, str]) -> str | None:
    auth_header: str | None = headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:]
    return cookies.get(settings.AUTH_COOKIE_NAME)


def _user_from_payload(payload: dict[str, Any] | None) -> CurrentUser | None:
    if not payload or not payload.get("sub"):
        return None
    return CurrentUser(user_id=str(payload["sub"]), username=payload.get("username"))


def get_optional_user(request: Request) -> CurrentUser | None:
    """读取当前用户，未登录或令牌无效时返回 None。"""
    token = _extract_token(request.headers, request.cookies)
    if not token:
        return None
    return _user_from_payload(decode_token(token))


def get_current_user(request: Request) -> CurrentUser:
    """要求已登录，否则抛出 ``NotAuthenticated``（401）。"""
    user = get_optional_user(request)
    if user is None:
        raise NotAuthenticated()
    return user


def get_websocket_user(websocket: WebSocket) -> CurrentUser | None:
    """WebSocket 握手阶段的可选认证，失败不拒绝连接。"""
    token = _extract_token(websocket.headers, websocket.cookies)
    if not token:
        return None
    return _user_from_payload(decode_token(token))

"""
texthooker.client.store_api
~~~~~~~~~~~~~~~~~~~~~~~~~~~

会话存储 REST 客户端（httpx）。

所有接口都返回 ``{code, data, msg}`` 信封，这里只取 ``data``。
非 2xx 响应抛 ``httpx.HTTPStatusError``，401 转为 ``NotAuthenticated``；
2xx 但内容无法解析（信封或数据不合法）时抛 ``StoreError``。
"""
from __future__ import annotations

from typing import Any, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError

from texthooker.core.errors import NotAuthenticated, StoreError
from texthooker.core.logging import get_logger
from texthooker.schemas.api_response import ApiResponse
from texthooker.schemas.relay import LineData
from texthooker.schemas.text_session import RecentSessionsData, RoomExistsData, SessionData, TimerData

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


def _seg(value: str) -> str:
    return quote(value, safe="")


def _validate(model: type[M], data: Any) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.debug("会话存储数据不合法 | model=%s | %s", model.__name__, e)
        raise StoreError(f"unexpected {model.__name__} payload") from e


class SessionStoreClient:
    """会话存储的异步客户端。

    Args:
        base_url: REST 前缀，例如 ``http://localhost:3000/api/text-sessions``。
        token: 登录后拿到的 JWT，作为 Bearer 头发送。
        client: 可注入的 ``httpx.AsyncClient``（测试时配合 ``MockTransport``）。
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._client.headers.update(headers)
        self.base_url = base_url.rstrip("/")

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        response = await self._client.request(method, f"{self.base_url}{path}", json=json)
        if response.status_code == 401:
            raise NotAuthenticated()
        response.raise_for_status()
        return ApiResponse.parse(response.content)

    # ── 会话 ──────────────────────────────────────────────────────────

    async def get_session(self, media_id: str) -> SessionData:
        data = await self._request("GET", f"/{_seg(media_id)}")
        return _validate(SessionData, data)

    async def append_lines(self, media_id: str, lines: list[LineData]) -> SessionData:
        body = {"lines": [line.to_stored().dump(exclude_none=True) for line in lines]}
        data = await self._request("POST", f"/{_seg(media_id)}/lines", json=body)
        return _validate(SessionData, data)

    async def remove_lines(self, media_id: str, line_ids: list[str]) -> SessionData:
        data = await self._request("DELETE", f"/{_seg(media_id)}/lines", json={"lineIds": line_ids})
        return _validate(SessionData, data)

    async def clear_lines(self, media_id: str) -> SessionData:
        data = await self._request("DELETE", f"/{_seg(media_id)}/lines/all")
        return _validate(SessionData, data)

    async def update_timer(self, media_id: str, seconds: int) -> int:
        data = await self._request("PATCH", f"/{_seg(media_id)}/timer", json={"timerSeconds": seconds})
        return _validate(TimerData, data).timer_seconds

    async def delete_session(self, media_id: str) -> None:
        await self._request("DELETE", f"/{_seg(media_id)}")

    # ── 房间 / 统计 ───────────────────────────────────────────────────

    async def room_exists(self, room_id: str) -> bool:
        data = await self._request("GET", f"/room/{_seg(room_id)}/exists")
        return _validate(RoomExistsData, data).exists

    async def recent(self) -> RecentSessionsData:
        data = await self._request("GET", "/recent")
        return _validate(RecentSessionsData, data)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

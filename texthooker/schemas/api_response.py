"""
texthooker.schemas.api_response
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

REST 信封 ``{"code", "data", "msg"}``。

服务端路由用 ``ok`` / ``fail`` 包装返回值；采集客户端用 ``parse``
拆开应答体，任何不符合信封格式的内容（例如代理返回的 HTML 页面）
都转为 ``StoreError``。
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field, ValidationError

from texthooker.core.errors import StoreError

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    code: int = Field(default=200, description="业务状态码，与 HTTP 状态码一致")
    data: T = Field(..., description="业务数据，失败时通常为 null")
    msg: str = Field(default="success", description="状态说明")

    @property
    def succeeded(self) -> bool:
        return 200 <= self.code < 300

    @classmethod
    def ok(cls, data: T, msg: str = "success") -> ApiResponse[T]:
        return cls(code=200, data=data, msg=msg)

    @classmethod
    def fail(cls, msg: str = "error", code: int = 500, data: Any = None) -> ApiResponse[Any]:
        return cls(code=code, data=data, msg=msg)

    @staticmethod
    def parse(content: bytes | str) -> Any:
        """解析一份应答体并返回其中的 ``data``。

        Raises:
            StoreError: 不是 JSON、缺少信封字段，或信封中的 ``code`` 表示失败。
        """
        try:
            envelope = ApiResponse[Any].model_validate_json(content)
        except ValidationError as e:
            raise StoreError(f"malformed response body ({e.error_count()} error(s))") from e
        if not envelope.succeeded:
            raise StoreError(envelope.msg, status_code=envelope.code)
        return envelope.data

"""
texthooker.schemas.base
~~~~~~~~~~~~~~~~~~~~~~~

对外 JSON 一律使用 camelCase 字段名，Python 内部使用 snake_case。
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """按 camelCase 别名序列化、同时接受两种写法输入的基类。"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def dump(self, **kwargs) -> dict:
        """以 camelCase 别名导出为 JSON 兼容字典。"""
        return self.model_dump(mode="json", by_alias=True, **kwargs)

"""
texthooker.db
~~~~~~~~~~~~~

MongoDB 异步连接管理。

进程内只维护一个 ``AsyncIOMotorClient`` 连接池：lifespan 启动时
``connect_mongo()``，关闭时 ``close_mongo()``。
"""
from __future__ import annotations

from urllib.parse import urlparse, urlunparse

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from texthooker.core.config import settings
from texthooker.core.logging import get_logger

logger = get_logger(__name__)

_client: AsyncIOMotorClient | None = None


def mask_uri(uri: str) -> str:
    """隐藏连接串中的密码，避免凭证写入日志。"""
    parsed = urlparse(uri)
    if not parsed.password:
        return uri
    netloc = f"{parsed.username}:***@{parsed.hostname}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


async def connect_mongo(uri: str | None = None) -> AsyncIOMotorDatabase:
    """建立连接池并 ping 目标库，失败时抛出原始异常。"""
    global _client
    uri = uri or settings.MONGO_URI
    _client = AsyncIOMotorClient(uri, tz_aware=True)
    db = _client[settings.MONGO_DB_NAME]
    try:
        await db.command("ping")
    except Exception as e:
        logger.error("MongoDB 连接失败 | uri=%s | %s", mask_uri(uri), e, exc_info=True)
        raise
    logger.info("MongoDB 已连接 | uri=%s | db=%s", mask_uri(uri), settings.MONGO_DB_NAME)
    return db


async def close_mongo() -> None:
    """关闭连接池（可重复调用）。"""
    global _client
    if _client is not None:
        _client.close()
        _client = None
        logger.info("MongoDB 连接已关闭")


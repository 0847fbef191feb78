"""
texthooker.main
~~~~~~~~~~~~~~~

FastAPI 应用入口：注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from texthooker.api import relay_ws, rooms, text_sessions
from texthooker.core.config import settings
from texthooker.core.errors import AppError
from texthooker.core.logging import get_logger, setup_logging
from texthooker.core.rate_limit import limiter
from texthooker.db import close_mongo, connect_mongo
from texthooker.db.session_repository import SessionRepository
from texthooker.schemas.api_response import ApiResponse
from texthooker.services.room_registry import RoomRegistry

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    db = await connect_mongo()
    repository = SessionRepository(db)
    app.state.repository = repository
    app.state.registry = RoomRegistry(repository)
    logger.info(
        "应用已启动 | env=%s | debug=%s | log_level=%s",
        settings.ENVIRONMENT,
        settings.debug,
        settings.effective_log_level,
    )
    yield
    # ── 关闭 ──
    await close_mongo()
    logger.info("应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="实时协作文本采集：会话存储与房间广播中继",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ── CORS 中间件 ───────────────────────────────────────────────────────
if settings.allow_cors_all_origins:
    # dev / test 环境：允许所有来源，方便本地调试
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    # prod 环境：仅允许前端来源，需携带认证 Cookie
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(text_sessions.router, prefix="/api/text-sessions", tags=["Text Sessions"])
app.include_router(rooms.router, prefix="/api", tags=["Rooms"])
app.include_router(relay_ws.router, tags=["Relay WebSocket"])


# ── 全局异常处理器 ────────────────────────────────────────────────────

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """业务异常：按异常自带的状态码返回 ``ApiResponse.fail()``。"""
    if exc.status_code >= 500:
        logger.error("业务异常: %s %s -> %s", request.method, request.url, exc.msg)
    response = ApiResponse.fail(msg=exc.msg, code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=response.model_dump())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """请求体校验失败统一为 400。"""
    logger.debug("请求校验失败: %s %s -> %s", request.method, request.url, exc.errors())
    response = ApiResponse.fail(msg="Validation Error", code=400, data=jsonable_errors(exc))
    return JSONResponse(status_code=400, content=response.model_dump())


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "Internal Server Error"
    response = ApiResponse.fail(msg=detail, code=500, data=None)
    return JSONResponse(status_code=500, content=response.model_dump())


@app.get("/health", tags=["System"])
async def health_check() -> JSONResponse:
    """验证服务是否正常运行。"""
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "debug": settings.debug,
            "log_level": settings.effective_log_level,
        },
    )


def run() -> None:
    import uvicorn

    uvicorn.run(
        "texthooker.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )


if __name__ == "__main__":
    run()

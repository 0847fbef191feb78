"""
texthooker.api.text_sessions
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

会话存储 REST 接口。路由前缀 ``/api/text-sessions``。

端点:
  - ``GET    /recent``                 → 最近会话 + 汇总统计（需登录）
  - ``GET    /room/{room_id}/exists``  → 房间会话是否存在（可匿名）
  - ``GET    /room/{room_id}``         → 房间会话的行历史（可匿名）
  - ``GET    /{media_id}``             → 获取会话，不存在则创建
  - ``POST   /{media_id}/lines``       → 追加行（按行 ID 幂等）
  - ``PATCH  /{media_id}/timer``       → 覆盖写入累计计时
  - ``DELETE /{media_id}/lines``       → 按 ID 删除行
  - ``DELETE /{media_id}/lines/all``   → 清空全部行
  - ``DELETE /{media_id}``             → 删除会话（幂等）

媒体 ID 由外部媒体目录分配，这里只当作不透明字符串。
"""
from fastapi import APIRouter, Depends, Request

from texthooker.api.deps import get_repository
from texthooker.core.logging import get_logger
from texthooker.core.rate_limit import limiter
from texthooker.core.security import CurrentUser, get_current_user
from texthooker.db.session_repository import SessionRepository
from texthooker.schemas.api_response import ApiResponse
from texthooker.schemas.text_session import (
    AppendLinesRequest,
    MediaKey,
    RecentSessionsData,
    RemoveLinesRequest,
    RoomExistsData,
    RoomKey,
    SessionData,
    TimerData,
    TimerUpdateRequest,
)

logger = get_logger(__name__)

router: APIRouter = APIRouter()


# ── 统计 / 房间 ───────────────────────────────────────────────────────

@router.get(
    "/recent",
    summary="最近会话与汇总统计",
    response_model=ApiResponse[RecentSessionsData],
)
@limiter.limit("10/second")
async def get_recent_sessions(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    repo: SessionRepository = Depends(get_repository),
):
    data = await repo.list_recent(user.user_id)
    return ApiResponse.ok(data=data)


@router.get(
    "/room/{room_id}/exists",
    summary="检查房间是否存在",
    response_model=ApiResponse[RoomExistsData],
)
@limiter.limit("10/second")
async def check_room_exists(
    request: Request,
    room_id: str,
    repo: SessionRepository = Depends(get_repository),
):
    """加入房间前的预检，只看持久化记录，不看实时连接。"""
    exists = await repo.room_exists(room_id)
    return ApiResponse.ok(data=RoomExistsData(exists=exists))


@router.get(
    "/room/{room_id}",
    summary="获取房间会话",
    response_model=ApiResponse[SessionData],
)
@limiter.limit("10/second")
async def get_room_session(
    request: Request,
    room_id: str,
    repo: SessionRepository = Depends(get_repository),
):
    """未知房间返回空会话而不是 404。"""
    key = RoomKey(room_id)
    session = await repo.get_session(key)
    return ApiResponse.ok(data=session or SessionData.empty(key))


# ── 媒体会话 ──────────────────────────────────────────────────────────

@router.get(
    "/{media_id}",
    summary="获取（或创建）媒体会话",
    response_model=ApiResponse[SessionData],
)
@limiter.limit("10/second")
async def get_session(
    request: Request,
    media_id: str,
    user: CurrentUser = Depends(get_current_user),
    repo: SessionRepository = Depends(get_repository),
):
    session = await repo.open_session(MediaKey(user.user_id, media_id))
    return ApiResponse.ok(data=session)


@router.post(
    "/{media_id}/lines",
    summary="追加行",
    response_model=ApiResponse[SessionData],
)
@limiter.limit("20/second")
async def add_lines(
    request: Request,
    media_id: str,
    body: AppendLinesRequest,
    user: CurrentUser = Depends(get_current_user),
    repo: SessionRepository = Depends(get_repository),
):
    """ID 已存在的行会被跳过，重复提交不会产生重复行。"""
    session = await repo.append_lines(MediaKey(user.user_id, media_id), body.lines)
    return ApiResponse.ok(data=session)


@router.patch(
    "/{media_id}/timer",
    summary="更新累计计时",
    response_model=ApiResponse[TimerData],
)
@limiter.limit("10/second")
async def update_timer(
    request: Request,
    media_id: str,
    body: TimerUpdateRequest,
    user: CurrentUser = Depends(get_current_user),
    repo: SessionRepository = Depends(get_repository),
):
    seconds = await repo.update_timer(MediaKey(user.user_id, media_id), body.timer_seconds)
    return ApiResponse.ok(data=TimerData(timer_seconds=seconds))


@router.delete(
    "/{media_id}/lines/all",
    summary="清空全部行",
    response_model=ApiResponse[SessionData],
)
@limiter.limit("10/second")
async def clear_lines(
    request: Request,
    media_id: str,
    user: CurrentUser = Depends(get_current_user),
    repo: SessionRepository = Depends(get_repository),
):
    key = MediaKey(user.user_id, media_id)
    session = await repo.clear_lines(key)
    return ApiResponse.ok(data=session or SessionData.empty(key))


@router.delete(
    "/{media_id}/lines",
    summary="按 ID 删除行",
    response_model=ApiResponse[SessionData],
)
@limiter.limit("20/second")
async def remove_lines(
    request: Request,
    media_id: str,
    body: RemoveLinesRequest,
    user: CurrentUser = Depends(get_current_user),
    repo: SessionRepository = Depends(get_repository),
):
    """不存在的 ID 被忽略，不视为错误。"""
    key = MediaKey(user.user_id, media_id)
    session = await repo.remove_lines(key, body.line_ids)
    return ApiResponse.ok(data=session or SessionData.empty(key))


@router.delete(
    "/{media_id}",
    summary="删除会话",
    response_model=ApiResponse[None],
)
@limiter.limit("10/second")
async def delete_session(
    request: Request,
    media_id: str,
    user: CurrentUser = Depends(get_current_user),
    repo: SessionRepository = Depends(get_repository),
):
    deleted = await repo.delete_session(MediaKey(user.user_id, media_id))
    logger.info("删除会话 | user=%s | media=%s | existed=%s", user.user_id, media_id, deleted)
    return ApiResponse.ok(data=None, msg="Session deleted successfully")

from fastapi import APIRouter, Depends, Request

from texthooker.api.deps import get_registry
from texthooker.core.rate_limit import limiter
from texthooker.schemas.api_response import ApiResponse
from texthooker.schemas.text_session import RoomInfoData
from texthooker.services.room_registry import RoomRegistry

router: APIRouter = APIRouter()


@router.get("/rooms", summary="获取活跃房间列表", response_model=ApiResponse[list[RoomInfoData]])
@limiter.limit("10/second")
async def list_rooms(request: Request, registry: RoomRegistry = Depends(get_registry)):
    """返回当前进程内所有活跃协作房间。"""
    return ApiResponse.ok(data=registry.list_rooms())

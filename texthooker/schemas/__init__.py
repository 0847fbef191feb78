"""
texthooker.schemas
~~~~~~~~~~~~~~~~~~
REST 与中继协议的 Pydantic 模型。
"""
from texthooker.schemas.api_response import ApiResponse
from texthooker.schemas.relay import JoinRoomPayload, LineData, MemberData, SendLinePayload
from texthooker.schemas.text_session import (
    MediaKey,
    RoomKey,
    SessionData,
    SessionKey,
    StoredLine,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()

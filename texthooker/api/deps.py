from fastapi import Request

from texthooker.db.session_repository import SessionRepository
from texthooker.services.room_registry import RoomRegistry


def get_repository(request: Request) -> SessionRepository:
    return request.app.state.repository


def get_registry(request: Request) -> RoomRegistry:
    return request.app.state.registry

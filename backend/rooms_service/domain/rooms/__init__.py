"""Rooms domain exports."""

from .commands import RoomCommandRouter
from .projector import RecentMessageProjector
from .service import RoomService

__all__ = ["RoomService", "RecentMessageProjector", "RoomCommandRouter"]

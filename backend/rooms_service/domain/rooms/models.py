"""Domain models for rooms, rights and notification settings."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from rooms_service.domain.rooms.permissions import Right, RightSet

LOADING_TEXT = "loading..."


@dataclass(slots=True)
class MessageAuthor:
    id: str
    username: str


@dataclass(slots=True)
class RecentMessage:
    """Denormalised snapshot of the latest message cached on a room."""

    id: str
    author: MessageAuthor
    room_id: str
    text: str
    attachments: List[str] = field(default_factory=list)
    timestamp: str = ""

    @classmethod
    def placeholder(cls, room_id: str) -> "RecentMessage":
        return cls(
            id="",
            author=MessageAuthor(id="", username="Loading..."),
            room_id=room_id,
            text=LOADING_TEXT,
            attachments=[LOADING_TEXT],
            timestamp=LOADING_TEXT,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "author": {"id": self.author.id, "username": self.author.username},
            "room_id": self.room_id,
            "text": self.text,
            "attachments": list(self.attachments),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RecentMessage":
        author = data.get("author") or {}
        return cls(
            id=str(data.get("id", "")),
            author=MessageAuthor(id=str(author.get("id", "")), username=str(author.get("username", ""))),
            room_id=str(data.get("room_id", "")),
            text=str(data.get("text", "")),
            attachments=list(data.get("attachments") or []),
            timestamp=str(data.get("timestamp", "")),
        )


@dataclass(slots=True)
class Room:
    """Persisted representation of a chat room."""

    id: str
    name: str
    description: Optional[str]
    photo: str
    is_user: bool
    is_private: bool
    users_id: List[str]
    messages_id: List[str]
    recent_message: Optional[RecentMessage]
    members_count: int
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class UserProfile:
    """Account summary used to resolve invites and expand room members."""

    id: str
    username: str
    email: Optional[str] = None
    phone_number: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    birthday: Optional[str] = None
    photo: Optional[str] = None

    def matches_name(self, needle: str) -> bool:
        lowered = needle.lower()
        candidates = (self.username, self.first_name, self.last_name)
        return any(value and lowered in value.lower() for value in candidates)


@dataclass(slots=True)
class PopulatedRoom:
    """A room whose member ids are expanded into profiles."""

    room: Room
    members: List[UserProfile]


@dataclass(slots=True)
class Rights:
    user_id: str
    room_id: str
    rights: RightSet

    def allows(self, right: Right) -> bool:
        return right in self.rights


@dataclass(slots=True)
class NotificationSetting:
    user_id: str
    room_id: str
    notifications: bool


@dataclass(slots=True)
class Message:
    """Message entity owned by the messaging service; read here only."""

    id: str
    room_id: str
    author_id: str
    text: str
    attachments: List[str]
    timestamp: str

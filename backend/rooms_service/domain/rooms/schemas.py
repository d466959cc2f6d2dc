"""Pydantic schemas for room command payloads and results."""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from rooms_service.domain.rooms import models
from rooms_service.domain.rooms.permissions import Right, ordered
from rooms_service.domain.rooms.policy import DeleteMode


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Payloads


class EmptyPayload(CamelModel):
    pass


class UserPayload(CamelModel):
    user_id: str = Field(..., min_length=1)


class RoomPayload(CamelModel):
    room_id: str = Field(..., min_length=1)


class UserRoomPayload(CamelModel):
    user_id: str = Field(..., min_length=1)
    room_id: str = Field(..., min_length=1)


class RoomCreateRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=1000)
    is_user: bool = False
    is_private: bool = False


class CreateRoomPayload(CamelModel):
    user_id: str = Field(..., min_length=1)
    room_spec: RoomCreateRequest


class FindByNamePayload(CamelModel):
    name: str = Field(..., min_length=1, max_length=120)
    user_id: str = Field(..., min_length=1)


class RoomPatch(CamelModel):
    """Optional room fields; falsy values leave the stored value in place."""

    name: Optional[str] = Field(default=None, max_length=120)
    description: Optional[str] = Field(default=None, max_length=1000)
    is_private: Optional[bool] = None
    members_count: Optional[int] = Field(default=None, ge=0)


class GatedRoomPayload(CamelModel):
    rights: List[Right] = Field(default_factory=list)
    user_id: str = Field(..., min_length=1)
    room_id: str = Field(..., min_length=1)


class UpdateRoomPayload(GatedRoomPayload):
    patch: RoomPatch = Field(default_factory=RoomPatch)


class ChangeRoomPhotoPayload(GatedRoomPayload):
    photo: str = Field(..., min_length=1)


class AddUserPayload(GatedRoomPayload):
    identifier: str = Field(..., min_length=1, max_length=254)
    granted_rights: List[Right] = Field(default_factory=list)


class DeleteUserPayload(GatedRoomPayload):
    target_id: str = Field(..., min_length=1)
    mode: DeleteMode


class ChangeUserRightsPayload(CamelModel):
    rights: List[Right] = Field(default_factory=list)
    performer_id: str = Field(..., min_length=1)
    target_id: str = Field(..., min_length=1)
    room_id: str = Field(..., min_length=1)
    new_rights: List[Right] = Field(...)


class MessageReferencePayload(CamelModel):
    message_id: str = Field(..., min_length=1)
    room_id: str = Field(..., min_length=1)


class ChangeNotificationsPayload(CamelModel):
    user_id: str = Field(..., min_length=1)
    room_id: str = Field(..., min_length=1)
    enabled: bool


# Results


class AuthorOut(CamelModel):
    id: str
    username: str


class RecentMessageOut(CamelModel):
    id: str
    author: AuthorOut
    room_id: str
    text: str
    attachments: List[str] = Field(default_factory=list)
    timestamp: str


class UserOut(CamelModel):
    id: str
    username: str
    email: Optional[str] = None
    phone_number: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    birthday: Optional[str] = None
    photo: Optional[str] = None


class RoomOut(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    photo: str
    is_user: bool
    is_private: bool
    users_id: List[str] = Field(default_factory=list, alias="usersID")
    messages_id: List[str] = Field(default_factory=list, alias="messagesID")
    recent_message: Optional[RecentMessageOut] = None
    members_count: int
    created_at: datetime
    updated_at: datetime


class PopulatedRoomOut(RoomOut):
    users_id: List[UserOut] = Field(default_factory=list, alias="usersID")


class RightsOut(CamelModel):
    user_id: str
    room_id: str
    rights: List[str]


class NotificationSettingOut(CamelModel):
    user_id: str
    room_id: str
    notifications: bool


def room_out(room: models.Room) -> RoomOut:
    return RoomOut.model_validate(asdict(room))


def populated_room_out(populated: models.PopulatedRoom) -> PopulatedRoomOut:
    data = asdict(populated.room)
    data["users_id"] = [asdict(member) for member in populated.members]
    return PopulatedRoomOut.model_validate(data)


def user_out(user: models.UserProfile) -> UserOut:
    return UserOut.model_validate(asdict(user))


def rights_out(record: models.Rights) -> RightsOut:
    return RightsOut(user_id=record.user_id, room_id=record.room_id, rights=ordered(record.rights))


def notification_out(setting: models.NotificationSetting) -> NotificationSettingOut:
    return NotificationSettingOut.model_validate(asdict(setting))

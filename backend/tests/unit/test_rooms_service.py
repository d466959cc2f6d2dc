import asyncio
from dataclasses import replace
from http import HTTPStatus

import pytest

from rooms_service.domain.rooms import models, policy
from rooms_service.domain.rooms.gate import AuthorizationGate
from rooms_service.domain.rooms.permissions import FULL_RIGHTS, PUBLIC_ENTRY_RIGHTS, WELCOME_RIGHTS, Right
from rooms_service.domain.rooms.policy import DeleteMode, IdentifierKind
from rooms_service.domain.rooms.repo import RoomStores, UserRepository
from rooms_service.domain.rooms.schemas import RoomCreateRequest, RoomPatch
from rooms_service.domain.rooms.service import RoomService, welcome_room_id
from rooms_service.infra.media import MediaUploadError
from rooms_service.settings import settings

ALL = list(FULL_RIGHTS)


async def _seed_users(stores: RoomStores, *users: models.UserProfile) -> None:
    for user in users:
        await stores.users.create(user)


async def _room(service: RoomService, owner: str = "owner", **spec) -> models.Room:
    spec.setdefault("name", "Study Group")
    return await service.create_room(owner, RoomCreateRequest(**spec))


@pytest.mark.asyncio
async def test_create_room_grants_owner_full_rights():
    service = RoomService()
    room = await _room(service, description="evening sessions")

    assert room.users_id == ["owner"]
    assert room.members_count == 1
    assert room.photo == settings.default_room_photo
    assert room.recent_message is not None
    assert room.recent_message.text == models.LOADING_TEXT

    stored = await service.stores.rooms.get(room.id)
    assert stored is not None and stored.name == "Study Group"

    rights = await service.load_rights("owner", room.id)
    assert rights is not None
    assert rights.rights == FULL_RIGHTS
    assert Right.LEAVE_ROOM in rights.rights

    settings_for_owner = await service.get_user_notifications_settings("owner")
    assert [(item.room_id, item.notifications) for item in settings_for_owner] == [(room.id, True)]


@pytest.mark.asyncio
async def test_add_welcome_chat_creates_isolated_copy_per_user():
    service = RoomService()
    template = await _room(service, owner="system", name=settings.welcome_room_name, description="Say hi")
    await service.add_message_reference("m-welcome", template.id)

    status = await service.add_welcome_chat("alice")
    assert status is HTTPStatus.CREATED
    assert await service.add_welcome_chat("bob") is HTTPStatus.CREATED

    alice_room = await service.stores.rooms.get(welcome_room_id(template.id, "alice"))
    bob_room = await service.stores.rooms.get(welcome_room_id(template.id, "bob"))
    assert alice_room is not None and bob_room is not None
    assert alice_room.id != bob_room.id
    assert alice_room.users_id == ["alice"]
    assert alice_room.name == settings.welcome_room_name
    assert alice_room.description == "Say hi"
    assert alice_room.messages_id == ["m-welcome"]

    # the template itself is never touched
    untouched = await service.stores.rooms.get(template.id)
    assert untouched is not None
    assert untouched.users_id == ["system"]

    rights = await service.load_rights("alice", alice_room.id)
    assert rights is not None and rights.rights == WELCOME_RIGHTS
    notifications = await service.get_user_notifications_settings("alice")
    assert [item.room_id for item in notifications] == [alice_room.id]


@pytest.mark.asyncio
async def test_add_welcome_chat_is_idempotent_and_requires_template():
    service = RoomService()
    assert await service.add_welcome_chat("alice") is HTTPStatus.NOT_FOUND

    await _room(service, owner="system", name=settings.welcome_room_name)
    assert await service.add_welcome_chat("alice") is HTTPStatus.CREATED
    assert await service.add_welcome_chat("alice") is HTTPStatus.OK
    rooms = await service.get_all_rooms()
    assert len(rooms) == 2


@pytest.mark.asyncio
async def test_welcome_copies_are_private_to_their_user():
    service = RoomService()
    template = await _room(service, owner="system", name=settings.welcome_room_name)
    assert template.is_private is False
    await service.add_welcome_chat("alice")
    copy_id = welcome_room_id(template.id, "alice")

    copy = await service.stores.rooms.get(copy_id)
    assert copy.is_private is True

    bob_hits = await service.find_room_and_users_by_name(settings.welcome_room_name, "bob")
    assert [hit.id for hit in bob_hits] == [template.id]
    alice_hits = await service.find_room_and_users_by_name(settings.welcome_room_name, "alice")
    assert sorted(hit.id for hit in alice_hits) == sorted([template.id, copy_id])


@pytest.mark.asyncio
async def test_get_all_user_rooms_expands_members():
    service = RoomService()
    await _seed_users(
        service.stores,
        models.UserProfile(id="owner", username="olivia"),
        models.UserProfile(id="member", username="max", email="max@example.com"),
    )
    shared = await _room(service, name="Shared")
    await _room(service, owner="someone-else", name="Elsewhere")
    await service.enter_public_room("member", shared.id)

    populated = await service.get_all_user_rooms("member")
    assert [item.room.id for item in populated] == [shared.id]
    assert [member.username for member in populated[0].members] == ["olivia", "max"]
    assert await service.get_all_user_rooms("nobody") == []


@pytest.mark.asyncio
async def test_find_room_and_users_by_name_unions_without_duplicates():
    service = RoomService()
    await _seed_users(
        service.stores,
        models.UserProfile(id="u-chess", username="chessmaster"),
        models.UserProfile(id="u-other", username="zed", first_name="Chester"),
        models.UserProfile(id="u-none", username="nobody"),
    )
    public = await _room(service, owner="caller", name="Chess Club")
    secret = await _room(service, owner="caller", name="Chess Strategy", is_private=True)
    await _room(service, owner="stranger", name="Chess Private", is_private=True)
    await _room(service, owner="stranger", name="Cooking")

    hits = await service.find_room_and_users_by_name("CHES", "caller")
    ids = [hit.id for hit in hits]

    assert ids == [public.id, "u-chess", "u-other", secret.id]
    assert len(ids) == len(set(ids))


@pytest.mark.asyncio
async def test_find_room_and_users_by_name_treats_input_literally():
    service = RoomService()
    await _room(service, name="a.b room")
    await _room(service, name="axb room")

    hits = await service.find_room_and_users_by_name("a.b", "caller")
    assert [hit.name for hit in hits] == ["a.b room"]


@pytest.mark.asyncio
async def test_update_room_requires_change_room_right():
    service = RoomService()
    room = await _room(service)
    await service.enter_public_room("member", room.id)

    result = await service.update_room(ALL, "member", room.id, RoomPatch(name="Hijacked"))
    assert result is HTTPStatus.UNAUTHORIZED

    # owner holds the right but does not claim it
    result = await service.update_room([Right.DELETE_ROOM], "owner", room.id, RoomPatch(name="Nope"))
    assert result is HTTPStatus.UNAUTHORIZED

    updated = await service.update_room([Right.CHANGE_ROOM], "owner", room.id, RoomPatch(name="Renamed"))
    assert isinstance(updated, models.Room)
    assert updated.name == "Renamed"
    assert updated.description == room.description


@pytest.mark.asyncio
async def test_update_room_ignores_falsy_patch_fields():
    service = RoomService()
    room = await _room(service, description="keep me", is_private=True)
    before = await service.stores.rooms.get(room.id)

    updated = await service.update_room(
        ALL,
        "owner",
        room.id,
        RoomPatch(name="", description="", is_private=False, members_count=0),
    )
    assert isinstance(updated, models.Room)
    assert updated.updated_at >= before.updated_at
    assert replace(updated, updated_at=before.updated_at) == before


@pytest.mark.asyncio
async def test_update_room_missing_room_is_not_found():
    service = RoomService()
    room = await _room(service)
    await service.stores.rooms.delete(room.id)
    result = await service.update_room(ALL, "owner", room.id, RoomPatch(name="Gone"))
    assert result is HTTPStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_change_room_photo_persists_uploaded_url(local_media):
    service = RoomService()
    room = await _room(service)

    updated = await service.change_room_photo(ALL, "owner", room.id, b"\x89PNG-data")
    assert isinstance(updated, models.Room)
    assert updated.photo == f"http://testserver/uploads/{settings.media_folder}/{room.id}/photo"
    written = local_media.upload_dir / settings.media_folder / room.id / "photo"
    assert written.read_bytes() == b"\x89PNG-data"


class _FailingUploader:
    async def upload(self, data: bytes, destination: str) -> str:
        raise MediaUploadError("backend down")


@pytest.mark.asyncio
async def test_change_room_photo_failure_keeps_photo_and_raises_internal():
    service = RoomService(uploader=_FailingUploader())
    room = await _room(service)

    with pytest.raises(policy.RoomInternalError) as excinfo:
        await service.change_room_photo(ALL, "owner", room.id, b"data")
    assert excinfo.value.to_payload() == {
        "key": "INTERNAL_SERVER_ERROR",
        "code": 500,
        "message": "Internal server error",
    }
    stored = await service.stores.rooms.get(room.id)
    assert stored.photo == settings.default_room_photo


@pytest.mark.asyncio
async def test_change_room_photo_unauthorized_skips_upload():
    service = RoomService(uploader=_FailingUploader())
    room = await _room(service)
    assert await service.change_room_photo([], "owner", room.id, b"data") is HTTPStatus.UNAUTHORIZED


@pytest.mark.asyncio
async def test_delete_room_cleans_up_rights_and_notifications():
    service = RoomService()
    room = await _room(service)
    await service.enter_public_room("member", room.id)

    assert await service.delete_room([Right.CHANGE_ROOM], "owner", room.id) is HTTPStatus.UNAUTHORIZED
    assert await service.delete_room([Right.DELETE_ROOM], "owner", room.id) is HTTPStatus.OK
    assert await service.stores.rooms.get(room.id) is None
    assert await service.load_rights("owner", room.id) is None
    assert await service.load_rights("member", room.id) is None
    assert await service.get_user_notifications_settings("member") == []


@pytest.mark.asyncio
async def test_delete_room_twice_is_not_found_once_rights_are_gone():
    service = RoomService()
    room = await _room(service)
    assert await service.delete_room(ALL, "owner", room.id) is HTTPStatus.OK
    # rights were cleaned up with the room, so the gate now refuses
    assert await service.delete_room(ALL, "owner", room.id) is HTTPStatus.UNAUTHORIZED


@pytest.mark.asyncio
async def test_delete_room_missing_room_with_stale_rights_is_not_found():
    service = RoomService()
    room = await _room(service)
    await service.stores.rooms.delete(room.id)
    assert await service.delete_room(ALL, "owner", room.id) is HTTPStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_message_reference_round_trip_restores_list():
    service = RoomService()
    room = await _room(service)
    await service.add_message_reference("m1", room.id)
    await service.add_message_reference("m2", room.id)
    before = (await service.stores.rooms.get(room.id)).messages_id

    assert await service.add_message_reference("m3", room.id) is HTTPStatus.CREATED
    assert await service.delete_message_reference(room.id, "m3") is HTTPStatus.CREATED

    after = (await service.stores.rooms.get(room.id)).messages_id
    assert after == before == ["m1", "m2"]


@pytest.mark.asyncio
async def test_message_reference_missing_cases():
    service = RoomService()
    room = await _room(service)
    assert await service.delete_message_reference(room.id, "absent") is HTTPStatus.NOT_FOUND
    assert await service.add_message_reference("m1", "no-such-room") is HTTPStatus.NOT_FOUND
    assert await service.delete_message_reference("no-such-room", "m1") is HTTPStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_enter_public_room_grants_baseline_rights():
    service = RoomService()
    room = await _room(service, is_private=True)

    # privacy is enforced by the caller, not here
    assert await service.enter_public_room("member", room.id) is HTTPStatus.OK
    stored = await service.stores.rooms.get(room.id)
    assert stored.users_id == ["owner", "member"]
    assert stored.members_count == 2

    rights = await service.load_rights("member", room.id)
    assert rights is not None and rights.rights == PUBLIC_ENTRY_RIGHTS

    assert await service.enter_public_room("member", room.id) is HTTPStatus.BAD_REQUEST
    assert await service.enter_public_room("member", "no-such-room") is HTTPStatus.BAD_REQUEST


class _RecordingUsers(UserRepository):
    def __init__(self) -> None:
        super().__init__()
        self.lookups: list[tuple[IdentifierKind, str]] = []

    async def find_by(self, kind, value):
        self.lookups.append((kind, value))
        return await super().find_by(kind, value)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "identifier,expected",
    [
        ("a@b.com", IdentifierKind.EMAIL),
        ("+15550100", IdentifierKind.PHONE),
        ("alice", IdentifierKind.USERNAME),
    ],
)
async def test_add_user_uses_exactly_one_lookup(identifier, expected):
    users = _RecordingUsers()
    service = RoomService(RoomStores(users=users))
    room = await _room(service)

    status = await service.add_user_to_room(ALL, "owner", room.id, identifier, [Right.SEND_MESSAGES])
    assert status is HTTPStatus.BAD_REQUEST
    assert users.lookups == [(expected, identifier)]


@pytest.mark.asyncio
async def test_add_user_resolves_target_and_grants_rights():
    service = RoomService()
    await _seed_users(
        service.stores,
        models.UserProfile(id="u-alice", username="alice", email="alice@example.com", phone_number="+15550100"),
    )
    room = await _room(service)

    status = await service.add_user_to_room(
        [Right.ADD_USERS],
        "owner",
        room.id,
        "alice@example.com",
        [Right.SEND_MESSAGES, Right.LEAVE_ROOM],
    )
    assert status is HTTPStatus.CREATED
    stored = await service.stores.rooms.get(room.id)
    assert stored.users_id == ["owner", "u-alice"]
    rights = await service.load_rights("u-alice", room.id)
    assert rights.rights == frozenset({Right.SEND_MESSAGES, Right.LEAVE_ROOM})
    notifications = await service.get_user_notifications_settings("u-alice")
    assert [item.notifications for item in notifications] == [True]

    # already a member: rejected and rights untouched
    again = await service.add_user_to_room(ALL, "owner", room.id, "+15550100", [Right.DELETE_ROOM])
    assert again is HTTPStatus.BAD_REQUEST
    assert (await service.load_rights("u-alice", room.id)).rights == rights.rights


@pytest.mark.asyncio
async def test_add_user_requires_add_users_right():
    service = RoomService()
    await _seed_users(service.stores, models.UserProfile(id="u-alice", username="alice"))
    room = await _room(service)
    await service.enter_public_room("member", room.id)

    status = await service.add_user_to_room(ALL, "member", room.id, "alice", [])
    assert status is HTTPStatus.UNAUTHORIZED
    assert (await service.stores.rooms.get(room.id)).users_id == ["owner", "member"]


@pytest.mark.asyncio
async def test_leave_room_as_last_member_deletes_room():
    service = RoomService()
    room = await _room(service, owner="u1")

    status = await service.delete_user_from_room([], "u1", "u1", room.id, DeleteMode.LEAVE_ROOM)
    assert status is HTTPStatus.OK
    assert await service.stores.rooms.get(room.id) is None
    assert await service.load_rights("u1", room.id) is None
    assert await service.get_user_notifications_settings("u1") == []


@pytest.mark.asyncio
async def test_leave_room_removes_member_and_their_records():
    service = RoomService()
    room = await _room(service)
    await service.enter_public_room("member", room.id)

    status = await service.delete_user_from_room([], "member", "member", room.id, DeleteMode.LEAVE_ROOM)
    assert status is HTTPStatus.CREATED
    stored = await service.stores.rooms.get(room.id)
    assert stored.users_id == ["owner"]
    assert stored.members_count == 1
    assert await service.load_rights("member", room.id) is None
    assert await service.load_rights("owner", room.id) is not None


@pytest.mark.asyncio
async def test_leave_room_for_someone_else_is_unauthorized():
    service = RoomService()
    room = await _room(service)
    await service.enter_public_room("member", room.id)

    status = await service.delete_user_from_room(ALL, "owner", "member", room.id, DeleteMode.LEAVE_ROOM)
    assert status is HTTPStatus.UNAUTHORIZED
    assert (await service.stores.rooms.get(room.id)).users_id == ["owner", "member"]


@pytest.mark.asyncio
async def test_delete_user_mode_requires_delete_users_right():
    service = RoomService()
    room = await _room(service)
    await service.enter_public_room("member", room.id)
    await service.enter_public_room("other", room.id)

    denied = await service.delete_user_from_room(ALL, "member", "other", room.id, DeleteMode.DELETE_USER)
    assert denied is HTTPStatus.UNAUTHORIZED

    removed = await service.delete_user_from_room(
        [Right.DELETE_USERS], "owner", "other", room.id, DeleteMode.DELETE_USER
    )
    assert removed is HTTPStatus.CREATED
    assert (await service.stores.rooms.get(room.id)).users_id == ["owner", "member"]

    missing = await service.delete_user_from_room(ALL, "owner", "other", room.id, DeleteMode.DELETE_USER)
    assert missing is HTTPStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_delete_user_mode_never_deletes_the_room():
    service = RoomService()
    room = await _room(service)

    status = await service.delete_user_from_room(ALL, "owner", "owner", room.id, DeleteMode.DELETE_USER)
    assert status is HTTPStatus.CREATED
    stored = await service.stores.rooms.get(room.id)
    assert stored is not None
    assert stored.users_id == []


@pytest.mark.asyncio
async def test_change_user_rights_replaces_whole_set():
    service = RoomService()
    room = await _room(service)
    await service.enter_public_room("member", room.id)

    status = await service.change_user_rights_in_room(
        [Right.CHANGE_USER_RIGHTS], "owner", "member", room.id, [Right.DELETE_MESSAGES]
    )
    assert status is HTTPStatus.CREATED
    rights = await service.load_rights("member", room.id)
    assert rights.rights == frozenset({Right.DELETE_MESSAGES})

    missing = await service.change_user_rights_in_room(ALL, "owner", "stranger", room.id, [Right.SEND_MESSAGES])
    assert missing is HTTPStatus.BAD_REQUEST


@pytest.mark.asyncio
async def test_change_user_rights_without_right_leaves_target_untouched():
    service = RoomService()
    room = await _room(service)
    await service.enter_public_room("member", room.id)
    await service.enter_public_room("target", room.id)

    status = await service.change_user_rights_in_room(ALL, "member", "target", room.id, list(FULL_RIGHTS))
    assert status is HTTPStatus.UNAUTHORIZED
    rights = await service.load_rights("target", room.id)
    assert rights.rights == PUBLIC_ENTRY_RIGHTS


@pytest.mark.asyncio
async def test_notification_settings_toggle():
    service = RoomService()
    room = await _room(service)

    assert await service.change_notification_settings("owner", room.id, False) is HTTPStatus.CREATED
    settings_for_owner = await service.get_user_notifications_settings("owner")
    assert [item.notifications for item in settings_for_owner] == [False]

    assert await service.change_notification_settings("stranger", room.id, True) is HTTPStatus.NOT_FOUND


class _BrokenRooms:
    async def list_all(self):
        raise ConnectionError("store offline")


@pytest.mark.asyncio
async def test_store_faults_surface_as_internal_error(caplog):
    service = RoomService(RoomStores(rooms=_BrokenRooms()))
    with caplog.at_level("ERROR"):
        with pytest.raises(policy.RoomInternalError) as excinfo:
            await service.get_all_rooms()
    assert "store offline" not in str(excinfo.value)
    assert excinfo.value.__cause__ is None
    assert any(record.getMessage() == "rooms.get_all_rooms.failed" for record in caplog.records)
    assert any(record.exc_info for record in caplog.records)


@pytest.mark.asyncio
async def test_concurrent_public_entries_keep_every_member():
    service = RoomService()
    room = await _room(service)
    newcomers = [f"user-{idx}" for idx in range(50)]

    results = await asyncio.gather(*(service.enter_public_room(user, room.id) for user in newcomers))

    assert all(result is HTTPStatus.OK for result in results)
    stored = await service.stores.rooms.get(room.id)
    assert sorted(stored.users_id) == sorted(["owner", *newcomers])
    assert stored.members_count == len(stored.users_id)
    for user in newcomers:
        assert await service.load_rights(user, room.id) is not None


@pytest.mark.asyncio
async def test_concurrent_duplicate_entries_admit_the_user_once():
    service = RoomService()
    room = await _room(service)

    results = await asyncio.gather(*(service.enter_public_room("member", room.id) for _ in range(20)))

    assert results.count(HTTPStatus.OK) == 1
    assert results.count(HTTPStatus.BAD_REQUEST) == 19
    stored = await service.stores.rooms.get(room.id)
    assert stored.users_id == ["owner", "member"]
    assert stored.members_count == 2


@pytest.mark.asyncio
async def test_concurrent_message_references_are_not_lost():
    service = RoomService()
    room = await _room(service)
    doomed = [f"old-{idx}" for idx in range(25)]
    for message_id in doomed:
        await service.add_message_reference(message_id, room.id)
    fresh = [f"new-{idx}" for idx in range(25)]

    results = await asyncio.gather(
        *(service.add_message_reference(message_id, room.id) for message_id in fresh),
        *(service.delete_message_reference(room.id, message_id) for message_id in doomed),
    )

    assert all(result is HTTPStatus.CREATED for result in results)
    stored = await service.stores.rooms.get(room.id)
    assert sorted(stored.messages_id) == sorted(fresh)


@pytest.mark.asyncio
async def test_concurrent_leaves_delete_room_exactly_once():
    service = RoomService()
    room = await _room(service)
    members = [f"user-{idx}" for idx in range(10)]
    for user in members:
        await service.enter_public_room(user, room.id)

    results = await asyncio.gather(
        *(
            service.delete_user_from_room([], user, user, room.id, DeleteMode.LEAVE_ROOM)
            for user in ["owner", *members]
        )
    )

    assert results.count(HTTPStatus.OK) == 1
    assert results.count(HTTPStatus.CREATED) == len(members)
    assert await service.stores.rooms.get(room.id) is None
    assert await service.load_rights("owner", room.id) is None


class _RevokeAfterCheckGate(AuthorizationGate):
    """Revokes the caller's stored rights right after a successful check."""

    def __init__(self, stores: RoomStores) -> None:
        super().__init__(stores.rights)
        self._stores = stores

    async def verify(self, claimed_rights, user_id, room_id, required):
        allowed = await super().verify(claimed_rights, user_id, room_id, required)
        await self._stores.rights.delete(user_id, room_id)
        return allowed


@pytest.mark.asyncio
async def test_rights_revoked_between_check_and_write_do_not_stop_the_write():
    """The rights check and the mutation it guards are separate store calls.

    Nothing locks the rights record across both, so a revoke that lands after
    the gate has answered still lets the already-authorized write through.
    The next call from the same user is denied.
    """
    stores = RoomStores()
    service = RoomService(stores, gate=_RevokeAfterCheckGate(stores))
    room = await _room(service)

    updated = await service.update_room(ALL, "owner", room.id, RoomPatch(name="Renamed"))

    assert isinstance(updated, models.Room)
    assert updated.name == "Renamed"
    assert await service.load_rights("owner", room.id) is None
    assert await service.update_room(ALL, "owner", room.id, RoomPatch(name="Again")) is HTTPStatus.UNAUTHORIZED

"""
Tests for room creation, joining and leaving.
"""

import pytest

import services.lifecycle as lifecycle
from errors import InvalidRoomState, RoomConflict, RoomNotFound
from schemas.rooms import RoomStatus

HOST = "host-user"
GUEST = "guest-user"


class TestInviteCodes:
    def test_code_shape(self):
        for _ in range(50):
            code = lifecycle.generate_invite_code()
            assert len(code) == 6
            assert set(code) <= set(lifecycle.INVITE_ALPHABET)

    def test_alphabet_has_no_ambiguous_characters(self):
        assert not set("IO01") & set(lifecycle.INVITE_ALPHABET)

    def test_collisions_exhaust_attempts(self, matching, monkeypatch):
        monkeypatch.setattr(lifecycle, "generate_invite_code", lambda: "ABCDEF")
        matching.create_room("u1")

        with pytest.raises(RoomConflict):
            matching.create_room("u2")
        assert matching.get_user_room_id("u2") is None

    def test_collision_retries_with_new_code(self, matching, monkeypatch):
        codes = iter(["ABCDEF", "ABCDEF", "GHJKLM"])
        monkeypatch.setattr(lifecycle, "generate_invite_code", lambda: next(codes))
        matching.create_room("u1")

        room = matching.create_room("u2")
        assert room.invite_code == "GHJKLM"


class TestNicknames:
    def test_animal_nickname(self):
        nickname = lifecycle.create_nickname()
        assert nickname.startswith("guest_")
        assert nickname[len("guest_"):] in lifecycle.ANIMALS

    def test_avoids_taken_nicknames(self, monkeypatch):
        names = iter(["guest_Fox", "guest_Fox", "guest_Owl"])
        monkeypatch.setattr(lifecycle, "create_nickname", lambda: next(names))
        assert lifecycle.pick_nickname({"guest_Fox"}) == "guest_Owl"

    def test_suffix_when_all_taken(self):
        taken = {f"guest_{animal}" for animal in lifecycle.ANIMALS}
        nickname = lifecycle.pick_nickname(taken)
        assert nickname not in taken
        prefix, suffix = nickname.rsplit("_", 1)
        assert prefix in taken
        assert 1000 <= int(suffix) <= 9999


class TestCreateRoom:
    def test_creator_is_host_of_waiting_room(self, matching, room_repository):
        room = matching.create_room(HOST)

        assert room.status == RoomStatus.WAITING
        assert room.users_count == 1
        assert room.users[0].user_id == HOST
        assert room.users[0].is_host is True
        assert room.users[0].nickname.startswith("guest_")
        assert matching.get_user_room_id(HOST) == room.invite_code

    def test_durable_record_written(self, matching, redis_client):
        room = matching.create_room(HOST)

        record = redis_client.hgetall(f"room:{room.invite_code}:record")
        assert record["host_id"] == HOST
        assert record["status"] == "WAITING"
        assert redis_client.ttl(f"room:{room.invite_code}:record") == -1


class TestJoinRoom:
    def test_guest_joins(self, matching):
        room = matching.create_room(HOST)
        joined = matching.add_user_to_room(room.invite_code, GUEST)

        assert joined.users_count == 2
        assert [u.user_id for u in joined.users] == [HOST, GUEST]
        assert [u.is_host for u in joined.users] == [True, False]
        assert joined.users[0].nickname != joined.users[1].nickname

    def test_rejoin_is_idempotent(self, matching, waiting_room):
        again = matching.add_user_to_room(waiting_room, GUEST)
        assert again.users_count == 2

    def test_unknown_room(self, matching):
        with pytest.raises(RoomNotFound):
            matching.add_user_to_room("ZZZZZZ", GUEST)

    def test_full_room(self, matching, waiting_room):
        with pytest.raises(RoomConflict):
            matching.add_user_to_room(waiting_room, "third-user")

    def test_room_past_waiting(self, matching, waiting_room):
        matching.remove_user_from_room(waiting_room, GUEST)
        matching.handle_user_disconnect(waiting_room, GUEST)

        with pytest.raises(InvalidRoomState):
            matching.add_user_to_room(waiting_room, "late-user")


class TestLeaveRoom:
    def test_guest_leaving_keeps_room(self, matching, waiting_room):
        matching.remove_user_from_room(waiting_room, GUEST)

        room = matching.get_room_data(waiting_room)
        assert room.users_count == 1
        assert matching.get_user_room_id(GUEST) is None

    def test_last_member_leaving_deletes_room(self, matching, waiting_room, redis_client):
        matching.remove_user_from_room(waiting_room, GUEST)
        matching.remove_user_from_room(waiting_room, HOST)

        with pytest.raises(RoomNotFound):
            matching.get_room_data(waiting_room)
        assert redis_client.keys(f"room:{waiting_room}:user:*") == []
        assert matching.get_user_room_id(HOST) is None

    def test_clear_room_data(self, matching, waiting_room):
        matching.clear_room_data(waiting_room, HOST)

        with pytest.raises(RoomNotFound):
            matching.get_room_data(waiting_room)
        assert matching.get_user_room_id(GUEST) is None

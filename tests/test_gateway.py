"""
Tests for event dispatch, acks and room broadcasts.
"""

import asyncio

import pytest

from disconnect_timer import DisconnectTimers
from gateway import ClientSession, MatchingGateway
from schemas.rooms import RoomStatus

HOST = "host-user"
GUEST = "guest-user"


class Recorder:
    def __init__(self):
        self.messages = []

    def __call__(self, room_id, message):
        self.messages.append((room_id, message))

    def types(self):
        return [message["type"] for _, message in self.messages]

    def last(self, event_type):
        return next(m for _, m in reversed(self.messages) if m["type"] == event_type)


@pytest.fixture
def published():
    return Recorder()


@pytest.fixture
def gateway(matching, published):
    return MatchingGateway(matching, published)


@pytest.fixture
def host():
    return ClientSession(user_id=HOST, connection_id="c-host")


@pytest.fixture
def guest():
    return ClientSession(user_id=GUEST, connection_id="c-guest")


@pytest.fixture
def joined_room(gateway, host, guest):
    room_id = gateway.dispatch(host, "create_room", None)["data"]["inviteCode"]
    gateway.dispatch(guest, "join_room", {"roomId": room_id})
    return room_id


class TestDispatch:
    def test_unknown_event(self, gateway, host):
        ack = gateway.dispatch(host, "dance", {})
        assert ack == {"success": False, "error": {"message": "Unknown event: dance", "code": "UNKNOWN_EVENT"}}

    def test_invalid_payload(self, gateway, host):
        ack = gateway.dispatch(host, "join_room", {"roomId": ""})
        assert ack["success"] is False
        assert ack["error"]["code"] == "INVALID_PAYLOAD"

    def test_domain_errors_become_failed_acks(self, gateway, host):
        ack = gateway.dispatch(host, "join_room", {"roomId": "ZZZZZZ"})
        assert ack["error"] == {"message": "Room with id ZZZZZZ not found", "code": "NOT_FOUND"}

    def test_room_events_need_a_room(self, gateway, host):
        ack = gateway.dispatch(host, "add_anime", {"mediaId": "m1"})
        assert ack["error"]["code"] == "NOT_IN_ROOM"

    def test_unexpected_errors_propagate(self, gateway, host, monkeypatch):
        def boom(user_id):
            raise RuntimeError("redis went away")

        monkeypatch.setattr(gateway.matching, "create_room", boom)
        with pytest.raises(RuntimeError):
            gateway.dispatch(host, "create_room", {})


class TestRoomEvents:
    def test_create_room(self, gateway, host):
        ack = gateway.dispatch(host, "create_room", {})

        assert ack["success"] is True
        assert ack["data"]["status"] == "WAITING"
        assert ack["data"]["users"][0]["isHost"] is True
        assert host.room_id == ack["data"]["inviteCode"]

    def test_join_broadcasts_user_joined(self, gateway, host, guest, published):
        room_id = gateway.dispatch(host, "create_room", {})["data"]["inviteCode"]
        ack = gateway.dispatch(guest, "join_room", {"roomId": room_id})

        assert ack["data"]["usersCount"] == 2
        assert guest.room_id == room_id
        room, message = published.messages[-1]
        assert room == room_id
        assert message["type"] == "user_joined"
        assert message["data"]["userId"] == GUEST
        assert message["data"]["usersCount"] == 2

    def test_join_same_room_returns_snapshot(self, gateway, guest, joined_room, published):
        before = len(published.messages)
        ack = gateway.dispatch(guest, "join_room", {"roomId": joined_room})

        assert ack["data"]["inviteCode"] == joined_room
        assert len(published.messages) == before

    def test_joining_another_room_leaves_the_first(self, gateway, matching, guest, joined_room, published):
        other = ClientSession(user_id="other-host", connection_id="c-other")
        other_room = gateway.dispatch(other, "create_room", {})["data"]["inviteCode"]

        gateway.dispatch(guest, "join_room", {"roomId": other_room})

        assert matching.get_room_data(joined_room).users_count == 1
        assert (joined_room, published.last("user_left")) in published.messages

    def test_leave_room(self, gateway, matching, guest, joined_room, published):
        ack = gateway.dispatch(guest, "leave_room", {"roomId": joined_room})

        assert ack["data"] == {"roomId": joined_room}
        assert guest.room_id is None
        assert published.last("user_left")["data"] == {"userId": GUEST}
        assert matching.get_room_data(joined_room).users_count == 1

    def test_leave_other_room_rejected(self, gateway, guest, joined_room):
        ack = gateway.dispatch(guest, "leave_room", {"roomId": "OTHER2"})
        assert ack["error"]["code"] == "NOT_IN_ROOM"

    def test_get_room_state(self, gateway, host, joined_room):
        ack = gateway.dispatch(host, "get_room_state", {})
        assert ack["data"]["usersCount"] == 2


class TestMatchingFlow:
    def test_full_round(self, gateway, host, guest, joined_room, published):
        ack = gateway.dispatch(host, "start_selecting", {"roomId": joined_room})
        assert ack["data"]["status"] == "SELECTING"
        assert published.last("room_state")["data"]["status"] == "SELECTING"

        ack = gateway.dispatch(host, "add_anime", {"mediaId": "m1"})
        assert ack["data"] == {"mediaId": "m1", "addedBy": HOST}
        assert published.last("anime_added")["data"] == {"mediaId": "m1", "addedBy": HOST}

        ack = gateway.dispatch(host, "add_anime", {"mediaId": "m1"})
        assert ack["error"]["code"] == "ALREADY_EXISTS"

        gateway.dispatch(guest, "add_anime", {"mediaId": "m2"})

        ack = gateway.dispatch(host, "set_ready", {"isReady": True})
        assert ack["data"] == {"status": "SELECTING", "isReady": True}

        ack = gateway.dispatch(guest, "set_ready", {"isReady": True})
        assert ack["data"] == {"status": "SWIPING", "isReady": True}
        swiping = published.last("room_state")["data"]
        assert swiping["status"] == "SWIPING"
        assert sorted(swiping["mediaQueue"]) == ["m1", "m2"]

        ack = gateway.dispatch(host, "swipe", {"mediaId": "m2", "action": "LIKE"})
        assert ack["data"] == {"isMatch": False}

        ack = gateway.dispatch(guest, "swipe", {"mediaId": "m2", "action": "LIKE"})
        assert ack["data"]["isMatch"] is True
        assert ack["data"]["matchData"]["mediaId"] == "m2"
        assert published.last("match_found")["data"]["mediaTitle"] == "Title 2"
        assert published.last("room_state")["data"]["status"] == "MATCHED"

    def test_remove_anime(self, gateway, host, joined_room, published):
        gateway.dispatch(host, "start_selecting", {"roomId": joined_room})
        gateway.dispatch(host, "add_anime", {"mediaId": "m1"})

        ack = gateway.dispatch(host, "remove_anime", {"mediaId": "m1"})
        assert ack["data"] == {"mediaId": "m1", "removedBy": HOST}
        assert published.last("anime_removed")["data"] == {"mediaId": "m1", "removedBy": HOST}

        ack = gateway.dispatch(host, "remove_anime", {"mediaId": "m1"})
        assert ack["error"]["code"] == "NOT_FOUND"

    def test_bad_swipe_action(self, gateway, host, joined_room):
        ack = gateway.dispatch(host, "swipe", {"mediaId": "m1", "action": "MAYBE"})
        assert ack["error"]["code"] == "INVALID_PAYLOAD"

    def test_broadcast_envelope(self, gateway, host, joined_room, published):
        gateway.dispatch(host, "start_selecting", {"roomId": joined_room})
        message = published.last("room_state")

        assert message["room_id"] == joined_room
        assert "timestamp" in message


class TestDisconnect:
    def test_immediate_cancel_without_grace(self, gateway, matching, guest, joined_room, published):
        gateway.handle_disconnect(guest)

        room = matching.get_room_data(joined_room)
        assert room.status == RoomStatus.CANCELLED
        assert room.users_count == 1
        assert published.last("user_left")["data"] == {"userId": GUEST}
        assert published.last("room_state")["data"]["status"] == "CANCELLED"

    def test_disconnect_outside_room_is_noop(self, gateway, host, published):
        gateway.handle_disconnect(host)
        assert published.messages == []

    def test_grace_period_expiry_cancels(self, matching, published):
        async def scenario():
            gateway = MatchingGateway(matching, published, DisconnectTimers(0.05))
            host = ClientSession(user_id=HOST, connection_id="c1")
            guest = ClientSession(user_id=GUEST, connection_id="c2")
            room_id = gateway.dispatch(host, "create_room", {})["data"]["inviteCode"]
            gateway.dispatch(guest, "join_room", {"roomId": room_id})

            gateway.handle_disconnect(guest)
            assert matching.get_room_data(room_id).status == RoomStatus.WAITING
            await asyncio.sleep(0.2)
            return room_id

        room_id = asyncio.run(scenario())
        assert matching.get_room_data(room_id).status == RoomStatus.CANCELLED

    def test_reconnect_within_grace_resumes(self, matching, published):
        async def scenario():
            timers = DisconnectTimers(0.1)
            gateway = MatchingGateway(matching, published, timers)
            host = ClientSession(user_id=HOST, connection_id="c1")
            guest = ClientSession(user_id=GUEST, connection_id="c2")
            room_id = gateway.dispatch(host, "create_room", {})["data"]["inviteCode"]
            gateway.dispatch(guest, "join_room", {"roomId": room_id})

            gateway.handle_disconnect(guest)

            again = ClientSession(user_id=GUEST, connection_id="c3")
            assert gateway.handle_reconnect(again) == room_id
            assert again.room_id == room_id
            await asyncio.sleep(0.3)
            return room_id

        room_id = asyncio.run(scenario())
        room = matching.get_room_data(room_id)
        assert room.status == RoomStatus.WAITING
        assert room.users_count == 2

    def test_reconnect_without_pending_timer(self, matching, published):
        gateway = MatchingGateway(matching, published, DisconnectTimers(5))
        session = ClientSession(user_id=HOST, connection_id="c1")
        assert gateway.handle_reconnect(session) is None
        assert session.room_id is None

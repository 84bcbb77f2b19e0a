from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import ValidationError

from disconnect_timer import DisconnectTimers
from errors import MatchingError, RoomNotFound
from logging_config import get_logger
from schemas.rooms import (
    AnimeAddedData,
    MediaIdPayload,
    RoomIdPayload,
    RoomStatus,
    SetReadyPayload,
    SwipePayload,
)
from services.matching import MatchingService

logger = get_logger(__name__)


@dataclass
class ClientSession:
    user_id: str
    connection_id: str
    room_id: Optional[str] = None


def ack_ok(data=None) -> dict:
    return {"success": True, "data": data}


def ack_error(message: str, code: str) -> dict:
    return {"success": False, "error": {"message": message, "code": code}}


class MatchingGateway:
    """Turns client events into service calls, acks and room broadcasts.

    ``publish`` receives (room_id, message) and is expected to fan the message
    out to every connection in the room, usually through Redis pub/sub.
    Errors from the matching taxonomy become failed acks; anything else is
    left to the transport to report.
    """

    def __init__(self, matching: MatchingService, publish: Callable[[str, dict], object], timers: Optional[DisconnectTimers] = None):
        self.matching = matching
        self.publish = publish
        self.timers = timers
        self.handlers = {
            "create_room": self.handle_create_room,
            "join_room": self.handle_join_room,
            "leave_room": self.handle_leave_room,
            "add_anime": self.handle_add_anime,
            "remove_anime": self.handle_remove_anime,
            "start_selecting": self.handle_start_selecting,
            "set_ready": self.handle_set_ready,
            "swipe": self.handle_swipe,
            "get_room_state": self.handle_get_room_state,
        }

    def dispatch(self, session: ClientSession, event: str, payload: Optional[dict]) -> dict:
        handler = self.handlers.get(event)
        if handler is None:
            logger.warning(f"Unknown event '{event}' from user {session.user_id}")
            return ack_error(f"Unknown event: {event}", "UNKNOWN_EVENT")
        try:
            return ack_ok(handler(session, payload or {}))
        except ValidationError as e:
            logger.warning(f"Invalid payload for '{event}' from user {session.user_id}: {e.errors()}")
            return ack_error(f"Invalid payload for {event}", "INVALID_PAYLOAD")
        except MatchingError as e:
            logger.warning(f"Event '{event}' from user {session.user_id} rejected: {e.message}")
            return ack_error(e.message, e.code)

    def broadcast(self, room_id: str, event: str, data=None):
        self.publish(room_id, {
            "type": event,
            "room_id": room_id,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def broadcast_room_state(self, room_id: str):
        try:
            room = self.matching.get_room_data(room_id)
        except RoomNotFound:
            return
        self.broadcast(room_id, "room_state", room.to_wire())

    def _require_room(self, session: ClientSession) -> str:
        if not session.room_id:
            raise MatchingError("User is not in a room", "NOT_IN_ROOM")
        return session.room_id

    def _leave_current(self, session: ClientSession):
        room_id = session.room_id
        if not room_id:
            return
        logger.info(f"User {session.user_id} leaving room {room_id}")
        self.matching.remove_user_from_room(room_id, session.user_id)
        session.room_id = None
        self.broadcast(room_id, "user_left", {"userId": session.user_id})

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def handle_create_room(self, session: ClientSession, payload: dict):
        self._leave_current(session)
        room = self.matching.create_room(session.user_id)
        session.room_id = room.invite_code
        logger.info(f"User {session.user_id} created room {room.invite_code}")
        return room.to_wire()

    def handle_join_room(self, session: ClientSession, payload: dict):
        room_id = RoomIdPayload.model_validate(payload).room_id
        if session.room_id == room_id:
            logger.debug(f"User {session.user_id} already in room {room_id}")
            return self.matching.get_snapshot(room_id, session.user_id).to_wire()

        if session.room_id:
            logger.info(f"User {session.user_id} switching: {session.room_id} -> {room_id}")
        self._leave_current(session)

        room = self.matching.add_user_to_room(room_id, session.user_id)
        session.room_id = room_id
        joined = next(u for u in room.users if u.user_id == session.user_id)
        self.broadcast(room_id, "user_joined", {**joined.to_wire(), "usersCount": room.users_count})
        return room.to_wire()

    def handle_leave_room(self, session: ClientSession, payload: dict):
        room_id = RoomIdPayload.model_validate(payload).room_id
        if session.room_id != room_id:
            raise MatchingError("User is not in this room", "NOT_IN_ROOM")
        self._leave_current(session)
        return {"roomId": room_id}

    def handle_add_anime(self, session: ClientSession, payload: dict):
        room_id = self._require_room(session)
        media_id = MediaIdPayload.model_validate(payload).media_id
        if not self.matching.add_media_to_draft(session.user_id, room_id, media_id):
            raise MatchingError("Anime already in deck", "ALREADY_EXISTS")
        data = AnimeAddedData(media_id=media_id, added_by=session.user_id).to_wire()
        self.broadcast(room_id, "anime_added", data)
        logger.info(f"Anime {media_id} added to room {room_id}")
        return data

    def handle_remove_anime(self, session: ClientSession, payload: dict):
        room_id = self._require_room(session)
        media_id = MediaIdPayload.model_validate(payload).media_id
        if not self.matching.delete_media_from_draft(session.user_id, room_id, media_id):
            raise MatchingError("Anime is not in deck", "NOT_FOUND")
        data = {"mediaId": media_id, "removedBy": session.user_id}
        self.broadcast(room_id, "anime_removed", data)
        return data

    def handle_start_selecting(self, session: ClientSession, payload: dict):
        room_id = RoomIdPayload.model_validate(payload).room_id
        room = self.matching.start_selections(room_id, session.user_id)
        self.broadcast_room_state(room_id)
        return room.to_wire()

    def handle_set_ready(self, session: ClientSession, payload: dict):
        room_id = self._require_room(session)
        is_ready = SetReadyPayload.model_validate(payload).is_ready
        status = self.matching.set_user_readiness(room_id, session.user_id, is_ready)
        if status == RoomStatus.SWIPING:
            self.broadcast(room_id, "room_state", self.matching.get_snapshot(room_id, session.user_id).to_wire())
        return {"status": status.value, "isReady": is_ready}

    def handle_swipe(self, session: ClientSession, payload: dict):
        room_id = self._require_room(session)
        swipe = SwipePayload.model_validate(payload)
        result = self.matching.process_swipe(swipe.action, session.user_id, room_id, swipe.media_id)
        if result.is_match:
            self.broadcast(room_id, "match_found", result.match_data.to_wire())
            self.broadcast_room_state(room_id)
        return result.to_wire()

    def handle_get_room_state(self, session: ClientSession, payload: dict):
        room_id = self._require_room(session)
        return self.matching.get_snapshot(room_id, session.user_id).to_wire()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @staticmethod
    def timer_key(room_id: str, user_id: str) -> str:
        return f"{room_id}_{user_id}"

    def handle_reconnect(self, session: ClientSession) -> Optional[str]:
        """Resume the room of a user whose disconnect timer is still pending."""
        if not self.timers:
            return None
        room_id = self.matching.get_user_room_id(session.user_id)
        if not room_id or not self.timers.clear_timer(self.timer_key(room_id, session.user_id)):
            return None
        session.room_id = room_id
        logger.info(f"User {session.user_id} reconnected to room {room_id} within grace period")
        return room_id

    def handle_disconnect(self, session: ClientSession):
        room_id = session.room_id
        if not room_id:
            return
        user_id = session.user_id
        if self.timers and self.timers.timeout_seconds > 0:
            self.timers.set_timer(self.timer_key(room_id, user_id), lambda: self.cancel_room_for(room_id, user_id))
            return
        self.cancel_room_for(room_id, user_id)

    def cancel_room_for(self, room_id: str, user_id: str):
        logger.info(f"User {user_id} disconnected from room {room_id}")
        self.matching.handle_user_disconnect(room_id, user_id)
        self.matching.remove_user_from_room(room_id, user_id)
        self.broadcast(room_id, "user_left", {"userId": user_id})
        self.broadcast_room_state(room_id)

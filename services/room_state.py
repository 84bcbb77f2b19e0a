import random

from backend import RedisBackend
from errors import InvalidRoomState, NotAMember, RoomConflict, RoomNotFound
from logging_config import get_logger
from schemas.rooms import RoomState, RoomStatus, TERMINAL_STATUSES

logger = get_logger(__name__)

CANCELLABLE_STATUSES = tuple(s for s in RoomStatus if s not in TERMINAL_STATUSES)


class RoomStateService:
    """Drives the room status machine.

    WAITING -> SELECTING -> SWIPING -> MATCHED, and any non-terminal status
    -> CANCELLED. Each edge is a compare-and-swap on the status field.
    """

    def __init__(self, backend: RedisBackend, rng: random.Random = None):
        self.backend = backend
        self.rng = rng or random.SystemRandom()

    def get_room_state(self, room_id: str) -> RoomState:
        room = self.backend.get_room_state(room_id)
        if not room:
            raise RoomNotFound(f"Room with id {room_id} not found")
        return room

    def validate_room_status(self, room_id: str) -> RoomState:
        room = self.get_room_state(room_id)
        if room.status != RoomStatus.SWIPING:
            raise InvalidRoomState(f"Room is not in SWIPING state. Current status: {room.status.value}")
        return room

    def start_selections(self, room_id: str, user_id: str):
        room = self.get_room_state(room_id)
        members = self.backend.get_member_count(room_id)
        if room.host_id != user_id or room.status != RoomStatus.WAITING or members < 2:
            raise InvalidRoomState("You can't start selection in this room")

        if not self.backend.compare_and_set_status(room_id, [RoomStatus.WAITING], RoomStatus.SELECTING):
            raise RoomConflict("Selection was already started")
        self.backend.refresh_room_ttl(room_id)

    def set_user_readiness(self, room_id: str, user_id: str, ready: bool) -> RoomStatus:
        if not self.backend.is_member(room_id, user_id):
            raise NotAMember("User is not a member of this room")

        room = self.get_room_state(room_id)
        if room.status != RoomStatus.SELECTING:
            raise InvalidRoomState("Cannot set readiness - room is not in SELECTING state")

        is_host = room.host_id == user_id
        self.backend.set_ready_flag(room_id, is_host, ready)
        self.backend.refresh_room_ttl(room_id)
        logger.debug(f"User {user_id} in room {room_id} ready={ready}")

        if not ready:
            return RoomStatus.SELECTING

        room = self.get_room_state(room_id)
        if not (room.host_ready and room.guest_ready):
            return room.status

        pool = self.build_media_pool(room_id)
        if not pool:
            logger.warning(f"Empty media pool for room {room_id}")
        if self.backend.start_swiping(room_id, pool):
            logger.info(f"Room {room_id} transitioned to SWIPING state with {len(pool)} media")
            self.backend.refresh_room_ttl(room_id)
            return RoomStatus.SWIPING

        # the other member's call got there first
        return self.get_room_state(room_id).status

    def build_media_pool(self, room_id: str) -> list:
        """Shuffled, de-duplicated union of every member's draft."""
        seen = set()
        pool = []
        for member in self.backend.get_members(room_id):
            for media_id in self.backend.get_selections(room_id, member.user_id):
                if media_id not in seen:
                    seen.add(media_id)
                    pool.append(media_id)
        self.rng.shuffle(pool)
        return pool

    def handle_user_disconnect(self, room_id: str, user_id: str) -> bool:
        logger.info(f"User {user_id} disconnected from room {room_id}")
        try:
            cancelled = self.backend.compare_and_set_status(room_id, CANCELLABLE_STATUSES, RoomStatus.CANCELLED)
        except RoomNotFound:
            logger.debug(f"Room {room_id} already gone, nothing to cancel")
            return False
        if cancelled:
            self.backend.refresh_room_ttl(room_id)
        else:
            logger.debug(f"Room {room_id} already finished, not cancelling")
        return cancelled

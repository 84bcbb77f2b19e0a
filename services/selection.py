from backend import RedisBackend
from errors import InvalidRoomState, NotAMember
from logging_config import get_logger
from schemas.rooms import RoomStatus

logger = get_logger(__name__)

DRAFT_EDITABLE_STATUSES = (RoomStatus.WAITING, RoomStatus.SELECTING)


class SelectionService:
    def __init__(self, backend: RedisBackend, draft_limit: int = 50):
        self.backend = backend
        self.draft_limit = draft_limit

    def _check_editable(self, user_id: str, room_id: str, verb: str):
        if not self.backend.is_member(room_id, user_id):
            raise NotAMember("User is not member of the room")
        status = self.backend.get_room_status(room_id)
        if status not in DRAFT_EDITABLE_STATUSES:
            raise InvalidRoomState(f"Cannot {verb} items in current room state")

    def add_media_to_draft(self, user_id: str, room_id: str, media_id: str) -> bool:
        self._check_editable(user_id, room_id, "add")
        added = self.backend.add_selection(room_id, user_id, media_id, self.draft_limit)
        self.backend.refresh_room_ttl(room_id)
        if not added:
            logger.debug(f"Media {media_id} already in draft of {user_id} in room {room_id}")
        return added

    def delete_media_from_draft(self, user_id: str, room_id: str, media_id: str) -> bool:
        self._check_editable(user_id, room_id, "remove")
        removed = self.backend.remove_selection(room_id, user_id, media_id)
        self.backend.refresh_room_ttl(room_id)
        return removed

    def get_draft(self, user_id: str, room_id: str) -> list:
        if not self.backend.is_member(room_id, user_id):
            raise NotAMember("User is not member of the room")
        return self.backend.get_selections(room_id, user_id)

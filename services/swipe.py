from datetime import datetime, timezone

from backend import RedisBackend
from errors import MediaNotFound, NotAMember
from logging_config import get_logger
from repositories import MediaRepository, RoomRepository
from schemas.rooms import MatchData, SwipeAction, SwipeResult
from services.room_state import RoomStateService

logger = get_logger(__name__)


def check_match(host_swipe: SwipeAction, guest_swipe: SwipeAction) -> bool:
    return host_swipe == SwipeAction.LIKE and guest_swipe == SwipeAction.LIKE


class SwipeService:
    def __init__(
        self,
        backend: RedisBackend,
        room_state: RoomStateService,
        media_repository: MediaRepository,
        room_repository: RoomRepository,
    ):
        self.backend = backend
        self.room_state = room_state
        self.media_repository = media_repository
        self.room_repository = room_repository

    def process_swipe(self, action: SwipeAction, user_id: str, room_id: str, media_id: str) -> SwipeResult:
        room = self.room_state.validate_room_status(room_id)

        if not self.backend.is_member(room_id, user_id):
            raise NotAMember("You are not a member of this room")

        recorded = self.backend.save_swipe(room_id, user_id, media_id, action)
        self.backend.refresh_room_ttl(room_id)
        if recorded:
            logger.info(f"User {user_id} swiped {action.value} on media {media_id} in room {room_id}")
        else:
            logger.debug(f"User {user_id} already swiped on media {media_id} in room {room_id}")

        host_swipe, guest_swipe = self.backend.get_swipes_for_media(room_id, media_id, room.host_id, room.guest_id)
        if not (host_swipe and guest_swipe):
            return SwipeResult(is_match=False)

        if not check_match(host_swipe, guest_swipe):
            return SwipeResult(is_match=False)

        media = self.media_repository.find_by_id(media_id)
        if not media:
            raise MediaNotFound(f"Media {media_id} not found")

        matched_at = datetime.now(timezone.utc)
        if not self.backend.finalize_match(room_id, media_id, matched_at):
            logger.info(f"Room {room_id} was finalized by a concurrent swipe")
            return SwipeResult(is_match=False)

        self.room_repository.create_match(room_id, media_id, matched_at)
        logger.info(f"MATCH found in room {room_id} for media {media_id}")

        return SwipeResult(
            is_match=True,
            match_data=MatchData(
                media_id=media.id,
                media_title=media.title,
                poster_path=media.poster_path,
                matched_at=matched_at,
            ),
        )

from backend import RedisBackend
from repositories import MediaRepository, RoomRepository
from schemas.rooms import RoomData, RoomStatus, SwipeAction, SwipeResult
from services.lifecycle import RoomLifecycleService
from services.room_state import RoomStateService
from services.selection import SelectionService
from services.serializer import RoomSerializer
from services.swipe import SwipeService


class MatchingService:
    """Single entry point the transport layer talks to."""

    def __init__(
        self,
        lifecycle: RoomLifecycleService,
        room_state: RoomStateService,
        selection: SelectionService,
        swipe: SwipeService,
        serializer: RoomSerializer,
    ):
        self.lifecycle = lifecycle
        self.room_state = room_state
        self.selection = selection
        self.swipe = swipe
        self.serializer = serializer

    # Room lifecycle
    def create_room(self, user_id: str) -> RoomData:
        return self.lifecycle.create_room(user_id)

    def add_user_to_room(self, room_id: str, user_id: str) -> RoomData:
        return self.lifecycle.add_user_to_room(room_id, user_id)

    def remove_user_from_room(self, room_id: str, user_id: str):
        return self.lifecycle.remove_user_from_room(room_id, user_id)

    def clear_room_data(self, room_id: str, user_id: str):
        return self.lifecycle.clear_room_data(room_id, user_id)

    def get_user_room_id(self, user_id: str):
        return self.lifecycle.get_user_room_id(user_id)

    # Room state
    def start_selections(self, room_id: str, user_id: str) -> RoomData:
        self.room_state.start_selections(room_id, user_id)
        return self.serializer.get_snapshot(room_id, user_id)

    def set_user_readiness(self, room_id: str, user_id: str, ready: bool) -> RoomStatus:
        return self.room_state.set_user_readiness(room_id, user_id, ready)

    def handle_user_disconnect(self, room_id: str, user_id: str) -> bool:
        cancelled = self.room_state.handle_user_disconnect(room_id, user_id)
        if cancelled:
            self.lifecycle.room_repository.update_status(room_id, RoomStatus.CANCELLED)
        return cancelled

    # Selection
    def get_draft(self, user_id: str, room_id: str) -> list:
        return self.selection.get_draft(user_id, room_id)

    def add_media_to_draft(self, user_id: str, room_id: str, media_id: str) -> bool:
        return self.selection.add_media_to_draft(user_id, room_id, media_id)

    def delete_media_from_draft(self, user_id: str, room_id: str, media_id: str) -> bool:
        return self.selection.delete_media_from_draft(user_id, room_id, media_id)

    # Swipe
    def process_swipe(self, action: SwipeAction, user_id: str, room_id: str, media_id: str) -> SwipeResult:
        return self.swipe.process_swipe(action, user_id, room_id, media_id)

    # Serialization
    def get_room_data(self, room_id: str) -> RoomData:
        return self.serializer.get_room_data(room_id)

    def get_snapshot(self, room_id: str, user_id: str) -> RoomData:
        return self.serializer.get_snapshot(room_id, user_id)

    def get_media_pool_with_details(self, room_id: str) -> list:
        return self.serializer.get_media_pool_with_details(room_id)


def build_matching_service(
    backend: RedisBackend,
    media_repository: MediaRepository,
    room_repository: RoomRepository,
    draft_limit: int = 50,
    max_members: int = 2,
) -> MatchingService:
    serializer = RoomSerializer(backend, media_repository)
    room_state = RoomStateService(backend)
    return MatchingService(
        lifecycle=RoomLifecycleService(backend, room_repository, serializer, max_members=max_members),
        room_state=room_state,
        selection=SelectionService(backend, draft_limit=draft_limit),
        swipe=SwipeService(backend, room_state, media_repository, room_repository),
        serializer=serializer,
    )

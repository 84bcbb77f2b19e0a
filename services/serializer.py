from backend import RedisBackend
from errors import RoomNotFound
from repositories import MediaRepository
from schemas.rooms import RoomData, RoomStatus, UserDTO


class RoomSerializer:
    """Builds the room snapshots sent to clients."""

    def __init__(self, backend: RedisBackend, media_repository: MediaRepository):
        self.backend = backend
        self.media_repository = media_repository

    def get_room_data(self, room_id: str) -> RoomData:
        state = self.backend.get_room_state(room_id)
        if not state:
            raise RoomNotFound(f"Room with id {room_id} not found")
        users = [
            UserDTO(user_id=m.user_id, nickname=m.nickname, is_host=m.user_id == state.host_id)
            for m in self.backend.get_members(room_id)
        ]
        # host first
        users.sort(key=lambda u: not u.is_host)
        return RoomData(
            invite_code=room_id,
            users_count=len(users),
            users=users,
            status=state.status,
            matched_media_id=state.matched_media_id,
        )

    def get_snapshot(self, room_id: str, user_id: str) -> RoomData:
        data = self.get_room_data(room_id)
        if data.status == RoomStatus.SELECTING:
            data.selected_media = self.backend.get_selections(room_id, user_id)
        elif data.status == RoomStatus.SWIPING:
            data.media_queue = self.backend.get_media_pool(room_id)
        return data

    def get_media_pool_with_details(self, room_id: str) -> list:
        if not self.backend.room_exists(room_id):
            raise RoomNotFound(f"Room with id {room_id} not found")
        media_ids = self.backend.get_media_pool(room_id)
        media = {m.id: m for m in self.media_repository.find_many_by_ids(media_ids)}
        return [media[media_id] for media_id in media_ids if media_id in media]

import random
import secrets
from datetime import datetime, timezone

from backend import RedisBackend
from errors import RoomConflict
from logging_config import get_logger
from repositories import RoomRepository
from schemas.rooms import RoomData
from services.serializer import RoomSerializer

logger = get_logger(__name__)

# no I, O, 0, 1 (visually ambiguous)
INVITE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
INVITE_CODE_LENGTH = 6
INVITE_CODE_ATTEMPTS = 5
NICKNAME_ATTEMPTS = 20

ANIMALS = [
    "Panda", "Fox", "Wolf", "Bear", "Tiger", "Lion", "Eagle", "Owl", "Dolphin", "Shark",
    "Dragon", "Phoenix", "Unicorn", "Giraffe", "Koala", "Penguin", "Rabbit", "Cat", "Dog", "Hawk",
]


def generate_invite_code() -> str:
    return "".join(secrets.choice(INVITE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


def create_nickname() -> str:
    return f"guest_{random.choice(ANIMALS)}"


def pick_nickname(taken: set) -> str:
    """Random animal nickname that nobody in the room uses yet."""
    for _ in range(NICKNAME_ATTEMPTS):
        nickname = create_nickname()
        if nickname not in taken:
            return nickname
    nickname = f"{create_nickname()}_{random.randint(1000, 9999)}"
    logger.debug(f"Nickname pool exhausted, falling back to {nickname}")
    return nickname


class RoomLifecycleService:
    def __init__(self, backend: RedisBackend, room_repository: RoomRepository, serializer: RoomSerializer, max_members: int = 2):
        self.backend = backend
        self.room_repository = room_repository
        self.serializer = serializer
        self.max_members = max_members

    def create_room(self, user_id: str) -> RoomData:
        nickname = pick_nickname(set())
        for attempt in range(1, INVITE_CODE_ATTEMPTS + 1):
            room_id = generate_invite_code()
            if self.backend.init_room(room_id, user_id, nickname):
                break
            logger.warning(f"Invite code collision on {room_id} (attempt {attempt})")
        else:
            raise RoomConflict("Failed to generate unique invite code. Please try again.")

        self.room_repository.create(room_id, user_id, datetime.now(timezone.utc))
        logger.info(f"User {user_id} created room {room_id} as {nickname}")
        return self.serializer.get_room_data(room_id)

    def add_user_to_room(self, room_id: str, user_id: str) -> RoomData:
        added = self.backend.add_member(room_id, user_id, pick_nickname, self.max_members)
        if added:
            logger.info(f"User {user_id} joined room {room_id}")
        return self.serializer.get_room_data(room_id)

    def remove_user_from_room(self, room_id: str, user_id: str):
        remaining = self.backend.remove_member(room_id, user_id)
        if remaining == 0:
            logger.info(f"Room {room_id} is empty, cleaning up")
            self.backend.delete_room_data(room_id, user_id)

    def clear_room_data(self, room_id: str, user_id: str):
        self.backend.delete_room_data(room_id, user_id)

    def get_user_room_id(self, user_id: str):
        return self.backend.get_user_room_id(user_id)

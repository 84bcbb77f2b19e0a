import json
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Union

import redis

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD
from errors import DraftLimitExceeded, InvalidRoomState, RoomConflict, RoomNotFound
from logging_config import get_logger
from redis_keys import (
    REDIS_MEDIA_POOL_KEY,
    REDIS_ROOM_CHANNEL,
    REDIS_SELECTIONS_KEY,
    REDIS_STATE_KEY,
    REDIS_SWIPES_KEY,
    REDIS_USER_ROOM_KEY,
    REDIS_USERS_KEY,
)
from schemas.rooms import Member, RoomState, RoomStatus, SwipeAction

logger = get_logger(__name__)


def create_redis_client() -> redis.Redis:
    try:
        client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)
        # Test connection
        client.ping()
        logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
    except redis.RedisError as e:
        logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
        raise
    return client


def _status_value(status: Union[RoomStatus, str]) -> str:
    return status.value if isinstance(status, RoomStatus) else status


class RedisBackend:
    """Ephemeral room store.

    Every room-scoped key shares one TTL which is refreshed by mutating calls.
    Redis only guarantees atomicity per command, so the multi-step sequences
    (join, draft cap, status transitions) run inside WATCH/MULTI transactions
    that retry when a watched key changes underneath them.
    """

    def __init__(self, redis_client: redis.Redis, ttl_seconds: int, pubsub_client: Optional[redis.Redis] = None):
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds
        # Separate connection for pub/sub (required by Redis)
        self.pubsub_client = pubsub_client or redis_client
        logger.info(f"Initializing RedisBackend with room TTL {ttl_seconds} seconds")

    # ------------------------------------------------------------------
    # Room state
    # ------------------------------------------------------------------

    def init_room(self, room_id: str, host_id: str, nickname: str) -> bool:
        """Create the room state and host membership. False if the id is taken."""
        state_key = REDIS_STATE_KEY.format(slug=room_id)
        users_key = REDIS_USERS_KEY.format(slug=room_id)
        user_room_key = REDIS_USER_ROOM_KEY.format(user_id=host_id)

        def create(pipe):
            if pipe.exists(state_key):
                pipe.unwatch()
                return False
            pipe.multi()
            pipe.hset(state_key, mapping={
                "status": RoomStatus.WAITING.value,
                "host_id": host_id,
                "host_ready": "false",
                "guest_ready": "false",
                "version": 0,
                "created_at": datetime.now(timezone.utc).isoformat(),
            })
            pipe.hset(users_key, host_id, json.dumps({"user_id": host_id, "nickname": nickname}))
            pipe.set(user_room_key, room_id)
            for key in (state_key, users_key, user_room_key):
                pipe.expire(key, self.ttl_seconds)
            return True

        created = self.redis_client.transaction(create, state_key, value_from_callable=True)
        if created:
            logger.info(f"Room {room_id} created by {host_id} with TTL {self.ttl_seconds} seconds")
        else:
            logger.debug(f"Room id {room_id} already in use")
        return created

    def room_exists(self, room_id: str) -> bool:
        return bool(self.redis_client.exists(REDIS_STATE_KEY.format(slug=room_id)))

    def get_room_state(self, room_id: str) -> Optional[RoomState]:
        logger.debug(f"Fetching state of room {room_id}")
        data = self.redis_client.hgetall(REDIS_STATE_KEY.format(slug=room_id))
        if not data or "status" not in data:
            logger.debug(f"Room {room_id} not found in Redis")
            return None
        return RoomState(
            status=data["status"],
            host_id=data.get("host_id", ""),
            guest_id=data.get("guest_id") or None,
            host_ready=data.get("host_ready") == "true",
            guest_ready=data.get("guest_ready") == "true",
            version=int(data.get("version", 0)),
            matched_media_id=data.get("matched_media_id"),
        )

    def get_room_status(self, room_id: str) -> Optional[RoomStatus]:
        status = self.redis_client.hget(REDIS_STATE_KEY.format(slug=room_id), "status")
        return RoomStatus(status) if status else None

    def set_ready_flag(self, room_id: str, is_host: bool, ready: bool):
        key = REDIS_STATE_KEY.format(slug=room_id)
        field = "host_ready" if is_host else "guest_ready"
        pipe = self.redis_client.pipeline()
        pipe.hset(key, field, "true" if ready else "false")
        pipe.expire(key, self.ttl_seconds)
        pipe.execute()

    def compare_and_set_status(
        self,
        room_id: str,
        expected: Iterable[Union[RoomStatus, str]],
        new_status: RoomStatus,
        on_commit: Optional[Callable] = None,
    ) -> bool:
        """Move the room to ``new_status`` only if it is currently in ``expected``.

        ``on_commit`` receives the pipeline in MULTI mode and may queue extra
        writes that must land atomically with the status change.
        Raises RoomNotFound if the state hash is gone.
        """
        key = REDIS_STATE_KEY.format(slug=room_id)
        allowed = {_status_value(s) for s in expected}

        def swap(pipe):
            current = pipe.hget(key, "status")
            if current is None:
                raise RoomNotFound(f"Room with id {room_id} not found")
            if current not in allowed:
                pipe.unwatch()
                logger.debug(f"Room {room_id} status {current} not in {sorted(allowed)}, skipping -> {new_status.value}")
                return False
            pipe.multi()
            pipe.hset(key, "status", new_status.value)
            pipe.hincrby(key, "version", 1)
            if on_commit:
                on_commit(pipe)
            pipe.expire(key, self.ttl_seconds)
            return True

        swapped = self.redis_client.transaction(swap, key, value_from_callable=True)
        if swapped:
            logger.info(f"Room {room_id} status -> {new_status.value}")
        return swapped

    def start_swiping(self, room_id: str, media_ids: list) -> bool:
        """SELECTING -> SWIPING, writing the media pool in the same transaction."""
        pool_key = REDIS_MEDIA_POOL_KEY.format(slug=room_id)

        def write_pool(pipe):
            pipe.delete(pool_key)
            if media_ids:
                pipe.rpush(pool_key, *media_ids)
                pipe.expire(pool_key, self.ttl_seconds)

        return self.compare_and_set_status(room_id, [RoomStatus.SELECTING], RoomStatus.SWIPING, on_commit=write_pool)

    def finalize_match(self, room_id: str, media_id: str, matched_at: datetime) -> bool:
        """SWIPING -> MATCHED. Exactly one caller gets True per room."""
        key = REDIS_STATE_KEY.format(slug=room_id)

        def record_match(pipe):
            pipe.hset(key, mapping={"matched_media_id": media_id, "matched_at": matched_at.isoformat()})

        return self.compare_and_set_status(room_id, [RoomStatus.SWIPING], RoomStatus.MATCHED, on_commit=record_match)

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def get_members(self, room_id: str) -> list:
        raw = self.redis_client.hgetall(REDIS_USERS_KEY.format(slug=room_id))
        return [Member(**json.loads(value)) for value in raw.values()]

    def get_member_count(self, room_id: str) -> int:
        return self.redis_client.hlen(REDIS_USERS_KEY.format(slug=room_id))

    def is_member(self, room_id: str, user_id: str) -> bool:
        return bool(self.redis_client.hexists(REDIS_USERS_KEY.format(slug=room_id), user_id))

    def add_member(self, room_id: str, user_id: str, nickname_factory: Callable[[set], str], max_members: int) -> bool:
        """Add a guest to a WAITING room. False if the user is already a member.

        ``nickname_factory`` gets the nicknames already taken in the room.
        """
        state_key = REDIS_STATE_KEY.format(slug=room_id)
        users_key = REDIS_USERS_KEY.format(slug=room_id)
        user_room_key = REDIS_USER_ROOM_KEY.format(user_id=user_id)

        def join(pipe):
            status = pipe.hget(state_key, "status")
            if status is None:
                raise RoomNotFound(f"Room with id {room_id} not found")
            if status != RoomStatus.WAITING.value:
                raise InvalidRoomState("Room has non waiting status")
            raw_members = pipe.hgetall(users_key)
            if user_id in raw_members:
                pipe.unwatch()
                return False
            if len(raw_members) >= max_members:
                raise RoomConflict("Room is full")
            taken = {json.loads(value)["nickname"] for value in raw_members.values()}
            nickname = nickname_factory(taken)
            pipe.multi()
            pipe.hset(users_key, user_id, json.dumps({"user_id": user_id, "nickname": nickname}))
            pipe.hset(state_key, "guest_id", user_id)
            pipe.set(user_room_key, room_id)
            for key in (state_key, users_key, user_room_key):
                pipe.expire(key, self.ttl_seconds)
            return True

        added = self.redis_client.transaction(join, state_key, users_key, value_from_callable=True)
        if added:
            logger.debug(f"User {user_id} added to room {room_id} (new user)")
        else:
            logger.debug(f"User {user_id} already exists in room {room_id}")
        return added

    def remove_member(self, room_id: str, user_id: str) -> int:
        """Remove a member and return how many remain."""
        logger.debug(f"Removing user {user_id} from room {room_id}")
        state_key = REDIS_STATE_KEY.format(slug=room_id)
        users_key = REDIS_USERS_KEY.format(slug=room_id)
        user_room_key = REDIS_USER_ROOM_KEY.format(user_id=user_id)

        guest_id = self.redis_client.hget(state_key, "guest_id")
        mapped_room = self.redis_client.get(user_room_key)

        pipe = self.redis_client.pipeline()
        pipe.hdel(users_key, user_id)
        if mapped_room == room_id:
            pipe.delete(user_room_key)
        if guest_id == user_id:
            pipe.hdel(state_key, "guest_id", "guest_ready")
        pipe.hlen(users_key)
        remaining = pipe.execute()[-1]
        logger.debug(f"User {user_id} removed from room {room_id}, {remaining} remaining")
        return remaining

    def get_user_room_id(self, user_id: str) -> Optional[str]:
        return self.redis_client.get(REDIS_USER_ROOM_KEY.format(user_id=user_id))

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    def add_selection(self, room_id: str, user_id: str, media_id: str, limit: int) -> bool:
        key = REDIS_SELECTIONS_KEY.format(slug=room_id, user_id=user_id)
        logger.debug(f"Saving {media_id} selection for user {user_id} in room {room_id}")

        def add(pipe):
            if pipe.sismember(key, media_id):
                pipe.unwatch()
                return False
            if pipe.scard(key) >= limit:
                raise DraftLimitExceeded(f"Deck limit reached (max {limit})")
            pipe.multi()
            pipe.sadd(key, media_id)
            pipe.expire(key, self.ttl_seconds)
            return True

        return self.redis_client.transaction(add, key, value_from_callable=True)

    def remove_selection(self, room_id: str, user_id: str, media_id: str) -> bool:
        key = REDIS_SELECTIONS_KEY.format(slug=room_id, user_id=user_id)
        return self.redis_client.srem(key, media_id) == 1

    def get_selections(self, room_id: str, user_id: str) -> list:
        return sorted(self.redis_client.smembers(REDIS_SELECTIONS_KEY.format(slug=room_id, user_id=user_id)))

    def get_media_pool(self, room_id: str) -> list:
        return self.redis_client.lrange(REDIS_MEDIA_POOL_KEY.format(slug=room_id), 0, -1)

    # ------------------------------------------------------------------
    # Swipes
    # ------------------------------------------------------------------

    def save_swipe(self, room_id: str, user_id: str, media_id: str, action: SwipeAction) -> bool:
        """Record a swipe once. Returns False when a decision already exists."""
        key = REDIS_SWIPES_KEY.format(slug=room_id)
        pipe = self.redis_client.pipeline()
        pipe.hsetnx(key, f"{user_id}:{media_id}", action.value)
        pipe.expire(key, self.ttl_seconds)
        created, _ = pipe.execute()
        return bool(created)

    def get_swipe(self, room_id: str, user_id: str, media_id: str) -> Optional[SwipeAction]:
        value = self.redis_client.hget(REDIS_SWIPES_KEY.format(slug=room_id), f"{user_id}:{media_id}")
        return SwipeAction(value) if value else None

    def get_swipes_for_media(self, room_id: str, media_id: str, host_id: str, guest_id: Optional[str]) -> tuple:
        if not guest_id:
            return self.get_swipe(room_id, host_id, media_id), None
        host_swipe, guest_swipe = self.redis_client.hmget(
            REDIS_SWIPES_KEY.format(slug=room_id),
            [f"{host_id}:{media_id}", f"{guest_id}:{media_id}"],
        )
        return (
            SwipeAction(host_swipe) if host_swipe else None,
            SwipeAction(guest_swipe) if guest_swipe else None,
        )

    # ------------------------------------------------------------------
    # TTL / cleanup
    # ------------------------------------------------------------------

    def _room_keys(self, room_id: str, user_ids: Iterable[str]) -> list:
        keys = [
            REDIS_STATE_KEY.format(slug=room_id),
            REDIS_USERS_KEY.format(slug=room_id),
            REDIS_MEDIA_POOL_KEY.format(slug=room_id),
            REDIS_SWIPES_KEY.format(slug=room_id),
        ]
        for user_id in user_ids:
            keys.append(REDIS_SELECTIONS_KEY.format(slug=room_id, user_id=user_id))
        return keys

    def refresh_room_ttl(self, room_id: str):
        user_ids = self.redis_client.hkeys(REDIS_USERS_KEY.format(slug=room_id))
        keys = self._room_keys(room_id, user_ids)
        keys.extend(REDIS_USER_ROOM_KEY.format(user_id=user_id) for user_id in user_ids)
        pipe = self.redis_client.pipeline(transaction=False)
        for key in keys:
            pipe.expire(key, self.ttl_seconds)
        pipe.execute()
        logger.debug(f"Refreshed TTL of {len(keys)} keys for room {room_id}")

    def delete_room_data(self, room_id: str, user_id: Optional[str] = None) -> int:
        logger.info(f"Deleting all Redis data for room {room_id}")
        user_ids = set(self.redis_client.hkeys(REDIS_USERS_KEY.format(slug=room_id)))
        if user_id:
            user_ids.add(user_id)
        keys = self._room_keys(room_id, user_ids)
        pipe = self.redis_client.pipeline()
        for uid in user_ids:
            pipe.get(REDIS_USER_ROOM_KEY.format(user_id=uid))
        mapped_rooms = pipe.execute()
        for uid, mapped in zip(user_ids, mapped_rooms):
            if mapped == room_id:
                keys.append(REDIS_USER_ROOM_KEY.format(user_id=uid))
        deleted = self.redis_client.delete(*keys)
        logger.debug(f"Room {room_id} deleted: {deleted} of {len(keys)} keys existed")
        return deleted

    # ------------------------------------------------------------------
    # Pub/sub
    # ------------------------------------------------------------------

    def get_room_channel_name(self, room_id: str) -> str:
        """Get the Redis pub/sub channel name for a room."""
        return REDIS_ROOM_CHANNEL.format(slug=room_id)

    def publish_message(self, room_id: str, message: dict):
        """Publish a message to the room's Redis pub/sub channel."""
        channel = self.get_room_channel_name(room_id)
        subscribers = self.redis_client.publish(channel, json.dumps(message))
        logger.debug(f"Published {message.get('type')} to room {room_id} channel {channel}, {subscribers} subscribers")
        return subscribers

    def subscribe_to_room(self, room_id: str):
        """Create a pubsub subscriber for a room channel."""
        channel = self.get_room_channel_name(room_id)
        logger.debug(f"Subscribing to Redis channel {channel} for room {room_id}")
        pubsub = self.pubsub_client.pubsub()
        pubsub.subscribe(channel)
        return pubsub

"""Durable collaborators of the matching engine.

The engine only reads media by id and records the final match. The contracts
are abstract so another store can be plugged in; the bundled implementations
keep their records in Redis without a TTL.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import redis

from logging_config import get_logger
from redis_keys import REDIS_MATCH_KEY, REDIS_MEDIA_KEY, REDIS_ROOM_RECORD_KEY
from schemas.rooms import Media, RoomStatus

logger = get_logger(__name__)


class MediaRepository(ABC):
    @abstractmethod
    def find_by_id(self, media_id: str) -> Optional[Media]:
        ...

    @abstractmethod
    def find_many_by_ids(self, media_ids: list) -> list:
        ...


class RoomRepository(ABC):
    @abstractmethod
    def create(self, room_id: str, host_id: str, created_at: datetime):
        ...

    @abstractmethod
    def update_status(self, room_id: str, status: RoomStatus):
        ...

    @abstractmethod
    def create_match(self, room_id: str, media_id: str, matched_at: datetime):
        """Persist the match and flip the room record to MATCHED atomically."""

    @abstractmethod
    def get_match(self, room_id: str) -> Optional[dict]:
        ...


class RedisMediaRepository(MediaRepository):
    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client

    def save(self, media: Media):
        key = REDIS_MEDIA_KEY.format(media_id=media.id)
        mapping = {"id": media.id, "title": media.title}
        if media.poster_path:
            mapping["poster_path"] = media.poster_path
        self.redis_client.hset(key, mapping=mapping)

    def find_by_id(self, media_id: str) -> Optional[Media]:
        data = self.redis_client.hgetall(REDIS_MEDIA_KEY.format(media_id=media_id))
        if not data:
            logger.debug(f"Media {media_id} not found")
            return None
        return Media(id=data["id"], title=data["title"], poster_path=data.get("poster_path"))

    def find_many_by_ids(self, media_ids: list) -> list:
        pipe = self.redis_client.pipeline(transaction=False)
        for media_id in media_ids:
            pipe.hgetall(REDIS_MEDIA_KEY.format(media_id=media_id))
        return [
            Media(id=data["id"], title=data["title"], poster_path=data.get("poster_path"))
            for data in pipe.execute()
            if data
        ]


class RedisRoomRepository(RoomRepository):
    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client

    def create(self, room_id: str, host_id: str, created_at: datetime):
        logger.debug(f"Creating room record {room_id}")
        self.redis_client.hset(REDIS_ROOM_RECORD_KEY.format(slug=room_id), mapping={
            "id": room_id,
            "host_id": host_id,
            "status": RoomStatus.WAITING.value,
            "created_at": created_at.isoformat(),
        })

    def update_status(self, room_id: str, status: RoomStatus):
        logger.debug(f"Update room {room_id} record status to: {status.value}")
        self.redis_client.hset(REDIS_ROOM_RECORD_KEY.format(slug=room_id), "status", status.value)

    def create_match(self, room_id: str, media_id: str, matched_at: datetime):
        logger.info(f"Creating match for room {room_id} with media {media_id}")
        try:
            pipe = self.redis_client.pipeline()
            pipe.hset(REDIS_ROOM_RECORD_KEY.format(slug=room_id), "status", RoomStatus.MATCHED.value)
            pipe.hset(REDIS_MATCH_KEY.format(slug=room_id), mapping={
                "room_id": room_id,
                "media_id": media_id,
                "matched_at": matched_at.isoformat(),
            })
            pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Failed to create match for room {room_id}: {e}", exc_info=True)
            raise

    def get_match(self, room_id: str) -> Optional[dict]:
        return self.redis_client.hgetall(REDIS_MATCH_KEY.format(slug=room_id)) or None

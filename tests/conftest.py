import fakeredis
import pytest

from backend import RedisBackend
from repositories import RedisMediaRepository, RedisRoomRepository
from schemas.rooms import Media
from services.matching import build_matching_service

ROOM_TTL_SECONDS = 30 * 60
HOST = "host-user"
GUEST = "guest-user"


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def backend(redis_client):
    return RedisBackend(redis_client, ttl_seconds=ROOM_TTL_SECONDS)


@pytest.fixture
def media_repository(redis_client):
    repo = RedisMediaRepository(redis_client)
    for i in range(1, 61):
        repo.save(Media(id=f"m{i}", title=f"Title {i}", poster_path=f"/posters/m{i}.jpg"))
    return repo


@pytest.fixture
def room_repository(redis_client):
    return RedisRoomRepository(redis_client)


@pytest.fixture
def matching(backend, media_repository, room_repository):
    return build_matching_service(backend, media_repository, room_repository)


@pytest.fixture
def waiting_room(matching):
    """Room with host and guest, still WAITING."""
    room = matching.create_room(HOST)
    matching.add_user_to_room(room.invite_code, GUEST)
    return room.invite_code


@pytest.fixture
def selecting_room(matching, waiting_room):
    matching.start_selections(waiting_room, HOST)
    return waiting_room


@pytest.fixture
def swiping_room(matching, selecting_room):
    """Scenario A: six picks each, no overlap, both ready."""
    for i in range(1, 7):
        matching.add_media_to_draft(HOST, selecting_room, f"m{i}")
    for i in range(7, 13):
        matching.add_media_to_draft(GUEST, selecting_room, f"m{i}")
    matching.set_user_readiness(selecting_room, HOST, True)
    matching.set_user_readiness(selecting_room, GUEST, True)
    return selecting_room

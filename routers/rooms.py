from fastapi import APIRouter, HTTPException, Request

from errors import MatchingError
from logging_config import get_logger
from schemas.rooms import MatchRecord, Media, RoomDetailsResponse

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


def _raise_http(e: MatchingError):
    raise HTTPException(status_code=e.status_code, detail=e.to_dict())


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str, request: Request):
    """
    Get room details.

    Returns:
    - room_id: Invite code of the room
    - status: Current room status
    - users_count / users: Current members, host flagged
    - max_users: Maximum members allowed
    - is_full: Whether the room has reached max capacity
    """
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Room details request for {room_id} from {client_host}")
    matching = request.app.state.matching
    max_users = request.app.state.max_members

    try:
        room = matching.get_room_data(room_id)
    except MatchingError as e:
        logger.warning(f"Room details failed for {room_id}: {e.message}")
        _raise_http(e)

    return RoomDetailsResponse(
        room_id=room.invite_code,
        status=room.status,
        users_count=room.users_count,
        users=room.users,
        max_users=max_users,
        is_full=room.users_count >= max_users,
    )


@rooms_router.get("/{room_id}/media-pool", response_model=list[Media])
async def get_media_pool(room_id: str, request: Request):
    logger.info(f"Media pool request for {room_id}")
    try:
        return request.app.state.matching.get_media_pool_with_details(room_id)
    except MatchingError as e:
        logger.warning(f"Media pool request failed for {room_id}: {e.message}")
        _raise_http(e)


@rooms_router.get("/{room_id}/match", response_model=MatchRecord)
async def get_room_match(room_id: str, request: Request):
    """Durable match of a finished room. Outlives the room's ephemeral state."""
    logger.info(f"Match request for {room_id}")
    match = request.app.state.room_repository.get_match(room_id)
    if not match:
        raise HTTPException(status_code=404, detail={"message": f"No match for room {room_id}", "code": "NOT_FOUND"})
    return MatchRecord(**match)

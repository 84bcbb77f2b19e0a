from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RoomStatus(str, Enum):
    WAITING = "WAITING"
    SELECTING = "SELECTING"
    SWIPING = "SWIPING"
    MATCHED = "MATCHED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = (RoomStatus.MATCHED, RoomStatus.CANCELLED)


class SwipeAction(str, Enum):
    LIKE = "LIKE"
    SKIP = "SKIP"


class CamelModel(BaseModel):
    """Snake case in Python, camel case on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class Member(CamelModel):
    user_id: str
    nickname: str

class UserDTO(Member):
    is_host: bool = False

class RoomState(CamelModel):
    status: RoomStatus
    host_id: str
    guest_id: Optional[str] = None
    host_ready: bool = False
    guest_ready: bool = False
    version: int = 0
    matched_media_id: Optional[str] = None

class RoomData(CamelModel):
    invite_code: str
    users_count: int
    users: list[UserDTO]
    status: RoomStatus
    selected_media: Optional[list[str]] = None
    media_queue: Optional[list[str]] = None
    matched_media_id: Optional[str] = None

class Media(CamelModel):
    id: str
    title: str
    poster_path: Optional[str] = None

class MatchData(CamelModel):
    media_id: str
    media_title: str
    poster_path: Optional[str] = None
    matched_at: datetime

class SwipeResult(CamelModel):
    is_match: bool
    match_data: Optional[MatchData] = None

class AnimeAddedData(CamelModel):
    media_id: str
    added_by: str

class ConnectionData(CamelModel):
    user_id: str
    is_new: bool


# Client -> server event payloads

class RoomIdPayload(CamelModel):
    room_id: str = Field(min_length=1)

class MediaIdPayload(CamelModel):
    media_id: str = Field(min_length=1)

class SwipePayload(CamelModel):
    media_id: str = Field(min_length=1)
    action: SwipeAction

class SetReadyPayload(CamelModel):
    is_ready: bool


class RoomDetailsResponse(CamelModel):
    room_id: str
    status: RoomStatus
    users_count: int
    users: list[UserDTO]
    max_users: int
    is_full: bool

class MatchRecord(CamelModel):
    room_id: str
    media_id: str
    matched_at: datetime

class MatchingError(Exception):
    """Base for every error surfaced to a client as {message, code}."""

    code = "MATCHING_ERROR"
    status_code = 400

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"message": self.message, "code": self.code}


class RoomNotFound(MatchingError):
    code = "NOT_FOUND"
    status_code = 404


class MediaNotFound(MatchingError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidRoomState(MatchingError):
    code = "INVALID_STATE"
    status_code = 409


class NotAMember(MatchingError):
    code = "FORBIDDEN"
    status_code = 403


class RoomConflict(MatchingError):
    code = "CONFLICT"
    status_code = 409


class DraftLimitExceeded(MatchingError):
    code = "LIMIT_EXCEEDED"
    status_code = 400

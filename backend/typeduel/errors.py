"""Error taxonomy for room and scoring operations.

Every failure a caller can observe is a ``GameError`` carrying the HTTP
status the API layer answers with. Services raise them; the error handler
registered in ``create_app`` renders ``{"error": message}``.
"""


class GameError(Exception):
    status_code = 400
    message = 'Request failed'

    def __init__(self, message=None):
        super().__init__(message or self.message)
        self.message = message or self.message

    def to_dict(self):
        return {'error': self.message}


class InvalidRequest(GameError):
    status_code = 400
    message = 'Invalid request'


class Unauthenticated(GameError):
    status_code = 401
    message = 'Authentication required'


class Unauthorized(GameError):
    status_code = 403
    message = 'Not allowed'


class NotHost(Unauthorized):
    message = 'Only the host can do that'


class NotFound(GameError):
    status_code = 404
    message = 'Not found'


class RoomNotFound(NotFound):
    message = 'Room not found'


class PlayerNotFound(NotFound):
    message = 'Player not found in room'


class RequestNotFound(NotFound):
    message = 'Join request not found'


class UserNotFound(NotFound):
    message = 'User not found'


class Conflict(GameError):
    status_code = 409
    message = 'Conflict'


class RoomFull(Conflict):
    message = 'Room is full'


class DuplicateRequest(Conflict):
    message = 'You already have a pending request for this room'


class AlreadyPlayer(Conflict):
    message = 'You are already in this room'


class PublicRoomRequiresApproval(Conflict):
    message = 'Public rooms require a join request'


class PrivateRoomRequiresCode(Conflict):
    message = 'Private rooms can only be joined with a room code'


class RequestAlreadyHandled(Conflict):
    message = 'Join request has already been handled'


class AggregateKeyMismatch(Exception):
    """Raised when the leaderboard index holds a different key than expected."""

"""Errors raised by engines and the session controller.

Every error here is recoverable: the socket boundary reports it privately to
the connection that caused it and nothing is broadcast to the room.
"""


class GameError(Exception):
    """Base class; ``event`` is the private event the sender receives."""

    event = 'error'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'message': self.message}


class ValidationRejected(GameError):
    """Malformed or rule-violating request (wrong turn, occupied cell...)."""

    event = 'move-error'


class RoomNotFound(ValidationRejected):
    def __init__(self, room_id: str):
        super().__init__(f'Room {room_id} not found')
        self.room_id = room_id


class NotInRoom(ValidationRejected):
    def __init__(self, room_id: str):
        super().__init__(f'You are not in room {room_id}')
        self.room_id = room_id


class JoinRejected(GameError):
    event = 'join-error'


class CapacityRejected(JoinRejected):
    event = 'room-full'


class ChatRejected(GameError):
    event = 'chat-error'

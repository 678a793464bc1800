from typing import Optional


class SignalingError(Exception):
    """Base class for every error returned to a signaling client.

    ``code`` is the stable identifier sent on the wire in the ``error`` event.
    """

    code = "SignalingError"
    fatal = False

    def __init__(self, message: Optional[str] = None, room_id: Optional[str] = None, target: Optional[str] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.room_id = room_id
        self.target = target


class DuplicateConnection(SignalingError):
    code = "DuplicateConnection"


class RoomFull(SignalingError):
    code = "RoomFull"


class RoomNotFound(SignalingError):
    code = "RoomNotFound"


class TargetNotFound(SignalingError):
    code = "TargetNotFound"


class NotInRoom(SignalingError):
    code = "NotInRoom"


class AlreadyInRoom(SignalingError):
    code = "AlreadyInRoom"


class InvalidMessage(SignalingError):
    code = "InvalidMessage"


class TransportError(SignalingError):
    """The connection's transport failed. Ends the session."""

    code = "TransportError"
    fatal = True

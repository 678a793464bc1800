from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class SignalType(str, Enum):
    """Message types a client may send over the signaling socket."""
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    HANGUP = "hangup"
    JOIN = "join"
    LEAVE = "leave"
    PING = "ping"
    PONG = "pong"


RELAYED_TYPES = (SignalType.OFFER, SignalType.ANSWER, SignalType.ICE_CANDIDATE)


class EventType(str, Enum):
    """Message types only the server sends."""
    CONNECTED = "connected"
    JOINED = "joined"
    LEFT = "left"
    PARTICIPANT_JOINED = "participant-joined"
    PARTICIPANT_LEFT = "participant-left"
    INCOMING_CALL = "incoming-call"
    CALL_ENDED = "call-ended"
    ERROR = "error"


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def wire(self) -> dict:
        """Dump with camelCase aliases and without empty fields, ready for json.dumps."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class SignalMessage(WireModel):
    """Inbound signal. ``from`` is ignored on input and stamped by the server."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: SignalType
    room_id: Optional[str] = Field(None, alias="roomId")
    sender: Optional[str] = Field(None, alias="from")
    to: Optional[str] = None
    payload: Optional[Any] = None

    def forwarded(self, sender: str, room_id: str, reason: Optional[str] = None) -> dict:
        message = self.model_copy(update={"sender": sender, "room_id": room_id}).wire()
        if reason:
            message["reason"] = reason
        return message


class ConnectedEvent(WireModel):
    type: EventType = EventType.CONNECTED
    connection_id: str = Field(..., alias="connectionId")
    user_id: str = Field(..., alias="userId")


class JoinedEvent(WireModel):
    type: EventType = EventType.JOINED
    room_id: str = Field(..., alias="roomId")
    participants: list[str]
    max_participants: int = Field(..., alias="maxParticipants")
    initiator: str


class LeftEvent(WireModel):
    type: EventType = EventType.LEFT
    room_id: str = Field(..., alias="roomId")


class ParticipantEvent(WireModel):
    type: EventType
    room_id: str = Field(..., alias="roomId")
    user_id: str = Field(..., alias="userId")
    participant_count: int = Field(..., alias="participantCount")


class CallEvent(WireModel):
    """``incoming-call`` and ``call-ended`` notifications for the call dialogs."""
    type: EventType
    room_id: str = Field(..., alias="roomId")
    sender: Optional[str] = Field(None, alias="from")
    reason: Optional[str] = None
    payload: Optional[Any] = None


class Rejection(WireModel):
    type: EventType = EventType.ERROR
    code: str
    message: str
    room_id: Optional[str] = Field(None, alias="roomId")
    request_type: Optional[str] = Field(None, alias="requestType")

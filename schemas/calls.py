from pydantic import BaseModel
from typing import Optional


class RoomDetailsResponse(BaseModel):
    room_id: str
    initiator: str
    participants: list[str]
    max_participants: int
    created_at: str
    is_full: bool

class RoomListResponse(BaseModel):
    rooms: list[RoomDetailsResponse]
    count: int

class CloseRoomResponse(BaseModel):
    room_id: str
    message: str

class CallRecord(BaseModel):
    room_id: str
    initiator: str
    callee: Optional[str] = None
    participants: list[str]
    started_at: str
    ended_at: str
    end_reason: str
    answered: bool = False
    missed: bool = False
    duration_seconds: float = 0.0

class CallHistoryResponse(BaseModel):
    user_id: str
    calls: list[CallRecord]

class PresenceResponse(BaseModel):
    user_id: str
    online: bool
    state: Optional[str] = None
    room_id: Optional[str] = None
    connected_at: Optional[str] = None

class HealthResponse(BaseModel):
    status: str
    uptime_seconds: float
    connections: int
    rooms: int
    redis: Optional[bool] = None

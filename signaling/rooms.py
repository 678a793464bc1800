import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from constants import MAX_ROOM_PARTICIPANTS
from logging_config import get_logger
from signaling.errors import AlreadyInRoom, NotInRoom, RoomFull, RoomNotFound

logger = get_logger(__name__)


@dataclass
class Room:
    room_id: str
    initiator: str
    max_participants: int
    created_at: str
    callee: Optional[str] = None
    participants: List[str] = field(default_factory=list)
    members_seen: List[str] = field(default_factory=list)
    alone_since: Optional[float] = None
    # set when a second member first joins (the call was answered)
    answered_at: Optional[float] = None
    closed: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def is_full(self) -> bool:
        return len(self.participants) >= self.max_participants

    def _add(self, identity: str, now: float):
        self.participants.append(identity)
        if identity not in self.members_seen:
            self.members_seen.append(identity)
        if self.answered_at is None and len(self.members_seen) > 1:
            self.answered_at = now
        self._update_alone(now)

    def _remove(self, identity: str, now: float):
        self.participants.remove(identity)
        self._update_alone(now)

    def _update_alone(self, now: float):
        if len(self.participants) == 1:
            if self.alone_since is None:
                self.alone_since = now
        else:
            self.alone_since = None


@dataclass
class Departure:
    room_id: str
    remaining: List[str]
    dissolved: bool
    room: Room


class RoomManager:
    """Owns call rooms and the identity -> room membership index.

    Every mutation of a room happens under that room's lock, so membership
    changes and relays within one room never interleave.
    """

    def __init__(self, max_participants: int = MAX_ROOM_PARTICIPANTS, clock: Callable[[], float] = time.monotonic):
        self.max_participants = max_participants
        self.clock = clock
        self._rooms: Dict[str, Room] = {}
        self._membership: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def get(self, room_id: Optional[str]) -> Optional[Room]:
        if room_id is None:
            return None
        return self._rooms.get(room_id)

    def room_of(self, identity: str) -> Optional[str]:
        return self._membership.get(identity)

    def rooms(self) -> List[Room]:
        return list(self._rooms.values())

    async def create_room(self, initiator_id: str, max_participants: Optional[int] = None,
                          callee: Optional[str] = None) -> str:
        current = self._membership.get(initiator_id)
        if current is not None:
            raise AlreadyInRoom(f"{initiator_id} is already in room {current}", room_id=current)

        room = Room(
            room_id=uuid.uuid4().hex,
            initiator=initiator_id,
            max_participants=max_participants or self.max_participants,
            created_at=datetime.now().isoformat(),
            callee=callee,
        )
        room._add(initiator_id, self.clock())
        self._rooms[room.room_id] = room
        self._membership[initiator_id] = room.room_id
        logger.info(f"Room {room.room_id} created by {initiator_id} (max {room.max_participants})")
        return room.room_id

    async def join(self, room_id: str, identity: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFound(f"Room {room_id} not found", room_id=room_id)

        async with room.lock:
            if room.closed:
                raise RoomNotFound(f"Room {room_id} not found", room_id=room_id)
            if identity in room.participants:
                return room
            current = self._membership.get(identity)
            if current is not None:
                raise AlreadyInRoom(f"{identity} is already in room {current}", room_id=current)
            if room.is_full:
                logger.info(f"Join rejected: room {room_id} is full ({len(room.participants)}/{room.max_participants})")
                raise RoomFull(f"Room {room_id} is full", room_id=room_id)

            room._add(identity, self.clock())
            self._membership[identity] = room_id
            logger.info(f"{identity} joined room {room_id} ({len(room.participants)}/{room.max_participants})")
            return room

    async def leave(self, room_id: str, identity: str, dissolve_below: int = 1) -> Departure:
        """Remove ``identity`` from the room.

        When fewer than ``dissolve_below`` participants remain, the room is
        destroyed in the same critical section and those participants are
        evicted (``Departure.dissolved`` is set).
        """
        room = self._rooms.get(room_id)
        if room is None:
            raise NotInRoom(f"{identity} is not in room {room_id}", room_id=room_id)

        async with room.lock:
            if room.closed or identity not in room.participants:
                raise NotInRoom(f"{identity} is not in room {room_id}", room_id=room_id)

            room._remove(identity, self.clock())
            self._membership.pop(identity, None)
            remaining = list(room.participants)
            logger.info(f"{identity} left room {room_id} ({len(remaining)} remaining)")

            dissolved = len(remaining) < dissolve_below
            if dissolved:
                self._destroy_locked(room)
            return Departure(room_id=room_id, remaining=remaining, dissolved=dissolved, room=room)

    async def destroy(self, room_id: str) -> List[str]:
        """Destroy a room and return the participants it evicted."""
        room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFound(f"Room {room_id} not found", room_id=room_id)
        async with room.lock:
            if room.closed:
                raise RoomNotFound(f"Room {room_id} not found", room_id=room_id)
            evicted = list(room.participants)
            self._destroy_locked(room)
            return evicted

    def _destroy_locked(self, room: Room):
        for identity in room.participants:
            if self._membership.get(identity) == room.room_id:
                del self._membership[identity]
        room.participants.clear()
        room.closed = True
        self._rooms.pop(room.room_id, None)
        logger.info(f"Room {room.room_id} destroyed")

    def stale_rooms(self, now: float, timeout: float) -> List[str]:
        """Rooms that have had a single participant for at least ``timeout`` seconds."""
        return [
            room.room_id for room in self._rooms.values()
            if room.alone_since is not None and now - room.alone_since >= timeout
        ]

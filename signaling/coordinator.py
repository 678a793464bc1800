import asyncio
import json
import time
from datetime import datetime
from typing import Callable, List, Optional

import redis
from pydantic import ValidationError

from backend import RedisBackend
from constants import (DISCONNECT_TIMEOUT_SECONDS, DUPLICATE_CONNECTION_POLICY, IDLE_TIMEOUT_SECONDS,
                       MAX_ROOM_PARTICIPANTS, ROOM_TIMEOUT_SECONDS, SWEEP_INTERVAL_SECONDS)
from logging_config import get_logger
from schemas.signals import (RELAYED_TYPES, CallEvent, ConnectedEvent, EventType, JoinedEvent, LeftEvent,
                             ParticipantEvent, Rejection, SignalMessage, SignalType)
from signaling.errors import (DuplicateConnection, InvalidMessage, NotInRoom, RoomFull, RoomNotFound,
                              SignalingError, TargetNotFound)
from signaling.registry import Connection, ConnectionRegistry
from signaling.relay import SignalRelay
from signaling.rooms import Departure, Room, RoomManager
from signaling.supervisor import LifecycleSupervisor
from signaling.transport import CLOSE_GOING_AWAY, CLOSE_NORMAL, CLOSE_REPLACED, Transport

logger = get_logger(__name__)

DUPLICATE_POLICIES = ("reject", "replace")


class SignalingCoordinator:
    """Owns all signaling state of one server instance.

    Connections, rooms, the relay and the lifecycle supervisor live on the
    instance, so tests (or several apps in one process) get isolated state.
    Nothing survives a restart: calls in progress are simply lost.
    """

    def __init__(self, backend: Optional[RedisBackend] = None,
                 max_participants: int = MAX_ROOM_PARTICIPANTS,
                 duplicate_policy: str = DUPLICATE_CONNECTION_POLICY,
                 idle_timeout: float = IDLE_TIMEOUT_SECONDS,
                 disconnect_timeout: float = DISCONNECT_TIMEOUT_SECONDS,
                 room_timeout: float = ROOM_TIMEOUT_SECONDS,
                 sweep_interval: float = SWEEP_INTERVAL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        if duplicate_policy not in DUPLICATE_POLICIES:
            raise ValueError(f"Unknown duplicate connection policy: {duplicate_policy!r}")
        self.backend = backend
        self.duplicate_policy = duplicate_policy
        self.clock = clock
        self.started_at = time.time()

        self.registry = ConnectionRegistry()
        self.rooms = RoomManager(max_participants=max_participants, clock=clock)
        self.relay = SignalRelay(self.registry, self.rooms)
        self.supervisor = LifecycleSupervisor(
            self.registry, self.rooms,
            on_disconnect=self.disconnect,
            on_room_expired=self.close_room,
            idle_timeout=idle_timeout,
            disconnect_timeout=disconnect_timeout,
            room_timeout=room_timeout,
            sweep_interval=sweep_interval,
            clock=clock,
        )
        self._supervisor_task: Optional[asyncio.Task] = None

    # Lifecycle

    def start(self):
        if self._supervisor_task is None or self._supervisor_task.done():
            self._supervisor_task = asyncio.create_task(self.supervisor.run(), name="signal-supervisor")

    async def stop(self):
        task, self._supervisor_task = self._supervisor_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        for connection in self.registry:
            await self.disconnect(connection, reason="shutdown", code=CLOSE_GOING_AWAY)
        logger.info("Signaling coordinator stopped")

    # Connections

    async def connect(self, identity: str, transport: Transport) -> Connection:
        existing = self.registry.lookup(identity)
        if existing is not None:
            if self.duplicate_policy == "reject":
                logger.warning(f"Rejecting second connection for {identity}")
                raise DuplicateConnection(f"User {identity} already has an active connection", target=identity)
            logger.info(f"Replacing connection {existing.connection_id[:8]} of {identity}")
            existing.deliver(Rejection(
                code=DuplicateConnection.code,
                message="Replaced by a newer connection",
                room_id=existing.room_id,
            ).wire())
            await self.disconnect(existing, reason="replaced", code=CLOSE_REPLACED)

        connection = self.registry.register(identity, transport, self.clock(),
                                            on_transport_error=self.supervisor.transport_failed)
        connection.start()
        connection.deliver(ConnectedEvent(connection_id=connection.connection_id, user_id=identity).wire())
        return connection

    async def disconnect(self, connection: Connection, reason: str = "closed", code: int = CLOSE_NORMAL):
        """Release the connection and hang up its call. Safe to call more than once."""
        if self.registry.get(connection.connection_id) is not connection:
            return
        room_id = connection.room_id
        await self.registry.unregister(connection.connection_id, code=code, reason=reason)
        connection.room_id = None
        if room_id is None:
            return

        try:
            departure = await self.rooms.leave(room_id, connection.identity, dissolve_below=2)
        except NotInRoom:
            logger.debug(f"Room {room_id} was already gone when {connection.identity} disconnected")
            return

        hangup = SignalMessage(type=SignalType.HANGUP).forwarded(connection.identity, room_id, reason=reason)
        for identity in departure.remaining:
            self._send_to(identity, hangup)
        await self._after_departure(connection.identity, departure, reason)

    # Inbound messages

    async def handle_text(self, connection: Connection, raw: str):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            self.supervisor.touch(connection)
            self._reject(connection, InvalidMessage("Message is not valid JSON"))
            return
        await self.handle(connection, data)

    async def handle_binary(self, connection: Connection, raw: bytes):
        self.supervisor.touch(connection)
        self._reject(connection, InvalidMessage("Binary frames are not supported"))

    async def handle(self, connection: Connection, data):
        self.supervisor.touch(connection)
        try:
            message = SignalMessage.model_validate(data)
        except ValidationError as e:
            errors = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
            self._reject(connection, InvalidMessage(f"Invalid signal message: {errors}"))
            return

        try:
            await self._dispatch(connection, message)
        except SignalingError as e:
            self._reject(connection, e, request_type=message.type.value)

    async def _dispatch(self, connection: Connection, message: SignalMessage):
        if message.type is SignalType.JOIN:
            if message.room_id is None:
                await self._start_call(connection, message)
            else:
                await self._join(connection, message.room_id)
        elif message.type is SignalType.LEAVE:
            await self._leave(connection, message.room_id or connection.room_id)
        elif message.type in RELAYED_TYPES:
            await self.relay.relay(connection, message)
        elif message.type is SignalType.HANGUP:
            await self._hangup(connection, message)
        elif message.type is SignalType.PING:
            connection.deliver(SignalMessage(type=SignalType.PONG).wire())

    async def _start_call(self, connection: Connection, message: SignalMessage):
        if connection.room_id is not None:
            await self._leave(connection, connection.room_id)

        room_id = await self.rooms.create_room(connection.identity, callee=message.to)
        connection.room_id = room_id
        room = self.rooms.get(room_id)
        connection.deliver(self._joined_event(room))
        self._record_call_started(room, callee=message.to)

        if message.to is None:
            return
        invite = CallEvent(type=EventType.INCOMING_CALL, room_id=room_id,
                           sender=connection.identity, payload=message.payload).wire()
        self._notify(message.to, invite)
        callee = self.registry.lookup(message.to)
        if message.to == connection.identity or callee is None or not callee.deliver(invite):
            raise TargetNotFound(f"{message.to} is not connected", room_id=room_id, target=message.to)
        logger.info(f"{connection.identity} is calling {message.to} in room {room_id}")

    async def _join(self, connection: Connection, room_id: str):
        room = self.rooms.get(room_id)
        if room is None or room.closed:
            raise RoomNotFound(f"Room {room_id} not found", room_id=room_id)
        if connection.identity in room.participants:
            connection.deliver(self._joined_event(room))
            return
        if room.is_full:
            raise RoomFull(f"Room {room_id} is full", room_id=room_id)
        if connection.room_id is not None:
            await self._leave(connection, connection.room_id)

        room = await self.rooms.join(room_id, connection.identity)
        connection.room_id = room_id
        connection.deliver(self._joined_event(room))
        joined = ParticipantEvent(type=EventType.PARTICIPANT_JOINED, room_id=room_id,
                                  user_id=connection.identity,
                                  participant_count=len(room.participants)).wire()
        for identity in room.participants:
            if identity != connection.identity:
                self._send_to(identity, joined)

    async def _leave(self, connection: Connection, room_id: Optional[str]):
        if room_id is None:
            raise NotInRoom(f"{connection.identity} is not in a room")
        departure = await self.rooms.leave(room_id, connection.identity, dissolve_below=1)
        if connection.room_id == room_id:
            connection.room_id = None
        connection.deliver(LeftEvent(room_id=room_id).wire())
        await self._after_departure(connection.identity, departure, reason="left")

    async def _hangup(self, connection: Connection, message: SignalMessage):
        room_id = message.room_id or connection.room_id
        room = self.rooms.get(room_id)
        if room is not None and self._is_pending_callee(room, connection.identity):
            await self._decline(connection, room)
            return
        if room is None or connection.identity not in room.participants:
            raise NotInRoom(f"{connection.identity} is not in room {room_id}", room_id=room_id)

        if len(room.participants) > 1:
            try:
                await self.relay.relay(connection, message, reason="hangup")
            except TargetNotFound:
                logger.debug(f"No connected peer in room {room_id} to receive the hangup")

        departure = await self.rooms.leave(room_id, connection.identity, dissolve_below=2)
        if connection.room_id == room_id:
            connection.room_id = None
        connection.deliver(LeftEvent(room_id=room_id).wire())
        await self._after_departure(connection.identity, departure, reason="hangup")

    def _is_pending_callee(self, room: Room, identity: str) -> bool:
        return room.callee == identity and identity not in room.members_seen

    async def _decline(self, connection: Connection, room: Room):
        """The invited callee turned the call down before joining: end it for the caller."""
        evicted = await self.rooms.destroy(room.room_id)
        logger.info(f"{connection.identity} declined call {room.room_id} from {room.initiator}")
        hangup = SignalMessage(type=SignalType.HANGUP).forwarded(connection.identity, room.room_id, reason="declined")
        for identity in evicted:
            self._send_to(identity, hangup)
        self._end_call(room, evicted, sender=connection.identity, reason="declined")

    async def _after_departure(self, identity: str, departure: Departure, reason: str):
        if departure.dissolved:
            self._end_call(departure.room, departure.remaining, sender=identity, reason=reason)
            return
        left = ParticipantEvent(type=EventType.PARTICIPANT_LEFT, room_id=departure.room_id, user_id=identity,
                                participant_count=len(departure.remaining)).wire()
        for peer in departure.remaining:
            self._send_to(peer, left)

    # Rooms

    async def close_room(self, room_id: str, reason: str = "closed"):
        room = self.rooms.get(room_id)
        if room is None:
            raise RoomNotFound(f"Room {room_id} not found", room_id=room_id)
        evicted = await self.rooms.destroy(room_id)
        logger.info(f"Room {room_id} closed ({reason}), evicted {len(evicted)} participant(s)")
        self._end_call(room, evicted, sender=None, reason=reason)

    def _end_call(self, room: Room, evicted: List[str], sender: Optional[str], reason: str):
        ended = CallEvent(type=EventType.CALL_ENDED, room_id=room.room_id, sender=sender, reason=reason).wire()
        for identity in evicted:
            connection = self.registry.lookup(identity)
            if connection is not None:
                if connection.room_id == room.room_id:
                    connection.room_id = None
                connection.deliver(ended)
            self._notify(identity, ended)
        self._record_call_ended(room, reason)

    def describe_room(self, room_id: str) -> Optional[dict]:
        room = self.rooms.get(room_id)
        if room is None:
            return None
        return {
            "room_id": room.room_id,
            "initiator": room.initiator,
            "participants": list(room.participants),
            "max_participants": room.max_participants,
            "created_at": room.created_at,
            "is_full": room.is_full,
        }

    def list_rooms(self) -> List[dict]:
        return [self.describe_room(room.room_id) for room in self.rooms.rooms()]

    def presence(self, identity: str) -> dict:
        connection = self.registry.lookup(identity)
        if connection is None:
            return {"user_id": identity, "online": False, "state": None, "room_id": None, "connected_at": None}
        return {
            "user_id": identity,
            "online": True,
            "state": connection.state.value,
            "room_id": connection.room_id,
            "connected_at": connection.connected_at,
        }

    # Helpers

    def _send_to(self, identity: str, message: dict) -> bool:
        connection = self.registry.lookup(identity)
        return connection is not None and connection.deliver(message)

    def _reject(self, connection: Connection, error: SignalingError, request_type: Optional[str] = None):
        logger.warning(f"Rejected {request_type or 'message'} from {connection.identity}: {error.code} ({error.message})")
        connection.deliver(Rejection(code=error.code, message=error.message,
                                     room_id=error.room_id, request_type=request_type).wire())

    def _joined_event(self, room: Room) -> dict:
        return JoinedEvent(room_id=room.room_id, participants=list(room.participants),
                           max_participants=room.max_participants, initiator=room.initiator).wire()

    def _notify(self, user_id: str, event: dict):
        if self.backend is None:
            return
        try:
            self.backend.publish_notification(user_id, event)
        except redis.RedisError as e:
            logger.error(f"Failed to publish {event.get('type')} notification for {user_id}: {e}")

    def _record_call_started(self, room: Room, callee: Optional[str] = None):
        if self.backend is None:
            return
        try:
            self.backend.record_call_started(room.room_id, {
                "room_id": room.room_id,
                "initiator": room.initiator,
                "callee": callee,
                "created_at": room.created_at,
                "max_participants": room.max_participants,
            })
        except redis.RedisError as e:
            logger.error(f"Failed to record start of call {room.room_id}: {e}")

    def _record_call_ended(self, room: Room, reason: str):
        if self.backend is None:
            return
        record = {
            "room_id": room.room_id,
            "initiator": room.initiator,
            "callee": room.callee,
            "participants": list(room.members_seen),
            "started_at": room.created_at,
            "ended_at": datetime.now().isoformat(),
            "end_reason": reason,
            "answered": room.answered_at is not None,
            "missed": room.callee is not None and room.callee not in room.members_seen,
            "duration_seconds": round(self.clock() - room.answered_at, 1) if room.answered_at is not None else 0.0,
        }
        recipients = list(room.members_seen)
        if room.callee is not None and room.callee not in recipients:
            recipients.append(room.callee)
        try:
            self.backend.record_call_ended(room.room_id, record, recipients)
        except redis.RedisError as e:
            logger.error(f"Failed to record end of call {room.room_id}: {e}")

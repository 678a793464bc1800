import asyncio
import time
from typing import Awaitable, Callable, List, Optional

from constants import (DISCONNECT_TIMEOUT_SECONDS, IDLE_TIMEOUT_SECONDS, ROOM_TIMEOUT_SECONDS,
                       SWEEP_INTERVAL_SECONDS)
from logging_config import get_logger
from schemas.signals import SignalMessage, SignalType
from signaling.errors import RoomNotFound, TransportError
from signaling.registry import Connection, ConnectionRegistry, ConnectionState
from signaling.rooms import RoomManager
from signaling.transport import CLOSE_GOING_AWAY, CLOSE_INTERNAL_ERROR

logger = get_logger(__name__)

DisconnectHandler = Callable[..., Awaitable[None]]
RoomExpiryHandler = Callable[..., Awaitable[None]]


class LifecycleSupervisor:
    """Drives each connection through Active -> Idle -> Disconnected.

    A connection that has been silent for ``idle_timeout`` seconds goes Idle
    and is probed with a ping; after ``disconnect_timeout`` seconds of silence
    it is disconnected. Transport failures skip Idle entirely. Rooms left with
    a single participant for ``room_timeout`` seconds are closed.
    """

    def __init__(self, registry: ConnectionRegistry, rooms: RoomManager,
                 on_disconnect: DisconnectHandler, on_room_expired: RoomExpiryHandler,
                 idle_timeout: float = IDLE_TIMEOUT_SECONDS,
                 disconnect_timeout: float = DISCONNECT_TIMEOUT_SECONDS,
                 room_timeout: float = ROOM_TIMEOUT_SECONDS,
                 sweep_interval: float = SWEEP_INTERVAL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.registry = registry
        self.rooms = rooms
        self.on_disconnect = on_disconnect
        self.on_room_expired = on_room_expired
        self.idle_timeout = idle_timeout
        self.disconnect_timeout = disconnect_timeout
        self.room_timeout = room_timeout
        self.sweep_interval = sweep_interval
        self.clock = clock

    def touch(self, connection: Connection):
        if connection.state is ConnectionState.IDLE:
            logger.debug(f"{connection.identity} is active again")
        connection.touch(self.clock())

    async def transport_failed(self, connection: Connection, error: TransportError):
        logger.error(f"Transport error for {connection.identity}: {error.message}")
        await self.on_disconnect(connection, reason="transport-error", code=CLOSE_INTERNAL_ERROR)

    async def sweep(self, now: Optional[float] = None) -> List[str]:
        """Apply idle/disconnect transitions and expire stale rooms. Returns disconnected identities."""
        if now is None:
            now = self.clock()

        expired: List[Connection] = []
        for connection in self.registry:
            silent_for = now - connection.last_activity
            if silent_for >= self.disconnect_timeout:
                expired.append(connection)
            elif silent_for >= self.idle_timeout and connection.state is ConnectionState.ACTIVE:
                connection.state = ConnectionState.IDLE
                connection.deliver(SignalMessage(type=SignalType.PING).wire())
                logger.info(f"{connection.identity} idle for {silent_for:.0f}s, probing")

        for connection in expired:
            logger.info(f"{connection.identity} timed out after {now - connection.last_activity:.0f}s of silence")
            await self.on_disconnect(connection, reason="timeout", code=CLOSE_GOING_AWAY)

        for room_id in self.rooms.stale_rooms(now, self.room_timeout):
            logger.info(f"Room {room_id} has had a single participant for {self.room_timeout:.0f}s, closing")
            try:
                await self.on_room_expired(room_id, reason="timeout")
            except RoomNotFound:
                logger.debug(f"Room {room_id} was already gone")

        return [connection.identity for connection in expired]

    async def run(self):
        logger.info(f"Lifecycle supervisor started (sweep every {self.sweep_interval}s)")
        try:
            while True:
                await asyncio.sleep(self.sweep_interval)
                try:
                    await self.sweep()
                except Exception as e:
                    logger.error(f"Lifecycle sweep failed: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.info("Lifecycle supervisor stopped")
            raise

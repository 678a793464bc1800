import asyncio
import uuid
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterator, Optional

from constants import SEND_FLUSH_TIMEOUT_SECONDS
from logging_config import get_logger
from signaling.errors import DuplicateConnection, TransportError
from signaling.transport import Transport

logger = get_logger(__name__)


class ConnectionState(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"
    DISCONNECTED = "disconnected"


TransportErrorCallback = Callable[["Connection", TransportError], Awaitable[None]]


class Connection:
    """One live client connection.

    Outbound messages go through a FIFO queue drained by a single sender task,
    so everything delivered to a connection reaches the transport in the order
    it was enqueued.
    """

    def __init__(self, identity: str, transport: Transport, now: float,
                 on_transport_error: Optional[TransportErrorCallback] = None):
        self.connection_id = uuid.uuid4().hex
        self.identity = identity
        self.transport = transport
        self.room_id: Optional[str] = None
        self.state = ConnectionState.ACTIVE
        self.last_activity = now
        self.connected_at = datetime.now().isoformat()
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._sender: Optional[asyncio.Task] = None
        self._on_transport_error = on_transport_error

    def __repr__(self) -> str:
        return f"Connection({self.identity!r}, id={self.connection_id[:8]}, state={self.state.value})"

    @property
    def is_open(self) -> bool:
        return self.state is not ConnectionState.DISCONNECTED

    def start(self) -> None:
        if self._sender is None:
            self._sender = asyncio.create_task(self._pump(), name=f"signal-sender-{self.connection_id[:8]}")

    def deliver(self, message: dict) -> bool:
        """Queue a message for this connection. Returns False once it is disconnected."""
        if not self.is_open:
            return False
        self._outbox.put_nowait(message)
        return True

    def touch(self, now: float) -> None:
        self.last_activity = now
        if self.state is ConnectionState.IDLE:
            self.state = ConnectionState.ACTIVE

    async def _pump(self):
        while True:
            message = await self._outbox.get()
            if message is None:
                break
            try:
                await self.transport.send(message)
            except Exception as e:
                logger.warning(f"Send to {self.identity} ({self.connection_id[:8]}) failed: {e}")
                if self.is_open and self._on_transport_error is not None:
                    try:
                        await self._on_transport_error(self, TransportError(str(e)))
                    except Exception as callback_error:
                        logger.error(f"Transport error handler failed for {self.identity}: {callback_error}", exc_info=True)
                break

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Mark disconnected, flush what is already queued, then close the transport."""
        if not self.is_open:
            return
        self.state = ConnectionState.DISCONNECTED
        self._outbox.put_nowait(None)

        sender = self._sender
        if sender is not None and sender is not asyncio.current_task() and not sender.done():
            try:
                await asyncio.wait_for(sender, timeout=SEND_FLUSH_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                logger.warning(f"Dropped {self._outbox.qsize()} pending messages for {self.identity} on close")

        try:
            await self.transport.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Error closing transport for {self.identity}: {e}")


class ConnectionRegistry:
    """Maps verified user identities to their single live connection."""

    def __init__(self):
        self._by_identity: Dict[str, Connection] = {}
        self._by_id: Dict[str, Connection] = {}

    def __len__(self) -> int:
        return len(self._by_id)

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._by_id.values()))

    def register(self, identity: str, transport: Transport, now: float,
                 on_transport_error: Optional[TransportErrorCallback] = None) -> Connection:
        if identity in self._by_identity:
            raise DuplicateConnection(f"User {identity} already has an active connection", target=identity)
        connection = Connection(identity, transport, now, on_transport_error=on_transport_error)
        self._by_identity[identity] = connection
        self._by_id[connection.connection_id] = connection
        logger.info(f"Registered connection {connection.connection_id[:8]} for {identity} ({len(self._by_id)} live)")
        return connection

    async def unregister(self, connection_id: str, code: int = 1000, reason: str = "") -> Optional[Connection]:
        connection = self._by_id.pop(connection_id, None)
        if connection is None:
            return None
        if self._by_identity.get(connection.identity) is connection:
            del self._by_identity[connection.identity]
        logger.info(f"Unregistered connection {connection_id[:8]} for {connection.identity}: {reason or 'closed'}")
        await connection.close(code=code, reason=reason)
        return connection

    def lookup(self, identity: str) -> Optional[Connection]:
        return self._by_identity.get(identity)

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._by_id.get(connection_id)

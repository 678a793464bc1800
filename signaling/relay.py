from typing import Optional

from logging_config import get_logger
from schemas.signals import SignalMessage
from signaling.errors import NotInRoom, TargetNotFound
from signaling.registry import Connection, ConnectionRegistry
from signaling.rooms import RoomManager

logger = get_logger(__name__)


class SignalRelay:
    """Forwards signals between members of one room.

    Messages are enqueued on the target connections while the room lock is
    held. Each connection has exactly one sender task, so signals from one
    sender to one target keep their send order (an offer always reaches the
    peer before the ICE candidates sent after it).
    """

    def __init__(self, registry: ConnectionRegistry, rooms: RoomManager):
        self.registry = registry
        self.rooms = rooms

    async def relay(self, sender: Connection, message: SignalMessage, reason: Optional[str] = None) -> int:
        """Deliver ``message`` to its target, or to every other member when it has none.

        Returns the number of connections the message was queued on.
        """
        room_id = message.room_id or sender.room_id
        room = self.rooms.get(room_id)
        if room is None:
            raise NotInRoom(f"{sender.identity} is not in room {room_id}", room_id=room_id)

        async with room.lock:
            if room.closed or sender.identity not in room.participants:
                raise NotInRoom(f"{sender.identity} is not in room {room_id}", room_id=room_id)

            if message.to is not None:
                if message.to not in room.participants:
                    raise NotInRoom(f"{message.to} is not in room {room_id}", room_id=room_id, target=message.to)
                if message.to == sender.identity:
                    raise TargetNotFound("Cannot signal yourself", room_id=room_id, target=message.to)
                targets = [message.to]
            else:
                targets = [identity for identity in room.participants if identity != sender.identity]

            outbound = message.forwarded(sender.identity, room.room_id, reason=reason)
            delivered = 0
            for identity in targets:
                target = self.registry.lookup(identity)
                if target is not None and target.deliver(outbound):
                    delivered += 1
                elif message.to is not None:
                    raise TargetNotFound(f"{identity} is not connected", room_id=room_id, target=identity)

            if delivered == 0:
                raise TargetNotFound(f"No one else is connected in room {room_id}", room_id=room_id)

        logger.debug(f"Relayed {message.type.value} from {sender.identity} in room {room_id} to {delivered} peer(s)")
        return delivered

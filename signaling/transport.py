import json
from typing import Protocol

from fastapi import WebSocket


class Transport(Protocol):
    """Bidirectional message stream of one client, as seen by the coordinator."""

    async def send(self, message: dict) -> None:
        ...

    async def close(self, code: int = 1000, reason: str = "") -> None:
        ...


class WebSocketTransport:
    """Adapts a FastAPI WebSocket to the Transport protocol."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send(self, message: dict) -> None:
        await self.websocket.send_text(json.dumps(message))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self.websocket.close(code=code, reason=reason)


# WebSocket close codes
CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_POLICY_VIOLATION = 1008
CLOSE_INTERNAL_ERROR = 1011
# application range: superseded by a newer connection of the same user
CLOSE_REPLACED = 4001

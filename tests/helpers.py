import asyncio


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeTransport:
    """Records what the coordinator sends; ``fail`` makes the next send raise."""

    def __init__(self):
        self.sent = []
        self.closed = None
        self.fail = False

    async def send(self, message: dict) -> None:
        if self.fail:
            raise ConnectionResetError("connection reset by peer")
        self.sent.append(message)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = (code, reason)

    def types(self) -> list:
        return [message["type"] for message in self.sent]

    def of_type(self, message_type: str) -> list:
        return [message for message in self.sent if message["type"] == message_type]


async def settle():
    """Let the per-connection sender tasks drain their queues."""
    for _ in range(10):
        await asyncio.sleep(0)

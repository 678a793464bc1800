import fakeredis
import pytest

from backend import RedisBackend
from helpers import FakeClock, FakeTransport
from signaling.coordinator import SignalingCoordinator


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return RedisBackend(fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True))


@pytest.fixture
async def coordinator(clock, backend):
    coordinator = SignalingCoordinator(
        backend=backend,
        max_participants=2,
        idle_timeout=30,
        disconnect_timeout=120,
        room_timeout=60,
        clock=clock,
    )
    yield coordinator
    await coordinator.stop()


@pytest.fixture
def connect(coordinator):
    async def _connect(identity: str):
        transport = FakeTransport()
        connection = await coordinator.connect(identity, transport)
        return connection, transport
    return _connect

import pytest

from helpers import FakeTransport, settle
from signaling.errors import DuplicateConnection
from signaling.registry import ConnectionRegistry, ConnectionState


async def test_register_and_lookup():
    registry = ConnectionRegistry()
    connection = registry.register("alice", FakeTransport(), now=1.0)

    assert registry.lookup("alice") is connection
    assert registry.get(connection.connection_id) is connection
    assert len(registry) == 1
    assert connection.state is ConnectionState.ACTIVE


async def test_register_duplicate_identity():
    registry = ConnectionRegistry()
    first = registry.register("alice", FakeTransport(), now=1.0)
    with pytest.raises(DuplicateConnection):
        registry.register("alice", FakeTransport(), now=2.0)
    assert registry.lookup("alice") is first
    assert len(registry) == 1


async def test_unregister_releases_transport():
    registry = ConnectionRegistry()
    transport = FakeTransport()
    connection = registry.register("alice", transport, now=1.0)
    connection.start()

    removed = await registry.unregister(connection.connection_id, code=1001, reason="timeout")

    assert removed is connection
    assert registry.lookup("alice") is None
    assert len(registry) == 0
    assert transport.closed == (1001, "timeout")
    assert connection.state is ConnectionState.DISCONNECTED
    assert await registry.unregister(connection.connection_id) is None


async def test_messages_are_sent_in_delivery_order():
    registry = ConnectionRegistry()
    transport = FakeTransport()
    connection = registry.register("alice", transport, now=1.0)
    connection.start()

    for i in range(5):
        assert connection.deliver({"type": "ice-candidate", "payload": i})
    await settle()

    assert [message["payload"] for message in transport.sent] == [0, 1, 2, 3, 4]
    await registry.unregister(connection.connection_id)


async def test_close_flushes_queued_messages_then_refuses_more():
    registry = ConnectionRegistry()
    transport = FakeTransport()
    connection = registry.register("alice", transport, now=1.0)
    connection.start()
    connection.deliver({"type": "hangup"})

    await registry.unregister(connection.connection_id)

    assert transport.types() == ["hangup"]
    assert connection.deliver({"type": "offer"}) is False


async def test_send_failure_reports_transport_error():
    failures = []

    async def on_error(connection, error):
        failures.append((connection.identity, error.code))

    registry = ConnectionRegistry()
    transport = FakeTransport()
    transport.fail = True
    connection = registry.register("alice", transport, now=1.0, on_transport_error=on_error)
    connection.start()
    connection.deliver({"type": "offer"})
    await settle()

    assert failures == [("alice", "TransportError")]


async def test_touch_wakes_idle_connection():
    registry = ConnectionRegistry()
    connection = registry.register("alice", FakeTransport(), now=1.0)
    connection.state = ConnectionState.IDLE
    connection.touch(5.0)
    assert connection.state is ConnectionState.ACTIVE
    assert connection.last_activity == 5.0


async def test_failing_transport_error_handler_does_not_break_sender():
    async def on_error(connection, error):
        raise RuntimeError("handler blew up")

    registry = ConnectionRegistry()
    transport = FakeTransport()
    transport.fail = True
    connection = registry.register("alice", transport, now=1.0, on_transport_error=on_error)
    connection.start()
    connection.deliver({"type": "offer"})
    await settle()

    assert connection._sender.done()
    assert connection._sender.exception() is None

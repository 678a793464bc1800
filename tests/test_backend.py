import json

from backend import RedisBackend
from constants import REDIS_SOCKET_TIMEOUT_SECONDS


def test_call_record_round_trip(backend):
    backend.record_call_started("room1", {
        "room_id": "room1",
        "initiator": "alice",
        "callee": None,
        "created_at": "2026-01-01T10:00:00",
        "max_participants": 2,
    })

    call = backend.get_call("room1")
    assert call["initiator"] == "alice"
    assert call["max_participants"] == 2
    assert "callee" not in call
    assert backend.redis_client.ttl("call:meta:room1") > 0


def test_get_missing_call(backend):
    assert backend.get_call("nope") is None


def test_call_ended_appends_history_newest_first(backend):
    for i in range(3):
        backend.record_call_started(f"room{i}", {"initiator": "alice"})
        backend.record_call_ended(f"room{i}", {"room_id": f"room{i}", "end_reason": "hangup"}, ["alice", "bob"])

    history = backend.get_call_history("bob")
    assert [call["room_id"] for call in history] == ["room2", "room1", "room0"]
    assert backend.get_call("room2") is None


def test_history_is_trimmed(backend):
    for i in range(5):
        backend.record_call_ended(f"room{i}", {"room_id": f"room{i}"}, ["alice"], limit=3)
    assert backend.redis_client.llen("call:log:alice") == 3
    assert len(backend.get_call_history("alice", limit=2)) == 2


def test_malformed_history_entries_are_skipped(backend):
    backend.redis_client.lpush("call:log:alice", "{broken")
    backend.redis_client.lpush("call:log:alice", json.dumps({"room_id": "ok"}))
    assert backend.get_call_history("alice") == [{"room_id": "ok"}]


def test_publish_notification(backend):
    pubsub = backend.redis_client.pubsub()
    pubsub.subscribe("notifications:bob")
    pubsub.get_message(timeout=0.1)

    assert backend.publish_notification("bob", {"type": "incoming-call", "roomId": "room1"}) == 1
    message = pubsub.get_message(timeout=0.1)
    assert json.loads(message["data"]) == {"type": "incoming-call", "roomId": "room1"}


def test_ping(backend):
    assert backend.ping() is True


def test_default_client_has_socket_timeouts():
    backend = RedisBackend()
    connection_kwargs = backend.redis_client.connection_pool.connection_kwargs
    assert connection_kwargs["socket_connect_timeout"] == REDIS_SOCKET_TIMEOUT_SECONDS
    assert connection_kwargs["socket_timeout"] == REDIS_SOCKET_TIMEOUT_SECONDS

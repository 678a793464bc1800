import random

import pytest

from helpers import FakeClock
from signaling.errors import AlreadyInRoom, NotInRoom, RoomFull, RoomNotFound
from signaling.rooms import RoomManager


@pytest.fixture
def rooms():
    return RoomManager(max_participants=2, clock=FakeClock())


async def test_create_room_makes_initiator_first_participant(rooms):
    room_id = await rooms.create_room("alice")
    room = rooms.get(room_id)
    assert room.participants == ["alice"]
    assert room.initiator == "alice"
    assert rooms.room_of("alice") == room_id


async def test_create_room_rejects_initiator_already_in_a_room(rooms):
    room_id = await rooms.create_room("alice")
    with pytest.raises(AlreadyInRoom):
        await rooms.create_room("alice")
    assert len(rooms) == 1
    assert rooms.room_of("alice") == room_id


async def test_join_full_room_leaves_membership_unchanged(rooms):
    room_id = await rooms.create_room("alice")
    await rooms.join(room_id, "bob")

    with pytest.raises(RoomFull):
        await rooms.join(room_id, "carol")

    assert rooms.get(room_id).participants == ["alice", "bob"]
    assert rooms.room_of("carol") is None


async def test_join_unknown_room(rooms):
    with pytest.raises(RoomNotFound):
        await rooms.join("missing", "bob")
    assert rooms.room_of("bob") is None


async def test_join_same_room_twice_is_a_no_op(rooms):
    room_id = await rooms.create_room("alice")
    await rooms.join(room_id, "bob")
    room = await rooms.join(room_id, "bob")
    assert room.participants == ["alice", "bob"]


async def test_join_while_in_another_room(rooms):
    first = await rooms.create_room("alice")
    second = await rooms.create_room("bob")
    with pytest.raises(AlreadyInRoom):
        await rooms.join(second, "alice")
    assert rooms.room_of("alice") == first
    assert rooms.get(second).participants == ["bob"]


async def test_leaving_last_member_destroys_room(rooms):
    room_id = await rooms.create_room("alice")
    await rooms.join(room_id, "bob")

    departure = await rooms.leave(room_id, "alice")
    assert departure.remaining == ["bob"]
    assert not departure.dissolved
    assert rooms.get(room_id) is not None

    departure = await rooms.leave(room_id, "bob")
    assert departure.dissolved
    assert rooms.get(room_id) is None
    assert len(rooms) == 0


async def test_leave_twice_returns_not_in_room(rooms):
    room_id = await rooms.create_room("alice")
    await rooms.join(room_id, "bob")
    await rooms.leave(room_id, "bob")

    with pytest.raises(NotInRoom):
        await rooms.leave(room_id, "bob")
    assert rooms.get(room_id).participants == ["alice"]


async def test_leave_twice_after_room_destroyed(rooms):
    room_id = await rooms.create_room("alice")
    await rooms.leave(room_id, "alice")
    with pytest.raises(NotInRoom):
        await rooms.leave(room_id, "alice")


async def test_dissolve_below_evicts_remaining_members(rooms):
    room_id = await rooms.create_room("alice")
    await rooms.join(room_id, "bob")

    departure = await rooms.leave(room_id, "alice", dissolve_below=2)

    assert departure.dissolved
    assert departure.remaining == ["bob"]
    assert rooms.get(room_id) is None
    assert rooms.room_of("bob") is None


async def test_destroy(rooms):
    room_id = await rooms.create_room("alice")
    await rooms.join(room_id, "bob")

    assert await rooms.destroy(room_id) == ["alice", "bob"]
    assert rooms.room_of("alice") is None
    with pytest.raises(RoomNotFound):
        await rooms.destroy(room_id)
    with pytest.raises(RoomNotFound):
        await rooms.join(room_id, "carol")


async def test_group_room_capacity():
    rooms = RoomManager(max_participants=2, clock=FakeClock())
    room_id = await rooms.create_room("alice", max_participants=4)
    for identity in ("bob", "carol", "dave"):
        await rooms.join(room_id, identity)
    with pytest.raises(RoomFull):
        await rooms.join(room_id, "erin")
    assert len(rooms.get(room_id).participants) == 4


async def test_stale_rooms_only_counts_time_spent_alone():
    clock = FakeClock()
    rooms = RoomManager(max_participants=2, clock=clock)
    room_id = await rooms.create_room("alice")

    clock.advance(30)
    await rooms.join(room_id, "bob")
    clock.advance(100)
    assert rooms.stale_rooms(clock(), timeout=60) == []

    await rooms.leave(room_id, "bob")
    clock.advance(59)
    assert rooms.stale_rooms(clock(), timeout=60) == []
    clock.advance(1)
    assert rooms.stale_rooms(clock(), timeout=60) == [room_id]


async def test_random_join_leave_sequences_keep_invariants():
    rng = random.Random(7)
    users = [f"user{i}" for i in range(6)]
    rooms = RoomManager(max_participants=2, clock=FakeClock())

    for _ in range(500):
        identity = rng.choice(users)
        action = rng.choice(["create", "join", "leave"])
        try:
            if action == "create":
                await rooms.create_room(identity)
            elif action == "join" and len(rooms):
                await rooms.join(rng.choice(rooms.rooms()).room_id, identity)
            elif action == "leave":
                room_id = rooms.room_of(identity) or "missing"
                await rooms.leave(room_id, identity)
        except (AlreadyInRoom, NotInRoom, RoomFull, RoomNotFound):
            pass

        seen = set()
        for room in rooms.rooms():
            assert 0 < len(room.participants) <= room.max_participants
            for member in room.participants:
                assert member not in seen
                seen.add(member)
                assert rooms.room_of(member) == room.room_id
        assert set(seen) == {u for u in users if rooms.room_of(u) is not None}

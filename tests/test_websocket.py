from datetime import datetime

import pytest

import api.websocket as websocket
from core.sync_engine import RecordUpdated


class EmitRecorder:

    def __init__(self):
        self.calls = []

    async def __call__(self, event, data=None, to=None, **kwargs):
        self.calls.append((event, data, to))


@pytest.fixture
def socket_env(monkeypatch, sync_engine, registry):
    emit = EmitRecorder()
    monkeypatch.setattr(websocket, "sync_engine", sync_engine)
    monkeypatch.setattr(websocket, "registry", registry)
    monkeypatch.setattr(websocket.sio, "emit", emit)
    return emit


def update_message(members):
    return {
        "roomCode": "AB12CD",
        "bossId": "dragon",
        "bossName": "Dragon",
        "bossData": {"members": members},
    }


def test_serialize_record_event():
    event = RecordUpdated(
        room_code="AB12CD",
        record_id="dragon",
        label="Dragon",
        payload={"members": [{"name": "Alice"}]},
        updated_at=datetime(2026, 1, 1, 12, 0, 0)
    )

    assert websocket.serialize_record_event(event) == {
        "bossId": "dragon",
        "bossName": "Dragon",
        "data": {"members": [{"name": "Alice"}]},
        "updatedAt": "2026-01-01T12:00:00",
    }


@pytest.mark.asyncio
async def test_join_room_sends_current_state_to_joiner(socket_env, sync_engine, registry):
    await sync_engine.write("AB12CD", "dragon", "Dragon", {"members": [{"name": "Alice"}]})

    ack = await websocket.join_room("sid-1", "AB12CD")

    assert ack == {"success": True}
    assert registry.room_of("sid-1") == "AB12CD"
    event, data, to = socket_env.calls[0]
    assert event == "roomState"
    assert to == "sid-1"
    assert data["dragon"]["name"] == "Dragon"
    assert data["dragon"]["data"] == {"members": [{"name": "Alice"}]}
    assert "updatedAt" in data["dragon"]


@pytest.mark.asyncio
async def test_join_room_requires_a_code(socket_env, registry):
    ack = await websocket.join_room("sid-1", None)

    assert ack["success"] is False
    assert registry.room_of("sid-1") is None
    assert socket_env.calls == []


@pytest.mark.asyncio
async def test_update_boss_data_fans_out(socket_env, sync_engine, registry, broadcaster):
    await websocket.join_room("sid-1", "AB12CD")
    await websocket.join_room("sid-2", "AB12CD")

    ack = await websocket.update_boss_data("sid-1", update_message([{"name": "Alice"}]))
    await sync_engine.drain()

    assert ack["success"] is True
    assert len(broadcaster.updates_for("sid-1")) == 1
    assert len(broadcaster.updates_for("sid-2")) == 1


@pytest.mark.asyncio
async def test_invalid_update_is_reported_to_sender_only(socket_env, sync_engine, broadcaster):
    await websocket.join_room("sid-1", "AB12CD")
    await websocket.join_room("sid-2", "AB12CD")

    ack = await websocket.update_boss_data("sid-1", update_message([]))
    await sync_engine.drain()

    assert ack["success"] is False
    assert [failure[0] for failure in broadcaster.failures] == ["sid-1"]
    assert broadcaster.updates == []


@pytest.mark.asyncio
async def test_non_object_message_is_rejected(socket_env, broadcaster):
    ack = await websocket.update_boss_data("sid-1", "garbage")

    assert ack["success"] is False
    assert [failure[0] for failure in broadcaster.failures] == ["sid-1"]


@pytest.mark.asyncio
async def test_disconnect_stops_delivery(socket_env, sync_engine, broadcaster):
    await websocket.join_room("sid-1", "AB12CD")
    await websocket.join_room("sid-2", "AB12CD")

    await websocket.disconnect("sid-2")
    await websocket.update_boss_data("sid-1", update_message([{"name": "Alice"}]))
    await sync_engine.drain()

    assert len(broadcaster.updates_for("sid-1")) == 1
    assert broadcaster.updates_for("sid-2") == []


@pytest.mark.asyncio
async def test_leave_room(socket_env, registry):
    await websocket.join_room("sid-1", "AB12CD")

    ack = await websocket.leave_room("sid-1")

    assert ack == {"success": True}
    assert registry.members_of("AB12CD") == frozenset()


@pytest.mark.asyncio
async def test_socketio_broadcaster_emits_to_single_connection(monkeypatch):
    emit = EmitRecorder()
    monkeypatch.setattr(websocket.sio, "emit", emit)
    broadcaster = websocket.SocketIOBroadcaster(websocket.sio)
    event = RecordUpdated(
        room_code="AB12CD",
        record_id="dragon",
        label="Dragon",
        payload={"members": [{"name": "Alice"}]},
        updated_at=datetime(2026, 1, 1, 12, 0, 0)
    )

    await broadcaster.record_updated("sid-1", event)
    await broadcaster.write_failed("sid-2", "members: required", "dragon")

    assert emit.calls == [
        ("bossDataUpdated", websocket.serialize_record_event(event), "sid-1"),
        ("writeFailed", {"reason": "members: required", "bossId": "dragon"}, "sid-2"),
    ]

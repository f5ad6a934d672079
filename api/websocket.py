"""
Socket.IO push channel

事件（沿用前端既有的名稱）：
- joinRoom(roomCode)：加入房間，回傳 roomState 給加入者
- leaveRoom()：離開房間
- updateBossData({roomCode, bossId, bossName, bossData})：push 路徑寫入
- bossDataUpdated：廣播給房間內每個連線（包含寫入者）
- writeFailed：只送給寫入失敗的連線
"""
from typing import Any, Dict, Optional
import logging

import socketio

from core.exceptions import InvalidPayload, StoreFailure
from core.record_store import StoredRecord
from core.subscriptions import SubscriptionRegistry
from core.sync_engine import RecordUpdated, SyncEngine, WriteOrigin
from database import SessionLocal, get_settings
from schemas import BossDataEntry

logger = logging.getLogger(__name__)

_cors_origins = get_settings().cors_origins

sio = socketio.AsyncServer(
    async_mode='asgi',
    cors_allowed_origins='*' if '*' in _cors_origins else _cors_origins,
    logger=False,
    engineio_logger=False
)


def serialize_record_event(event: RecordUpdated) -> Dict[str, Any]:
    return {
        'bossId': event.record_id,
        'bossName': event.label,
        'data': event.payload,
        'updatedAt': event.updated_at.isoformat()
    }


def serialize_room_state(state: Dict[str, StoredRecord]) -> Dict[str, Any]:
    return {
        record_id: BossDataEntry(
            name=record.label,
            data=record.payload,
            updated_at=record.updated_at
        ).model_dump(mode="json", by_alias=True)
        for record_id, record in state.items()
    }


class SocketIOBroadcaster:
    """把 SyncEngine 的事件送到 Socket.IO 連線"""

    def __init__(self, server: socketio.AsyncServer):
        self.sio = server

    async def record_updated(self, connection_id: str, event: RecordUpdated) -> None:
        await self.sio.emit('bossDataUpdated', serialize_record_event(event), to=connection_id)

    async def write_failed(
        self, connection_id: str, reason: str, record_id: Optional[str] = None
    ) -> None:
        await self.sio.emit('writeFailed', {'reason': reason, 'bossId': record_id}, to=connection_id)


registry = SubscriptionRegistry()
sync_engine = SyncEngine(SessionLocal, registry, SocketIOBroadcaster(sio))


def get_sync_engine() -> SyncEngine:
    """FastAPI dependency：提供共用的 SyncEngine"""
    return sync_engine


@sio.event
async def connect(sid, environ):
    logger.info(f"Socket.IO client connected: {sid}")


@sio.event
async def disconnect(sid):
    room_code = registry.leave(sid)
    if room_code:
        logger.info(f"Socket.IO client disconnected: {sid} (left room {room_code})")
    else:
        logger.info(f"Socket.IO client disconnected: {sid}")


@sio.on('joinRoom')
async def join_room(sid, room_code):
    if not isinstance(room_code, str) or not room_code:
        logger.warning(f"Client {sid} sent joinRoom without a room code")
        return {'success': False, 'error': 'roomCode is required'}

    registry.join(sid, room_code)
    logger.info(f"User {sid} joined room {room_code}")

    try:
        state = await sync_engine.load_room_state(room_code)
    except StoreFailure as e:
        logger.error(f"Could not load state of room {room_code} for {sid}: {e}")
        return {'success': True}

    await sio.emit('roomState', serialize_room_state(state), to=sid)
    return {'success': True}


@sio.on('leaveRoom')
async def leave_room(sid):
    room_code = registry.leave(sid)
    if room_code:
        logger.info(f"User {sid} left room {room_code}")
    return {'success': True}


@sio.on('updateBossData')
async def update_boss_data(sid, data):
    if not isinstance(data, dict):
        data = {}

    try:
        event = await sync_engine.write(
            data.get('roomCode'),
            data.get('bossId'),
            data.get('bossName'),
            data.get('bossData'),
            origin=WriteOrigin.PUSH,
            connection_id=sid
        )
    except (InvalidPayload, StoreFailure) as e:
        # writeFailed 已經由 SyncEngine 送回給這個連線
        return {'success': False, 'error': str(e)}

    return {'success': True, 'updatedAt': event.updated_at.isoformat()}

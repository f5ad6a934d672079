"""
Room API Endpoints

職責：
1. 建立房間 / 查詢房間
2. HTTP 路徑寫入 boss data（與 push 路徑走同一個 SyncEngine）
3. 讀取房間內所有 boss data 的目前值
"""
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from api.websocket import get_sync_engine
from database import get_db
from schemas import (
    RoomCreate,
    RoomCreatedResponse,
    RoomResponse,
    BossDataWrite,
    BossDataWriteResponse,
    BossDataEntry
)
from core.room_manager import RoomManager
from core.sync_engine import SyncEngine, WriteOrigin
from core.exceptions import InvalidPayload, RoomNotFound, StoreFailure

router = APIRouter(prefix="/api/rooms", tags=["rooms"])
logger = logging.getLogger(__name__)


@router.post("", response_model=RoomCreatedResponse)
def create_room(room_data: RoomCreate, db: Session = Depends(get_db)):
    """
    建立房間

    返回：
        - code: 6 位英數字房間代碼
        - name: 房間名稱
        - id: 房間 ID
    """
    try:
        room = RoomManager.create_room(db, room_data.name)
        return RoomCreatedResponse(code=room.code, name=room.name, id=room.id)

    except StoreFailure as e:
        logger.error(f"Failed to create room: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to create room: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{code}", response_model=RoomResponse)
def get_room(code: str, db: Session = Depends(get_db)):
    try:
        return RoomManager.get_room_by_code(db, code)

    except RoomNotFound:
        raise HTTPException(status_code=404, detail="Room not found")
    except StoreFailure as e:
        logger.error(f"Failed to get room {code}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to get room {code}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{code}/boss-data", response_model=BossDataWriteResponse)
async def save_boss_data(
    code: str,
    body: BossDataWrite,
    engine: SyncEngine = Depends(get_sync_engine)
):
    """
    寫入 boss data（HTTP 路徑）

    寫入成功後 SyncEngine 會廣播 bossDataUpdated 給房間內所有連線；
    驗證或寫入失敗則不會廣播。
    """
    try:
        event = await engine.write(
            code, body.boss_id, body.boss_name, body.data, origin=WriteOrigin.REQUEST
        )
    except InvalidPayload as e:
        raise HTTPException(status_code=422, detail=str(e))
    except StoreFailure as e:
        logger.error(f"Failed to save boss data in room {code}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to save boss data in room {code}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")

    return BossDataWriteResponse(success=True, updated_at=event.updated_at)


@router.get("/{code}/boss-data", response_model=Dict[str, BossDataEntry])
def get_boss_data(
    code: str,
    db: Session = Depends(get_db),
    engine: SyncEngine = Depends(get_sync_engine)
):
    """
    取得房間內所有 boss data（每個 bossId 只回傳最新值）

    返回：
        {bossId: {name, data, updatedAt}}
    """
    try:
        state = engine.read_all(db, code)
    except StoreFailure as e:
        logger.error(f"Failed to read boss data in room {code}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to read boss data in room {code}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")

    return {
        record_id: BossDataEntry(
            name=record.label,
            data=record.payload,
            updated_at=record.updated_at
        )
        for record_id, record in state.items()
    }

"""
Room Manager：房間代碼的建立與查詢

職責：
1. 建立 Room（生成唯一代碼，碰撞時重試，有上限）
2. 透過代碼查詢 Room

房間建立後不會在這裡被刪除或修改。
"""
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from typing import Optional
import logging

from models import Room
from core.exceptions import RoomNotFound, StoreFailure
from services.naming_service import generate_room_code
from database import get_settings, transactional

logger = logging.getLogger(__name__)


class RoomManager:
    """Room 生命週期管理器"""

    @staticmethod
    def create_room(
        db: Session,
        name: Optional[str] = None,
        code_length: Optional[int] = None,
        max_attempts: Optional[int] = None
    ) -> Room:
        """
        建立新房間

        流程：
        1. 生成房間代碼
        2. 檢查唯一性，碰撞就重新生成
        3. 寫入 Room（insert 時的 unique 衝突也視為碰撞）

        參數：
            db: SQLAlchemy Session
            name: 房間顯示名稱
            code_length: 代碼長度（預設讀 Settings）
            max_attempts: 最多嘗試次數（預設讀 Settings）

        返回：
            新建立的 Room

        異常：
            StoreFailure: 重試次數用盡，或資料庫無法寫入
        """
        settings = get_settings()
        code_length = code_length or settings.room_code_length
        max_attempts = max_attempts or settings.room_code_max_attempts

        for attempt in range(1, max_attempts + 1):
            code = generate_room_code(code_length)
            try:
                if db.query(Room).filter(Room.code == code).first():
                    logger.warning(
                        f"Room code collision detected ({attempt}/{max_attempts}): {code}"
                    )
                    continue

                room = RoomManager._insert_room(db, code, name)
            except IntegrityError:
                # 另一個請求在檢查與寫入之間搶先用了同一個代碼
                logger.warning(
                    f"Room code {code} taken concurrently ({attempt}/{max_attempts})"
                )
                continue
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreFailure(f"Could not create room: {e}") from e

            logger.info(f"Created room {room.id} with code {code}")
            return room

        raise StoreFailure(
            f"Could not allocate a unique room code after {max_attempts} attempts"
        )

    @staticmethod
    @transactional
    def _insert_room(db: Session, code: str, name: Optional[str]) -> Room:
        room = Room(code=code, name=name)
        db.add(room)
        db.flush()
        return room

    @staticmethod
    def find_room_by_code(db: Session, code: str) -> Optional[Room]:
        """
        透過房間代碼查詢 Room（大小寫敏感，完全比對）

        返回：
            Room，找不到時返回 None（不是錯誤）
        """
        try:
            return db.query(Room).filter(Room.code == code).first()
        except SQLAlchemyError as e:
            raise StoreFailure(f"Could not read room {code}: {e}") from e

    @staticmethod
    def get_room_by_code(db: Session, code: str) -> Room:
        """
        透過房間代碼取得 Room

        異常：
            RoomNotFound: Room 不存在
        """
        room = RoomManager.find_room_by_code(db, code)
        if not room:
            raise RoomNotFound(code)
        return room

"""
Record Store：記錄的持久化

寫入採 append-only：每次寫入都新增一筆 RecordVersion。
讀取時每個 (room_code, record_id) 只回傳「目前值」：
    updated_at 最大的那一筆；updated_at 相同時取 id 較大者（先寫先輸）

所有讀者使用同一個排序規則，所以相同時間戳的寫入也會收斂到同一個值。
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
import json
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import RecordVersion
from core.exceptions import CorruptRecord, InvalidPayload
from database import transactional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredRecord:
    record_id: str
    label: str
    payload: Dict[str, Any]
    updated_at: datetime


def _encode_payload(payload: Dict[str, Any]) -> str:
    try:
        return json.dumps(payload, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise InvalidPayload(f"Payload is not JSON serializable: {e}") from e


def _decode_row(row: RecordVersion) -> StoredRecord:
    try:
        payload = json.loads(row.payload)
    except (TypeError, ValueError) as e:
        raise CorruptRecord(row.room_code, row.record_id, e) from e

    if not isinstance(payload, dict):
        raise CorruptRecord(
            row.room_code, row.record_id, f"expected an object, got {type(payload).__name__}"
        )

    return StoredRecord(
        record_id=row.record_id,
        label=row.label,
        payload=payload,
        updated_at=row.updated_at
    )


class RecordStore:
    """(room_code, record_id) -> (label, payload, updated_at) 的儲存介面"""

    @staticmethod
    @transactional
    def upsert(
        db: Session,
        room_code: str,
        record_id: str,
        label: str,
        payload: Dict[str, Any],
        timestamp: datetime
    ) -> RecordVersion:
        """
        寫入一筆記錄

        之後的 latest() 會回傳這個值，除非之後又有 timestamp >= 這筆的寫入。
        不同 record_id 的寫入互不影響（各自新增一筆，不覆寫別人的資料）。

        參數：
            db: SQLAlchemy Session
            room_code: 房間代碼（partition key）
            record_id: 記錄 ID
            label: 顯示名稱
            payload: 已驗證過的 payload
            timestamp: 伺服器指定的寫入時間

        異常：
            InvalidPayload: payload 無法序列化
            SQLAlchemyError: 資料庫錯誤（已 rollback，由呼叫者轉成 StoreFailure）
        """
        version = RecordVersion(
            room_code=room_code,
            record_id=record_id,
            label=label,
            payload=_encode_payload(payload),
            updated_at=timestamp
        )
        db.add(version)
        db.flush()
        return version

    @staticmethod
    def latest(db: Session, room_code: str, record_id: str) -> Optional[StoredRecord]:
        """
        取得單一記錄的目前值

        返回：
            StoredRecord；沒有寫入過或目前值已損毀時返回 None
        """
        row = (
            db.query(RecordVersion)
            .filter(
                RecordVersion.room_code == room_code,
                RecordVersion.record_id == record_id
            )
            .order_by(RecordVersion.updated_at.desc(), RecordVersion.id.desc())
            .first()
        )
        if row is None:
            return None

        try:
            return _decode_row(row)
        except CorruptRecord as e:
            logger.warning(f"Skipping corrupt record: {e}")
            return None

    @staticmethod
    def latest_all(db: Session, room_code: str) -> List[StoredRecord]:
        """
        取得房間內每個 record_id 的目前值（每個 record_id 恰好一筆）

        目前值無法反序列化的 record_id 會被跳過並記錄 warning，
        不會退回較舊的版本，也不會讓整個讀取失敗。
        """
        ranked = (
            db.query(
                RecordVersion.id.label("id"),
                func.row_number().over(
                    partition_by=RecordVersion.record_id,
                    order_by=(RecordVersion.updated_at.desc(), RecordVersion.id.desc())
                ).label("version_rank")
            )
            .filter(RecordVersion.room_code == room_code)
            .subquery()
        )

        rows = (
            db.query(RecordVersion)
            .join(ranked, RecordVersion.id == ranked.c.id)
            .filter(ranked.c.version_rank == 1)
            .order_by(RecordVersion.record_id)
            .all()
        )

        records: List[StoredRecord] = []
        for row in rows:
            try:
                records.append(_decode_row(row))
            except CorruptRecord as e:
                logger.warning(f"Skipping corrupt record: {e}")

        return records

"""
Sync Engine：房間內記錄的 latest-write-wins 同步

職責：
1. 驗證寫入（HTTP 與 push 兩條路徑使用同一套規則）
2. 指定伺服器時間戳（不信任呼叫端的時間）
3. 透過 RecordStore 持久化
4. 持久化成功後廣播給房間內所有連線（包含寫入者本身）

收斂規則：
- 每個 (room_code, record_id) 各自獨立，以伺服器時間戳較大者為準
- 因為規則本身與到達順序無關，同一個 key 的並發寫入不需要 lock
- 持久化完成的順序不一定等於時間戳順序：每個 key 記錄已廣播的最新版本
  (updated_at, row id)，較舊的寫入仍會儲存，但不會再廣播

廣播是 best-effort：
- 每個連線一個 delivery task，write() 不等待送達
- 送出前再確認一次連線仍在房間內（斷線只會讓目標變少，不會報錯）
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol, Set, Tuple, Type
import asyncio
import logging
import threading

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from fastapi.concurrency import run_in_threadpool

from core.exceptions import InvalidPayload, StoreFailure
from core.record_store import RecordStore, StoredRecord
from core.subscriptions import SubscriptionRegistry
from schemas import RewardPayload

logger = logging.getLogger(__name__)


class WriteOrigin(str, Enum):
    REQUEST = "request"
    PUSH = "push"


@dataclass(frozen=True)
class RecordUpdated:
    """廣播給房間成員的事件"""
    room_code: str
    record_id: str
    label: str
    payload: Dict[str, Any]
    updated_at: datetime


class Broadcaster(Protocol):
    """Transport 層負責把事件送到實際的連線"""

    async def record_updated(self, connection_id: str, event: RecordUpdated) -> None:
        ...

    async def write_failed(
        self, connection_id: str, reason: str, record_id: Optional[str] = None
    ) -> None:
        ...


def utcnow() -> datetime:
    """伺服器時鐘（naive UTC，與資料庫欄位一致）"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _describe_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'payload'}: {err['msg']}"
        for err in error.errors()
    )


class SyncEngine:

    def __init__(
        self,
        session_factory: Callable[[], Session],
        registry: SubscriptionRegistry,
        broadcaster: Broadcaster,
        clock: Callable[[], datetime] = utcnow,
        payload_model: Type[BaseModel] = RewardPayload
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._broadcaster = broadcaster
        self._clock = clock
        self._payload_model = payload_model
        self._pending: Set[asyncio.Task] = set()
        self._high_water: Dict[Tuple[str, str], Tuple[datetime, int]] = {}
        self._high_water_lock = threading.Lock()

    # ---------- 寫入 ----------

    async def write(
        self,
        room_code: str,
        record_id: str,
        label: str,
        payload: Any,
        origin: WriteOrigin = WriteOrigin.REQUEST,
        connection_id: Optional[str] = None
    ) -> RecordUpdated:
        """
        寫入一筆記錄並廣播

        流程：
        1. 驗證 room_code / record_id / label 與 payload 結構
        2. 指定 updated_at = 伺服器時間
        3. 持久化（worker thread，獨立 transaction）
        4. 排程廣播給房間內所有連線（不等待送達）

        參數：
            origin: 寫入來源（request / push）
            connection_id: push 路徑的來源連線，失敗時只通知這個連線

        返回：
            RecordUpdated 事件

        異常：
            InvalidPayload: 驗證失敗（不會廣播）
            StoreFailure: 資料庫寫入失敗（不會廣播）
        """
        try:
            clean_record_id, clean_label = self._validate(room_code, record_id, label, payload)
            updated_at = self._clock()
            version_id = await run_in_threadpool(
                self._persist, room_code, clean_record_id, clean_label, payload, updated_at
            )
        except (InvalidPayload, StoreFailure) as e:
            logger.warning(
                f"Rejected {origin.value} write to {record_id!r} in room {room_code!r}: {e}"
            )
            if origin == WriteOrigin.PUSH and connection_id:
                await self._notify_failure(
                    connection_id, str(e), record_id if isinstance(record_id, str) else None
                )
            raise

        event = RecordUpdated(
            room_code=room_code,
            record_id=clean_record_id,
            label=clean_label,
            payload=payload,
            updated_at=updated_at
        )
        if self._advance_high_water(event, version_id):
            self._fan_out(event, version_id)
        else:
            logger.info(
                f"Record {event.record_id} in room {event.room_code} stamped "
                f"{event.updated_at.isoformat()} was superseded before fan-out, not broadcasting"
            )
        return event

    def _validate(self, room_code: Any, record_id: Any, label: Any, payload: Any):
        for field, value in (("room_code", room_code), ("record_id", record_id), ("label", label)):
            if not isinstance(value, str) or not value.strip():
                raise InvalidPayload(f"{field} must be a non-empty string")

        if not isinstance(payload, dict):
            raise InvalidPayload("payload must be an object")

        try:
            self._payload_model.model_validate(payload)
        except ValidationError as e:
            raise InvalidPayload(_describe_validation_error(e)) from e

        return record_id.strip(), label.strip()

    def _persist(
        self,
        room_code: str,
        record_id: str,
        label: str,
        payload: Dict[str, Any],
        updated_at: datetime
    ) -> int:
        db = self._session_factory()
        try:
            version = RecordStore.upsert(db, room_code, record_id, label, payload, updated_at)
            return version.id
        except SQLAlchemyError as e:
            raise StoreFailure(f"Could not persist record {record_id}: {e}") from e
        finally:
            db.close()

    async def _notify_failure(self, connection_id: str, reason: str, record_id: Optional[str]) -> None:
        try:
            await self._broadcaster.write_failed(connection_id, reason, record_id)
        except Exception as e:
            logger.warning(f"Could not notify {connection_id} of failed write: {e}")

    # ---------- 廣播 ----------

    def _advance_high_water(self, event: RecordUpdated, version_id: int) -> bool:
        """記錄這個 key 已廣播的最新版本；event 已不是目前值時返回 False"""
        key = (event.room_code, event.record_id)
        version = (event.updated_at, version_id)
        with self._high_water_lock:
            current = self._high_water.get(key)
            if current is not None and current > version:
                return False
            self._high_water[key] = version
            return True

    def _is_current(self, event: RecordUpdated, version_id: int) -> bool:
        with self._high_water_lock:
            current = self._high_water.get((event.room_code, event.record_id))
        return current is None or current <= (event.updated_at, version_id)

    def _fan_out(self, event: RecordUpdated, version_id: int) -> None:
        members = self._registry.members_of(event.room_code)
        logger.info(
            f"Record {event.record_id} in room {event.room_code} accepted at "
            f"{event.updated_at.isoformat()}, fanning out to {len(members)} connection(s)"
        )
        for connection_id in members:
            task = asyncio.create_task(self._deliver(connection_id, event, version_id))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, connection_id: str, event: RecordUpdated, version_id: int) -> None:
        if self._registry.room_of(connection_id) != event.room_code:
            logger.debug(f"Connection {connection_id} left room {event.room_code}, skipping delivery")
            return
        if not self._is_current(event, version_id):
            logger.debug(f"Record {event.record_id} superseded, skipping delivery to {connection_id}")
            return
        try:
            await self._broadcaster.record_updated(connection_id, event)
        except Exception as e:
            logger.warning(
                f"Failed to deliver {event.record_id} to {connection_id} "
                f"in room {event.room_code}: {e}"
            )

    async def drain(self) -> None:
        """等待所有進行中的廣播完成"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ---------- 讀取 ----------

    def read_all(self, db: Session, room_code: str) -> Dict[str, StoredRecord]:
        """
        取得房間的完整狀態（給晚加入的連線使用）

        返回：
            {record_id: StoredRecord}，每個 record_id 只有目前值
        """
        try:
            records = RecordStore.latest_all(db, room_code)
        except SQLAlchemyError as e:
            raise StoreFailure(f"Could not read records for room {room_code}: {e}") from e
        return {record.record_id: record for record in records}

    async def load_room_state(self, room_code: str) -> Dict[str, StoredRecord]:
        """read_all 的 async 版本，自行開關 session"""
        def _load():
            db = self._session_factory()
            try:
                return self.read_all(db, room_code)
            finally:
                db.close()

        return await run_in_threadpool(_load)

"""
Pydantic schemas

- Request / Response：HTTP 介面（欄位名稱沿用前端的 camelCase）
- RewardPayload：記錄 payload 的結構約定，由 SyncEngine 在寫入前統一檢查
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============ Room ============

class RoomCreate(BaseModel):
    name: Optional[str] = None


class RoomCreatedResponse(BaseModel):
    code: str
    name: Optional[str]
    id: int


class RoomResponse(BaseModel):
    id: int
    code: str
    name: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============ Record payload contract ============

class Member(BaseModel):
    """分配名單中的一位成員；除了 name 以外的欄位原樣保留"""
    name: str = Field(min_length=1)

    model_config = ConfigDict(extra="allow")


class RewardPayload(BaseModel):
    """
    Boss 獎勵分配記錄的 payload

    唯一的結構要求：members 必須是非空的 list。
    其他欄位不檢查，原樣儲存與廣播。
    """
    members: List[Member] = Field(min_length=1)

    model_config = ConfigDict(extra="allow")


# ============ Boss data（HTTP 寫入 / 讀取） ============

class BossDataWrite(BaseModel):
    boss_id: str = Field(alias="bossId")
    boss_name: str = Field(alias="bossName")
    data: Any = None

    model_config = ConfigDict(populate_by_name=True)


class BossDataWriteResponse(BaseModel):
    success: bool
    updated_at: datetime = Field(serialization_alias="updatedAt")


class BossDataEntry(BaseModel):
    name: str
    data: Dict[str, Any]
    updated_at: datetime = Field(serialization_alias="updatedAt")

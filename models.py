"""
資料模型

- Room：房間（code 唯一，建立後不可變）
- RecordVersion：記錄的每一次寫入（append-only），
  讀取時每個 (room_code, record_id) 只取 updated_at 最大的那一筆
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, Index
from sqlalchemy.sql import func

from database import Base


class Room(Base):
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(16), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)


class RecordVersion(Base):
    __tablename__ = "record_versions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # room_code 是唯一的 partition key，不對 rooms 做外鍵檢查
    room_code = Column(String(16), nullable=False)
    record_id = Column(String(200), nullable=False)
    label = Column(String(200), nullable=False)
    payload = Column(Text, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_record_versions_lookup", "room_code", "record_id", "updated_at"),
    )

"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理
"""


class BossTrackerException(Exception):
    """所有同步異常的基類"""
    pass


# ============ Room 相關異常 ============

class RoomNotFound(BossTrackerException):
    """房間不存在"""
    def __init__(self, code):
        self.code = code
        super().__init__(f"Room {code} not found")


# ============ 寫入相關異常 ============

class InvalidPayload(BossTrackerException):
    """寫入內容不符合結構約定（呼叫端錯誤，不重試）"""
    pass


class StoreFailure(BossTrackerException):
    """資料庫無法寫入或讀取（不會部分套用，也不會廣播）"""
    pass


# ============ 讀取相關異常 ============

class CorruptRecord(BossTrackerException):
    """已儲存的記錄無法反序列化（讀取時跳過，只記錄 warning）"""
    def __init__(self, room_code, record_id, reason):
        self.room_code = room_code
        self.record_id = record_id
        super().__init__(
            f"Corrupt record {record_id} in room {room_code}: {reason}"
        )

"""
命名服務：生成 Room Code

純計算邏輯，不涉及資料庫
"""
import random
import string

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_room_code(length: int = 6) -> str:
    """
    生成隨機的大寫英數字房間代碼

    範例：AB12CD, X9Z0QW

    注意：
    - 不檢查唯一性（由呼叫者負責）
    - 預設長度 6：36^6 ≈ 2.2 × 10^9 種可能，碰撞機率極低
    """
    if length < 6:
        raise ValueError(f"Room code length must be at least 6, got {length}")
    return ''.join(random.choices(ROOM_CODE_ALPHABET, k=length))

"""
Subscription Registry：連線 <-> 房間 的對應表

- 每個連線同時最多屬於一個房間，join 另一個房間會取代原本的 membership
- 只存在記憶體中，不持久化
- 以 threading.Lock 保護：sync endpoint 會在 worker thread 中執行
"""
from typing import Dict, FrozenSet, Optional, Set
import logging
import threading

logger = logging.getLogger(__name__)


class SubscriptionRegistry:

    def __init__(self) -> None:
        self._room_by_connection: Dict[str, str] = {}
        self._members_by_room: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def join(self, connection_id: str, room_code: str) -> Optional[str]:
        """
        讓連線加入房間

        重複加入同一個房間不做任何事；加入不同房間會先離開原本的房間。

        返回：
            原本所在的房間代碼（沒有則為 None）
        """
        with self._lock:
            previous = self._room_by_connection.get(connection_id)
            if previous == room_code:
                return previous
            if previous is not None:
                self._discard(connection_id, previous)

            self._room_by_connection[connection_id] = room_code
            self._members_by_room.setdefault(room_code, set()).add(connection_id)

        if previous is not None:
            logger.info(f"Connection {connection_id} moved from room {previous} to {room_code}")
        return previous

    def leave(self, connection_id: str) -> Optional[str]:
        """離開目前的房間（斷線時也會呼叫）。返回離開的房間代碼"""
        with self._lock:
            room_code = self._room_by_connection.pop(connection_id, None)
            if room_code is not None:
                self._discard(connection_id, room_code)
        return room_code

    def members_of(self, room_code: str) -> FrozenSet[str]:
        """房間目前成員的快照"""
        with self._lock:
            return frozenset(self._members_by_room.get(room_code, ()))

    def room_of(self, connection_id: str) -> Optional[str]:
        with self._lock:
            return self._room_by_connection.get(connection_id)

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._room_by_connection)

    def _discard(self, connection_id: str, room_code: str) -> None:
        # 呼叫者必須持有 self._lock
        members = self._members_by_room.get(room_code)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._members_by_room[room_code]

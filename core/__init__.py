"""
核心業務邏輯層

這個 package 包含房間內記錄同步的核心：
- RoomManager：房間代碼的建立與查詢
- RecordStore：記錄的寫入與「每個 key 最新值」讀取
- SubscriptionRegistry：連線與房間的對應
- SyncEngine：latest-write-wins 寫入與廣播
"""

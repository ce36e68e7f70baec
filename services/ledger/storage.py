"""
活躍度帳本儲存介面

兩種儲存策略實作同一組介面，於建立服務時選定：
- memory：行程內計數表（memory_store.InMemoryActivityStore）
- sqlite：訊息事件日誌，以 SQL 聚合計算統計（sqlite_store.SQLiteActivityStore）
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from .models import ExportSnapshot, GroupDistribution


class ActivityStore(ABC):
    """
    活躍度儲存介面

    所有查詢在群組沒有任何紀錄時返回 None，不會返回 0
    """

    backend: str = "abstract"

    async def open(self) -> None:
        """開啟儲存資源（建立資料表等）"""

    async def close(self) -> None:
        """釋放儲存資源"""

    @abstractmethod
    async def record(self, group_id: int, participant: str, observed_at: datetime) -> None:
        """記錄一則訊息，對同一 (群組, 參與者) 的併發呼叫不會遺失更新"""

    @abstractmethod
    async def total(self, group_id: int) -> Optional[int]:
        """群組總訊息數"""

    @abstractmethod
    async def distribution(self, group_id: int) -> Optional[GroupDistribution]:
        """排序後的群組百分比分布"""

    @abstractmethod
    async def export(self, group_id: int) -> Optional[ExportSnapshot]:
        """群組 (參與者, 訊息數) 的快照"""

    async def group_count(self) -> Optional[int]:
        """已有紀錄的群組數量，不支援時返回 None"""
        return None


def create_activity_store(backend: str = "memory", **options: Any) -> ActivityStore:
    """
    依設定建立儲存後端

    參數：
        backend: "memory" 或 "sqlite"
        **options: sqlite 後端可用 db_path、pool_size、busy_timeout_ms、timeout

    返回：
        儲存後端實例
    """
    backend = (backend or "memory").strip().lower()

    if backend == "memory":
        from .memory_store import InMemoryActivityStore
        return InMemoryActivityStore()

    if backend == "sqlite":
        from core.database_manager import DatabaseManager
        from .sqlite_store import SQLiteActivityStore

        db_manager = DatabaseManager(
            db_path=options.get('db_path'),
            pool_size=options.get('pool_size', 5),
            busy_timeout_ms=options.get('busy_timeout_ms', 30000),
            name="LedgerDatabase"
        )
        return SQLiteActivityStore(db_manager, timeout=options.get('timeout'))

    raise ValueError(f"不支援的帳本後端：{backend}")

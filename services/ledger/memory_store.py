"""
行程內活躍度計數表

整張巢狀計數表（群組 -> 參與者 -> 訊息數）由單一互斥鎖保護。
鎖內的操作都是 O(1) 或單一群組的複製，且不會 await，
因此同時適用於多執行緒與協程
"""

import logging
import threading
from datetime import datetime
from typing import Dict, Optional

from .aggregation import build_distribution, ranking_key
from .models import ExportSnapshot, GroupDistribution
from .storage import ActivityStore

logger = logging.getLogger('services.ledger.memory_store')


class MessageCountTable:
    """執行緒安全的巢狀訊息計數表"""

    def __init__(self):
        self._groups: Dict[int, Dict[str, int]] = {}
        self._lock = threading.Lock()

    def increment(self, group_id: int, participant: str) -> int:
        """
        訊息數加一，第一次出現時建立為 1

        返回：
            更新後的訊息數
        """
        with self._lock:
            group = self._groups.setdefault(group_id, {})
            count = group.get(participant, 0) + 1
            group[participant] = count
            return count

    def total(self, group_id: int) -> Optional[int]:
        """群組總訊息數，群組不存在時返回 None"""
        with self._lock:
            group = self._groups.get(group_id)
            if group is None:
                return None
            return sum(group.values())

    def counts(self, group_id: int) -> Optional[Dict[str, int]]:
        """群組計數的複本，群組不存在時返回 None"""
        with self._lock:
            group = self._groups.get(group_id)
            if group is None:
                return None
            return dict(group)

    def group_count(self) -> int:
        with self._lock:
            return len(self._groups)


class InMemoryActivityStore(ActivityStore):
    """行程內儲存後端，重啟後資料歸零"""

    backend = "memory"

    def __init__(self, table: Optional[MessageCountTable] = None):
        self.table = table or MessageCountTable()

    async def record(self, group_id: int, participant: str, observed_at: datetime) -> None:
        count = self.table.increment(group_id, participant)
        logger.debug(f"記錄訊息：群組 {group_id} 的 {participant}，累計 {count} 則")

    async def total(self, group_id: int) -> Optional[int]:
        return self.table.total(group_id)

    async def distribution(self, group_id: int) -> Optional[GroupDistribution]:
        return build_distribution(group_id, self.table.counts(group_id))

    async def export(self, group_id: int) -> Optional[ExportSnapshot]:
        counts = self.table.counts(group_id)
        if not counts:
            return None
        rows = sorted(counts.items(), key=lambda item: ranking_key(item[0], float(item[1])))
        return ExportSnapshot(group_id, rows)

    async def group_count(self) -> Optional[int]:
        return self.table.group_count()

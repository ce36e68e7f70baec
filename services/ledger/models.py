"""
活躍度帳本資料模型

定義帳本查詢結果使用的資料模型
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, NamedTuple, Optional, Tuple


class ExportRow(NamedTuple):
    """匯出列：參與者與訊息數"""
    participant: str
    message_count: int


@dataclass(frozen=True)
class ShareEntry:
    """排行榜項目"""
    participant: str
    message_count: int
    share: float  # 佔群組總訊息數的百分比，未四捨五入


@dataclass(frozen=True)
class GroupDistribution:
    """
    群組活躍度分布快照

    entries 已依 share 由大到小排序，同分時依參與者名稱由小到大
    """
    group_id: int
    total_messages: int
    entries: Tuple[ShareEntry, ...]

    def as_percent_map(self) -> Dict[str, float]:
        """轉換為 參與者 -> 百分比 的字典"""
        return {entry.participant: entry.share for entry in self.entries}

    def as_ranked_pairs(self) -> List[Tuple[str, float]]:
        """轉換為排序後的 (參與者, 百分比) 列表"""
        return [(entry.participant, entry.share) for entry in self.entries]

    def share_of(self, participant: str) -> Optional[float]:
        """查詢單一參與者的百分比，沒有紀錄時返回 None"""
        for entry in self.entries:
            if entry.participant == participant:
                return entry.share
        return None


class ExportSnapshot:
    """
    匯出快照

    建立時即固定內容，之後的新訊息不會出現在快照中。
    可重複迭代，每次都從頭開始
    """

    def __init__(self, group_id: int, rows: Iterable[Tuple[str, int]], taken_at: Optional[datetime] = None):
        self.group_id = group_id
        self._rows: Tuple[ExportRow, ...] = tuple(ExportRow(p, int(c)) for p, c in rows)
        self.taken_at = taken_at or datetime.now(timezone.utc)

    def __iter__(self) -> Iterator[ExportRow]:
        for row in self._rows:
            yield row

    def __len__(self) -> int:
        return len(self._rows)

    def __bool__(self) -> bool:
        return bool(self._rows)

    @property
    def total_messages(self) -> int:
        return sum(row.message_count for row in self._rows)

    def __repr__(self) -> str:
        return f"<ExportSnapshot(group_id={self.group_id}, rows={len(self._rows)})>"

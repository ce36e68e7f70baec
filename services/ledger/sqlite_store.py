"""
SQLite 訊息事件日誌

每則訊息寫入一列 (group_id, participant, observed_at)，只新增不修改。
統計在查詢時以聚合與視窗函數計算，不需要行程內的鎖：
每次寫入使用獨立連線與 BEGIN IMMEDIATE 交易，由 SQLite 序列化併發寫入
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Optional, TypeVar

from core.database_manager import DatabaseManager
from core.exceptions import LedgerTimeoutError, ServiceInitializationError
from core.retry import CommonRetryStrategies, retry_on_database_locked

from .models import ExportSnapshot, GroupDistribution, ShareEntry
from .storage import ActivityStore

logger = logging.getLogger('services.ledger.sqlite_store')

T = TypeVar('T')

CREATE_EVENTS_TABLE = """
    CREATE TABLE IF NOT EXISTS message_events (
        group_id INTEGER NOT NULL,
        participant TEXT NOT NULL,
        observed_at TIMESTAMP NOT NULL
    )
"""

CREATE_EVENTS_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_message_events_group_participant
    ON message_events(group_id, participant)
"""

INSERT_EVENT = """
    INSERT INTO message_events (group_id, participant, observed_at)
    VALUES (?, ?, ?)
"""

SELECT_TOTAL = """
    SELECT COUNT(*) AS total_messages
    FROM message_events
    WHERE group_id = ?
"""

# 單一查詢完成計數、群組總數與百分比；排序規則與 aggregation.ranking_key 相同
SELECT_DISTRIBUTION = """
    SELECT
        participant,
        COUNT(*) AS message_count,
        SUM(COUNT(*)) OVER () AS total_messages,
        100.0 * COUNT(*) / SUM(COUNT(*)) OVER () AS share
    FROM message_events
    WHERE group_id = ?
    GROUP BY participant
    ORDER BY share DESC, participant ASC
"""

SELECT_EXPORT = """
    SELECT participant, COUNT(*) AS message_count
    FROM message_events
    WHERE group_id = ?
    GROUP BY participant
    ORDER BY message_count DESC, participant ASC
"""

SELECT_GROUP_COUNT = "SELECT COUNT(DISTINCT group_id) AS group_total FROM message_events"


class SQLiteActivityStore(ActivityStore):
    """
    SQLite 儲存後端

    參數：
        db_manager: 管理事件日誌資料庫的 DatabaseManager
        timeout: 單次操作逾時秒數，None 表示不設逾時；
                 逾時或被取消時交易會回滾，資料保持不變
    """

    backend = "sqlite"

    def __init__(self, db_manager: DatabaseManager, timeout: Optional[float] = None):
        self.db_manager = db_manager
        self.timeout = timeout

    async def open(self) -> None:
        """建立事件資料表；資料庫管理器由帳本服務作為依賴先行初始化"""
        if not self.db_manager.is_initialized:
            raise ServiceInitializationError(self.db_manager.name, f"資料庫尚未開啟：{self.db_manager.db_path}")

        await self.db_manager.execute(CREATE_EVENTS_TABLE)
        await self.db_manager.execute(CREATE_EVENTS_INDEX)
        logger.info(f"訊息事件日誌已就緒：{self.db_manager.db_path}")

    async def close(self) -> None:
        await self.db_manager.cleanup()

    async def _bounded(self, operation: str, awaitable: Awaitable[T]) -> T:
        """套用逾時；逾時時 wait_for 會取消內部任務並觸發交易回滾"""
        if self.timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"帳本操作 {operation} 超過 {self.timeout} 秒，已中止")
            raise LedgerTimeoutError(operation, self.timeout) from e

    @retry_on_database_locked(strategy=CommonRetryStrategies.AGGRESSIVE)
    async def _insert_event(self, group_id: int, participant: str, observed_at: datetime) -> None:
        async with self.db_manager.transaction(immediate=True) as conn:
            await conn.execute(INSERT_EVENT, (group_id, participant, observed_at.isoformat()))

    async def record(self, group_id: int, participant: str, observed_at: datetime) -> None:
        """
        寫入一則訊息事件

        注意：若逾時或取消發生在 COMMIT 執行期間，aiosqlite 的工作執行緒仍會完成提交，
        此時雖然拋出 LedgerTimeoutError，事件可能已經寫入；呼叫端不應自動重試同一則訊息
        """
        if observed_at.tzinfo is None:
            observed_at = observed_at.replace(tzinfo=timezone.utc)
        await self._bounded("record", self._insert_event(group_id, participant, observed_at))
        logger.debug(f"寫入訊息事件：群組 {group_id} 的 {participant}")

    async def total(self, group_id: int) -> Optional[int]:
        row = await self._bounded("total", self.db_manager.fetchone(SELECT_TOTAL, (group_id,)))
        if row is None or not row['total_messages']:
            return None
        return int(row['total_messages'])

    async def distribution(self, group_id: int) -> Optional[GroupDistribution]:
        rows = await self._bounded("distribution", self.db_manager.fetchall(SELECT_DISTRIBUTION, (group_id,)))
        if not rows:
            return None

        entries = tuple(
            ShareEntry(
                participant=row['participant'],
                message_count=int(row['message_count']),
                share=float(row['share'])
            )
            for row in rows
        )
        return GroupDistribution(
            group_id=group_id,
            total_messages=int(rows[0]['total_messages']),
            entries=entries
        )

    async def export(self, group_id: int) -> Optional[ExportSnapshot]:
        rows = await self._bounded("export", self.db_manager.fetchall(SELECT_EXPORT, (group_id,)))
        if not rows:
            return None
        return ExportSnapshot(group_id, ((row['participant'], row['message_count']) for row in rows))

    async def group_count(self) -> Optional[int]:
        row = await self._bounded("group_count", self.db_manager.fetchone(SELECT_GROUP_COUNT))
        return int(row['group_total']) if row else 0

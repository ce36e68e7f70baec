"""
活躍度帳本服務

記錄每個群組中各參與者的訊息數，並依需求計算：
- 群組總訊息數
- 各參與者佔總訊息數的百分比
- 排行榜文字與單一參與者的百分比文字
- 匯出快照與 CSV 檔案

所有查詢在群組尚無任何訊息時返回 None
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import config
from core.base_service import BaseService
from core.exceptions import (
    BotError,
    DatabaseError,
    LedgerStorageError,
    ServiceError,
    ValidationError,
    handle_errors
)
from .export import write_csv
from .formatter import format_group_summary, format_ranked, format_share
from .models import ExportSnapshot, GroupDistribution
from .sqlite_store import SQLiteActivityStore
from .storage import ActivityStore, create_activity_store

logger = logging.getLogger('services.ledger')

# 群組 ID 為 64 位元有號整數
GROUP_ID_MIN = -(2 ** 63)
GROUP_ID_MAX = 2 ** 63 - 1

DATABASE_DEPENDENCY = "DatabaseManager"


class ActivityLedgerService(BaseService):
    """
    活躍度帳本服務

    帳本的唯一入口，持有儲存後端直到服務清理為止
    """

    def __init__(self, store: Optional[ActivityStore] = None, config_dict: Optional[Dict[str, Any]] = None):
        """
        初始化活躍度帳本服務

        參數：
            store: 儲存後端，未提供時依 config_dict 建立
            config_dict: 配置參數（見 config.get_ledger_config）
        """
        super().__init__("ActivityLedgerService")
        self.config = config_dict or {}
        self.store = store or create_activity_store(**self.config)
        if isinstance(self.store, SQLiteActivityStore):
            self.add_dependency(self.store.db_manager, DATABASE_DEPENDENCY)

        self.timezone = self.config.get('timezone', config.TW_TZ)
        self.start_date_format = self.config.get('start_date_format', config.START_DATE_FORMAT)
        self.started_at: Optional[datetime] = None

    async def _initialize(self) -> bool:
        """開啟儲存後端並記錄統計起始時間"""
        await self.store.open()
        self.started_at = datetime.now(timezone.utc)
        logger.info(f"活躍度帳本服務初始化成功（後端：{self.store.backend}）")
        return True

    async def _cleanup(self) -> None:
        await self.store.close()
        logger.info("活躍度帳本服務已清理")

    # ========== 內部檢查 ==========

    def _ensure_ready(self, operation: str) -> None:
        if not self.is_initialized:
            raise ServiceError(
                "活躍度帳本服務尚未初始化",
                service_name=self.name,
                operation=operation
            )

    @staticmethod
    def _validate_group(group_id: Any) -> int:
        # bool 是 int 的子類別，需要額外排除
        if isinstance(group_id, bool) or not isinstance(group_id, int):
            raise ValidationError(
                f"無效的群組 ID：{group_id!r}",
                field="group_id",
                value=group_id,
                expected="64 位元有號整數"
            )
        if not GROUP_ID_MIN <= group_id <= GROUP_ID_MAX:
            raise ValidationError(
                f"群組 ID 超出範圍：{group_id}",
                field="group_id",
                value=group_id,
                expected="64 位元有號整數"
            )
        return group_id

    @staticmethod
    def _validate_participant(participant: Any) -> str:
        if not isinstance(participant, str) or not participant.strip():
            raise ValidationError(
                f"無效的參與者名稱：{participant!r}",
                field="participant",
                value=participant,
                expected="非空白字串"
            )
        try:
            participant.encode("utf-8")
        except UnicodeEncodeError as e:
            raise ValidationError(
                f"參與者名稱無法以 UTF-8 編碼：{participant!r}",
                field="participant",
                value=participant,
                expected="可編碼為 UTF-8 的字串"
            ) from e
        return participant

    @contextmanager
    def _storage_operation(self, operation: str):
        """把儲存層拋出的錯誤轉為 LedgerStorageError"""
        try:
            yield
        except LedgerStorageError:
            raise
        except DatabaseError as e:
            logger.error(f"帳本操作 {operation} 失敗：{e.message}")
            raise LedgerStorageError(operation, e.message) from e
        except BotError:
            raise
        except Exception as e:
            logger.exception(f"帳本操作 {operation} 發生非預期錯誤")
            raise LedgerStorageError(operation, str(e)) from e

    # ========== 記錄 ==========

    @handle_errors(log_errors=True)
    async def record_message(self, group_id: int, participant: str, observed_at: Optional[datetime] = None) -> None:
        """
        記錄一則訊息

        參數：
            group_id: 群組 ID
            participant: 發送者名稱
            observed_at: 訊息時間，預設為現在（UTC）
        """
        self._ensure_ready("record_message")
        self._validate_group(group_id)
        self._validate_participant(participant)

        with self._storage_operation("record_message"):
            await self.store.record(group_id, participant, observed_at or datetime.now(timezone.utc))

    # ========== 查詢 ==========

    @handle_errors(log_errors=True)
    async def group_total(self, group_id: int) -> Optional[int]:
        """群組總訊息數，沒有訊息時返回 None"""
        self._ensure_ready("group_total")
        self._validate_group(group_id)

        with self._storage_operation("group_total"):
            return await self.store.total(group_id)

    @handle_errors(log_errors=True)
    async def group_distribution(self, group_id: int) -> Optional[GroupDistribution]:
        """
        群組分布快照

        總數、百分比與排行榜都來自同一次讀取，彼此一致
        """
        self._ensure_ready("group_distribution")
        self._validate_group(group_id)

        with self._storage_operation("group_distribution"):
            return await self.store.distribution(group_id)

    async def percent_distribution(self, group_id: int) -> Optional[Dict[str, float]]:
        """參與者 -> 百分比"""
        distribution = await self.group_distribution(group_id)
        return distribution.as_percent_map() if distribution else None

    async def percent_for(self, group_id: int, participant: str) -> Optional[float]:
        """單一參與者的百分比，群組或參與者沒有紀錄時返回 None"""
        distribution = await self.group_distribution(group_id)
        if distribution is None:
            return None
        return distribution.share_of(participant)

    async def ranked(self, group_id: int) -> Optional[List[Tuple[str, float]]]:
        """排行榜：百分比由大到小，同分依名稱由小到大"""
        distribution = await self.group_distribution(group_id)
        return distribution.as_ranked_pairs() if distribution else None

    # ========== 文字 ==========

    @property
    def since_text(self) -> str:
        """統計起始時間的顯示文字"""
        started_at = self.started_at or datetime.now(timezone.utc)
        return started_at.astimezone(self.timezone).strftime(self.start_date_format)

    async def group_distribution_text(self, group_id: int, decorated: bool = True) -> Optional[str]:
        ranked = await self.ranked(group_id)
        if ranked is None:
            return None
        return format_ranked(ranked, decorated=decorated)

    async def participant_share_text(self, group_id: int, participant: str) -> Optional[str]:
        share = await self.percent_for(group_id, participant)
        if share is None:
            return None
        return format_share(share)

    async def group_summary_text(self, group_id: int) -> Optional[str]:
        """群組摘要：統計起始時間、總訊息數與排行榜"""
        distribution = await self.group_distribution(group_id)
        if distribution is None:
            return None
        return format_group_summary(
            self.since_text,
            distribution.total_messages,
            distribution.as_ranked_pairs()
        )

    # ========== 匯出 ==========

    @handle_errors(log_errors=True)
    async def export_rows(self, group_id: int) -> Optional[ExportSnapshot]:
        """
        匯出快照

        返回：
            可重複迭代的 (參與者, 訊息數) 快照，內容固定於呼叫當下；
            群組沒有訊息時返回 None
        """
        self._ensure_ready("export_rows")
        self._validate_group(group_id)

        with self._storage_operation("export_rows"):
            return await self.store.export(group_id)

    async def export_csv(self, group_id: int, directory: Optional[Union[str, Path]] = None) -> Optional[Path]:
        """
        將匯出快照寫成 CSV 檔案

        參數：
            group_id: 群組 ID
            directory: 輸出目錄，預設為 config.EXPORT_DIR

        返回：
            檔案路徑，群組沒有訊息時返回 None
        """
        snapshot = await self.export_rows(group_id)
        if snapshot is None:
            return None

        path = Path(directory or config.EXPORT_DIR) / config.EXPORT_FILENAME.format(group_id=group_id)
        write_csv(snapshot, path)
        logger.info(
            f"已匯出群組 {group_id} 的活躍度（{len(snapshot)} 位參與者，共 {snapshot.total_messages} 則訊息，"
            f"快照時間 {snapshot.taken_at.isoformat()}）：{path}"
        )
        return path

    async def health_check(self) -> Dict[str, Any]:
        health = await super().health_check()
        health["backend"] = self.store.backend
        database = self.get_dependency(DATABASE_DEPENDENCY)
        if database is not None:
            health["database_path"] = database.db_path
        if self.is_initialized:
            with self._storage_operation("health_check"):
                health["groups"] = await self.store.group_count()
        return health

"""
活躍度帳本模組

統計每個群組中各參與者的訊息數與百分比，提供兩種儲存後端：
- memory：行程內計數表
- sqlite：訊息事件日誌
"""

from .ledger_service import ActivityLedgerService
from .memory_store import InMemoryActivityStore, MessageCountTable
from .models import ExportRow, ExportSnapshot, GroupDistribution, ShareEntry
from .sqlite_store import SQLiteActivityStore
from .storage import ActivityStore, create_activity_store

__all__ = [
    'ActivityLedgerService',
    'ActivityStore',
    'InMemoryActivityStore',
    'MessageCountTable',
    'SQLiteActivityStore',
    'create_activity_store',
    'ExportRow',
    'ExportSnapshot',
    'GroupDistribution',
    'ShareEntry',
]

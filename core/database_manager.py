"""
資料庫管理器

這個模組提供了統一的 SQLite 資料庫存取功能：
- aiosqlite 連線池（WAL 模式、busy_timeout）
- 每個操作借用獨立連線，交易互不干擾
- 交易上下文管理器，例外與取消時自動回滾
- 統一的錯誤處理和日誌記錄
"""
import os
import sqlite3
import logging
from typing import Optional, Any, List, Tuple, Union
from contextlib import asynccontextmanager

import aiosqlite

from config import DBS_DIR
from .base_service import BaseService
from .exceptions import (
    DatabaseConnectionError,
    DatabaseQueryError,
    handle_errors
)

logger = logging.getLogger('core.database_manager')

Params = Union[Tuple[Any, ...], List[Any]]


def resolve_db_path(filename: Optional[str], default_filename: str) -> str:
    """
    解析資料庫檔案路徑

    參數：
        filename: 使用者傳入的檔名或路徑
        default_filename: 預設檔名（不含路徑）

    返回：
        絕對路徑；只給檔名時放在 dbs/ 目錄下
    """
    if not filename:
        return os.path.join(DBS_DIR, default_filename)
    if os.path.dirname(filename):
        return os.path.abspath(filename)
    return os.path.join(DBS_DIR, filename)


class ConnectionPool:
    """
    aiosqlite 連線池

    閒置連線最多保留 max_connections 條，借用時沒有閒置連線就建立新連線。
    只能在單一事件迴圈中使用
    """

    def __init__(self, db_path: str, max_connections: int = 5, busy_timeout_ms: int = 30000):
        self.db_path = db_path
        self.max_connections = max_connections
        self.busy_timeout_ms = busy_timeout_ms
        self._idle: List[aiosqlite.Connection] = []
        self.opened_connections = 0

    async def _connect(self) -> aiosqlite.Connection:
        try:
            # isolation_level=None：自動提交，交易一律以 BEGIN 明確開啟
            conn = await aiosqlite.connect(self.db_path, isolation_level=None)
            await conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)};")
            await conn.execute("PRAGMA journal_mode=WAL;")
            await conn.execute("PRAGMA synchronous=NORMAL;")
            conn.row_factory = aiosqlite.Row
        except (sqlite3.Error, OSError) as e:
            raise DatabaseConnectionError(self.db_path, str(e)) from e

        self.opened_connections += 1
        logger.debug(f"建立新連線：{self.db_path}（累計 {self.opened_connections} 條）")
        return conn

    async def acquire(self) -> aiosqlite.Connection:
        """借用一條連線"""
        if self._idle:
            return self._idle.pop()
        return await self._connect()

    async def release(self, conn: aiosqlite.Connection, discard: bool = False) -> None:
        """
        歸還連線

        參數：
            conn: 借用的連線
            discard: 連線狀態不明（例如回滾失敗）時直接關閉不重用
        """
        if discard or len(self._idle) >= self.max_connections:
            try:
                await conn.close()
            except sqlite3.Error as e:
                logger.warning(f"關閉連線時發生錯誤：{e}")
            return
        self._idle.append(conn)

    @asynccontextmanager
    async def connection(self):
        """借用連線的上下文管理器"""
        conn = await self.acquire()
        try:
            yield conn
        finally:
            await self.release(conn)

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    async def close_all_connections(self):
        """關閉所有閒置連線"""
        idle, self._idle = self._idle, []
        for conn in idle:
            try:
                await conn.close()
            except sqlite3.Error as e:
                logger.warning(f"關閉連線時發生錯誤：{e}")
        logger.info(f"已關閉 {len(idle)} 條閒置連線：{self.db_path}")


class DatabaseManager(BaseService):
    """
    資料庫管理器

    管理單一 SQLite 資料庫檔案的連線池，提供查詢與交易介面
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        pool_size: int = 5,
        busy_timeout_ms: int = 30000,
        name: str = "DatabaseManager"
    ):
        """
        初始化資料庫管理器

        參數：
            db_path: 資料庫檔案路徑或檔名
            pool_size: 連線池保留的閒置連線數
            busy_timeout_ms: SQLite 等待寫入鎖的毫秒數
            name: 服務名稱
        """
        super().__init__(name)
        self.db_path = resolve_db_path(db_path, 'activity_ledger.db')
        os.makedirs(os.path.dirname(self.db_path), exist_ok=True)
        self.connection_pool = ConnectionPool(self.db_path, pool_size, busy_timeout_ms)

    async def _initialize(self) -> bool:
        """初始化資料庫管理器，確認資料庫可以連線"""
        try:
            async with self.connection_pool.connection() as conn:
                await conn.execute("SELECT 1")
            logger.info(f"資料庫管理器初始化完成：{self.db_path}")
            return True
        except DatabaseConnectionError as e:
            logger.error(f"資料庫管理器初始化失敗：{e}")
            return False

    async def _cleanup(self) -> None:
        """關閉所有連線"""
        await self.connection_pool.close_all_connections()
        logger.info("資料庫管理器已清理")

    @asynccontextmanager
    async def transaction(self, immediate: bool = False):
        """
        事務管理上下文管理器

        以借用的連線開啟交易，正常結束時提交；
        任何例外（包含任務取消）都會回滾後再拋出

        參數：
            immediate: 是否以 BEGIN IMMEDIATE 立即取得寫入鎖
        """
        conn = await self.connection_pool.acquire()
        reusable = False
        try:
            await conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                reusable = True
                raise
            await conn.commit()
            reusable = True
        except sqlite3.Error as e:
            logger.error(f"事務執行失敗：{e}")
            raise DatabaseQueryError("TRANSACTION", str(e)) from e
        finally:
            await self.connection_pool.release(conn, discard=not reusable)

    @handle_errors(log_errors=True)
    async def execute(self, query: str, params: Params = ()) -> None:
        """
        執行 SQL 指令（自動提交）

        參數：
            query: SQL 查詢
            params: 參數
        """
        try:
            async with self.connection_pool.connection() as conn:
                await conn.execute(query, params)
        except sqlite3.Error as e:
            logger.error(f"執行 SQL 指令失敗：{e}\n指令內容：{query}\n參數：{params}")
            raise DatabaseQueryError(query, str(e)) from e

    @handle_errors(log_errors=True)
    async def fetchone(self, query: str, params: Params = ()) -> Optional[aiosqlite.Row]:
        """
        查詢單筆資料

        參數：
            query: SQL 查詢
            params: 參數

        返回：
            查詢結果，沒有資料時為 None
        """
        try:
            async with self.connection_pool.connection() as conn:
                async with conn.execute(query, params) as cursor:
                    return await cursor.fetchone()
        except sqlite3.Error as e:
            logger.error(f"查詢(單筆)失敗：{e}\n查詢內容：{query}\n參數：{params}")
            raise DatabaseQueryError(query, str(e)) from e

    @handle_errors(log_errors=True)
    async def fetchall(self, query: str, params: Params = ()) -> List[aiosqlite.Row]:
        """
        查詢多筆資料

        參數：
            query: SQL 查詢
            params: 參數

        返回：
            查詢結果列表
        """
        try:
            async with self.connection_pool.connection() as conn:
                async with conn.execute(query, params) as cursor:
                    return list(await cursor.fetchall())
        except sqlite3.Error as e:
            logger.error(f"查詢(多筆)失敗：{e}\n查詢內容：{query}\n參數：{params}")
            raise DatabaseQueryError(query, str(e)) from e

"""
資料庫操作重試機制

提供指數退避重試裝飾器，專門處理 SQLite 鎖定與忙碌錯誤
只重試整筆交易已回滾的暫時性錯誤，重試不會造成重複寫入
"""

import asyncio
import random
import logging
import sqlite3
import functools
from typing import Callable, Optional

from .exceptions import DatabaseError

logger = logging.getLogger('core.retry')

_RETRYABLE_KEYWORDS = (
    'database is locked',
    'database table is locked',
    'database schema has changed',
    'busy',
)


class DatabaseRetryError(DatabaseError):
    """重試次數用盡後拋出，保留最後一次的原始錯誤"""

    def __init__(self, message: str, original_error: Optional[BaseException] = None, attempts: int = 0):
        super().__init__(
            f"{message} (嘗試 {attempts} 次)",
            operation="retry",
            details={"attempts": attempts, "original_error": str(original_error)}
        )
        self.original_error = original_error
        self.attempts = attempts


class RetryStrategy:
    """重試策略配置類"""

    def __init__(
        self,
        max_retries: int = 5,
        base_delay: float = 0.1,
        max_delay: float = 30.0,
        backoff_multiplier: float = 2.0,
        jitter: bool = True,
        jitter_range: float = 0.1
    ):
        """
        初始化重試策略

        參數：
            max_retries: 最大重試次數
            base_delay: 基礎延遲時間（秒）
            max_delay: 最大延遲時間（秒）
            backoff_multiplier: 退避倍數
            jitter: 是否添加隨機抖動
            jitter_range: 抖動範圍（0-1之間的比例）
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier
        self.jitter = jitter
        self.jitter_range = jitter_range

    def calculate_delay(self, attempt: int) -> float:
        """
        計算指定重試次數的延遲時間

        參數：
            attempt: 當前重試次數（從0開始）

        返回：
            延遲時間（秒）
        """
        delay = min(self.base_delay * (self.backoff_multiplier ** attempt), self.max_delay)

        # 添加隨機抖動避免雷群效應
        if self.jitter:
            delay += delay * self.jitter_range * (random.random() * 2 - 1)

        return max(0.0, delay)


class CommonRetryStrategies:
    """常用重試策略預設值"""

    AGGRESSIVE = RetryStrategy(
        max_retries=10,
        base_delay=0.05,
        max_delay=5.0,
        backoff_multiplier=1.5
    )

    BALANCED = RetryStrategy(
        max_retries=5,
        base_delay=0.1,
        max_delay=30.0,
        backoff_multiplier=2.0
    )

    NONE = RetryStrategy(max_retries=0)


def is_retryable_database_error(error: BaseException) -> bool:
    """
    判斷資料庫錯誤是否應該重試

    DatabaseManager 會把 sqlite3 錯誤包裝成 DatabaseQueryError，
    因此也會檢查錯誤鏈上的原始錯誤
    """
    current: Optional[BaseException] = error
    while current is not None:
        if isinstance(current, sqlite3.OperationalError):
            message = str(current).lower()
            return any(keyword in message for keyword in _RETRYABLE_KEYWORDS)
        current = current.__cause__
    return False


def retry_on_database_locked(
    strategy: Optional[RetryStrategy] = None,
    log_attempts: bool = True
):
    """
    資料庫鎖定重試裝飾器（非同步）

    參數：
        strategy: 重試策略，預設為 BALANCED
        log_attempts: 是否記錄重試嘗試

    使用範例：
        @retry_on_database_locked(strategy=CommonRetryStrategies.AGGRESSIVE)
        async def record(self, group_id, participant):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            retry_strategy = strategy or CommonRetryStrategies.BALANCED

            for attempt in range(retry_strategy.max_retries + 1):
                try:
                    result = await func(*args, **kwargs)
                    if attempt > 0 and log_attempts:
                        logger.info(f"{func.__name__} 在第 {attempt + 1} 次嘗試後成功")
                    return result

                except Exception as error:
                    if not is_retryable_database_error(error):
                        raise

                    if attempt >= retry_strategy.max_retries:
                        if log_attempts:
                            logger.error(
                                f"{func.__name__} 達到最大重試次數 {retry_strategy.max_retries}，"
                                f"最後錯誤：{error}"
                            )
                        raise DatabaseRetryError(
                            f"達到最大重試次數 {retry_strategy.max_retries}",
                            original_error=error,
                            attempts=attempt + 1
                        ) from error

                    delay = retry_strategy.calculate_delay(attempt)
                    if log_attempts:
                        logger.warning(
                            f"{func.__name__} 第 {attempt + 1} 次嘗試失敗：{error}，"
                            f"等待 {delay:.2f}s 後重試"
                        )
                    await asyncio.sleep(delay)

        return wrapper
    return decorator

"""
核心錯誤處理系統

這個模組提供了分層的錯誤處理架構，包含：
- 錯誤類別層次結構
- 全域錯誤處理裝飾器
- Discord 互動專用的錯誤回覆
- 活躍度帳本的儲存與驗證錯誤
"""
import asyncio
import logging
import functools
import traceback
from typing import Optional, Dict, Any, Callable
from enum import Enum
import discord

# 設定日誌記錄器
logger = logging.getLogger('core.exceptions')


class ErrorSeverity(Enum):
    """錯誤嚴重性等級"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """錯誤類別"""
    SYSTEM = "system"
    DATABASE = "database"
    DISCORD = "discord"
    VALIDATION = "validation"
    BUSINESS = "business"


class BotError(Exception):
    """
    機器人錯誤基礎類別

    所有自定義錯誤的基礎類別，提供統一的錯誤處理介面
    """

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        user_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.category = category
        self.user_message = user_message or self._get_default_user_message()
        self.details = details or {}
        self.recoverable = recoverable

    def _get_default_user_message(self) -> str:
        """獲取預設的使用者友善錯誤訊息"""
        return "發生了一個錯誤，請稍後再試或聯絡管理員。"

    def to_dict(self) -> Dict[str, Any]:
        """將錯誤轉換為字典格式，便於記錄和報告"""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "user_message": self.user_message,
            "details": self.details,
            "recoverable": self.recoverable
        }


class ServiceError(BotError):
    """
    服務層錯誤

    當服務層（業務邏輯）發生錯誤時拋出
    """

    def __init__(
        self,
        message: str,
        service_name: str,
        operation: str,
        **kwargs
    ):
        # 先設定屬性，預設訊息會用到 service_name
        self.service_name = service_name
        self.operation = operation

        kwargs.setdefault('category', ErrorCategory.BUSINESS)

        super().__init__(message, **kwargs)

        self.details.update({
            "service_name": service_name,
            "operation": operation
        })

    def _get_default_user_message(self) -> str:
        return f"服務 {self.service_name} 暫時無法使用，請稍後再試。"


class ServiceInitializationError(ServiceError):
    """服務初始化錯誤"""

    def __init__(self, service_name: str, reason: str, **kwargs):
        kwargs.pop('category', None)
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        kwargs.setdefault('recoverable', False)

        super().__init__(
            f"服務 {service_name} 初始化失敗：{reason}",
            service_name=service_name,
            operation="initialize",
            **kwargs
        )
        self.reason = reason


class DatabaseError(BotError):
    """
    資料庫錯誤

    當資料庫操作失敗時拋出
    """

    def __init__(
        self,
        message: str,
        operation: str,
        table: Optional[str] = None,
        **kwargs
    ):
        kwargs.pop('category', None)
        super().__init__(
            message,
            category=ErrorCategory.DATABASE,
            **kwargs
        )
        self.operation = operation
        self.table = table
        self.details.update({
            "operation": operation,
            "table": table
        })

    def _get_default_user_message(self) -> str:
        return "資料庫暫時無法使用，請稍後再試。"


class DatabaseConnectionError(DatabaseError):
    """資料庫連線錯誤"""

    def __init__(self, db_name: str, reason: str, **kwargs):
        super().__init__(
            f"無法連線到資料庫 {db_name}：{reason}",
            operation="connect",
            severity=ErrorSeverity.CRITICAL,
            recoverable=False,
            **kwargs
        )
        self.db_name = db_name
        self.details["db_name"] = db_name


class DatabaseQueryError(DatabaseError):
    """資料庫查詢錯誤"""

    def __init__(self, query: str, error: str, table: Optional[str] = None, **kwargs):
        super().__init__(
            f"資料庫查詢失敗：{error}",
            operation="query",
            table=table,
            **kwargs
        )
        self.query = query
        self.error = error
        self.details.update({
            "query": query,
            "error": error
        })


class LedgerStorageError(DatabaseError):
    """
    活躍度帳本儲存錯誤

    儲存層無法完成讀寫時由帳本服務拋出，呼叫端決定是否重試
    """

    def __init__(self, operation: str, reason: str, **kwargs):
        super().__init__(
            f"活躍度帳本 {operation} 失敗：{reason}",
            operation=operation,
            table="message_events",
            **kwargs
        )
        self.reason = reason

    def _get_default_user_message(self) -> str:
        return "活躍度統計暫時無法使用，請稍後再試。"


class LedgerTimeoutError(LedgerStorageError):
    """活躍度帳本操作逾時，交易已回滾"""

    def __init__(self, operation: str, timeout: float, **kwargs):
        super().__init__(operation, f"操作超過 {timeout} 秒未完成", **kwargs)
        self.timeout = timeout
        self.details["timeout"] = timeout


class ValidationError(BotError):
    """
    輸入驗證錯誤

    當使用者輸入不符合要求時拋出
    """

    def __init__(
        self,
        message: str,
        field: str,
        value: Any,
        expected: str,
        **kwargs
    ):
        # 先設置屬性
        self.field = field
        self.value = value
        self.expected = expected

        super().__init__(
            message,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.LOW,
            **kwargs
        )

        self.details.update({
            "field": field,
            "value": str(value),
            "expected": expected
        })

    def _get_default_user_message(self) -> str:
        return f"輸入格式錯誤：{self.field} 應該是 {self.expected}"


def _wrap_unexpected(func: Callable, error: Exception) -> BotError:
    """將意外錯誤包裝為 BotError"""
    return BotError(
        f"Unexpected error in {func.__name__}: {str(error)}",
        severity=ErrorSeverity.HIGH,
        details={
            "function": func.__name__,
            "original_error": str(error),
            "traceback": traceback.format_exc()
        }
    )


# 錯誤處理裝飾器
def handle_errors(
    log_errors: bool = True,
    return_user_message: bool = False,
    default_return_value: Any = None
):
    """
    全域錯誤處理裝飾器

    參數：
        log_errors: 是否記錄錯誤到日誌
        return_user_message: 是否返回使用者友善的錯誤訊息
        default_return_value: 發生錯誤時的預設返回值
    """
    def decorator(func: Callable) -> Callable:
        def _resolve(error: BotError):
            if return_user_message:
                return error.user_message
            return default_return_value

        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    return await func(*args, **kwargs)
                except BotError as e:
                    if log_errors:
                        logger.error(f"BotError in {func.__name__}: {e.to_dict()}")
                    if return_user_message or default_return_value is not None:
                        return _resolve(e)
                    raise
                except Exception as e:
                    if log_errors:
                        logger.exception(f"Unexpected error in {func.__name__}: {str(e)}")
                    bot_error = _wrap_unexpected(func, e)
                    if return_user_message or default_return_value is not None:
                        return _resolve(bot_error)
                    raise bot_error from e

            return async_wrapper
        else:
            @functools.wraps(func)
            def sync_wrapper(*args, **kwargs):
                try:
                    return func(*args, **kwargs)
                except BotError as e:
                    if log_errors:
                        logger.error(f"BotError in {func.__name__}: {e.to_dict()}")
                    if return_user_message or default_return_value is not None:
                        return _resolve(e)
                    raise
                except Exception as e:
                    if log_errors:
                        logger.exception(f"Unexpected error in {func.__name__}: {str(e)}")
                    bot_error = _wrap_unexpected(func, e)
                    if return_user_message or default_return_value is not None:
                        return _resolve(bot_error)
                    raise bot_error from e

            return sync_wrapper
    return decorator


async def _send_error(interaction: discord.Interaction, message: str, ephemeral: bool) -> None:
    """向互動發送錯誤訊息，已回應過則改用 followup"""
    try:
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=ephemeral)
        else:
            await interaction.response.send_message(message, ephemeral=ephemeral)
    except discord.HTTPException as send_error:
        logger.error(f"Failed to send error message to user: {send_error}")


def discord_error_handler(
    send_to_user: bool = True,
    ephemeral: bool = True
):
    """
    Discord 互動專用的錯誤處理裝飾器

    參數：
        send_to_user: 是否向使用者發送錯誤訊息
        ephemeral: 錯誤訊息是否為私人訊息
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(self, interaction: discord.Interaction, *args, **kwargs):
            try:
                await func(self, interaction, *args, **kwargs)
            except BotError as e:
                logger.error(f"BotError in Discord interaction {func.__name__}: {e.to_dict()}")
                if send_to_user:
                    await _send_error(interaction, e.user_message, ephemeral)
            except Exception as e:
                logger.exception(f"Unexpected error in Discord interaction {func.__name__}: {str(e)}")
                if send_to_user:
                    await _send_error(
                        interaction,
                        "發生了一個意外錯誤，請稍後再試或聯絡管理員。",
                        ephemeral
                    )

        return wrapper
    return decorator

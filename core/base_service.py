"""
核心服務基礎類別

這個模組提供了所有服務的基礎抽象類別，包含：
- 統一的服務初始化和清理機制
- 依賴注入支援
- 統一的日誌記錄
- 服務註冊和發現機制
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List
from datetime import datetime

from .exceptions import (
    ServiceError,
    ServiceInitializationError,
    handle_errors
)

# 設定日誌記錄器
logger = logging.getLogger('core.base_service')


class ServiceRegistry:
    """
    服務註冊表

    管理所有已註冊的服務實例，讓 Cog 能找到啟動時建立的服務
    """

    def __init__(self):
        self._services: Dict[str, 'BaseService'] = {}
        self._initialization_order: List[str] = []
        self._lock = asyncio.Lock()

    async def register_service(
        self,
        service: 'BaseService',
        name: Optional[str] = None,
        force_reregister: bool = False
    ) -> str:
        """
        註冊服務

        參數：
            service: 要註冊的服務實例
            name: 服務名稱，如果不提供則使用服務名稱
            force_reregister: 是否強制重新註冊（測試環境用）

        返回：
            服務名稱
        """
        async with self._lock:
            service_name = name or service.name

            if service_name in self._services:
                if not force_reregister:
                    raise ServiceError(
                        f"服務 {service_name} 已經註冊",
                        service_name=service_name,
                        operation="register"
                    )

                logger.warning(f"強制重新註冊服務 {service_name}")
                old_service = self._services.pop(service_name)
                if old_service.is_initialized:
                    await old_service.cleanup()
                if service_name in self._initialization_order:
                    self._initialization_order.remove(service_name)

            self._services[service_name] = service
            self._initialization_order.append(service_name)

            logger.info(f"服務 {service_name} 已註冊")
            return service_name

    def get_service(self, name: str) -> Optional['BaseService']:
        """
        獲取服務實例

        參數：
            name: 服務名稱

        返回：
            服務實例，如果不存在則返回 None
        """
        return self._services.get(name)

    def is_registered(self, name: str) -> bool:
        """檢查服務是否已註冊"""
        return name in self._services

    async def cleanup_all_services(self):
        """清理所有服務（按註冊順序的反向）"""
        async with self._lock:
            service_count = len(self._services)
            logger.info(f"開始清理 {service_count} 個服務")

            for service_name in reversed(self._initialization_order):
                service = self._services.get(service_name)
                if service is None or not service.is_initialized:
                    continue
                try:
                    await service.cleanup()
                    logger.debug(f"服務 {service_name} 已清理")
                except ServiceError as e:
                    logger.error(f"清理服務 {service_name} 時發生錯誤：{e}")

            self._services.clear()
            self._initialization_order.clear()

            logger.info(f"全域服務註冊表已清除（清理了 {service_count} 個服務）")

    def reset_for_testing(self):
        """重置註冊表狀態，專用於測試環境"""
        self._services.clear()
        self._initialization_order.clear()


# 全域服務註冊表實例
service_registry = ServiceRegistry()


class BaseService(ABC):
    """
    服務基礎抽象類別

    所有業務服務都應該繼承此類別，提供統一的：
    - 初始化和清理生命週期
    - 依賴注入支援
    - 日誌記錄
    """

    def __init__(self, name: Optional[str] = None):
        """
        初始化服務

        參數：
            name: 服務名稱，如果不提供則使用類別名稱
        """
        self.name = name or self.__class__.__name__
        self.logger = logging.getLogger(f'service.{self.name}')
        self._initialized = False
        self._initialization_time: Optional[datetime] = None
        self._dependencies: Dict[str, 'BaseService'] = {}

    @property
    def is_initialized(self) -> bool:
        """檢查服務是否已初始化"""
        return self._initialized

    @property
    def initialization_time(self) -> Optional[datetime]:
        """獲取初始化時間"""
        return self._initialization_time

    @property
    def uptime(self) -> Optional[float]:
        """獲取服務運行時間（秒）"""
        if self._initialization_time:
            return (datetime.now() - self._initialization_time).total_seconds()
        return None

    async def register(self, registry: Optional[ServiceRegistry] = None) -> str:
        """註冊服務到服務註冊表，未指定時使用全域註冊表"""
        registry = registry or service_registry
        return await registry.register_service(self, self.name)

    def add_dependency(self, dependency: 'BaseService', name: Optional[str] = None):
        """
        添加依賴服務

        參數：
            dependency: 依賴的服務實例
            name: 依賴名稱，如果不提供則使用服務的名稱
        """
        dep_name = name or dependency.name
        self._dependencies[dep_name] = dependency
        self.logger.debug(f"添加依賴服務：{dep_name}")

    def get_dependency(self, name: str) -> Optional['BaseService']:
        """獲取依賴服務"""
        return self._dependencies.get(name)

    @handle_errors(log_errors=True)
    async def initialize(self) -> bool:
        """
        初始化服務

        依賴服務若尚未初始化會先行初始化

        返回：
            是否初始化成功
        """
        if self._initialized:
            self.logger.warning(f"服務 {self.name} 已經初始化過了")
            return True

        try:
            self.logger.info(f"開始初始化服務 {self.name}")

            for dep_name, dep_service in self._dependencies.items():
                if not dep_service.is_initialized and not await dep_service.initialize():
                    raise ServiceInitializationError(
                        self.name,
                        f"依賴服務 {dep_name} 初始化失敗"
                    )

            success = await self._initialize()

            if success:
                self._initialized = True
                self._initialization_time = datetime.now()
                self.logger.info(f"服務 {self.name} 初始化成功")
            else:
                self.logger.error(f"服務 {self.name} 初始化失敗")

            return success

        except ServiceInitializationError:
            raise
        except Exception as e:
            self.logger.exception(f"服務 {self.name} 初始化時發生錯誤")
            raise ServiceInitializationError(
                self.name,
                f"初始化錯誤：{str(e)}"
            ) from e

    @abstractmethod
    async def _initialize(self) -> bool:
        """
        子類別實作的初始化邏輯

        返回：
            是否初始化成功
        """

    @handle_errors(log_errors=True)
    async def cleanup(self) -> None:
        """清理服務資源"""
        if not self._initialized:
            return

        try:
            self.logger.info(f"開始清理服務 {self.name}")
            await self._cleanup()

            self._initialized = False
            self._initialization_time = None

            self.logger.info(f"服務 {self.name} 已清理")

        except Exception as e:
            self.logger.exception(f"清理服務 {self.name} 時發生錯誤")
            raise ServiceError(
                f"清理服務 {self.name} 失敗：{str(e)}",
                service_name=self.name,
                operation="cleanup"
            ) from e

    @abstractmethod
    async def _cleanup(self) -> None:
        """子類別實作的清理邏輯"""

    async def health_check(self) -> Dict[str, Any]:
        """
        健康檢查

        返回：
            服務健康狀態信息
        """
        return {
            "service_name": self.name,
            "initialized": self._initialized,
            "initialization_time": self._initialization_time.isoformat() if self._initialization_time else None,
            "uptime_seconds": self.uptime,
            "dependencies": list(self._dependencies.keys()),
            "status": "healthy" if self._initialized else "not_initialized"
        }

    def __repr__(self) -> str:
        status = "已初始化" if self._initialized else "未初始化"
        return f"<{self.__class__.__name__}(name='{self.name}', status='{status}')>"

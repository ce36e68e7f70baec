"""
pytest配置文件

設置測試環境，包括Python路徑配置、測試標記和共享fixture
"""
from __future__ import annotations

import sys
import os
from pathlib import Path

# 獲取項目根目錄
project_root = Path(__file__).parent.absolute()

# 確保項目根目錄在Python路徑的最前面
project_root_str = str(project_root)
if project_root_str in sys.path:
    sys.path.remove(project_root_str)
sys.path.insert(0, project_root_str)

import pytest
import pytest_asyncio

from core.base_service import service_registry
from services.ledger import ActivityLedgerService, InMemoryActivityStore, create_activity_store


def pytest_configure(config):
    """配置pytest"""
    config.addinivalue_line("markers", "integration: 整合測試標記")
    config.addinivalue_line("markers", "concurrency: 併發測試標記")


# === 全域Fixture ===

# 群組 42 的範例資料：alice 10、bob 3、carol 7、dave 1，共 21 則
SAMPLE_GROUP_ID = 42
SAMPLE_COUNTS = {"alice": 10, "bob": 3, "carol": 7, "dave": 1}


@pytest.fixture(autouse=True)
def clean_service_registry():
    """每個測試前後清空全域服務註冊表"""
    service_registry.reset_for_testing()
    yield
    service_registry.reset_for_testing()


@pytest.fixture
def sample_counts():
    return dict(SAMPLE_COUNTS)


@pytest.fixture
def sqlite_db_path(tmp_path):
    """每個測試獨立的 SQLite 檔案"""
    return str(tmp_path / "activity_ledger.db")


@pytest.fixture(params=["memory", "sqlite"])
def backend_name(request):
    """兩種儲存後端參數化"""
    return request.param


@pytest_asyncio.fixture
async def ledger_service(backend_name, sqlite_db_path):
    """已初始化的活躍度帳本服務，兩種後端各跑一次"""
    if backend_name == "memory":
        store = InMemoryActivityStore()
    else:
        store = create_activity_store("sqlite", db_path=sqlite_db_path, pool_size=3, timeout=10.0)

    service = ActivityLedgerService(store=store)
    assert await service.initialize()
    yield service
    await service.cleanup()


@pytest_asyncio.fixture
async def sample_ledger(ledger_service, sample_counts):
    """寫入範例資料的帳本服務"""
    for participant, count in sample_counts.items():
        for _ in range(count):
            await ledger_service.record_message(SAMPLE_GROUP_ID, participant)
    return ledger_service

# =============================================================================
# Group Activity Bot - 配置檔案
# =============================================================================
# 功能說明：
# - 集中管理所有 Bot 的配置設定
# - 定義資料庫路徑、日誌路徑、匯出路徑
# - 設定活躍度帳本的儲存後端與逾時參數
# - 時區和時間相關常數
# =============================================================================

import os
from datetime import timezone, timedelta
from typing import Any, Dict

# =============================================================================
# 1️⃣ 時區與時間常數
# =============================================================================
# 台灣時區常數（UTC+8）
# 用於「統計起始時間」的顯示
TW_TZ = timezone(timedelta(hours=8))

# 統計起始時間的顯示格式（日-月-年 時:分:秒）
START_DATE_FORMAT = "%d-%m-%Y %H:%M:%S"

# =============================================================================
# 2️⃣ 專案路徑設定
# =============================================================================
# 專案根目錄：優先使用環境變數 PROJECT_ROOT，否則為 config.py 所在目錄
PROJECT_ROOT = os.environ.get("PROJECT_ROOT") or os.path.abspath(os.path.dirname(__file__))

# 主要資料夾路徑
DBS_DIR = os.path.join(PROJECT_ROOT, "dbs")        # 資料庫檔案目錄
LOGS_DIR = os.path.join(PROJECT_ROOT, "logs")      # 日誌檔案目錄
EXPORT_DIR = os.path.join(PROJECT_ROOT, "data", "exports")  # CSV 匯出目錄

# 自動建立必要的目錄結構
os.makedirs(DBS_DIR, exist_ok=True)
os.makedirs(LOGS_DIR, exist_ok=True)
os.makedirs(EXPORT_DIR, exist_ok=True)

# =============================================================================
# 3️⃣ 活躍度帳本設定
# =============================================================================
# 儲存後端：
#   memory - 行程內計數表，重啟後歸零
#   sqlite - 訊息事件日誌，統計以 SQL 聚合查詢計算
LEDGER_BACKENDS = ("memory", "sqlite")
LEDGER_BACKEND = os.environ.get("LEDGER_BACKEND", "memory").strip().lower()

# 事件日誌資料庫（僅 sqlite 後端使用）
LEDGER_DB_PATH = os.environ.get("LEDGER_DB_PATH") or os.path.join(DBS_DIR, "activity_ledger.db")

# 連線池保留的閒置連線數
LEDGER_POOL_SIZE = int(os.environ.get("LEDGER_POOL_SIZE", "5"))

# 單次帳本操作的逾時秒數，0 表示不設逾時
LEDGER_QUERY_TIMEOUT = float(os.environ.get("LEDGER_QUERY_TIMEOUT", "10.0"))

# SQLite 等待寫入鎖的毫秒數
LEDGER_BUSY_TIMEOUT_MS = 30000

# =============================================================================
# 4️⃣ 匯出設定
# =============================================================================
# 匯出檔名，{group_id} 會替換成伺服器 ID
EXPORT_FILENAME = "activity_{group_id}.csv"

# =============================================================================
# 5️⃣ 日誌設定
# =============================================================================
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 5 * 1024 * 1024   # 5MB
LOG_BACKUP_COUNT = 3


def get_ledger_config() -> Dict[str, Any]:
    """
    組合活躍度帳本服務使用的設定字典

    回傳：
        dict: 傳給 ActivityLedgerService 的設定
    """
    return {
        'backend': LEDGER_BACKEND,
        'db_path': LEDGER_DB_PATH,
        'pool_size': LEDGER_POOL_SIZE,
        'busy_timeout_ms': LEDGER_BUSY_TIMEOUT_MS,
        'timeout': LEDGER_QUERY_TIMEOUT or None,
        'timezone': TW_TZ,
        'start_date_format': START_DATE_FORMAT,
    }


# =============================================================================
# 6️⃣ 配置驗證函數
# =============================================================================
def validate_config() -> bool:
    """
    驗證所有配置設定是否正確

    回傳：
        bool: True 表示配置正確，False 表示有問題
    """
    if LEDGER_BACKEND not in LEDGER_BACKENDS:
        print(f"❌ 不支援的帳本後端：{LEDGER_BACKEND}（可用：{', '.join(LEDGER_BACKENDS)}）")
        return False

    if LEDGER_POOL_SIZE < 1:
        print("❌ 連線池大小必須大於 0")
        return False

    if LEDGER_QUERY_TIMEOUT < 0:
        print("❌ 操作逾時不能為負數")
        return False

    for dir_path in (DBS_DIR, LOGS_DIR, EXPORT_DIR):
        if not os.path.isdir(dir_path):
            print(f"❌ 必要目錄不存在：{dir_path}")
            return False

    print("✅ 配置驗證通過")
    return True


def print_config_info():
    """顯示當前配置資訊，用於除錯和確認設定"""
    print("=" * 60)
    print("🔧 Group Activity Bot - 配置資訊")
    print("=" * 60)
    print(f"📁 專案根目錄：{PROJECT_ROOT}")
    print(f"🗄️  資料庫目錄：{DBS_DIR}")
    print(f"📝 日誌目錄：{LOGS_DIR}")
    print(f"📤 匯出目錄：{EXPORT_DIR}")
    print("\n📊 活躍度帳本設定：")
    print(f"   • 儲存後端：{LEDGER_BACKEND}")
    print(f"   • 資料庫：{LEDGER_DB_PATH}")
    print(f"   • 連線池大小：{LEDGER_POOL_SIZE}")
    print(f"   • 操作逾時：{LEDGER_QUERY_TIMEOUT} 秒")
    print("=" * 60)


if __name__ == "__main__":
    print_config_info()
    validate_config()

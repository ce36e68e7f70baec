# =============================================================================
# Group Activity Bot - 主程式檔案
# =============================================================================
# 功能說明：
# - 載入環境變數與日誌系統
# - 建立並註冊活躍度帳本服務
# - 載入活躍度 Cog 並同步斜線指令
# - 關閉時清理所有服務（關閉資料庫連線）
# =============================================================================

from __future__ import annotations
import os, sys, logging, logging.handlers, asyncio
from typing import List
from dotenv import load_dotenv
import discord
from discord.ext import commands
from discord.ext.commands import errors as command_errors

# =============================================================================
# 1️⃣ 全域常量
# =============================================================================
# 專案根目錄設定
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
os.environ.setdefault("PROJECT_ROOT", PROJECT_ROOT)

# =============================================================================
# 2️⃣ 環境變數載入
# =============================================================================
def _load_environment() -> str:
    """
    載入環境變數檔案

    支援的檔案：
    - .env.production（生產環境）
    - .env.development（開發環境）
    - .env（通用）

    回傳：當前環境名稱
    """
    env = os.getenv("ENVIRONMENT", "development")
    print(f"🌍 [環境] 當前環境：{env}")

    env_files = [".env.production", ".env"] if env == "production" else [".env.development", ".env"]

    for env_file in env_files:
        candidate = os.path.join(PROJECT_ROOT, env_file)
        if os.path.exists(candidate):
            load_dotenv(candidate)
            print(f"✅ [環境] 已載入環境檔案：{candidate}")
            return env

    print("⚠️  [環境] 找不到 .env 檔案，將使用系統環境變數")
    return env

# config 在匯入時讀取 LEDGER_* 環境變數，必須在 .env 載入之後匯入
ENV = _load_environment()

import config  # noqa: E402
from core.base_service import service_registry  # noqa: E402
from services.ledger import ActivityLedgerService  # noqa: E402

# =============================================================================
# 3️⃣ 日誌系統設定
# =============================================================================
def _get_logger(name: str, file: str, level: int = logging.INFO) -> logging.Logger:
    """
    建立具備輪轉功能的日誌記錄器

    參數：
        name: 日誌記錄器名稱
        file: 日誌檔案名稱
        level: 日誌等級

    特性：
    - 自動輪轉（5MB 一個檔案，保留 3 個備份）
    - UTF-8 編碼支援
    - 統一的時間格式
    """
    formatter = logging.Formatter(config.LOG_FORMAT, datefmt=config.LOG_DATE_FORMAT)

    handler = logging.handlers.RotatingFileHandler(
        os.path.join(config.LOGS_DIR, file),
        encoding="utf-8",
        maxBytes=config.LOG_MAX_BYTES,
        backupCount=config.LOG_BACKUP_COUNT
    )
    handler.setFormatter(formatter)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # 避免重複添加處理器
    if not logger.handlers:
        logger.addHandler(handler)

    return logger

# 主要日誌記錄器
logger = _get_logger("main", "main.log")
error_logger = _get_logger("main_error", "main_error.log", level=logging.ERROR)

# 各層的日誌分檔記錄
for _name, _file in (("services", "ledger.log"), ("core", "core.log"), ("cogs", "cogs.log")):
    _get_logger(_name, _file)

print("📝 [日誌] 日誌系統已初始化")

# =============================================================================
# 4️⃣ Discord Intents 設定
# =============================================================================
def _setup_intents() -> discord.Intents:
    """
    設定 Discord Bot 的權限意圖

    權限說明：
    - message_content: 讀取訊息內容
    - guilds: 讀取伺服器資訊
    """
    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    return intents

COGS: List[str] = ["cogs.activity_ledger"]

# =============================================================================
# 5️⃣ Bot 主類別
# =============================================================================
class GroupActivityBot(commands.Bot):
    """
    Group Activity Bot 主類別

    啟動時建立唯一的活躍度帳本服務並交給 Cog 使用，關閉時統一清理
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.ledger_service: ActivityLedgerService | None = None

    async def setup_hook(self):
        """
        Bot 啟動時的初始化程序

        流程：
        1. 建立並註冊活躍度帳本服務
        2. 載入 Cog 模組
        3. 開發模式下同步斜線指令
        """
        print("🚀 [Bot] 開始初始化...")

        await self._initialize_ledger_service()

        for module_name in COGS:
            try:
                await self.load_extension(module_name)
                print(f"   ✅ {module_name}")
                logger.info(f"模組載入成功：{module_name}")
            except command_errors.ExtensionError:
                print(f"❌ 模組載入失敗：{module_name}")
                error_logger.exception(f"模組載入失敗：{module_name}")
                raise

        if ENV != "production":
            try:
                synced = await self.tree.sync()
                print(f"✅ [Bot] 已同步 {len(synced)} 個斜線指令")
                logger.info(f"開發模式同步指令：{len(synced)} 個")
            except discord.HTTPException:
                error_logger.exception("斜線指令同步失敗")

        print("✅ [Bot] 初始化完成")

    async def _initialize_ledger_service(self):
        """建立帳本服務；初始化失敗時終止程序"""
        if not config.validate_config():
            sys.exit(1)

        self.ledger_service = ActivityLedgerService(config_dict=config.get_ledger_config())
        await self.ledger_service.register()

        if not await self.ledger_service.initialize():
            print("❌ [服務] 活躍度帳本服務初始化失敗")
            error_logger.error("活躍度帳本服務初始化失敗")
            sys.exit(1)

        print(f"   ✅ 活躍度帳本服務已初始化（後端：{self.ledger_service.store.backend}）")

    async def close(self):
        """Bot 關閉時的清理程序"""
        print("🛑 [Bot] 開始關閉程序...")
        await service_registry.cleanup_all_services()
        await super().close()
        print("✅ [Bot] 關閉完成")

# =============================================================================
# 6️⃣ Bot 實例與事件處理
# =============================================================================
bot = GroupActivityBot(
    command_prefix=commands.when_mentioned_or("!"),
    intents=_setup_intents(),
    help_command=None
)

@bot.event
async def on_ready():
    """Bot 就緒事件處理"""
    if bot.user:
        print(f"🤖 Bot 已就緒：{bot.user.name}（{bot.user.id}），所在伺服器 {len(bot.guilds)} 個")
        logger.info(f"Bot 就緒：{bot.user.name} ({bot.user.id})")

# =============================================================================
# 7️⃣ 主程式進入點
# =============================================================================
async def _run():
    """
    主程式執行函數

    功能：
    - 驗證 Token
    - 啟動 Bot
    - 處理啟動錯誤
    """
    token = os.getenv("DISCORD_TOKEN") or os.getenv("TOKEN")
    if not token:
        print("❌ 找不到 Discord Bot Token")
        print("🔧 請在 .env 檔案中設定 DISCORD_TOKEN=your_token_here")
        sys.exit(1)

    print("🚀 正在啟動 Bot...")

    try:
        async with bot:
            await bot.start(token)
    except discord.LoginFailure:
        print("❌ Discord Token 無效")
        sys.exit(1)
    except discord.HTTPException as exc:
        print(f"❌ Discord API 錯誤：{exc.status} - {exc.text}")
        error_logger.exception("Bot 連線失敗")
        sys.exit(1)

if __name__ == "__main__":
    if sys.version_info < (3, 9):
        print("❌ 需要 Python 3.9 或更高版本")
        sys.exit(1)

    print("🎯 Group Activity Bot 啟動中...")
    print(f"📁 專案路徑：{PROJECT_ROOT}")

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        print("\n🛑 收到中斷信號，正在關閉...")

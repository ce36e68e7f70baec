# activity_ledger.py - 群組活躍度統計
# ============================================================
# 主要功能：
#  - 監聽伺服器訊息，記錄每位成員的訊息數
#  - /groupstats：群組活躍度摘要與排行榜
#  - /userstats：單一成員佔總訊息數的百分比
#  - /exportstats：匯出 participant,count CSV 檔案
#
# 所有統計都經由 ActivityLedgerService 取得，Cog 只負責 Discord 互動
# ============================================================

import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from config import get_ledger_config
from core.base_service import service_registry
from core.exceptions import BotError, discord_error_handler
from services.ledger import ActivityLedgerService

logger = logging.getLogger('cogs.activity_ledger')

SERVICE_NAME = "ActivityLedgerService"

# 回覆文字
GROUPS_ONLY_MESSAGE = "This bot is only useful in groups."
NO_DATA_MESSAGE = "You first have to write some messages..."
MISSING_USER_MESSAGE = "You did not indicate any user, use /userstats <username>"
UNKNOWN_USER_MESSAGE = "User {username} does not exist or has not written anything in here..."


class ActivityLedgerCog(commands.Cog):
    """
    群組活躍度 Cog

    服務可由建構參數注入；未注入時於 cog_load 從服務註冊表取得，
    註冊表中也沒有時依 config 自行建立並註冊
    """

    def __init__(self, bot: commands.Bot, ledger_service: Optional[ActivityLedgerService] = None):
        self.bot = bot
        self.ledger_service = ledger_service
        logger.info("ActivityLedgerCog 初始化完成")

    async def cog_load(self) -> None:
        """Cog 載入時取得並初始化帳本服務"""
        if self.ledger_service is None:
            if service_registry.is_registered(SERVICE_NAME):
                self.ledger_service = service_registry.get_service(SERVICE_NAME)
                logger.info("從服務註冊表獲取 ActivityLedgerService")
            else:
                logger.info("未找到已註冊的 ActivityLedgerService，自行初始化")
                self.ledger_service = ActivityLedgerService(config_dict=get_ledger_config())
                await self.ledger_service.register()

        if not self.ledger_service.is_initialized:
            await self.ledger_service.initialize()

        logger.info(f"ActivityLedgerCog 已就緒（後端：{self.ledger_service.store.backend}）")

    @property
    def ready(self) -> bool:
        return self.ledger_service is not None and self.ledger_service.is_initialized

    # ===== 事件處理 =====

    @commands.Cog.listener("on_message")
    async def on_message(self, message: discord.Message):
        """記錄伺服器中的一則訊息"""
        # 忽略機器人訊息和私人訊息
        if message.author.bot or message.guild is None:
            return

        if not self.ready:
            return

        participant = message.author.name
        if not participant or not participant.strip():
            return

        try:
            await self.ledger_service.record_message(message.guild.id, participant)
        except BotError as e:
            logger.error(f"記錄訊息失敗（伺服器 {message.guild.id}，成員 {participant}）：{e}")

    # ===== 斜線指令 =====

    @app_commands.command(name="groupstats", description="查看群組活躍度排行榜")
    async def groupstats(self, interaction: discord.Interaction):
        await self._send_group_stats(interaction)

    @app_commands.command(name="userstats", description="查看成員佔總訊息數的百分比")
    @app_commands.describe(username="成員名稱")
    async def userstats(self, interaction: discord.Interaction, username: Optional[str] = None):
        await self._send_user_stats(interaction, username)

    @app_commands.command(name="exportstats", description="匯出群組活躍度 CSV")
    async def exportstats(self, interaction: discord.Interaction):
        await self._send_export(interaction)

    # ===== 指令處理器 =====

    @discord_error_handler()
    async def _send_group_stats(self, interaction: discord.Interaction):
        if interaction.guild is None:
            await interaction.response.send_message(GROUPS_ONLY_MESSAGE)
            return

        summary = await self.ledger_service.group_summary_text(interaction.guild.id)
        await interaction.response.send_message(summary or NO_DATA_MESSAGE)

    @discord_error_handler()
    async def _send_user_stats(self, interaction: discord.Interaction, username: Optional[str]):
        if interaction.guild is None:
            await interaction.response.send_message(GROUPS_ONLY_MESSAGE)
            return

        group_id = interaction.guild.id
        if await self.ledger_service.group_total(group_id) is None:
            await interaction.response.send_message(NO_DATA_MESSAGE)
            return

        username = (username or "").strip()
        if not username:
            await interaction.response.send_message(MISSING_USER_MESSAGE)
            return

        share_text = await self.ledger_service.participant_share_text(group_id, username)
        if share_text is None:
            await interaction.response.send_message(UNKNOWN_USER_MESSAGE.format(username=username))
            return

        await interaction.response.send_message(f"{username}: {share_text}")

    @discord_error_handler()
    async def _send_export(self, interaction: discord.Interaction):
        if interaction.guild is None:
            await interaction.response.send_message(GROUPS_ONLY_MESSAGE)
            return

        path = await self.ledger_service.export_csv(interaction.guild.id)
        if path is None:
            await interaction.response.send_message(NO_DATA_MESSAGE)
            return

        await interaction.response.send_message(file=discord.File(str(path), filename=path.name))
        logger.info(f"已傳送伺服器 {interaction.guild.id} 的活躍度匯出檔")


# ────────────────────────────
# setup
# ────────────────────────────
async def setup(bot: commands.Bot):
    """設定 ActivityLedgerCog"""
    logger.info("執行 activity_ledger setup()")
    await bot.add_cog(ActivityLedgerCog(bot))

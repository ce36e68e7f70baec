"""
活躍度 Cog 整合測試

以模擬的 Discord 物件驅動 Cog，驗證訊息記錄與三個斜線指令的回覆
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

import config
from cogs import activity_ledger
from cogs.activity_ledger import (
    GROUPS_ONLY_MESSAGE,
    MISSING_USER_MESSAGE,
    NO_DATA_MESSAGE,
    ActivityLedgerCog,
    setup
)
from core.base_service import service_registry
from core.exceptions import LedgerStorageError
from services.ledger import ActivityLedgerService, InMemoryActivityStore
from test_utils.discord_mocks import (
    MockMember,
    create_message,
    create_mock_guild_with_members,
    create_test_interaction
)

pytestmark = pytest.mark.integration


@pytest_asyncio.fixture
async def cog(ledger_service):
    cog = ActivityLedgerCog(MagicMock(), ledger_service=ledger_service)
    await cog.cog_load()
    return cog


@pytest.fixture
def guild():
    return create_mock_guild_with_members(42)


async def _send_messages(cog, guild, counts):
    members = {member.name: member for member in guild.members}
    for name, count in counts.items():
        for _ in range(count):
            await cog.on_message(create_message(guild, members[name]))


class TestMessageListener:
    """測試訊息記錄"""

    @pytest.mark.asyncio
    async def test_guild_messages_are_counted(self, cog, guild, sample_counts):
        await _send_messages(cog, guild, sample_counts)

        assert await cog.ledger_service.group_total(42) == 21

    @pytest.mark.asyncio
    async def test_bots_and_direct_messages_are_ignored(self, cog, guild):
        bot_author = MockMember(1, "helper_bot", bot=True)
        human = MockMember(2, "alice")

        await cog.on_message(create_message(guild, bot_author))
        await cog.on_message(create_message(None, human))

        assert await cog.ledger_service.group_total(42) is None

    @pytest.mark.asyncio
    async def test_blank_handles_are_ignored(self, cog, guild):
        await cog.on_message(create_message(guild, MockMember(3, "   ")))

        assert await cog.ledger_service.group_total(42) is None

    @pytest.mark.asyncio
    async def test_storage_failure_is_logged_not_raised(self, cog, guild):
        cog.ledger_service.record_message = AsyncMock(side_effect=LedgerStorageError("record_message", "disk full"))

        await cog.on_message(create_message(guild, guild.members[0]))

        cog.ledger_service.record_message.assert_awaited_once_with(42, "alice")


class TestGroupStats:
    """測試 /groupstats"""

    @pytest.mark.asyncio
    async def test_summary(self, cog, guild, sample_counts):
        await _send_messages(cog, guild, sample_counts)
        interaction = create_test_interaction(guild)

        await cog.groupstats.callback(cog, interaction)

        assert interaction.last_content == (
            f"Since {cog.ledger_service.since_text}\n"
            "Total Messages: 21\n\n"
            "🥇 alice 47.62\n🥈 carol 33.33\n🥉 bob 14.29\ndave 4.76"
        )

    @pytest.mark.asyncio
    async def test_no_data(self, cog, guild):
        interaction = create_test_interaction(guild)

        await cog.groupstats.callback(cog, interaction)

        assert interaction.last_content == NO_DATA_MESSAGE

    @pytest.mark.asyncio
    async def test_outside_guild(self, cog):
        interaction = create_test_interaction(None)

        await cog.groupstats.callback(cog, interaction)

        assert interaction.last_content == GROUPS_ONLY_MESSAGE


class TestUserStats:
    """測試 /userstats"""

    @pytest.mark.asyncio
    async def test_known_user(self, cog, guild, sample_counts):
        await _send_messages(cog, guild, sample_counts)
        interaction = create_test_interaction(guild)

        await cog.userstats.callback(cog, interaction, "bob")

        assert interaction.last_content == "bob: 14.29%"

    @pytest.mark.asyncio
    async def test_unknown_user(self, cog, guild, sample_counts):
        await _send_messages(cog, guild, sample_counts)
        interaction = create_test_interaction(guild)

        await cog.userstats.callback(cog, interaction, "mallory")

        assert interaction.last_content == "User mallory does not exist or has not written anything in here..."

    @pytest.mark.asyncio
    async def test_missing_username(self, cog, guild, sample_counts):
        await _send_messages(cog, guild, sample_counts)
        interaction = create_test_interaction(guild)

        await cog.userstats.callback(cog, interaction, None)

        assert interaction.last_content == MISSING_USER_MESSAGE

    @pytest.mark.asyncio
    async def test_empty_group(self, cog, guild):
        interaction = create_test_interaction(guild)

        await cog.userstats.callback(cog, interaction, "bob")

        assert interaction.last_content == NO_DATA_MESSAGE

    @pytest.mark.asyncio
    async def test_outside_guild(self, cog):
        interaction = create_test_interaction(None)

        await cog.userstats.callback(cog, interaction, "bob")

        assert interaction.last_content == GROUPS_ONLY_MESSAGE


class TestExportStats:
    """測試 /exportstats"""

    @pytest.mark.asyncio
    async def test_uploads_csv(self, cog, guild, sample_counts, tmp_path, monkeypatch):
        monkeypatch.setattr(config, "EXPORT_DIR", str(tmp_path))
        await _send_messages(cog, guild, sample_counts)
        interaction = create_test_interaction(guild)

        await cog.exportstats.callback(cog, interaction)

        uploaded = interaction.replies[-1]["file"]
        try:
            assert uploaded.filename == "activity_42.csv"
        finally:
            uploaded.close()
        assert (tmp_path / "activity_42.csv").read_text(encoding="utf-8").splitlines() == [
            "participant,count",
            "alice,10",
            "carol,7",
            "bob,3",
            "dave,1",
        ]

    @pytest.mark.asyncio
    async def test_no_data(self, cog, guild):
        interaction = create_test_interaction(guild)

        await cog.exportstats.callback(cog, interaction)

        assert interaction.last_content == NO_DATA_MESSAGE

    @pytest.mark.asyncio
    async def test_storage_error_reply(self, cog, guild):
        cog.ledger_service.export_csv = AsyncMock(side_effect=LedgerStorageError("export_rows", "disk full"))
        interaction = create_test_interaction(guild)

        await cog.exportstats.callback(cog, interaction)

        assert interaction.last_content == "活躍度統計暫時無法使用，請稍後再試。"


class TestCogLoading:
    """測試 Cog 載入與服務取得"""

    @pytest.mark.asyncio
    async def test_service_from_registry(self):
        service = ActivityLedgerService(store=InMemoryActivityStore())
        await service_registry.register_service(service, "ActivityLedgerService")

        cog = ActivityLedgerCog(MagicMock())
        await cog.cog_load()

        assert cog.ledger_service is service
        assert service.is_initialized
        await service.cleanup()

    @pytest.mark.asyncio
    async def test_service_built_from_config(self, monkeypatch):
        monkeypatch.setattr(activity_ledger, "get_ledger_config", lambda: {'backend': 'memory'})

        cog = ActivityLedgerCog(MagicMock())
        await cog.cog_load()

        assert cog.ready
        assert service_registry.get_service("ActivityLedgerService") is cog.ledger_service
        assert cog.ledger_service.store.backend == "memory"
        await cog.ledger_service.cleanup()

    @pytest.mark.asyncio
    async def test_setup_adds_cog(self):
        bot = MagicMock()
        bot.add_cog = AsyncMock()

        await setup(bot)

        added = bot.add_cog.await_args.args[0]
        assert isinstance(added, ActivityLedgerCog)

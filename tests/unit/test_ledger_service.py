"""
活躍度帳本服務單元測試

每個測試以 memory 與 sqlite 兩種後端各執行一次（見 conftest.ledger_service）
"""

import asyncio
import csv
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.exceptions import (
    DatabaseQueryError,
    LedgerStorageError,
    LedgerTimeoutError,
    ServiceError,
    ValidationError
)
from services.ledger import ActivityLedgerService, InMemoryActivityStore, create_activity_store
from services.ledger.storage import ActivityStore


class TestSampleGroup:
    """群組 42：alice 10、bob 3、carol 7、dave 1"""

    @pytest.mark.asyncio
    async def test_total(self, sample_ledger):
        assert await sample_ledger.group_total(42) == 21

    @pytest.mark.asyncio
    async def test_ranked(self, sample_ledger):
        ranked = await sample_ledger.ranked(42)

        assert [(name, round(share, 2)) for name, share in ranked] == [
            ("alice", 47.62),
            ("carol", 33.33),
            ("bob", 14.29),
            ("dave", 4.76),
        ]

    @pytest.mark.asyncio
    async def test_participant_share_text(self, sample_ledger):
        assert await sample_ledger.participant_share_text(42, "bob") == "14.29%"

    @pytest.mark.asyncio
    async def test_percent_distribution_sums_to_hundred(self, sample_ledger):
        shares = await sample_ledger.percent_distribution(42)

        assert set(shares) == {"alice", "bob", "carol", "dave"}
        assert sum(shares.values()) == pytest.approx(100.0, abs=0.01)

    @pytest.mark.asyncio
    async def test_percent_for(self, sample_ledger):
        assert await sample_ledger.percent_for(42, "alice") == 100.0 * 10 / 21
        assert await sample_ledger.percent_for(42, "nobody") is None

    @pytest.mark.asyncio
    async def test_group_distribution_text(self, sample_ledger):
        assert await sample_ledger.group_distribution_text(42) == (
            "🥇 alice 47.62\n🥈 carol 33.33\n🥉 bob 14.29\ndave 4.76"
        )
        assert await sample_ledger.group_distribution_text(42, decorated=False) == (
            "alice 47.62\ncarol 33.33\nbob 14.29\ndave 4.76"
        )

    @pytest.mark.asyncio
    async def test_group_summary_text(self, sample_ledger):
        summary = await sample_ledger.group_summary_text(42)

        header, ranking = summary.split("\n\n", 1)
        assert header == f"Since {sample_ledger.since_text}\nTotal Messages: 21"
        assert ranking.startswith("🥇 alice 47.62")

    @pytest.mark.asyncio
    async def test_reads_are_idempotent(self, sample_ledger):
        first = await sample_ledger.ranked(42)
        second = await sample_ledger.ranked(42)

        assert first == second
        assert await sample_ledger.group_total(42) == await sample_ledger.group_total(42)

    @pytest.mark.asyncio
    async def test_export_rows(self, sample_ledger):
        snapshot = await sample_ledger.export_rows(42)
        await sample_ledger.record_message(42, "erin")

        expected = [("alice", 10), ("carol", 7), ("bob", 3), ("dave", 1)]
        assert list(snapshot) == expected
        assert list(snapshot) == expected

    @pytest.mark.asyncio
    async def test_export_csv(self, sample_ledger, tmp_path):
        path = await sample_ledger.export_csv(42, directory=tmp_path)

        assert path == tmp_path / "activity_42.csv"
        with path.open(encoding="utf-8", newline="") as f:
            rows = list(csv.reader(f))
        assert rows == [
            ["participant", "count"],
            ["alice", "10"],
            ["carol", "7"],
            ["bob", "3"],
            ["dave", "1"],
        ]


class TestUnknownGroup:
    """從未出現過的群組一律返回 None"""

    @pytest.mark.asyncio
    async def test_every_query_is_not_found(self, sample_ledger, tmp_path):
        assert await sample_ledger.group_total(99) is None
        assert await sample_ledger.percent_distribution(99) is None
        assert await sample_ledger.percent_for(99, "alice") is None
        assert await sample_ledger.ranked(99) is None
        assert await sample_ledger.group_distribution_text(99) is None
        assert await sample_ledger.participant_share_text(99, "alice") is None
        assert await sample_ledger.group_summary_text(99) is None
        assert await sample_ledger.export_rows(99) is None
        assert await sample_ledger.export_csv(99, directory=tmp_path) is None


class TestRecording:
    """測試訊息記錄"""

    @pytest.mark.asyncio
    async def test_total_equals_number_of_records(self, ledger_service):
        for index in range(17):
            await ledger_service.record_message(7, f"user_{index % 5}")

        assert await ledger_service.group_total(7) == 17

    @pytest.mark.asyncio
    async def test_ties_are_deterministic(self, ledger_service):
        for name in ("zoe", "adam", "mike", "mike"):
            await ledger_service.record_message(7, name)

        assert await ledger_service.ranked(7) == [("mike", 50.0), ("adam", 25.0), ("zoe", 25.0)]

    @pytest.mark.asyncio
    async def test_extreme_group_ids(self, ledger_service):
        await ledger_service.record_message(-(2 ** 63), "alice")
        await ledger_service.record_message(2 ** 63 - 1, "bob")

        assert await ledger_service.group_total(-(2 ** 63)) == 1
        assert await ledger_service.group_total(2 ** 63 - 1) == 1

    @pytest.mark.asyncio
    @pytest.mark.concurrency
    async def test_concurrent_coroutines(self, ledger_service):
        await asyncio.gather(*(ledger_service.record_message(8, "alice") for _ in range(40)))

        assert await ledger_service.group_total(8) == 40
        assert await ledger_service.percent_for(8, "alice") == 100.0


class TestValidation:
    """無效輸入在帳本入口被拒絕"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("participant", ["", "   ", None, 123])
    async def test_invalid_participant(self, ledger_service, participant):
        with pytest.raises(ValidationError) as exc_info:
            await ledger_service.record_message(42, participant)

        assert exc_info.value.field == "participant"
        assert await ledger_service.group_total(42) is None

    @pytest.mark.asyncio
    async def test_participant_not_encodable_as_utf8(self, ledger_service):
        with pytest.raises(ValidationError) as exc_info:
            await ledger_service.record_message(42, "bad\ud800name")

        assert exc_info.value.field == "participant"
        assert await ledger_service.group_total(42) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("group_id", [2 ** 63, -(2 ** 63) - 1, "42", 4.2, True])
    async def test_invalid_group(self, ledger_service, group_id):
        with pytest.raises(ValidationError) as exc_info:
            await ledger_service.record_message(group_id, "alice")

        assert exc_info.value.field == "group_id"

    @pytest.mark.asyncio
    async def test_queries_validate_group(self, ledger_service):
        with pytest.raises(ValidationError):
            await ledger_service.group_total(2 ** 64)


class TestLifecycle:
    """測試服務生命週期"""

    @pytest.mark.asyncio
    async def test_not_initialized(self):
        service = ActivityLedgerService(store=InMemoryActivityStore())

        with pytest.raises(ServiceError):
            await service.record_message(42, "alice")

    @pytest.mark.asyncio
    async def test_default_store_from_config(self):
        service = ActivityLedgerService(config_dict={'backend': 'memory'})

        assert isinstance(service.store, InMemoryActivityStore)

    @pytest.mark.asyncio
    async def test_cleanup_closes_store(self):
        store = InMemoryActivityStore()
        store.close = AsyncMock()
        service = ActivityLedgerService(store=store)

        await service.initialize()
        await service.cleanup()

        store.close.assert_awaited_once()
        assert not service.is_initialized

    @pytest.mark.asyncio
    async def test_since_text_uses_configured_format(self):
        service = ActivityLedgerService(
            store=InMemoryActivityStore(),
            config_dict={'start_date_format': '%Y'}
        )
        await service.initialize()

        assert service.since_text == service.started_at.astimezone(service.timezone).strftime('%Y')

    @pytest.mark.asyncio
    async def test_health_check(self, ledger_service):
        await ledger_service.record_message(1, "alice")

        health = await ledger_service.health_check()

        assert health["status"] == "healthy"
        assert health["backend"] == ledger_service.store.backend
        assert health["groups"] == 1

    @pytest.mark.asyncio
    async def test_sqlite_database_is_a_dependency(self, sqlite_db_path):
        store = create_activity_store("sqlite", db_path=sqlite_db_path)
        service = ActivityLedgerService(store=store)

        assert service.get_dependency("DatabaseManager") is store.db_manager
        assert not store.db_manager.is_initialized

        await service.initialize()
        try:
            assert store.db_manager.is_initialized
            health = await service.health_check()
            assert health["dependencies"] == ["DatabaseManager"]
            assert health["database_path"] == store.db_manager.db_path
        finally:
            await service.cleanup()

        assert not store.db_manager.is_initialized

    @pytest.mark.asyncio
    async def test_memory_backend_has_no_dependencies(self):
        service = ActivityLedgerService(store=InMemoryActivityStore())

        assert service.get_dependency("DatabaseManager") is None
        assert "database_path" not in await service.health_check()


class TestStorageFailures:
    """儲存層錯誤轉為 LedgerStorageError"""

    @staticmethod
    async def _service_with_store(store) -> ActivityLedgerService:
        service = ActivityLedgerService(store=store)
        await service.initialize()
        return service

    @pytest.mark.asyncio
    async def test_database_error_is_wrapped(self):
        store = MagicMock(spec=ActivityStore)
        store.backend = "sqlite"
        store.open = AsyncMock()
        store.record = AsyncMock(side_effect=DatabaseQueryError("INSERT", "disk I/O error"))
        service = await self._service_with_store(store)

        with pytest.raises(LedgerStorageError) as exc_info:
            await service.record_message(42, "alice")

        assert exc_info.value.operation == "record_message"
        assert isinstance(exc_info.value.__cause__, DatabaseQueryError)

    @pytest.mark.asyncio
    async def test_timeout_passes_through(self):
        store = MagicMock(spec=ActivityStore)
        store.backend = "sqlite"
        store.open = AsyncMock()
        store.total = AsyncMock(side_effect=LedgerTimeoutError("total", 1.0))
        service = await self._service_with_store(store)

        with pytest.raises(LedgerTimeoutError):
            await service.group_total(42)

    @pytest.mark.asyncio
    async def test_unexpected_store_error_is_wrapped(self):
        store = MagicMock(spec=ActivityStore)
        store.backend = "sqlite"
        store.open = AsyncMock()
        store.distribution = AsyncMock(side_effect=UnicodeEncodeError("utf-8", "x", 0, 1, "surrogates not allowed"))
        service = await self._service_with_store(store)

        with pytest.raises(LedgerStorageError) as exc_info:
            await service.ranked(42)

        assert exc_info.value.operation == "group_distribution"
        assert isinstance(exc_info.value.__cause__, UnicodeEncodeError)


@pytest.mark.concurrency
def test_concurrent_threads_on_memory_backend():
    """多個執行緒各自的事件迴圈同時寫入同一個行程內帳本"""
    service = ActivityLedgerService(store=InMemoryActivityStore())
    asyncio.run(service.initialize())

    def worker(_):
        async def record_many():
            for _ in range(200):
                await service.record_message(5, "alice")
        asyncio.run(record_many())

    with ThreadPoolExecutor(max_workers=8) as executor:
        list(executor.map(worker, range(8)))

    assert asyncio.run(service.group_total(5)) == 1600

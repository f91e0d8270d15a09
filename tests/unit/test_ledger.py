"""
Unit Tests - Unavailability Ledger
"""
from datetime import timedelta
import pytest

from marketcache.storage.gateway import SymbolKey
from marketcache.storage.ledger import MAX_ERROR_MESSAGE_LENGTH, UnavailabilityLedger


class TestUnavailabilityLedger:
    """Tests for UnavailabilityLedger over the in-memory gateway."""

    @pytest.fixture
    def ledger(self, storage, clock):
        return UnavailabilityLedger(storage, clock=clock)

    @pytest.fixture
    def key(self):
        return SymbolKey("xyz", "lse")

    def test_key_is_normalised(self, key):
        assert key.ticker == "XYZ"
        assert key.exchange_code == "LSE"
        assert str(key) == "XYZ.LSE"
        assert key == SymbolKey("XYZ", "LSE")

    @pytest.mark.asyncio
    async def test_first_failure_inserts(self, ledger, key, clock):
        record = await ledger.mark_failed(key, "No fundamentals data")

        assert record.failure_count == 1
        assert record.first_failed_at == clock.now
        assert record.last_attempted_at == clock.now
        assert await ledger.is_marked(key) is True

    @pytest.mark.asyncio
    async def test_repeat_failure_increments(self, ledger, key, clock):
        await ledger.mark_failed(key, "first")
        first_failed = clock.now
        clock.advance(days=1)

        record = await ledger.mark_failed(key, "second")

        assert record.failure_count == 2
        assert record.first_failed_at == first_failed
        assert record.last_attempted_at == clock.now
        assert record.last_error_message == "second"

    @pytest.mark.asyncio
    async def test_message_is_truncated(self, ledger, key):
        record = await ledger.mark_failed(key, "x" * 5000)
        assert len(record.last_error_message) == MAX_ERROR_MESSAGE_LENGTH

    @pytest.mark.asyncio
    async def test_clear_is_idempotent(self, ledger, key):
        await ledger.mark_failed(key, "gone")

        assert await ledger.clear(key) is True
        assert await ledger.clear(key) is False
        assert await ledger.is_marked(key) is False

    @pytest.mark.asyncio
    async def test_clear_then_fail_restarts_count(self, ledger, key):
        await ledger.mark_failed(key, "a")
        await ledger.mark_failed(key, "b")
        await ledger.clear(key)

        record = await ledger.mark_failed(key, "c")
        assert record.failure_count == 1

    @pytest.mark.asyncio
    async def test_marked_tickers_and_listing(self, ledger):
        await ledger.mark_failed(SymbolKey("AAA", "LSE"), "x")
        await ledger.mark_failed(SymbolKey("BBB", "LSE"), "x")
        await ledger.mark_failed(SymbolKey("CCC", "US"), "x")

        assert await ledger.marked_tickers("LSE") == {"AAA", "BBB"}
        records = await ledger.list_for_exchange("LSE")
        assert [r.ticker for r in records] == ["AAA", "BBB"]

    @pytest.mark.asyncio
    async def test_records_never_expire_by_default(self, ledger, key, clock):
        await ledger.mark_failed(key, "x")
        clock.advance(days=3650)
        assert await ledger.is_marked(key) is True
        assert await ledger.marked_tickers("LSE") == {"XYZ"}

    @pytest.mark.asyncio
    async def test_retry_after_ages_records_out(self, storage, clock, key):
        ledger = UnavailabilityLedger(storage, retry_after=timedelta(days=30), clock=clock)
        await ledger.mark_failed(key, "x")

        clock.advance(days=29)
        assert await ledger.is_marked(key) is True

        clock.advance(days=2)
        assert await ledger.is_marked(key) is False
        assert await ledger.marked_tickers("LSE") == set()
        # The record itself survives so the count keeps going
        assert (await ledger.mark_failed(key, "y")).failure_count == 2

"""
Unit Tests - SQL Storage Gateway
Per-call session handling and row mapping over a mocked session factory.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
import pytest

from marketcache.data_providers.models import Exchange
from marketcache.db.models import CachedExchange, UnavailableSymbol
from marketcache.storage.gateway import SymbolKey, SymbolQuery
from marketcache.storage.sql import SqlStorageGateway


NOW = datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)


class FakeSessionContext:
    def __init__(self, session):
        self.session = session

    async def __aenter__(self):
        return self.session

    async def __aexit__(self, *exc):
        return False


class TestSqlStorageGateway:
    """Tests for SqlStorageGateway."""

    @pytest.fixture
    def session(self):
        db = AsyncMock()
        db.execute = AsyncMock()
        db.flush = AsyncMock()
        db.commit = AsyncMock()
        db.rollback = AsyncMock()
        db.add = MagicMock()
        return db

    @pytest.fixture
    def gateway(self, session):
        return SqlStorageGateway(MagicMock(side_effect=lambda: FakeSessionContext(session)))

    def _rows(self, session, rows):
        result = MagicMock()
        result.scalars.return_value.all.return_value = rows
        session.execute.return_value = result

    @pytest.mark.asyncio
    async def test_get_exchanges_empty(self, gateway, session):
        self._rows(session, [])
        assert await gateway.get_exchanges() is None
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_exchange_list_freshness_is_oldest_row(self, gateway, session):
        self._rows(session, [
            CachedExchange(code="LSE", name="London", fetched_at=NOW - timedelta(hours=2), ttl_seconds=86400),
            CachedExchange(code="US", name="USA", fetched_at=NOW.replace(tzinfo=None), ttl_seconds=86400),
        ])

        cached = await gateway.get_exchanges()

        assert [e.code for e in cached.payload] == ["LSE", "US"]
        assert cached.fetched_at == NOW - timedelta(hours=2)
        assert cached.ttl == timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_write_commits(self, gateway, session):
        self._rows(session, [])

        count = await gateway.replace_exchanges([Exchange(code="US", name="USA")], NOW, timedelta(hours=24))

        assert count == 1
        assert session.add.call_args[0][0].ttl_seconds == 86400
        session.commit.assert_awaited_once()
        session.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_rolls_back_and_raises(self, gateway, session):
        session.execute.side_effect = RuntimeError("connection lost")

        with pytest.raises(RuntimeError):
            await gateway.replace_exchanges([Exchange(code="US", name="USA")], NOW, timedelta(hours=24))

        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_symbols_without_rows(self, gateway, session):
        result = MagicMock()
        result.one.return_value = (0, None, None)
        session.execute.return_value = result

        assert await gateway.get_symbols(SymbolQuery(exchange_code="LSE")) is None

    @pytest.mark.asyncio
    async def test_mark_unavailable_returns_record(self, gateway, session):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        session.execute.return_value = result

        record = await gateway.mark_unavailable(SymbolKey("xyz", "lse"), "No data", NOW)

        assert record.ticker == "XYZ"
        assert record.failure_count == 1
        assert record.first_failed_at == NOW
        assert isinstance(session.add.call_args[0][0], UnavailableSymbol)

"""
Unit tests for PostgreSQLEntityStore.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from service_expenses.app.domain.models import Expense, Organization, User
from service_expenses.app.persistence.postgres import PostgreSQLEntityStore, SCHEMA
from shared.errors import AccessLayerException, EntityLookupError


class TestPostgreSQLEntityStore:
    """Test cases for PostgreSQLEntityStore."""

    @pytest.fixture
    def mock_conn(self):
        """Create mock connection."""
        conn = MagicMock()
        conn.fetchrow = AsyncMock()
        conn.fetchval = AsyncMock(return_value=1)
        conn.execute = AsyncMock()
        return conn

    @pytest.fixture
    def mock_pool(self, mock_conn):
        """Create mock pool handing out the mock connection."""
        pool = MagicMock()
        pool.acquire.return_value.__aenter__.return_value = mock_conn
        pool.close = AsyncMock()
        return pool

    @pytest.fixture
    def store(self, mock_pool):
        """Create store with the mock pool attached."""
        store = PostgreSQLEntityStore("postgres://test/expenses")
        store.pool = mock_pool
        return store

    @pytest.mark.asyncio
    async def test_start_creates_schema(self, mock_pool, mock_conn):
        """Test that start opens a pool and applies the schema."""
        store = PostgreSQLEntityStore("postgres://test/expenses")

        with patch("service_expenses.app.persistence.postgres.asyncpg.create_pool",
                   AsyncMock(return_value=mock_pool)) as create_pool:
            await store.start()

        create_pool.assert_called_once()
        mock_conn.execute.assert_called_once_with(SCHEMA)
        assert store.pool is mock_pool

    @pytest.mark.asyncio
    async def test_start_failure(self):
        """Test that an unreachable database fails startup."""
        store = PostgreSQLEntityStore("postgres://test/expenses")

        with patch("service_expenses.app.persistence.postgres.asyncpg.create_pool",
                   AsyncMock(side_effect=OSError("connection refused"))):
            with pytest.raises(AccessLayerException) as exc_info:
                await store.start()

        assert exc_info.value.code == "POSTGRES_START_FAILED"

    @pytest.mark.asyncio
    async def test_stop(self, store, mock_pool):
        """Test that stop closes the pool."""
        await store.stop()

        mock_pool.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_health_check(self, store, mock_conn):
        """Test health check."""
        assert await store.health_check() is True

        mock_conn.fetchval.side_effect = OSError("gone")
        assert await store.health_check() is False

    @pytest.mark.asyncio
    async def test_health_check_not_started(self):
        """Test health check before start."""
        assert await PostgreSQLEntityStore("postgres://test/expenses").health_check() is False

    @pytest.mark.asyncio
    async def test_user_by_email(self, store, mock_conn):
        """Test user lookup by credential."""
        mock_conn.fetchrow.return_value = {
            "id": 1, "email": "alice@foo.com", "title": "CEO", "organization_id": 1
        }

        user = await store.user_by_email("alice@foo.com")

        assert user == User(id=1, email="alice@foo.com", title="CEO", organization_id=1)
        query, email = mock_conn.fetchrow.call_args.args
        assert "WHERE email = $1" in query
        assert email == "alice@foo.com"

    @pytest.mark.asyncio
    async def test_user_not_found(self, store, mock_conn):
        """Test that a missing row is reported as not found."""
        mock_conn.fetchrow.return_value = None

        with pytest.raises(EntityLookupError) as exc_info:
            await store.user_by_id(99)

        assert exc_info.value.not_found is True

    @pytest.mark.asyncio
    async def test_lookup_store_failure(self, store, mock_conn):
        """Test that driver errors are reported as store failures."""
        mock_conn.fetchrow.side_effect = OSError("connection reset")

        with pytest.raises(EntityLookupError) as exc_info:
            await store.expense_by_id(1)

        assert exc_info.value.not_found is False
        assert exc_info.value.code == "ENTITY_STORE_ERROR"

    @pytest.mark.asyncio
    async def test_lookup_timeout(self, store, mock_conn):
        """Test that a command timeout is reported as a store failure."""
        mock_conn.fetchrow.side_effect = asyncio.TimeoutError()

        with pytest.raises(EntityLookupError) as exc_info:
            await store.user_by_email("alice@foo.com")

        assert exc_info.value.not_found is False

    @pytest.mark.asyncio
    async def test_lookup_not_started(self):
        """Test lookups before start."""
        store = PostgreSQLEntityStore("postgres://test/expenses")

        with pytest.raises(EntityLookupError) as exc_info:
            await store.organization_by_id(1)

        assert exc_info.value.not_found is False

    @pytest.mark.asyncio
    async def test_organization_by_id(self, store, mock_conn):
        """Test organization lookup."""
        mock_conn.fetchrow.return_value = {"id": 2, "name": "Bar Corp"}

        assert await store.organization_by_id(2) == Organization(id=2, name="Bar Corp")

    @pytest.mark.asyncio
    async def test_create_expense(self, store, mock_conn):
        """Test inserting an expense."""
        mock_conn.fetchrow.return_value = {
            "id": 7, "user_id": 2, "amount": 120, "description": "Taxi"
        }

        expense = await store.create_expense(2, 120, "Taxi")

        assert expense == Expense(id=7, user_id=2, amount=120, description="Taxi")
        query, user_id, amount, description = mock_conn.fetchrow.call_args.args
        assert "INSERT INTO expenses" in query
        assert (user_id, amount, description) == (2, 120, "Taxi")
        mock_conn.transaction.assert_called_once()

    @pytest.mark.asyncio
    async def test_create_expense_failure(self, store, mock_conn):
        """Test that insert failures are store failures."""
        mock_conn.fetchrow.side_effect = OSError("disk full")

        with pytest.raises(EntityLookupError) as exc_info:
            await store.create_expense(2, 120, "Taxi")

        assert exc_info.value.not_found is False

"""
PostgreSQL entity store for the expenses service.
"""

import asyncio
from typing import Optional

import asyncpg
from shared.logging import get_logger
from shared.errors import AccessLayerException, EntityLookupError
from ..domain.models import Expense, Organization, User

SCHEMA = """
CREATE TABLE IF NOT EXISTS organizations (
    id SERIAL PRIMARY KEY,
    name VARCHAR(255) NOT NULL
);
CREATE TABLE IF NOT EXISTS users (
    id SERIAL PRIMARY KEY,
    email VARCHAR(255) NOT NULL UNIQUE,
    title VARCHAR(255) NOT NULL DEFAULT '',
    organization_id INTEGER NOT NULL REFERENCES organizations(id)
);
CREATE TABLE IF NOT EXISTS expenses (
    id SERIAL PRIMARY KEY,
    user_id INTEGER NOT NULL REFERENCES users(id),
    amount INTEGER NOT NULL,
    description TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_expenses_user ON expenses(user_id);
"""

# Errors that mean "the store is unavailable", as opposed to "no such row".
STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class PostgreSQLEntityStore:
    """asyncpg-backed entity store."""

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.logger = get_logger("expenses.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the pool and create the schema if needed."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=1,
                max_size=10,
                command_timeout=30
            )

            # All statements are "IF NOT EXISTS", safe on every start
            async with self.pool.acquire() as conn:
                await conn.execute(SCHEMA)

            self.logger.info("PostgreSQL entity store started")

        except STORE_ERRORS as e:
            self.logger.error("Failed to start PostgreSQL entity store", error=str(e))
            raise AccessLayerException("POSTGRES_START_FAILED", str(e))

    async def stop(self):
        """Close the pool."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL entity store stopped")

    async def health_check(self) -> bool:
        """Check database connectivity."""
        if not self.pool:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except STORE_ERRORS as e:
            self.logger.error("PostgreSQL health check failed", error=str(e))
            return False

    async def _fetchrow(self, query: str, *args, missing: str) -> asyncpg.Record:
        if not self.pool:
            raise EntityLookupError("entity store is not started", not_found=False)
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, *args)
        except STORE_ERRORS as e:
            self.logger.error("Entity lookup failed", error=str(e))
            raise EntityLookupError(str(e), not_found=False) from e
        if row is None:
            raise EntityLookupError(missing)
        return row

    async def user_by_email(self, email: str) -> User:
        row = await self._fetchrow(
            "SELECT id, email, title, organization_id FROM users WHERE email = $1",
            email,
            missing="no user found for selected criteria"
        )
        return _user(row)

    async def user_by_id(self, user_id: int) -> User:
        row = await self._fetchrow(
            "SELECT id, email, title, organization_id FROM users WHERE id = $1",
            user_id,
            missing="no user found for selected criteria"
        )
        return _user(row)

    async def organization_by_id(self, organization_id: int) -> Organization:
        row = await self._fetchrow(
            "SELECT id, name FROM organizations WHERE id = $1",
            organization_id,
            missing=f"no organization for ID {organization_id}"
        )
        return Organization(id=row["id"], name=row["name"])

    async def expense_by_id(self, expense_id: int) -> Expense:
        row = await self._fetchrow(
            "SELECT id, user_id, amount, description FROM expenses WHERE id = $1",
            expense_id,
            missing=f"no expense for ID {expense_id}"
        )
        return _expense(row)

    async def create_expense(self, user_id: int, amount: int, description: str) -> Expense:
        """Insert an expense and return it with its assigned ID."""
        if not self.pool:
            raise EntityLookupError("entity store is not started", not_found=False)
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        """
                        INSERT INTO expenses (user_id, amount, description)
                        VALUES ($1, $2, $3)
                        RETURNING id, user_id, amount, description
                        """,
                        user_id, amount, description
                    )
        except STORE_ERRORS as e:
            self.logger.error("Error creating expense", user_id=user_id, error=str(e))
            raise EntityLookupError(str(e), not_found=False) from e

        self.logger.info("Expense created", expense_id=row["id"], user_id=user_id)
        return _expense(row)


def _user(row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        title=row["title"],
        organization_id=row["organization_id"]
    )


def _expense(row) -> Expense:
    return Expense(
        id=row["id"],
        user_id=row["user_id"],
        amount=row["amount"],
        description=row["description"]
    )

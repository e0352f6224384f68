"""
Entity store interface and in-memory implementation.
"""

import asyncio
from typing import Dict, Iterable, Protocol

from shared.errors import EntityLookupError
from shared.logging import get_logger

from ..domain.models import Expense, Organization, User


class EntityStore(Protocol):
    """Resolves users and records.

    Lookups raise :class:`EntityLookupError`; ``not_found`` distinguishes a
    missing entity from a store failure. Implementations must be safe to call
    concurrently.
    """

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def health_check(self) -> bool: ...

    async def user_by_email(self, email: str) -> User: ...

    async def user_by_id(self, user_id: int) -> User: ...

    async def organization_by_id(self, organization_id: int) -> Organization: ...

    async def expense_by_id(self, expense_id: int) -> Expense: ...

    async def create_expense(self, user_id: int, amount: int, description: str) -> Expense: ...


class InMemoryEntityStore:
    """Dictionary-backed store for local runs and tests."""

    def __init__(self, users: Iterable[User] = (), organizations: Iterable[Organization] = (),
                 expenses: Iterable[Expense] = ()):
        self.logger = get_logger("expenses.persistence.memory")
        self._users: Dict[int, User] = {u.id: u for u in users}
        self._organizations: Dict[int, Organization] = {o.id: o for o in organizations}
        self._expenses: Dict[int, Expense] = {e.id: e for e in expenses}
        self._lock = asyncio.Lock()

    @classmethod
    def with_demo_data(cls) -> "InMemoryEntityStore":
        """Store seeded with a small demo data set."""
        return cls(
            users=[
                User(id=1, email="alice@foo.com", title="CEO", organization_id=1),
                User(id=2, email="bhavik@foo.com", title="Senior Accountant", organization_id=1),
                User(id=3, email="cora@bar.com", title="Accountant", organization_id=2),
            ],
            organizations=[
                Organization(id=1, name="Foo Industries"),
                Organization(id=2, name="Bar Corp"),
            ],
            expenses=[
                Expense(id=1, user_id=1, amount=500, description="Trip to Paris"),
                Expense(id=2, user_id=2, amount=120, description="Office supplies"),
                Expense(id=3, user_id=3, amount=4200, description="Conference tickets"),
            ],
        )

    async def start(self) -> None:
        self.logger.info("In-memory entity store started", users=len(self._users))

    async def stop(self) -> None:
        return None

    async def health_check(self) -> bool:
        return True

    async def user_by_email(self, email: str) -> User:
        for user in self._users.values():
            if user.email == email:
                return user
        raise EntityLookupError("no user found for selected criteria")

    async def user_by_id(self, user_id: int) -> User:
        try:
            return self._users[user_id]
        except KeyError:
            raise EntityLookupError("no user found for selected criteria") from None

    async def organization_by_id(self, organization_id: int) -> Organization:
        try:
            return self._organizations[organization_id]
        except KeyError:
            raise EntityLookupError(f"no organization for ID {organization_id}") from None

    async def expense_by_id(self, expense_id: int) -> Expense:
        try:
            return self._expenses[expense_id]
        except KeyError:
            raise EntityLookupError(f"no expense for ID {expense_id}") from None

    async def create_expense(self, user_id: int, amount: int, description: str) -> Expense:
        async with self._lock:
            expense_id = max(self._expenses, default=0) + 1
            expense = Expense(id=expense_id, user_id=user_id, amount=amount, description=description)
            self._expenses[expense_id] = expense
        self.logger.info("Expense created", expense_id=expense_id, user_id=user_id)
        return expense

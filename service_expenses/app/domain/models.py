"""
Domain entities for the expenses service.

Actors (``User``, ``Guest``) and resources (``InboundRequest``, ``Expense``,
``Organization``) are frozen dataclasses. Each one declares its ``kind`` and
the attribute accessors that policy conditions may reference; the type
registry is built from these declarations.
"""

from dataclasses import dataclass
from enum import Enum
from operator import attrgetter
from typing import Any, Callable, ClassVar, Optional, Tuple, Union

from pydantic import BaseModel, Field


class EntityKind(str, Enum):
    """Kinds addressable by policy rules."""
    USER = "User"
    GUEST = "Guest"
    REQUEST = "Request"
    EXPENSE = "Expense"
    ORGANIZATION = "Organization"


@dataclass(frozen=True)
class Accessor:
    """Named attribute a rule condition can read from an entity."""
    name: str
    getter: Callable[[Any], Any]

    @classmethod
    def of(cls, name: str, attribute: Optional[str] = None) -> "Accessor":
        return cls(name, attrgetter(attribute or name))


@dataclass(frozen=True)
class User:
    """Logged in user, identified by email address."""
    kind: ClassVar[EntityKind] = EntityKind.USER

    id: int = 0
    email: str = ""
    title: str = ""
    organization_id: int = 0

    @property
    def is_authenticated(self) -> bool:
        return bool(self.email)

    @classmethod
    def accessors(cls) -> Tuple[Accessor, ...]:
        return (
            Accessor.of("id"),
            Accessor.of("email"),
            Accessor.of("title"),
            Accessor.of("organization_id"),
            Accessor.of("is_authenticated"),
        )

    def __str__(self) -> str:
        return f"<User: {self.email} (id: {self.id})>"


@dataclass(frozen=True)
class Guest:
    """Anonymous user."""
    kind: ClassVar[EntityKind] = EntityKind.GUEST

    @property
    def is_authenticated(self) -> bool:
        return False

    @classmethod
    def accessors(cls) -> Tuple[Accessor, ...]:
        return (Accessor.of("is_authenticated"),)

    def __str__(self) -> str:
        return "<User: Guest>"


GUEST = Guest()


@dataclass(frozen=True)
class InboundRequest:
    """HTTP request as seen by the authorization pipeline."""
    kind: ClassVar[EntityKind] = EntityKind.REQUEST

    method: str
    path: str

    @classmethod
    def accessors(cls) -> Tuple[Accessor, ...]:
        return (Accessor.of("method"), Accessor.of("path"))

    def __str__(self) -> str:
        return f"<Request: {self.method} {self.path}>"


@dataclass(frozen=True)
class Expense:
    """Expense owned by the user that submitted it."""
    kind: ClassVar[EntityKind] = EntityKind.EXPENSE

    id: int
    user_id: int
    amount: int = 0
    description: str = ""

    @classmethod
    def accessors(cls) -> Tuple[Accessor, ...]:
        return (
            Accessor.of("id"),
            Accessor.of("owner", "user_id"),
            Accessor.of("amount"),
            Accessor.of("description"),
        )

    def __str__(self) -> str:
        return f"<Expense: {self.id} (amount: {self.amount}, user: {self.user_id})>"


@dataclass(frozen=True)
class Organization:
    """Organization a user belongs to."""
    kind: ClassVar[EntityKind] = EntityKind.ORGANIZATION

    id: int
    name: str = ""

    @classmethod
    def accessors(cls) -> Tuple[Accessor, ...]:
        return (Accessor.of("id"), Accessor.of("name"))

    def __str__(self) -> str:
        return f"<Organization: {self.name} (id: {self.id})>"


Actor = Union[User, Guest]
Resource = Union[InboundRequest, Expense, Organization]

ACTOR_TYPES: Tuple[type, ...] = (User, Guest)
RESOURCE_TYPES: Tuple[type, ...] = (InboundRequest, Expense, Organization)
ENTITY_TYPES: Tuple[type, ...] = ACTOR_TYPES + RESOURCE_TYPES


def describe(entity: Any) -> str:
    """Short label for logs; never fails."""
    kind = getattr(entity, "kind", None)
    if isinstance(kind, EntityKind):
        return str(entity)
    return f"<unknown {type(entity).__name__}>"


class ExpenseCreateRequest(BaseModel):
    """Request model for submitting an expense."""
    amount: int = Field(..., description="Amount in minor currency units")
    description: str = Field("", description="Free text description")
    user_id: Optional[int] = Field(None, description="Must not be set; owner is the caller")


class ExpenseResponse(BaseModel):
    """Response model for a single expense."""
    id: int
    user_id: int
    amount: int
    description: str

    @classmethod
    def from_entity(cls, expense: Expense) -> "ExpenseResponse":
        return cls(
            id=expense.id,
            user_id=expense.user_id,
            amount=expense.amount,
            description=expense.description
        )


class OrganizationResponse(BaseModel):
    """Response model for a single organization."""
    id: int
    name: str

    @classmethod
    def from_entity(cls, organization: Organization) -> "OrganizationResponse":
        return cls(id=organization.id, name=organization.name)

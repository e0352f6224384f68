"""
Type registry for policy evaluation.

Declares which entity kinds exist and which of their attributes rule
conditions may read. Built once at startup, then frozen.
"""

from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Tuple

from shared.errors import EvaluationError, RegistrationError
from shared.logging import get_logger

from ..domain.models import Accessor, ENTITY_TYPES


class TypeRegistry:
    """Table of entity kinds and their attribute accessors."""

    def __init__(self):
        self.logger = get_logger("expenses.authz.registry")
        self._kinds: Dict[str, Mapping[str, Accessor]] = {}
        self._frozen = False

    def register(self, kind: str, accessors: Iterable[Accessor]) -> None:
        """Register ``kind`` with its accessors.

        Raises :class:`RegistrationError` if the registry is frozen, the kind
        is already registered, or two accessors share a name.
        """
        kind = str(getattr(kind, "value", kind))
        if self._frozen:
            raise RegistrationError(f"registry is frozen, cannot register {kind!r}")
        if not kind:
            raise RegistrationError("kind name must not be empty")
        if kind in self._kinds:
            raise RegistrationError(f"kind {kind!r} is already registered", {"kind": kind})

        table: Dict[str, Accessor] = {}
        for accessor in accessors:
            if accessor.name in table:
                raise RegistrationError(
                    f"accessor {accessor.name!r} registered twice for kind {kind!r}",
                    {"kind": kind, "attribute": accessor.name}
                )
            table[accessor.name] = accessor

        self._kinds[kind] = MappingProxyType(table)
        self.logger.debug("Kind registered", kind=kind, attributes=sorted(table))

    def freeze(self) -> "TypeRegistry":
        """Make the registry read-only."""
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def kinds(self) -> Tuple[str, ...]:
        return tuple(self._kinds)

    def has_kind(self, kind: str) -> bool:
        return kind in self._kinds

    def attributes(self, kind: str) -> FrozenSet[str]:
        return frozenset(self._kinds.get(kind, ()))

    def has_attribute(self, kind: str, name: str) -> bool:
        return name in self._kinds.get(kind, {})

    def resolve(self, kind: str, entity: Any, name: str) -> Any:
        """Read attribute ``name`` from ``entity`` of registered ``kind``."""
        table = self._kinds.get(kind)
        if table is None:
            raise EvaluationError(f"kind {kind!r} is not registered", {"kind": kind})
        accessor = table.get(name)
        if accessor is None:
            raise EvaluationError(
                f"attribute {name!r} is not registered for kind {kind!r}",
                {"kind": kind, "attribute": name}
            )
        return accessor.getter(entity)


def build_registry(*entity_types: type) -> TypeRegistry:
    """Register every entity type from its declared ``kind`` and ``accessors()``."""
    registry = TypeRegistry()
    for entity_type in entity_types:
        registry.register(entity_type.kind.value, entity_type.accessors())
    return registry


def default_registry() -> TypeRegistry:
    """Frozen registry of all domain kinds."""
    return build_registry(*ENTITY_TYPES).freeze()

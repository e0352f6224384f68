"""
Rule evaluation engine.

Candidates come from the policy index (actor kind, then resource kind), are
filtered by action, and each surviving rule's conditions must all hold. At
least one matching rule allows; no match denies. Faults raise
:class:`EvaluationError` and are left to the caller.
"""

from dataclasses import dataclass
from typing import Any, Optional, Tuple

from shared.errors import EvaluationError
from shared.logging import get_logger

from ..domain.models import ACTOR_TYPES, RESOURCE_TYPES, describe
from .policy import ACTOR, AttributeRef, Comparison, Condition, Literal, Operand, PathMatch, PolicySet, Rule
from .registry import TypeRegistry


@dataclass(frozen=True)
class EvaluationResult:
    """Result of rule evaluation."""
    allowed: bool
    reason: str
    matched_rule: Optional[Rule] = None


def _kind_of(entity: Any, variants: Tuple[type, ...], role: str) -> str:
    for variant in variants:
        if type(entity) is variant:
            return variant.kind.value
    raise EvaluationError(
        f"unsupported {role} type {type(entity).__name__}",
        {"role": role, "type": type(entity).__name__}
    )


class RuleEvaluator:
    """Matches (actor, action, resource) triples against a policy."""

    def __init__(self, policy: PolicySet, registry: TypeRegistry):
        self.logger = get_logger("expenses.authz.evaluator")
        self.policy = policy
        self.registry = registry

    def evaluate(self, actor: Any, action: str, resource: Any) -> EvaluationResult:
        """Evaluate the policy against one triple."""
        actor_kind = _kind_of(actor, ACTOR_TYPES, "actor")
        resource_kind = _kind_of(resource, RESOURCE_TYPES, "resource")
        if not isinstance(action, str):
            raise EvaluationError(f"action must be a string, got {type(action).__name__}")

        for rule in self.policy.candidates(actor_kind, resource_kind):
            if not rule.action.accepts(action, resource_kind):
                continue
            if all(self._holds(c, actor, actor_kind, resource, resource_kind) for c in rule.conditions):
                self.logger.debug(
                    "Rule matched",
                    line=rule.line,
                    actor=describe(actor),
                    action=action,
                    resource=describe(resource)
                )
                return EvaluationResult(
                    allowed=True,
                    reason=f"rule at line {rule.line} matched",
                    matched_rule=rule
                )

        return EvaluationResult(allowed=False, reason="no rule matched")

    def _holds(self, condition: Condition, actor: Any, actor_kind: str,
               resource: Any, resource_kind: str) -> bool:
        if isinstance(condition, PathMatch):
            value = self._resolve(condition.target, actor, actor_kind, resource, resource_kind)
            if not isinstance(value, str):
                raise EvaluationError(
                    f"{condition.target} is {type(value).__name__}, 'matches' needs a string",
                    {"attribute": str(condition.target)}
                )
            return condition.pattern.matches(value)

        if isinstance(condition, Comparison):
            left = self._resolve(condition.left, actor, actor_kind, resource, resource_kind)
            right = self._resolve(condition.right, actor, actor_kind, resource, resource_kind)
            if type(left) is not type(right):
                raise EvaluationError(
                    f"cannot compare {type(left).__name__} with {type(right).__name__} in '{condition}'",
                    {"condition": str(condition)}
                )
            if condition.operator == "==":
                return left == right
            if condition.operator == "!=":
                return left != right
            raise EvaluationError(f"unknown operator {condition.operator!r}")

        raise EvaluationError(f"unknown condition type {type(condition).__name__}")

    def _resolve(self, operand: Operand, actor: Any, actor_kind: str,
                 resource: Any, resource_kind: str) -> Any:
        if isinstance(operand, Literal):
            return operand.value
        if isinstance(operand, AttributeRef):
            if operand.subject == ACTOR:
                return self.registry.resolve(actor_kind, actor, operand.name)
            return self.registry.resolve(resource_kind, resource, operand.name)
        raise EvaluationError(f"unknown operand type {type(operand).__name__}")

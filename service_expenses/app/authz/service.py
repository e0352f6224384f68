"""
Decision service: the public authorization entry point.
"""

from typing import Any, Optional

from shared.errors import EvaluationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..domain.models import describe
from .evaluator import RuleEvaluator
from .policy import PolicySet, default_policy_text, load_policy, load_policy_file
from .registry import TypeRegistry, default_registry


class DecisionService:
    """Answers ``authorize(actor, action, resource)`` with a boolean.

    Built once at startup around an immutable policy and frozen registry,
    then shared read-only by every request. Evaluation faults are logged and
    resolve to deny; callers never see an exception.
    """

    def __init__(self, policy: PolicySet, registry: TypeRegistry,
                 metrics: Optional[MetricsCollector] = None):
        self.logger = get_logger("expenses.authz.decisions")
        self._policy = policy
        self._registry = registry
        self._evaluator = RuleEvaluator(policy, registry)
        self._metrics = metrics

    @property
    def policy(self) -> PolicySet:
        return self._policy

    @classmethod
    def from_text(cls, text: str, registry: Optional[TypeRegistry] = None,
                  metrics: Optional[MetricsCollector] = None) -> "DecisionService":
        registry = registry or default_registry()
        return cls(load_policy(text, registry), registry, metrics)

    @classmethod
    def from_file(cls, path: str, registry: Optional[TypeRegistry] = None,
                  metrics: Optional[MetricsCollector] = None) -> "DecisionService":
        registry = registry or default_registry()
        return cls(load_policy_file(path, registry), registry, metrics)

    @classmethod
    def default(cls, metrics: Optional[MetricsCollector] = None) -> "DecisionService":
        """Production policy over the default registry."""
        return cls.from_text(default_policy_text(), metrics=metrics)

    def authorize(self, actor: Any, action: str, resource: Any) -> bool:
        """Return True iff at least one rule allows the triple."""
        resource_kind = _kind_label(resource)
        try:
            result = self._evaluator.evaluate(actor, action, resource)
        except EvaluationError as e:
            self.logger.error(
                "Authorization evaluation failed",
                actor=describe(actor),
                action=action,
                resource_kind=resource_kind,
                error=e.message,
                details=e.details
            )
            self._record_error(resource_kind)
            return False
        except Exception as e:
            self.logger.error(
                "Unexpected authorization error",
                actor=describe(actor),
                action=action,
                resource_kind=resource_kind,
                error=str(e),
                exc_info=True
            )
            self._record_error(resource_kind)
            return False

        self.logger.debug(
            "Authorization decision",
            actor=describe(actor),
            action=action,
            resource=describe(resource),
            allowed=result.allowed,
            reason=result.reason
        )
        if self._metrics:
            self._metrics.record_decision(result.allowed, resource_kind)
        return result.allowed

    def _record_error(self, resource_kind: str):
        if self._metrics:
            self._metrics.record_authorization_error(resource_kind)
            self._metrics.record_decision(False, resource_kind)


def _kind_label(resource: Any) -> str:
    kind = getattr(type(resource), "kind", None)
    return getattr(kind, "value", "unknown")

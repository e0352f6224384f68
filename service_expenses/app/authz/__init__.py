"""
Authorization package.

Policy-based decision engine for the expenses service:

- registry: entity kinds and the attributes rules may read
- policy: rule model and the policy text loader
- paths: request path patterns
- evaluator: matches a triple against the loaded rules
- service: DecisionService, the fail-closed ``authorize`` entry point

The registry and policy are built once at startup and never mutated.
"""

from .policy import PolicySet, Rule, load_policy, load_policy_file
from .registry import TypeRegistry, build_registry, default_registry
from .service import DecisionService

__all__ = [
    "DecisionService",
    "PolicySet",
    "Rule",
    "TypeRegistry",
    "build_registry",
    "default_registry",
    "load_policy",
    "load_policy_file",
]

"""
Policy definitions: rule model and loader.

A policy is UTF-8 text, one rule per line::

    # comments run to the end of the line
    allow <actor-kind|*> <action> <resource-kind|*> [if <condition> {and <condition>}]

Actions are ``*``, an exact word (``read``), or alternatives (``read|list``).
An action made only of HTTP method names (``GET``, ``PUT|POST``) matches
request resources by method. Conditions compare operands with ``==`` or
``!=`` (``resource.owner == actor.id``) or match a path attribute against a
pattern (``resource.path matches /expenses/{id}``).

Loading validates every kind and attribute against the type registry and
fails with :class:`PolicyLoadError` on the first problem.
"""

import re
from dataclasses import dataclass, field
from importlib import resources
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple, Union

from shared.errors import PolicyLoadError
from shared.logging import get_logger

from ..domain.models import EntityKind
from .paths import PathPattern
from .registry import TypeRegistry

logger = get_logger("expenses.authz.policy")

DEFAULT_POLICY_RESOURCE = "expenses.policy"

HTTP_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"})

ACTOR = "actor"
RESOURCE = "resource"
ANY = "*"


# ---------------------------------------------------------------------------
# Rule model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class KindMatcher:
    """Matches an entity kind; ``None`` accepts any kind."""
    kind: Optional[str] = None

    def accepts(self, kind: str) -> bool:
        return self.kind is None or self.kind == kind

    def __str__(self) -> str:
        return self.kind or ANY


@dataclass(frozen=True)
class ActionMatcher:
    """Matches an action; no names accepts any action."""
    names: Tuple[str, ...] = ()
    http_method: bool = False

    def accepts(self, action: str, resource_kind: str) -> bool:
        if self.http_method:
            return resource_kind == EntityKind.REQUEST.value and action.upper() in self.names
        return not self.names or action in self.names

    def __str__(self) -> str:
        return "|".join(self.names) or ANY


@dataclass(frozen=True)
class AttributeRef:
    """``actor.<name>`` or ``resource.<name>``."""
    subject: str
    name: str

    def __str__(self) -> str:
        return f"{self.subject}.{self.name}"


@dataclass(frozen=True)
class Literal:
    value: Union[int, str, bool]

    def __str__(self) -> str:
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        if isinstance(self.value, str):
            return '"' + self.value.replace("\\", "\\\\").replace('"', '\\"') + '"'
        return str(self.value)


Operand = Union[AttributeRef, Literal]


@dataclass(frozen=True)
class Comparison:
    left: Operand
    operator: str
    right: Operand

    def __str__(self) -> str:
        return f"{self.left} {self.operator} {self.right}"


@dataclass(frozen=True)
class PathMatch:
    target: AttributeRef
    pattern: PathPattern

    def __str__(self) -> str:
        return f"{self.target} matches {self.pattern}"


Condition = Union[Comparison, PathMatch]


@dataclass(frozen=True)
class Rule:
    """One ``allow`` statement."""
    actor: KindMatcher
    action: ActionMatcher
    resource: KindMatcher
    conditions: Tuple[Condition, ...] = ()
    line: int = 0

    def __str__(self) -> str:
        text = f"allow {self.actor} {self.action} {self.resource}"
        if self.conditions:
            text += " if " + " and ".join(str(c) for c in self.conditions)
        return text


@dataclass(frozen=True)
class PolicySet:
    """Immutable, ordered rule collection with a per-kind candidate index."""
    rules: Tuple[Rule, ...]
    index: Mapping[Tuple[str, str], Tuple[Rule, ...]] = field(
        default_factory=lambda: MappingProxyType({}), compare=False, repr=False
    )

    def candidates(self, actor_kind: str, resource_kind: str) -> Tuple[Rule, ...]:
        """Rules whose kind matchers accept the pair, in source order."""
        found = self.index.get((actor_kind, resource_kind))
        if found is not None:
            return found
        return tuple(
            rule for rule in self.rules
            if rule.actor.accepts(actor_kind) and rule.resource.accepts(resource_kind)
        )

    def __len__(self) -> int:
        return len(self.rules)


# ---------------------------------------------------------------------------
# Lexer
# ---------------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r'(?P<string>"(?:[^"\\\n]|\\.)*")'
    r'|(?P<op>==|!=)'
    r'|(?P<word>[^\s"=!#]+)'
    r'|(?P<bad>\S)'
)
_INTEGER_RE = re.compile(r"-?[0-9]+")
_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_ACTION_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_.:-]*")
_ESCAPE_RE = re.compile(r"\\(.)")


@dataclass(frozen=True)
class _Token:
    type: str
    text: str
    column: int


def _strip_comment(line: str) -> str:
    in_string = False
    escaped = False
    for index, ch in enumerate(line):
        if escaped:
            escaped = False
        elif ch == "\\" and in_string:
            escaped = True
        elif ch == '"':
            in_string = not in_string
        elif ch == "#" and not in_string:
            return line[:index]
    return line


def _tokenize(line: str, line_no: int) -> List[_Token]:
    tokens: List[_Token] = []
    for match in _TOKEN_RE.finditer(line):
        column = match.start() + 1
        if match.lastgroup == "bad":
            if match.group() == '"':
                raise PolicyLoadError("unterminated string literal", line_no, column)
            raise PolicyLoadError(f"unexpected character {match.group()!r}", line_no, column)
        tokens.append(_Token(match.lastgroup, match.group(), column))
    return tokens


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class _RuleParser:
    """Parses the tokens of one line into a :class:`Rule`."""

    def __init__(self, tokens: List[_Token], line_no: int, line_length: int, registry: TypeRegistry):
        self.tokens = tokens
        self.line_no = line_no
        self.end_column = line_length + 1
        self.registry = registry
        self.pos = 0

    def parse(self) -> Rule:
        keyword = self._expect_word("'allow'")
        if keyword.text != "allow":
            self._fail(f"expected 'allow', got {keyword.text!r}", keyword)

        actor = self._kind_matcher(self._expect_word("actor kind"))
        action_token = self._expect_word("action")
        resource = self._kind_matcher(self._expect_word("resource kind"))
        action = self._action_matcher(action_token, resource)

        conditions: List[Condition] = []
        if self._peek() is not None:
            token = self._next()
            if token.text != "if":
                self._fail(f"expected 'if' or end of rule, got {token.text!r}", token)
            conditions.append(self._condition(actor, resource))
            while self._peek() is not None:
                token = self._next()
                if token.text != "and":
                    self._fail(f"expected 'and' or end of rule, got {token.text!r}", token)
                conditions.append(self._condition(actor, resource))

        return Rule(
            actor=actor,
            action=action,
            resource=resource,
            conditions=tuple(conditions),
            line=self.line_no
        )

    # -- matchers ----------------------------------------------------------

    def _kind_matcher(self, token: _Token) -> KindMatcher:
        if token.text == ANY:
            return KindMatcher()
        if not self.registry.has_kind(token.text):
            self._fail(f"unknown kind {token.text!r}", token)
        return KindMatcher(token.text)

    def _action_matcher(self, token: _Token, resource: KindMatcher) -> ActionMatcher:
        if token.text == ANY:
            return ActionMatcher()
        names = token.text.split("|")
        for name in names:
            if not _ACTION_RE.fullmatch(name):
                self._fail(f"malformed action {token.text!r}", token)
        if len(set(names)) != len(names):
            self._fail(f"duplicate action in {token.text!r}", token)

        methods = [name in HTTP_METHODS for name in names]
        if not any(methods):
            return ActionMatcher(tuple(names))
        if not all(methods):
            self._fail(f"cannot mix HTTP methods and actions in {token.text!r}", token)
        if resource.kind not in (None, EntityKind.REQUEST.value):
            self._fail(
                f"HTTP method action {token.text!r} requires a {EntityKind.REQUEST.value} resource",
                token
            )
        return ActionMatcher(tuple(names), http_method=True)

    # -- conditions --------------------------------------------------------

    def _condition(self, actor: KindMatcher, resource: KindMatcher) -> Condition:
        left_token = self._expect("condition")
        left = self._operand(left_token, actor, resource)
        operator = self._expect("'==', '!=' or 'matches'")

        if operator.type == "word" and operator.text == "matches":
            if not isinstance(left, AttributeRef):
                self._fail("'matches' needs an attribute on its left side", left_token)
            pattern_token = self._expect("path pattern")
            source = pattern_token.text
            if pattern_token.type == "string":
                source = _decode_string(source)
            elif pattern_token.type != "word":
                self._fail("expected path pattern", pattern_token)
            try:
                pattern = PathPattern.parse(source)
            except ValueError as e:
                self._fail(str(e), pattern_token)
            return PathMatch(left, pattern)

        if operator.type != "op":
            self._fail(f"expected '==', '!=' or 'matches', got {operator.text!r}", operator)

        right_token = self._expect("operand")
        right = self._operand(right_token, actor, resource)
        if isinstance(left, Literal) and isinstance(right, Literal):
            self._fail("condition compares two literals", left_token)
        return Comparison(left, operator.text, right)

    def _operand(self, token: _Token, actor: KindMatcher, resource: KindMatcher) -> Operand:
        if token.type == "string":
            return Literal(_decode_string(token.text))
        if token.type != "word":
            self._fail(f"expected attribute or literal, got {token.text!r}", token)

        text = token.text
        if text in ("true", "false"):
            return Literal(text == "true")
        if _INTEGER_RE.fullmatch(text):
            return Literal(int(text))

        subject, dot, name = text.partition(".")
        if not dot or subject not in (ACTOR, RESOURCE) or not _NAME_RE.fullmatch(name):
            self._fail(f"expected attribute or literal, got {text!r}", token)

        matcher = actor if subject == ACTOR else resource
        if matcher.kind is not None:
            if not self.registry.has_attribute(matcher.kind, name):
                self._fail(f"attribute {name!r} is not registered for kind {matcher.kind!r}", token)
        elif not any(self.registry.has_attribute(kind, name) for kind in self.registry.kinds):
            self._fail(f"attribute {name!r} is not registered for any kind", token)
        return AttributeRef(subject, name)

    # -- token stream ------------------------------------------------------

    def _peek(self) -> Optional[_Token]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self) -> _Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def _expect(self, what: str) -> _Token:
        if self._peek() is None:
            raise PolicyLoadError(f"expected {what}, got end of rule", self.line_no, self.end_column)
        return self._next()

    def _expect_word(self, what: str) -> _Token:
        token = self._expect(what)
        if token.type != "word":
            self._fail(f"expected {what}, got {token.text!r}", token)
        return token

    def _fail(self, message: str, token: _Token):
        raise PolicyLoadError(message, self.line_no, token.column)


def _decode_string(text: str) -> str:
    return _ESCAPE_RE.sub(r"\1", text[1:-1])


def _build_index(rules: Tuple[Rule, ...], registry: TypeRegistry) -> Mapping[Tuple[str, str], Tuple[Rule, ...]]:
    index: Dict[Tuple[str, str], Tuple[Rule, ...]] = {}
    for actor_kind in registry.kinds:
        for resource_kind in registry.kinds:
            index[(actor_kind, resource_kind)] = tuple(
                rule for rule in rules
                if rule.actor.accepts(actor_kind) and rule.resource.accepts(resource_kind)
            )
    return MappingProxyType(index)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def load_policy(text: str, registry: TypeRegistry) -> PolicySet:
    """Parse ``text`` into a :class:`PolicySet`."""
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as e:
            raise PolicyLoadError(f"policy is not valid UTF-8: {e}") from e

    rules: List[Rule] = []
    for line_no, raw_line in enumerate(text.splitlines(), start=1):
        line = _strip_comment(raw_line).rstrip()
        tokens = _tokenize(line, line_no)
        if not tokens:
            continue
        rules.append(_RuleParser(tokens, line_no, len(line), registry).parse())

    if not rules:
        raise PolicyLoadError("policy defines no rules")

    policy = PolicySet(rules=tuple(rules), index=_build_index(tuple(rules), registry))
    logger.info("Policy loaded", rules=len(policy))
    return policy


def load_policy_file(path: str, registry: TypeRegistry) -> PolicySet:
    """Read and parse a policy file."""
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise PolicyLoadError(f"unable to read policy file {path!r}: {e}") from e
    except UnicodeDecodeError as e:
        raise PolicyLoadError(f"policy file {path!r} is not valid UTF-8: {e}") from e
    return load_policy(text, registry)


def default_policy_text() -> str:
    """The production policy shipped with the package."""
    return resources.files(__package__).joinpath(DEFAULT_POLICY_RESOURCE).read_text(encoding="utf-8")

# conditions.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from .errors import WorkflowError
from .model import TriggerContext


class Condition:
    """
    A job guard. Evaluated from the trigger context alone, so the same
    context always gives the same answer.
    """

    def evaluate(self, context: TriggerContext) -> bool:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError

    def __and__(self, other: Condition) -> Condition:
        return All((self, other))

    def __or__(self, other: Condition) -> Condition:
        return AnyOf((self, other))

    def __invert__(self) -> Condition:
        return Not(self)


@dataclass(frozen=True)
class BranchEquals(Condition):
    branch: str

    def evaluate(self, context: TriggerContext) -> bool:
        return context.branch == self.branch

    def describe(self) -> str:
        return f"branch == {self.branch!r}"


@dataclass(frozen=True)
class RefEquals(Condition):
    ref: str

    def __post_init__(self) -> None:
        if not self.ref.startswith("refs/"):
            object.__setattr__(self, "ref", f"refs/heads/{self.ref}")

    def evaluate(self, context: TriggerContext) -> bool:
        return context.ref == self.ref

    def describe(self) -> str:
        return f"ref == {self.ref!r}"


@dataclass(frozen=True)
class EventEquals(Condition):
    event: str

    def evaluate(self, context: TriggerContext) -> bool:
        return context.event == self.event

    def describe(self) -> str:
        return f"event == {self.event!r}"


@dataclass(frozen=True)
class Not(Condition):
    inner: Condition

    def evaluate(self, context: TriggerContext) -> bool:
        return not self.inner.evaluate(context)

    def describe(self) -> str:
        return f"not ({self.inner.describe()})"


@dataclass(frozen=True)
class All(Condition):
    items: Tuple[Condition, ...]

    def evaluate(self, context: TriggerContext) -> bool:
        return all(c.evaluate(context) for c in self.items)

    def describe(self) -> str:
        return " && ".join(c.describe() for c in self.items)


@dataclass(frozen=True)
class AnyOf(Condition):
    items: Tuple[Condition, ...]

    def evaluate(self, context: TriggerContext) -> bool:
        return any(c.evaluate(context) for c in self.items)

    def describe(self) -> str:
        return " || ".join(c.describe() for c in self.items)


# ---------------------------------------------------------------------
# Guard string parsing
# ---------------------------------------------------------------------
# Supported grammar (no parentheses):
#   expr   := clause ("||" clause)*      with && binding tighter
#   clause := operand ("==" | "!=") operand
#   operand:= 'literal' | "literal" | trunk | ref | branch | event
#             (github.ref, github.ref_name, github.event_name also accepted)

_FIELDS: Dict[str, Callable[[str], Condition]] = {
    "ref": RefEquals,
    "github.ref": RefEquals,
    "branch": BranchEquals,
    "github.ref_name": BranchEquals,
    "event": EventEquals,
    "github.event_name": EventEquals,
}

_CLAUSE_RE = re.compile(r"^\s*(?P<lhs>\S+)\s*(?P<op>==|!=)\s*(?P<rhs>\S+)\s*$")
_WRAPPED_RE = re.compile(r"^\s*\$\{\{(?P<body>.*)\}\}\s*$", re.DOTALL)


def _literal(token: str, trunk: str) -> str | None:
    if len(token) >= 2 and token[0] == token[-1] and token[0] in ("'", '"'):
        return token[1:-1]
    if token == "trunk":
        return trunk
    return None


def _parse_clause(text: str, trunk: str) -> Condition:
    m = _CLAUSE_RE.match(text)
    if not m:
        raise WorkflowError(f"unsupported guard clause: {text.strip()!r}")

    lhs, op, rhs = m.group("lhs"), m.group("op"), m.group("rhs")
    if lhs in _FIELDS:
        field_name, value = lhs, _literal(rhs, trunk)
    elif rhs in _FIELDS:
        field_name, value = rhs, _literal(lhs, trunk)
    else:
        raise WorkflowError(f"guard clause must compare ref/branch/event: {text.strip()!r}")

    if value is None:
        raise WorkflowError(f"guard clause must compare against a literal: {text.strip()!r}")

    cond = _FIELDS[field_name](value)
    return cond if op == "==" else Not(cond)


def parse_condition(text: str, trunk: str = "main") -> Condition:
    """
    Parse a guard such as "github.ref == 'refs/heads/main'" or
    "branch == trunk && event != 'pull_request'" into a Condition.
    """
    m = _WRAPPED_RE.match(text)
    body = m.group("body") if m else text
    if "(" in body or ")" in body:
        raise WorkflowError(f"parentheses are not supported in guards: {text!r}")
    if not body.strip():
        raise WorkflowError("empty guard")

    alternatives = []
    for part in body.split("||"):
        clauses = [_parse_clause(c, trunk) for c in part.split("&&")]
        alternatives.append(clauses[0] if len(clauses) == 1 else All(tuple(clauses)))

    return alternatives[0] if len(alternatives) == 1 else AnyOf(tuple(alternatives))


def on_branch(branch: str) -> Condition:
    return BranchEquals(branch)

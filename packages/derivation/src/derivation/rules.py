"""
derivation/rules.py - Derivation Rules

A rule states how to build a value of its consequent shape from values of
its antecedent shapes:

    Rule(Term("Pair", T, U), [T, U], invoke=lambda a, b: (a, b))

A rule without antecedents is a fact. A rule's invoke may return
Scoped(value, rules) to make further rules visible while the rest of the
enclosing derivation is resolved.
"""
from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from .cycle import Deferred
from .terms import Term, TermLike, Var, deferred
from .unification import Substitution, match, substitute


@dataclass(frozen=True, eq=False)
class Rule:
    """Immutable derivation rule.

    Rules compare and hash by identity: two separately declared rules with
    the same signature are distinct candidates, tried in registration order.
    """

    consequent: Term
    antecedents: tuple[Term | Var, ...] = ()
    invoke: Callable[..., Any] = field(default=None, repr=False)
    name: str | None = None
    description: str | None = None
    with_goal: bool = False

    def __post_init__(self):
        if not isinstance(self.consequent, Term):
            raise ValueError(f"Rule consequent must be a Term, got: {self.consequent!r}")
        antecedents = tuple(self.antecedents)
        for antecedent in antecedents:
            if not isinstance(antecedent, (Term, Var)):
                raise ValueError(f"Rule antecedent must be a Term or Var, got: {antecedent!r}")
        if not callable(self.invoke):
            raise ValueError(f"Rule for {self.consequent} needs a callable invoke")
        object.__setattr__(self, "antecedents", antecedents)

    @property
    def is_fact(self) -> bool:
        """True if this rule has no antecedents."""
        return len(self.antecedents) == 0

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        return getattr(self.invoke, "__name__", "<rule>")

    def apply(self, values: Sequence[Any], goal: Term) -> Any:
        """Build the consequent value from antecedent values."""
        if self.with_goal:
            return self.invoke(*values, goal=goal)
        return self.invoke(*values)

    def __repr__(self) -> str:
        if self.is_fact:
            return f"{self.label}: {self.consequent}."
        body = ", ".join(repr(t) for t in self.antecedents)
        return f"{self.label}: {self.consequent} :- {body}."


@dataclass(frozen=True)
class Scoped:
    """A built value paired with rules it brings into scope."""

    value: Any
    rules: tuple[Rule, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "rules", tuple(self.rules))


@dataclass(frozen=True)
class Candidate:
    """A rule specialized to a goal descriptor.

    level is the nesting depth of the rule set that supplied the rule: 1 for
    a base set, one more for each scope around it.
    """

    rule: Rule
    goal: Term
    substitution: Substitution
    antecedents: tuple[Term, ...]
    level: int = 1


def specialize(rule: Rule, descriptor: Term) -> Candidate | None:
    """Match a rule against a monomorphic descriptor.

    Returns None when the consequent does not match, or when an antecedent
    would stay polymorphic after substitution (a variable that only occurs
    in the antecedents cannot be chosen by backward search).
    """
    theta = match(rule.consequent, descriptor)
    if theta is None:
        return None

    antecedents = tuple(substitute(a, theta) for a in rule.antecedents)
    if not all(isinstance(a, Term) and a.is_ground() for a in antecedents):
        return None

    return Candidate(rule=rule, goal=descriptor, substitution=theta, antecedents=antecedents)


def fact(consequent: Term, value: Any, name: str | None = None) -> Rule:
    """Create a rule that always builds the given value."""

    def constant() -> Any:
        return value

    return Rule(consequent, (), constant, name=name or f"fact:{consequent}")


def proxy_rule(pattern: TermLike | None = None, name: str | None = None) -> Rule:
    """Create a rule producing deferred handles for shapes matching pattern.

    With no pattern, every shape may take part in a cycle.
    """
    if pattern is None:
        pattern = Var("T")

    def make_handle(goal: Term) -> Deferred:
        return Deferred(goal.args[0])

    return Rule(deferred(pattern), (), make_handle, name=name or f"proxy:{pattern}", with_goal=True)

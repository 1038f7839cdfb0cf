"""
derivation/dsl.py - Fluent Rule Declaration

Example:
    from derivation.dsl import RuleSetBuilder, T, U
    from derivation import Term

    rules = RuleSetBuilder("collections")
    rules.fact(Term("Int"), 0)
    rules.fact(Term("Str"), "")

    rules.derive(Term("Pair", T, U)) \\
        .when(T) \\
        .and_(U) \\
        .named("pair") \\
        .using(lambda a, b: (a, b))

    @rules.rule(Term("List", T), T)
    def singleton(item):
        return [item]

    rule_set = rules.build()
"""
from __future__ import annotations

from collections.abc import Callable
from typing import Any

from .registry import RuleSet
from .rules import Rule, fact, proxy_rule
from .terms import Term, TermLike, Var

# Common shape parameters
T = Var("T")
U = Var("U")
V = Var("V")
X = Var("X")
Y = Var("Y")
Z = Var("Z")


class RuleBuilder:
    """Fluent builder for one rule."""

    def __init__(self, builder: RuleSetBuilder, consequent: Term):
        self.builder = builder
        self.consequent = consequent
        self.antecedents: list[Term | Var] = []
        self._name: str | None = None
        self._description: str | None = None
        self._with_goal = False

    def when(self, *antecedents: Term | Var) -> RuleBuilder:
        """Add first antecedents."""
        self.antecedents.extend(antecedents)
        return self

    def and_(self, *antecedents: Term | Var) -> RuleBuilder:
        """Add more antecedents."""
        self.antecedents.extend(antecedents)
        return self

    def named(self, name: str) -> RuleBuilder:
        self._name = name
        return self

    def described(self, description: str) -> RuleBuilder:
        self._description = description
        return self

    def with_goal(self) -> RuleBuilder:
        """Pass the specialized consequent to invoke as keyword goal."""
        self._with_goal = True
        return self

    def using(self, invoke: Callable[..., Any]) -> Rule:
        """Finalize with the function that builds the value."""
        rule = Rule(
            self.consequent,
            tuple(self.antecedents),
            invoke,
            name=self._name,
            description=self._description,
            with_goal=self._with_goal,
        )
        return self.builder.add(rule)


class RuleSetBuilder:
    """Collects rules, then freezes them into a RuleSet."""

    def __init__(self, name: str | None = None):
        self.name = name
        self._rules: list[Rule] = []
        self._includes: list[RuleSet] = []

    def add(self, rule: Rule) -> Rule:
        self._rules.append(rule)
        return rule

    def derive(self, consequent: Term) -> RuleBuilder:
        """Start building a rule.

        Example:
            rules.derive(Term("Url")).when(Term("Port")).using(make_url)
        """
        return RuleBuilder(self, consequent)

    def rule(
        self,
        consequent: Term,
        *antecedents: Term | Var,
        name: str | None = None,
        description: str | None = None,
        with_goal: bool = False,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Register the decorated function as a rule. The function is returned unchanged."""

        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.add(
                Rule(
                    consequent,
                    antecedents,
                    fn,
                    name=name or fn.__name__,
                    description=description or fn.__doc__,
                    with_goal=with_goal,
                )
            )
            return fn

        return decorator

    def fact(self, consequent: Term, value: Any, name: str | None = None) -> Rule:
        """Register a constant value for a shape."""
        return self.add(fact(consequent, value, name=name))

    def proxy(self, pattern: TermLike | None = None) -> Rule:
        """Allow shapes matching pattern (default: any shape) to be built cyclically."""
        return self.add(proxy_rule(pattern))

    def include(self, rule_set: RuleSet) -> RuleSetBuilder:
        """Append another rule set's rules after this builder's own."""
        self._includes.append(rule_set)
        return self

    def build(self) -> RuleSet:
        return RuleSet(self._rules, name=self.name, includes=self._includes)

    def __len__(self) -> int:
        return len(self._rules)

"""
derivation/registry.py - Rule Registry

A RuleSet stores derivation rules and finds the candidates for a goal.

Features:
- Rule storage indexed by consequent functor/arity
- Registration order preserved (first registered is tried first)
- Composition of rule sets through includes
- Scoped extension for rules injected by built values
- Loading from dictionaries and YAML files
"""
from __future__ import annotations

import importlib
import logging
import uuid
from collections import defaultdict
from collections.abc import Hashable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from typing import Any

import yaml

from .rules import Candidate, Rule, fact, proxy_rule, specialize
from .terms import Term, descriptor_from_dict

logger = logging.getLogger(__name__)


class RuleSet:
    """Ordered, immutable collection of derivation rules.

    Example:
        rules = RuleSet([
            fact(Term("Int"), 0),
            Rule(Term("List", T), [T], invoke=lambda x: [x]),
        ], name="basics")

        for candidate in rules.rules_for(Term("List", Term("Int"))):
            print(candidate.rule, candidate.antecedents)  # (Int,)
    """

    def __init__(
        self,
        rules: Iterable[Rule] = (),
        name: str | None = None,
        includes: Iterable[RuleSet] = (),
        *,
        parent: RuleSet | None = None,
    ):
        self.name = name
        self._parent = parent
        self._level = 1 if parent is None else parent._level + 1
        self._closed = False

        # Engine bound to this set, created by get_engine
        self._engine = None

        # Index rules by consequent functor/arity
        self._index: dict[str, list[Rule]] = defaultdict(list)

        # All rules in registration order
        self._rules: list[Rule] = []

        self._stats = {
            "queries": 0,
            "candidates": 0,
        }

        seen: set[int] = set()
        for rule in rules:
            self._add(rule, seen)
        for included in includes:
            for rule in included:
                self._add(rule, seen)

        if parent is None:
            self._identity: Hashable = uuid.uuid4().hex
        else:
            self._identity = (parent.identity, tuple(self._rules))

    def _add(self, rule: Rule, seen: set[int]) -> None:
        if id(rule) in seen:
            return
        seen.add(id(rule))

        unfixed = set()
        for antecedent in rule.antecedents:
            unfixed.update(antecedent.variables())
        unfixed -= rule.consequent.variables()
        if unfixed:
            logger.warning(
                f"Rule {rule} has antecedent parameters {sorted(unfixed)} not fixed by its "
                f"consequent; it will never be selected"
            )

        self._index[rule.consequent.key].append(rule)
        self._rules.append(rule)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def rules_for(self, descriptor: Term) -> list[Candidate]:
        """Get every rule able to build descriptor, specialized to it.

        Scoped rules come first, then the rules of enclosing sets; within a
        set, rules keep their registration order.

        Args:
            descriptor: Monomorphic descriptor to build

        Returns:
            Candidates with their substitutions and monomorphic antecedents
        """
        if self._closed:
            raise RuntimeError(f"Rule scope {self.name} used after it was released")

        self._stats["queries"] += 1
        candidates = []
        for rule in self._index.get(descriptor.key, []):
            candidate = specialize(rule, descriptor)
            if candidate is not None:
                candidates.append(replace(candidate, level=self._level))

        self._stats["candidates"] += len(candidates)

        if self._parent is not None:
            candidates.extend(self._parent.rules_for(descriptor))
        return candidates

    @contextmanager
    def with_scoped_rules(self, rules: Iterable[Rule]) -> Iterator[RuleSet]:
        """Make extra rules visible for the duration of a with block.

        The current set is not modified; the yielded view is released on
        exit, including exits by exception.
        """
        rules = tuple(rules)
        if not rules:
            yield self
            return

        scope = RuleSet(rules, name=f"{self.name or 'rules'}+scope", parent=self)
        logger.debug(f"Entering rule scope with {len(rules)} injected rules")
        try:
            yield scope
        finally:
            scope._closed = True

    @property
    def identity(self) -> Hashable:
        """Key under which values built with this set are memoized."""
        return self._identity

    @property
    def lineage(self) -> tuple[Hashable, ...]:
        """Identities from this scope out to the base set."""
        result = []
        current: RuleSet | None = self
        while current is not None:
            result.append(current.identity)
            current = current._parent
        return tuple(result)

    @property
    def is_scoped(self) -> bool:
        return self._parent is not None

    @property
    def level(self) -> int:
        """Nesting depth: 1 for a base set, one more per enclosing scope."""
        return self._level

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules)

    def __repr__(self) -> str:
        return f"RuleSet({self.name or self._identity!r}, {len(self._rules)} rules)"

    @property
    def stats(self) -> dict[str, int]:
        """Get statistics."""
        return dict(self._stats)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any], includes: Iterable[RuleSet] = ()) -> RuleSet:
        """Import from dictionary.

        Rules name their invoke callable as "module:attribute"; facts may
        give a literal value instead. Shapes listed under "proxies" may take
        part in cyclic construction.
        """
        rules = []
        for rule_data in data.get("rules", []):
            rules.append(_dict_to_rule(rule_data))

        for pattern in data.get("proxies", []):
            rules.append(proxy_rule(descriptor_from_dict(pattern)))

        rule_set = cls(rules, name=data.get("name"), includes=includes)
        logger.info(f"Loaded rule set {rule_set.name}: {len(rule_set)} rules")
        return rule_set

    @classmethod
    def from_yaml(cls, path: str, includes: Iterable[RuleSet] = ()) -> RuleSet:
        """Load from YAML file."""
        with open(path) as f:
            return cls.from_dict(yaml.safe_load(f) or {}, includes=includes)


def _dict_to_rule(data: dict[str, Any]) -> Rule:
    """Convert dictionary to rule."""
    if "consequent" not in data:
        raise ValueError(f"Rule definition needs a consequent: {data}")

    consequent = descriptor_from_dict(data["consequent"])
    if not isinstance(consequent, Term):
        raise ValueError(f"Rule consequent must be a term: {data['consequent']}")

    if "value" in data:
        if data.get("antecedents"):
            raise ValueError(f"Rule for {consequent} has both a literal value and antecedents")
        return fact(consequent, data["value"], name=data.get("name"))

    if "invoke" not in data:
        raise ValueError(f"Rule for {consequent} needs an invoke path or a value")

    return Rule(
        consequent,
        tuple(descriptor_from_dict(a) for a in data.get("antecedents", [])),
        _resolve_callable(data["invoke"]),
        name=data.get("name"),
        description=data.get("description"),
        with_goal=bool(data.get("with_goal", False)),
    )


def _resolve_callable(path: str):
    """Import "package.module:attr.attr"."""
    module_name, sep, attr_path = path.partition(":")
    if not sep or not module_name or not attr_path:
        raise ValueError(f"Invoke path must look like 'module:attribute', got: {path!r}")

    try:
        target: Any = importlib.import_module(module_name)
    except ImportError as e:
        raise ValueError(f"Cannot import module for invoke path {path!r}: {e}") from e

    for part in attr_path.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as e:
            raise ValueError(f"Invoke path {path!r} does not resolve: {e}") from e

    if not callable(target):
        raise ValueError(f"Invoke path {path!r} is not callable")
    return target

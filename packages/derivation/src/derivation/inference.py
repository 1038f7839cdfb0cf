"""
derivation/inference.py - Goal-Driven Value Construction

Implements backward chaining over derivation rules with two strategies:

DEPTH-FIRST (DFS):
    Try candidate rules in registration order, resolving antecedents left
    to right. The first complete derivation is committed.

    Use when: Rule order already encodes preference and every rule chain
    terminates. An unproductive infinite chain is not detected.

ITERATIVE DEEPENING (IDDFS):
    Repeat the depth-first exploration with a growing bound on the
    derivation-tree height. Each sub-goal is deepened the same way, so the
    first derivation found, and every sub-value it memoizes, has minimal
    height.

    Use when: Rules admit long or infinite unproductive chains, or the
    shallowest derivation is preferred.

Both memoize every built sub-value and return derivation trees for
explainability.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable
from contextlib import ExitStack
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .cycle import Deferred
from .errors import (
    CycleUnsupportedError,
    DeferredError,
    DepthExceededError,
    NoDerivationError,
    ResolutionError,
    RuleInvocationError,
)
from .memo import MemoEntry, MemoKey, MemoStore
from .registry import RuleSet
from .rules import Candidate, Rule, Scoped
from .terms import Term, deferred, descriptor_to_dict
from .types import ResolverConfig, Strategy

logger = logging.getLogger(__name__)


class DerivationStatus(Enum):
    """Status of a resolution attempt."""

    SUCCESS = "success"
    FAILURE = "failure"
    DEPTH_EXCEEDED = "depth_exceeded"


@dataclass
class DerivationNode:
    """Node in a derivation tree.

    Represents one goal and the rule that built it.
    """

    goal: Term
    rule: Rule | None = None
    children: list[DerivationNode] = field(default_factory=list)
    status: DerivationStatus = DerivationStatus.FAILURE
    depth: int = 0
    value: Any = field(default=None, repr=False)
    height: int = 0
    cached: bool = False
    deferred: bool = False
    scoped_rules: tuple[Rule, ...] = field(default=(), repr=False)
    error: ResolutionError | None = field(default=None, repr=False)
    # Shallowest open frame whose deferred handle this value captured
    depends_on: SearchFrame | None = field(default=None, repr=False)
    # Innermost rule-set level the derivation drew on (1 = base set)
    level: int = 1

    @property
    def is_leaf(self) -> bool:
        return len(self.children) == 0

    @property
    def is_success(self) -> bool:
        return self.status == DerivationStatus.SUCCESS

    def succeed(self, value: Any, height: int, scoped_rules: tuple[Rule, ...] = ()) -> DerivationNode:
        self.status = DerivationStatus.SUCCESS
        self.value = value
        self.height = height
        self.scoped_rules = scoped_rules
        self.error = None
        return self

    def fail(
        self, error: ResolutionError, status: DerivationStatus = DerivationStatus.FAILURE
    ) -> DerivationNode:
        self.status = status
        self.value = None
        self.error = error
        return self

    def __repr__(self) -> str:
        status_mark = "✓" if self.is_success else "✗"
        return f"[{status_mark}] {self.goal}"


@dataclass
class DerivationTree:
    """Result of resolving one goal.

    Holds the committed derivation on success, or the failure with the
    error the caller should see.
    """

    root: DerivationNode
    goal: Term
    strategy: Strategy
    bound: int | None = None
    invocations: int = 0

    @property
    def is_valid(self) -> bool:
        """True if a value was built."""
        return self.root.status == DerivationStatus.SUCCESS

    @property
    def status(self) -> DerivationStatus:
        return self.root.status

    @property
    def value(self) -> Any:
        return self.root.value if self.is_valid else None

    @property
    def height(self) -> int:
        return self.root.height

    @property
    def error(self) -> ResolutionError | None:
        return self.root.error

    def explain(self, indent: int = 0) -> str:
        """Generate human-readable explanation."""
        return self._explain_node(self.root, indent)

    def _explain_node(self, node: DerivationNode, indent: int) -> str:
        lines = []
        prefix = "  " * indent
        status = "✓" if node.is_success else "✗"

        if node.cached:
            lines.append(f"{prefix}{status} {node.goal} (memoized)")
        elif node.deferred:
            lines.append(f"{prefix}{status} {node.goal} (deferred, closes cycle)")
        elif node.rule:
            lines.append(f"{prefix}{status} {node.goal}")
            lines.append(f"{prefix}  by rule: {node.rule.label}")
        elif node.error is not None:
            lines.append(f"{prefix}{status} {node.goal} ({node.error})")
        else:
            lines.append(f"{prefix}{status} {node.goal}")

        for child in node.children:
            lines.append(self._explain_node(child, indent + 1))

        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Export derivation tree to dictionary."""
        return {
            "goal": str(self.goal),
            "shape": descriptor_to_dict(self.goal),
            "valid": self.is_valid,
            "status": self.status.value,
            "strategy": self.strategy.value,
            "bound": self.bound,
            "height": self.height,
            "error": self.error.to_dict() if self.error else None,
            "tree": self._node_to_dict(self.root),
        }

    def _node_to_dict(self, node: DerivationNode) -> dict[str, Any]:
        return {
            "goal": str(node.goal),
            "status": node.status.value,
            "depth": node.depth,
            "height": node.height,
            "rule": node.rule.label if node.rule else None,
            "cached": node.cached,
            "deferred": node.deferred,
            "children": [self._node_to_dict(c) for c in node.children],
        }


@dataclass(eq=False)
class SearchFrame:
    """State of one goal being built: its ancestors, its open cycle handle,
    and memo writes waiting for that handle to be set."""

    goal: Term
    parent: SearchFrame | None = None
    handle: Deferred | None = None
    handle_level: int = 1
    pending: dict[MemoKey, MemoEntry] = field(default_factory=dict)
    rule: Rule | None = None

    @property
    def depth(self) -> int:
        depth = 0
        frame = self.parent
        while frame is not None:
            depth += 1
            frame = frame.parent
        return depth

    def path(self) -> list[Term]:
        result = []
        frame: SearchFrame | None = self
        while frame is not None:
            result.append(frame.goal)
            frame = frame.parent
        result.reverse()
        return result

    def find(self, goal: Term) -> SearchFrame | None:
        """Nearest frame on the ancestor stack building goal."""
        frame: SearchFrame | None = self
        while frame is not None:
            if frame.goal == goal:
                return frame
            frame = frame.parent
        return None

    def pending_lookup(self, lineage, goal: Term) -> tuple[Hashable, MemoEntry, SearchFrame] | None:
        frame: SearchFrame | None = self
        while frame is not None:
            if frame.pending:
                for identity in lineage:
                    entry = frame.pending.get((identity, goal))
                    if entry is not None:
                        return identity, entry, frame
            frame = frame.parent
        return None

    def reset(self) -> None:
        """Drop everything tied to a failed candidate."""
        self.handle = None
        self.handle_level = 1
        self.pending.clear()
        self.rule = None


# Goal failed within bound: (bound, deeper bound may help, error, status)
BoundedFailure = tuple[int, bool, ResolutionError, DerivationStatus]


# =============================================================================
# SEARCH
# =============================================================================


class Search:
    """One bounded or unbounded depth-first exploration for a goal.

    A bounded search deepens every sub-goal on its own, trying bounds 1, 2,
    ... up to what is left of the budget, so each value it memoizes was
    built by a derivation of minimal height. Bounded failures that do not
    depend on the goals in progress above them are kept in failures, which
    may be shared by successive searches over the same memo store.
    """

    def __init__(
        self,
        rule_set: RuleSet,
        memo: MemoStore,
        failures: dict[MemoKey, BoundedFailure] | None = None,
    ):
        self.rule_set = rule_set
        self.memo = memo
        self.failures = {} if failures is None else failures
        # Some goal was given up at the bound
        self.cutoff = False
        # Some outcome depended on a goal still in progress
        self.contextual = False
        self.invocations = 0

    def run(self, goal: Term, bound: int | None = None) -> DerivationNode:
        """Resolve goal.

        Args:
            goal: Monomorphic descriptor to build
            bound: Maximum derivation-tree height, or None for unbounded

        Returns:
            Root node of the derivation (successful or not)
        """
        return self._resolve(goal, self.rule_set, None, bound)

    def _resolve(
        self,
        goal: Term,
        rules: RuleSet,
        parent: SearchFrame | None,
        remaining: int | None,
    ) -> DerivationNode:
        """Recursively build a value for goal."""
        depth = 0 if parent is None else parent.depth + 1
        node = DerivationNode(goal=goal, depth=depth)
        path = (parent.path() if parent is not None else []) + [goal]

        hit = self._lookup(goal, rules, parent)
        if hit is not None:
            entry, owner, level = hit
            if remaining is not None and entry.height > remaining:
                self.cutoff = True
                return node.fail(DepthExceededError(goal, path), DerivationStatus.DEPTH_EXCEEDED)
            node.rule = entry.rule
            node.cached = True
            node.depends_on = owner
            node.level = level
            return node.succeed(entry.value, entry.height, entry.rules)

        if remaining is not None and remaining < 1:
            self.cutoff = True
            return node.fail(DepthExceededError(goal, path), DerivationStatus.DEPTH_EXCEEDED)

        if parent is not None:
            in_flight = parent.find(goal)
            if in_flight is not None:
                self.contextual = True
                return self._close_cycle(node, in_flight, rules, parent, path, remaining)

        candidates = rules.rules_for(goal)
        if not candidates:
            logger.debug(f"No rule for {goal}")
            return node.fail(NoDerivationError(goal, path))

        if remaining is None:
            return self._attempt(node, candidates, rules, parent, None, path)
        return self._deepen(node, candidates, rules, parent, remaining, path)

    def _deepen(
        self,
        node: DerivationNode,
        candidates: list[Candidate],
        rules: RuleSet,
        parent: SearchFrame | None,
        remaining: int,
        path: list[Term],
    ) -> DerivationNode:
        """Try candidates under bounds 1..remaining; the first success is the shallowest."""
        key = (rules.identity, node.goal)
        start = 1

        known = self.failures.get(key)
        if known is not None:
            bound, cut, error, status = known
            if not cut or bound >= remaining:
                self.cutoff = self.cutoff or cut
                return node.fail(error, status)
            start = bound + 1

        outer_cutoff = self.cutoff
        outer_contextual = self.contextual
        contextual = cut = False

        for bound in range(start, remaining + 1):
            self.cutoff = self.contextual = False
            self._attempt(node, candidates, rules, parent, bound, path)
            cut = self.cutoff
            contextual = contextual or self.contextual

            if node.is_success:
                cut = False
                break
            if not self.contextual:
                self.failures[key] = (bound, cut, node.error, node.status)
            if not cut:
                break

        self.cutoff = outer_cutoff or cut
        self.contextual = outer_contextual or contextual
        return node

    def _attempt(
        self,
        node: DerivationNode,
        candidates: list[Candidate],
        rules: RuleSet,
        parent: SearchFrame | None,
        remaining: int | None,
        path: list[Term],
    ) -> DerivationNode:
        """Try candidates in order under one bound and commit the first success."""
        goal = node.goal
        frame = SearchFrame(goal, parent)
        failures: list[ResolutionError] = []

        for candidate in candidates:
            frame.reset()
            logger.debug(f"Trying {candidate.rule.label} for {goal} at depth {node.depth}")
            error = self._apply(candidate, frame, rules, remaining, node)
            if error is None:
                frame.rule = candidate.rule
                self._commit(frame, node, rules)
                return node
            failures.append(error)

        frame.reset()
        return node.fail(*_summarize(goal, path, failures))

    def _lookup(
        self, goal: Term, rules: RuleSet, parent: SearchFrame | None
    ) -> tuple[MemoEntry, SearchFrame | None, int] | None:
        """Find a value built for goal, with the frame it waits on and its level."""
        lineage = rules.lineage
        if parent is not None:
            found = parent.pending_lookup(lineage, goal)
            if found is not None:
                identity, entry, owner = found
                self.contextual = True
                return entry, owner, len(lineage) - lineage.index(identity)

        found = self.memo.find(lineage, goal)
        if found is None:
            return None
        identity, entry = found
        logger.debug(f"Memo hit for {goal}")
        return entry, None, len(lineage) - lineage.index(identity)

    def _apply(
        self,
        candidate: Candidate,
        frame: SearchFrame,
        rules: RuleSet,
        remaining: int | None,
        node: DerivationNode,
    ) -> ResolutionError | None:
        """Resolve a candidate's antecedents and invoke it.

        On success fills node and returns None; otherwise returns the error
        of the failed attempt. Rules injected by an antecedent's value are
        visible to the antecedents after it and released on return.
        """
        child_remaining = None if remaining is None else remaining - 1
        children: list[DerivationNode] = []
        node.children = children

        with ExitStack() as scope:
            active = rules
            for antecedent in candidate.antecedents:
                child = self._resolve(antecedent, active, frame, child_remaining)
                children.append(child)
                if not child.is_success:
                    return child.error
                if child.scoped_rules:
                    active = scope.enter_context(active.with_scoped_rules(child.scoped_rules))

            values = [c.value for c in children]
            try:
                produced = candidate.rule.apply(values, candidate.goal)
            except DeferredError:
                raise
            except Exception as e:
                logger.debug(f"Rule {candidate.rule.label} raised while building {candidate.goal}: {e}")
                error = RuleInvocationError(candidate.goal, candidate.rule, frame.path(), reason=str(e))
                error.__cause__ = e
                return error

        self.invocations += 1

        if isinstance(produced, Scoped):
            value, scoped_rules = produced.value, produced.rules
        else:
            value, scoped_rules = produced, ()

        node.rule = candidate.rule
        # Rules injected by a sibling belong to this derivation, not to the caller's scope
        node.level = max([candidate.level, *(min(c.level, rules.level) for c in children)])
        height = 1 + max((c.height for c in children), default=0)
        node.succeed(value, height, scoped_rules)
        return None

    def _commit(self, frame: SearchFrame, node: DerivationNode, rules: RuleSet) -> None:
        """Close frame's cycle, if any, and memoize what it built.

        The value is stored under the outermost rule set whose rules can
        rebuild it, so a request made outside an injected scope finds it.
        """
        if frame.handle is not None:
            frame.handle.set(node.value)
            logger.debug(f"Closed cycle on {frame.goal}")

        owner: SearchFrame | None = None
        for child in node.children:
            dep = child.depends_on
            if dep is None or dep is frame:
                continue
            if owner is None or dep.depth < owner.depth:
                owner = dep
        node.depends_on = owner

        # Writes that only waited for this frame's handle
        for (identity, goal), entry in frame.pending.items():
            self.memo.record(identity, goal, entry)
        frame.pending.clear()

        lineage = rules.lineage
        identity = lineage[len(lineage) - node.level]
        entry = MemoEntry(node.value, node.height, node.scoped_rules, node.rule)
        if owner is None:
            self.memo.record(identity, frame.goal, entry)
        else:
            owner.pending[(identity, frame.goal)] = entry

    def _close_cycle(
        self,
        node: DerivationNode,
        in_flight: SearchFrame,
        rules: RuleSet,
        parent: SearchFrame,
        path: list[Term],
        remaining: int | None,
    ) -> DerivationNode:
        """Stand in a deferred handle for a goal already being built."""
        if in_flight.handle is None:
            built = self._build_handle(in_flight.goal, rules, parent, remaining)
            if built is None:
                logger.debug(f"Cycle on {node.goal} without a deferred-handle rule")
                return node.fail(CycleUnsupportedError(node.goal, path))
            in_flight.handle, in_flight.handle_level = built
            logger.debug(f"Opened cycle on {node.goal}")

        node.deferred = True
        node.depends_on = in_flight
        node.level = in_flight.handle_level
        return node.succeed(in_flight.handle, 1)

    def _build_handle(
        self, goal: Term, rules: RuleSet, parent: SearchFrame, remaining: int | None
    ) -> tuple[Deferred, int] | None:
        wrapped = deferred(goal)
        for candidate in rules.rules_for(wrapped):
            proxy_frame = SearchFrame(wrapped, parent)
            proxy_node = DerivationNode(goal=wrapped, depth=proxy_frame.depth)
            error = self._apply(candidate, proxy_frame, rules, remaining, proxy_node)
            if error is not None:
                continue
            handle = proxy_node.value
            if isinstance(handle, Deferred) and not handle.is_set:
                return handle, proxy_node.level
            logger.warning(
                f"Rule {candidate.rule.label} for {wrapped} did not produce an unset Deferred"
            )
        return None


def _summarize(
    goal: Term, path: list[Term], failures: list[ResolutionError]
) -> tuple[ResolutionError, DerivationStatus]:
    """Error reported when every candidate for goal failed."""
    own_invocation_errors = [
        f for f in failures if isinstance(f, RuleInvocationError) and f.descriptor == goal
    ]
    if own_invocation_errors:
        return own_invocation_errors[-1], DerivationStatus.FAILURE

    status = DerivationStatus.FAILURE
    if failures and all(_only_cut(f) for f in failures):
        status = DerivationStatus.DEPTH_EXCEEDED
    return NoDerivationError(goal, path, failures), status


def _only_cut(error: ResolutionError) -> bool:
    if isinstance(error, DepthExceededError):
        return True
    if type(error) is NoDerivationError and error.causes:
        return all(_only_cut(c) for c in error.causes)
    return False


# =============================================================================
# STRATEGIES
# =============================================================================


def depth_first(rule_set: RuleSet, memo: MemoStore, goal: Term) -> DerivationTree:
    """Resolve goal depth-first, committing to the first derivation found.

    Args:
        rule_set: Base rule set
        memo: Memo store shared by all searches on rule_set
        goal: Monomorphic descriptor to build

    Returns:
        DerivationTree (valid or not)
    """
    search = Search(rule_set, memo)
    root = search.run(goal)
    return DerivationTree(
        root=root, goal=goal, strategy=Strategy.DFS, invocations=search.invocations
    )


def iterative_deepening(
    rule_set: RuleSet, memo: MemoStore, goal: Term, config: ResolverConfig
) -> DerivationTree:
    """Resolve goal with growing height bounds.

    Values built in a failed iteration stay memoized and are reused by the
    next one; a memoized value counts with its recorded height against the
    bound. Bounded failures are shared between iterations, so a goal known
    to fail within bound k is only retried with larger bounds.

    Args:
        rule_set: Base rule set
        memo: Memo store shared by all searches on rule_set
        goal: Monomorphic descriptor to build
        config: Depth bounds

    Returns:
        DerivationTree (valid or not)
    """
    invocations = 0
    root: DerivationNode | None = None
    bound = config.initial_depth
    failures: dict[MemoKey, BoundedFailure] = {}

    for bound in config.depths():
        search = Search(rule_set, memo, failures)
        root = search.run(goal, bound)
        invocations += search.invocations
        logger.debug(f"Depth bound {bound} for {goal}: {root.status.value}")

        if root.is_success:
            return DerivationTree(
                root=root, goal=goal, strategy=Strategy.IDDFS, bound=bound, invocations=invocations
            )

        if config.stop_when_exhausted and not search.cutoff:
            return DerivationTree(
                root=root, goal=goal, strategy=Strategy.IDDFS, bound=bound, invocations=invocations
            )

    causes = root.error.causes if isinstance(root.error, NoDerivationError) else [root.error]
    root.fail(
        DepthExceededError(goal, [goal], max_depth=config.max_depth, causes=causes),
        DerivationStatus.DEPTH_EXCEEDED,
    )
    return DerivationTree(
        root=root, goal=goal, strategy=Strategy.IDDFS, bound=bound, invocations=invocations
    )

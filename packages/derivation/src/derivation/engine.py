"""
derivation/engine.py - Entry Points

An Engine binds a rule set to its memo store. generate() and generate_dfs()
resolve a goal through the engine registered for the rule set, so values
built once are returned again for as long as the process runs.

Example:
    from derivation import RuleSetBuilder, Term, generate

    rules = RuleSetBuilder("config")
    rules.fact(Term("Port"), 8080)

    @rules.rule(Term("Url"), Term("Port"))
    def url(port):
        return f"http://localhost:{port}"

    print(generate(rules.build(), Term("Url")))
"""
from __future__ import annotations

import logging
import threading
from typing import Any

from .inference import DerivationNode, DerivationStatus, DerivationTree, depth_first, iterative_deepening
from .memo import MemoStore
from .registry import RuleSet
from .terms import Term
from .types import ResolverConfig, Strategy, get_config

logger = logging.getLogger(__name__)


class Engine:
    """Resolution engine for one rule set.

    Thread-safe: cached values are read without locking; building a value
    is serialized, so concurrent callers asking for the same goal wait for
    the first build and then receive the same object.

    A build holds this engine's lock while rules run. A rule that itself
    calls generate() on another rule set takes that engine's lock too; two
    threads doing so in opposite directions deadlock. Rules that need
    values from another rule set should receive them as antecedents or
    resolve them before the build starts.
    """

    def __init__(self, rule_set: RuleSet, config: ResolverConfig | None = None):
        if rule_set.is_scoped:
            raise ValueError("Engines are bound to base rule sets, not scoped views")
        self.rule_set = rule_set
        self.config = config
        self.memo = MemoStore()
        self._lock = threading.RLock()
        self._stats_lock = threading.Lock()
        self._stats = {
            "requests": 0,
            "builds": 0,
            "failures": 0,
        }

    def derive(
        self,
        goal: Term,
        strategy: Strategy = Strategy.IDDFS,
        config: ResolverConfig | None = None,
    ) -> DerivationTree:
        """Resolve goal and return its derivation tree.

        Resolution failures are reported in the tree, not raised.

        Args:
            goal: Monomorphic descriptor to build
            strategy: Search strategy
            config: Depth bounds for iterative deepening (default: engine's,
                then the global configuration)

        Returns:
            DerivationTree (valid or not)
        """
        _check_goal(goal)
        with self._stats_lock:
            self._stats["requests"] += 1

        tree = self._cached(goal, strategy)
        if tree is not None:
            return tree

        with self._lock:
            tree = self._cached(goal, strategy)
            if tree is not None:
                return tree

            if strategy is Strategy.DFS:
                tree = depth_first(self.rule_set, self.memo, goal)
            else:
                tree = iterative_deepening(
                    self.rule_set, self.memo, goal, config or self.config or get_config()
                )

            outcome = "builds" if tree.is_valid else "failures"
            with self._stats_lock:
                self._stats[outcome] += 1

            if tree.is_valid:
                logger.info(
                    f"Built {goal} with {strategy.value} "
                    f"(height {tree.height}, {tree.invocations} rule invocations)"
                )
            else:
                logger.debug(f"Could not build {goal} with {strategy.value}: {tree.error}")

        return tree

    def generate(self, goal: Term, config: ResolverConfig | None = None) -> Any:
        """Build a value for goal with iterative deepening.

        Raises:
            NoDerivationError: No derivation within the configured depth
            RuleInvocationError: The goal's rule raised while building it
        """
        return _value_of(self.derive(goal, Strategy.IDDFS, config))

    def generate_dfs(self, goal: Term) -> Any:
        """Build a value for goal depth-first.

        Raises:
            NoDerivationError: No derivation exists
            RuleInvocationError: The goal's rule raised while building it
        """
        return _value_of(self.derive(goal, Strategy.DFS))

    def _cached(self, goal: Term, strategy: Strategy) -> DerivationTree | None:
        entry = self.memo.lookup(self.rule_set.identity, goal)
        if entry is None:
            return None
        root = DerivationNode(
            goal=goal,
            rule=entry.rule,
            status=DerivationStatus.SUCCESS,
            value=entry.value,
            height=entry.height,
            cached=True,
        )
        return DerivationTree(root=root, goal=goal, strategy=strategy)

    @property
    def stats(self) -> dict[str, int]:
        """Get statistics."""
        with self._stats_lock:
            own = dict(self._stats)
        return {**own, **{f"memo_{k}": v for k, v in self.memo.stats.items()}}


def _check_goal(goal: Term) -> None:
    if not isinstance(goal, Term):
        raise ValueError(f"Goal must be a Term, got: {goal!r}")
    if not goal.is_ground():
        raise ValueError(f"Goal must be monomorphic, got: {goal}")


def _value_of(tree: DerivationTree) -> Any:
    if not tree.is_valid:
        raise tree.error
    return tree.value


# =============================================================================
# ENGINE REGISTRY
# =============================================================================

_engines_lock = threading.Lock()


def get_engine(rule_set: RuleSet, config: ResolverConfig | None = None) -> Engine:
    """Get the engine bound to rule_set, creating it on first use.

    The engine is kept on the rule set itself and lives exactly as long as
    it does; dropping the last reference to a rule set releases its memo
    store and every value built from it. The config only applies when the
    engine is created.
    """
    with _engines_lock:
        engine = rule_set._engine
        if engine is None:
            engine = Engine(rule_set, config)
            rule_set._engine = engine
    return engine


def generate(rule_set: RuleSet, goal: Term, config: ResolverConfig | None = None) -> Any:
    """Build a value for goal from rule_set with iterative deepening."""
    return get_engine(rule_set).generate(goal, config)


def generate_dfs(rule_set: RuleSet, goal: Term) -> Any:
    """Build a value for goal from rule_set depth-first."""
    return get_engine(rule_set).generate_dfs(goal)

"""
derivation - Goal-Driven Value Construction

Backward chaining over derivation rules: given the shape of a value and
rules that say how to build shapes from other shapes, find and run a
derivation that builds the value.

This module implements:
- Shape descriptors with structural equality
- Rule sets with polymorphic signatures and scoped rule injection
- Depth-first and iterative-deepening search
- Memoization: one build per (rule set, shape)
- Deferred handles for self-referential values

Example:
    from derivation import RuleSetBuilder, Term, Var, generate

    T = Var("T")
    rules = RuleSetBuilder("demo")
    rules.fact(Term("Int"), 42)

    @rules.rule(Term("List", T), T)
    def singleton(item):
        return [item]

    print(generate(rules.build(), Term("List", Term("Int"))))  # [42]
"""

__version__ = "1.0.0"

from .cycle import CellState, Deferred, force
from .dsl import RuleBuilder, RuleSetBuilder
from .engine import Engine, generate, generate_dfs, get_engine
from .errors import (
    CycleUnsupportedError,
    DeferredAlreadySetError,
    DeferredError,
    DepthExceededError,
    NoDerivationError,
    PrematureDereferenceError,
    ResolutionError,
    RuleInvocationError,
)
from .inference import DerivationNode, DerivationStatus, DerivationTree
from .memo import MemoEntry, MemoStore
from .registry import RuleSet
from .rules import Candidate, Rule, Scoped, fact, proxy_rule, specialize
from .terms import Atom, Term, Var, deferred, descriptor_from_dict, descriptor_to_dict
from .types import ResolverConfig, Strategy, configure, get_config
from .unification import match, substitute

__all__ = [
    # Version
    "__version__",
    # Descriptors
    "Term",
    "Var",
    "Atom",
    "deferred",
    "descriptor_to_dict",
    "descriptor_from_dict",
    # Matching
    "match",
    "substitute",
    # Rules
    "Rule",
    "Scoped",
    "Candidate",
    "fact",
    "proxy_rule",
    "specialize",
    "RuleSet",
    "RuleBuilder",
    "RuleSetBuilder",
    # Cycles
    "Deferred",
    "CellState",
    "force",
    # Memo
    "MemoStore",
    "MemoEntry",
    # Search
    "DerivationTree",
    "DerivationNode",
    "DerivationStatus",
    # Entry points
    "Engine",
    "get_engine",
    "generate",
    "generate_dfs",
    # Config
    "ResolverConfig",
    "Strategy",
    "configure",
    "get_config",
    # Errors
    "ResolutionError",
    "NoDerivationError",
    "CycleUnsupportedError",
    "DepthExceededError",
    "RuleInvocationError",
    "DeferredError",
    "PrematureDereferenceError",
    "DeferredAlreadySetError",
]

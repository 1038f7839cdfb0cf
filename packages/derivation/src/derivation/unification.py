"""
derivation/unification.py - Signature Matching

Goals are always monomorphic, so matching a rule against a goal is
one-way: parameters occur only in the rule's signature and are bound to
the parts of the goal they line up with. A parameter that occurs more
than once must line up with equal parts each time.

    match(Term("Pair", T, T), Term("Pair", Int, Int))  ->  {"T": Int}
    match(Term("Pair", T, T), Term("Pair", Int, Str))  ->  None
"""
from __future__ import annotations

from .terms import Term, TermLike, Var

Substitution = dict[str, TermLike]


def match(pattern: TermLike, shape: TermLike, bindings: Substitution | None = None) -> Substitution | None:
    """Bind the parameters of pattern so that it equals shape.

    Args:
        pattern: Descriptor from a rule signature, possibly polymorphic
        shape: Monomorphic descriptor
        bindings: Bindings the result must agree with (not modified)

    Returns:
        Extended bindings, or None if pattern cannot be made equal to shape
    """
    if not shape.is_ground():
        raise ValueError(f"Can only match against monomorphic shapes, got: {shape}")

    result = dict(bindings) if bindings else {}
    if _bind(pattern, shape, result):
        return result
    return None


def _bind(pattern: TermLike, shape: TermLike, result: Substitution) -> bool:
    if isinstance(pattern, Var):
        bound = result.setdefault(pattern.name, shape)
        return bound == shape

    if isinstance(pattern, Term):
        if not isinstance(shape, Term) or pattern.key != shape.key:
            return False
        if pattern.is_ground():
            return pattern == shape
        return all(_bind(p, s, result) for p, s in zip(pattern.args, shape.args))

    return pattern == shape


def substitute(term: TermLike, bindings: Substitution) -> TermLike:
    """Replace bound parameters in term. Unbound parameters are kept."""
    if isinstance(term, Var):
        return bindings.get(term.name, term)
    if isinstance(term, Term) and bindings and not term.is_ground():
        return Term(term.functor, *(substitute(a, bindings) for a in term.args))
    return term

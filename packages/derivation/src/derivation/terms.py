"""
derivation/terms.py - Shape Descriptors

A descriptor names the shape of a value to build:

    Int                  a plain shape
    List(Int)            a shape constructor applied to shapes
    Vector(Float, 3)     constants (atoms) may appear as arguments
    Pair(?T, Str)        ?T is a parameter of a polymorphic rule signature

Goals and memo keys are always monomorphic (no parameters). Only rule
signatures may be polymorphic.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFERRED = "Deferred"


@dataclass(frozen=True)
class Var:
    """Shape parameter of a rule signature."""

    name: str

    def is_ground(self) -> bool:
        return False

    def variables(self) -> frozenset[str]:
        return frozenset((self.name,))

    def __repr__(self) -> str:
        return f"?{self.name}"


@dataclass(frozen=True)
class Atom:
    """Constant argument of a shape, such as a size or an encoding name."""

    value: Any

    def is_ground(self) -> bool:
        return True

    def variables(self) -> frozenset[str]:
        return frozenset()

    def __repr__(self) -> str:
        if isinstance(self.value, str):
            return f'"{self.value}"'
        return str(self.value)


@dataclass(frozen=True)
class Term:
    """Shape constructor with arguments.

    Raw Python values given as arguments become atoms:

        Term("Vector", Term("Float"), 3) == Term("Vector", Term("Float"), Atom(3))
    """

    functor: str
    args: tuple[Var | Atom | Term, ...]
    ground: bool = field(init=False, repr=False, compare=False)

    def __init__(self, functor: str, *args: Any):
        args = tuple(a if isinstance(a, (Var, Atom, Term)) else Atom(a) for a in args)
        object.__setattr__(self, "functor", functor)
        object.__setattr__(self, "args", args)
        object.__setattr__(self, "ground", all(a.is_ground() for a in args))

    @property
    def arity(self) -> int:
        return len(self.args)

    @property
    def key(self) -> str:
        """Index key: functor/arity."""
        return f"{self.functor}/{len(self.args)}"

    def is_ground(self) -> bool:
        return self.ground

    def variables(self) -> frozenset[str]:
        if self.ground:
            return frozenset()
        return frozenset().union(*(a.variables() for a in self.args))

    def __repr__(self) -> str:
        if not self.args:
            return self.functor
        return f"{self.functor}({', '.join(map(repr, self.args))})"


TermLike = Var | Atom | Term


def deferred(descriptor: TermLike) -> Term:
    """Shape of the deferred handle standing in for descriptor."""
    return Term(DEFERRED, descriptor)


def descriptor_to_dict(term: TermLike) -> dict:
    """Convert descriptor to dictionary."""
    if isinstance(term, Var):
        return {"type": "var", "name": term.name}
    if isinstance(term, Atom):
        return {"type": "atom", "value": term.value}
    if isinstance(term, Term):
        return {"type": "term", "functor": term.functor, "args": [descriptor_to_dict(a) for a in term.args]}
    raise ValueError(f"Not a descriptor: {term!r}")


def descriptor_from_dict(data: dict | str) -> TermLike:
    """Convert dictionary to descriptor.

    A bare string is shorthand for a shape without arguments.
    """
    if isinstance(data, str):
        return Term(data)

    kind = data.get("type")
    if kind == "var":
        return Var(data["name"])
    if kind == "atom":
        return Atom(data["value"])
    if kind == "term":
        return Term(data["functor"], *(descriptor_from_dict(a) for a in data.get("args", [])))
    raise ValueError(f"Unknown descriptor type: {kind}")

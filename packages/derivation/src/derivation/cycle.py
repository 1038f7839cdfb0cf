"""
derivation/cycle.py - Deferred Handles for Cyclic Construction

A Deferred is a two-state cell standing in for a value that is still being
built. Rules that take part in a cycle receive the handle in place of the
value and must keep the handle, not its contents:

    class Node:
        def __init__(self, nxt):
            self._next = nxt

        @property
        def next(self):
            return force(self._next)

The engine sets the handle as soon as the value it stands for is built.
Reading it earlier raises PrematureDereferenceError.
"""
from __future__ import annotations

import threading
from enum import Enum
from typing import Any

from .errors import DeferredAlreadySetError, PrematureDereferenceError


class CellState(Enum):
    """State of a deferred cell."""

    UNSET = "unset"
    SET = "set"


class Deferred:
    """Placeholder for a value under construction."""

    __slots__ = ("_state", "_value", "_lock", "descriptor")

    def __init__(self, descriptor=None):
        self.descriptor = descriptor
        self._state = CellState.UNSET
        self._value: Any = None
        self._lock = threading.Lock()

    @property
    def state(self) -> CellState:
        return self._state

    @property
    def is_set(self) -> bool:
        return self._state is CellState.SET

    def get(self) -> Any:
        """Read the value. Only valid once the cell has been set."""
        if self._state is CellState.UNSET:
            raise PrematureDereferenceError(
                f"Deferred value for {self.descriptor} read before it was built"
            )
        return self._value

    def set(self, value: Any) -> None:
        """Resolve the cell. May be called once."""
        with self._lock:
            if self._state is CellState.SET:
                raise DeferredAlreadySetError(f"Deferred value for {self.descriptor} already set")
            self._value = value
            self._state = CellState.SET

    __call__ = get

    def __repr__(self) -> str:
        if self._state is CellState.SET:
            return f"Deferred({self.descriptor}, set)"
        return f"Deferred({self.descriptor}, unset)"


def force(value: Any) -> Any:
    """Dereference a handle, or return a plain value unchanged."""
    if isinstance(value, Deferred):
        return value.get()
    return value

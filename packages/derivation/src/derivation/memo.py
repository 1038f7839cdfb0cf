"""
derivation/memo.py - Memo Store

Built values keyed by (rule-set identity, descriptor). The first value
recorded for a key is permanent: later records for the same key return
the stored entry unchanged. Failures are never stored.
"""
from __future__ import annotations

import threading
from collections.abc import Hashable, Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from .rules import Rule
from .terms import Term

MemoKey = tuple[Hashable, Term]


@dataclass(frozen=True)
class MemoEntry:
    """A built value and how it was built."""

    value: Any
    height: int
    rules: tuple[Rule, ...] = ()
    rule: Rule | None = None


class MemoStore:
    """Goal-indexed cache of built values.

    Reads take no lock on the entries; writes are serialized so that
    concurrent records for the same key agree on a single entry. Counters
    have their own lock.
    """

    def __init__(self):
        self._entries: dict[MemoKey, MemoEntry] = {}
        self._lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "writes": 0,
        }

    def lookup(self, identity: Hashable, descriptor: Term) -> MemoEntry | None:
        """Get the entry built for descriptor under one rule-set identity."""
        found = self.find((identity,), descriptor)
        return found[1] if found else None

    def find(self, lineage: Iterable[Hashable], descriptor: Term) -> tuple[Hashable, MemoEntry] | None:
        """Get the first identity in lineage with an entry for descriptor, and the entry."""
        for identity in lineage:
            entry = self._entries.get((identity, descriptor))
            if entry is not None:
                self._count("hits")
                return identity, entry
        self._count("misses")
        return None

    def _count(self, name: str) -> None:
        with self._stats_lock:
            self._stats[name] += 1

    def record(self, identity: Hashable, descriptor: Term, entry: MemoEntry) -> MemoEntry:
        """Store entry unless one is already present.

        Returns:
            The entry that is stored for the key after the call
        """
        if not descriptor.is_ground():
            raise ValueError(f"Memo keys must be monomorphic, got: {descriptor}")

        key = (identity, descriptor)
        with self._lock:
            existing = self._entries.get(key)
            if existing is not None:
                return existing
            self._entries[key] = entry
        self._count("writes")
        return entry

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: MemoKey) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[MemoKey]:
        return iter(list(self._entries))

    @property
    def stats(self) -> dict[str, int]:
        """Get statistics."""
        with self._stats_lock:
            return dict(self._stats)

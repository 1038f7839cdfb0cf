"""
tests/test_memo_and_cells.py - Memo Store and Deferred Cell Tests

Verifies:
    - First recorded value wins and is never overwritten
    - Lookups along a rule-set lineage
    - Deferred cells: read-after-write only, single write
"""
import threading

import pytest

from derivation import (
    CellState,
    Deferred,
    DeferredAlreadySetError,
    MemoEntry,
    MemoStore,
    PrematureDereferenceError,
    Term,
    Var,
    force,
)

INT = Term("Int")


# =============================================================================
# MEMO STORE
# =============================================================================

class TestMemoStore:
    """Goal-indexed cache."""

    def test_lookup_miss_then_hit(self):
        memo = MemoStore()
        assert memo.lookup("rules", INT) is None
        entry = MemoEntry(value=1, height=1)
        assert memo.record("rules", INT, entry) is entry
        assert memo.lookup("rules", INT) is entry
        assert memo.stats == {"hits": 1, "misses": 1, "writes": 1}

    def test_first_write_wins(self):
        memo = MemoStore()
        first = memo.record("rules", INT, MemoEntry(value="first", height=1))
        second = memo.record("rules", INT, MemoEntry(value="second", height=1))
        assert second is first
        assert memo.lookup("rules", INT).value == "first"
        assert len(memo) == 1

    def test_keys_include_rule_set_identity(self):
        memo = MemoStore()
        memo.record("a", INT, MemoEntry(value=1, height=1))
        assert memo.lookup("b", INT) is None
        assert ("a", INT) in memo
        assert list(memo) == [("a", INT)]

    def test_find_walks_lineage(self):
        memo = MemoStore()
        memo.record("base", INT, MemoEntry(value=1, height=1))
        identity, entry = memo.find(("scope", "base"), INT)
        assert identity == "base"
        assert entry.value == 1
        assert memo.find(("scope",), INT) is None

    def test_concurrent_lookups_count_every_request(self):
        memo = MemoStore()
        memo.record("rules", INT, MemoEntry(value=1, height=1))

        def reader():
            for _ in range(200):
                memo.lookup("rules", INT)

        threads = [threading.Thread(target=reader) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert memo.stats["hits"] == 1600

    def test_rejects_polymorphic_key(self):
        memo = MemoStore()
        with pytest.raises(ValueError):
            memo.record("rules", Term("List", Var("T")), MemoEntry(value=[], height=1))

    def test_concurrent_records_agree(self):
        memo = MemoStore()
        stored = []

        def writer(n):
            stored.append(memo.record("rules", INT, MemoEntry(value=n, height=1)))

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len({id(e) for e in stored}) == 1
        assert memo.stats["writes"] == 1


# =============================================================================
# DEFERRED CELLS
# =============================================================================

class TestDeferred:
    """Two-phase cell for values under construction."""

    def test_starts_unset(self):
        cell = Deferred(INT)
        assert cell.state is CellState.UNSET
        assert not cell.is_set
        with pytest.raises(PrematureDereferenceError):
            cell.get()

    def test_read_after_set(self):
        cell = Deferred(INT)
        value = object()
        cell.set(value)
        assert cell.state is CellState.SET
        assert cell.get() is value
        assert cell() is value

    def test_set_once(self):
        cell = Deferred(INT)
        cell.set(1)
        with pytest.raises(DeferredAlreadySetError):
            cell.set(2)
        assert cell.get() == 1

    def test_force(self):
        cell = Deferred()
        cell.set("built")
        assert force(cell) == "built"
        assert force("plain") == "plain"

    def test_repr(self):
        cell = Deferred(INT)
        assert repr(cell) == "Deferred(Int, unset)"
        cell.set(0)
        assert repr(cell) == "Deferred(Int, set)"

"""
Monotonic Id Conformance Tests

INVARIANT: Generated ids are unique and strictly increasing.

    ∀ entities e1 created before e2 of the same kind:
        sequence(e1) < sequence(e2)

    Counters only move when an entity is actually created; a rejected
    operation never burns an id.
"""

import tempfile
from pathlib import Path

from hypothesis import given, settings
from hypothesis import strategies as st

from accrual_ledger import LedgerStore, TransactionProcessor, LedgerError
from accrual_ledger.core import sequence_of

from tests.fake_clock import FakeClock


class TestMonotonicIdProperties:
    """Property-based id allocation tests."""

    @given(st.lists(st.sampled_from(["user", "account", "deposit", "overdraw"]), min_size=1, max_size=30))
    @settings(max_examples=50, deadline=None)
    def test_ids_increase_without_gaps(self, ops):
        """
        PROPERTY: The n-th created entity of a kind has sequence n.
        """
        with tempfile.TemporaryDirectory() as tmp:
            store = LedgerStore(Path(tmp) / "bank.json", clock=FakeClock())
            processor = TransactionProcessor(store)
            owner = store.create_user("owner")
            account = store.create_account(owner.id, "RUB")
            created = {"user": [owner.id], "account": [account.id], "tx": []}

            for op in ops:
                if op == "user":
                    created["user"].append(store.create_user("x").id)
                elif op == "account":
                    created["account"].append(store.create_account(owner.id, "RUB").id)
                elif op == "deposit":
                    created["tx"].append(processor.deposit(account.id, 1).id)
                else:
                    try:
                        processor.withdraw(account.id, 10**9)
                    except LedgerError:
                        pass

            for ids in created.values():
                assert [sequence_of(i) for i in ids] == list(range(1, len(ids) + 1))

            snap = store.export_snapshot()
            assert snap.next_user == len(created["user"])
            assert snap.next_acc == len(created["account"])
            assert snap.next_tx == len(created["tx"])

"""
Determinism Conformance Tests

INVARIANT: The ledger is a pure function of its inputs.

    ∀ operation sequence S, clock readings C:
        run(S, C) on an empty ledger = run(S, C) on another empty ledger
        (byte-identical backing files)

    reload(persist(state)) = state

No hidden randomness, no dependence on dict iteration order across
processes, and nothing in memory that the file does not carry.
"""

import tempfile
from pathlib import Path

from hypothesis import given, settings
from hypothesis import strategies as st

from accrual_ledger import (
    LedgerStore, TransactionProcessor, RateTable, LedgerError, GAME_INSTRUMENT,
)

from tests.conftest import small_catalog
from tests.fake_clock import FakeClock


operations = st.lists(
    st.tuples(
        st.sampled_from(["deposit", "withdraw", "transfer", "buy", "sell", "wait"]),
        st.integers(min_value=0, max_value=2),
        st.integers(min_value=1, max_value=5_000),
    ),
    min_size=1,
    max_size=30,
)


def _run(tmp: Path, ops) -> LedgerStore:
    clock = FakeClock()
    store = LedgerStore(tmp / "bank.json", clock=clock)
    rates = RateTable(tmp / "rates.json", clock=clock)
    rates.ensure()
    processor = TransactionProcessor(store, catalog=small_catalog(), rates=rates)
    accounts = []
    for name, currency in (("alice", "RUB"), ("bob", "USD"), ("carol", "EUR")):
        user = store.create_user(name)
        accounts.append(store.create_account(user.id, currency).id)
    store.create_user("player", user_id="42")
    processor.credit_instrument("42", GAME_INSTRUMENT, "123.45")

    for kind, idx, amount in ops:
        try:
            if kind == "deposit":
                processor.deposit(accounts[idx], amount)
            elif kind == "withdraw":
                processor.withdraw(accounts[idx], amount)
            elif kind == "transfer":
                processor.transfer(accounts[idx], accounts[(idx + 1) % 3], amount)
            elif kind == "buy":
                processor.purchase("42", idx + 1)
            elif kind == "sell":
                processor.sale("42", idx + 1)
            else:
                clock.advance(seconds=amount)
        except LedgerError:
            pass
    return store


class TestDeterminismProperties:
    """Property-based determinism tests."""

    @given(operations)
    @settings(max_examples=30, deadline=None)
    def test_same_inputs_same_file(self, ops):
        """
        PROPERTY: Two runs of the same operations write identical files.
        """
        with tempfile.TemporaryDirectory() as a, tempfile.TemporaryDirectory() as b:
            first = _run(Path(a), ops)
            second = _run(Path(b), ops)
            assert first.path.read_bytes() == second.path.read_bytes()

    @given(operations)
    @settings(max_examples=30, deadline=None)
    def test_reload_reproduces_state(self, ops):
        """
        PROPERTY: A store reopened from its file equals the one that wrote it.
        """
        with tempfile.TemporaryDirectory() as tmp:
            store = _run(Path(tmp), ops)
            reopened = LedgerStore(store.path, clock=store.clock)
            assert reopened.export_snapshot() == store.export_snapshot()

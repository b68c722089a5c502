"""
Conservation Conformance Tests

INVARIANT: Same-currency transfers conserve the total balance.

    ∀ sequence of transfers S between accounts of one currency:
        Σ balances after S = Σ balances before S

Deposits add exactly their amount, withdrawals remove exactly theirs.
Rejected operations change nothing.
"""

import tempfile
from pathlib import Path

from hypothesis import given, settings, note, Phase
from hypothesis import strategies as st

from accrual_ledger import LedgerStore, TransactionProcessor, LedgerError

from tests.fake_clock import FakeClock


N_ACCOUNTS = 4


def _setup(tmp: str, initial):
    store = LedgerStore(Path(tmp) / "bank.json", clock=FakeClock())
    processor = TransactionProcessor(store)
    accounts = []
    for i, amount in enumerate(initial):
        user = store.create_user(f"user{i}")
        account = store.create_account(user.id, "RUB")
        if amount > 0:
            processor.deposit(account.id, amount)
        accounts.append(account.id)
    return store, processor, accounts


def _total(store, accounts):
    return sum(store.get_account(a).balance for a in accounts)


transfer_ops = st.lists(
    st.tuples(
        st.integers(min_value=0, max_value=N_ACCOUNTS - 1),
        st.integers(min_value=0, max_value=N_ACCOUNTS - 1),
        st.integers(min_value=1, max_value=20_000),
    ),
    min_size=1,
    max_size=25,
)


class TestConservationProperties:
    """Property-based conservation tests."""

    @given(
        st.lists(st.integers(min_value=0, max_value=50_000), min_size=N_ACCOUNTS, max_size=N_ACCOUNTS),
        transfer_ops,
    )
    @settings(max_examples=40, deadline=None, phases=[Phase.generate, Phase.target])
    def test_transfers_conserve_total(self, initial, ops):
        """
        PROPERTY: Any sequence of transfers, accepted or rejected, keeps the total.
        """
        with tempfile.TemporaryDirectory() as tmp:
            store, processor, accounts = _setup(tmp, initial)
            expected = sum(initial)
            for src, dst, amount in ops:
                try:
                    processor.transfer(accounts[src], accounts[dst], amount)
                except LedgerError as exc:
                    note(f"rejected {src}->{dst} {amount}: {exc.code}")
                assert _total(store, accounts) == expected

    @given(st.lists(
        st.tuples(st.booleans(), st.integers(min_value=1, max_value=10_000)),
        min_size=1,
        max_size=30,
    ))
    @settings(max_examples=40, deadline=None)
    def test_deposits_and_withdrawals_account_exactly(self, ops):
        """
        PROPERTY: balance = Σ accepted deposits − Σ accepted withdrawals.
        """
        with tempfile.TemporaryDirectory() as tmp:
            store, processor, accounts = _setup(tmp, [0])
            account = accounts[0]
            expected = 0
            for is_deposit, amount in ops:
                if is_deposit:
                    processor.deposit(account, amount)
                    expected += amount
                else:
                    try:
                        processor.withdraw(account, amount)
                        expected -= amount
                    except LedgerError:
                        pass
                assert store.get_account(account).balance == expected

    @given(st.lists(st.integers(min_value=1, max_value=5_000), min_size=1, max_size=15))
    @settings(max_examples=30, deadline=None)
    def test_transaction_log_explains_balances(self, amounts):
        """
        PROPERTY: Replaying the transaction log reproduces every balance.
        """
        with tempfile.TemporaryDirectory() as tmp:
            store, processor, accounts = _setup(tmp, [25_000, 0, 0])
            for i, amount in enumerate(amounts):
                try:
                    processor.transfer(accounts[i % 3], accounts[(i + 1) % 3], amount)
                except LedgerError:
                    pass

            replayed = {a: 0 for a in accounts}
            for tx in store.export_snapshot().txs.values():
                if tx.from_account:
                    replayed[tx.from_account] -= int(tx.amount)
                if tx.to_account:
                    replayed[tx.to_account] += int(tx.amount)
            for a in accounts:
                assert store.get_account(a).balance == replayed[a]

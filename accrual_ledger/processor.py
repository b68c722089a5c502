"""
processor.py - Invariant-checked balance mutations

Every operation runs inside one LedgerStore.with_exclusive_access() call:
validate fully, then mutate, then append an immutable Transaction. Because the
store stages the mutation on a working copy, a rejected operation leaves the
ledger exactly as it was.

Operations:
    Fiat accounts (int minor units):  deposit, withdraw, transfer, close_account
    Game balances (Decimal):          purchase, sale, credit_instrument, debit_instrument
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Callable, FrozenSet, Optional, TypeVar

from .core import (
    # Types
    Account, Transaction, TxKind, User,
    # Constants
    ZERO,
    # Exceptions
    LedgerError, InvalidAmount, InsufficientFunds, CapacityExceeded,
    NotOwned, AccountClosed, ValidationError,
    # Helpers
    to_decimal,
)
from .catalog import Catalog
from .accrual import AccrualEngine
from .rates import RateTable, convert
from .store import LedgerStore, SnapshotHandle


T = TypeVar("T")

DEFAULT_REFUND_FACTOR = Decimal("0.8")


@dataclass(frozen=True, slots=True)
class ProcessorConfig:
    """
    Tunables of the transaction processor.

    Attributes:
        refund_factor: Share of the unit price credited back on sale (0.8 or 0.5 in practice)
        max_items: Inventory capacity per user; None means unlimited
        overdraft_currencies: Account currencies allowed to go below zero
    """
    refund_factor: Decimal = DEFAULT_REFUND_FACTOR
    max_items: Optional[int] = None
    overdraft_currencies: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        object.__setattr__(self, 'refund_factor', to_decimal(self.refund_factor))
        if not ZERO <= self.refund_factor <= Decimal(1):
            raise ValueError(f"refund_factor must be within [0, 1], got {self.refund_factor}")
        if self.max_items is not None and self.max_items < 0:
            raise ValueError(f"max_items must be >= 0, got {self.max_items}")
        object.__setattr__(
            self, 'overdraft_currencies', frozenset(c.upper() for c in self.overdraft_currencies)
        )


@dataclass(frozen=True, slots=True)
class ItemTrade:
    """
    Result of a purchase or sale.

    Attributes:
        transaction: The recorded purchase/sale
        user: The user after the trade (balance, inventory, accrual window)
        income_rate: The user's income per second after the trade
    """
    transaction: Transaction
    user: User
    income_rate: Decimal


def require_minor_amount(amount: Any) -> int:
    """
    Validate a fiat amount: a positive int of minor units.

    Raises:
        InvalidAmount: For bools, non-ints, zero and negatives
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"amount must be an integer number of minor units, got {amount!r}")
    if amount <= 0:
        raise InvalidAmount(f"amount must be > 0, got {amount}")
    return amount


def require_positive(amount: Any) -> Decimal:
    d = to_decimal(amount)
    if d <= ZERO:
        raise InvalidAmount(f"amount must be > 0, got {d}")
    return d


class TransactionProcessor:
    """
    Applies deposits, withdrawals, transfers and item trades to a LedgerStore.

    The processor holds no ledger state of its own; it can be shared between
    threads as long as the store is.

    Example:
        processor = TransactionProcessor(store, catalog=default_catalog())
        tx = processor.deposit("a000001", 10000, note="salary")
    """

    def __init__(
        self,
        store: LedgerStore,
        catalog: Optional[Catalog] = None,
        rates: Optional[RateTable] = None,
        config: Optional[ProcessorConfig] = None,
        accrual: Optional[AccrualEngine] = None,
        verbose: bool = False,
    ):
        """
        Args:
            store: The ledger store to mutate
            catalog: Item catalog, required for purchase and sale
            rates: Exchange-rate table, required for cross-currency transfers
            config: Refund factor, capacity and overdraft settings
            accrual: If given, income is folded in before every purchase and sale
            verbose: Print one line per applied or rejected operation
        """
        self.store = store
        self.catalog = catalog
        self.rates = rates
        self.config = config or ProcessorConfig()
        self.accrual = accrual
        self.verbose = verbose

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def _run(
        self,
        label: str,
        mutator: Callable[[SnapshotHandle], T],
        cancel_check: Optional[Callable[[], bool]] = None,
    ) -> T:
        try:
            result = self.store.with_exclusive_access(mutator, cancel_check=cancel_check)
        except LedgerError as exc:
            if self.verbose:
                print(f"✗ REJECTED: {label}: [{exc.code}] {exc}")
            raise
        if self.verbose:
            print(f"✓ APPLIED: {label}")
        return result

    @staticmethod
    def _open_account(h: SnapshotHandle, account_id: str) -> Account:
        account = h.get_account(account_id)
        if account.closed:
            raise AccountClosed(f"account {account_id} is closed")
        return account

    def _can_go_negative(self, account: Account) -> bool:
        return account.currency.upper() in self.config.overdraft_currencies

    def _require_catalog(self) -> Catalog:
        if self.catalog is None:
            raise ValidationError("no item catalog configured")
        return self.catalog

    # ========================================================================
    # FIAT ACCOUNTS
    # ========================================================================

    def deposit(
        self,
        account_id: str,
        amount: int,
        note: str = "",
        cancel_check: Optional[Callable[[], bool]] = None,
    ) -> Transaction:
        """
        Credit an open account.

        Raises:
            InvalidAmount, NotFound, AccountClosed
        """
        require_minor_amount(amount)

        def mutate(h: SnapshotHandle) -> Transaction:
            account = self._open_account(h, account_id)
            h.put_account(replace(account, balance=account.balance + amount))
            return h.record_transaction(
                TxKind.DEPOSIT, amount, account.currency, to_account=account.id, note=note
            )

        return self._run(f"deposit {amount} -> {account_id}", mutate, cancel_check)

    def withdraw(
        self,
        account_id: str,
        amount: int,
        note: str = "",
        cancel_check: Optional[Callable[[], bool]] = None,
    ) -> Transaction:
        """
        Debit an open account; the balance may not go below zero.

        Raises:
            InvalidAmount, InsufficientFunds, NotFound, AccountClosed
        """
        require_minor_amount(amount)

        def mutate(h: SnapshotHandle) -> Transaction:
            account = self._open_account(h, account_id)
            if account.balance < amount and not self._can_go_negative(account):
                raise InsufficientFunds(
                    f"account {account_id} has {account.balance}, cannot withdraw {amount}"
                )
            h.put_account(replace(account, balance=account.balance - amount))
            return h.record_transaction(
                TxKind.WITHDRAW, amount, account.currency, from_account=account.id, note=note
            )

        return self._run(f"withdraw {amount} <- {account_id}", mutate, cancel_check)

    def transfer(
        self,
        from_account: str,
        to_account: str,
        amount: int,
        note: str = "",
        cancel_check: Optional[Callable[[], bool]] = None,
    ) -> Transaction:
        """
        Move amount from one open account to another.

        Between different currencies the credited amount is converted with
        the current rate table and the note gets an "(FX A→B)" suffix. The
        transaction always records the debited amount in the sender's currency.

        Raises:
            InvalidAmount, InsufficientFunds, NotFound, AccountClosed,
            UnknownCurrency, ValidationError (same account on both sides)
        """
        require_minor_amount(amount)
        if from_account == to_account:
            raise ValidationError("cannot transfer to the same account")

        def mutate(h: SnapshotHandle) -> Transaction:
            sender = self._open_account(h, from_account)
            receiver = self._open_account(h, to_account)
            if sender.balance < amount and not self._can_go_negative(sender):
                raise InsufficientFunds(
                    f"account {from_account} has {sender.balance}, cannot transfer {amount}"
                )

            credit = amount
            tx_note = note
            if sender.currency != receiver.currency:
                rates = self.rates.load() if self.rates is not None else None
                credit = convert(amount, sender.currency, receiver.currency, rates)
                tx_note = f"{note} (FX {sender.currency}→{receiver.currency})".strip()

            h.put_account(replace(sender, balance=sender.balance - amount))
            h.put_account(replace(receiver, balance=receiver.balance + credit))
            return h.record_transaction(
                TxKind.TRANSFER, amount, sender.currency,
                from_account=sender.id, to_account=receiver.id, note=tx_note,
            )

        return self._run(f"transfer {amount} {from_account} -> {to_account}", mutate, cancel_check)

    def close_account(
        self,
        account_id: str,
        cancel_check: Optional[Callable[[], bool]] = None,
    ) -> Account:
        """Close an account; it rejects every later deposit, withdrawal and transfer."""
        return self._run(
            f"close {account_id}", lambda h: h.close_account(account_id), cancel_check
        )

    # ========================================================================
    # GAME ITEMS
    # ========================================================================

    def _touch(self, h: SnapshotHandle, user_id: str) -> User:
        user = h.get_user(user_id)
        if self.accrual is not None:
            user = self.accrual.apply(user, h.now).user
        return user

    def purchase(
        self,
        user_id: str,
        item_id: int,
        cancel_check: Optional[Callable[[], bool]] = None,
    ) -> ItemTrade:
        """
        Buy one unit of a catalog item with the catalog's instrument.

        Raises:
            NotFound: Unknown user or item
            InsufficientFunds: Balance below the unit price
            CapacityExceeded: Inventory already at max_items
        """
        catalog = self._require_catalog()
        item = catalog.get(item_id)
        instrument = catalog.currency

        def mutate(h: SnapshotHandle) -> ItemTrade:
            user = self._touch(h, user_id)
            max_items = self.config.max_items
            if max_items is not None and len(user.owned_items) >= max_items:
                raise CapacityExceeded(f"inventory is full ({max_items} items)")
            balance = user.balance(instrument)
            if balance < item.unit_price:
                raise InsufficientFunds(
                    f"{item.name} costs {item.unit_price} {instrument}, balance is {balance}"
                )
            user = user.with_balance(instrument, balance - item.unit_price).with_item_added(item.id)
            h.put_user(user)
            tx = h.record_transaction(
                TxKind.PURCHASE, item.unit_price, instrument,
                note=item.name, user_id=user.id, item_id=item.id,
            )
            return ItemTrade(tx, user, catalog.income_rate(user.owned_items))

        return self._run(f"purchase item {item_id} by {user_id}", mutate, cancel_check)

    def sale(
        self,
        user_id: str,
        item_id: int,
        cancel_check: Optional[Callable[[], bool]] = None,
    ) -> ItemTrade:
        """
        Sell one owned unit back for unit_price * refund_factor.

        Raises:
            NotFound: Unknown user or item
            NotOwned: The user holds no unit of the item
        """
        catalog = self._require_catalog()
        item = catalog.get(item_id)
        instrument = catalog.currency
        refund = item.unit_price * self.config.refund_factor

        def mutate(h: SnapshotHandle) -> ItemTrade:
            user = self._touch(h, user_id)
            if not user.owns(item.id):
                raise NotOwned(f"user {user_id} does not own item {item.id}")
            user = user.with_item_removed(item.id)
            user = user.with_balance(instrument, user.balance(instrument) + refund)
            h.put_user(user)
            tx = h.record_transaction(
                TxKind.SALE, refund, instrument,
                note=item.name, user_id=user.id, item_id=item.id,
            )
            return ItemTrade(tx, user, catalog.income_rate(user.owned_items))

        return self._run(f"sale item {item_id} by {user_id}", mutate, cancel_check)

    def credit_instrument(self, user_id: str, instrument: str, amount: Any) -> User:
        """Add to a user's game balance (rewards, admin faucet)."""
        value = require_positive(amount)

        def mutate(h: SnapshotHandle) -> User:
            user = h.get_user(user_id)
            return h.put_user(user.with_balance(instrument, user.balance(instrument) + value))

        return self._run(f"credit {value} {instrument} -> {user_id}", mutate)

    def debit_instrument(self, user_id: str, instrument: str, amount: Any) -> User:
        """Take from a user's game balance; never below zero."""
        value = require_positive(amount)

        def mutate(h: SnapshotHandle) -> User:
            user = h.get_user(user_id)
            balance = user.balance(instrument)
            if balance < value:
                raise InsufficientFunds(f"{user_id} has {balance} {instrument}, cannot debit {value}")
            return h.put_user(user.with_balance(instrument, balance - value))

        return self._run(f"debit {value} {instrument} <- {user_id}", mutate)

    def __repr__(self) -> str:
        return f"TransactionProcessor({self.store!r}, refund_factor={self.config.refund_factor})"

"""
bank.py - Service facade: one method per logical action

The Bank wires the store, processor, accrual engine, rate table, backups and
reports together. Chat bots and the CLI call these methods with plain
arguments and get records or a LedgerError back; formatting is theirs.

Toy bank:   register, login, open_account, list_accounts,
            deposit, withdraw, transfer, history
Mining game: touch, buy, sell, inventory, mining_status, reset_player
Admin:      set_rate, get_rates, close_account, list_users, backup_now,
            list_backups, restore_backup, export_account_statement,
            export_user_summary

Admin methods take an optional ``actor`` user id. With an actor the call is
only allowed for admins; without one the caller is trusted (local CLI).
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
import sys

from .core import (
    # Types
    Account, CatalogItem, Role, Transaction, User,
    # Constants
    DEFAULT_CURRENCY,
    # Exceptions
    LedgerError, AlreadyExists, AuthError, PermissionDenied, ValidationError,
)
from .accrual import AccrualEngine, AccrualPolicy, window_remaining
from .auth import DEFAULT_BCRYPT_ROUNDS, hash_password, validate_credentials, verify_password
from .backup import BackupManager
from .catalog import Catalog, default_catalog
from .config import LedgerConfig
from .processor import ItemTrade, ProcessorConfig, TransactionProcessor
from .rates import ExchangeRates, RateTable
from .reports import export_account_statement, export_user_summary
from .store import LedgerStore, SnapshotHandle, SnapshotView


DEFAULT_ADMIN_NAME = "admin"
DEFAULT_ADMIN_PASSWORD = "admin"


# ============================================================================
# RESULT TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class TouchResult:
    """
    A player after the start-of-command accrual.

    Attributes:
        user: The up-to-date player
        earned: Income credited by this touch
        created: True if the player did not exist before
    """
    user: User
    earned: Decimal
    created: bool


@dataclass(frozen=True, slots=True)
class InventoryLine:
    item: CatalogItem
    count: int

    @property
    def rate(self) -> Decimal:
        return self.item.income_rate * self.count


@dataclass(frozen=True, slots=True)
class InventoryView:
    """
    A player's items grouped by id, in first-acquired order.

    Attributes:
        lines: One line per distinct item
        rate: Total income per second
        nominal_value: Sum of unit prices
        resale_value: What selling everything would credit
    """
    lines: Tuple[InventoryLine, ...]
    rate: Decimal
    nominal_value: Decimal
    resale_value: Decimal

    @property
    def counts(self) -> Dict[int, int]:
        return {line.item.id: line.count for line in self.lines}

    @property
    def total_items(self) -> int:
        return sum(line.count for line in self.lines)


@dataclass(frozen=True, slots=True)
class MiningStatus:
    """Balance, rate and window state of a player at one instant."""
    user_id: str
    instrument: str
    balance: Decimal
    rate: Decimal
    window_end: Optional[datetime]
    window_remaining: timedelta


# ============================================================================
# BANK
# ============================================================================

class Bank:
    """
    Entry point for chat bots and the CLI.

    Example:
        bank = Bank(LedgerStore("data/bank.json"), rates=RateTable("data/rates.json"))
        alice = bank.register("alice", "s3cret")
        acc = bank.open_account(alice.id, "RUB")
        bank.deposit(acc.id, 10000)
    """

    def __init__(
        self,
        store: LedgerStore,
        catalog: Optional[Catalog] = None,
        rates: Optional[RateTable] = None,
        backups: Optional[BackupManager] = None,
        processor_config: Optional[ProcessorConfig] = None,
        accrual_policy: Optional[AccrualPolicy] = None,
        reports_dir: Union[str, Path] = "reports",
        bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS,
        auto_backup: bool = False,
        verbose: bool = False,
    ):
        """
        Args:
            store: Ledger store
            catalog: Item catalog (default: the GPU catalog)
            rates: Exchange-rate table; cross-currency transfers fail without one
            backups: Backup manager; backup operations fail without one
            processor_config: Refund factor, capacity, overdraft settings
            accrual_policy: Accrual window; the instrument defaults to the catalog's
            reports_dir: Default output directory of CSV exports
            bcrypt_rounds: bcrypt cost for new password hashes
            auto_backup: Back up after every successful deposit, withdrawal and transfer
            verbose: Print applied/rejected operations
        """
        self.store = store
        self.catalog = catalog if catalog is not None else default_catalog()
        self.rates = rates
        self.backups = backups
        self.accrual = AccrualEngine(
            self.catalog,
            accrual_policy or AccrualPolicy(instrument=self.catalog.currency),
        )
        self.processor = TransactionProcessor(
            store,
            catalog=self.catalog,
            rates=rates,
            config=processor_config,
            accrual=self.accrual,
            verbose=verbose,
        )
        self.reports_dir = Path(reports_dir)
        self.bcrypt_rounds = bcrypt_rounds
        self.auto_backup = auto_backup
        self.verbose = verbose

    @classmethod
    def from_config(cls, config: LedgerConfig, catalog: Optional[Catalog] = None) -> Bank:
        """Build the whole stack from a LedgerConfig; creates the rate table if missing."""
        store = LedgerStore(
            config.db_file,
            rollback_on_failure=config.strict_persistence,
            verbose=config.verbose,
        )
        rates = RateTable(config.rates_file, clock=store.clock)
        rates.ensure()
        catalog = catalog if catalog is not None else default_catalog()
        return cls(
            store,
            catalog=catalog,
            rates=rates,
            backups=BackupManager(config.db_file, config.backups_dir, clock=store.clock),
            processor_config=ProcessorConfig(
                refund_factor=config.refund_factor,
                max_items=config.max_items,
            ),
            accrual_policy=AccrualPolicy(window=config.accrual_window, instrument=catalog.currency),
            reports_dir=config.reports_dir,
            bcrypt_rounds=config.bcrypt_rounds,
            auto_backup=config.auto_backup,
            verbose=config.verbose,
        )

    # ========================================================================
    # USERS AND CREDENTIALS
    # ========================================================================

    def register(self, username: str, password: str) -> User:
        """
        Create a credentialed user.

        Raises:
            ValidationError: Username shorter than 3 or password shorter than 4 characters
            AlreadyExists: Username taken
        """
        username = validate_credentials(username, password)
        if self.store.with_shared_access(lambda v: v.find_user_by_name(username)) is not None:
            raise AlreadyExists(f"user {username!r} already exists")
        # bcrypt is slow; hash before taking the writer lock
        password_hash = hash_password(password, self.bcrypt_rounds)
        return self.store.with_exclusive_access(
            lambda h: h.create_user(username, password_hash, Role.USER)
        )

    def login(self, username: str, password: str) -> User:
        """
        Check credentials.

        Raises:
            AuthError: Unknown user or wrong password (same message for both)
        """
        user = self.store.with_shared_access(lambda v: v.find_user_by_name((username or "").strip()))
        if user is None or not verify_password(password or "", user.password_hash):
            raise AuthError("invalid username or password")
        return user

    def ensure_default_admin(self, password: str = DEFAULT_ADMIN_PASSWORD) -> User:
        """Create the "admin" user with role admin unless it already exists."""
        existing = self.store.with_shared_access(lambda v: v.find_user_by_name(DEFAULT_ADMIN_NAME))
        if existing is not None:
            return existing
        password_hash = hash_password(password, self.bcrypt_rounds)
        try:
            return self.store.with_exclusive_access(
                lambda h: h.create_user(DEFAULT_ADMIN_NAME, password_hash, Role.ADMIN)
            )
        except AlreadyExists:
            # Created concurrently
            return self.store.get_user_by_name(DEFAULT_ADMIN_NAME)

    def get_user(self, user_id: str) -> User:
        return self.store.get_user(user_id)

    # ========================================================================
    # FIAT ACCOUNTS
    # ========================================================================

    def open_account(self, user_id: str, currency: str = DEFAULT_CURRENCY) -> Account:
        """
        Open a zero-balance account for an existing user.

        Raises:
            NotFound: Unknown user
            ValidationError: Currency code is not alphabetic
        """
        currency = (currency or DEFAULT_CURRENCY).strip().upper()
        if not currency.isalpha():
            raise ValidationError(f"invalid currency code {currency!r}")
        return self.store.create_account(user_id, currency)

    def list_accounts(self, user_id: str, include_closed: bool = False) -> List[Account]:
        """The user's accounts ordered by id; closed ones only on request."""
        def read(v: SnapshotView) -> List[Account]:
            v.get_user(user_id)
            return v.list_accounts_by_owner(user_id, include_closed)

        return self.store.with_shared_access(read)

    def get_account(self, account_id: str) -> Account:
        return self.store.get_account(account_id)

    def deposit(self, account_id: str, amount: int, note: str = "") -> Transaction:
        tx = self.processor.deposit(account_id, amount, note)
        self._after_money_movement()
        return tx

    def withdraw(self, account_id: str, amount: int, note: str = "") -> Transaction:
        tx = self.processor.withdraw(account_id, amount, note)
        self._after_money_movement()
        return tx

    def transfer(self, from_account: str, to_account: str, amount: int, note: str = "") -> Transaction:
        tx = self.processor.transfer(from_account, to_account, amount, note)
        self._after_money_movement()
        return tx

    def history(self, account_id: str, limit: int = 0) -> List[Transaction]:
        """
        Transactions of an account, oldest first; the last ``limit`` if limit > 0.

        Raises:
            NotFound: Unknown account
        """
        def read(v: SnapshotView) -> List[Transaction]:
            v.get_account(account_id)
            return v.list_transactions_by_account(account_id, limit)

        return self.store.with_shared_access(read)

    def _after_money_movement(self) -> None:
        if not self.auto_backup or self.backups is None:
            return
        try:
            self._take_backup()
        except LedgerError as exc:
            # The movement itself is durable; only the extra copy is missing
            print(f"⚠️  AUTO-BACKUP FAILED: {exc}", file=sys.stderr)

    # ========================================================================
    # MINING GAME
    # ========================================================================

    def touch(self, user_id: str, display_name: str = "") -> TouchResult:
        """
        Load or create a player and fold in passive income.

        Runs at the start of every game command, inside one exclusive access.
        """
        def mutate(h: SnapshotHandle) -> TouchResult:
            if not h.has_user(user_id):
                user = h.create_user(display_name or user_id, user_id=user_id)
                user = h.put_user(self.accrual.start_window(user, h.now))
                return TouchResult(user, Decimal(0), True)
            result = self.accrual.apply(h.get_user(user_id), h.now)
            h.put_user(result.user)
            return TouchResult(result.user, result.earned, False)

        return self.store.with_exclusive_access(mutate)

    def buy(self, user_id: str, item_id: int) -> ItemTrade:
        return self.processor.purchase(user_id, item_id)

    def sell(self, user_id: str, item_id: int) -> ItemTrade:
        return self.processor.sale(user_id, item_id)

    def inventory(self, user_id: str) -> InventoryView:
        user = self.store.get_user(user_id)
        lines = tuple(
            InventoryLine(self.catalog.get(item_id), count)
            for item_id, count in user.item_counts().items()
            if item_id in self.catalog
        )
        nominal = self.catalog.nominal_value(user.owned_items)
        return InventoryView(
            lines=lines,
            rate=self.catalog.income_rate(user.owned_items),
            nominal_value=nominal,
            resale_value=nominal * self.processor.config.refund_factor,
        )

    def mining_status(self, user_id: str) -> MiningStatus:
        def read(v: SnapshotView) -> MiningStatus:
            user = v.get_user(user_id)
            instrument = self.accrual.policy.instrument
            return MiningStatus(
                user_id=user.id,
                instrument=instrument,
                balance=user.balance(instrument),
                rate=self.accrual.rate_for(user),
                window_end=user.accrual_window_end,
                window_remaining=window_remaining(user, v.now),
            )

        return self.store.with_shared_access(read)

    def reset_player(self, user_id: str) -> User:
        """Zero the game balances, empty the inventory and restart the window."""
        def mutate(h: SnapshotHandle) -> User:
            user = h.get_user(user_id)
            user = replace(user.with_balances({}), owned_items=())
            return h.put_user(self.accrual.start_window(user, h.now))

        return self.store.with_exclusive_access(mutate)

    # ========================================================================
    # ADMIN
    # ========================================================================

    def _require_admin(self, actor: Optional[str]) -> None:
        if actor is None:
            return
        if not self.store.get_user(actor).is_admin:
            raise PermissionDenied(f"user {actor} is not an admin")

    def _require_rates(self) -> RateTable:
        if self.rates is None:
            raise ValidationError("no exchange-rate table configured")
        return self.rates

    def _require_backups(self) -> BackupManager:
        if self.backups is None:
            raise ValidationError("backups are not configured")
        return self.backups

    def _take_backup(self) -> str:
        backups = self._require_backups()
        # Shared access keeps writers from replacing the file mid-copy
        return self.store.with_shared_access(lambda v: backups.backup_now())

    def set_rate(self, currency: str, rate: Any, actor: Optional[str] = None) -> ExchangeRates:
        self._require_admin(actor)
        return self._require_rates().set_rate(currency, rate)

    def get_rates(self, actor: Optional[str] = None) -> ExchangeRates:
        self._require_admin(actor)
        return self._require_rates().load()

    def close_account(self, account_id: str, actor: Optional[str] = None) -> Account:
        self._require_admin(actor)
        return self.processor.close_account(account_id)

    def list_users(self, actor: Optional[str] = None) -> List[User]:
        self._require_admin(actor)
        return self.store.list_users()

    def backup_now(self, actor: Optional[str] = None) -> str:
        self._require_admin(actor)
        return self._take_backup()

    def list_backups(self, actor: Optional[str] = None) -> List[str]:
        self._require_admin(actor)
        return self._require_backups().list_backups()

    def restore_backup(self, name: str, actor: Optional[str] = None, reload: bool = True) -> Path:
        """
        Overwrite the ledger file with a backup.

        With reload=True the running store swaps in the backup under its
        writer lock, atomically with the file write. With reload=False only
        the file is overwritten and the restore takes effect on the next start.
        """
        self._require_admin(actor)
        backups = self._require_backups()
        if not reload:
            return backups.restore_backup(name)
        self.store.replace_from_bytes(backups.read_backup(name))
        return self.store.path

    def export_account_statement(
        self,
        account_id: str,
        from_time: datetime,
        to_time: datetime,
        actor: Optional[str] = None,
        out_dir: Optional[Union[str, Path]] = None,
    ) -> Path:
        self._require_admin(actor)
        return export_account_statement(
            self.store, account_id, from_time, to_time, out_dir or self.reports_dir
        )

    def export_user_summary(
        self,
        user_id: str,
        actor: Optional[str] = None,
        out_dir: Optional[Union[str, Path]] = None,
    ) -> Path:
        self._require_admin(actor)
        return export_user_summary(self.store, user_id, out_dir or self.reports_dir)

    def __repr__(self) -> str:
        return f"Bank({self.store!r}, catalog={self.catalog!r})"

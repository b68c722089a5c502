"""
accrual_ledger - Accrual ledger for toy-bank and mining-game chat bots

Per-user balances, time-windowed passive income, and atomic, persisted
deposits, withdrawals, transfers and item trades.

Usage:
    from accrual_ledger import Bank, LedgerStore, RateTable, CommandRouter

    bank = Bank(LedgerStore("data/bank.json"), rates=RateTable("data/rates.json"))

    # Toy bank
    alice = bank.register("alice", "s3cret")
    rub = bank.open_account(alice.id, "RUB")
    bank.deposit(rub.id, 10000)                 # 100.00 RUB
    bank.history(rub.id, limit=10)

    # Mining game
    router = CommandRouter(bank)
    result = router.handle("42", "bob", "/buy 1")
    if not result.ok:
        print(result.error_code)
"""

# Core types
from .core import (
    CatalogItem,
    Account,
    User,
    Transaction,
    Snapshot,
    Role,
    TxKind,
    history_order,
    utcnow,
    LedgerError,
    NotFound,
    AlreadyExists,
    InvalidAmount,
    InsufficientFunds,
    UnknownCurrency,
    CapacityExceeded,
    NotOwned,
    AccountClosed,
    PersistenceError,
    AuthError,
    ValidationError,
    PermissionDenied,
    Cancelled,
    MINOR_UNITS_PER_MAJOR,
    DEFAULT_CURRENCY,
    GAME_INSTRUMENT,
    SNAPSHOT_VERSION,
)

# Store
from .rwlock import ReadWriteLock
from .store import LedgerStore, SnapshotView, SnapshotHandle

# Catalog and accrual
from .catalog import Catalog, default_catalog
from .accrual import (
    AccrualPolicy,
    AccrualResult,
    AccrualEngine,
    accrue,
    start_window,
    window_remaining,
    SHORT_WINDOW,
    LONG_WINDOW,
)

# Money movement
from .rates import ExchangeRates, RateTable, convert
from .processor import TransactionProcessor, ProcessorConfig, ItemTrade

# Services
from .auth import hash_password, verify_password
from .backup import BackupManager
from .reports import export_account_statement, export_user_summary
from .config import LedgerConfig
from .bank import Bank, TouchResult, InventoryView, InventoryLine, MiningStatus

# Chat adapters
from .conversation import (
    Idle,
    AwaitingCurrency,
    AwaitingDepositAmount,
    AwaitingWithdrawAmount,
    AwaitingTransferTarget,
    AwaitingTransferAmount,
    OpenAccountIntent,
    DepositIntent,
    WithdrawIntent,
    TransferIntent,
    ConversationStore,
    advance,
    apply_intent,
    parse_amount,
)
from .commands import CommandRouter, CommandResult

__all__ = [
    # Core
    'CatalogItem', 'Account', 'User', 'Transaction', 'Snapshot', 'Role', 'TxKind',
    'history_order', 'utcnow',
    'LedgerError', 'NotFound', 'AlreadyExists', 'InvalidAmount', 'InsufficientFunds',
    'UnknownCurrency', 'CapacityExceeded', 'NotOwned', 'AccountClosed',
    'PersistenceError', 'AuthError', 'ValidationError', 'PermissionDenied', 'Cancelled',
    'MINOR_UNITS_PER_MAJOR', 'DEFAULT_CURRENCY', 'GAME_INSTRUMENT', 'SNAPSHOT_VERSION',
    # Store
    'ReadWriteLock', 'LedgerStore', 'SnapshotView', 'SnapshotHandle',
    # Catalog and accrual
    'Catalog', 'default_catalog',
    'AccrualPolicy', 'AccrualResult', 'AccrualEngine', 'accrue', 'start_window',
    'window_remaining', 'SHORT_WINDOW', 'LONG_WINDOW',
    # Money movement
    'ExchangeRates', 'RateTable', 'convert',
    'TransactionProcessor', 'ProcessorConfig', 'ItemTrade',
    # Services
    'hash_password', 'verify_password', 'BackupManager',
    'export_account_statement', 'export_user_summary', 'LedgerConfig',
    'Bank', 'TouchResult', 'InventoryView', 'InventoryLine', 'MiningStatus',
    # Chat adapters
    'Idle', 'AwaitingCurrency', 'AwaitingDepositAmount', 'AwaitingWithdrawAmount',
    'AwaitingTransferTarget', 'AwaitingTransferAmount',
    'OpenAccountIntent', 'DepositIntent', 'WithdrawIntent', 'TransferIntent',
    'ConversationStore', 'advance', 'apply_intent', 'parse_amount',
    'CommandRouter', 'CommandResult',
]

__version__ = '1.0.0'

"""
Core types and pure functions for the accrual ledger.

This module provides the foundational data structures shared by every other module:
1. Immutable records: CatalogItem, Account, User, Transaction
2. The persisted Snapshot and its stable JSON layout
3. Exceptions: LedgerError and the domain error taxonomy
4. Constants: id formats, default currency and game instrument
5. Time and amount helpers

Records are frozen. An update produces a new instance via dataclasses.replace(),
so a caller holding a record can never reach into the store's state through it.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN, getcontext
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Game balances and income rates are Decimal so that accrual is exact.
# The global context is configured once at import time.
#
# PRECONDITION: No other code should modify the global Decimal context.
# Code that needs a different rounding mode passes it to quantize() explicitly.
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

SNAPSHOT_VERSION = 1

# Fiat balances are integers in minor units (cents, kopecks).
MINOR_UNITS_PER_MAJOR = 100

DEFAULT_CURRENCY = "RUB"

# Play-money instrument of the mining game ("miner tokens").
GAME_INSTRUMENT = "MNT"

USER_ID_FORMAT = "u{:06d}"
ACCOUNT_ID_FORMAT = "a{:06d}"
TX_ID_FORMAT = "t{:06d}"

SEQUENCE_USER = "user"
SEQUENCE_ACCOUNT = "account"
SEQUENCE_TX = "tx"
SEQUENCE_KINDS = (SEQUENCE_USER, SEQUENCE_ACCOUNT, SEQUENCE_TX)

ZERO = Decimal("0")


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Returns the current wall-clock time as a naive UTC datetime.
Clock = Callable[[], datetime]

# Mapping from instrument symbol to the amount held.
BalanceMap = Dict[str, Decimal]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger errors. ``code`` is stable across releases."""
    code = "ledger_error"


class NotFound(LedgerError):
    """Raised when a user, account, transaction, item or backup id is unknown."""
    code = "not_found"


class AlreadyExists(LedgerError):
    """Raised on a create with an id or username that is already taken."""
    code = "already_exists"


class InvalidAmount(LedgerError):
    """Raised when an amount is non-positive, non-finite or malformed."""
    code = "invalid_amount"


class InsufficientFunds(LedgerError):
    """Raised when a debit would take a balance below zero."""
    code = "insufficient_funds"


class UnknownCurrency(LedgerError):
    """Raised when a currency is missing from the exchange-rate table."""
    code = "unknown_currency"


class CapacityExceeded(LedgerError):
    """Raised when a purchase would exceed the inventory capacity."""
    code = "capacity_exceeded"


class NotOwned(LedgerError):
    """Raised when selling an item the user does not hold."""
    code = "not_owned"


class AccountClosed(LedgerError):
    """Raised when mutating a closed account."""
    code = "account_closed"


class PersistenceError(LedgerError):
    """Raised when the backing file could not be written. The OSError is chained."""
    code = "io_error"


class AuthError(LedgerError):
    """Raised on a username/password mismatch."""
    code = "auth_error"


class ValidationError(LedgerError):
    """Raised when command input has the wrong shape (short username, bad id)."""
    code = "validation_error"


class PermissionDenied(LedgerError):
    """Raised when a non-admin calls an admin operation."""
    code = "permission_denied"


class Cancelled(LedgerError):
    """Raised when the caller cancelled before the writer lock was taken."""
    code = "cancelled"


# ============================================================================
# ENUMS
# ============================================================================

class Role(Enum):
    USER = "user"
    ADMIN = "admin"


class TxKind(Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    TRANSFER = "transfer"
    PURCHASE = "purchase"
    SALE = "sale"


# ============================================================================
# TIME AND AMOUNT HELPERS
# ============================================================================

def utcnow() -> datetime:
    """Current time in UTC, naive."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp and normalize it to naive UTC.

    Accepts a trailing "Z" and explicit offsets; naive input is taken as UTC.
    """
    if value is None or value == "":
        return None
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_decimal(value: Any) -> Decimal:
    """
    Convert an int, str or Decimal to a finite Decimal.

    Floats go through str() so that 0.1 becomes Decimal("0.1").

    Raises:
        InvalidAmount: If the value cannot be parsed or is not finite
    """
    if isinstance(value, bool):
        raise InvalidAmount(f"not an amount: {value!r}")
    if isinstance(value, Decimal):
        d = value
    else:
        try:
            d = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidAmount(f"not an amount: {value!r}") from None
    if not d.is_finite():
        raise InvalidAmount(f"amount must be finite, got {value!r}")
    return d


def _normalize_decimal(d: Decimal) -> str:
    """
    Canonical string form of a Decimal.

    Decimal("1.00") and Decimal("1") both become "1"; no scientific notation.
    """
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _encode_amount(d: Decimal) -> Any:
    """Integral amounts are written as JSON ints, fractional ones as strings."""
    if d == d.to_integral_value():
        return int(d)
    return _normalize_decimal(d)


def _freeze_balances(balances: Optional[Mapping[str, Any]]) -> Tuple[Tuple[str, Decimal], ...]:
    """Sorted (instrument, amount) pairs; zero balances are dropped."""
    if not balances:
        return ()
    return tuple(sorted(
        (symbol, to_decimal(amount))
        for symbol, amount in balances.items()
        if to_decimal(amount) != ZERO
    ))


def sequence_of(entity_id: str) -> int:
    """
    Numeric sequence embedded in a generated id ("t000042" -> 42).

    Ids that carry no digits (externally supplied user ids) sort as 0.
    """
    digits = "".join(ch for ch in entity_id if ch.isdigit())
    return int(digits) if digits else 0


# ============================================================================
# CATALOG ITEM
# ============================================================================

@dataclass(frozen=True, slots=True)
class CatalogItem:
    """
    A purchasable item that earns passive income.

    Attributes:
        id: Unique positive identifier, used by /buy and /sell
        name: Display name
        unit_price: Price in the catalog's instrument
        income_rate: Passive income in the catalog's instrument per second
    """
    id: int
    name: str
    unit_price: Decimal
    income_rate: Decimal

    def __post_init__(self):
        if isinstance(self.id, bool) or not isinstance(self.id, int) or self.id <= 0:
            raise ValueError(f"CatalogItem id must be a positive int, got {self.id!r}")
        if not self.name or not self.name.strip():
            raise ValueError("CatalogItem name cannot be empty")
        object.__setattr__(self, 'unit_price', to_decimal(self.unit_price))
        object.__setattr__(self, 'income_rate', to_decimal(self.income_rate))
        if self.unit_price < ZERO:
            raise ValueError(f"CatalogItem price must be >= 0, got {self.unit_price}")
        if self.income_rate < ZERO:
            raise ValueError(f"CatalogItem income rate must be >= 0, got {self.income_rate}")


# ============================================================================
# ACCOUNT
# ============================================================================

@dataclass(frozen=True, slots=True)
class Account:
    """
    A fiat account holding an integer balance in minor units.

    A closed account rejects every further mutation.
    """
    id: str
    owner_user_id: str
    currency: str
    created_at: datetime
    balance: int = 0
    closed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'owner': self.owner_user_id,
            'currency': self.currency,
            'balance': self.balance,
            'createdAt': format_timestamp(self.created_at),
            'closed': self.closed,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Account:
        return cls(
            id=data['id'],
            owner_user_id=data['owner'],
            currency=data['currency'],
            created_at=parse_timestamp(data['createdAt']),
            balance=int(data.get('balance', 0)),
            closed=bool(data.get('closed', False)),
        )


# ============================================================================
# USER
# ============================================================================

@dataclass(frozen=True, slots=True)
class User:
    """
    A ledger user: bank customer, game player, or both.

    Attributes:
        id: Unique identifier ("u000001", or a chat id for game players)
        display_name: Login name for credentialed users, chat handle for players
        created_at: Creation time
        password_hash: Opaque bcrypt hash ("" for players without credentials)
        role: USER or ADMIN
        accounts: Ids of the fiat accounts this user owns, in creation order
        owned_items: Multiset of CatalogItem ids (one entry per unit owned)
        last_accrual_at: When passive income was last folded in
        accrual_window_end: Passive income stops accruing after this instant
        _frozen_balances: Game balances as sorted (instrument, amount) pairs
    """
    id: str
    display_name: str
    created_at: datetime
    password_hash: str = ""
    role: Role = Role.USER
    accounts: Tuple[str, ...] = ()
    owned_items: Tuple[int, ...] = ()
    last_accrual_at: Optional[datetime] = None
    accrual_window_end: Optional[datetime] = None
    _frozen_balances: Tuple[Tuple[str, Decimal], ...] = field(default_factory=tuple)

    @property
    def balances(self) -> BalanceMap:
        """Game balances as a new dict each call."""
        return dict(self._frozen_balances)

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def balance(self, instrument: str) -> Decimal:
        return self.balances.get(instrument, ZERO)

    def with_balance(self, instrument: str, amount: Decimal) -> User:
        balances = self.balances
        balances[instrument] = amount
        return replace(self, _frozen_balances=_freeze_balances(balances))

    def with_balances(self, balances: Mapping[str, Any]) -> User:
        return replace(self, _frozen_balances=_freeze_balances(balances))

    def item_counts(self) -> Dict[int, int]:
        """Units owned per item id, in first-acquired order."""
        counts: Dict[int, int] = {}
        for item_id in self.owned_items:
            counts[item_id] = counts.get(item_id, 0) + 1
        return counts

    def owns(self, item_id: int) -> bool:
        return item_id in self.owned_items

    def with_item_added(self, item_id: int) -> User:
        return replace(self, owned_items=self.owned_items + (item_id,))

    def with_item_removed(self, item_id: int) -> User:
        """Remove one unit (the first occurrence) of item_id."""
        items = list(self.owned_items)
        items.remove(item_id)
        return replace(self, owned_items=tuple(items))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'displayName': self.display_name,
            'passHash': self.password_hash,
            'role': self.role.value,
            'accounts': list(self.accounts),
            'createdAt': format_timestamp(self.created_at),
            'balances': {k: _normalize_decimal(v) for k, v in self._frozen_balances},
            'ownedItems': list(self.owned_items),
            'lastAccrualAt': format_timestamp(self.last_accrual_at),
            'accrualWindowEnd': format_timestamp(self.accrual_window_end),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> User:
        return cls(
            id=data['id'],
            display_name=data.get('displayName', ""),
            created_at=parse_timestamp(data['createdAt']),
            password_hash=data.get('passHash', ""),
            role=Role(data.get('role', Role.USER.value)),
            accounts=tuple(data.get('accounts') or ()),
            owned_items=tuple(int(i) for i in data.get('ownedItems') or ()),
            last_accrual_at=parse_timestamp(data.get('lastAccrualAt')),
            accrual_window_end=parse_timestamp(data.get('accrualWindowEnd')),
            _frozen_balances=_freeze_balances(data.get('balances')),
        )


# ============================================================================
# TRANSACTION
# ============================================================================

@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of a balance mutation.

    Transactions are totally ordered by the sequence in their id. created_at
    follows the wall clock and may go backwards under clock skew, so history
    queries sort by (created_at, sequence) explicitly.

    Attributes:
        id: "t%06d", strictly increasing in creation order
        kind: deposit, withdraw, transfer, purchase or sale
        amount: Debited minor units for fiat; unit price or refund for item trades
        currency: Currency of the debited side, or the game instrument
        created_at: Wall-clock time of execution
        from_account: Debited account (withdraw, transfer)
        to_account: Credited account (deposit, transfer)
        note: Free text; cross-currency transfers get an "(FX A→B)" suffix
        user_id: Acting player for purchase and sale
        item_id: Catalog item for purchase and sale
    """
    id: str
    kind: TxKind
    amount: Decimal
    currency: str
    created_at: datetime
    from_account: Optional[str] = None
    to_account: Optional[str] = None
    note: str = ""
    user_id: Optional[str] = None
    item_id: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, 'amount', to_decimal(self.amount))

    @property
    def sequence(self) -> int:
        return sequence_of(self.id)

    def involves(self, account_id: str) -> bool:
        return self.from_account == account_id or self.to_account == account_id

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'id': self.id,
            'type': self.kind.value,
            'amount': _encode_amount(self.amount),
            'currency': self.currency,
            'note': self.note,
            'createdAt': format_timestamp(self.created_at),
        }
        if self.from_account is not None:
            data['from'] = self.from_account
        if self.to_account is not None:
            data['to'] = self.to_account
        if self.user_id is not None:
            data['userId'] = self.user_id
        if self.item_id is not None:
            data['itemId'] = self.item_id
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Transaction:
        item_id = data.get('itemId')
        return cls(
            id=data['id'],
            kind=TxKind(data['type']),
            amount=to_decimal(data['amount']),
            currency=data['currency'],
            created_at=parse_timestamp(data['createdAt']),
            from_account=data.get('from'),
            to_account=data.get('to'),
            note=data.get('note', ""),
            user_id=data.get('userId'),
            item_id=int(item_id) if item_id is not None else None,
        )


def history_order(transactions: Iterable[Transaction], limit: int = 0) -> List[Transaction]:
    """
    Sort ascending by (created_at, sequence) and keep the most recent ``limit``.

    limit <= 0 returns everything.
    """
    ordered = sorted(transactions, key=lambda t: (t.created_at, t.sequence))
    if limit > 0 and len(ordered) > limit:
        ordered = ordered[len(ordered) - limit:]
    return ordered


# ============================================================================
# SNAPSHOT
# ============================================================================

@dataclass
class Snapshot:
    """
    The complete ledger state; the unit of atomic persistence.

    Owned exclusively by LedgerStore. The maps hold frozen records, so a
    shallow copy() is a full, independent copy of the state.
    """
    created_at: datetime
    updated_at: datetime
    version: int = SNAPSHOT_VERSION
    users: Dict[str, User] = field(default_factory=dict)
    accounts: Dict[str, Account] = field(default_factory=dict)
    txs: Dict[str, Transaction] = field(default_factory=dict)
    next_user: int = 0
    next_acc: int = 0
    next_tx: int = 0

    @classmethod
    def empty(cls, now: datetime) -> Snapshot:
        return cls(created_at=now, updated_at=now)

    def copy(self) -> Snapshot:
        return Snapshot(
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
            users=dict(self.users),
            accounts=dict(self.accounts),
            txs=dict(self.txs),
            next_user=self.next_user,
            next_acc=self.next_acc,
            next_tx=self.next_tx,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': self.version,
            'users': {uid: u.to_dict() for uid, u in self.users.items()},
            'accounts': {aid: a.to_dict() for aid, a in self.accounts.items()},
            'txs': {tid: t.to_dict() for tid, t in self.txs.items()},
            'nextUser': self.next_user,
            'nextAcc': self.next_acc,
            'nextTx': self.next_tx,
            'createdAt': format_timestamp(self.created_at),
            'updatedAt': format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Snapshot:
        version = int(data.get('version', SNAPSHOT_VERSION))
        if version > SNAPSHOT_VERSION:
            raise LedgerError(f"snapshot version {version} is newer than supported {SNAPSHOT_VERSION}")
        return cls(
            created_at=parse_timestamp(data['createdAt']),
            updated_at=parse_timestamp(data['updatedAt']),
            version=version,
            users={uid: User.from_dict(u) for uid, u in (data.get('users') or {}).items()},
            accounts={aid: Account.from_dict(a) for aid, a in (data.get('accounts') or {}).items()},
            txs={tid: Transaction.from_dict(t) for tid, t in (data.get('txs') or {}).items()},
            next_user=int(data.get('nextUser', 0)),
            next_acc=int(data.get('nextAcc', 0)),
            next_tx=int(data.get('nextTx', 0)),
        )

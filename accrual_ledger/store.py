"""
store.py - Lock-guarded, file-backed ledger state

LedgerStore is the exclusive owner of the Snapshot. It is the only module that
mutates ledger state, and no caller ever receives a reference to its internal maps.

Key responsibilities:
    - Reader/writer discipline: with_shared_access() for reads,
      with_exclusive_access() for validate + mutate + persist
    - Staged mutation: a mutator works on a copy that is committed only when it
      returns, so a validation error leaves no trace
    - Atomic id allocation: sequence numbers are only reachable from inside an
      exclusive mutator, in the same critical section that creates the entity
    - Atomic persistence: temp file + fsync + os.replace after every mutation
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, TypeVar, Union
import contextlib
import json
import os
import sys
import tempfile

from .rwlock import ReadWriteLock
from .core import (
    # Types
    Account, Snapshot, Transaction, TxKind, User, Role, Clock,
    # Constants
    DEFAULT_CURRENCY, USER_ID_FORMAT, ACCOUNT_ID_FORMAT, TX_ID_FORMAT,
    SEQUENCE_USER, SEQUENCE_ACCOUNT, SEQUENCE_TX, SEQUENCE_KINDS,
    # Exceptions
    NotFound, AlreadyExists, PersistenceError, Cancelled,
    # Helpers
    history_order, utcnow, to_decimal,
)


T = TypeVar("T")
PathLike = Union[str, "os.PathLike[str]"]


# ============================================================================
# ATOMIC FILE WRITES
# ============================================================================

def write_json_atomic(path: Path, payload: Any) -> None:
    """
    Serialize payload as indented JSON and atomically replace path with it.

    The document is written to a temp file in the same directory, flushed and
    fsynced, then renamed over the target. A crash mid-write leaves either the
    old file or the new one, never a truncated document.

    Raises:
        PersistenceError: If any step fails (the OSError is chained)
    """
    text = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
    write_bytes_atomic(path, text.encode("utf-8"))


def write_bytes_atomic(path: Path, data: bytes) -> None:
    """Byte-level variant of write_json_atomic(), used for backup restores."""
    temp_path = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=".json")
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except OSError as exc:
        if temp_path is not None:
            with contextlib.suppress(OSError):
                os.unlink(temp_path)
        raise PersistenceError(f"failed to write {path}: {exc}") from exc


def _decode_snapshot(data: bytes, source: Any) -> Snapshot:
    try:
        return Snapshot.from_dict(json.loads(data))
    except (KeyError, TypeError, ValueError, AttributeError, ArithmeticError) as exc:
        # ValueError covers JSONDecodeError and UnicodeDecodeError
        raise PersistenceError(f"{source} is not a valid snapshot: {exc!r}") from exc


# ============================================================================
# SNAPSHOT VIEWS
# ============================================================================

class SnapshotView:
    """
    Read-only access to a snapshot, handed to with_shared_access() readers.

    Only valid for the duration of the callback; do not keep it.
    """

    def __init__(self, snapshot: Snapshot, now: datetime):
        self._snap = snapshot
        self._now = now

    @property
    def now(self) -> datetime:
        """Wall-clock time captured when the lock was taken."""
        return self._now

    @property
    def created_at(self) -> datetime:
        return self._snap.created_at

    @property
    def updated_at(self) -> datetime:
        return self._snap.updated_at

    def has_user(self, user_id: str) -> bool:
        return user_id in self._snap.users

    def get_user(self, user_id: str) -> User:
        try:
            return self._snap.users[user_id]
        except KeyError:
            raise NotFound(f"user {user_id} not found") from None

    def find_user_by_name(self, name: str) -> Optional[User]:
        for user in self._snap.users.values():
            if user.display_name == name and user.password_hash:
                return user
        return None

    def get_user_by_name(self, name: str) -> User:
        user = self.find_user_by_name(name)
        if user is None:
            raise NotFound(f"user {name!r} not found")
        return user

    def list_users(self) -> List[User]:
        return sorted(self._snap.users.values(), key=lambda u: (u.created_at, u.id))

    def get_account(self, account_id: str) -> Account:
        try:
            return self._snap.accounts[account_id]
        except KeyError:
            raise NotFound(f"account {account_id} not found") from None

    def list_accounts_by_owner(self, owner_user_id: str, include_closed: bool = False) -> List[Account]:
        return sorted(
            (a for a in self._snap.accounts.values()
             if a.owner_user_id == owner_user_id and (include_closed or not a.closed)),
            key=lambda a: a.id,
        )

    def get_transaction(self, tx_id: str) -> Transaction:
        try:
            return self._snap.txs[tx_id]
        except KeyError:
            raise NotFound(f"transaction {tx_id} not found") from None

    def list_transactions_by_account(self, account_id: str, limit: int = 0) -> List[Transaction]:
        return history_order(
            (t for t in self._snap.txs.values() if t.involves(account_id)),
            limit,
        )

    def transaction_count(self) -> int:
        return len(self._snap.txs)

    def iter_accounts(self) -> Iterator[Account]:
        return iter(sorted(self._snap.accounts.values(), key=lambda a: a.id))


class SnapshotHandle(SnapshotView):
    """
    Mutable access to a staged snapshot, handed to with_exclusive_access() mutators.

    All writes land on a working copy. The store commits the copy only after the
    mutator returns without raising, so validating before writing is enough to
    keep a failed operation free of side effects.
    """

    # ------------------------------------------------------------------------
    # Sequences
    # ------------------------------------------------------------------------

    def next_sequence(self, kind: str) -> int:
        """
        Allocate the next value of a monotonically increasing counter.

        Args:
            kind: "user", "account" or "tx"

        Returns:
            The new counter value (first allocation returns 1)
        """
        snap = self._snap
        if kind == SEQUENCE_USER:
            snap.next_user += 1
            return snap.next_user
        if kind == SEQUENCE_ACCOUNT:
            snap.next_acc += 1
            return snap.next_acc
        if kind == SEQUENCE_TX:
            snap.next_tx += 1
            return snap.next_tx
        raise ValueError(f"unknown sequence kind {kind!r}, expected one of {SEQUENCE_KINDS}")

    # ------------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------------

    def create_user(
        self,
        display_name: str,
        password_hash: str = "",
        role: Role = Role.USER,
        user_id: Optional[str] = None,
        **fields: Any,
    ) -> User:
        """
        Create a user. A generated "u%06d" id is used unless user_id is given.

        Credentialed users (non-empty password_hash) must have unique names.

        Raises:
            AlreadyExists: If user_id or the login name is taken
        """
        if user_id is not None and user_id in self._snap.users:
            raise AlreadyExists(f"user {user_id} already exists")
        if password_hash and self.find_user_by_name(display_name) is not None:
            raise AlreadyExists(f"user {display_name!r} already exists")
        if user_id is None:
            user_id = USER_ID_FORMAT.format(self.next_sequence(SEQUENCE_USER))
            # Explicit ids may have claimed the generated one
            while user_id in self._snap.users:
                user_id = USER_ID_FORMAT.format(self.next_sequence(SEQUENCE_USER))
        user = User(
            id=user_id,
            display_name=display_name,
            created_at=self._now,
            password_hash=password_hash,
            role=role,
            **fields,
        )
        self._snap.users[user_id] = user
        return user

    def put_user(self, user: User) -> User:
        """Replace an existing user record. Raises NotFound if absent."""
        if user.id not in self._snap.users:
            raise NotFound(f"user {user.id} not found")
        self._snap.users[user.id] = user
        return user

    # ------------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------------

    def create_account(self, owner_user_id: str, currency: str = DEFAULT_CURRENCY) -> Account:
        """
        Open an account for an existing user and link it to the owner.

        Raises:
            NotFound: If the owner does not exist
        """
        owner = self.get_user(owner_user_id)
        account_id = ACCOUNT_ID_FORMAT.format(self.next_sequence(SEQUENCE_ACCOUNT))
        if account_id in self._snap.accounts:
            raise AlreadyExists(f"account {account_id} already exists")
        account = Account(
            id=account_id,
            owner_user_id=owner.id,
            currency=(currency or DEFAULT_CURRENCY).strip().upper(),
            created_at=self._now,
        )
        self._snap.accounts[account_id] = account
        self._snap.users[owner.id] = replace(owner, accounts=owner.accounts + (account_id,))
        return account

    def put_account(self, account: Account) -> Account:
        """Replace an existing account record. Raises NotFound if absent."""
        if account.id not in self._snap.accounts:
            raise NotFound(f"account {account.id} not found")
        self._snap.accounts[account.id] = account
        return account

    def close_account(self, account_id: str) -> Account:
        """Mark an account closed. Closing twice is a no-op."""
        account = self.get_account(account_id)
        if account.closed:
            return account
        return self.put_account(replace(account, closed=True))

    # ------------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------------

    def record_transaction(
        self,
        kind: TxKind,
        amount: Any,
        currency: str,
        from_account: Optional[str] = None,
        to_account: Optional[str] = None,
        note: str = "",
        user_id: Optional[str] = None,
        item_id: Optional[int] = None,
    ) -> Transaction:
        """Append an immutable Transaction with the next "t%06d" id."""
        tx_id = TX_ID_FORMAT.format(self.next_sequence(SEQUENCE_TX))
        if tx_id in self._snap.txs:
            raise AlreadyExists(f"transaction {tx_id} already exists")
        tx = Transaction(
            id=tx_id,
            kind=kind,
            amount=to_decimal(amount),
            currency=currency,
            created_at=self._now,
            from_account=from_account,
            to_account=to_account,
            note=note,
            user_id=user_id,
            item_id=item_id,
        )
        self._snap.txs[tx_id] = tx
        return tx


# ============================================================================
# LEDGER STORE
# ============================================================================

class LedgerStore:
    """
    Exclusive owner of the ledger snapshot and its backing JSON file.

    Design Principles:
        - One reader/writer lock covers the whole snapshot. Writes are serialized;
          each one is validate + mutate + persist under the writer lock.
        - Every mutation is persisted before the call returns. A completed,
          acknowledged operation is never lost on crash.
        - No network or other slow I/O happens under the lock.

    Persistence failure policy:
        rollback_on_failure=True (default) keeps memory and disk in agreement:
        if the write fails, the staged mutation is discarded and
        PersistenceError is raised. rollback_on_failure=False keeps the
        mutation in memory anyway (state ahead of durable storage) and still
        raises.

    Thread Safety:
        Safe to share between threads. Not safe across processes.

    Example:
        store = LedgerStore("data/bank.json")
        user = store.create_user("alice", password_hash=hashed)
        account = store.create_account(user.id, "RUB")
    """

    def __init__(
        self,
        path: PathLike,
        clock: Optional[Clock] = None,
        rollback_on_failure: bool = True,
        verbose: bool = False,
    ):
        """
        Open (or create) a store backed by path.

        Args:
            path: Backing JSON file; created with an empty snapshot if missing or empty
            clock: Time source (default: utcnow)
            rollback_on_failure: Discard a mutation whose persistence failed
            verbose: Print a line per load and per failed write
        """
        self._path = Path(path)
        self._clock: Clock = clock or utcnow
        self._lock = ReadWriteLock()
        self.rollback_on_failure = rollback_on_failure
        self.verbose = verbose
        self._snapshot = self._load_or_init()

    # ========================================================================
    # PROPERTIES
    # ========================================================================

    @property
    def path(self) -> Path:
        return self._path

    @property
    def clock(self) -> Clock:
        return self._clock

    def now(self) -> datetime:
        return self._clock()

    # ========================================================================
    # LOADING AND PERSISTENCE
    # ========================================================================

    def _load_or_init(self) -> Snapshot:
        if self._path.exists() and self._path.stat().st_size > 0:
            snapshot = self._read_file()
            if self.verbose:
                print(f"📂 Loaded {self._path}: {len(snapshot.users)} users, "
                      f"{len(snapshot.accounts)} accounts, {len(snapshot.txs)} txs")
            return snapshot
        snapshot = Snapshot.empty(self._clock())
        self._persist(snapshot)
        return snapshot

    def _read_file(self) -> Snapshot:
        try:
            data = self._path.read_bytes()
        except OSError as exc:
            raise PersistenceError(f"failed to read {self._path}: {exc}") from exc
        return _decode_snapshot(data, self._path)

    def _persist(self, snapshot: Snapshot) -> None:
        try:
            write_json_atomic(self._path, snapshot.to_dict())
        except PersistenceError as exc:
            print(f"✗ PERSISTENCE FAILED: {exc}", file=sys.stderr)
            raise

    def reload(self) -> None:
        """
        Replace in-memory state with the backing file's contents.

        Picks up edits made to the file while no writer was active.
        """
        with self._lock.write_locked():
            self._snapshot = self._load_or_init()

    def replace_from_bytes(self, data: bytes) -> None:
        """
        Replace both the backing file and in-memory state with a serialized snapshot.

        Decode, write and swap happen under one writer lock, so no concurrent
        mutation can land between the restore and the reload and overwrite it.

        Raises:
            PersistenceError: If data is not a snapshot (nothing changes) or
                the write fails (memory is left as it was)
        """
        with self._lock.write_locked():
            snapshot = _decode_snapshot(data, "replacement data")
            try:
                write_bytes_atomic(self._path, data)
            except PersistenceError as exc:
                print(f"✗ PERSISTENCE FAILED: {exc}", file=sys.stderr)
                raise
            self._snapshot = snapshot
            if self.verbose:
                print(f"✓ REPLACED {self._path}: {len(snapshot.users)} users, "
                      f"{len(snapshot.accounts)} accounts, {len(snapshot.txs)} txs")

    def export_snapshot(self) -> Snapshot:
        """Independent copy of the current snapshot."""
        with self._lock.read_locked():
            return self._snapshot.copy()

    # ========================================================================
    # ACCESS DISCIPLINE
    # ========================================================================

    def with_exclusive_access(
        self,
        mutator: Callable[[SnapshotHandle], T],
        cancel_check: Optional[Callable[[], bool]] = None,
    ) -> T:
        """
        Run mutator under the writer lock, then stamp updated_at and persist.

        The mutator receives a SnapshotHandle over a working copy. If it raises,
        the copy is dropped and the exception propagates with no side effects.

        Args:
            mutator: Callable receiving the handle; its return value is returned
            cancel_check: Evaluated once before the lock is taken. If it returns
                          True, Cancelled is raised and the lock is never acquired.

        Raises:
            Cancelled: If cancel_check() returned True
            PersistenceError: If the snapshot could not be written
            LedgerError: Whatever the mutator raised
        """
        if cancel_check is not None and cancel_check():
            raise Cancelled("operation cancelled before acquiring the ledger lock")

        with self._lock.write_locked():
            now = self._clock()
            working = self._snapshot.copy()
            result = mutator(SnapshotHandle(working, now))
            working.updated_at = now
            try:
                self._persist(working)
            except PersistenceError:
                if not self.rollback_on_failure:
                    self._snapshot = working
                raise
            self._snapshot = working
            return result

    def with_shared_access(self, reader: Callable[[SnapshotView], T]) -> T:
        """Run reader under the reader lock. Readers may run concurrently."""
        with self._lock.read_locked():
            return reader(SnapshotView(self._snapshot, self._clock()))

    # ========================================================================
    # USERS
    # ========================================================================

    def create_user(
        self,
        display_name: str,
        password_hash: str = "",
        role: Role = Role.USER,
        user_id: Optional[str] = None,
        **fields: Any,
    ) -> User:
        return self.with_exclusive_access(
            lambda h: h.create_user(display_name, password_hash, role, user_id, **fields)
        )

    def update_user(self, user: User) -> User:
        return self.with_exclusive_access(lambda h: h.put_user(user))

    def get_user(self, user_id: str) -> User:
        return self.with_shared_access(lambda v: v.get_user(user_id))

    def get_user_by_name(self, name: str) -> User:
        return self.with_shared_access(lambda v: v.get_user_by_name(name))

    def list_users(self) -> List[User]:
        return self.with_shared_access(lambda v: v.list_users())

    # ========================================================================
    # ACCOUNTS
    # ========================================================================

    def create_account(self, owner_user_id: str, currency: str = DEFAULT_CURRENCY) -> Account:
        return self.with_exclusive_access(lambda h: h.create_account(owner_user_id, currency))

    def update_account(self, account: Account) -> Account:
        return self.with_exclusive_access(lambda h: h.put_account(account))

    def get_account(self, account_id: str) -> Account:
        return self.with_shared_access(lambda v: v.get_account(account_id))

    def close_account(self, account_id: str) -> Account:
        return self.with_exclusive_access(lambda h: h.close_account(account_id))

    def list_accounts_by_owner(self, owner_user_id: str, include_closed: bool = False) -> List[Account]:
        return self.with_shared_access(
            lambda v: v.list_accounts_by_owner(owner_user_id, include_closed)
        )

    # ========================================================================
    # TRANSACTIONS
    # ========================================================================

    def create_transaction(
        self,
        kind: TxKind,
        amount: Any,
        currency: str,
        from_account: Optional[str] = None,
        to_account: Optional[str] = None,
        note: str = "",
        user_id: Optional[str] = None,
        item_id: Optional[int] = None,
    ) -> Transaction:
        return self.with_exclusive_access(
            lambda h: h.record_transaction(
                kind, amount, currency, from_account, to_account, note, user_id, item_id
            )
        )

    def get_transaction(self, tx_id: str) -> Transaction:
        return self.with_shared_access(lambda v: v.get_transaction(tx_id))

    def list_transactions_by_account(self, account_id: str, limit: int = 0) -> List[Transaction]:
        """
        Transactions where the account is sender or receiver.

        Sorted ascending by created_at (ties by id); with limit > 0 only the
        most recent ``limit`` entries are returned.
        """
        return self.with_shared_access(
            lambda v: v.list_transactions_by_account(account_id, limit)
        )

    def __repr__(self) -> str:
        return f"LedgerStore({str(self._path)!r})"

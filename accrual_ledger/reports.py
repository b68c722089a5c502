"""
reports.py - CSV exports over the ledger

Both exports read the store under one shared access, so a report is a
consistent picture of a single moment even while transfers are running.

Files:
    statement_<account>_<YYYYmmdd from>_<YYYYmmdd to>.csv
        tx_id,type,from,to,amount_minor,currency,created_at,note
    user_<user>_summary.csv
        account_id,currency,balance_minor
"""

from __future__ import annotations
from datetime import datetime
from pathlib import Path
from typing import List, Sequence, Tuple, Union
import csv

from .core import Account, Transaction, PersistenceError, ValidationError
from .store import LedgerStore, SnapshotView


STATEMENT_HEADER = ("tx_id", "type", "from", "to", "amount_minor", "currency", "created_at", "note")
SUMMARY_HEADER = ("account_id", "currency", "balance_minor")

REPORT_DATE_FORMAT = "%Y%m%d"
CSV_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def statement_rows(txs: Sequence[Transaction]) -> List[Tuple[str, ...]]:
    return [
        (
            tx.id,
            tx.kind.value,
            tx.from_account or "",
            tx.to_account or "",
            str(int(tx.amount)),
            tx.currency,
            tx.created_at.strftime(CSV_TIMESTAMP_FORMAT),
            tx.note,
        )
        for tx in txs
    ]


def summary_rows(accounts: Sequence[Account]) -> List[Tuple[str, ...]]:
    return [(a.id, a.currency, str(a.balance)) for a in accounts]


def _write_csv(path: Path, header: Sequence[str], rows: Sequence[Sequence[str]]) -> Path:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(header)
            writer.writerows(rows)
    except OSError as exc:
        raise PersistenceError(f"failed to write {path}: {exc}") from exc
    return path


def export_account_statement(
    store: LedgerStore,
    account_id: str,
    from_time: datetime,
    to_time: datetime,
    out_dir: Union[str, Path],
) -> Path:
    """
    Write the account's transactions with from_time <= created_at <= to_time.

    Rows are in history order (created_at, then id).

    Raises:
        NotFound: Unknown account
        ValidationError: to_time before from_time
    """
    if to_time < from_time:
        raise ValidationError(f"statement period ends ({to_time}) before it starts ({from_time})")

    def read(v: SnapshotView) -> List[Transaction]:
        v.get_account(account_id)
        return [
            tx for tx in v.list_transactions_by_account(account_id)
            if from_time <= tx.created_at <= to_time
        ]

    txs = store.with_shared_access(read)
    name = (f"statement_{account_id}_{from_time.strftime(REPORT_DATE_FORMAT)}"
            f"_{to_time.strftime(REPORT_DATE_FORMAT)}.csv")
    return _write_csv(Path(out_dir) / name, STATEMENT_HEADER, statement_rows(txs))


def export_user_summary(store: LedgerStore, user_id: str, out_dir: Union[str, Path]) -> Path:
    """
    Write one row per open account of the user.

    Raises:
        NotFound: Unknown user
    """
    def read(v: SnapshotView) -> List[Account]:
        v.get_user(user_id)
        return v.list_accounts_by_owner(user_id)

    accounts = store.with_shared_access(read)
    return _write_csv(Path(out_dir) / f"user_{user_id}_summary.csv", SUMMARY_HEADER, summary_rows(accounts))

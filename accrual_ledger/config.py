"""
config.py - Deployment settings

Every setting has a default, and each can be overridden by an
ACCRUAL_LEDGER_* environment variable:

    ACCRUAL_LEDGER_DATA_DIR          data directory (default "data")
    ACCRUAL_LEDGER_DB_FILE           ledger file (default <data>/bank.json)
    ACCRUAL_LEDGER_RATES_FILE        rate table (default <data>/rates.json)
    ACCRUAL_LEDGER_BACKUPS_DIR       backups (default <data>/backups)
    ACCRUAL_LEDGER_REPORTS_DIR       CSV exports (default "reports")
    ACCRUAL_LEDGER_WINDOW_SECONDS    accrual window (default 10800, 3 hours)
    ACCRUAL_LEDGER_REFUND_FACTOR     sale refund share (default 0.8)
    ACCRUAL_LEDGER_MAX_ITEMS         inventory capacity (default unlimited)
    ACCRUAL_LEDGER_AUTO_BACKUP       back up after every money movement (default off)
    ACCRUAL_LEDGER_STRICT_PERSISTENCE  roll back on write failure (default on)
    ACCRUAL_LEDGER_BCRYPT_ROUNDS     bcrypt cost (default 12)
    ACCRUAL_LEDGER_VERBOSE           print applied/rejected operations (default off)
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Mapping, Optional
import os

from .accrual import LONG_WINDOW
from .auth import DEFAULT_BCRYPT_ROUNDS
from .processor import DEFAULT_REFUND_FACTOR


ENV_PREFIX = "ACCRUAL_LEDGER_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _parse_bool(name: str, value: str) -> bool:
    v = value.strip().lower()
    if v in _TRUE_VALUES:
        return True
    if v in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def _parse_decimal(name: str, value: str) -> Decimal:
    try:
        return Decimal(value.strip())
    except InvalidOperation:
        raise ValueError(f"{name} must be a number, got {value!r}") from None


@dataclass(frozen=True)
class LedgerConfig:
    data_dir: Path = Path("data")
    db_file: Optional[Path] = None
    rates_file: Optional[Path] = None
    backups_dir: Optional[Path] = None
    reports_dir: Path = Path("reports")
    accrual_window: timedelta = LONG_WINDOW
    refund_factor: Decimal = DEFAULT_REFUND_FACTOR
    max_items: Optional[int] = None
    auto_backup: bool = False
    strict_persistence: bool = True
    bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS
    verbose: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'data_dir', Path(self.data_dir))
        object.__setattr__(self, 'reports_dir', Path(self.reports_dir))
        # File locations default to the data directory
        if self.db_file is None:
            object.__setattr__(self, 'db_file', self.data_dir / "bank.json")
        if self.rates_file is None:
            object.__setattr__(self, 'rates_file', self.data_dir / "rates.json")
        if self.backups_dir is None:
            object.__setattr__(self, 'backups_dir', self.data_dir / "backups")
        object.__setattr__(self, 'db_file', Path(self.db_file))
        object.__setattr__(self, 'rates_file', Path(self.rates_file))
        object.__setattr__(self, 'backups_dir', Path(self.backups_dir))
        if self.accrual_window <= timedelta(0):
            raise ValueError(f"accrual_window must be positive, got {self.accrual_window}")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError(f"bcrypt_rounds must be within [4, 31], got {self.bcrypt_rounds}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> LedgerConfig:
        """
        Build a config from ACCRUAL_LEDGER_* variables (os.environ by default).

        Raises:
            ValueError: If a variable cannot be parsed
        """
        env = os.environ if environ is None else environ

        def get(key: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + key)
            return value if value is not None and value.strip() != "" else None

        data_dir = Path(get("DATA_DIR") or "data")
        window = get("WINDOW_SECONDS")
        refund = get("REFUND_FACTOR")
        max_items = get("MAX_ITEMS")
        rounds = get("BCRYPT_ROUNDS")
        auto_backup = get("AUTO_BACKUP")
        strict = get("STRICT_PERSISTENCE")
        verbose = get("VERBOSE")
        return cls(
            data_dir=data_dir,
            db_file=Path(get("DB_FILE")) if get("DB_FILE") else None,
            rates_file=Path(get("RATES_FILE")) if get("RATES_FILE") else None,
            backups_dir=Path(get("BACKUPS_DIR")) if get("BACKUPS_DIR") else None,
            reports_dir=Path(get("REPORTS_DIR") or "reports"),
            accrual_window=timedelta(seconds=int(window)) if window else LONG_WINDOW,
            refund_factor=_parse_decimal("REFUND_FACTOR", refund) if refund else DEFAULT_REFUND_FACTOR,
            max_items=int(max_items) if max_items else None,
            auto_backup=_parse_bool("AUTO_BACKUP", auto_backup) if auto_backup else False,
            strict_persistence=_parse_bool("STRICT_PERSISTENCE", strict) if strict else True,
            bcrypt_rounds=int(rounds) if rounds else DEFAULT_BCRYPT_ROUNDS,
            verbose=_parse_bool("VERBOSE", verbose) if verbose else False,
        )

    def with_data_dir(self, data_dir: Path) -> LedgerConfig:
        """Same settings rooted at another data directory."""
        return replace(self, data_dir=Path(data_dir), db_file=None, rates_file=None, backups_dir=None)

"""
rates.py - Exchange-rate table for cross-currency transfers

Classes:
- ExchangeRates: Immutable rate table {base, pairs, updated_at}
- RateTable: The table's JSON file, read on every conversion, writable by admins

Functions:
- convert(): Minor-unit conversion between two currencies of a table

A pair rate is the value of one unit of the base currency in that currency
(base RUB, USD 0.0108 means 1 RUB = 0.0108 USD). The base currency always has
rate 1 even when the document omits it.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union
import json
import threading

from .core import (
    Clock, DEFAULT_CURRENCY, MINOR_UNITS_PER_MAJOR, ZERO,
    InvalidAmount, UnknownCurrency, PersistenceError,
    format_timestamp, parse_timestamp, to_decimal, utcnow, _normalize_decimal,
)
from .store import write_json_atomic


DEFAULT_RATES = {
    "RUB": Decimal("1"),
    "USD": Decimal("0.0108"),
    "EUR": Decimal("0.0100"),
    "KZT": Decimal("6.0"),
}


@dataclass(frozen=True, slots=True)
class ExchangeRates:
    """
    Rates relative to a base currency.

    Attributes:
        base: Base currency symbol
        updated_at: Time of the last change
        _frozen_pairs: Sorted (currency, rate) pairs
    """
    base: str
    updated_at: datetime
    _frozen_pairs: Tuple[Tuple[str, Decimal], ...] = field(default_factory=tuple)

    @classmethod
    def create(cls, base: str, pairs: Mapping[str, Any], updated_at: datetime) -> ExchangeRates:
        frozen = []
        for currency, rate in pairs.items():
            rate = to_decimal(rate)
            if rate <= ZERO:
                raise InvalidAmount(f"rate for {currency} must be positive, got {rate}")
            frozen.append((currency.upper(), rate))
        return cls(base=base.upper(), updated_at=updated_at, _frozen_pairs=tuple(sorted(frozen)))

    @property
    def pairs(self) -> Dict[str, Decimal]:
        pairs = dict(self._frozen_pairs)
        pairs.setdefault(self.base, Decimal("1"))
        return pairs

    def rate(self, currency: str) -> Decimal:
        try:
            return self.pairs[currency.upper()]
        except KeyError:
            raise UnknownCurrency(f"no exchange rate for {currency}") from None

    def with_rate(self, currency: str, rate: Any, updated_at: datetime) -> ExchangeRates:
        pairs = dict(self._frozen_pairs)
        pairs[currency.upper()] = rate
        return ExchangeRates.create(self.base, pairs, updated_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'base': self.base,
            'pairs': {k: _normalize_decimal(v) for k, v in self._frozen_pairs},
            'updatedAt': format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ExchangeRates:
        return cls.create(
            base=data.get('base', DEFAULT_CURRENCY),
            pairs=data.get('pairs') or {},
            updated_at=parse_timestamp(data.get('updatedAt') or data.get('updated_at')),
        )


def default_rates(now: datetime) -> ExchangeRates:
    return ExchangeRates.create(DEFAULT_CURRENCY, DEFAULT_RATES, now)


def convert(
    amount_minor: int,
    from_currency: str,
    to_currency: str,
    rates: Optional[ExchangeRates],
) -> int:
    """
    Convert an amount in minor units of one currency to minor units of another.

        target = round_half_up(amount / 100 / rate_from * rate_to * 100)

    The result is never below 1 minor unit. Same-currency amounts pass
    through unchanged.

    Raises:
        InvalidAmount: If amount_minor is not a positive int
        UnknownCurrency: If either currency is missing from the table
    """
    if isinstance(amount_minor, bool) or not isinstance(amount_minor, int) or amount_minor <= 0:
        raise InvalidAmount(f"amount must be a positive integer of minor units, got {amount_minor!r}")
    if from_currency.upper() == to_currency.upper():
        return amount_minor
    if rates is None:
        raise UnknownCurrency(f"no exchange-rate table to convert {from_currency} to {to_currency}")
    rate_from = rates.rate(from_currency)
    rate_to = rates.rate(to_currency)
    major = Decimal(amount_minor) / MINOR_UNITS_PER_MAJOR
    target = (major / rate_from * rate_to * MINOR_UNITS_PER_MAJOR).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    return max(int(target), 1)


class RateTable:
    """
    The exchange-rate JSON document {base, pairs, updatedAt}.

    The file is re-read on every load() so that edits by another admin
    session are seen by the next transfer. Writes are atomic.
    """

    def __init__(self, path: Union[str, Path], clock: Optional[Clock] = None):
        self.path = Path(path)
        self._clock: Clock = clock or utcnow
        self._write_lock = threading.Lock()

    def ensure(self) -> ExchangeRates:
        """Write the default table if the file is missing; return the current table."""
        with self._write_lock:
            if not self.path.exists():
                rates = default_rates(self._clock())
                write_json_atomic(self.path, rates.to_dict())
                return rates
        return self.load()

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> ExchangeRates:
        """
        Read the table.

        Raises:
            UnknownCurrency: If there is no rate table at all
            PersistenceError: If the file cannot be read or parsed
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise UnknownCurrency(f"no exchange-rate table at {self.path}") from None
        except OSError as exc:
            raise PersistenceError(f"failed to read {self.path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"{self.path} is not a valid rate table: {exc}") from exc
        return ExchangeRates.from_dict(data)

    def set_rate(self, currency: str, rate: Any) -> ExchangeRates:
        """
        Set one currency's rate relative to the base and rewrite the file.

        Raises:
            InvalidAmount: If rate is not a positive number
        """
        currency = currency.strip().upper()
        if not currency:
            raise UnknownCurrency("currency code cannot be empty")
        rate = to_decimal(rate)
        if rate <= ZERO:
            raise InvalidAmount(f"rate must be positive, got {rate}")
        with self._write_lock:
            current = self.load() if self.path.exists() else default_rates(self._clock())
            updated = current.with_rate(currency, rate, self._clock())
            write_json_atomic(self.path, updated.to_dict())
        return updated

    def convert(self, amount_minor: int, from_currency: str, to_currency: str) -> int:
        """Convert using the table as it is on disk right now."""
        same = from_currency.upper() == to_currency.upper()
        return convert(amount_minor, from_currency, to_currency, None if same else self.load())

    def __repr__(self) -> str:
        return f"RateTable({str(self.path)!r})"

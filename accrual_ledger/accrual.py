"""
accrual.py - Time-windowed passive income

Income accrues from an owner's items only while the activity window is open.
Every touch folds the earned income into the balance and re-opens the window:

    end    = min(now, window_end)
    earned = rate * (end - last)          if end > last, else 0
    last   = now
    window_end = now + window

Properties:
    - Idempotent: a second call at the same instant earns nothing
    - Window-bounded: time past window_end earns nothing until the next touch

All arithmetic is Decimal; elapsed time is converted from the timedelta's
integer parts, so there is no float rounding anywhere.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from .core import User, GAME_INSTRUMENT, ZERO
from .catalog import Catalog


SHORT_WINDOW = timedelta(minutes=10)
LONG_WINDOW = timedelta(hours=3)


@dataclass(frozen=True, slots=True)
class AccrualPolicy:
    """
    Accrual configuration.

    Attributes:
        window: How long income keeps accruing after the last touch
        instrument: Balance the income is credited to
    """
    window: timedelta = LONG_WINDOW
    instrument: str = GAME_INSTRUMENT

    def __post_init__(self):
        if self.window <= timedelta(0):
            raise ValueError(f"accrual window must be positive, got {self.window}")
        if not self.instrument:
            raise ValueError("accrual instrument cannot be empty")


DEFAULT_POLICY = AccrualPolicy()


@dataclass(frozen=True, slots=True)
class AccrualResult:
    """
    Outcome of one accrual step.

    Attributes:
        user: The user with income folded in and the window restarted
        earned: Income credited by this step (zero if none)
        accrual_end: The instant income was counted up to (None on first touch)
    """
    user: User
    earned: Decimal
    accrual_end: Optional[datetime]


def elapsed_seconds(delta: timedelta) -> Decimal:
    """Exact number of seconds in a timedelta, as a Decimal."""
    return (
        Decimal(delta.days) * 86400
        + Decimal(delta.seconds)
        + Decimal(delta.microseconds) / Decimal(1_000_000)
    )


def start_window(user: User, now: datetime, policy: AccrualPolicy = DEFAULT_POLICY) -> User:
    """Mark user as touched at now without crediting anything."""
    return replace(user, last_accrual_at=now, accrual_window_end=now + policy.window)


def accrue(
    user: User,
    now: datetime,
    rate_per_second: Decimal,
    policy: AccrualPolicy = DEFAULT_POLICY,
) -> AccrualResult:
    """
    Fold income earned since the last touch into the user's balance.

    A user that was never touched only gets a window opened. A missing
    window end (legacy records) is treated as last + window.

    Args:
        user: The user to bring up to date
        now: Current time
        rate_per_second: Total income rate of the user's items
        policy: Window length and credited instrument

    Returns:
        AccrualResult with the updated user and what was earned
    """
    last = user.last_accrual_at
    if last is None:
        return AccrualResult(start_window(user, now, policy), ZERO, None)

    window_end = user.accrual_window_end
    if window_end is None:
        window_end = last + policy.window

    end = min(now, window_end)
    earned = ZERO
    if end > last and rate_per_second > ZERO:
        earned = rate_per_second * elapsed_seconds(end - last)

    if earned > ZERO:
        user = user.with_balance(policy.instrument, user.balance(policy.instrument) + earned)
    return AccrualResult(start_window(user, now, policy), earned, end)


def window_remaining(user: User, now: datetime) -> timedelta:
    """Time left before income stops accruing, clamped at zero."""
    if user.accrual_window_end is None:
        return timedelta(0)
    remaining = user.accrual_window_end - now
    return remaining if remaining > timedelta(0) else timedelta(0)


class AccrualEngine:
    """
    Accrual bound to a catalog: derives each user's rate from their items.

    Example:
        engine = AccrualEngine(default_catalog(), AccrualPolicy(SHORT_WINDOW))
        result = engine.apply(user, now)
    """

    def __init__(self, catalog: Catalog, policy: Optional[AccrualPolicy] = None):
        self.catalog = catalog
        self.policy = policy or AccrualPolicy(instrument=catalog.currency)
        # Income must land in the balance purchases are paid from
        if self.policy.instrument != catalog.currency:
            raise ValueError(
                f"accrual instrument {self.policy.instrument} does not match "
                f"catalog currency {catalog.currency}"
            )

    def rate_for(self, user: User) -> Decimal:
        return self.catalog.income_rate(user.owned_items)

    def apply(self, user: User, now: datetime) -> AccrualResult:
        return accrue(user, now, self.rate_for(user), self.policy)

    def start_window(self, user: User, now: datetime) -> User:
        return start_window(user, now, self.policy)

    def window_remaining(self, user: User, now: datetime) -> timedelta:
        return window_remaining(user, now)

    def __repr__(self) -> str:
        return f"AccrualEngine({self.catalog!r}, window={self.policy.window})"

"""
conftest.py - Shared pytest fixtures for accrual ledger tests

Provides common fixtures used across unit and functional tests:
- A fake clock and a store in a temporary directory
- A small three-item catalog with round numbers
- A rate table with the default RUB/USD/EUR/KZT rates
- A fully wired Bank (cheap bcrypt, 10-minute accrual window)
"""

import pytest
from datetime import datetime
from decimal import Decimal
from typing import Tuple

from accrual_ledger import (
    # Store
    LedgerStore,
    # Catalog and accrual
    Catalog, CatalogItem, AccrualPolicy, SHORT_WINDOW,
    # Money movement
    RateTable, TransactionProcessor,
    # Services
    Bank, BackupManager,
    # Types
    Account, User,
)

from tests.fake_clock import FakeClock


T0 = datetime(2025, 1, 1, 12, 0, 0)

# Lowest cost bcrypt accepts; keeps the suite fast.
TEST_BCRYPT_ROUNDS = 4


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def small_catalog() -> Catalog:
    """Three items: 10/100/1000 MNT earning 0.0001/0.001/0.01 MNT per second."""
    return Catalog([
        CatalogItem(1, "Starter Card", Decimal("10"), Decimal("0.0001")),
        CatalogItem(2, "Mid Card", Decimal("100"), Decimal("0.001")),
        CatalogItem(3, "Top Card", Decimal("1000"), Decimal("0.01")),
    ])


def make_user(store: LedgerStore, name: str) -> User:
    """Create a credential-less user directly in the store."""
    return store.create_user(name)


def user_with_account(store: LedgerStore, name: str, currency: str = "RUB") -> Tuple[User, Account]:
    user = store.create_user(name)
    account = store.create_account(user.id, currency)
    return store.get_user(user.id), account


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock(T0)


@pytest.fixture
def store(tmp_path, clock):
    return LedgerStore(tmp_path / "bank.json", clock=clock)


@pytest.fixture
def catalog():
    return small_catalog()


@pytest.fixture
def rate_table(tmp_path, clock):
    table = RateTable(tmp_path / "rates.json", clock=clock)
    table.ensure()
    return table


@pytest.fixture
def processor(store, catalog, rate_table):
    return TransactionProcessor(store, catalog=catalog, rates=rate_table)


@pytest.fixture
def backups(tmp_path, store, clock):
    return BackupManager(store.path, tmp_path / "backups", clock=clock)


@pytest.fixture
def bank(tmp_path, store, catalog, rate_table, backups):
    return Bank(
        store,
        catalog=catalog,
        rates=rate_table,
        backups=backups,
        accrual_policy=AccrualPolicy(window=SHORT_WINDOW),
        reports_dir=tmp_path / "reports",
        bcrypt_rounds=TEST_BCRYPT_ROUNDS,
    )


@pytest.fixture
def two_accounts(store):
    """u000001 and u000002, each with one empty RUB account."""
    _, a1 = user_with_account(store, "first")
    _, a2 = user_with_account(store, "second")
    return a1, a2

"""
Unit tests for the Bank facade.
"""

import pytest
import threading
from datetime import timedelta
from decimal import Decimal

from accrual_ledger import (
    Bank, LedgerStore, LedgerConfig, Role, Catalog, AccrualPolicy, GAME_INSTRUMENT, SHORT_WINDOW,
    NotFound, AlreadyExists, AuthError, ValidationError, PermissionDenied,
    InsufficientFunds, PersistenceError,
)
from accrual_ledger import store as store_module

from tests.conftest import TEST_BCRYPT_ROUNDS, small_catalog


class TestCredentials:
    """Registration and login."""

    def test_register_and_login(self, bank):
        user = bank.register("  alice ", "s3cret")
        assert user.display_name == "alice"
        assert user.role is Role.USER
        assert user.password_hash.startswith("$2")
        assert "s3cret" not in user.password_hash
        assert bank.login("alice", "s3cret") == user

    def test_wrong_password(self, bank):
        bank.register("alice", "s3cret")
        with pytest.raises(AuthError):
            bank.login("alice", "wrong")

    def test_unknown_user_same_error(self, bank):
        with pytest.raises(AuthError) as excinfo:
            bank.login("nobody", "whatever")
        assert str(excinfo.value) == "invalid username or password"

    def test_players_cannot_log_in(self, bank):
        """A chat player has no password hash and never authenticates."""
        bank.touch("42", "bob")
        with pytest.raises(AuthError):
            bank.login("bob", "")

    @pytest.mark.parametrize("username,password", [("al", "s3cret"), ("alice", "abc"), ("", "s3cret")])
    def test_validation(self, bank, username, password):
        with pytest.raises(ValidationError):
            bank.register(username, password)

    def test_duplicate_username(self, bank):
        bank.register("alice", "s3cret")
        with pytest.raises(AlreadyExists):
            bank.register("alice", "other")

    def test_default_admin_is_created_once(self, bank):
        admin = bank.ensure_default_admin("pw12")
        assert admin.role is Role.ADMIN
        assert bank.ensure_default_admin("ignored") == admin
        assert bank.login("admin", "pw12") == admin


class TestAccounts:
    """Opening and listing accounts."""

    def test_open_account(self, bank):
        user = bank.register("alice", "s3cret")
        account = bank.open_account(user.id, " usd ")
        assert account.currency == "USD"
        assert bank.get_user(user.id).accounts == (account.id,)

    def test_open_account_default_currency(self, bank):
        user = bank.register("alice", "s3cret")
        assert bank.open_account(user.id).currency == "RUB"

    def test_invalid_currency(self, bank):
        user = bank.register("alice", "s3cret")
        with pytest.raises(ValidationError):
            bank.open_account(user.id, "U$D")

    def test_unknown_user(self, bank):
        with pytest.raises(NotFound):
            bank.open_account("u000404", "RUB")
        with pytest.raises(NotFound):
            bank.list_accounts("u000404")

    def test_list_accounts(self, bank):
        user = bank.register("alice", "s3cret")
        rub = bank.open_account(user.id, "RUB")
        usd = bank.open_account(user.id, "USD")
        bank.close_account(usd.id)
        assert bank.list_accounts(user.id) == [rub]
        assert [a.id for a in bank.list_accounts(user.id, include_closed=True)] == [rub.id, usd.id]

    def test_history_unknown_account(self, bank):
        with pytest.raises(NotFound):
            bank.history("a000404")


class TestMoney:
    """The reference deposit / withdraw / transfer scenario."""

    def test_scenario(self, bank):
        alice = bank.register("alice", "s3cret")
        bob = bank.register("bobby", "s3cret")
        a1 = bank.open_account(alice.id, "RUB")
        a2 = bank.open_account(bob.id, "RUB")

        bank.deposit(a1.id, 10000)
        with pytest.raises(InsufficientFunds):
            bank.withdraw(a1.id, 15000)
        assert bank.get_account(a1.id).balance == 10000

        bank.transfer(a1.id, a2.id, 5000)
        assert bank.get_account(a1.id).balance == 5000
        assert bank.get_account(a2.id).balance == 5000
        assert [t.kind.value for t in bank.history(a1.id)] == ["deposit", "transfer"]
        assert [t.kind.value for t in bank.history(a2.id)] == ["transfer"]

    def test_auto_backup(self, tmp_path, store, catalog, rate_table, backups):
        bank = Bank(store, catalog=catalog, rates=rate_table, backups=backups,
                    bcrypt_rounds=TEST_BCRYPT_ROUNDS, auto_backup=True)
        user = store.create_user("alice")
        account = store.create_account(user.id, "RUB")
        bank.deposit(account.id, 100)
        assert len(backups.list_backups()) == 1

    def test_auto_backup_failure_does_not_undo(self, store, catalog, rate_table, backups, monkeypatch, capsys):
        bank = Bank(store, catalog=catalog, rates=rate_table, backups=backups,
                    bcrypt_rounds=TEST_BCRYPT_ROUNDS, auto_backup=True)
        user = store.create_user("alice")
        account = store.create_account(user.id, "RUB")

        def broken_backup():
            raise PersistenceError("backups volume is gone")

        monkeypatch.setattr(backups, "backup_now", broken_backup)
        bank.deposit(account.id, 100)
        assert bank.get_account(account.id).balance == 100
        assert "AUTO-BACKUP FAILED" in capsys.readouterr().err


class TestMiningGame:
    """Players, trades and the accrual window through the facade."""

    def test_touch_creates_player(self, bank, clock):
        result = bank.touch("42", "bob")
        assert result.created
        assert result.earned == Decimal(0)
        assert result.user.id == "42"
        assert result.user.display_name == "bob"
        assert result.user.accrual_window_end == clock() + SHORT_WINDOW

    def test_touch_accrues(self, bank, clock):
        bank.touch("42", "bob")
        bank.processor.credit_instrument("42", GAME_INSTRUMENT, 10)
        bank.buy("42", 1)
        clock.advance(seconds=100)
        result = bank.touch("42")
        assert not result.created
        assert result.earned == Decimal("0.01")
        assert bank.touch("42").earned == Decimal(0)

    def test_income_goes_to_catalog_currency(self, store, clock):
        """Without an explicit policy, income is paid in the currency items are bought with."""
        catalog = Catalog(list(small_catalog()), currency="GEM")
        bank = Bank(store, catalog=catalog, bcrypt_rounds=TEST_BCRYPT_ROUNDS)
        bank.touch("42", "bob")
        bank.processor.credit_instrument("42", "GEM", 10)
        bank.buy("42", 1)
        clock.advance(seconds=100)
        assert bank.touch("42").user.balances == {"GEM": Decimal("0.01")}

    def test_mismatched_accrual_policy_rejected(self, store):
        catalog = Catalog(list(small_catalog()), currency="GEM")
        with pytest.raises(ValueError):
            Bank(store, catalog=catalog, accrual_policy=AccrualPolicy(window=SHORT_WINDOW))

    def test_touch_without_name_uses_id(self, bank):
        assert bank.touch("42").user.display_name == "42"

    def test_inventory(self, bank):
        bank.touch("42", "bob")
        bank.processor.credit_instrument("42", GAME_INSTRUMENT, 2000)
        for item_id in (2, 1, 2):
            bank.buy("42", item_id)
        view = bank.inventory("42")
        assert view.counts == {2: 2, 1: 1}
        assert view.total_items == 3
        assert view.rate == Decimal("0.0021")
        assert view.nominal_value == Decimal("210")
        assert view.resale_value == Decimal("168")
        assert view.lines[0].rate == Decimal("0.002")

    def test_mining_status(self, bank, clock):
        bank.touch("42", "bob")
        clock.advance(minutes=4)
        status = bank.mining_status("42")
        assert status.instrument == GAME_INSTRUMENT
        assert status.window_remaining == timedelta(minutes=6)
        assert status.rate == Decimal(0)

    def test_reset_player(self, bank, clock):
        bank.touch("42", "bob")
        bank.processor.credit_instrument("42", GAME_INSTRUMENT, 100)
        bank.buy("42", 1)
        clock.advance(minutes=1)
        user = bank.reset_player("42")
        assert user.balances == {}
        assert user.owned_items == ()
        assert user.last_accrual_at == clock()


class TestAdmin:
    """Admin-only operations."""

    def test_non_admin_actor_is_denied(self, bank):
        user = bank.register("alice", "s3cret")
        with pytest.raises(PermissionDenied):
            bank.list_users(actor=user.id)
        with pytest.raises(PermissionDenied):
            bank.set_rate("USD", "0.02", actor=user.id)

    def test_admin_actor_is_allowed(self, bank):
        admin = bank.ensure_default_admin()
        assert bank.set_rate("usd", "0.02", actor=admin.id).rate("USD") == Decimal("0.02")
        assert bank.get_rates(actor=admin.id).rate("USD") == Decimal("0.02")

    def test_unknown_actor(self, bank):
        with pytest.raises(NotFound):
            bank.list_users(actor="u000404")

    def test_missing_components(self, store):
        bank = Bank(store, bcrypt_rounds=TEST_BCRYPT_ROUNDS)
        with pytest.raises(ValidationError):
            bank.get_rates()
        with pytest.raises(ValidationError):
            bank.backup_now()

    def test_backup_and_restore_reloads(self, bank):
        user = bank.register("alice", "s3cret")
        account = bank.open_account(user.id)
        bank.deposit(account.id, 500)
        name = bank.backup_now()
        bank.deposit(account.id, 700)
        assert bank.list_backups() == [name]
        bank.restore_backup(name)
        assert bank.get_account(account.id).balance == 500

    def test_restore_is_not_lost_to_a_concurrent_deposit(self, bank, monkeypatch):
        """A deposit arriving mid-restore lands on top of the restored state."""
        user = bank.register("alice", "s3cret")
        account = bank.open_account(user.id)
        name = bank.backup_now()
        bank.deposit(account.id, 500)

        racer = {}
        real_write = store_module.write_bytes_atomic

        def write_then_deposit(path, data):
            real_write(path, data)
            thread = threading.Thread(target=bank.deposit, args=(account.id, 7))
            thread.start()
            thread.join(timeout=0.2)
            racer['blocked'] = thread.is_alive()
            racer['thread'] = thread

        monkeypatch.setattr(store_module, "write_bytes_atomic", write_then_deposit)
        bank.restore_backup(name)
        racer['thread'].join(timeout=5)
        monkeypatch.undo()

        assert racer['blocked']
        assert bank.get_account(account.id).balance == 7
        assert LedgerStore(bank.store.path).get_account(account.id).balance == 7

    def test_restore_without_reload(self, bank):
        user = bank.register("alice", "s3cret")
        account = bank.open_account(user.id)
        name = bank.backup_now()
        bank.deposit(account.id, 700)
        bank.restore_backup(name, reload=False)
        assert bank.get_account(account.id).balance == 700
        assert LedgerStore(bank.store.path).get_account(account.id).balance == 0


class TestFromConfig:
    """Building the stack from settings."""

    def test_from_config(self, tmp_path):
        config = LedgerConfig(data_dir=tmp_path / "data", reports_dir=tmp_path / "reports",
                              accrual_window=SHORT_WINDOW, bcrypt_rounds=TEST_BCRYPT_ROUNDS,
                              max_items=5)
        bank = Bank.from_config(config)
        assert bank.store.path == tmp_path / "data" / "bank.json"
        assert bank.rates.exists()
        assert bank.accrual.policy.window == SHORT_WINDOW
        assert bank.processor.config.max_items == 5
        assert len(bank.catalog) == 59

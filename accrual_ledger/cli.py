"""
cli.py - Command-line ledger tool

    accrual-ledger [--data-dir DIR] [--verbose] <command> ...

Setup:
    init                          create the data files and the default admin
    register USERNAME             create a user (prompts for the password)
    login USERNAME                check credentials
    users                         list users

Accounts (amounts in major units, e.g. 100.50):
    open-account USER_ID [--currency RUB]
    accounts USER_ID [--all]
    deposit ACCOUNT_ID AMOUNT [--note TEXT]
    withdraw ACCOUNT_ID AMOUNT [--note TEXT]
    transfer FROM_ID TO_ID AMOUNT [--note TEXT]
    history ACCOUNT_ID [--limit N]
    close-account ACCOUNT_ID

Rates, backups, reports:
    rates | set-rate CURRENCY RATE
    backup | backups | restore NAME
    export-statement ACCOUNT_ID --from YYYY-MM-DD --to YYYY-MM-DD
    export-summary USER_ID

Settings come from ACCRUAL_LEDGER_* variables (see config.py); --data-dir
overrides the data directory. Errors print "Error [<code>]: <message>" and
exit with status 1.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import timedelta
from functools import wraps
from typing import Any, Callable, Optional

import click

from .core import LedgerError, Transaction, MINOR_UNITS_PER_MAJOR
from .bank import Bank
from .config import LedgerConfig
from .conversation import parse_amount


def format_minor(minor: int) -> str:
    """10050 -> "100.50"."""
    sign = "-" if minor < 0 else ""
    major, cents = divmod(abs(minor), MINOR_UNITS_PER_MAJOR)
    return f"{sign}{major}.{cents:02d}"


def _format_tx(tx: Transaction) -> str:
    return (f"{tx.id}  {tx.created_at:%Y-%m-%d %H:%M:%S}  {tx.kind.value:<8}  "
            f"{tx.from_account or '-':>7} -> {tx.to_account or '-':<7}  "
            f"{format_minor(int(tx.amount))} {tx.currency}  {tx.note}").rstrip()


def ledger_command(f: Callable[..., Any]) -> Callable[..., Any]:
    """Report LedgerError as "Error [code]: message" and exit 1."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except LedgerError as exc:
            click.echo(f"Error [{exc.code}]: {exc}", err=True)
            raise click.exceptions.Exit(1)
    return wrapper


class _Context:
    def __init__(self, config: LedgerConfig):
        self.config = config
        self._bank: Optional[Bank] = None

    @property
    def bank(self) -> Bank:
        if self._bank is None:
            self._bank = Bank.from_config(self.config)
        return self._bank


pass_ctx = click.make_pass_decorator(_Context)


def _amount(ctx: click.Context, param: click.Parameter, value: str) -> int:
    try:
        return parse_amount(value)
    except LedgerError as exc:
        raise click.BadParameter(str(exc)) from None


@click.group('accrual-ledger')
@click.option('--data-dir', type=click.Path(file_okay=False), default=None,
              help='Data directory (overrides ACCRUAL_LEDGER_DATA_DIR)')
@click.option('--verbose', is_flag=True, default=False, help='Print applied/rejected operations')
@click.pass_context
def cli(ctx, data_dir, verbose):
    """Accrual ledger administration."""
    config = LedgerConfig.from_env()
    if data_dir is not None:
        config = config.with_data_dir(data_dir)
    if verbose:
        config = replace(config, verbose=True)
    ctx.obj = _Context(config)


# ============================================================================
# SETUP AND USERS
# ============================================================================

@cli.command('init')
@click.option('--admin-password', default='admin', show_default=True, help='Password of the default admin')
@pass_ctx
@ledger_command
def init_ledger(c, admin_password):
    """Create the ledger and rate files and the default admin."""
    bank = c.bank
    admin = bank.ensure_default_admin(admin_password)
    click.echo(f"Ledger: {bank.store.path}")
    click.echo(f"Rates:  {bank.rates.path}")
    click.echo(f"Admin:  {admin.display_name} ({admin.id})")


@cli.command('register')
@click.argument('username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@pass_ctx
@ledger_command
def register(c, username, password):
    """Create a user."""
    user = c.bank.register(username, password)
    click.echo(f"Registered {user.display_name} as {user.id}")


@cli.command('login')
@click.argument('username')
@click.option('--password', prompt=True, hide_input=True)
@pass_ctx
@ledger_command
def login(c, username, password):
    """Check a username and password."""
    user = c.bank.login(username, password)
    click.echo(f"OK {user.id} ({user.role.value})")


@cli.command('users')
@pass_ctx
@ledger_command
def list_users(c):
    """List all users."""
    for user in c.bank.list_users():
        click.echo(f"{user.id}  {user.display_name}  {user.role.value}  accounts={len(user.accounts)}")


# ============================================================================
# ACCOUNTS
# ============================================================================

@cli.command('open-account')
@click.argument('user_id')
@click.option('--currency', default='RUB', show_default=True)
@pass_ctx
@ledger_command
def open_account(c, user_id, currency):
    """Open an account for a user."""
    account = c.bank.open_account(user_id, currency)
    click.echo(f"Opened {account.id} ({account.currency}) for {user_id}")


@cli.command('accounts')
@click.argument('user_id')
@click.option('--all', 'include_closed', is_flag=True, help='Include closed accounts')
@pass_ctx
@ledger_command
def list_accounts(c, user_id, include_closed):
    """List a user's accounts."""
    accounts = c.bank.list_accounts(user_id, include_closed=include_closed)
    if not accounts:
        click.echo("No accounts")
    for account in accounts:
        closed = "  closed" if account.closed else ""
        click.echo(f"{account.id}  {account.currency}  {format_minor(account.balance)}{closed}")


@cli.command('deposit')
@click.argument('account_id')
@click.argument('amount', callback=_amount)
@click.option('--note', default='')
@pass_ctx
@ledger_command
def deposit(c, account_id, amount, note):
    """Deposit AMOUNT into an account."""
    tx = c.bank.deposit(account_id, amount, note)
    account = c.bank.get_account(account_id)
    click.echo(f"{tx.id}: balance {format_minor(account.balance)} {account.currency}")


@cli.command('withdraw')
@click.argument('account_id')
@click.argument('amount', callback=_amount)
@click.option('--note', default='')
@pass_ctx
@ledger_command
def withdraw(c, account_id, amount, note):
    """Withdraw AMOUNT from an account."""
    tx = c.bank.withdraw(account_id, amount, note)
    account = c.bank.get_account(account_id)
    click.echo(f"{tx.id}: balance {format_minor(account.balance)} {account.currency}")


@cli.command('transfer')
@click.argument('from_id')
@click.argument('to_id')
@click.argument('amount', callback=_amount)
@click.option('--note', default='')
@pass_ctx
@ledger_command
def transfer(c, from_id, to_id, amount, note):
    """Transfer AMOUNT between accounts (converted between currencies)."""
    tx = c.bank.transfer(from_id, to_id, amount, note)
    click.echo(f"{tx.id}: {format_minor(int(tx.amount))} {tx.currency} {from_id} -> {to_id}")


@cli.command('history')
@click.argument('account_id')
@click.option('--limit', default=0, show_default=True, help='Most recent N (0 = all)')
@pass_ctx
@ledger_command
def history(c, account_id, limit):
    """Show an account's transactions, oldest first."""
    txs = c.bank.history(account_id, limit)
    if not txs:
        click.echo("No transactions")
    for tx in txs:
        click.echo(_format_tx(tx))


@cli.command('close-account')
@click.argument('account_id')
@pass_ctx
@ledger_command
def close_account(c, account_id):
    """Close an account."""
    account = c.bank.close_account(account_id)
    click.echo(f"Closed {account.id}")


# ============================================================================
# RATES
# ============================================================================

@cli.command('rates')
@pass_ctx
@ledger_command
def show_rates(c):
    """Show the exchange-rate table."""
    rates = c.bank.get_rates()
    click.echo(f"Base: {rates.base}  Updated: {rates.updated_at:%Y-%m-%d %H:%M:%S}")
    for currency, rate in sorted(rates.pairs.items()):
        click.echo(f"{currency}: {rate}")


@cli.command('set-rate')
@click.argument('currency')
@click.argument('rate')
@pass_ctx
@ledger_command
def set_rate(c, currency, rate):
    """Set how much CURRENCY one unit of the base currency buys."""
    rates = c.bank.set_rate(currency, rate)
    click.echo(f"{currency.upper()}: {rates.rate(currency)}")


# ============================================================================
# BACKUPS
# ============================================================================

@cli.command('backup')
@pass_ctx
@ledger_command
def backup(c):
    """Copy the ledger file into the backups directory."""
    click.echo(f"Backup created: {c.bank.backup_now()}")


@cli.command('backups')
@pass_ctx
@ledger_command
def list_backups(c):
    """List backups."""
    names = c.bank.list_backups()
    if not names:
        click.echo("No backups")
    for i, name in enumerate(names, start=1):
        click.echo(f"{i}) {name}")


@cli.command('restore')
@click.argument('name')
@pass_ctx
@ledger_command
def restore(c, name):
    """Overwrite the ledger with a backup."""
    c.bank.restore_backup(name)
    click.echo(f"Restored {name}")


# ============================================================================
# REPORTS
# ============================================================================

@cli.command('export-statement')
@click.argument('account_id')
@click.option('--from', 'from_date', type=click.DateTime(formats=['%Y-%m-%d']), required=True)
@click.option('--to', 'to_date', type=click.DateTime(formats=['%Y-%m-%d']), required=True)
@click.option('--out-dir', type=click.Path(file_okay=False), default=None)
@pass_ctx
@ledger_command
def export_statement(c, account_id, from_date, to_date, out_dir):
    """Write an account statement CSV; both dates are inclusive."""
    end_of_day = to_date + timedelta(days=1) - timedelta(microseconds=1)
    path = c.bank.export_account_statement(account_id, from_date, end_of_day, out_dir=out_dir)
    click.echo(f"Saved: {path}")


@cli.command('export-summary')
@click.argument('user_id')
@click.option('--out-dir', type=click.Path(file_okay=False), default=None)
@pass_ctx
@ledger_command
def export_summary(c, user_id, out_dir):
    """Write a user's account summary CSV."""
    path = c.bank.export_user_summary(user_id, out_dir=out_dir)
    click.echo(f"Saved: {path}")


def main():
    cli(prog_name='accrual-ledger')


if __name__ == '__main__':
    main()

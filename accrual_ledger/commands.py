"""
commands.py - Slash-command router for the mining game

The chat transport hands each message to CommandRouter.handle() and renders
the CommandResult it gets back. Every message first touches the player, so
passive income is folded in before the command runs.

Commands:
    /start              create the player / welcome
    /help               command list
    /balance            balance and income rate
    /mine               balance, rate and time left in the accrual window
    /inventory          owned items grouped by id
    /shop [page]        catalog page
    /buy <id>           buy one unit
    /sell <id>          sell one unit back
    /reset              zero the balance and empty the inventory
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .core import LedgerError, ValidationError
from .bank import Bank, TouchResult
from .catalog import DEFAULT_PAGE_SIZE


UNKNOWN_COMMAND = "unknown_command"

HELP = (
    ("start", "create an account / welcome"),
    ("help", "this list"),
    ("balance", "balance and income rate"),
    ("mine", "mining status"),
    ("inventory", "your items"),
    ("shop", "catalog, [page]"),
    ("buy", "buy an item, <id>"),
    ("sell", "sell an item back, <id>"),
    ("reset", "reset your progress"),
)


@dataclass(frozen=True)
class CommandResult:
    """
    Structured outcome of one command.

    Attributes:
        name: Command name without slash ("" if the text was not a command)
        ok: False if the command failed
        data: Command-specific payload (amounts are Decimal)
        error_code: Stable LedgerError.code, or "unknown_command"
        message: Human-readable error detail
    """
    name: str
    ok: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None
    message: str = ""


def parse_command(text: str) -> Tuple[str, List[str]]:
    """
    Split "/buy@MinerBot 12" into ("buy", ["12"]).

    Returns ("", []) for text that is not a slash command.
    """
    parts = (text or "").strip().split()
    if not parts or not parts[0].startswith("/"):
        return "", []
    name = parts[0][1:].split("@", 1)[0].lower()
    return name, parts[1:]


def _parse_id(args: List[str], usage: str) -> int:
    if not args:
        raise ValidationError(f"usage: {usage}")
    try:
        return int(args[0])
    except ValueError:
        raise ValidationError(f"invalid id {args[0]!r}") from None


class CommandRouter:
    """
    Maps slash commands to Bank calls.

    Example:
        router = CommandRouter(bank)
        result = router.handle("42", "alice", "/buy 1")
        if not result.ok:
            reply(result.error_code)
    """

    def __init__(self, bank: Bank, shop_page_size: int = DEFAULT_PAGE_SIZE):
        self.bank = bank
        self.shop_page_size = shop_page_size
        self._handlers: Dict[str, Callable[[str, TouchResult, List[str]], Dict[str, Any]]] = {
            "start": self._start,
            "help": self._help,
            "balance": self._balance,
            "mine": self._mine,
            "inventory": self._inventory,
            "shop": self._shop,
            "buy": self._buy,
            "sell": self._sell,
            "reset": self._reset,
        }

    @property
    def commands(self) -> Tuple[str, ...]:
        return tuple(self._handlers)

    def handle(self, user_id: str, display_name: str, text: str) -> CommandResult:
        """
        Touch the player, then run the command in text.

        Never raises LedgerError; failures come back as ok=False results.
        """
        name, args = parse_command(text)
        try:
            touched = self.bank.touch(user_id, display_name)
            handler = self._handlers.get(name)
            if handler is None:
                return CommandResult(
                    name, False, error_code=UNKNOWN_COMMAND,
                    message=f"unknown command {text.strip()!r}",
                )
            return CommandResult(name, True, handler(user_id, touched, args))
        except LedgerError as exc:
            return CommandResult(name, False, error_code=exc.code, message=str(exc))

    # ------------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------------

    def _start(self, user_id: str, touched: TouchResult, args: List[str]) -> Dict[str, Any]:
        status = self.bank.mining_status(user_id)
        return {
            'created': touched.created,
            'balance': status.balance,
            'rate': status.rate,
            'instrument': status.instrument,
            'window': self.bank.accrual.policy.window,
            'commands': HELP,
        }

    def _help(self, user_id: str, touched: TouchResult, args: List[str]) -> Dict[str, Any]:
        return {'commands': HELP, 'shop_page_size': self.shop_page_size}

    def _balance(self, user_id: str, touched: TouchResult, args: List[str]) -> Dict[str, Any]:
        status = self.bank.mining_status(user_id)
        return {
            'balance': status.balance,
            'rate': status.rate,
            'instrument': status.instrument,
            'earned': touched.earned,
        }

    def _mine(self, user_id: str, touched: TouchResult, args: List[str]) -> Dict[str, Any]:
        status = self.bank.mining_status(user_id)
        return {
            'balance': status.balance,
            'rate': status.rate,
            'instrument': status.instrument,
            'earned': touched.earned,
            'window_end': status.window_end,
            'window_remaining': status.window_remaining,
        }

    def _inventory(self, user_id: str, touched: TouchResult, args: List[str]) -> Dict[str, Any]:
        return {'inventory': self.bank.inventory(user_id)}

    def _shop(self, user_id: str, touched: TouchResult, args: List[str]) -> Dict[str, Any]:
        page = 1
        if args:
            try:
                page = int(args[0])
            except ValueError:
                raise ValidationError(f"invalid page {args[0]!r}") from None
        items, page, pages = self.bank.catalog.page(page, self.shop_page_size)
        return {'items': items, 'page': page, 'pages': pages, 'instrument': self.bank.catalog.currency}

    def _buy(self, user_id: str, touched: TouchResult, args: List[str]) -> Dict[str, Any]:
        trade = self.bank.buy(user_id, _parse_id(args, "/buy <id>"))
        return {'trade': trade, 'balance': trade.user.balance(self.bank.catalog.currency)}

    def _sell(self, user_id: str, touched: TouchResult, args: List[str]) -> Dict[str, Any]:
        trade = self.bank.sell(user_id, _parse_id(args, "/sell <id>"))
        return {'trade': trade, 'balance': trade.user.balance(self.bank.catalog.currency)}

    def _reset(self, user_id: str, touched: TouchResult, args: List[str]) -> Dict[str, Any]:
        return {'user': self.bank.reset_player(user_id)}

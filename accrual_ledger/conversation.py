"""
conversation.py - Typed state of multi-step chat flows

A chat flow such as "deposit" asks for its inputs one message at a time.
Each step is an explicit state type carrying exactly the data collected so
far, and advance() turns (state, message text) into the next state or a
completed Intent for the bank to execute.

Flows:
    open account:  AwaitingCurrency -> OpenAccountIntent
    deposit:       AwaitingDepositAmount(account) -> DepositIntent
    withdraw:      AwaitingWithdrawAmount(account) -> WithdrawIntent
    transfer:      AwaitingTransferTarget(from) -> AwaitingTransferAmount(from, to)
                   -> TransferIntent

Sending "/cancel" in any state returns to Idle.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, Hashable, Optional, Tuple, Union
import threading

from .core import (
    Account, Transaction,
    MINOR_UNITS_PER_MAJOR,
    InvalidAmount, PermissionDenied, ValidationError,
)


CANCEL_COMMAND = "/cancel"


# ============================================================================
# STATES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Idle:
    pass


@dataclass(frozen=True, slots=True)
class AwaitingCurrency:
    pass


@dataclass(frozen=True, slots=True)
class AwaitingDepositAmount:
    account_id: str


@dataclass(frozen=True, slots=True)
class AwaitingWithdrawAmount:
    account_id: str


@dataclass(frozen=True, slots=True)
class AwaitingTransferTarget:
    from_account: str


@dataclass(frozen=True, slots=True)
class AwaitingTransferAmount:
    from_account: str
    to_account: str


ConversationState = Union[
    Idle,
    AwaitingCurrency,
    AwaitingDepositAmount,
    AwaitingWithdrawAmount,
    AwaitingTransferTarget,
    AwaitingTransferAmount,
]


# ============================================================================
# INTENTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class OpenAccountIntent:
    currency: str


@dataclass(frozen=True, slots=True)
class DepositIntent:
    account_id: str
    amount: int


@dataclass(frozen=True, slots=True)
class WithdrawIntent:
    account_id: str
    amount: int


@dataclass(frozen=True, slots=True)
class TransferIntent:
    from_account: str
    to_account: str
    amount: int


Intent = Union[OpenAccountIntent, DepositIntent, WithdrawIntent, TransferIntent]


# ============================================================================
# PARSING
# ============================================================================

def parse_amount(text: str) -> int:
    """
    Parse a major-unit amount typed by a person into minor units.

    "12.34" -> 1234, "12,5" -> 1250, "7" -> 700.

    Raises:
        InvalidAmount: Not a number, more than two decimals, or not positive
    """
    raw = (text or "").strip().replace(",", ".")
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise InvalidAmount(f"not an amount: {text!r}") from None
    if not value.is_finite():
        raise InvalidAmount(f"not an amount: {text!r}")
    minor = value * MINOR_UNITS_PER_MAJOR
    if minor != minor.to_integral_value():
        raise InvalidAmount(f"at most two decimal places allowed: {text!r}")
    if minor <= 0:
        raise InvalidAmount(f"amount must be > 0, got {text!r}")
    return int(minor)


def parse_currency(text: str) -> str:
    currency = (text or "").strip().upper()
    if not currency or not currency.isalpha():
        raise ValidationError(f"invalid currency code {text!r}")
    return currency


# ============================================================================
# TRANSITIONS
# ============================================================================

def advance(state: ConversationState, text: str) -> Tuple[ConversationState, Optional[Intent]]:
    """
    Feed one message into a flow.

    Returns:
        (next state, completed intent or None)

    Raises:
        InvalidAmount: An amount step got something that is not an amount
        ValidationError: Bad currency code or a transfer back to the source account
    """
    if (text or "").strip().lower() == CANCEL_COMMAND:
        return Idle(), None

    if isinstance(state, Idle):
        return state, None

    if isinstance(state, AwaitingCurrency):
        return Idle(), OpenAccountIntent(parse_currency(text))

    if isinstance(state, AwaitingDepositAmount):
        return Idle(), DepositIntent(state.account_id, parse_amount(text))

    if isinstance(state, AwaitingWithdrawAmount):
        return Idle(), WithdrawIntent(state.account_id, parse_amount(text))

    if isinstance(state, AwaitingTransferTarget):
        target = (text or "").strip()
        if not target:
            raise ValidationError("target account id cannot be empty")
        if target == state.from_account:
            raise ValidationError("cannot transfer to the same account")
        return AwaitingTransferAmount(state.from_account, target), None

    if isinstance(state, AwaitingTransferAmount):
        return Idle(), TransferIntent(state.from_account, state.to_account, parse_amount(text))

    raise TypeError(f"unknown conversation state {state!r}")


class ConversationStore:
    """
    Current flow state per chat, safe to use from concurrent handlers.

    A chat with no entry is Idle.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._states: Dict[Hashable, ConversationState] = {}

    def get(self, chat_id: Hashable) -> ConversationState:
        with self._lock:
            return self._states.get(chat_id, Idle())

    def set(self, chat_id: Hashable, state: ConversationState) -> None:
        with self._lock:
            if isinstance(state, Idle):
                self._states.pop(chat_id, None)
            else:
                self._states[chat_id] = state

    def clear(self, chat_id: Hashable) -> None:
        with self._lock:
            self._states.pop(chat_id, None)

    def feed(self, chat_id: Hashable, text: str) -> Optional[Intent]:
        """
        advance() the chat's flow and store the next state.

        On a parse error the state is left as it was so the user can retry.
        """
        with self._lock:
            state = self._states.get(chat_id, Idle())
            next_state, intent = advance(state, text)
            if isinstance(next_state, Idle):
                self._states.pop(chat_id, None)
            else:
                self._states[chat_id] = next_state
            return intent

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)


def apply_intent(bank, user_id: str, intent: Intent) -> Union[Account, Transaction]:
    """
    Execute a completed intent on behalf of user_id.

    Money can only leave (or be deposited through) an account the user owns.

    Raises:
        PermissionDenied: The source account belongs to someone else
        LedgerError: Whatever the bank operation raises
    """
    if isinstance(intent, OpenAccountIntent):
        return bank.open_account(user_id, intent.currency)

    source = intent.from_account if isinstance(intent, TransferIntent) else intent.account_id
    if bank.get_account(source).owner_user_id != user_id:
        raise PermissionDenied(f"account {source} does not belong to {user_id}")

    if isinstance(intent, DepositIntent):
        return bank.deposit(intent.account_id, intent.amount)
    if isinstance(intent, WithdrawIntent):
        return bank.withdraw(intent.account_id, intent.amount)
    if isinstance(intent, TransferIntent):
        return bank.transfer(intent.from_account, intent.to_account, intent.amount)
    raise TypeError(f"unknown intent {intent!r}")

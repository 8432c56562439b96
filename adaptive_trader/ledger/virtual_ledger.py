"""
Virtual Ledger
==============
Per-currency simulated balances for shadow trading.

Both legs of a trade are validated before either is written. Locks are
per currency and always taken in sorted currency order, so trades on
pairs sharing a quote currency serialize without deadlocking.
"""

from contextlib import ExitStack
from dataclasses import dataclass
from typing import Dict, List, Tuple, Union
import logging
import math
import threading

from ..exceptions import InternalInvariantViolation, LedgerInsufficientFunds
from ..signals.signal_scorer import Action

logger = logging.getLogger(__name__)


@dataclass
class VirtualBalance:
    """Balance of one currency."""
    currency: str
    balance: float = 0.0
    locked: float = 0.0

    @property
    def available(self) -> float:
        return self.balance - self.locked

    def to_dict(self) -> dict:
        return {
            'currency': self.currency,
            'balance': self.balance,
            'locked': self.locked,
            'available': self.available
        }


def split_pair(pair: str) -> Tuple[str, str]:
    """Split BASE-QUOTE into (base, quote)."""
    parts = pair.split('-')
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"Invalid instrument pair: {pair!r} (expected BASE-QUOTE)")
    return parts[0], parts[1]


class VirtualLedger:
    """Simulated multi-currency account."""

    def __init__(self, quote_currency: str = "USDT", initial_balance: float = 100.0):
        self._balances: Dict[str, VirtualBalance] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._seed(quote_currency, initial_balance)

    def _seed(self, quote_currency: str, initial_balance: float):
        if not math.isfinite(initial_balance) or initial_balance < 0:
            raise ValueError(f"Initial balance must be non-negative, got {initial_balance}")
        self._balances = {quote_currency: VirtualBalance(quote_currency, initial_balance)}
        logger.info(f"Virtual ledger initialised with {initial_balance} {quote_currency}")

    def _lock_for(self, currency: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(currency)
            if lock is None:
                lock = self._locks[currency] = threading.Lock()
            return lock

    def _acquire(self, stack: ExitStack, currencies) -> None:
        for currency in sorted(set(currencies)):
            stack.enter_context(self._lock_for(currency))

    def _entry(self, currency: str) -> VirtualBalance:
        """Balance entry for a currency, or a detached zero entry; caller holds its lock."""
        entry = self._balances.get(currency)
        return entry if entry is not None else VirtualBalance(currency)

    def _keep(self, entry: VirtualBalance):
        """Register an entry returned by `_entry` once it has been mutated."""
        if entry.currency not in self._balances:
            with self._registry_lock:
                self._balances[entry.currency] = entry

    def apply_trade(self, pair: str, action: Union[Action, str], amount: float, price: float) -> bool:
        """
        Apply a simulated fill to both legs of a pair.

        Returns False without mutating anything when the pair or inputs are
        invalid or funds are insufficient.

        Raises:
            InternalInvariantViolation: a computed balance would be negative
        """
        try:
            base, quote = split_pair(pair)
        except ValueError as e:
            logger.error(str(e))
            return False

        action = Action(action) if isinstance(action, str) else action
        if action == Action.HOLD:
            logger.warning(f"Ignoring HOLD trade for {pair}")
            return False
        if not (math.isfinite(amount) and math.isfinite(price)) or amount <= 0 or price <= 0:
            logger.error(f"Invalid trade for {pair}: amount={amount}, price={price}")
            return False

        value = amount * price

        with ExitStack() as stack:
            self._acquire(stack, (base, quote))
            base_entry = self._entry(base)
            quote_entry = self._entry(quote)

            try:
                if action == Action.BUY:
                    if quote_entry.available < value:
                        raise LedgerInsufficientFunds(quote, value, quote_entry.available)
                    new_quote = quote_entry.balance - value
                    new_base = base_entry.balance + amount
                else:
                    if base_entry.available < amount:
                        raise LedgerInsufficientFunds(base, amount, base_entry.available)
                    new_base = base_entry.balance - amount
                    new_quote = quote_entry.balance + value
            except LedgerInsufficientFunds as e:
                logger.info(f"Virtual {action.value} {pair} rejected: {e}")
                return False

            if new_base < 0 or new_quote < 0:
                raise InternalInvariantViolation(
                    f"Negative balance computed for {pair}: {base}={new_base}, {quote}={new_quote}"
                )

            # Commit both legs
            base_entry.balance = new_base
            quote_entry.balance = new_quote
            self._keep(base_entry)
            self._keep(quote_entry)

        logger.info(f"Virtual {action.value} {amount} {base} @ {price} ({value:.8f} {quote})")
        return True

    def lock_amount(self, currency: str, amount: float) -> bool:
        """Reserve part of the available balance."""
        if amount <= 0:
            return False
        with self._lock_for(currency):
            entry = self._entry(currency)
            if entry.available < amount:
                logger.info(f"Cannot lock {amount} {currency}: available {entry.available}")
                return False
            entry.locked += amount
            self._keep(entry)
            return True

    def unlock_amount(self, currency: str, amount: float) -> bool:
        """Release a previous reservation."""
        if amount <= 0:
            return False
        with self._lock_for(currency):
            entry = self._entry(currency)
            if entry.locked < amount:
                logger.warning(f"Cannot unlock {amount} {currency}: only {entry.locked} locked")
                return False
            entry.locked -= amount
            return True

    def get_balance(self, currency: str) -> VirtualBalance:
        """Copy of one currency's balance (zero if never held)."""
        with self._lock_for(currency):
            entry = self._balances.get(currency)
            if entry is None:
                return VirtualBalance(currency)
            return VirtualBalance(entry.currency, entry.balance, entry.locked)

    def available(self, currency: str) -> float:
        return self.get_balance(currency).available

    def balances(self) -> List[VirtualBalance]:
        """Consistent copy of every balance."""
        with self._registry_lock:
            currencies = list(self._balances)
        with ExitStack() as stack:
            self._acquire(stack, currencies)
            return [
                VirtualBalance(b.currency, b.balance, b.locked)
                for b in (self._balances.get(c) for c in sorted(currencies))
                if b is not None
            ]

    def reset(self, quote_currency: str, amount: float):
        """Discard every balance and start over with `amount` of the quote currency."""
        with self._registry_lock:
            currencies = list(self._balances) + [quote_currency]
        with ExitStack() as stack:
            self._acquire(stack, currencies)
            self._seed(quote_currency, amount)

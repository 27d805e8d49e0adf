"""
Per-user cash and holdings, and trade settlement.

Design:
1. Portfolio is a plain state holder:
   - cash balance and symbol -> quantity holdings
   - mutated only through deposit_cash / withdraw_cash / add_holding /
     remove_holding, each of which refuses to go negative
   - NOT thread-safe on its own

2. PortfolioLedger owns every Portfolio:
   - created lazily on first access with the configured starting cash
   - one lock per user; the balance check and the mutation of a settlement
     run inside the same critical section
   - users never contend with each other (registry lock is only taken to
     create a portfolio)
   - callers get copies, never the live Portfolio

Settlement failures raise InsufficientFundsError / InsufficientHoldingsError
and leave the portfolio exactly as it was.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from threading import Lock, RLock
from typing import Dict, Mapping, Tuple, Union

from .errors import InsufficientFundsError, InsufficientHoldingsError, InvalidArgumentError, is_positive
from .order_book import Order, OrderSide, OrderStatus
from .price_engine import PricePoint

logger = logging.getLogger(__name__)

DEFAULT_STARTING_CASH = 10_000.0


@dataclass
class Portfolio:
    """
    Cash plus holdings for one user.

    Invariants maintained:
        - cash_balance >= 0
        - every holdings value > 0 (entries are dropped when they reach 0)
    """
    user_id: str
    cash_balance: float = 0.0
    holdings: Dict[str, float] = field(default_factory=dict)

    def deposit_cash(self, amount: float) -> None:
        if not is_positive(amount):
            raise InvalidArgumentError("Deposit amount must be positive")
        self.cash_balance += amount

    def withdraw_cash(self, amount: float) -> bool:
        """Remove cash. Returns False (and changes nothing) if the balance is short."""
        if not is_positive(amount):
            raise InvalidArgumentError("Withdrawal amount must be positive")
        if self.cash_balance < amount:
            return False
        self.cash_balance -= amount
        return True

    def add_holding(self, symbol: str, quantity: float) -> None:
        if not is_positive(quantity):
            raise InvalidArgumentError("Holding quantity must be positive")
        self.holdings[symbol] = self.holdings.get(symbol, 0.0) + quantity

    def remove_holding(self, symbol: str, quantity: float) -> bool:
        """Remove quantity of symbol. Returns False if the holding is too small."""
        if not is_positive(quantity):
            raise InvalidArgumentError("Holding quantity must be positive")
        current = self.holdings.get(symbol, 0.0)
        if current < quantity:
            return False

        remaining = current - quantity
        if remaining <= 0:
            self.holdings.pop(symbol, None)
        else:
            self.holdings[symbol] = remaining
        return True

    def holding(self, symbol: str) -> float:
        return self.holdings.get(symbol, 0.0)

    def total_value(self, prices: Mapping[str, Union[PricePoint, float]]) -> float:
        """
        Cash plus marked holdings.

        prices may map to PricePoint or to a bare float. Holdings whose symbol
        has no price contribute 0.
        """
        asset_value = 0.0
        for symbol, quantity in self.holdings.items():
            quote = prices.get(symbol)
            if quote is None:
                continue
            px = quote.price if isinstance(quote, PricePoint) else float(quote)
            asset_value += px * quantity
        return self.cash_balance + asset_value

    def snapshot(self) -> "Portfolio":
        return Portfolio(self.user_id, self.cash_balance, dict(self.holdings))

    def __repr__(self) -> str:
        return (f"Portfolio(user={self.user_id}, cash=${self.cash_balance:.2f}, "
                f"holdings={len(self.holdings)})")


class PortfolioLedger:
    def __init__(self, starting_cash: float = DEFAULT_STARTING_CASH):
        if starting_cash != 0 and not is_positive(starting_cash):
            raise InvalidArgumentError("starting_cash must be >= 0 and finite")
        self.starting_cash = float(starting_cash)

        self._portfolios: Dict[str, Portfolio] = {}
        self._user_locks: Dict[str, RLock] = {}
        self._registry_lock = Lock()

    def _entry(self, user_id: str) -> Tuple[Portfolio, RLock]:
        if not user_id:
            raise InvalidArgumentError("user_id cannot be empty")
        with self._registry_lock:
            portfolio = self._portfolios.get(user_id)
            if portfolio is None:
                portfolio = self._portfolios[user_id] = Portfolio(user_id, self.starting_cash)
                self._user_locks[user_id] = RLock()
                logger.debug("Created portfolio for %s with $%.2f", user_id, self.starting_cash)
            return portfolio, self._user_locks[user_id]

    # ==================== Reads ====================

    def portfolio_of(self, user_id: str) -> Portfolio:
        portfolio, lock = self._entry(user_id)
        with lock:
            return portfolio.snapshot()

    def total_value(self, user_id: str, prices: Mapping[str, Union[PricePoint, float]]) -> float:
        portfolio, lock = self._entry(user_id)
        with lock:
            return portfolio.total_value(prices)

    def users(self) -> list:
        with self._registry_lock:
            return list(self._portfolios.keys())

    # ==================== Cash ====================

    def deposit(self, user_id: str, amount: float) -> float:
        """Add funds. Returns the new balance."""
        if not is_positive(amount):
            raise InvalidArgumentError("Deposit amount must be positive")
        portfolio, lock = self._entry(user_id)
        with lock:
            portfolio.deposit_cash(amount)
            balance = portfolio.cash_balance
        logger.info("Funds deposited: %s added $%.2f", user_id, amount)
        return balance

    def withdraw(self, user_id: str, amount: float) -> bool:
        if not is_positive(amount):
            raise InvalidArgumentError("Withdrawal amount must be positive")
        portfolio, lock = self._entry(user_id)
        with lock:
            ok = portfolio.withdraw_cash(amount)
        if ok:
            logger.info("Funds withdrawn: %s withdrew $%.2f", user_id, amount)
        else:
            logger.warning("Withdrawal failed: %s insufficient funds for $%.2f", user_id, amount)
        return ok

    # ==================== Settlement ====================

    def settle(self, user_id: str, symbol: str, side: OrderSide, quantity: float, price: float) -> None:
        """
        Apply one executed trade atomically for user_id.

        BUY: debit quantity * price, credit holding.
        SELL: debit holding, credit quantity * price.

        Raises InsufficientFundsError / InsufficientHoldingsError without
        touching the portfolio.
        """
        if not is_positive(quantity):
            raise InvalidArgumentError("Quantity must be positive")
        if not is_positive(price):
            raise InvalidArgumentError("Execution price must be positive")

        trade_value = quantity * price
        portfolio, lock = self._entry(user_id)
        with lock:
            if side == OrderSide.BUY:
                if portfolio.cash_balance < trade_value:
                    raise InsufficientFundsError(
                        f"Insufficient funds: need ${trade_value:.2f}, have ${portfolio.cash_balance:.2f}"
                    )
                portfolio.withdraw_cash(trade_value)
                portfolio.add_holding(symbol, quantity)
            else:
                if not portfolio.remove_holding(symbol, quantity):
                    raise InsufficientHoldingsError(
                        f"Insufficient holdings: need {quantity:g} {symbol}, "
                        f"have {portfolio.holding(symbol):g}"
                    )
                portfolio.deposit_cash(trade_value)

        logger.info("%s executed: %s %g of %s at $%.4f",
                    side.name.capitalize(), user_id, quantity, symbol, price)

    def settle_trade(self, order: Order, execution_price: float) -> bool:
        """
        Settle a FILLED order. Returns False for any other status.

        Shortfalls raise the settlement errors from settle().
        """
        if order.status != OrderStatus.FILLED:
            return False
        self.settle(order.user_id, order.symbol, order.side, order.quantity, execution_price)
        return True

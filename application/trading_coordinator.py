from __future__ import annotations

import copy
import logging
import time
from dataclasses import dataclass
from enum import Enum
from threading import RLock
from typing import Callable, Dict, List, Mapping, Optional

from engine.errors import (
    ErrorKind,
    ForbiddenError,
    InvalidArgumentError,
    MarketError,
    NotFoundError,
    RiskRejectedError,
    is_positive,
)
from engine.order_book import Order, OrderBook, OrderSide, OrderStatus, OrderType, transition
from engine.portfolio import PortfolioLedger
from engine.price_engine import PriceEngine
from engine.risk_gate import RiskAssessment, RiskGate, Transaction, UserProfile
from infrastructure.transaction_store import TransactionStore

logger = logging.getLogger(__name__)


class OrderStage(Enum):
    RECEIVED = "received"
    RISK_CHECKED = "risk_checked"
    REJECTED = "rejected"
    EXECUTING = "executing"
    QUEUED = "queued"
    FILLED = "filled"
    OPEN = "open"


@dataclass(frozen=True)
class OrderResult:
    order: Optional[Order]
    success: bool
    message: str
    error: Optional[ErrorKind] = None
    transaction_id: Optional[int] = None

    @classmethod
    def failed(cls, err: MarketError, order: Optional[Order] = None) -> "OrderResult":
        return cls(order=order, success=False, message=str(err), error=err.kind)


class TradingCoordinator:
    """
    Order intake: risk gate -> execute-or-queue -> settle.

    MARKET orders settle against the ledger before they are marked FILLED; a
    shortfall rejects the order and leaves the portfolio untouched. LIMIT
    orders rest in the OrderBook until sweep_limit_orders() finds a crossing
    price, at which point match and settlement happen under the symbol lock.

    Store writes happen after every core lock is released.
    """

    def __init__(
        self,
        price_engine: PriceEngine,
        order_book: OrderBook,
        ledger: PortfolioLedger,
        risk_gate: RiskGate,
        store: TransactionStore,
        profiles: Optional[Mapping[str, UserProfile]] = None,
        exchange_account: str = "EXCHANGE",
        clock: Callable[[], float] = time.time,
    ):
        self.prices = price_engine
        self.book = order_book
        self.ledger = ledger
        self.risk_gate = risk_gate
        self.store = store
        self.profiles: Mapping[str, UserProfile] = profiles if profiles is not None else {}
        self.exchange_account = exchange_account
        self._clock = clock

        # Orders that never reach the book (market fills, risk rejects)
        self._archive: Dict[str, Order] = {}
        self._archive_lock = RLock()

        self._stage_listeners: List[Callable[[Order, OrderStage], None]] = []

    # ---------------- Subscription API ----------------

    def subscribe_to_stages(self, callback: Callable[[Order, OrderStage], None]) -> None:
        if not callable(callback):
            raise TypeError("Callback must be callable")
        self._stage_listeners.append(callback)

    def _stage(self, order: Order, stage: OrderStage) -> None:
        logger.debug("Order %s -> %s", order.id, stage.value)
        for cb in list(self._stage_listeners):
            try:
                cb(copy.copy(order), stage)
            except Exception:
                logger.exception("Order stage listener failed")

    # ---------------- Internals ----------------

    def _build_transaction(self, order: Order, price: float,
                           risk_score: Optional[float] = None) -> Transaction:
        buying = order.side == OrderSide.BUY
        return Transaction(
            user_id=order.user_id,
            amount=order.quantity * price,
            type=f"TRADE_{order.side.name}",
            source_account_id=order.user_id if buying else self.exchange_account,
            destination_account_id=self.exchange_account if buying else order.user_id,
            timestamp=self._clock(),
            risk_score=risk_score,
        )

    def _archive_order(self, order: Order) -> None:
        with self._archive_lock:
            self._archive[order.id] = order

    def _assess(self, order: Order, effective_price: float) -> RiskAssessment:
        provisional = self._build_transaction(order, effective_price)
        assessment = self.risk_gate.assess(provisional, self.profiles.get(order.user_id))
        order.risk_score = assessment.score
        logger.info("Risk assessment for order %s: %.2f (%s)",
                    order.id, assessment.score, assessment.level.name)
        return assessment

    def _settle_fill(self, order: Order, price: float) -> None:
        self.ledger.settle(order.user_id, order.symbol, order.side, order.quantity, price)

    # ---------------- Commands ----------------

    def place_order(
        self,
        user_id: str,
        symbol: str,
        side: OrderSide,
        quantity: float,
        price: float = 0.0,
        order_type: OrderType = OrderType.MARKET,
    ) -> OrderResult:
        logger.info("Processing order request: %s %s %s %g at %s (%s)",
                    user_id, side.name, symbol, quantity, price, order_type.name)
        order: Optional[Order] = None
        try:
            if not is_positive(quantity):
                raise InvalidArgumentError("Quantity must be positive")
            if order_type == OrderType.LIMIT and not is_positive(price):
                raise InvalidArgumentError("Price must be positive for limit orders")

            current = self.prices.current_price(symbol)
            order = Order.create(user_id, symbol, order_type, side, quantity, price, now=self._clock())
            self._stage(order, OrderStage.RECEIVED)

            effective_price = current.price if order_type == OrderType.MARKET else order.price
            assessment = self._assess(order, effective_price)
            self._stage(order, OrderStage.RISK_CHECKED)

            if assessment.blocks_execution:
                raise RiskRejectedError("High risk transaction")

            if order_type == OrderType.MARKET:
                return self._execute_market_order(order, current.price)
            return self._queue_limit_order(order)

        except MarketError as e:
            if order is not None and order.status == OrderStatus.PENDING:
                transition(order, OrderStatus.REJECTED, reason=str(e), now=self._clock())
                self._archive_order(order)
                self._stage(order, OrderStage.REJECTED)
            logger.warning("Order rejected for %s on %s: %s", user_id, symbol, e)
            return OrderResult.failed(e, copy.copy(order) if order is not None else None)

    def _execute_market_order(self, order: Order, execution_price: float) -> OrderResult:
        self._stage(order, OrderStage.EXECUTING)
        # raises SettlementError with the portfolio untouched
        self._settle_fill(order, execution_price)

        transition(order, OrderStatus.FILLED, now=self._clock())
        self._archive_order(order)
        stored = self.store.save(self._build_transaction(order, execution_price, order.risk_score))
        self._stage(order, OrderStage.FILLED)

        logger.info("Market order executed: %s at price %.4f", order.id, execution_price)
        return OrderResult(copy.copy(order), True, "Market order executed successfully",
                           transaction_id=stored.id)

    def _queue_limit_order(self, order: Order) -> OrderResult:
        self._stage(order, OrderStage.QUEUED)
        snapshot = self.book.submit(order)
        self._stage(order, OrderStage.OPEN)
        return OrderResult(snapshot, True, "Limit order placed successfully")

    def cancel_order(self, user_id: str, order_id: str) -> OrderResult:
        try:
            order = self.get_order(order_id)
            if order.user_id != user_id:
                raise ForbiddenError("Not authorized to cancel this order")
        except MarketError as e:
            return OrderResult.failed(e)

        if not order.is_active:
            return OrderResult(order, False, f"Order is already {order.status.name}")

        # may still lose to a concurrent fill
        snapshot, cancelled = self.book.cancel(order_id)
        if cancelled:
            return OrderResult(snapshot, True, "Order cancelled successfully")
        return OrderResult(snapshot, False, f"Order is already {snapshot.status.name}")

    def sweep_limit_orders(self) -> List[Order]:
        """
        Match every OPEN limit order against the current prices.

        Returns the orders filled by this call. Running it again with no price
        movement fills nothing new.
        """
        filled_total: List[Order] = []
        for symbol, point in self.prices.all_prices().items():
            filled = self.book.match_against_price(symbol, point.price, settle=self._settle_fill)
            for order in filled:
                # fills are already settled; one bad write must not skip the rest
                try:
                    self.store.save(self._build_transaction(order, point.price, order.risk_score))
                except Exception:
                    logger.exception("Failed to record transaction for filled order %s", order.id)
                self._stage(order, OrderStage.FILLED)
            filled_total.extend(filled)

        logger.info("Completed limit order processing: %d orders filled", len(filled_total))
        return filled_total

    # ---------------- Queries ----------------

    def get_order(self, order_id: str) -> Order:
        if self.book.contains(order_id):
            return self.book.get_order(order_id)
        with self._archive_lock:
            order = self._archive.get(order_id)
            if order is None:
                raise NotFoundError("Order not found")
            return copy.copy(order)

    def user_open_orders(self, user_id: str) -> List[Order]:
        return self.book.user_open_orders(user_id)

    def user_orders(self, user_id: str) -> List[Order]:
        """Every order the user placed that never rested in the book."""
        with self._archive_lock:
            return [copy.copy(o) for o in self._archive.values() if o.user_id == user_id]

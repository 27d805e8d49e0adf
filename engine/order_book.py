from __future__ import annotations

import copy
import logging
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock, RLock
from typing import Callable, DefaultDict, Dict, FrozenSet, List, Optional, Tuple

from .errors import InvalidArgumentError, InvalidTransitionError, NotFoundError, SettlementError, is_positive

logger = logging.getLogger(__name__)


class OrderType(Enum):
    MARKET = "market"
    LIMIT = "limit"


class OrderSide(Enum):
    BUY = "buy"
    SELL = "sell"


class OrderStatus(Enum):
    PENDING = "pending"
    OPEN = "open"
    PARTIALLY_FILLED = "partially_filled"  # reserved, matching only does full fills
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


ACTIVE_STATUSES: FrozenSet[OrderStatus] = frozenset({OrderStatus.OPEN, OrderStatus.PARTIALLY_FILLED})

_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.OPEN, OrderStatus.FILLED, OrderStatus.REJECTED}),
    OrderStatus.OPEN: frozenset({
        OrderStatus.PARTIALLY_FILLED,
        OrderStatus.FILLED,
        OrderStatus.CANCELLED,
        OrderStatus.REJECTED,  # settlement failed at fill time
    }),
    OrderStatus.PARTIALLY_FILLED: frozenset({OrderStatus.FILLED, OrderStatus.CANCELLED}),
    OrderStatus.FILLED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REJECTED: frozenset(),
}


def is_terminal(status: OrderStatus) -> bool:
    return not _TRANSITIONS[status]


@dataclass
class Order:
    user_id: str
    symbol: str
    order_type: OrderType
    side: OrderSide
    quantity: float
    price: float = 0.0          # limit price, ignored for MARKET
    status: OrderStatus = OrderStatus.PENDING
    created_at: float = field(default_factory=time.time)
    updated_at: float = 0.0
    status_reason: Optional[str] = None
    risk_score: Optional[float] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        if not self.user_id:
            raise InvalidArgumentError("user_id cannot be empty")
        if not self.symbol:
            raise InvalidArgumentError("symbol cannot be empty")
        if not is_positive(self.quantity):
            raise InvalidArgumentError("Quantity must be positive")
        if self.order_type == OrderType.LIMIT and not is_positive(self.price):
            raise InvalidArgumentError("Price must be positive for limit orders")
        if self.price != 0.0 and not is_positive(self.price):
            raise InvalidArgumentError(f"price must be >= 0 and finite, got {self.price}")
        if not self.updated_at:
            self.updated_at = self.created_at

    @classmethod
    def create(
        cls,
        user_id: str,
        symbol: str,
        order_type: OrderType,
        side: OrderSide,
        quantity: float,
        price: float = 0.0,
        now: Optional[float] = None,
    ) -> "Order":
        ts = time.time() if now is None else now
        return cls(
            user_id=user_id,
            symbol=symbol,
            order_type=order_type,
            side=side,
            quantity=float(quantity),
            price=float(price),
            created_at=ts,
            updated_at=ts,
        )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def __repr__(self) -> str:
        px = "MKT" if self.order_type == OrderType.MARKET else f"{self.price:.4f}"
        return (f"Order(id={self.id[:8]}, user={self.user_id}, {self.side.value} "
                f"{self.quantity:g} {self.symbol}@{px}, {self.status.value})")


def transition(order: Order, new_status: OrderStatus, *, reason: Optional[str] = None,
               now: Optional[float] = None) -> Order:
    """Move order to new_status or raise InvalidTransitionError. Caller holds the order's lock."""
    if new_status not in _TRANSITIONS[order.status]:
        raise InvalidTransitionError(
            f"Order {order.id}: cannot move from {order.status.name} to {new_status.name}"
        )
    order.status = new_status
    order.updated_at = time.time() if now is None else now
    if reason is not None:
        order.status_reason = reason
    return order


# settle(order, execution_price) -> None, raises SettlementError on shortfall
SettleHook = Callable[[Order, float], None]


class _SymbolBook:
    __slots__ = ("pending", "lock")

    def __init__(self) -> None:
        self.pending: List[Order] = []
        self.lock = RLock()


class OrderBook:
    """
    Pending limit orders, one book per symbol.

    - per-symbol list in insertion order (matching is FIFO, no price priority)
    - order_id index for O(1) lookups and cancels
    - user_id -> [order_id] index for per-user queries
    - every status change happens under the owning symbol's lock, so a cancel
      and a fill racing on the same order cannot both succeed

    Orders handed out are copies; the live objects never leave the book.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock

        self._books: Dict[str, _SymbolBook] = {}
        self._books_lock = Lock()

        # Indices
        self._order_index: Dict[str, Order] = {}
        self._user_order_ids: DefaultDict[str, List[str]] = defaultdict(list)
        self._index_lock = Lock()

        # Stats (guarded by _index_lock)
        self._counts: Dict[str, int] = {"submitted": 0, "filled": 0, "cancelled": 0, "rejected": 0}

    # ---------- internal helpers ----------

    def _book_for(self, symbol: str) -> _SymbolBook:
        with self._books_lock:
            book = self._books.get(symbol)
            if book is None:
                book = self._books[symbol] = _SymbolBook()
            return book

    def _live(self, order_id: str) -> Order:
        with self._index_lock:
            order = self._order_index.get(order_id)
        if order is None:
            raise NotFoundError(f"Order not found: {order_id}")
        return order

    def _count(self, what: str) -> None:
        with self._index_lock:
            self._counts[what] += 1

    @staticmethod
    def _prune(book: _SymbolBook) -> None:
        # index keeps terminal orders; the scan list only needs active ones
        book.pending = [o for o in book.pending if o.is_active]

    # ---------- public API ----------

    def submit(self, order: Order) -> Order:
        book = self._book_for(order.symbol)
        with book.lock:
            with self._index_lock:
                if order.id in self._order_index:
                    raise InvalidArgumentError(f"Duplicate order id: {order.id}")
                transition(order, OrderStatus.OPEN, now=self._clock())
                self._order_index[order.id] = order
                self._user_order_ids[order.user_id].append(order.id)
                self._counts["submitted"] += 1
            book.pending.append(order)
            logger.info("Order added to book: %r", order)
            return copy.copy(order)

    def get_order(self, order_id: str) -> Order:
        order = self._live(order_id)
        with self._book_for(order.symbol).lock:
            return copy.copy(order)

    def contains(self, order_id: str) -> bool:
        with self._index_lock:
            return order_id in self._order_index

    def open_orders(self, symbol: str) -> List[Order]:
        with self._books_lock:
            book = self._books.get(symbol)
        if book is None:
            return []
        with book.lock:
            return [copy.copy(o) for o in book.pending if o.is_active]

    def user_open_orders(self, user_id: str) -> List[Order]:
        with self._index_lock:
            orders = [self._order_index[oid] for oid in self._user_order_ids.get(user_id, ())]

        out: List[Order] = []
        for order in orders:
            with self._book_for(order.symbol).lock:
                if order.is_active:
                    out.append(copy.copy(order))
        return out

    def cancel(self, order_id: str) -> Tuple[Order, bool]:
        """
        Cancel an active order.

        Returns (order snapshot, cancelled). cancelled is True only for the
        call that performed the transition; terminal orders come back as-is.
        """
        order = self._live(order_id)
        book = self._book_for(order.symbol)
        with book.lock:
            if not order.is_active:
                return copy.copy(order), False
            transition(order, OrderStatus.CANCELLED, now=self._clock())
            self._prune(book)
            self._count("cancelled")
            logger.info("Order cancelled: %r", order)
            return copy.copy(order), True

    def match_against_price(self, symbol: str, price: float,
                            settle: Optional[SettleHook] = None) -> List[Order]:
        """
        Fill every OPEN limit order of symbol that the price crosses.

        BUY fills iff price <= limit, SELL fills iff price >= limit. Fills are
        all-or-nothing, scanned in insertion order. When settle is given it
        runs before the FILLED transition; a SettlementError rejects the order
        instead of filling it.
        """
        with self._books_lock:
            book = self._books.get(symbol)
        if book is None:
            return []

        filled: List[Order] = []
        with book.lock:
            for order in book.pending:
                if order.status != OrderStatus.OPEN or order.order_type != OrderType.LIMIT:
                    continue

                if order.side == OrderSide.BUY:
                    crosses = price <= order.price
                else:
                    crosses = price >= order.price
                if not crosses:
                    continue

                if settle is not None:
                    try:
                        settle(order, price)
                    except SettlementError as e:
                        transition(order, OrderStatus.REJECTED, reason=str(e), now=self._clock())
                        self._count("rejected")
                        logger.warning("Limit order %s rejected at fill: %s", order.id, e)
                        continue

                transition(order, OrderStatus.FILLED, now=self._clock())
                self._count("filled")
                filled.append(copy.copy(order))
                logger.info("Filled limit order: %s at price %.4f", order.id, price)

            if filled or any(not o.is_active for o in book.pending):
                self._prune(book)

        return filled

    def get_stats(self) -> dict:
        with self._books_lock:
            books = list(self._books.values())
        open_count = 0
        for book in books:
            with book.lock:
                open_count += sum(1 for o in book.pending if o.is_active)
        with self._index_lock:
            return {
                "total_orders_submitted": self._counts["submitted"],
                "total_orders_filled": self._counts["filled"],
                "total_orders_cancelled": self._counts["cancelled"],
                "total_orders_rejected": self._counts["rejected"],
                "open_orders": open_count,
                "active_symbols": len(books),
            }

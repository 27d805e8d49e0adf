"""
Synthetic price generation for every registered asset.

Each symbol owns one slot: the asset definition, the current PricePoint and a
bounded FIFO history. A slot has its own lock, so advancing one symbol never
blocks readers of another. PricePoint is frozen; swapping the current point is
a single reference assignment, so readers see either the old point or the new
one, never a mix of fields.

Price model (per advance, per symbol):
    movement  = price * volatility * U(0.8, 1.2) * N(0, 1)
    new_price = max(0.01, price + movement)
    high/low  = running extremum (they only ever widen)
    volume    = volume * U(0.8, 1.2)

This is deliberately not a realistic market model.
"""
from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from threading import Lock, RLock
from typing import Callable, Deque, Dict, Iterable, List, Optional, Tuple

import numpy as np

from .errors import InvalidArgumentError, NotFoundError, is_positive

logger = logging.getLogger(__name__)

PRICE_FLOOR = 0.01
DEFAULT_HISTORY_SIZE = 1000


class AssetClass(Enum):
    STOCK = "stock"
    CRYPTO = "crypto"
    FOREX = "forex"
    COMMODITY = "commodity"


@dataclass(frozen=True)
class Asset:
    symbol: str
    name: str
    asset_class: AssetClass
    currency: str = "USD"
    volatility: float = 0.0

    def __post_init__(self) -> None:
        if not self.symbol:
            raise InvalidArgumentError("symbol cannot be empty")
        if not 0.0 <= self.volatility <= 1.0:
            raise InvalidArgumentError(f"volatility must be in [0, 1], got {self.volatility}")


@dataclass(frozen=True)
class PricePoint:
    """Immutable price snapshot. net_price is the price after the trading fee."""
    symbol: str
    price: float
    net_price: float
    low: float
    high: float
    volume: float
    timestamp: float


# (low, high) bounds of the uniform draw for a fresh asset
_SEED_RANGES: Dict[AssetClass, Tuple[float, float]] = {
    AssetClass.STOCK: (10.0, 1000.0),
    AssetClass.CRYPTO: (100.0, 5000.0),
    AssetClass.FOREX: (0.5, 2.0),
    AssetClass.COMMODITY: (50.0, 1000.0),
}
_BTC_RANGE = (20000.0, 40000.0)


class _PriceSlot:
    __slots__ = ("asset", "current", "history", "lock")

    def __init__(self, asset: Asset, first: PricePoint, history_size: int):
        self.asset = asset
        self.current = first
        self.history: Deque[PricePoint] = deque([first], maxlen=history_size)
        self.lock = Lock()


class PriceEngine:
    """
    Owns per-asset price state.

    Args:
        history_size: max PricePoints kept per symbol (oldest evicted first)
        fee_rate: fraction taken off price to get net_price
        low_band/high_band: multipliers seeding the initial low/high
        seed: seed for the numpy Generator (ignored when rng is given)
        rng: object exposing uniform(low, high) and standard_normal()
        clock: time source returning epoch seconds
    """

    def __init__(
        self,
        history_size: int = DEFAULT_HISTORY_SIZE,
        fee_rate: float = 0.01,
        low_band: float = 0.98,
        high_band: float = 1.02,
        seed: Optional[int] = None,
        rng=None,
        clock: Callable[[], float] = time.time,
    ):
        if history_size < 1:
            raise InvalidArgumentError("history_size must be >= 1")
        if not 0.0 <= fee_rate < 1.0:
            raise InvalidArgumentError("fee_rate must be in [0, 1)")

        self.history_size = int(history_size)
        self.fee_rate = float(fee_rate)
        self.low_band = float(low_band)
        self.high_band = float(high_band)

        self._rng = rng if rng is not None else np.random.default_rng(seed)
        # numpy Generators are not thread-safe
        self._rng_lock = Lock()
        self._clock = clock

        self._slots: Dict[str, _PriceSlot] = {}
        self._registry_lock = RLock()

    # ---------- internal helpers ----------

    def _uniform(self, low: float, high: float) -> float:
        with self._rng_lock:
            return float(self._rng.uniform(low, high))

    def _gaussian(self) -> float:
        with self._rng_lock:
            return float(self._rng.standard_normal())

    def _slot(self, symbol: str) -> _PriceSlot:
        with self._registry_lock:
            slot = self._slots.get(symbol)
        if slot is None:
            raise NotFoundError(f"Asset not found: {symbol}")
        return slot

    def _seed_price(self, asset: Asset) -> float:
        if asset.asset_class == AssetClass.CRYPTO and "BTC" in asset.symbol:
            low, high = _BTC_RANGE
        else:
            low, high = _SEED_RANGES[asset.asset_class]
        return self._uniform(low, high)

    # ---------- registration ----------

    def register_asset(self, asset: Asset, initial_price: Optional[float] = None) -> PricePoint:
        if initial_price is not None and not is_positive(initial_price):
            raise InvalidArgumentError(f"initial_price must be > 0, got {initial_price}")

        price = float(initial_price) if initial_price is not None else self._seed_price(asset)
        point = PricePoint(
            symbol=asset.symbol,
            price=price,
            net_price=price * (1.0 - self.fee_rate),
            low=price * self.low_band,
            high=price * self.high_band,
            volume=self._uniform(0.0, 1_000_000.0),
            timestamp=self._clock(),
        )

        with self._registry_lock:
            if asset.symbol in self._slots:
                raise InvalidArgumentError(f"Asset already registered: {asset.symbol}")
            self._slots[asset.symbol] = _PriceSlot(asset, point, self.history_size)

        logger.info("Asset %s initialized at price %.4f", asset.symbol, price)
        return point

    def register_assets(self, assets: Iterable[Asset]) -> None:
        assets = list(assets)
        logger.info("Initializing market with %d assets", len(assets))
        for asset in assets:
            self.register_asset(asset)

    # ---------- reads (snapshots) ----------

    def current_price(self, symbol: str) -> PricePoint:
        return self._slot(symbol).current

    def all_prices(self) -> Dict[str, PricePoint]:
        with self._registry_lock:
            slots = list(self._slots.items())
        return {symbol: slot.current for symbol, slot in slots}

    def price_history(self, symbol: str) -> List[PricePoint]:
        slot = self._slot(symbol)
        with slot.lock:
            return list(slot.history)

    def asset(self, symbol: str) -> Asset:
        return self._slot(symbol).asset

    def assets(self) -> List[Asset]:
        with self._registry_lock:
            return [slot.asset for slot in self._slots.values()]

    def symbols(self) -> List[str]:
        with self._registry_lock:
            return list(self._slots.keys())

    # ---------- simulation ----------

    def _next_point(self, asset: Asset, current: PricePoint, now: float) -> PricePoint:
        market_factor = self._uniform(0.8, 1.2)
        noise = self._gaussian()
        movement = current.price * asset.volatility * market_factor * noise
        new_price = max(PRICE_FLOOR, current.price + movement)

        return PricePoint(
            symbol=current.symbol,
            price=new_price,
            net_price=new_price * (1.0 - self.fee_rate),
            low=min(current.low, new_price),
            high=max(current.high, new_price),
            volume=current.volume * self._uniform(0.8, 1.2),
            timestamp=now,
        )

    def advance(self) -> Dict[str, PricePoint]:
        """Move every registered symbol one step. Returns the new points."""
        now = self._clock()
        with self._registry_lock:
            slots = list(self._slots.values())

        updated: Dict[str, PricePoint] = {}
        for slot in slots:
            with slot.lock:
                old = slot.current
                new = self._next_point(slot.asset, old, now)
                slot.history.append(new)
                slot.current = new
            updated[new.symbol] = new
            logger.debug("Updated price for %s: %.4f -> %.4f", new.symbol, old.price, new.price)

        logger.info("Market prices updated for %d symbols", len(updated))
        return updated

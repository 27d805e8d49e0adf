from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from application.trading_coordinator import TradingCoordinator
from engine.order_book import Order
from engine.price_engine import PriceEngine

logger = logging.getLogger(__name__)


@dataclass
class _Job:
    name: str
    interval: float
    fn: Callable[[], object]
    thread: Optional[threading.Thread] = None


class MarketScheduler:
    """
    Fixed-rate driver for the simulated market.

    - "market-tick": advance prices, then sweep limit orders (every tick_interval)
    - "price-tick" (optional): advance prices only (every price_interval)

    Each job runs on its own daemon thread. A failing tick is logged and the
    loop keeps going; nothing here times out or cancels a tick mid-flight.
    """

    def __init__(
        self,
        price_engine: PriceEngine,
        coordinator: TradingCoordinator,
        tick_interval: float = 5.0,
        price_interval: float = 0.0,
    ):
        if tick_interval <= 0:
            raise ValueError("tick_interval must be > 0")
        self.prices = price_engine
        self.coordinator = coordinator

        self._stop = threading.Event()
        self._jobs: List[_Job] = [_Job("market-tick", float(tick_interval), self.tick)]
        if price_interval > 0:
            self._jobs.append(_Job("price-tick", float(price_interval), self.prices.advance))

        self._tick_count = 0
        self._lock = threading.Lock()

    @property
    def tick_count(self) -> int:
        with self._lock:
            return self._tick_count

    @property
    def running(self) -> bool:
        return any(job.thread is not None and job.thread.is_alive() for job in self._jobs)

    def tick(self) -> List[Order]:
        """One market step. Returns the limit orders filled by it."""
        self.prices.advance()
        filled = self.coordinator.sweep_limit_orders()
        with self._lock:
            self._tick_count += 1
        return filled

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        for job in self._jobs:
            job.thread = threading.Thread(target=self._loop, args=(job,), daemon=True, name=job.name)
            job.thread.start()
        logger.info("Market scheduler started (%s)",
                    ", ".join(f"{j.name} every {j.interval:g}s" for j in self._jobs))

    def shutdown(self, timeout: float = 2.0) -> None:
        self._stop.set()
        for job in self._jobs:
            if job.thread is not None:
                job.thread.join(timeout=timeout)
                job.thread = None
        logger.info("Market scheduler stopped after %d ticks", self.tick_count)

    def _loop(self, job: _Job) -> None:
        while not self._stop.wait(job.interval):
            try:
                job.fn()
            except Exception:
                logger.exception("Scheduled job %s failed", job.name)

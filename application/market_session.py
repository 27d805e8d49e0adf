from __future__ import annotations

import logging
import time
import uuid
from dataclasses import asdict, dataclass
from threading import RLock
from typing import Dict, Iterable, Optional

from application.market_scheduler import MarketScheduler
from application.trading_coordinator import TradingCoordinator
from application.transaction_processor import TransactionProcessor
from engine.order_book import OrderBook
from engine.portfolio import PortfolioLedger
from engine.price_engine import Asset, AssetClass, PriceEngine
from engine.risk_gate import HeuristicRiskGate, RiskGate, UserProfile
from infrastructure.config import MarketConfig
from infrastructure.persistence import atomic_write_json
from infrastructure.transaction_store import InMemoryTransactionStore, TransactionStore

logger = logging.getLogger(__name__)


DEFAULT_ASSETS = (
    Asset("BTC-USD", "Bitcoin", AssetClass.CRYPTO, "USD", 0.03),
    Asset("ETH-USD", "Ethereum", AssetClass.CRYPTO, "USD", 0.04),
    Asset("AAPL", "Apple Inc.", AssetClass.STOCK, "USD", 0.015),
    Asset("MSFT", "Microsoft Corporation", AssetClass.STOCK, "USD", 0.014),
    Asset("AMZN", "Amazon.com Inc.", AssetClass.STOCK, "USD", 0.018),
    Asset("GOOGL", "Alphabet Inc.", AssetClass.STOCK, "USD", 0.016),
    Asset("GOLD", "Gold", AssetClass.COMMODITY, "USD", 0.01),
)


@dataclass(frozen=True)
class SessionMeta:
    session_id: str
    created_at: float
    config_name: str
    seed: Optional[int] = None


class MarketSession:
    """
    Wires one complete market: prices, book, ledger, risk gate, store,
    coordinator, transaction processor and scheduler.

    Collaborators can be injected (risk_gate, store); everything else is built
    from the MarketConfig.
    """

    def __init__(
        self,
        config: Optional[MarketConfig] = None,
        *,
        seed: Optional[int] = None,
        assets: Iterable[Asset] = DEFAULT_ASSETS,
        risk_gate: Optional[RiskGate] = None,
        store: Optional[TransactionStore] = None,
    ):
        self.config = config or MarketConfig.DEFAULT()
        self.meta = SessionMeta(
            session_id=str(uuid.uuid4()),
            created_at=time.time(),
            config_name=self.config.name,
            seed=seed,
        )

        self._lock = RLock()
        self.profiles: Dict[str, UserProfile] = {}

        self.price_engine = PriceEngine(
            history_size=self.config.history_size,
            fee_rate=self.config.fee_rate,
            low_band=self.config.low_band,
            high_band=self.config.high_band,
            seed=seed,
        )
        self.order_book = OrderBook()
        self.ledger = PortfolioLedger(starting_cash=self.config.starting_cash)
        self.risk_gate: RiskGate = risk_gate or HeuristicRiskGate()
        self.store: TransactionStore = store or InMemoryTransactionStore()

        self.coordinator = TradingCoordinator(
            self.price_engine,
            self.order_book,
            self.ledger,
            self.risk_gate,
            self.store,
            profiles=self.profiles,
            exchange_account=self.config.exchange_account,
        )
        self.processor = TransactionProcessor(self.store, self.risk_gate, profiles=self.profiles)
        self.scheduler = MarketScheduler(
            self.price_engine,
            self.coordinator,
            tick_interval=self.config.tick_interval,
            price_interval=self.config.price_interval,
        )

        self.price_engine.register_assets(assets)

    # ---------------- Lifecycle ----------------

    def start(self) -> None:
        self.scheduler.start()

    def shutdown(self) -> None:
        self.scheduler.shutdown()

    def __enter__(self) -> "MarketSession":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()

    # ---------------- Users ----------------

    def register_profile(self, profile: UserProfile) -> None:
        with self._lock:
            self.profiles[profile.user_id] = profile

    # ---------------- Snapshot / checkpoint ----------------

    def snapshot(self) -> dict:
        prices = self.price_engine.all_prices()

        portfolios = {}
        for user_id in self.ledger.users():
            pf = self.ledger.portfolio_of(user_id)
            portfolios[user_id] = {
                "cash": pf.cash_balance,
                "holdings": dict(pf.holdings),
                "total_value": pf.total_value(prices),
            }

        return {
            "meta": asdict(self.meta),
            "prices": {s: p.price for s, p in prices.items()},
            "portfolios": portfolios,
            "orders": self.order_book.get_stats(),
            "ticks": self.scheduler.tick_count,
        }

    def save_checkpoint(self, path: str) -> None:
        payload = self.snapshot()
        payload["saved_at"] = time.time()
        atomic_write_json(path, payload)
        logger.info("Checkpoint written to %s", path)

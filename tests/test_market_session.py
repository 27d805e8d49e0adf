"""
Scheduler, session and infrastructure tests.
"""
import time

import pytest

from conftest import FixedClock, StubRng
from application.market_scheduler import MarketScheduler
from application.market_session import DEFAULT_ASSETS, MarketSession
from application.trading_coordinator import TradingCoordinator
from engine.order_book import OrderBook, OrderSide, OrderStatus, OrderType
from engine.portfolio import PortfolioLedger
from engine.price_engine import Asset, AssetClass, PriceEngine
from engine.risk_gate import HeuristicRiskGate, Transaction, UserProfile
from infrastructure.config import MarketConfig
from infrastructure.logger import LoggingConfig, build_dict_config
from infrastructure.persistence import atomic_write_json, read_json, to_jsonable
from infrastructure.transaction_store import InMemoryTransactionStore


def wait_until(predicate, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestMarketScheduler:

    def setup_method(self):
        self.rng = StubRng()
        clock = FixedClock()
        self.prices = PriceEngine(rng=self.rng, clock=clock)
        self.prices.register_asset(Asset("LIM", "Limit test", AssetClass.STOCK, "USD", 0.25), initial_price=60.0)
        self.ledger = PortfolioLedger()
        self.coordinator = TradingCoordinator(
            self.prices, OrderBook(clock=clock), self.ledger, HeuristicRiskGate(),
            InMemoryTransactionStore(), clock=clock,
        )
        self.scheduler = MarketScheduler(self.prices, self.coordinator, tick_interval=0.01)

    def teardown_method(self):
        self.scheduler.shutdown()

    def test_tick_advances_and_sweeps(self):
        placed = self.coordinator.place_order("alice", "LIM", OrderSide.BUY, 1, 50.0, OrderType.LIMIT)
        self.rng.noise = -1.0

        filled = self.scheduler.tick()

        assert [o.id for o in filled] == [placed.order.id]
        assert self.scheduler.tick_count == 1
        assert len(self.prices.price_history("LIM")) == 2

    def test_background_ticks(self):
        self.scheduler.start()
        assert self.scheduler.running
        assert wait_until(lambda: self.scheduler.tick_count >= 3)
        self.scheduler.shutdown()
        assert not self.scheduler.running

    def test_start_twice_is_harmless(self):
        self.scheduler.start()
        self.scheduler.start()
        assert self.scheduler.running

    def test_failing_tick_keeps_running(self, monkeypatch):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return []

        monkeypatch.setattr(self.coordinator, "sweep_limit_orders", flaky)
        self.scheduler.start()
        assert wait_until(lambda: len(calls) >= 3)

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            MarketScheduler(self.prices, self.coordinator, tick_interval=0)


class TestMarketSession:

    def setup_method(self):
        self.session = MarketSession(MarketConfig.FAST(), seed=7)

    def teardown_method(self):
        self.session.shutdown()

    def test_default_assets_registered(self):
        assert sorted(self.session.price_engine.symbols()) == sorted(a.symbol for a in DEFAULT_ASSETS)
        assert self.session.price_engine.price_history("AAPL")[0].price > 0

    def test_config_flows_through(self):
        assert self.session.price_engine.history_size == 500
        assert self.session.ledger.portfolio_of("x").cash_balance == 10_000.0

    def test_snapshot(self):
        self.session.coordinator.place_order("local", "GOLD", OrderSide.BUY, 1)
        snap = self.session.snapshot()

        assert snap["meta"]["config_name"] == "FAST"
        assert snap["meta"]["seed"] == 7
        assert set(snap["prices"]) == {a.symbol for a in DEFAULT_ASSETS}
        assert snap["portfolios"]["local"]["holdings"] == {"GOLD": 1.0}
        assert snap["orders"]["open_orders"] == 0
        assert snap["ticks"] == 0

    def test_checkpoint_round_trip(self, tmp_path):
        path = str(tmp_path / "runs" / "checkpoint.json")
        self.session.save_checkpoint(path)
        data = read_json(path)
        assert data["meta"]["session_id"] == self.session.meta.session_id
        assert "saved_at" in data

    def test_context_manager_runs_scheduler(self):
        session = MarketSession(MarketConfig.FAST(), seed=1)
        with session:
            assert session.scheduler.running
            assert wait_until(lambda: session.scheduler.tick_count >= 1)
        assert not session.scheduler.running

    def test_profiles_reach_risk_gate(self):
        self.session.register_profile(UserProfile("local", high_risk=True))
        result = self.session.coordinator.place_order("local", "GOLD", OrderSide.BUY, 1)
        assert result.order.risk_score >= 0.2
        assert result.order.status == OrderStatus.FILLED


class TestInfrastructure:

    def test_config_presets(self):
        default = MarketConfig.DEFAULT()
        assert default.history_size == 1000
        assert default.starting_cash == 10_000.0
        assert default.tick_interval == 5.0
        assert MarketConfig.FAST().price_interval > 0

    def test_config_validation(self):
        with pytest.raises(ValueError):
            MarketConfig("bad", 0, 0.01, 0.98, 1.02, 10_000.0, 1.0)
        with pytest.raises(ValueError):
            MarketConfig("bad", 10, 0.01, 0.98, 1.02, 10_000.0, 0.0)

    def test_logging_dict_config(self):
        cfg = build_dict_config(LoggingConfig(level="DEBUG", log_file="runs/x.log", engine_level="WARNING"))
        assert cfg["root"]["handlers"] == ["console", "file"]
        assert cfg["loggers"]["engine"]["level"] == "WARNING"
        assert build_dict_config(LoggingConfig())["root"]["handlers"] == ["console"]

    def test_to_jsonable(self):
        t = Transaction("u", 1.5, "T", "a", "b", timestamp=1.0)
        assert to_jsonable(t)["amount"] == 1.5
        assert to_jsonable(OrderSide.BUY) == "buy"
        with pytest.raises(TypeError):
            to_jsonable(object())

    def test_atomic_write_json(self, tmp_path):
        path = str(tmp_path / "nested" / "out.json")
        atomic_write_json(path, {"side": OrderSide.SELL, "values": (1, 2)})
        assert read_json(path) == {"side": "sell", "values": [1, 2]}

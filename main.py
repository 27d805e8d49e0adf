# main.py
from __future__ import annotations

import time
from infrastructure.config import MarketConfig
from infrastructure.logger import configure_logging, LoggingConfig
from application.market_session import MarketSession
from engine.order_book import OrderSide, OrderType

def main() -> None:
    configure_logging(LoggingConfig(level="INFO", log_file="runs/market.log"))

    cfg = MarketConfig.FAST()
    session = MarketSession(cfg, seed=42)
    coordinator = session.coordinator

    aapl = session.price_engine.current_price("AAPL").price
    coordinator.place_order("local", "AAPL", OrderSide.BUY, 2)

    # Resting orders a few percent away from the market, swept on each tick
    coordinator.place_order("local", "AAPL", OrderSide.BUY, 1, round(aapl * 0.97, 2), OrderType.LIMIT)
    coordinator.place_order("local", "AAPL", OrderSide.SELL, 1, round(aapl * 1.03, 2), OrderType.LIMIT)

    session.start()
    t0 = time.time()
    while time.time() - t0 < 3.0:
        time.sleep(0.15)
    session.shutdown()

    # Save artifacts
    session.save_checkpoint("runs/last_checkpoint.json")
    session.store.dump("runs/transactions.jsonl")

    snap = session.snapshot()
    pf = snap["portfolios"]["local"]
    print("OK: ticks=", snap["ticks"], "cash=", round(pf["cash"], 2),
          "holdings=", pf["holdings"], "value=", round(pf["total_value"], 2),
          "orders=", snap["orders"])

if __name__ == "__main__":
    main()

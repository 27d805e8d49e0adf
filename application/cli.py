# application/cli.py

from __future__ import annotations

import argparse
from typing import List, Optional

from application.market_session import MarketSession
from application.trading_coordinator import OrderResult
from engine.errors import MarketError
from engine.order_book import OrderSide, OrderType
from infrastructure.config import MarketConfig
from infrastructure.logger import LoggingConfig, configure_logging

USER_ID = "local"

HELP = """Commands:
  prices                    -> current prices
  history <sym> [n]         -> last n price points (default 10)
  buy <sym> <qty> [px]      -> market buy, or limit buy when px is given
  sell <sym> <qty> [px]     -> market sell, or limit sell when px is given
  cancel <order_id>         -> cancel an open limit order
  orders                    -> your open limit orders
  portfolio                 -> cash, holdings, total value
  deposit <amt>             -> add cash
  withdraw <amt>            -> remove cash
  tick                      -> advance prices + sweep limit orders now
  anomalies                 -> flagged transactions
  save                      -> write checkpoint + transactions to runs/
  quit                      -> exit
"""


def _fmt(x: Optional[float], fmt: str = "{:,.4f}") -> str:
    return "-" if x is None else fmt.format(x)


def print_prices(session: MarketSession) -> None:
    for symbol, p in sorted(session.price_engine.all_prices().items()):
        print(f"  {symbol:<8} {_fmt(p.price):>14}  low={_fmt(p.low)} high={_fmt(p.high)} vol={p.volume:,.0f}")


def print_portfolio(session: MarketSession) -> None:
    prices = session.price_engine.all_prices()
    pf = session.ledger.portfolio_of(USER_ID)
    print(f"  cash={pf.cash_balance:,.2f} total={pf.total_value(prices):,.2f}")
    for symbol, qty in sorted(pf.holdings.items()):
        px = prices[symbol].price if symbol in prices else None
        print(f"  {symbol:<8} qty={qty:g} px={_fmt(px)}")


def print_result(result: OrderResult) -> None:
    status = "OK" if result.success else "FAILED"
    print(f"{status}: {result.message}")
    if result.order is not None:
        print(f"  {result.order!r}")


def _place(session: MarketSession, side: OrderSide, parts: List[str]) -> OrderResult:
    symbol = parts[1].upper()
    qty = float(parts[2])
    if len(parts) > 3:
        return session.coordinator.place_order(USER_ID, symbol, side, qty, float(parts[3]), OrderType.LIMIT)
    return session.coordinator.place_order(USER_ID, symbol, side, qty)


def run_repl(session: MarketSession) -> None:
    print(HELP)
    print_prices(session)

    while True:
        try:
            line = input("market> ").strip()
        except (EOFError, KeyboardInterrupt):
            line = "quit"

        if not line:
            continue

        parts = line.split()
        cmd = parts[0].lower()

        try:
            if cmd == "quit":
                break

            if cmd == "help":
                print(HELP)
                continue

            if cmd == "prices":
                print_prices(session)
                continue

            if cmd == "history":
                n = int(parts[2]) if len(parts) > 2 else 10
                for p in session.price_engine.price_history(parts[1].upper())[-n:]:
                    print(f"  {p.timestamp:.0f} {_fmt(p.price)}")
                continue

            if cmd in ("buy", "sell"):
                side = OrderSide.BUY if cmd == "buy" else OrderSide.SELL
                print_result(_place(session, side, parts))
                continue

            if cmd == "cancel":
                print_result(session.coordinator.cancel_order(USER_ID, parts[1]))
                continue

            if cmd == "orders":
                orders = session.coordinator.user_open_orders(USER_ID)
                if not orders:
                    print("  (none)")
                for o in orders:
                    print(f"  {o.id} {o!r}")
                continue

            if cmd == "portfolio":
                print_portfolio(session)
                continue

            if cmd == "deposit":
                balance = session.ledger.deposit(USER_ID, float(parts[1]))
                print(f"  cash={balance:,.2f}")
                continue

            if cmd == "withdraw":
                ok = session.ledger.withdraw(USER_ID, float(parts[1]))
                print("  done." if ok else "  Insufficient funds.")
                continue

            if cmd == "tick":
                filled = session.scheduler.tick()
                print(f"  {len(filled)} limit orders filled")
                print_prices(session)
                continue

            if cmd == "anomalies":
                for t in session.processor.anomalies():
                    print(f"  #{t.id} {t.type} {t.amount:,.2f} user={t.user_id}")
                continue

            if cmd == "save":
                session.save_checkpoint("runs/last_checkpoint.json")
                session.store.dump("runs/transactions.jsonl")
                print("Saved checkpoint.")
                continue

            print("Unknown command.")

        except MarketError as e:
            print("Error:", e)
        except (IndexError, ValueError):
            print("Bad arguments. Type 'help' for usage.")


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Risk-gated simulated market")
    parser.add_argument("--fast", action="store_true", help="use the FAST preset (sub-second ticks)")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args(argv)

    configure_logging(LoggingConfig(level=args.log_level, log_file="runs/market.log"))

    config = MarketConfig.FAST() if args.fast else MarketConfig.DEFAULT()
    session = MarketSession(config, seed=args.seed)
    session.start()
    try:
        run_repl(session)
    finally:
        session.shutdown()
        session.save_checkpoint("runs/last_checkpoint.json")
        print("Bye.")


if __name__ == "__main__":
    main()

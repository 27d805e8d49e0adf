from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MarketConfig:
    """
    MarketConfig controls simulation and ledger parameters.

    Note:
    - history_size is the per-symbol cap on retained price points (FIFO).
    - tick_interval drives advance() + limit-order sweep; price_interval > 0
      adds a separate price-only job on its own timer.
    """
    name: str

    # Price engine
    history_size: int
    fee_rate: float
    low_band: float
    high_band: float

    # Ledger
    starting_cash: float

    # Scheduling (seconds)
    tick_interval: float
    price_interval: float = 0.0

    # Counterparty account used on settlement transactions
    exchange_account: str = "EXCHANGE"

    def __post_init__(self) -> None:
        if self.history_size < 1:
            raise ValueError("history_size must be >= 1")
        if self.tick_interval <= 0:
            raise ValueError("tick_interval must be > 0")
        if self.price_interval < 0:
            raise ValueError("price_interval must be >= 0 (0 disables it)")
        if self.starting_cash < 0:
            raise ValueError("starting_cash must be >= 0")

    @staticmethod
    def DEFAULT() -> "MarketConfig":
        return MarketConfig(
            name="DEFAULT",
            history_size=1000,
            fee_rate=0.01,            # net price = 99% of price
            low_band=0.98,
            high_band=1.02,
            starting_cash=10_000.0,
            tick_interval=5.0,        # advance + sweep every 5s
        )

    @staticmethod
    def FAST() -> "MarketConfig":
        return MarketConfig(
            name="FAST",
            history_size=500,
            fee_rate=0.01,
            low_band=0.98,
            high_band=1.02,
            starting_cash=10_000.0,
            tick_interval=0.5,        # demo / terminal play
            price_interval=0.25,
        )

"""
Application layer - order intake, scheduling, session wiring.
"""
from .trading_coordinator import OrderResult, OrderStage, TradingCoordinator
from .transaction_processor import TransactionProcessor
from .market_scheduler import MarketScheduler
from .market_session import DEFAULT_ASSETS, MarketSession, SessionMeta

__all__ = [
    'OrderResult',
    'OrderStage',
    'TradingCoordinator',
    'TransactionProcessor',
    'MarketScheduler',
    'MarketSession',
    'SessionMeta',
    'DEFAULT_ASSETS',
]

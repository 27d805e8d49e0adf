from .config import MarketConfig
from .logger import LoggingConfig, configure_logging, get_logger
from .transaction_store import InMemoryTransactionStore, TransactionStore

__all__ = [
    "MarketConfig",
    "LoggingConfig",
    "configure_logging",
    "get_logger",
    "InMemoryTransactionStore",
    "TransactionStore",
]

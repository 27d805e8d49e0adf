"""
Domain layer - prices, orders, portfolios, risk.
Pure in-memory state, zero dependencies on application/infrastructure.
"""
from .errors import (
    ErrorKind,
    MarketError,
    NotFoundError,
    InvalidArgumentError,
    InvalidTransitionError,
    ForbiddenError,
    SettlementError,
    InsufficientFundsError,
    InsufficientHoldingsError,
    RiskRejectedError,
)
from .price_engine import Asset, AssetClass, PricePoint, PriceEngine
from .order_book import Order, OrderBook, OrderSide, OrderStatus, OrderType, transition
from .portfolio import Portfolio, PortfolioLedger
from .risk_gate import (
    HeuristicRiskGate,
    RiskAssessment,
    RiskGate,
    RiskLevel,
    Transaction,
    UserProfile,
    detect_anomalies,
)

__all__ = [
    'ErrorKind',
    'MarketError',
    'NotFoundError',
    'InvalidArgumentError',
    'InvalidTransitionError',
    'ForbiddenError',
    'SettlementError',
    'InsufficientFundsError',
    'InsufficientHoldingsError',
    'RiskRejectedError',
    'Asset',
    'AssetClass',
    'PricePoint',
    'PriceEngine',
    'Order',
    'OrderBook',
    'OrderSide',
    'OrderStatus',
    'OrderType',
    'transition',
    'Portfolio',
    'PortfolioLedger',
    'HeuristicRiskGate',
    'RiskAssessment',
    'RiskGate',
    'RiskLevel',
    'Transaction',
    'UserProfile',
    'detect_anomalies',
]

"""
Portfolio and ledger tests.

Coverage:
- Starting cash and lazy portfolio creation
- Deposits / withdrawals
- Atomic BUY / SELL settlement and shortfalls
- Valuation against current prices
"""
import pytest

from engine.errors import InsufficientFundsError, InsufficientHoldingsError, InvalidArgumentError
from engine.order_book import Order, OrderSide, OrderStatus, OrderType, transition
from engine.portfolio import Portfolio, PortfolioLedger
from engine.price_engine import PricePoint


class TestPortfolio:

    def setup_method(self):
        self.pf = Portfolio("u1", 1000.0)

    def test_withdraw_short_changes_nothing(self):
        assert self.pf.withdraw_cash(2000.0) is False
        assert self.pf.cash_balance == 1000.0

    def test_remove_entire_holding_drops_entry(self):
        self.pf.add_holding("AAPL", 2)
        assert self.pf.remove_holding("AAPL", 2) is True
        assert "AAPL" not in self.pf.holdings

    def test_remove_more_than_held(self):
        self.pf.add_holding("AAPL", 1)
        assert self.pf.remove_holding("AAPL", 2) is False
        assert self.pf.holding("AAPL") == 1

    def test_total_value_accepts_points_and_floats(self):
        self.pf.add_holding("AAPL", 2)
        self.pf.add_holding("MSFT", 1)
        self.pf.add_holding("UNPRICED", 5)
        point = PricePoint("AAPL", 100.0, 99.0, 98.0, 102.0, 1.0, 0.0)

        assert self.pf.total_value({"AAPL": point, "MSFT": 50.0}) == pytest.approx(1250.0)


class TestLedgerCash:

    def setup_method(self):
        self.ledger = PortfolioLedger()

    def test_new_user_gets_starting_cash(self):
        pf = self.ledger.portfolio_of("alice")
        assert pf.cash_balance == 10_000.0
        assert pf.holdings == {}

    def test_deposit(self):
        assert self.ledger.deposit("alice", 500.0) == 10_500.0
        assert self.ledger.portfolio_of("alice").cash_balance == 10_500.0

    def test_withdraw_more_than_balance(self):
        assert self.ledger.withdraw("alice", 20_000.0) is False
        assert self.ledger.portfolio_of("alice").cash_balance == 10_000.0

    def test_withdraw(self):
        assert self.ledger.withdraw("alice", 2_500.0) is True
        assert self.ledger.portfolio_of("alice").cash_balance == 7_500.0

    @pytest.mark.parametrize("amount", [0.0, -5.0])
    def test_non_positive_amounts_rejected(self, amount):
        with pytest.raises(InvalidArgumentError):
            self.ledger.deposit("alice", amount)
        with pytest.raises(InvalidArgumentError):
            self.ledger.withdraw("alice", amount)

    @pytest.mark.parametrize("amount", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_amounts_rejected(self, amount):
        with pytest.raises(InvalidArgumentError):
            self.ledger.deposit("alice", amount)
        with pytest.raises(InvalidArgumentError):
            self.ledger.withdraw("alice", amount)
        assert self.ledger.portfolio_of("alice").cash_balance == 10_000.0

    def test_rejected_nan_deposit_keeps_funds_check(self):
        """Cash can never be poisoned into passing every balance check."""
        with pytest.raises(InvalidArgumentError):
            self.ledger.deposit("alice", float("nan"))
        with pytest.raises(InsufficientFundsError):
            self.ledger.settle("alice", "X", OrderSide.BUY, 1_000_000, 1_000.0)
        assert self.ledger.portfolio_of("alice").holdings == {}

    def test_empty_user_rejected(self):
        with pytest.raises(InvalidArgumentError):
            self.ledger.portfolio_of("")

    def test_snapshot_is_detached(self):
        pf = self.ledger.portfolio_of("alice")
        pf.cash_balance = 0.0
        pf.holdings["AAPL"] = 100
        assert self.ledger.portfolio_of("alice").cash_balance == 10_000.0
        assert self.ledger.portfolio_of("alice").holdings == {}

    def test_custom_starting_cash(self):
        ledger = PortfolioLedger(starting_cash=250.0)
        assert ledger.portfolio_of("bob").cash_balance == 250.0


class TestSettlement:

    def setup_method(self):
        self.ledger = PortfolioLedger()

    def test_buy_moves_cash_into_holding(self):
        self.ledger.settle("alice", "AAPL", OrderSide.BUY, 10, 100.0)
        pf = self.ledger.portfolio_of("alice")
        assert pf.cash_balance == pytest.approx(9_000.0)
        assert pf.holding("AAPL") == 10

    def test_sell_moves_holding_into_cash(self):
        self.ledger.settle("alice", "AAPL", OrderSide.BUY, 10, 100.0)
        self.ledger.settle("alice", "AAPL", OrderSide.SELL, 4, 125.0)
        pf = self.ledger.portfolio_of("alice")
        assert pf.cash_balance == pytest.approx(9_500.0)
        assert pf.holding("AAPL") == 6

    def test_buy_shortfall_leaves_portfolio_untouched(self):
        with pytest.raises(InsufficientFundsError):
            self.ledger.settle("alice", "AAPL", OrderSide.BUY, 200, 100.0)
        pf = self.ledger.portfolio_of("alice")
        assert pf.cash_balance == 10_000.0
        assert pf.holdings == {}

    def test_sell_without_holding(self):
        with pytest.raises(InsufficientHoldingsError):
            self.ledger.settle("alice", "AAPL", OrderSide.SELL, 1, 100.0)
        assert self.ledger.portfolio_of("alice").cash_balance == 10_000.0

    @pytest.mark.parametrize("qty,price", [
        (float("nan"), 100.0),
        (float("inf"), 100.0),
        (1.0, float("nan")),
        (1.0, float("inf")),
    ])
    def test_non_finite_trade_rejected(self, qty, price):
        with pytest.raises(InvalidArgumentError):
            self.ledger.settle("alice", "AAPL", OrderSide.BUY, qty, price)
        pf = self.ledger.portfolio_of("alice")
        assert pf.cash_balance == 10_000.0
        assert pf.holdings == {}

    def test_portfolio_rejects_non_finite(self):
        pf = Portfolio("u1", 100.0)
        for bad in (float("nan"), float("inf")):
            with pytest.raises(InvalidArgumentError):
                pf.deposit_cash(bad)
            with pytest.raises(InvalidArgumentError):
                pf.withdraw_cash(bad)
            with pytest.raises(InvalidArgumentError):
                pf.add_holding("AAPL", bad)
            with pytest.raises(InvalidArgumentError):
                pf.remove_holding("AAPL", bad)
        assert pf.cash_balance == 100.0
        assert pf.holdings == {}

    def test_exact_balance_buy_allowed(self):
        self.ledger.settle("alice", "AAPL", OrderSide.BUY, 100, 100.0)
        assert self.ledger.portfolio_of("alice").cash_balance == 0.0

    def test_settle_trade_requires_filled(self):
        order = Order.create("alice", "AAPL", OrderType.MARKET, OrderSide.BUY, 1)
        assert self.ledger.settle_trade(order, 100.0) is False

        transition(order, OrderStatus.FILLED)
        assert self.ledger.settle_trade(order, 100.0) is True
        assert self.ledger.portfolio_of("alice").holding("AAPL") == 1

    def test_total_value(self):
        self.ledger.settle("alice", "AAPL", OrderSide.BUY, 10, 100.0)
        assert self.ledger.total_value("alice", {"AAPL": 150.0}) == pytest.approx(10_500.0)

    def test_users_listed(self):
        self.ledger.deposit("alice", 1.0)
        self.ledger.deposit("bob", 1.0)
        assert sorted(self.ledger.users()) == ["alice", "bob"]

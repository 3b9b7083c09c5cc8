"""
Tests for account and portfolio rollups
"""

import pytest

from kis_portfolio.abstract_provider import Account, AccountBalance, DomesticRawSummary
from kis_portfolio.calculations import (
    aggregate_by_instrument,
    calculate_portfolio_summary,
    profit_loss_rate,
    summarize_holdings,
    summary_from_provider,
)


def balance(holdings, no="11111111", deposit=0.0):
    return AccountBalance(
        account=Account(account_no=no, product_code="01", account_name="General"),
        holdings=holdings,
        summary=summarize_holdings(holdings, deposit_amount=deposit),
    )


def test_profit_loss_rate():
    assert profit_loss_rate(200, 1000) == pytest.approx(20.0)
    assert profit_loss_rate(-50, 1000) == pytest.approx(-5.0)
    assert profit_loss_rate(10, 0) == 0.0
    assert profit_loss_rate(10, 0, fallback=3.5) == 3.5


class TestSummarizeHoldings:

    def test_sums_holdings(self, make_holding):
        summary = summarize_holdings(
            [make_holding("005930", 10, 100, 120), make_holding("000660", 2, 500, 450)],
            deposit_amount=300.0,
            cash_available=100.0,
        )

        assert summary.total_evaluation_amount == 2100
        assert summary.total_buy_amount == 2000
        assert summary.total_profit_loss_amount == 100
        assert summary.total_profit_loss_rate == pytest.approx(5.0)
        assert summary.deposit_amount == 300.0
        assert summary.cash_available == 100.0
        assert summary.total_asset == 2400

    def test_empty(self):
        summary = summarize_holdings([])

        assert summary.total_evaluation_amount == 0
        assert summary.total_profit_loss_rate == 0


class TestSummaryFromProvider:

    def test_prefers_evaluation_sum(self):
        summary = summary_from_provider(DomesticRawSummary(evaluation_sum=900.0, total_evaluation=1500.0))

        assert summary.total_evaluation_amount == 900.0

    def test_falls_back_to_total_evaluation(self):
        summary = summary_from_provider(DomesticRawSummary(
            total_evaluation=1500.0, purchase_sum=1000.0, profit_loss_sum=500.0,
        ))

        assert summary.total_evaluation_amount == 1500.0
        assert summary.total_asset == 1500.0
        assert summary.total_profit_loss_rate == pytest.approx(50.0)

    def test_none(self):
        summary = summary_from_provider(None)

        assert summary.total_evaluation_amount == 0
        assert summary.total_buy_amount == 0


class TestPortfolioRollups:

    def test_portfolio_summary(self, make_holding):
        balances = [
            balance([make_holding("005930", 10, 100, 120)], deposit=50.0),
            balance([make_holding("005930", 5, 100, 120), make_holding("AAPL", 1, 1000, 800, market="US")],
                    no="22222222"),
        ]

        summary = calculate_portfolio_summary(balances)

        assert summary.account_count == 2
        assert summary.stock_count == 2
        assert summary.total_evaluation == 1200 + 600 + 800
        assert summary.total_buy_amount == 1000 + 500 + 1000
        assert summary.total_asset == 2600 + 50
        assert summary.total_profit_loss_amount == 100
        assert summary.total_profit_loss_rate == pytest.approx(4.0)

    def test_aggregate_by_instrument(self, make_holding):
        balances = [
            balance([make_holding("005930", 10, 100, 150)]),
            balance([make_holding("005930", 10, 100, 150), make_holding("AAPL", 1, 1000, 1000, market="US")],
                    no="22222222"),
        ]

        weights = aggregate_by_instrument(balances)

        assert [w.instrument_code for w in weights] == ["005930", "AAPL"]
        assert weights[0].evaluation_amount == 3000
        assert weights[0].weight == pytest.approx(75.0)
        assert weights[0].profit_loss_rate == pytest.approx(50.0)
        assert weights[1].weight == pytest.approx(25.0)

    def test_aggregate_empty(self):
        assert aggregate_by_instrument([]) == []


def test_provider_summary_carries_deposit():
    summary = summary_from_provider(DomesticRawSummary(total_evaluation=1500.0, deposit_total=300.0))

    assert summary.deposit_amount == 300.0
    assert summary.total_asset == 1800.0

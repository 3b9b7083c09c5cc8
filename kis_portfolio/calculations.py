"""
Portfolio calculations.

Pure functions for account and portfolio rollups. Account summaries are always
re-derived from holdings when holdings exist, rather than trusting provider
aggregates, to avoid cross-market double counting and stale provider caches.
"""

import logging
from typing import Callable, Dict, List, Optional

from .abstract_provider import (
    AccountBalance,
    AccountSummary,
    DomesticRawSummary,
    Holding,
    InstrumentWeight,
    PortfolioSummary,
)

logger = logging.getLogger(__name__)


def profit_loss_rate(profit_loss: float, cost: float, fallback: float = 0.0) -> float:
    """P/L as a percentage of cost; `fallback` when cost is zero."""
    if cost > 0:
        return profit_loss / cost * 100
    return fallback


def summarize_holdings(holdings: List[Holding], deposit_amount: float = 0.0,
                       cash_available: float = 0.0) -> AccountSummary:
    """Account summary by summation over holdings."""
    total_evaluation = sum(h.evaluation_amount for h in holdings)
    total_buy = sum(h.cost_amount for h in holdings)
    total_profit_loss = sum(h.profit_loss_amount for h in holdings)

    return AccountSummary(
        total_evaluation_amount=total_evaluation,
        total_buy_amount=total_buy,
        total_profit_loss_amount=total_profit_loss,
        total_profit_loss_rate=profit_loss_rate(total_profit_loss, total_buy),
        deposit_amount=deposit_amount,
        cash_available=cash_available,
        total_asset=deposit_amount + total_evaluation,
    )


# Ordered sources for the provider's evaluation total; the first non-zero wins
PROVIDER_EVALUATION_SOURCES: List[Callable[[DomesticRawSummary], float]] = [
    lambda s: s.evaluation_sum,
    lambda s: s.total_evaluation,
]


def summary_from_provider(raw: Optional[DomesticRawSummary]) -> AccountSummary:
    """
    Account summary from the provider's own aggregate.

    Used only when an account reports no holdings (pension products often
    report just the aggregate).
    """
    if raw is None:
        return AccountSummary()

    total_evaluation = next((v for v in (source(raw) for source in PROVIDER_EVALUATION_SOURCES) if v), 0.0)
    total_buy = raw.purchase_sum
    total_profit_loss = raw.profit_loss_sum

    return AccountSummary(
        total_evaluation_amount=total_evaluation,
        total_buy_amount=total_buy,
        total_profit_loss_amount=total_profit_loss,
        total_profit_loss_rate=profit_loss_rate(total_profit_loss, total_buy),
        deposit_amount=raw.deposit_total,
        total_asset=raw.deposit_total + total_evaluation,
    )


def calculate_portfolio_summary(balances: List[AccountBalance]) -> PortfolioSummary:
    """Portfolio-wide rollup across every account."""
    total_evaluation = sum(b.summary.total_evaluation_amount for b in balances)
    total_buy = sum(b.summary.total_buy_amount for b in balances)
    total_profit_loss = sum(b.summary.total_profit_loss_amount for b in balances)
    total_asset = sum(b.summary.total_asset for b in balances)
    instruments = {h.instrument_code for b in balances for h in b.holdings if h.instrument_code}

    return PortfolioSummary(
        total_asset=total_asset,
        total_evaluation=total_evaluation,
        total_buy_amount=total_buy,
        total_profit_loss_amount=total_profit_loss,
        total_profit_loss_rate=profit_loss_rate(total_profit_loss, total_buy),
        account_count=len(balances),
        stock_count=len(instruments),
    )


def aggregate_by_instrument(balances: List[AccountBalance]) -> List[InstrumentWeight]:
    """
    Combine the same instrument across accounts and weight it by evaluation.

    Returns:
        InstrumentWeight list sorted by weight, largest first
    """
    totals: Dict[str, Dict[str, object]] = {}
    for balance in balances:
        for h in balance.holdings:
            if not h.instrument_code:
                continue
            entry = totals.setdefault(h.instrument_code, {
                'name': h.display_name,
                'evaluation': 0.0,
                'cost': 0.0,
            })
            entry['evaluation'] += h.evaluation_amount
            entry['cost'] += h.cost_amount

    portfolio_value = sum(entry['evaluation'] for entry in totals.values())

    weights = []
    for code, entry in totals.items():
        evaluation = entry['evaluation']
        cost = entry['cost']
        weights.append(InstrumentWeight(
            instrument_code=code,
            display_name=entry['name'],
            evaluation_amount=evaluation,
            cost_amount=cost,
            weight=(evaluation / portfolio_value * 100) if portfolio_value > 0 else 0.0,
            profit_loss_rate=profit_loss_rate(evaluation - cost, cost),
        ))

    weights.sort(key=lambda w: w.weight, reverse=True)
    return weights

"""
Account balance assembler.

Builds one consolidated AccountBalance from the domestic and overseas balance
fetchers: both markets are fetched concurrently, overseas values are converted
to KRW, zero-quantity rows are dropped and the summary is recomputed from the
resulting holdings.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, List

from .abstract_provider import (
    AbstractBalanceFetcher,
    Account,
    AccountBalance,
    AccountSummary,
    Credentials,
    Holding,
    RawHolding,
)
from .calculations import profit_loss_rate, summarize_holdings, summary_from_provider
from .constants import CURRENCY_MARKETS, MARKET_DOMESTIC
from .currency_service import CurrencyService

logger = logging.getLogger(__name__)


def to_holding(raw: RawHolding, rate: float, market: str) -> Holding:
    """
    Convert a raw provider position into a home-currency Holding.

    Provider amounts are preferred; when the provider leaves one blank it is
    derived from quantity and unit price. P/L is always evaluation minus cost
    so the holding is internally consistent after conversion.
    """
    evaluation_native = raw.evaluation_amount or raw.quantity * raw.current_price
    cost_native = raw.purchase_amount or raw.quantity * raw.avg_price

    evaluation = evaluation_native * rate
    cost = cost_native * rate
    profit_loss = evaluation - cost

    return Holding(
        instrument_code=raw.instrument_code,
        display_name=raw.display_name or raw.instrument_code,
        quantity=raw.quantity,
        avg_cost_price=raw.avg_price * rate,
        current_price=raw.current_price * rate,
        evaluation_amount=evaluation,
        cost_amount=cost,
        profit_loss_amount=profit_loss,
        profit_loss_rate=profit_loss_rate(profit_loss, cost, fallback=raw.profit_loss_rate),
        market=market,
    )


def empty_balance(account: Account) -> AccountBalance:
    """Placeholder for an account whose assembly failed."""
    return AccountBalance(
        account=public_account(account),
        holdings=[],
        summary=AccountSummary(),
        last_updated=datetime.now(),
    )


def public_account(account: Account) -> Account:
    """Copy of the account without credentials."""
    return replace(account, app_key=None, app_secret=None)


class AccountBalanceAssembler:
    """
    Assembles a single account's consolidated balance.

    Failures are isolated per account: if anything unexpected escapes the
    fetchers or the conversion, a zeroed AccountBalance is returned so the
    orchestration pass can continue with the remaining accounts.
    """

    def __init__(self, domestic_fetcher: AbstractBalanceFetcher,
                 overseas_fetcher: AbstractBalanceFetcher,
                 currency_service: CurrencyService):
        self.domestic_fetcher = domestic_fetcher
        self.overseas_fetcher = overseas_fetcher
        self.currency_service = currency_service

    async def assemble(self, account: Account, credentials: Credentials) -> AccountBalance:
        try:
            return await self._assemble(account, credentials)
        except Exception as e:
            logger.error(f"[Portfolio Service] Error fetching {account.account_no}-{account.product_code}: {e}")
            return empty_balance(account)

    async def _assemble(self, account: Account, credentials: Credentials) -> AccountBalance:
        domestic, overseas = await asyncio.gather(
            self.domestic_fetcher.fetch(account, credentials),
            self.overseas_fetcher.fetch(account, credentials),
        )

        rates: Dict[str, float] = await self.currency_service.get_rates(
            raw.currency for raw in overseas.holdings
        )

        holdings: List[Holding] = [
            to_holding(raw, 1.0, MARKET_DOMESTIC) for raw in domestic.holdings
        ]
        for raw in overseas.holdings:
            currency = raw.currency.upper()
            holdings.append(to_holding(raw, rates[currency], CURRENCY_MARKETS.get(currency, currency)))

        holdings = [h for h in holdings if h.quantity > 0]

        if holdings:
            deposit = domestic.summary.deposit_total if domestic.summary else 0.0
            summary = summarize_holdings(holdings, deposit_amount=deposit)
        else:
            summary = summary_from_provider(domestic.summary)

        logger.info(
            f"Assembled {account.account_no}-{account.product_code}: "
            f"{len(domestic.holdings)} domestic, {len(overseas.holdings)} overseas, "
            f"{len(holdings)} held, evaluation={summary.total_evaluation_amount:,.0f}"
        )

        return AccountBalance(
            account=public_account(account),
            holdings=holdings,
            summary=summary,
            last_updated=datetime.now(),
        )

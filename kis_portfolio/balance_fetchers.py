"""
Market balance fetchers.

The domestic fetcher issues a single balance inquiry; the overseas fetcher
fans out one inquiry per exchange because the exchange of an instrument is not
known in advance. Both map KIS field names into the raw record dataclasses
here, so provider naming never leaks past this module, and both swallow their
own failures into an empty FetchResult.
"""

import asyncio
import logging
from typing import Any, Dict, List, Sequence, Tuple

import httpx

from .abstract_provider import (
    AbstractBalanceFetcher,
    Account,
    Credentials,
    DomesticRawHolding,
    DomesticRawSummary,
    FetchResult,
    OverseasRawHolding,
    ProviderError,
)
from .constants import HOME_CURRENCY, OVERSEAS_EXCHANGES
from .kis_client import KisClient

logger = logging.getLogger(__name__)


def parse_number(value: Any) -> float:
    """Parse a KIS numeric string ('1,234.5') into a float; blanks become 0."""
    if value is None or value == "":
        return 0.0
    try:
        return float(str(value).replace(",", ""))
    except ValueError:
        return 0.0


def map_domestic_holding(item: Dict[str, Any]) -> DomesticRawHolding:
    return DomesticRawHolding(
        instrument_code=str(item.get("pdno", "")),
        display_name=str(item.get("prdt_name", "")),
        quantity=parse_number(item.get("hldg_qty")),
        avg_price=parse_number(item.get("pchs_avg_pric")),
        current_price=parse_number(item.get("prpr")),
        evaluation_amount=parse_number(item.get("evlu_amt")),
        purchase_amount=parse_number(item.get("pchs_amt")),
        profit_loss_amount=parse_number(item.get("evlu_pfls_amt")),
        profit_loss_rate=parse_number(item.get("evlu_pfls_rt")),
        currency=HOME_CURRENCY,
    )


def map_domestic_summary(output2: Dict[str, Any]) -> DomesticRawSummary:
    return DomesticRawSummary(
        evaluation_sum=parse_number(output2.get("evlu_amt_smtl_amt")),
        total_evaluation=parse_number(output2.get("tot_evlu_amt")),
        purchase_sum=parse_number(output2.get("pchs_amt_smtl_amt")),
        profit_loss_sum=parse_number(output2.get("evlu_pfls_smtl_amt")),
        deposit_total=parse_number(output2.get("dnca_tot_amt")),
    )


def map_overseas_holding(item: Dict[str, Any], currency: str, exchange_code: str) -> OverseasRawHolding:
    return OverseasRawHolding(
        instrument_code=str(item.get("ovrs_pdno", "")),
        display_name=str(item.get("ovrs_item_name", "")),
        quantity=parse_number(item.get("ovrs_cblc_qty")),
        avg_price=parse_number(item.get("pchs_avg_pric")),
        current_price=parse_number(item.get("now_pric2")),
        evaluation_amount=parse_number(item.get("ovrs_stck_evlu_amt")),
        purchase_amount=parse_number(item.get("frcr_pchs_amt1")),
        profit_loss_amount=parse_number(item.get("frcr_evlu_pfls_amt")),
        profit_loss_rate=parse_number(item.get("evlu_pfls_rt")),
        currency=currency,
        exchange_code=exchange_code,
    )


class DomesticBalanceFetcher(AbstractBalanceFetcher):
    """Domestic (KRX) balance via a single inquiry."""

    def __init__(self, client: KisClient):
        self.client = client

    def get_market_name(self) -> str:
        return "domestic"

    async def fetch(self, account: Account, credentials: Credentials) -> FetchResult:
        try:
            data = await self.client.inquire_domestic_balance(account, credentials)
        except (ProviderError, httpx.HTTPError) as e:
            logger.warning(f"[Domestic Balance Error] {account.account_no}-{account.product_code}: {e}")
            return FetchResult.empty()

        holdings = [map_domestic_holding(item) for item in data["output1"] if isinstance(item, dict)]
        return FetchResult(holdings=holdings, summary=map_domestic_summary(data["output2"]))


class OverseasBalanceFetcher(AbstractBalanceFetcher):
    """
    Overseas balance across every known exchange.

    Exchanges are queried concurrently; a failure or "no data" answer on one
    exchange only empties that exchange's share of the result. There is no
    usable provider aggregate across exchanges, so the summary is None.
    """

    def __init__(self, client: KisClient,
                 exchanges: Sequence[Tuple[str, str]] = OVERSEAS_EXCHANGES):
        self.client = client
        self.exchanges = tuple(exchanges)

    def get_market_name(self) -> str:
        return "overseas"

    async def fetch(self, account: Account, credentials: Credentials) -> FetchResult:
        try:
            # Warm the token once so the per-exchange calls share it
            await self.client.get_access_token(credentials)
        except (ProviderError, httpx.HTTPError) as e:
            logger.warning(f"[Overseas Balance Error] {account.account_no}-{account.product_code}: {e}")
            return FetchResult.empty()

        results = await asyncio.gather(*(
            self._fetch_exchange(account, credentials, exchange_code, currency)
            for exchange_code, currency in self.exchanges
        ))
        holdings = [holding for exchange_holdings in results for holding in exchange_holdings]
        return FetchResult(holdings=holdings, summary=None)

    async def _fetch_exchange(self, account: Account, credentials: Credentials,
                              exchange_code: str, currency: str) -> List[OverseasRawHolding]:
        try:
            items = await self.client.inquire_overseas_balance(account, credentials, exchange_code, currency)
        except (ProviderError, httpx.HTTPError) as e:
            logger.warning(f"[KIS Info] Overseas Balance Partial Fail ({exchange_code}) "
                           f"for {account.account_no}: {e}")
            return []
        return [
            map_overseas_holding(item, currency, exchange_code)
            for item in items if isinstance(item, dict)
        ]

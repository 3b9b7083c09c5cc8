"""
Manual holding reconciler.

Merges user-declared positions into freshly assembled account balances. Merge
keys are (instrument_code, market): a manual US holding only merges into a
live US position, never into a domestic instrument that happens to share the
code. Markets KIS cannot report (e.g. CA) therefore always add new rows.

The reconciler is not idempotent on its own output; it must always be given a
fresh assembler result.
"""

import logging
from dataclasses import replace
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from .abstract_provider import Account, AccountBalance, Holding, ManualHolding
from .calculations import profit_loss_rate, summarize_holdings
from .config import normalize_account_no, normalize_product_code
from .constants import MARKET_CURRENCIES, MARKET_DOMESTIC
from .currency_service import CurrencyService

logger = logging.getLogger(__name__)

# Looks up the live KRW price of a domestic instrument on behalf of an account
PriceLookup = Callable[[str, Account], Awaitable[float]]


def _account_key(account_no: str, product_code: str) -> Tuple[str, str]:
    return normalize_account_no(account_no), normalize_product_code(product_code)


class ManualHoldingReconciler:
    """
    Reconciles manual holdings into assembled balances.

    Args:
        currency_service: Converts manual prices declared in a foreign market
            currency into KRW
        price_lookup: Best-effort live price source for new domestic holdings
    """

    def __init__(self, currency_service: CurrencyService,
                 price_lookup: Optional[PriceLookup] = None):
        self.currency_service = currency_service
        self.price_lookup = price_lookup

    async def reconcile(self, balances: List[AccountBalance],
                        manual_holdings: List[ManualHolding],
                        price_lookup: Optional[PriceLookup] = None) -> List[AccountBalance]:
        """
        Merge manual holdings into each matching account.

        Args:
            balances: Fresh assembler output
            manual_holdings: Declared positions
            price_lookup: Price source for this call only, overriding the
                one given at construction

        Returns:
            New list of balances; accounts without matches are passed through
            unchanged
        """
        if not manual_holdings:
            return list(balances)

        by_account: Dict[Tuple[str, str], List[ManualHolding]] = {}
        for item in manual_holdings:
            by_account.setdefault(_account_key(item.account_no, item.product_code), []).append(item)

        lookup = price_lookup or self.price_lookup
        reconciled = []
        for balance in balances:
            key = _account_key(balance.account.account_no, balance.account.product_code)
            matched = by_account.get(key)
            if not matched:
                reconciled.append(balance)
                continue
            reconciled.append(await self._reconcile_account(balance, matched, lookup))
        return reconciled

    async def _reconcile_account(self, balance: AccountBalance, items: List[ManualHolding],
                                 lookup: Optional[PriceLookup]) -> AccountBalance:
        holdings = list(balance.holdings)

        for item in items:
            if item.avg_cost_price <= 0 or item.quantity <= 0:
                logger.warning(f"[Manual] Skipping {item.instrument_code}: quantity and buy price must be positive")
                continue

            rate = await self._market_rate(item.market)
            index = next(
                (i for i, h in enumerate(holdings)
                 if h.instrument_code == item.instrument_code and h.market == item.market),
                None
            )

            if index is not None:
                holdings[index] = merge_holding(holdings[index], item, rate)
            else:
                holdings.append(await self._new_holding(balance.account, item, rate, lookup))

        summary = summarize_holdings(
            holdings,
            deposit_amount=balance.summary.deposit_amount,
            cash_available=balance.summary.cash_available,
        )
        return replace(balance, holdings=holdings, summary=summary)

    async def _market_rate(self, market: str) -> float:
        return await self.currency_service.get_rate(MARKET_CURRENCIES.get(market, market))

    async def _new_holding(self, account: Account, item: ManualHolding, rate: float,
                           lookup: Optional[PriceLookup]) -> Holding:
        current_price = await self._resolve_current_price(account, item, rate, lookup)
        avg_cost = item.avg_cost_price * rate
        evaluation = current_price * item.quantity
        cost = avg_cost * item.quantity
        profit_loss = evaluation - cost

        return Holding(
            instrument_code=item.instrument_code,
            display_name=item.instrument_code,
            quantity=item.quantity,
            avg_cost_price=avg_cost,
            current_price=current_price,
            evaluation_amount=evaluation,
            cost_amount=cost,
            profit_loss_amount=profit_loss,
            profit_loss_rate=profit_loss_rate(profit_loss, cost),
            market=item.market,
        )

    async def _resolve_current_price(self, account: Account, item: ManualHolding, rate: float,
                                     lookup: Optional[PriceLookup]) -> float:
        """Declared price, then live domestic lookup, then 0 (all in KRW)."""
        if item.current_price and item.current_price > 0:
            return item.current_price * rate

        if item.market == MARKET_DOMESTIC:
            if lookup is None:
                logger.warning(f"[Manual] No price source for {item.instrument_code}, valuing at 0")
                return 0.0
            try:
                return await lookup(item.instrument_code, account)
            except Exception as e:
                logger.warning(f"[Manual] Price lookup failed for {item.instrument_code}: {e}")
                return 0.0

        logger.warning(f"[Manual] {item.market} stock {item.instrument_code} added without current price "
                       f"(not in live balance)")
        return 0.0


def merge_holding(existing: Holding, item: ManualHolding, rate: float) -> Holding:
    """
    Fold a manual position into an existing live holding.

    The live current price is trusted over any declared price; cost is the
    live cost plus the manual cost converted to KRW.
    """
    quantity = existing.quantity + item.quantity
    cost = existing.cost_amount + item.avg_cost_price * item.quantity * rate
    evaluation = existing.current_price * quantity
    profit_loss = evaluation - cost

    return replace(
        existing,
        quantity=quantity,
        cost_amount=cost,
        evaluation_amount=evaluation,
        profit_loss_amount=profit_loss,
        profit_loss_rate=profit_loss_rate(profit_loss, cost),
        avg_cost_price=cost / quantity if quantity > 0 else 0.0,
    )

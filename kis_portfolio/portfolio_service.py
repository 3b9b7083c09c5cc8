"""
Portfolio Service

Main entry point for consolidated KIS portfolios. Walks the configured
accounts one at a time (KIS enforces per-app request rate limits and each
account already fans out into several calls), assembles each account, then
reconciles manual holdings over the whole batch.
"""

import asyncio
import functools
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from .abstract_provider import Account, AccountBalance, Credentials
from .account_assembler import AccountBalanceAssembler, empty_balance
from .balance_fetchers import DomesticBalanceFetcher, OverseasBalanceFetcher
from .calculations import aggregate_by_instrument, calculate_portfolio_summary
from .config import PortfolioSettings
from .currency_service import CurrencyService
from .kis_client import KisClient
from .manual_reconciler import ManualHoldingReconciler
from .token_cache import create_token_store

logger = logging.getLogger(__name__)

CredentialResolver = Callable[[Account], Optional[Credentials]]


class PortfolioService:
    """
    Orchestrates assembly and reconciliation across accounts.

    Credentials for an account come from an explicit, ordered resolver chain:
    the account's own pair, then the configured account with the same number,
    then the global default pair. Accounts left without a pair are skipped.
    """

    def __init__(
        self,
        settings: PortfolioSettings,
        assembler: AccountBalanceAssembler,
        reconciler: ManualHoldingReconciler,
        client: Optional[KisClient] = None,
    ):
        self.settings = settings
        self.assembler = assembler
        self.reconciler = reconciler
        self.client = client
        self.credential_resolvers: List[CredentialResolver] = [
            self._own_credentials,
            self._configured_credentials,
            self._default_credentials,
        ]

    @classmethod
    def from_settings(cls, settings: Optional[PortfolioSettings] = None) -> "PortfolioService":
        """Wire the service with real KIS, FX and token store collaborators."""
        settings = settings or PortfolioSettings.from_env()
        client = KisClient(
            env=settings.kis_env,
            token_store=create_token_store(settings.token_store, settings.redis_url),
        )
        currency_service = CurrencyService(cache_seconds=settings.exchange_rate_cache_seconds)
        assembler = AccountBalanceAssembler(
            DomesticBalanceFetcher(client),
            OverseasBalanceFetcher(client),
            currency_service,
        )
        return cls(settings, assembler, ManualHoldingReconciler(currency_service), client)

    def _own_credentials(self, account: Account) -> Optional[Credentials]:
        return account.credentials

    def _configured_credentials(self, account: Account) -> Optional[Credentials]:
        for configured in self.settings.accounts:
            if configured.account_no == account.account_no and configured.credentials:
                return configured.credentials
        return None

    def _default_credentials(self, account: Account) -> Optional[Credentials]:
        return self.settings.default_credentials

    def resolve_credentials(self, account: Account) -> Optional[Credentials]:
        for resolver in self.credential_resolvers:
            credentials = resolver(account)
            if credentials:
                return credentials
        return None

    async def lookup_domestic_price(self, instrument_code: str, account: Account,
                                    resolved: Optional[Dict[Tuple[str, str], Credentials]] = None) -> float:
        """
        Live domestic price for a manual holding.

        Args:
            instrument_code: 6-digit domestic code
            account: Account the holding belongs to (may carry no credentials)
            resolved: Credentials used for each account in the current pass
        """
        if self.client is None:
            return 0.0
        credentials = (resolved or {}).get((account.account_no, account.product_code)) \
            or self.resolve_credentials(account)
        if credentials is None:
            return 0.0
        return await self.client.get_domestic_price(instrument_code, credentials)

    async def get_portfolio(self, accounts: Optional[List[Account]] = None) -> List[AccountBalance]:
        """
        Consolidated balances for the given accounts, or all configured ones.

        Failed accounts are present with zeroed figures; accounts without any
        usable credentials are skipped.
        """
        targets = accounts if accounts is not None else self.settings.accounts
        if not targets:
            return []

        resolved: Dict[Tuple[str, str], Credentials] = {}
        results: List[AccountBalance] = []
        for account in targets:
            credentials = self.resolve_credentials(account)
            if credentials is None:
                logger.warning(f"[Portfolio] Skipping {account.account_no}: Missing Credentials")
                continue

            if results and self.settings.account_delay_seconds > 0:
                await asyncio.sleep(self.settings.account_delay_seconds)

            resolved[(account.account_no, account.product_code)] = credentials
            try:
                balance = await self.assembler.assemble(account, credentials)
            except Exception as e:
                logger.error(f"[Portfolio] Unexpected failure for {account.account_no}-{account.product_code}: {e}")
                balance = empty_balance(account)
            results.append(balance)

        return await self.reconciler.reconcile(
            results,
            self.settings.manual_holdings,
            price_lookup=functools.partial(self.lookup_domestic_price, resolved=resolved),
        )

    async def get_portfolio_summary(self, accounts: Optional[List[Account]] = None) -> Dict[str, Any]:
        """Balances plus the portfolio-wide rollup and per-instrument weights."""
        balances = await self.get_portfolio(accounts)
        return {
            'accounts': [b.to_dict() for b in balances],
            'summary': calculate_portfolio_summary(balances).to_dict(),
            'instruments': [w.to_dict() for w in aggregate_by_instrument(balances)],
        }

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()

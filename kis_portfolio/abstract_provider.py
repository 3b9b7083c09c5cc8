"""
Domain models and the balance fetcher contract for KIS portfolio consolidation.

This module defines the canonical shapes every component exchanges (accounts,
holdings, summaries) together with the raw per-market records produced at the
fetcher boundary, and the contract that market balance fetchers implement.
"""

from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional
from datetime import datetime
from dataclasses import dataclass, field, asdict
import logging

from .constants import PENSION_PRODUCT_CODES, HOME_CURRENCY, MARKET_DOMESTIC

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credentials:
    """App key / secret pair issued by KIS for one or more accounts."""
    app_key: str
    app_secret: str

    @property
    def credential_key(self) -> str:
        return self.app_key

    def __repr__(self) -> str:
        # Never log the secret
        return f"Credentials(app_key={self.app_key[:4]}***)"


@dataclass(frozen=True)
class Account:
    """Brokerage sub-account identified by account number and product code."""
    account_no: str             # 8-digit CANO, digits only
    product_code: str           # 2-digit ACNT_PRDT_CD ('01', '22', '29', ...)
    account_name: str
    app_key: Optional[str] = None
    app_secret: Optional[str] = None

    @property
    def is_pension(self) -> bool:
        return self.product_code in PENSION_PRODUCT_CODES

    @property
    def credentials(self) -> Optional[Credentials]:
        if self.app_key and self.app_secret:
            return Credentials(self.app_key, self.app_secret)
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary without credentials."""
        return {
            'account_no': self.account_no,
            'product_code': self.product_code,
            'account_name': self.account_name,
            'is_pension': self.is_pension,
        }


@dataclass
class Holding:
    """One instrument position within one account, in home currency."""
    instrument_code: str
    display_name: str
    quantity: float
    avg_cost_price: float
    current_price: float
    evaluation_amount: float
    cost_amount: float
    profit_loss_amount: float
    profit_loss_rate: float     # Percentage (20.0 == 20%)
    market: str = MARKET_DOMESTIC

    @property
    def is_foreign(self) -> bool:
        return self.market != MARKET_DOMESTIC

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AccountSummary:
    """Per-account rollup in home currency."""
    total_evaluation_amount: float = 0.0
    total_buy_amount: float = 0.0
    total_profit_loss_amount: float = 0.0
    total_profit_loss_rate: float = 0.0
    deposit_amount: float = 0.0
    cash_available: float = 0.0
    total_asset: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AccountBalance:
    """Consolidated balance for one account from a single orchestration pass."""
    account: Account
    holdings: List[Holding]
    summary: AccountSummary
    last_updated: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'account': self.account.to_dict(),
            'holdings': [h.to_dict() for h in self.holdings],
            'summary': self.summary.to_dict(),
            'last_updated': self.last_updated.isoformat(),
        }


@dataclass
class TokenRecord:
    """Provider access token persisted per credential key."""
    credential_key: str
    token: str
    expires_at: datetime        # Timezone-aware

    def is_valid(self, now: datetime) -> bool:
        return self.expires_at > now


@dataclass
class ManualHolding:
    """User-declared position that the provider cannot report."""
    account_no: str
    product_code: str
    instrument_code: str
    quantity: float
    avg_cost_price: float       # In the market's own currency
    market: str
    current_price: Optional[float] = None   # In the market's own currency


@dataclass
class PortfolioSummary:
    """Portfolio-wide rollup across every account."""
    total_asset: float
    total_evaluation: float
    total_buy_amount: float
    total_profit_loss_amount: float
    total_profit_loss_rate: float
    account_count: int
    stock_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class InstrumentWeight:
    """One instrument aggregated across all accounts."""
    instrument_code: str
    display_name: str
    evaluation_amount: float
    cost_amount: float
    weight: float               # Percentage of portfolio evaluation
    profit_loss_rate: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Raw records produced at the fetcher boundary. Provider field names are
# mapped into these in balance_fetchers and never travel further.

@dataclass
class RawHolding:
    """Provider position in its trading currency."""
    instrument_code: str
    display_name: str
    quantity: float
    avg_price: float
    current_price: float
    evaluation_amount: float
    purchase_amount: float
    profit_loss_amount: float
    profit_loss_rate: float
    currency: str = HOME_CURRENCY


@dataclass
class DomesticRawHolding(RawHolding):
    """Domestic (KRX) position, already in KRW."""


@dataclass
class OverseasRawHolding(RawHolding):
    """Overseas position tagged with the exchange it was found on."""
    exchange_code: str = ""


@dataclass
class DomesticRawSummary:
    """Provider-computed aggregate for a domestic balance inquiry."""
    evaluation_sum: float = 0.0         # evlu_amt_smtl_amt
    total_evaluation: float = 0.0       # tot_evlu_amt
    purchase_sum: float = 0.0           # pchs_amt_smtl_amt
    profit_loss_sum: float = 0.0        # evlu_pfls_smtl_amt
    deposit_total: float = 0.0          # dnca_tot_amt


@dataclass
class FetchResult:
    """Holdings plus an optional provider summary from one market fetch."""
    holdings: List[RawHolding] = field(default_factory=list)
    summary: Optional[DomesticRawSummary] = None

    @classmethod
    def empty(cls) -> "FetchResult":
        return cls()


class AbstractBalanceFetcher(ABC):
    """
    Contract for market balance fetchers.

    Implementations isolate their own failures: transport errors and provider
    rejections are logged and an empty FetchResult is returned so the caller
    can still assemble a partial account.
    """

    @abstractmethod
    async def fetch(self, account: Account, credentials: Credentials) -> FetchResult:
        """
        Fetch raw holdings for one account in this fetcher's market.

        Args:
            account: Account to query
            credentials: Working credential pair for the account

        Returns:
            FetchResult, empty on failure
        """
        pass

    @abstractmethod
    def get_market_name(self) -> str:
        """Get the market label used in logs (e.g., 'domestic')."""
        pass


class ProviderError(Exception):
    """Custom exception for brokerage provider errors."""

    def __init__(self, message: str, provider: str, error_code: Optional[str] = None,
                 original_error: Optional[Exception] = None):
        self.message = message
        self.provider = provider
        self.error_code = error_code
        self.original_error = original_error
        super().__init__(f"[{provider}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            'error': True,
            'message': self.message,
            'provider': self.provider,
            'error_code': self.error_code,
            'timestamp': datetime.now().isoformat()
        }

"""
Portfolio consolidation for Korea Investment & Securities brokerage accounts.

This package aggregates domestic and overseas holdings across multiple KIS
accounts, merges user-declared manual positions and normalizes every valuation
into KRW.
"""

from .abstract_provider import (
    Account,
    AccountBalance,
    AccountSummary,
    Credentials,
    Holding,
    ManualHolding,
    PortfolioSummary,
    ProviderError,
)
from .config import PortfolioSettings
from .portfolio_service import PortfolioService

__all__ = [
    'Account',
    'AccountBalance',
    'AccountSummary',
    'Credentials',
    'Holding',
    'ManualHolding',
    'PortfolioSummary',
    'ProviderError',
    'PortfolioSettings',
    'PortfolioService',
]

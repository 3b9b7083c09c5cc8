"""
Pytest configuration for the KIS portfolio backend tests

Provides shared fixtures for accounts, credentials, holdings and a currency
service with deterministic rates.
"""

import pytest
import sys
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Add the project root to Python path for imports
project_dir = Path(__file__).parent.parent
if str(project_dir) not in sys.path:
    sys.path.insert(0, str(project_dir))

from kis_portfolio.abstract_provider import Account, Credentials, Holding
from kis_portfolio.currency_service import CurrencyService


@pytest.fixture
def sample_account():
    """General (01) account with its own credentials"""
    return Account(
        account_no="11111111",
        product_code="01",
        account_name="General",
        app_key="PSacct-key",
        app_secret="acct-secret",
    )


@pytest.fixture
def sample_credentials():
    return Credentials(app_key="PSacct-key", app_secret="acct-secret")


@pytest.fixture
def fixed_rates():
    return {"USD": 1300.0, "JPY": 9.0, "HKD": 170.0, "CAD": 1000.0}


@pytest.fixture
def currency_service(fixed_rates):
    """Currency service that never touches the network"""
    service = CurrencyService(fallback_rates=fixed_rates)
    service.resolvers = [service._home_rate, service._fallback_rate]
    return service


@pytest.fixture
def make_holding():
    """Factory for home-currency holdings with consistent derived fields"""
    def _make(code="005930", quantity=10.0, avg_cost=100.0, current=120.0, market="KR", name=None):
        evaluation = quantity * current
        cost = quantity * avg_cost
        profit_loss = evaluation - cost
        return Holding(
            instrument_code=code,
            display_name=name or code,
            quantity=quantity,
            avg_cost_price=avg_cost,
            current_price=current,
            evaluation_amount=evaluation,
            cost_amount=cost,
            profit_loss_amount=profit_loss,
            profit_loss_rate=(profit_loss / cost * 100) if cost else 0.0,
            market=market,
        )
    return _make

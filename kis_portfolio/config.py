"""
Environment-based configuration for the KIS portfolio backend.

Accounts, manual holdings and fallback credentials are declared as environment
variables (optionally from a .env file). Malformed declarations are treated as
absent: they are logged and yield an empty list instead of raising.
"""

import os
import re
import json
import logging
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from dotenv import load_dotenv

from .abstract_provider import Account, Credentials, ManualHolding
from .constants import (
    DEFAULT_PRODUCT_CODE,
    ACCOUNT_REQUEST_DELAY_SECONDS,
    EXCHANGE_RATE_CACHE_SECONDS,
    MARKET_CURRENCIES,
)

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT_NAME = "계좌"
_TRAILING_COMMA = re.compile(r",\s*([\]}])")


def _load_json_list(raw: Optional[str], env_name: str) -> List[Any]:
    """Parse a JSON array, tolerating trailing commas."""
    if not raw:
        return []
    try:
        parsed = json.loads(_TRAILING_COMMA.sub(r"\1", raw))
    except (ValueError, TypeError) as e:
        logger.error(f"{env_name} parsing error, check the JSON format: {e}")
        return []
    if not isinstance(parsed, list):
        logger.error(f"{env_name} must be a JSON array, got {type(parsed).__name__}")
        return []
    return parsed


def normalize_account_no(value: Any) -> str:
    """Keep digits only ('1234-5678' -> '12345678')."""
    return re.sub(r"[^0-9]", "", str(value or ""))


def normalize_product_code(value: Any) -> str:
    """Strip and zero-pad to two characters ('1' -> '01')."""
    code = str(value if value is not None else "").strip()
    if not code:
        return DEFAULT_PRODUCT_CODE
    return code.zfill(2)


def _as_list(value: Any) -> List[Any]:
    if value is None or value == "":
        return []
    return value if isinstance(value, list) else [value]


def parse_accounts(raw: Optional[str]) -> List[Account]:
    """
    Parse a KIS_ACCOUNTS declaration.

    One entry may list several product codes (and matching names); each
    product code becomes its own Account sharing the entry's credentials.
    """
    accounts = []
    for entry in _load_json_list(raw, "KIS_ACCOUNTS"):
        if not isinstance(entry, dict):
            logger.warning(f"Ignoring non-object KIS_ACCOUNTS entry: {entry!r}")
            continue

        account_no = normalize_account_no(entry.get("accountNo"))
        product_codes = _as_list(entry.get("productCode")) or [DEFAULT_PRODUCT_CODE]
        names = _as_list(entry.get("accountName"))

        for idx, product_code in enumerate(product_codes):
            if idx < len(names) and names[idx]:
                account_name = names[idx]
            else:
                account_name = (names[0] if names else None) or entry.get("name") or DEFAULT_ACCOUNT_NAME

            accounts.append(Account(
                account_no=account_no,
                product_code=normalize_product_code(product_code),
                account_name=str(account_name),
                app_key=entry.get("appKey") or None,
                app_secret=entry.get("appSecret") or None,
            ))

    return accounts


def _to_float(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def parse_manual_holdings(raw: Optional[str]) -> List[ManualHolding]:
    """Parse a MANUAL_PORTFOLIO declaration."""
    holdings = []
    for entry in _load_json_list(raw, "MANUAL_PORTFOLIO"):
        if not isinstance(entry, dict):
            logger.warning(f"Ignoring non-object MANUAL_PORTFOLIO entry: {entry!r}")
            continue

        market = str(entry.get("market") or "").strip().upper()
        if market not in MARKET_CURRENCIES:
            logger.warning(f"Ignoring manual holding {entry.get('code')}: unsupported market '{market}'")
            continue

        current_price = _to_float(entry.get("currentPrice"))
        holdings.append(ManualHolding(
            account_no=normalize_account_no(entry.get("accountNo")),
            product_code=normalize_product_code(entry.get("productCode")),
            instrument_code=str(entry.get("code") or "").strip(),
            quantity=_to_float(entry.get("qty")),
            avg_cost_price=_to_float(entry.get("buyPrice")),
            market=market,
            current_price=current_price if current_price > 0 else None,
        ))

    return holdings


@dataclass
class PortfolioSettings:
    """Runtime settings collected from the environment."""
    kis_env: str = "prod"
    accounts: List[Account] = field(default_factory=list)
    manual_holdings: List[ManualHolding] = field(default_factory=list)
    default_credentials: Optional[Credentials] = None
    token_store: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    account_delay_seconds: float = ACCOUNT_REQUEST_DELAY_SECONDS
    exchange_rate_cache_seconds: float = EXCHANGE_RATE_CACHE_SECONDS

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "PortfolioSettings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read instead of os.environ (a .env file is
                only loaded when reading the real environment)
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        kis_env = environ.get("KIS_ENV", "prod").strip().lower()
        if kis_env not in ("prod", "vps"):
            logger.warning(f"Unknown KIS_ENV '{kis_env}', using prod")
            kis_env = "prod"

        app_key = environ.get("KIS_APP_KEY")
        app_secret = environ.get("KIS_APP_SECRET")
        default_credentials = Credentials(app_key, app_secret) if app_key and app_secret else None

        return cls(
            kis_env=kis_env,
            accounts=parse_accounts(environ.get("KIS_ACCOUNTS")),
            manual_holdings=parse_manual_holdings(environ.get("MANUAL_PORTFOLIO")),
            default_credentials=default_credentials,
            token_store=environ.get("KIS_TOKEN_STORE", "memory").strip().lower(),
            redis_url=environ.get("REDIS_URL", "redis://localhost:6379/0"),
            account_delay_seconds=_to_float(
                environ.get("KIS_ACCOUNT_DELAY_SECONDS", ACCOUNT_REQUEST_DELAY_SECONDS)
            ),
            exchange_rate_cache_seconds=_to_float(
                environ.get("EXCHANGE_RATE_CACHE_SECONDS", EXCHANGE_RATE_CACHE_SECONDS)
            ),
        )

"""
Shared constants for the KIS portfolio services.

This module centralizes provider endpoints, transaction ids, exchange lists
and fallback tables used across the token cache, fetchers and reconciler.
"""

HOME_CURRENCY = "KRW"

KIS_API_URL = {
    "prod": "https://openapi.koreainvestment.com:9443",
    "vps": "https://openapivts.koreainvestment.com:29443",
}

TOKEN_PATH = "/oauth2/tokenP"
DOMESTIC_BALANCE_PATH = "/uapi/domestic-stock/v1/trading/inquire-balance"
OVERSEAS_BALANCE_PATH = "/uapi/overseas-stock/v1/trading/inquire-balance"
DOMESTIC_PRICE_PATH = "/uapi/domestic-stock/v1/quotations/inquire-price"

# Transaction ids per environment
DOMESTIC_BALANCE_TR_ID = {"prod": "TTTC8434R", "vps": "VTTC8434R"}
OVERSEAS_BALANCE_TR_ID = {"prod": "TTTS3012R", "vps": "VTTS3012R"}
DOMESTIC_PRICE_TR_ID = "FHKST01010100"

RT_CD_SUCCESS = "0"

# KIS reports an expired bearer token only through this msg1 phrase
TOKEN_EXPIRED_MESSAGE = "기간이 만료된 token"

# KIS reports the expiry as a Seoul wall-clock timestamp, not a TTL
TOKEN_EXPIRY_FORMAT = "%Y-%m-%d %H:%M:%S"
TOKEN_EXPIRY_TIMEZONE = "Asia/Seoul"
DEFAULT_TOKEN_VALIDITY_HOURS = 23
TOKEN_KEY_PREFIX = "kis_token:"

# (exchange code, trading currency) pairs queried for overseas balances
OVERSEAS_EXCHANGES = (
    ("NASD", "USD"),
    ("NYSE", "USD"),
    ("AMEX", "USD"),
    ("TKSE", "JPY"),
    ("SEHK", "HKD"),
)

# Product codes: 01 general, 22 pension savings, 29 IRP
DEFAULT_PRODUCT_CODE = "01"
PENSION_PRODUCT_CODES = frozenset({"22", "29"})

MARKET_DOMESTIC = "KR"

MARKET_CURRENCIES = {
    "KR": "KRW",
    "US": "USD",
    "JP": "JPY",
    "HK": "HKD",
    "CA": "CAD",
}

CURRENCY_MARKETS = {
    "KRW": "KR",
    "USD": "US",
    "JPY": "JP",
    "HKD": "HK",
    "CAD": "CA",
}

EXCHANGE_RATE_API_URL = "https://api.frankfurter.app/latest"
EXCHANGE_RATE_CACHE_SECONDS = 300

# 1 unit of foreign currency in KRW (JPY is per 1 yen, not per 100)
FALLBACK_EXCHANGE_RATES = {
    "USD": 1450.0,
    "CAD": 1050.0,
    "JPY": 9.5,
    "HKD": 185.0,
}

ACCOUNT_REQUEST_DELAY_SECONDS = 0.2
HTTP_TIMEOUT_SECONDS = 10.0

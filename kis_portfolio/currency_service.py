"""
Currency normalization service.

Resolves how many KRW one unit of a foreign currency is worth. Rates come from
the Frankfurter API and are cached in-process for a short window; on any
failure the static fallback table is used so callers always get a usable rate.
"""

import time
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import httpx

from .constants import (
    HOME_CURRENCY,
    EXCHANGE_RATE_API_URL,
    EXCHANGE_RATE_CACHE_SECONDS,
    FALLBACK_EXCHANGE_RATES,
    HTTP_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)

RateResolver = Callable[[str], Awaitable[Optional[float]]]


class CurrencyService:
    """
    Home-currency conversion rates with caching and static fallback.

    Resolution order is an explicit list of resolvers, evaluated in sequence;
    the first one returning a rate wins:
    home currency -> cached live rate -> live rate -> fallback table -> 1.0
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        cache_seconds: float = EXCHANGE_RATE_CACHE_SECONDS,
        fallback_rates: Optional[Dict[str, float]] = None,
        home_currency: str = HOME_CURRENCY,
    ):
        self.http = http_client
        self.cache_seconds = cache_seconds
        self.fallback_rates = dict(fallback_rates if fallback_rates is not None else FALLBACK_EXCHANGE_RATES)
        self.home_currency = home_currency
        self._cache: Dict[str, Tuple[float, float]] = {}    # code -> (rate, fetched_at)
        self.resolvers: List[RateResolver] = [
            self._home_rate,
            self._cached_rate,
            self._live_rate,
            self._fallback_rate,
        ]

    async def get_rate(self, currency_code: Optional[str]) -> float:
        """Return KRW per one unit of currency_code. Never raises."""
        code = (currency_code or "").strip().upper()
        for resolver in self.resolvers:
            try:
                rate = await resolver(code)
            except Exception as e:
                logger.warning(f"[Exchange Rate] Resolver {resolver.__name__} failed for {code}: {e}")
                continue
            if rate is not None:
                return rate

        logger.warning(f"[Exchange Rate] No rate for unknown currency '{code}', using 1.0")
        return 1.0

    async def get_rates(self, currency_codes: Iterable[str]) -> Dict[str, float]:
        """Resolve several currencies concurrently."""
        codes = sorted({(c or "").strip().upper() for c in currency_codes})
        rates = await asyncio.gather(*(self.get_rate(code) for code in codes))
        return dict(zip(codes, rates))

    async def _home_rate(self, code: str) -> Optional[float]:
        if code == self.home_currency:
            return 1.0
        return None

    async def _cached_rate(self, code: str) -> Optional[float]:
        cached = self._cache.get(code)
        if cached and time.monotonic() - cached[1] < self.cache_seconds:
            return cached[0]
        return None

    async def _live_rate(self, code: str) -> Optional[float]:
        if not code:
            return None
        try:
            if self.http is not None:
                response = await self.http.get(
                    EXCHANGE_RATE_API_URL,
                    params={"from": code, "to": self.home_currency},
                )
            else:
                async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
                    response = await client.get(
                        EXCHANGE_RATE_API_URL,
                        params={"from": code, "to": self.home_currency},
                    )
            response.raise_for_status()
            rate = float(response.json()["rates"][self.home_currency])
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"[Exchange Rate] Fetch error for {code}, using fallback: {e}")
            return None

        if rate <= 0:
            logger.warning(f"[Exchange Rate] Non-positive rate {rate} for {code}, using fallback")
            return None

        self._cache[code] = (rate, time.monotonic())
        return rate

    async def _fallback_rate(self, code: str) -> Optional[float]:
        return self.fallback_rates.get(code)

    def clear_cache(self) -> None:
        self._cache.clear()

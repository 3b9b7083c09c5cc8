"""
Korea Investment & Securities (KIS) Open API client.

Wraps the token issuance, balance inquiry and price quotation endpoints used
by the consolidation engine. Every response carries an rt_cd return code where
"0" means success; anything else is surfaced as a ProviderError. When the
provider reports that the bearer token has expired, the durable token record is
invalidated before the error is raised so the next call re-issues.
"""

import re
import logging
from typing import Any, Dict, List, Optional

import httpx

from .abstract_provider import Account, Credentials, ProviderError
from .token_cache import TokenCache, TokenStore, InMemoryTokenStore, RedisTokenStore
from .constants import (
    KIS_API_URL,
    TOKEN_PATH,
    DOMESTIC_BALANCE_PATH,
    OVERSEAS_BALANCE_PATH,
    DOMESTIC_PRICE_PATH,
    DOMESTIC_BALANCE_TR_ID,
    OVERSEAS_BALANCE_TR_ID,
    DOMESTIC_PRICE_TR_ID,
    RT_CD_SUCCESS,
    TOKEN_EXPIRED_MESSAGE,
    HTTP_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "kis"
_EQUITY_CODE = re.compile(r"^\d{6}$")


def is_token_expired_message(message: Any) -> bool:
    return isinstance(message, str) and TOKEN_EXPIRED_MESSAGE in message


def _response_json(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class KisClient:
    """
    Async KIS Open API client.

    Args:
        env: 'prod' or 'vps' (paper trading)
        token_store: Durable store backing the token cache
        http_client: Preconfigured httpx.AsyncClient (tests inject a
            MockTransport-backed client here)
        token_cache: Fully built TokenCache, overrides token_store
    """

    def __init__(
        self,
        env: str = "prod",
        token_store: Optional[TokenStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        token_cache: Optional[TokenCache] = None,
    ):
        self.env = env if env in KIS_API_URL else "prod"
        self.base_url = KIS_API_URL[self.env]
        self.http = http_client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=HTTP_TIMEOUT_SECONDS,
        )
        self.token_cache = token_cache or TokenCache(
            token_store or InMemoryTokenStore(),
            self.issue_token,
        )

    async def issue_token(self, credentials: Credentials) -> Dict[str, Any]:
        """Call the client-credentials issuance endpoint and return its payload."""
        try:
            response = await self.http.post(
                TOKEN_PATH,
                json={
                    "grant_type": "client_credentials",
                    "appkey": credentials.app_key,
                    "appsecret": credentials.app_secret,
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProviderError(
                f"Token issuance failed: {e}",
                PROVIDER_NAME,
                "TOKEN_ISSUE_FAILED",
                e
            )
        return _response_json(response)

    async def get_access_token(self, credentials: Credentials) -> str:
        return await self.token_cache.get_access_token(credentials)

    async def _headers(self, tr_id: str, credentials: Credentials) -> Dict[str, str]:
        token = await self.get_access_token(credentials)
        return {
            "content-type": "application/json; charset=utf-8",
            "authorization": f"Bearer {token}",
            "appkey": credentials.app_key,
            "appsecret": credentials.app_secret,
            "tr_id": tr_id,
            "tr_cont": "",
            "custtype": "P",
        }

    async def _get(self, path: str, tr_id: str, credentials: Credentials,
                   params: Dict[str, str]) -> Dict[str, Any]:
        """
        GET a KIS endpoint and return the JSON body.

        Raises:
            ProviderError: On transport failure or an HTTP error status. The
                rt_cd of a 2xx body is left to the caller.
        """
        headers = await self._headers(tr_id, credentials)
        try:
            response = await self.http.get(path, headers=headers, params=params)
        except httpx.HTTPError as e:
            raise ProviderError(
                f"Request to {path} failed: {e}",
                PROVIDER_NAME,
                "HTTP_ERROR",
                e
            )

        data = _response_json(response)
        expired = await self._invalidate_on_expiry(credentials, data)

        if response.status_code >= 400:
            raise ProviderError(
                f"status={response.status_code} msg={data.get('msg1', 'Unknown')} "
                f"code={data.get('rt_cd', 'Unknown')}",
                PROVIDER_NAME,
                "TOKEN_EXPIRED" if expired else "HTTP_ERROR"
            )
        return data

    async def _invalidate_on_expiry(self, credentials: Credentials, data: Dict[str, Any]) -> bool:
        """Invalidate the cached token when msg1 says it has expired."""
        msg1 = data.get("msg1")
        if not is_token_expired_message(msg1):
            return False
        logger.warning(f"[KIS Token] Provider rejected token for appKey={credentials.app_key[:4]}*** ('{msg1}')")
        await self.token_cache.invalidate(credentials.credential_key)
        return True

    @staticmethod
    def _raise_for_rt_cd(data: Dict[str, Any], context: str) -> None:
        rt_cd = str(data.get("rt_cd", ""))
        if rt_cd != RT_CD_SUCCESS:
            msg1 = data.get("msg1", "Unknown")
            raise ProviderError(
                f"{context}: {msg1} ({rt_cd})",
                PROVIDER_NAME,
                "TOKEN_EXPIRED" if is_token_expired_message(msg1) else "API_ERROR"
            )

    async def inquire_domestic_balance(self, account: Account,
                                       credentials: Credentials) -> Dict[str, Any]:
        """
        Domestic stock balance inquiry.

        Returns:
            {'output1': [holding items], 'output2': summary dict}

        Raises:
            ProviderError: Any transport failure or non-success rt_cd
        """
        data = await self._get(
            DOMESTIC_BALANCE_PATH,
            DOMESTIC_BALANCE_TR_ID[self.env],
            credentials,
            {
                "CANO": account.account_no,
                "ACNT_PRDT_CD": account.product_code,
                "AFHR_FLPR_YN": "N",
                "OFL_YN": "",
                "INQR_DVSN": "02",
                "UNPR_DVSN": "01",
                "FUND_STTL_ICLD_YN": "N",
                "FNCG_AMT_AUTO_RDPT_YN": "N",
                "PRCS_DVSN": "01",
                "CTX_AREA_FK100": "",
                "CTX_AREA_NK100": "",
            },
        )
        self._raise_for_rt_cd(data, "Domestic Balance")

        output2 = data.get("output2") or {}
        # output2 arrives as a one-element list on most product types
        if isinstance(output2, list):
            output2 = output2[0] if output2 else {}
        return {
            "output1": data.get("output1") or [],
            "output2": output2,
        }

    async def inquire_overseas_balance(self, account: Account, credentials: Credentials,
                                       exchange_code: str, currency: str) -> List[Dict[str, Any]]:
        """
        Overseas stock balance inquiry for one exchange.

        A non-success rt_cd (typically "no data to inquire") yields an empty
        list. Transport failures raise ProviderError.
        """
        data = await self._get(
            OVERSEAS_BALANCE_PATH,
            OVERSEAS_BALANCE_TR_ID[self.env],
            credentials,
            {
                "CANO": account.account_no,
                "ACNT_PRDT_CD": account.product_code,
                "OVRS_EXCG_CD": exchange_code,
                "TR_CRCY_CD": currency,
                "CTX_AREA_FK200": "",
                "CTX_AREA_NK200": "",
            },
        )
        if str(data.get("rt_cd", "")) != RT_CD_SUCCESS:
            logger.debug(f"No overseas balance on {exchange_code} for {account.account_no}: {data.get('msg1')}")
            return []
        return data.get("output1") or []

    async def get_domestic_price(self, instrument_code: str, credentials: Credentials) -> float:
        """
        Current price of a domestic equity in KRW.

        Only plain 6-digit codes (common/preferred shares, ETF/ETN) are
        supported by the quotation endpoint; other codes and any failure
        return 0.
        """
        if not _EQUITY_CODE.match(instrument_code or ""):
            logger.warning(f"[KIS Info] Skip price lookup for non-equity code: {instrument_code}")
            return 0.0

        try:
            data = await self._get(
                DOMESTIC_PRICE_PATH,
                DOMESTIC_PRICE_TR_ID,
                credentials,
                {
                    "FID_COND_MRKT_DIV_CODE": "J",
                    "FID_INPUT_ISCD": instrument_code,
                },
            )
        except ProviderError as e:
            logger.warning(f"[KIS Error] Price Fetch ({instrument_code}): {e.message}")
            return 0.0

        if str(data.get("rt_cd", "")) != RT_CD_SUCCESS:
            return 0.0
        output = data.get("output") or {}
        try:
            return float(str(output.get("stck_prpr") or "0").replace(",", ""))
        except ValueError:
            return 0.0

    async def close(self) -> None:
        await self.http.aclose()
        if isinstance(self.token_cache.store, RedisTokenStore):
            await self.token_cache.store.close()

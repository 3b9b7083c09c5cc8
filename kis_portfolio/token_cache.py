"""
KIS access token cache.

Tokens are issued per app key, persisted in a durable TokenStore (Redis in
production, in-memory for local runs and tests) and shared across concurrent
callers through a single-flight map so that a cold cache never triggers more
than one issuance request per credential key.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

import pytz
import redis.asyncio as aioredis

from .abstract_provider import Credentials, TokenRecord, ProviderError
from .constants import (
    TOKEN_EXPIRY_FORMAT,
    TOKEN_EXPIRY_TIMEZONE,
    DEFAULT_TOKEN_VALIDITY_HOURS,
    TOKEN_KEY_PREFIX,
)

logger = logging.getLogger(__name__)

TokenIssuer = Callable[[Credentials], Awaitable[Dict[str, Any]]]


def _utcnow() -> datetime:
    return datetime.now(pytz.utc)


def parse_token_expiry(value: Optional[str], now: Optional[datetime] = None) -> datetime:
    """
    Parse the provider's expiry timestamp ('2024-01-02 10:11:12', Seoul time).

    Falls back to now + 23 hours when the value is missing or malformed.
    """
    now = now or _utcnow()
    if value:
        try:
            naive = datetime.strptime(value.strip(), TOKEN_EXPIRY_FORMAT)
            return pytz.timezone(TOKEN_EXPIRY_TIMEZONE).localize(naive)
        except (ValueError, AttributeError) as e:
            logger.warning(f"Token expiration parsing failed ('{value}'), using default: {e}")
    return now + timedelta(hours=DEFAULT_TOKEN_VALIDITY_HOURS)


class TokenStore(ABC):
    """Durable key-value store for TokenRecords keyed by credential key."""

    @abstractmethod
    async def get(self, credential_key: str) -> Optional[TokenRecord]:
        pass

    @abstractmethod
    async def upsert(self, record: TokenRecord) -> None:
        """Insert or overwrite the record for record.credential_key."""
        pass

    @abstractmethod
    async def delete(self, credential_key: str) -> None:
        """Delete the record; a missing record is not an error."""
        pass


class InMemoryTokenStore(TokenStore):
    """Process-local token store."""

    def __init__(self):
        self._records: Dict[str, TokenRecord] = {}

    async def get(self, credential_key: str) -> Optional[TokenRecord]:
        return self._records.get(credential_key)

    async def upsert(self, record: TokenRecord) -> None:
        self._records[record.credential_key] = record

    async def delete(self, credential_key: str) -> None:
        self._records.pop(credential_key, None)


class RedisTokenStore(TokenStore):
    """
    Token store shared across processes through Redis.

    Each record lives under kis_token:{app_key} as JSON and carries a Redis TTL
    matching the token expiry, so stale keys clean themselves up.
    """

    def __init__(self, redis_client: Optional[aioredis.Redis] = None,
                 redis_url: str = "redis://localhost:6379/0"):
        self.redis_url = redis_url
        self.redis = redis_client

    async def connect(self) -> aioredis.Redis:
        """Connect to Redis."""
        if self.redis is None:
            self.redis = aioredis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
            logger.info(f"Token store connected to Redis at {self.redis_url}")
        return self.redis

    def _key(self, credential_key: str) -> str:
        return f"{TOKEN_KEY_PREFIX}{credential_key}"

    async def get(self, credential_key: str) -> Optional[TokenRecord]:
        client = await self.connect()
        raw = await client.get(self._key(credential_key))
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return TokenRecord(
                credential_key=credential_key,
                token=data["token"],
                expires_at=datetime.fromisoformat(data["expires_at"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable token record for {credential_key[:4]}***: {e}")
            return None

    async def upsert(self, record: TokenRecord) -> None:
        client = await self.connect()
        ttl = int((record.expires_at - _utcnow()).total_seconds())
        payload = json.dumps({
            "token": record.token,
            "expires_at": record.expires_at.isoformat(),
        })
        await client.set(self._key(record.credential_key), payload, ex=max(ttl, 1))

    async def delete(self, credential_key: str) -> None:
        client = await self.connect()
        await client.delete(self._key(credential_key))

    async def close(self) -> None:
        if self.redis is not None:
            await self.redis.close()
            self.redis = None


class SingleFlight:
    """
    Collapses concurrent calls for the same key into one underlying task.

    Callers that arrive while a task for their key is pending await that task
    instead of starting a new one. The entry is removed once the task settles,
    whether it succeeded or failed.
    """

    def __init__(self):
        self._pending: Dict[str, asyncio.Task] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._pending

    async def do(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._pending[key] = task
            task.add_done_callback(lambda done, k=key: self._forget(k, done))
        # Shield so one cancelled caller does not cancel the shared task
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]


class TokenCache:
    """
    Serves KIS access tokens with durable caching and single-flight issuance.

    Args:
        store: Durable TokenStore
        issuer: Coroutine that calls the provider's issuance endpoint and
            returns its JSON payload
        single_flight: Pending-request map; injectable so tests can observe it
    """

    def __init__(self, store: TokenStore, issuer: TokenIssuer,
                 single_flight: Optional[SingleFlight] = None):
        self.store = store
        self.issuer = issuer
        self.single_flight = single_flight or SingleFlight()

    async def get_access_token(self, credentials: Credentials) -> str:
        key = credentials.credential_key
        return await self.single_flight.do(key, lambda: self._load_or_issue(credentials))

    async def _load_or_issue(self, credentials: Credentials) -> str:
        key = credentials.credential_key
        now = _utcnow()

        record = await self.store.get(key)
        if record and record.is_valid(now):
            return record.token

        logger.info(f"Issuing new KIS access token for appKey={key[:4]}***")
        data = await self.issuer(credentials)
        token = (data or {}).get("access_token")
        if not token:
            raise ProviderError(
                "Failed to retrieve access token from KIS API",
                "kis",
                "TOKEN_ISSUE_FAILED"
            )

        expires_at = parse_token_expiry(data.get("access_token_token_expired"), now)
        await self.store.upsert(TokenRecord(credential_key=key, token=token, expires_at=expires_at))
        logger.info(f"KIS access token for appKey={key[:4]}*** valid until {expires_at.isoformat()}")
        return token

    async def invalidate(self, credential_key: str) -> None:
        """Drop the durable record so the next call re-issues."""
        try:
            await self.store.delete(credential_key)
            logger.warning(f"[KIS Token] Deleted expired token for appKey={credential_key[:4]}***")
        except Exception as e:
            logger.warning(f"[KIS Token] Failed to delete expired token for appKey={credential_key[:4]}***: {e}")


def create_token_store(kind: str = "memory", redis_url: str = "redis://localhost:6379/0") -> TokenStore:
    """Build the configured token store ('redis' or 'memory')."""
    if kind == "redis":
        return RedisTokenStore(redis_url=redis_url)
    if kind != "memory":
        logger.warning(f"Unknown token store '{kind}', using in-memory store")
    return InMemoryTokenStore()

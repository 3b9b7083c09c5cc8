"""
Tests for the KIS token cache

Verifies single-flight issuance, durable reuse, expiry parsing and
invalidation against an in-memory store, plus the Redis store encoding.
"""

import asyncio
import json
import pytest
import pytz
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

from kis_portfolio.abstract_provider import Credentials, ProviderError, TokenRecord
from kis_portfolio.token_cache import (
    InMemoryTokenStore,
    RedisTokenStore,
    SingleFlight,
    TokenCache,
    create_token_store,
    parse_token_expiry,
)

FAR_FUTURE = "2099-12-31 23:59:59"


class CountingIssuer:
    """Issuer that records calls and yields control so callers overlap"""

    def __init__(self, payload=None, delay=0.01):
        self.calls = 0
        self.payload = payload if payload is not None else {
            "access_token": "token-1",
            "access_token_token_expired": FAR_FUTURE,
        }
        self.delay = delay

    async def __call__(self, credentials):
        self.calls += 1
        await asyncio.sleep(self.delay)
        return dict(self.payload)


@pytest.fixture
def credentials():
    return Credentials(app_key="PSkey-123", app_secret="secret")


class TestTokenCache:
    """Token cache behaviour"""

    @pytest.mark.asyncio
    async def test_concurrent_cold_calls_issue_once(self, credentials):
        """N concurrent callers on a cold cache share one issuance"""
        issuer = CountingIssuer()
        cache = TokenCache(InMemoryTokenStore(), issuer)

        tokens = await asyncio.gather(*(cache.get_access_token(credentials) for _ in range(10)))

        assert issuer.calls == 1
        assert tokens == ["token-1"] * 10

    @pytest.mark.asyncio
    async def test_valid_record_is_reused(self, credentials):
        """A second call before expiry does not hit the provider"""
        issuer = CountingIssuer()
        cache = TokenCache(InMemoryTokenStore(), issuer)

        first = await cache.get_access_token(credentials)
        second = await cache.get_access_token(credentials)

        assert first == second == "token-1"
        assert issuer.calls == 1

    @pytest.mark.asyncio
    async def test_expired_record_is_reissued(self, credentials):
        store = InMemoryTokenStore()
        await store.upsert(TokenRecord(
            credential_key=credentials.credential_key,
            token="stale",
            expires_at=datetime.now(pytz.utc) - timedelta(minutes=1),
        ))
        issuer = CountingIssuer()
        cache = TokenCache(store, issuer)

        token = await cache.get_access_token(credentials)

        assert token == "token-1"
        assert issuer.calls == 1
        record = await store.get(credentials.credential_key)
        assert record.token == "token-1"

    @pytest.mark.asyncio
    async def test_different_keys_issue_separately(self):
        issuer = CountingIssuer()
        cache = TokenCache(InMemoryTokenStore(), issuer)

        await asyncio.gather(
            cache.get_access_token(Credentials("key-a", "s")),
            cache.get_access_token(Credentials("key-b", "s")),
        )

        assert issuer.calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_forces_reissue(self, credentials):
        issuer = CountingIssuer()
        store = InMemoryTokenStore()
        cache = TokenCache(store, issuer)

        await cache.get_access_token(credentials)
        await cache.invalidate(credentials.credential_key)

        assert await store.get(credentials.credential_key) is None
        await cache.get_access_token(credentials)
        assert issuer.calls == 2

    @pytest.mark.asyncio
    async def test_issuance_failure_reaches_every_caller(self, credentials):
        """Missing access_token fails all joined callers and clears the flight"""
        issuer = CountingIssuer(payload={"error_description": "denied"})
        flight = SingleFlight()
        cache = TokenCache(InMemoryTokenStore(), issuer, single_flight=flight)

        results = await asyncio.gather(
            *(cache.get_access_token(credentials) for _ in range(3)),
            return_exceptions=True,
        )

        assert issuer.calls == 1
        assert all(isinstance(r, ProviderError) for r in results)
        assert results[0].error_code == "TOKEN_ISSUE_FAILED"
        assert not flight.in_flight(credentials.credential_key)

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self, credentials):
        issuer = CountingIssuer(payload={})
        cache = TokenCache(InMemoryTokenStore(), issuer)

        with pytest.raises(ProviderError):
            await cache.get_access_token(credentials)

        issuer.payload = {"access_token": "token-2", "access_token_token_expired": FAR_FUTURE}
        assert await cache.get_access_token(credentials) == "token-2"
        assert issuer.calls == 2


class TestParseTokenExpiry:
    """Provider expiry timestamp parsing"""

    def test_parses_seoul_timestamp(self):
        expires_at = parse_token_expiry("2024-01-02 10:11:12")

        assert expires_at.tzinfo is not None
        assert expires_at.astimezone(pytz.utc) == datetime(2024, 1, 2, 1, 11, 12, tzinfo=pytz.utc)

    def test_malformed_value_falls_back_to_23_hours(self):
        now = datetime(2024, 1, 1, 0, 0, 0, tzinfo=pytz.utc)

        assert parse_token_expiry("not a date", now) == now + timedelta(hours=23)
        assert parse_token_expiry(None, now) == now + timedelta(hours=23)


class TestRedisTokenStore:
    """Redis encoding of token records"""

    @pytest.mark.asyncio
    async def test_upsert_sets_json_with_ttl(self):
        mock_redis = AsyncMock()
        store = RedisTokenStore(redis_client=mock_redis)
        expires_at = datetime.now(pytz.utc) + timedelta(hours=1)

        await store.upsert(TokenRecord("PSkey", "abc", expires_at))

        args, kwargs = mock_redis.set.call_args
        assert args[0] == "kis_token:PSkey"
        assert json.loads(args[1])["token"] == "abc"
        assert 3500 <= kwargs["ex"] <= 3600

    @pytest.mark.asyncio
    async def test_get_round_trips_record(self):
        expires_at = datetime(2099, 1, 1, tzinfo=pytz.utc)
        mock_redis = AsyncMock()
        mock_redis.get = AsyncMock(return_value=json.dumps({
            "token": "abc",
            "expires_at": expires_at.isoformat(),
        }))
        store = RedisTokenStore(redis_client=mock_redis)

        record = await store.get("PSkey")

        mock_redis.get.assert_called_once_with("kis_token:PSkey")
        assert record.token == "abc"
        assert record.expires_at == expires_at

    @pytest.mark.asyncio
    async def test_get_missing_and_corrupt_records(self):
        mock_redis = AsyncMock()
        mock_redis.get = AsyncMock(side_effect=[None, "{not json"])
        store = RedisTokenStore(redis_client=mock_redis)

        assert await store.get("PSkey") is None
        assert await store.get("PSkey") is None

    @pytest.mark.asyncio
    async def test_delete(self):
        mock_redis = AsyncMock()
        store = RedisTokenStore(redis_client=mock_redis)

        await store.delete("PSkey")

        mock_redis.delete.assert_called_once_with("kis_token:PSkey")


def test_create_token_store():
    assert isinstance(create_token_store("memory"), InMemoryTokenStore)
    assert isinstance(create_token_store("redis"), RedisTokenStore)
    assert isinstance(create_token_store("bogus"), InMemoryTokenStore)

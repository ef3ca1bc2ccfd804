import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from src.signin.core.models.session import PendingAuthState
from src.signin.core.storage.session_storage import (
    InMemorySessionStorage,
    RedisSessionStorage,
    StorageError,
    _detect_redis_availability,
)
from src.signin.runtime.config.config_data import AppConfig, ConfigData, RedisConfig
from src.signin.runtime.context import with_context


def _pending(token: str = "tok") -> PendingAuthState:
    return PendingAuthState.create(
        token=token, tenant_hint="acme", nonce="n", provider="slack", ttl_seconds=60
    )


class TestInMemorySessionStorage:
    @pytest.mark.asyncio
    async def test_set_get_delete(self):
        storage = InMemorySessionStorage()
        await storage.set("state:a", _pending("a"), 60)

        loaded = await storage.get("state:a", PendingAuthState)
        assert loaded is not None and loaded.token == "a"
        assert await storage.exists("state:a")

        await storage.delete("state:a")
        assert await storage.get("state:a", PendingAuthState) is None

    @pytest.mark.asyncio
    async def test_expired_entries_are_invisible(self):
        storage = InMemorySessionStorage()
        await storage.set("state:a", _pending("a"), 1)
        storage._data["state:a"]["expires_at"] = 0

        assert await storage.get("state:a", PendingAuthState) is None
        assert not await storage.exists("state:a")

    @pytest.mark.asyncio
    async def test_consume_flips_once(self):
        storage = InMemorySessionStorage()
        await storage.set("state:a", _pending("a"), 60)

        first, flipped_first = await storage.consume("state:a", PendingAuthState)
        second, flipped_second = await storage.consume("state:a", PendingAuthState)

        assert flipped_first is True and first.consumed is False
        assert flipped_second is False and second.consumed is True

    @pytest.mark.asyncio
    async def test_consume_missing_key(self):
        storage = InMemorySessionStorage()
        assert await storage.consume("state:none", PendingAuthState) == (None, False)

    @pytest.mark.asyncio
    async def test_concurrent_consume_has_one_winner(self):
        storage = InMemorySessionStorage()
        await storage.set("state:a", _pending("a"), 60)

        results = await asyncio.gather(
            *(storage.consume("state:a", PendingAuthState) for _ in range(25))
        )

        assert sum(1 for _, flipped in results if flipped) == 1

    @pytest.mark.asyncio
    async def test_cleanup_and_list_keys(self):
        storage = InMemorySessionStorage()
        await storage.set("state:live", _pending("live"), 60)
        await storage.set("state:old", _pending("old"), 60)
        await storage.set("session:x", _pending("x"), 60)
        storage._data["state:old"]["expires_at"] = 0

        assert await storage.list_keys("state:*") == ["state:live"]
        assert await storage.cleanup_expired() == 0  # already dropped by list_keys
        assert len(await storage.list_records("state:*", PendingAuthState)) == 1


class TestRedisSessionStorage:
    @pytest.mark.asyncio
    async def test_consume_uses_atomic_script(self):
        raw = _pending("a").model_dump_json()
        client = AsyncMock()
        client.eval.return_value = [1, raw.encode()]
        storage = RedisSessionStorage(client)

        pending, flipped = await storage.consume("state:a", PendingAuthState)

        assert flipped is True
        assert pending.token == "a"
        script, numkeys, key, flag = client.eval.call_args.args
        assert "KEEPTTL" in script
        assert (numkeys, key, flag) == (1, "state:a", "consumed")

    @pytest.mark.asyncio
    async def test_consume_reports_already_consumed(self):
        record = json.loads(_pending("a").model_dump_json())
        record["consumed"] = True
        client = AsyncMock()
        client.eval.return_value = [0, json.dumps(record)]

        pending, flipped = await RedisSessionStorage(client).consume("state:a", PendingAuthState)

        assert flipped is False
        assert pending.consumed is True

    @pytest.mark.asyncio
    async def test_consume_missing_key(self):
        client = AsyncMock()
        client.eval.return_value = None
        assert await RedisSessionStorage(client).consume("k", PendingAuthState) == (None, False)

    @pytest.mark.asyncio
    async def test_errors_are_wrapped(self):
        client = AsyncMock()
        client.setex.side_effect = ConnectionError("down")
        with pytest.raises(StorageError):
            await RedisSessionStorage(client).set("k", _pending(), 60)

    @pytest.mark.asyncio
    async def test_set_uses_ttl(self):
        client = AsyncMock()
        await RedisSessionStorage(client).set("k", _pending(), 120)
        key, ttl, _ = client.setex.call_args.args
        assert (key, ttl) == ("k", 120)


class TestStorageSelection:
    @pytest.mark.asyncio
    async def test_in_memory_when_redis_disabled(self):
        storage = await _detect_redis_availability()
        assert isinstance(storage, InMemorySessionStorage)

    @pytest.mark.asyncio
    async def test_unreachable_redis_is_fatal_in_production(self, monkeypatch):
        async def _ping_fails(self):
            return False

        monkeypatch.setattr(RedisSessionStorage, "ping", _ping_fails)
        override = ConfigData(
            redis=RedisConfig(enabled=True, url="redis://unreachable:6379/0"),
            app=AppConfig(environment="production"),
        )
        with with_context(config_override=override):
            with pytest.raises(StorageError):
                await _detect_redis_availability()

    @pytest.mark.asyncio
    async def test_unreachable_redis_falls_back_in_development(self, monkeypatch):
        async def _ping_fails(self):
            return False

        monkeypatch.setattr(RedisSessionStorage, "ping", _ping_fails)
        override = ConfigData(redis=RedisConfig(enabled=True, url="redis://unreachable:6379/0"))
        with with_context(config_override=override):
            storage = await _detect_redis_availability()
        assert isinstance(storage, InMemorySessionStorage)

# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_firebase

import time
from unittest.mock import patch

import anyio
import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from coreason_firebase.api import MemoryAuthAPI
from coreason_firebase.exceptions import PublicKeyFetchError, UnknownKeyIdError
from coreason_firebase.key_cache import KeyCache
from coreason_firebase.models import PublicKeySet


class FlakyKeysAPI(MemoryAuthAPI):
    def __init__(self, keys: dict[str, str]) -> None:
        super().__init__(keys=keys)
        self.fail = False

    async def fetch_public_keys(self) -> PublicKeySet:
        self.fetch_calls += 1
        if self.fail:
            raise PublicKeyFetchError("endpoint down", status_code=503, retryable=True)
        await anyio.sleep(0.01)
        return PublicKeySet(keys=dict(self.keys), expires_at=time.time() + self.keys_ttl)


@pytest.fixture
def api() -> MemoryAuthAPI:
    return MemoryAuthAPI(keys={"kid-a": "PEM-A", "kid-b": "PEM-B"})


@pytest.fixture
def cache(api: MemoryAuthAPI) -> KeyCache:
    return KeyCache(api)


@pytest.mark.asyncio
async def test_get_key_fetches_on_first_use(cache: KeyCache, api: MemoryAuthAPI) -> None:
    assert await cache.get_key("kid-a") == "PEM-A"
    assert api.fetch_calls == 1


@pytest.mark.asyncio
async def test_get_key_cache_hit(cache: KeyCache, api: MemoryAuthAPI) -> None:
    await cache.get_key("kid-a")
    assert await cache.get_key("kid-b") == "PEM-B"
    assert await cache.get_key("kid-a") == "PEM-A"
    assert api.fetch_calls == 1


@pytest.mark.asyncio
async def test_stale_set_triggers_exactly_one_refresh(cache: KeyCache, api: MemoryAuthAPI) -> None:
    cache._key_set = PublicKeySet(keys={"kid-a": "OLD-PEM"}, expires_at=time.time() - 1)
    cache._last_refresh = time.time() - 3600

    assert await cache.get_key("kid-a") == "PEM-A"
    assert api.fetch_calls == 1
    assert await cache.get_key("kid-a") == "PEM-A"
    assert api.fetch_calls == 1


@pytest.mark.asyncio
async def test_unknown_key_after_refresh(cache: KeyCache, api: MemoryAuthAPI) -> None:
    with pytest.raises(UnknownKeyIdError) as exc_info:
        await cache.get_key("retired-kid")

    assert exc_info.value.key_id == "retired-kid"
    assert exc_info.value.reason == "unknown_key_id"
    assert api.fetch_calls == 1


@pytest.mark.asyncio
async def test_unknown_key_refreshes_valid_set_once_after_cooldown(api: MemoryAuthAPI) -> None:
    """A rotated-in key missing from a valid set is picked up by one refetch."""
    cache = KeyCache(api, refresh_cooldown=0)
    cache._key_set = PublicKeySet(keys={"kid-a": "PEM-A"}, expires_at=time.time() + 3600)

    assert await cache.get_key("kid-b") == "PEM-B"
    assert api.fetch_calls == 1


@pytest.mark.asyncio
async def test_unknown_key_during_cooldown_does_not_refetch(cache: KeyCache, api: MemoryAuthAPI) -> None:
    await cache.get_key("kid-a")

    for _ in range(5):
        with pytest.raises(UnknownKeyIdError):
            await cache.get_key("forged-kid")

    assert api.fetch_calls == 1


@pytest.mark.asyncio
async def test_concurrent_lookups_share_one_refresh() -> None:
    api = FlakyKeysAPI({"kid-a": "PEM-A"})
    cache = KeyCache(api)
    results: list[str] = []

    async def worker() -> None:
        results.append(await cache.get_key("kid-a"))

    async with anyio.create_task_group() as tg:
        for _ in range(10):
            tg.start_soon(worker)

    assert results == ["PEM-A"] * 10
    assert api.fetch_calls == 1


@pytest.mark.asyncio
async def test_failed_refresh_keeps_previous_set() -> None:
    api = FlakyKeysAPI({"kid-a": "PEM-A"})
    cache = KeyCache(api)
    stale = PublicKeySet(keys={"kid-a": "OLD-PEM"}, expires_at=time.time() - 1)
    cache._key_set = stale
    api.fail = True

    with pytest.raises(PublicKeyFetchError):
        await cache.get_key("kid-a")

    assert cache._key_set is stale

    api.fail = False
    assert await cache.get_key("kid-a") == "PEM-A"


@pytest.mark.asyncio
async def test_get_all_keys_returns_copy(cache: KeyCache, api: MemoryAuthAPI) -> None:
    keys = await cache.get_all_keys()
    assert keys == {"kid-a": "PEM-A", "kid-b": "PEM-B"}

    keys["kid-c"] = "PEM-C"
    assert await cache.get_all_keys() == {"kid-a": "PEM-A", "kid-b": "PEM-B"}
    assert api.fetch_calls == 1


@pytest.mark.asyncio
async def test_get_all_keys_refreshes_when_expired(api: MemoryAuthAPI) -> None:
    api.keys_ttl = 0
    cache = KeyCache(api)

    await cache.get_all_keys()
    await cache.get_all_keys()
    assert api.fetch_calls == 2


@pytest.mark.asyncio
async def test_forced_refresh_respects_cooldown(cache: KeyCache, api: MemoryAuthAPI) -> None:
    await cache.refresh()
    api.keys = {"kid-z": "PEM-Z"}

    assert await cache.refresh() == {"kid-a": "PEM-A", "kid-b": "PEM-B"}
    assert api.fetch_calls == 1

    cache._last_refresh = time.time() - 60
    assert await cache.refresh() == {"kid-z": "PEM-Z"}
    assert api.fetch_calls == 2


@pytest.mark.asyncio
async def test_refresh_failure_span_records_reason() -> None:
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    api = FlakyKeysAPI({"kid-a": "PEM-A"})
    api.fail = True
    cache = KeyCache(api)

    with patch("coreason_firebase.key_cache.tracer", provider.get_tracer("test")):
        with pytest.raises(PublicKeyFetchError):
            await cache.get_key("kid-a")

    span = exporter.get_finished_spans()[0]
    assert span.name == "refresh_public_keys"
    assert span.status.status_code == StatusCode.ERROR
    assert span.status.description == "public_key_fetch_failed"
    assert len([event for event in span.events if event.name == "exception"]) == 1

import asyncio

import pytest

from cache.core import CacheStore
from cache.invalidation import CacheInvalidator
from cache.storage import MemoryStorage
from tests.helpers import FakeClock


@pytest.fixture
def loop():
    """Fresh event loop driven with run_until_complete."""
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(clock, storage):
    return CacheStore(max_size=100, default_ttl=30.0, storage=storage, clock=clock)


@pytest.fixture
def invalidator(store):
    return CacheInvalidator(store)

import asyncio
import json
from unittest.mock import AsyncMock, Mock

import pytest
import redis

from cache.core import CacheStore
from cache.monitoring import CacheMonitor
from cache.storage import JsonFileStorage, MemoryStorage, RedisStorage, StorageError
from tests.helpers import FakeClock

SNAPSHOT = {"balance:0xabc": {"data": "1.5", "inserted_at": 1.0, "ttl": 15.0}}


def test_memory_storage_round_trip():
    storage = MemoryStorage()
    assert storage.load() == {}
    storage.save(SNAPSHOT)
    assert storage.load() == SNAPSHOT


def test_file_storage_nests_under_key(tmp_path):
    path = tmp_path / "nested" / "cache.json"
    storage = JsonFileStorage(path, storage_key="zpool_persistent_cache")

    assert storage.load() == {}
    storage.save(SNAPSHOT)

    assert json.loads(path.read_text()) == {"zpool_persistent_cache": SNAPSHOT}
    assert storage.load() == SNAPSHOT
    assert [p.name for p in path.parent.iterdir()] == ["cache.json"]


def test_file_storage_other_key(tmp_path):
    path = tmp_path / "cache.json"
    JsonFileStorage(path, storage_key="first").save(SNAPSHOT)
    assert JsonFileStorage(path, storage_key="second").load() == {}


def test_file_storage_corrupt(tmp_path):
    path = tmp_path / "cache.json"
    path.write_text("[1, 2")
    with pytest.raises(StorageError):
        JsonFileStorage(path).load()


def test_file_storage_write_failure(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    storage = JsonFileStorage(blocker / "cache.json")
    with pytest.raises(StorageError):
        storage.save(SNAPSHOT)


def test_store_survives_restart_on_disk(tmp_path):
    clock = FakeClock()
    path = tmp_path / "cache.json"
    first = CacheStore(storage=JsonFileStorage(path), clock=clock)
    first.set("contract-exists:0xabc", True, ttl=300)

    clock.advance(100)
    second = CacheStore(storage=JsonFileStorage(path), clock=clock)
    assert second.get("contract-exists:0xabc") is True


def test_redis_storage():
    client = Mock()
    client.get.return_value = json.dumps(SNAPSHOT)
    storage = RedisStorage(client=client, storage_key="zpool")

    assert storage.load() == SNAPSHOT
    client.get.assert_called_once_with("zpool")

    storage.save({})
    client.set.assert_called_once_with("zpool", "{}")


def test_redis_storage_missing_key():
    client = Mock()
    client.get.return_value = None
    assert RedisStorage(client=client).load() == {}


def test_redis_errors_become_storage_errors():
    client = Mock()
    client.get.side_effect = redis.ConnectionError("refused")
    client.set.side_effect = redis.ConnectionError("refused")
    storage = RedisStorage(client=client)

    with pytest.raises(StorageError):
        storage.load()
    with pytest.raises(StorageError):
        storage.save(SNAPSHOT)


def test_unserializable_snapshot():
    with pytest.raises(StorageError):
        MemoryStorage().save({"key": {"data": object(), "inserted_at": 1.0, "ttl": 1.0}})


def redis_storage():
    client = Mock()
    client.get.return_value = None
    async_client = Mock()
    async_client.set = AsyncMock()
    async_client.aclose = AsyncMock()
    return RedisStorage(client=client, async_client=async_client, storage_key="zpool")


def test_redis_writes_are_deferred_inside_the_loop(loop):
    storage = redis_storage()
    store = CacheStore(storage=storage, clock=FakeClock())

    async def burst():
        store.set("balance:0xabc", "1")
        store.set("balance:0xdef", "2")
        store.delete("balance:0xabc")
        assert not storage.async_client.set.called
        await store.flush()

    loop.run_until_complete(burst())

    assert not storage.client.set.called
    storage.async_client.set.assert_awaited_once()
    key, payload = storage.async_client.set.call_args.args
    assert key == "zpool"
    assert list(json.loads(payload)) == ["balance:0xdef"]


def test_redis_mutation_during_save_is_written_next(loop):
    storage = redis_storage()
    store = CacheStore(storage=storage, clock=FakeClock())

    async def slow_set(key, payload):
        await asyncio.sleep(0.01)

    storage.async_client.set.side_effect = slow_set

    async def overlapping():
        store.set("first", 1)
        await asyncio.sleep(0.005)
        store.set("second", 2)
        await store.flush()

    loop.run_until_complete(overlapping())

    assert storage.async_client.set.await_count == 2
    last_payload = storage.async_client.set.call_args.args[1]
    assert sorted(json.loads(last_payload)) == ["first", "second"]


def test_redis_writes_outside_a_loop_are_synchronous():
    storage = redis_storage()
    store = CacheStore(storage=storage, clock=FakeClock())

    store.set("contract-exists:0xabc", True)

    storage.client.set.assert_called_once()
    assert not storage.async_client.set.called


def test_redis_async_failure_is_logged_not_raised(loop):
    storage = redis_storage()
    storage.async_client.set.side_effect = redis.ConnectionError("refused")
    monitor = Mock(spec=CacheMonitor)
    store = CacheStore(storage=storage, clock=FakeClock(), monitor=monitor)

    async def write():
        store.set("key", "value")
        await store.flush()

    loop.run_until_complete(write())

    assert store.get("key") == "value"
    monitor.record_persist_failure.assert_called_once_with("set")


def test_store_close_flushes_and_releases_redis(loop):
    storage = redis_storage()
    store = CacheStore(storage=storage, clock=FakeClock())
    async_client = storage.async_client

    async def write_and_close():
        store.set("key", "value")
        await store.close()

    loop.run_until_complete(write_and_close())

    async_client.set.assert_awaited_once()
    async_client.aclose.assert_awaited_once()


def test_file_storage_keeps_sibling_documents(tmp_path):
    path = tmp_path / "cache.json"
    path.write_text(json.dumps({"other_app": {"k": {"data": 1, "inserted_at": 1.0, "ttl": 1.0}}}))

    JsonFileStorage(path, storage_key="zpool_persistent_cache").save(SNAPSHOT)

    document = json.loads(path.read_text())
    assert document["zpool_persistent_cache"] == SNAPSHOT
    assert document["other_app"] == {"k": {"data": 1, "inserted_at": 1.0, "ttl": 1.0}}


def test_file_storage_replaces_corrupt_document(tmp_path):
    path = tmp_path / "cache.json"
    path.write_text("[1, 2")
    storage = JsonFileStorage(path)

    storage.save(SNAPSHOT)
    assert storage.load() == SNAPSHOT

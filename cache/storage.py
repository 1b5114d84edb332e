"""
Durable storage for the cache store.

The whole cache is kept as one serialized JSON document under a fixed
storage key. It is read once when the store is built and rewritten
wholesale after mutations. Backends that talk to the network also offer
an awaitable save, which the store uses from inside the event loop.
"""
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Union

import redis
import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger()

Snapshot = Dict[str, Dict[str, Any]]


class StorageError(Exception):
    """Raised when the durable snapshot cannot be read or written."""


class CacheStorage:
    """Interface of a durable snapshot backend."""

    storage_key: str
    # True when save_async does not block the event loop
    supports_async = False

    def load(self) -> Snapshot:
        raise NotImplementedError

    def save(self, snapshot: Snapshot) -> None:
        raise NotImplementedError

    async def save_async(self, snapshot: Snapshot) -> None:
        self.save(snapshot)

    async def close(self) -> None:
        pass


def _decode(raw: Union[str, bytes, None], source: str) -> Snapshot:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise StorageError(f"Corrupt cache snapshot in {source}: {e}") from e
    if not isinstance(data, dict):
        raise StorageError(f"Cache snapshot in {source} is not an object")
    return data


def _encode(snapshot: Snapshot) -> str:
    try:
        return json.dumps(snapshot, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise StorageError(f"Cache snapshot is not serializable: {e}") from e


class MemoryStorage(CacheStorage):
    """Keeps the serialized document in process memory."""

    def __init__(self, storage_key: str = "zpool_persistent_cache"):
        self.storage_key = storage_key
        self.document: Optional[str] = None

    def load(self) -> Snapshot:
        return _decode(self.document, "memory")

    def save(self, snapshot: Snapshot) -> None:
        self.document = _encode(snapshot)


class JsonFileStorage(CacheStorage):
    """
    Stores the document as a JSON file, replaced atomically on save.

    The file maps storage keys to snapshots, so several stores can share
    one file; saving rewrites only this store's document.
    """

    def __init__(self, path: Union[str, Path], storage_key: str = "zpool_persistent_cache"):
        self.path = Path(path)
        self.storage_key = storage_key

    def _read_document(self) -> Dict[str, Any]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StorageError(f"Failed to read {self.path}: {e}") from e
        return _decode(raw, str(self.path))

    def load(self) -> Snapshot:
        snapshot = self._read_document().get(self.storage_key)
        return snapshot if isinstance(snapshot, dict) else {}

    def save(self, snapshot: Snapshot) -> None:
        try:
            document = self._read_document()
        except StorageError as e:
            logger.warning("cache_file_replaced", path=str(self.path), error=str(e))
            document = {}
        document[self.storage_key] = snapshot
        payload = _encode(document)

        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(directory), prefix=".cache-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StorageError(f"Failed to write {self.path}: {e}") from e


class RedisStorage(CacheStorage):
    """
    Stores the document as a single redis string value.

    Startup loads and saves made outside an event loop go through the
    blocking client; saves issued by a running store go through
    ``redis.asyncio`` so the loop is never held for a round-trip.
    """

    supports_async = True

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        redis_url: str = "redis://localhost:6379/0",
        storage_key: str = "zpool_persistent_cache",
        async_client: Optional[aioredis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.client = client or redis.Redis.from_url(redis_url, decode_responses=True)
        self._async_client = async_client
        self.storage_key = storage_key

    @property
    def async_client(self) -> aioredis.Redis:
        if self._async_client is None:
            self._async_client = aioredis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
        return self._async_client

    def load(self) -> Snapshot:
        try:
            raw = self.client.get(self.storage_key)
        except redis.RedisError as e:
            raise StorageError(f"Failed to read redis key {self.storage_key}: {e}") from e
        return _decode(raw, f"redis:{self.storage_key}")

    def save(self, snapshot: Snapshot) -> None:
        payload = _encode(snapshot)
        try:
            self.client.set(self.storage_key, payload)
        except redis.RedisError as e:
            raise StorageError(f"Failed to write redis key {self.storage_key}: {e}") from e

    async def save_async(self, snapshot: Snapshot) -> None:
        payload = _encode(snapshot)
        try:
            await self.async_client.set(self.storage_key, payload)
        except redis.RedisError as e:
            raise StorageError(f"Failed to write redis key {self.storage_key}: {e}") from e

    async def close(self) -> None:
        client, self._async_client = self._async_client, None
        if client is not None:
            await client.aclose()
            logger.info("redis_connection_closed")


def create_storage(settings) -> CacheStorage:
    """Build the storage backend selected in settings."""
    backend = settings.storage_backend
    if backend == "file":
        return JsonFileStorage(settings.storage_path, storage_key=settings.storage_key)
    if backend == "redis":
        return RedisStorage(redis_url=settings.redis_url, storage_key=settings.storage_key)
    if backend == "memory":
        return MemoryStorage(storage_key=settings.storage_key)
    raise ValueError(f"Unknown storage backend: {backend}")

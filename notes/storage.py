"""Key-value persistence for notes and editor state.

Two interchangeable backends share one async contract:

* ``get(key, default)`` returns the stored JSON value, or ``default`` when the
  key is absent or the read fails.
* ``set(key, value)`` returns ``True`` on success and ``False`` on failure.
  Failures are logged, never raised.

Every key is namespaced as ``<namespace>_<key>``.
"""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any, Optional, Protocol

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "app1"


class KeyValueStore(Protocol):
    """Blind get/set storage used by the note manager and editor."""

    async def get(self, key: str, default: Any = None) -> Any: ...

    async def set(self, key: str, value: Any) -> bool: ...


def _namespaced(namespace: str, key: str) -> str:
    return f"{namespace}_{key}"


class JsonFileStore:
    """Stores every key in a single local JSON document."""

    def __init__(self, path: Path, namespace: str = DEFAULT_NAMESPACE) -> None:
        self._path = Path(path)
        self._namespace = namespace
        self._data: dict[str, Any] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, Any]:
        """Read the document from disk once. Corrupt files start fresh."""
        if self._data is not None:
            return self._data

        self._data = {}
        if self._path.exists():
            try:
                raw = json.loads(self._path.read_text(encoding="utf-8"))
                if isinstance(raw, dict):
                    self._data = raw
                    logger.info("Loaded %d keys from %s", len(raw), self._path)
                else:
                    logger.error("Store file %s is not an object, starting fresh", self._path)
            except (OSError, json.JSONDecodeError) as exc:
                logger.error("Failed to load store %s: %s, starting fresh", self._path, exc)
        else:
            logger.info("No store file found at %s, starting fresh", self._path)
        return self._data

    async def get(self, key: str, default: Any = None) -> Any:
        data = self._load()
        full_key = _namespaced(self._namespace, key)
        if full_key not in data:
            return default
        return copy.deepcopy(data[full_key])

    async def set(self, key: str, value: Any) -> bool:
        data = self._load()
        candidate = dict(data)
        candidate[_namespaced(self._namespace, key)] = copy.deepcopy(value)
        try:
            payload = json.dumps(candidate, indent=2)
            self._path.write_text(payload, encoding="utf-8")
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Storage save failed for %s: %s", key, exc)
            return False
        self._data = candidate
        return True


class RedisStore:
    """Async Redis-backed store. Degrades gracefully when Redis is down."""

    def __init__(self, redis_url: str, namespace: str = DEFAULT_NAMESPACE) -> None:
        self._redis_url = redis_url
        self._namespace = namespace
        self._client: Optional[aioredis.Redis] = None

    @property
    def available(self) -> bool:
        """Whether the Redis connection is active."""
        return self._client is not None

    async def connect(self) -> None:
        """Connect to Redis. Non-fatal if Redis is unavailable."""
        try:
            self._client = aioredis.from_url(self._redis_url, decode_responses=True)
            await self._client.ping()
            logger.info("Redis store connected: %s", self._redis_url)
        except Exception as e:
            logger.warning("Redis unavailable, persistence disabled: %s", e)
            self._client = None

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get(self, key: str, default: Any = None) -> Any:
        if not self._client:
            return default

        try:
            raw = await self._client.get(_namespaced(self._namespace, key))
        except Exception as e:
            logger.warning("Redis get failed for %s: %s", key, e)
            return default

        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("Storage load failed for %s: %s", key, e)
            return default

    async def set(self, key: str, value: Any) -> bool:
        if not self._client:
            logger.warning("Redis store not connected, dropping write for %s", key)
            return False

        try:
            await self._client.set(_namespaced(self._namespace, key), json.dumps(value))
        except Exception as e:
            logger.warning("Redis set failed for %s: %s", key, e)
            return False
        return True


def build_store(backend: str, *, storage_path: Path, redis_url: str, namespace: str) -> KeyValueStore:
    """Create the store selected by configuration."""
    if backend == "json":
        return JsonFileStore(storage_path, namespace=namespace)
    if backend == "redis":
        return RedisStore(redis_url, namespace=namespace)
    raise ValueError(f"Unknown store backend: {backend!r}")

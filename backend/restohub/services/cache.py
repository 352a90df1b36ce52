"""
Redis cache

Key/value cache with per-key TTL used by the tier limit engine. Every
failure (connection down, timeout, serialization) is logged and reported
as a miss; no method raises.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import redis

from restohub.core.config import settings
from restohub.core.logging_setup import logger


class RedisCache:
    """Degrade-safe cache with an explicit lifecycle.

    Created once per application (see ``restohub.main.lifespan``) and
    injected wherever it is needed. Without a URL or client the cache is
    disabled and every read is a miss.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        default_ttl: Optional[int] = None,
    ) -> None:
        self.url = url
        self.default_ttl = default_ttl if default_ttl is not None else settings.cache_default_ttl_seconds
        self._client: Optional[redis.Redis] = client
        self._available = False

        if self._client is None and self.url:
            self._connect()
        elif self._client is not None:
            self._available = self._ping()

    @classmethod
    def from_settings(cls) -> "RedisCache":
        return cls(url=settings.redis_url)

    def _connect(self) -> None:
        try:
            self._client = redis.Redis.from_url(
                self.url,
                decode_responses=True,
                socket_connect_timeout=settings.cache_socket_timeout_seconds,
                socket_timeout=settings.cache_socket_timeout_seconds,
            )
            self._client.ping()
            self._available = True
            logger.info("[cache] Redis connected")
        except Exception as exc:  # noqa: BLE001
            logger.warning("[cache] Redis unavailable, caching disabled: %s", exc)
            self._available = False

    def _ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except Exception as exc:  # noqa: BLE001
            logger.warning("[cache] Redis ping failed: %s", exc)
            return False

    def is_available(self) -> bool:
        if self._client is None:
            return False
        if not self._available:
            # Reconnect lazily after an outage
            self._available = self._ping()
        return self._available

    def get(self, key: str) -> Any | None:
        if not self.is_available():
            return None
        try:
            raw = self._client.get(key)
        except Exception as exc:  # noqa: BLE001
            self._available = False
            logger.warning("[cache] get failed for %s: %s", key, exc)
            return None
        if raw is None:
            logger.debug("[cache] miss: %s", key)
            return None
        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("[cache] could not deserialize %s: %s", key, exc)
            return None
        logger.debug("[cache] hit: %s", key)
        return value

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        if not self.is_available():
            return False
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as exc:
            logger.warning("[cache] could not serialize %s: %s", key, exc)
            return False
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        try:
            self._client.setex(key, ttl, payload)
        except Exception as exc:  # noqa: BLE001
            self._available = False
            logger.warning("[cache] set failed for %s: %s", key, exc)
            return False
        logger.debug("[cache] set: %s (ttl=%ss)", key, ttl)
        return True

    def delete(self, key: str) -> bool:
        if not self.is_available():
            return False
        try:
            self._client.delete(key)
        except Exception as exc:  # noqa: BLE001
            self._available = False
            logger.warning("[cache] delete failed for %s: %s", key, exc)
            return False
        return True

    def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key matching the glob ``pattern``; returns the count."""
        if not self.is_available():
            return 0
        try:
            keys = list(self._client.scan_iter(match=pattern, count=100))
            if keys:
                self._client.delete(*keys)
        except Exception as exc:  # noqa: BLE001
            self._available = False
            logger.warning("[cache] invalidate failed for %s: %s", pattern, exc)
            return 0
        logger.debug("[cache] invalidated %s keys for %s", len(keys), pattern)
        return len(keys)

    def close(self) -> None:
        if self._client is None:
            return
        try:
            self._client.close()
        except Exception as exc:  # noqa: BLE001
            logger.warning("[cache] close failed: %s", exc)
        finally:
            self._client = None
            self._available = False

"""TTL cache for enrichment results and provider health probes.

Entries are stored as JSON ``CacheEntry`` envelopes with an explicit
``expires_at``. Backend errors are logged and reported as misses or ``False``;
they never reach the caller.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Iterable

from leadenrich.config import settings
from leadenrich.errors import CacheFailure
from leadenrich.schemas import CacheEntry, utcnow

logger = logging.getLogger(__name__)

ENRICHMENT_PREFIX = "enrichment:"


def enrichment_key(lead_id) -> str:
    return f"{ENRICHMENT_PREFIX}{lead_id}"


class CacheBackend(ABC):
    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the raw stored value or None."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store ``value`` and let the backend expire it after ``ttl_seconds``."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove a key; True when something was removed."""

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """Live keys starting with ``prefix``."""

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Seconds left, -2 when the key does not exist."""

    @abstractmethod
    async def expire(self, key: str, ttl_seconds: int) -> bool:
        """Reset the expiry of an existing key."""


class InMemoryCacheBackend(CacheBackend):
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._values: dict[str, tuple[str, float]] = {}

    def _live(self, key: str) -> tuple[str, float] | None:
        item = self._values.get(key)
        if item is None:
            return None
        if item[1] <= self._clock():
            self._values.pop(key, None)
            return None
        return item

    async def get(self, key: str) -> str | None:
        item = self._live(key)
        return item[0] if item else None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._values[key] = (value, self._clock() + max(1, int(ttl_seconds)))

    async def delete(self, key: str) -> bool:
        return self._values.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> list[str]:
        return [k for k in list(self._values) if k.startswith(prefix) and self._live(k)]

    async def ttl(self, key: str) -> int:
        item = self._live(key)
        return int(item[1] - self._clock()) if item else -2

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        item = self._live(key)
        if item is None:
            return False
        self._values[key] = (item[0], self._clock() + max(1, int(ttl_seconds)))
        return True


class CacheLayer:
    def __init__(
        self,
        backend: CacheBackend | None = None,
        default_ttl: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.backend = backend or InMemoryCacheBackend()
        self.default_ttl = default_ttl or settings.ENRICHMENT_CACHE_TTL_SECONDS
        self._clock = clock
        self.hits = 0
        self.misses = 0
        self.errors = 0

    def _error(self, op: str, key: str, exc: Exception) -> None:
        self.errors += 1
        failure = exc if isinstance(exc, CacheFailure) else CacheFailure(str(exc))
        logger.error("cache.%s_error" % op, extra={"key": key, "error": str(failure)})

    async def get(self, key: str) -> Any:
        try:
            raw = await self.backend.get(key)
            if raw is None:
                self.misses += 1
                return None
            entry = CacheEntry.from_dict(json.loads(raw))
            if entry.is_expired(self._clock()):
                await self.backend.delete(key)
                self.misses += 1
                return None
        except Exception as exc:
            self._error("get", key, exc)
            self.misses += 1
            return None
        self.hits += 1
        return entry.data

    async def set_with_expiration(self, key: str, data: Any, expires_at: datetime) -> bool:
        now = self._clock()
        entry = CacheEntry(key=key, data=data, created_at=now, expires_at=expires_at)
        ttl = max(1, int((expires_at - now).total_seconds()))
        try:
            await self.backend.set(key, json.dumps(entry.to_dict(), default=str), ttl)
        except Exception as exc:
            self._error("set", key, exc)
            return False
        return True

    async def set(self, key: str, data: Any, ttl: int | None = None) -> bool:
        ttl = ttl or self.default_ttl
        return await self.set_with_expiration(key, data, self._clock() + timedelta(seconds=ttl))

    async def delete(self, key: str) -> bool:
        try:
            return await self.backend.delete(key)
        except Exception as exc:
            self._error("delete", key, exc)
            return False

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def mget(self, keys: Iterable[str]) -> dict[str, Any]:
        return {key: await self.get(key) for key in keys}

    async def mset(self, entries: dict[str, Any], ttl: int | None = None) -> bool:
        results = [await self.set(key, value, ttl) for key, value in entries.items()]
        return all(results)

    async def get_ttl(self, key: str) -> int:
        try:
            return await self.backend.ttl(key)
        except Exception as exc:
            self._error("ttl", key, exc)
            return -2

    async def extend_ttl(self, key: str, ttl: int) -> bool:
        data = await self.get(key)
        if data is None:
            return False
        return await self.set(key, data, ttl)

    async def keys(self, prefix: str = ENRICHMENT_PREFIX) -> list[str]:
        try:
            return await self.backend.keys(prefix)
        except Exception as exc:
            self._error("keys", prefix, exc)
            return []

    async def clear_prefix(self, prefix: str = ENRICHMENT_PREFIX) -> int:
        removed = 0
        for key in await self.keys(prefix):
            if await self.delete(key):
                removed += 1
        return removed

    async def warm(self, leads: Iterable) -> bool:
        entries = {enrichment_key(lead.id): lead.enrichment_data for lead in leads if lead.enrichment_data}
        return await self.mset(entries) if entries else True

    async def get_with_fallback(
        self,
        key: str,
        fallback: Callable[[], Awaitable[Any]],
        ttl: int | None = None,
    ) -> dict:
        cached = await self.get(key)
        if cached is not None:
            return {"data": cached, "source": "cache"}

        try:
            data = await fallback()
        except Exception as exc:
            logger.warning("cache.fallback_failed", extra={"key": key, "error": str(exc)})
            # One retry; whatever it returns is not cached.
            try:
                data = await fallback()
            except Exception as retry_exc:
                logger.error("cache.fallback_retry_failed", extra={"key": key, "error": str(retry_exc)})
                return {"data": None, "source": "error", "error": str(retry_exc)}
            return {"data": data, "source": "database" if data is not None else "none"}

        if data is None:
            return {"data": None, "source": "none"}
        await self.set(key, data, ttl)
        return {"data": data, "source": "database"}

    async def get_stats(self) -> dict:
        lookups = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
            "enrichment_keys": len(await self.keys(ENRICHMENT_PREFIX)),
            "default_ttl": self.default_ttl,
        }

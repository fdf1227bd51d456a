"""Short-lived result cache with single-flight population."""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Generic, TypeVar

import structlog

log = structlog.get_logger()

T = TypeVar("T")


class CacheBackend(ABC):
    @abstractmethod
    def get(self, key: str) -> tuple[float, Any] | None:
        """(expires_at, value) or None."""

    @abstractmethod
    def set(self, key: str, expires_at: float, value: Any) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...

    @abstractmethod
    def clear(self) -> None: ...


class InMemoryBackend(CacheBackend):
    def __init__(self) -> None:
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> tuple[float, Any] | None:
        return self._entries.get(key)

    def set(self, key: str, expires_at: float, value: Any) -> None:
        self._entries[key] = (expires_at, value)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()


class TTLCache(Generic[T]):
    """Cache of awaitable results keyed by string.

    Concurrent callers that miss on the same key share one in-flight
    computation instead of each calling the loader. A loader that raises
    caches nothing; every waiter sees the exception.
    """

    def __init__(
        self,
        ttl_seconds: float,
        backend: CacheBackend | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.backend = backend or InMemoryBackend()
        self._clock = clock
        self._inflight: dict[str, asyncio.Future[T]] = {}

    def get(self, key: str) -> T | None:
        entry = self.backend.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self.backend.delete(key)
            return None
        return value

    def set(self, key: str, value: T) -> None:
        self.backend.set(key, self._clock() + self.ttl_seconds, value)

    def clear(self) -> None:
        self.backend.clear()

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[T]]) -> T:
        cached = self.get(key)
        if cached is not None:
            log.debug("cache_hit", key=key)
            return cached

        pending = self._inflight.get(key)
        if pending is not None:
            log.debug("cache_join_inflight", key=key)
            return await asyncio.shield(pending)

        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await loader()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Retrieved here so an unawaited future doesn't log "exception never retrieved".
            future.exception()
            raise
        else:
            self.set(key, value)
            future.set_result(value)
            return value
        finally:
            self._inflight.pop(key, None)

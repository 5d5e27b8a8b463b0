"""
Market Data Cache - throttled, TTL-cached front for injected async fetchers.

Each source (``"ohlcv"``, ``"swaps"``, ...) is an ``async (key) -> list``
callable supplied by the caller. Calls to the same source start at least
``min_interval_seconds`` apart, each is bounded by ``timeout_seconds``, and
successful results are cached for ``cache_ttl_seconds``.

Failures never propagate: a timeout, a rate limit or any fetcher error
degrades to an empty list, which the analysis layer treats as
insufficient data. Failed fetches are not cached, so the next cycle retries.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from council.core.config import MarketDataConfig
from council.core.error_handler import GracefulErrorHandler
from council.core.exceptions import DataUnavailableError
from council.core.logger import get_logger

logger = get_logger("market_data")

Fetcher = Callable[[str], Awaitable[List[Any]]]


class MarketDataCache:

    def __init__(
        self,
        fetchers: Optional[Dict[str, Fetcher]] = None,
        config: Optional[MarketDataConfig] = None,
        error_handler: Optional[GracefulErrorHandler] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or MarketDataConfig()
        self.error_handler = error_handler or GracefulErrorHandler()
        self._clock = clock
        self._fetchers: Dict[str, Fetcher] = dict(fetchers or {})
        self._cache: Dict[Tuple[str, str], Tuple[float, List[Any]]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._last_call: Dict[str, float] = {}
        self.hits = 0
        self.misses = 0
        self.failures = 0

    def register(self, source: str, fetcher: Fetcher) -> None:
        self._fetchers[source] = fetcher

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def _prune(self, now: float) -> None:
        ttl = self.config.cache_ttl_seconds
        stale = [k for k, (stored_at, _) in self._cache.items() if now - stored_at > ttl]
        for k in stale:
            del self._cache[k]

    def _cached(self, source: str, key: str) -> Optional[List[Any]]:
        entry = self._cache.get((source, key))
        if entry is None:
            return None
        stored_at, data = entry
        if self._clock() - stored_at > self.config.cache_ttl_seconds:
            del self._cache[(source, key)]
            return None
        return data

    async def _throttle(self, source: str) -> None:
        lock = self._locks.setdefault(source, asyncio.Lock())
        async with lock:
            last = self._last_call.get(source)
            if last is not None:
                wait = self.config.min_interval_seconds - (self._clock() - last)
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_call[source] = self._clock()

    async def fetch(self, source: str, key: str) -> List[Any]:
        """Cached, throttled fetch; returns ``[]`` when the source fails."""
        fetcher = self._fetchers.get(source)
        if fetcher is None:
            raise KeyError(f"No fetcher registered for source {source!r}")

        cached = self._cached(source, key)
        if cached is not None:
            self.hits += 1
            return cached

        await self._throttle(source)
        cached = self._cached(source, key)
        if cached is not None:
            self.hits += 1
            return cached

        self.misses += 1
        try:
            data = await asyncio.wait_for(fetcher(key), timeout=self.config.timeout_seconds)
            if data is None:
                raise DataUnavailableError(f"{source} returned nothing for {key}")
            data = list(data)
        except Exception as e:
            self.failures += 1
            await self.error_handler.handle(e, component="market_data", context=f"{source}:{key}")
            return []

        now = self._clock()
        self._prune(now)
        self._cache[(source, key)] = (now, data)
        logger.debug("Fetched market data", source=source, key=key, items=len(data))
        return data

    async def fetch_many(self, source: str, keys: Sequence[str]) -> Dict[str, List[Any]]:
        """Fan out over ``keys`` concurrently; each key degrades independently."""
        results = await asyncio.gather(*(self.fetch(source, key) for key in keys))
        return dict(zip(keys, results))

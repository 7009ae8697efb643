"""
AI response cache service.

One AICacheService is built at application startup and handed to the
request handlers. Handlers wrap their expensive generative call in
with_cache(); the service decides whether the request may be shared,
looks it up, and only calls the supplier on a miss.
"""
import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Mapping, Optional, TypeVar, Union

from ai_cache.config import CacheConfig, load_cache_config
from ai_cache.keys import generate_cache_key
from ai_cache.policy import is_cacheable
from ai_cache.stats import CacheStats, collect_stats
from ai_cache.store import CacheStore, CacheSweeper

logger = logging.getLogger(__name__)

T = TypeVar("T")
Supplier = Callable[[], Union[Awaitable[T], T]]

_MISS = object()


@dataclass
class CachedResult(Generic[T]):
    payload: T
    cached: bool
    # None when the request bypassed the cache
    key: Optional[str] = None


class AICacheService:
    def __init__(self, config: Optional[CacheConfig] = None, clock: Callable[[], float] = time.time):
        self._config = config or load_cache_config()
        self.store = CacheStore(self._config, clock=clock)
        self._sweeper: Optional[CacheSweeper] = None
        self._in_flight: Dict[str, "asyncio.Future[Any]"] = {}

    # lifecycle

    def start(self) -> None:
        """Start the background expiry sweep."""
        if self._sweeper is None:
            self._sweeper = CacheSweeper(self.store, self._config.cleanup_interval)
        self._sweeper.start()
        logger.info(
            "AI cache started (enabled=%s, max_size=%d, sweep every %ss)",
            self._config.enabled, self._config.max_size, self._config.cleanup_interval,
        )

    def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.stop()
            self._sweeper = None

    # config

    def get_config(self) -> CacheConfig:
        return self._config

    def update_config(self, **changes) -> CacheConfig:
        """Merge ``changes`` into the live config. Raises ValidationError on bad values."""
        new_config = self._config.merged(**changes)
        restart_sweeper = (
            self._sweeper is not None
            and new_config.cleanup_interval != self._config.cleanup_interval
        )
        self._config = new_config
        self.store.reconfigure(new_config)
        if restart_sweeper:
            self.close()
            self.start()
        logger.info("AI cache config updated: %s", sorted(changes))
        return new_config

    # observability

    def get_stats(self) -> CacheStats:
        return collect_stats(self.store)

    def clear(self) -> int:
        removed = self.store.clear()
        logger.info("AI cache cleared %d entries", removed)
        return removed

    # fetch path

    async def with_cache(
        self,
        cache_type: Any,
        query: Any,
        context: Optional[Mapping],
        supplier: Supplier,
        should_store: Optional[Callable[[Any], bool]] = None,
    ) -> CachedResult:
        """
        Serve ``supplier()``'s result from cache when possible.

        Supplier exceptions propagate unchanged and nothing is stored for
        them. ``should_store`` can veto storing a successful but unusable
        payload, such as an empty completion.
        """
        if not self._config.enabled or not is_cacheable(cache_type, query, context):
            return CachedResult(payload=await _call(supplier), cached=False)

        key = generate_cache_key(cache_type, query, context)
        cached = self.store.get(key, _MISS)
        if cached is not _MISS:
            logger.debug("AI cache HIT for %s:%s", getattr(cache_type, "value", cache_type), key[:8])
            return CachedResult(payload=cached, cached=True, key=key)

        logger.debug("AI cache MISS for %s:%s", getattr(cache_type, "value", cache_type), key[:8])

        if self._config.single_flight:
            payload = await self._fetch_shared(key, cache_type, supplier, should_store)
        else:
            payload = await self._fetch_and_store(key, cache_type, supplier, should_store)
        return CachedResult(payload=payload, cached=False, key=key)

    async def _fetch_and_store(self, key, cache_type, supplier, should_store):
        payload = await _call(supplier)
        if should_store is None or should_store(payload):
            self.store.set(key, payload, cache_type)
        else:
            logger.debug("AI cache skipped storing rejected payload for %s", key[:8])
        return payload

    async def _fetch_shared(self, key, cache_type, supplier, should_store):
        while True:
            pending = self._in_flight.get(key)
            if pending is None:
                break
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                # a cancelled leader hands the fetch over; our own cancellation propagates
                if not pending.cancelled():
                    raise

        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            payload = await self._fetch_and_store(key, cache_type, supplier, should_store)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # followers re-raise it; retrieve here so an unawaited future stays quiet
            future.exception()
            raise
        else:
            future.set_result(payload)
            return payload
        finally:
            if self._in_flight.get(key) is future:
                del self._in_flight[key]


async def _call(supplier: Supplier) -> Any:
    result = supplier()
    if inspect.isawaitable(result):
        result = await result
    return result

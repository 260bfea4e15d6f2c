"""
Cache Store: tag-indexed, single-flight memoization for dashboard operations.

Every top-level dashboard operation is wrapped so that identical arguments
return the memoized value until one of the entry's tags is invalidated.
There is no TTL; entries live until the warehouse refresh job (or an admin)
invalidates their tag.

Guarantees:
- A miss runs the computation exactly once per key, however many callers
  ask concurrently. Later callers await the same in-flight asyncio.Task.
- Different keys never wait on each other.
- A caller that stops waiting (asyncio.wait_for timeout, cancellation)
  abandons only its own wait; the shared computation is shielded, keeps
  running, and still populates the cache.
- A failed computation stores nothing and the same exception reaches every
  coalesced caller.
- A value rejected by the caller's `should_store` predicate (a partial
  best-effort result) is returned to every waiting caller but not stored;
  the next call computes again.
- invalidate(tag) evicts every stored entry carrying the tag. Computations
  in flight with that tag are detached: callers already waiting still get
  the result, but it is not stored and new callers start a fresh computation.

The store is an ordinary object created at application startup and injected
(app.state.cache); it is not a module-level singleton.

Usage:
    class DashboardService:
        def __init__(self, cache: CacheStore, ...):
            self.cache = cache

        @cached_query("getFunnelMetrics", CacheTag.DASHBOARD)
        async def get_funnel_metrics(self, filters: FilterSpec) -> FunnelMetrics:
            ...

    evicted = cache.invalidate(CacheTag.DASHBOARD)
"""

import asyncio
import functools
import hashlib
import inspect
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Union

from pydantic import BaseModel

logger = logging.getLogger(__name__)


# =============================================================================
# ENTRIES AND STATS
# =============================================================================


@dataclass(frozen=True)
class CacheEntry:
    """
    One memoized value.

    Attributes:
        key: Derived cache key ('<name>:<sha256>').
        value: The computed result.
        tags: Invalidation groups the entry belongs to.
        created_at: When the value was stored (UTC).
    """
    key: str
    value: Any
    tags: FrozenSet[str]
    created_at: datetime


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    computations: int = 0
    coalesced: int = 0
    evictions: int = 0
    unstored: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "computations": self.computations,
            "coalesced": self.coalesced,
            "evictions": self.evictions,
            "unstored": self.unstored,
        }


@dataclass
class _InFlight:
    tags: FrozenSet[str]
    task: Optional["asyncio.Task[Any]"] = None
    detached: bool = False
    should_store: Optional[Callable[[Any], bool]] = None


# =============================================================================
# KEY DERIVATION
# =============================================================================


def _tag_value(tag: Union[str, Enum]) -> str:
    return tag.value if isinstance(tag, Enum) else str(tag)


def _canonical(value: Any) -> Any:
    """Reduce a value to JSON-serializable data with a deterministic ordering."""
    if isinstance(value, BaseModel):
        return _canonical(value.model_dump())
    if isinstance(value, Enum):
        return _canonical(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        items = [_canonical(v) for v in value]
        return sorted(items, key=lambda v: json.dumps(v, sort_keys=True))
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return repr(value)


def make_cache_key(name: str, *args: Any, **kwargs: Any) -> str:
    """
    Derive a cache key from an operation name and its arguments.

    Arguments are reduced to canonical JSON (sorted dict keys, sorted sets,
    pydantic models dumped, dates ISO formatted) and hashed with SHA-256, so
    two FilterSpecs with the same content always share a key regardless of
    how they were constructed.

    Example:
        >>> make_cache_key("getFunnelMetrics", filters=spec) == \\
        ...     make_cache_key("getFunnelMetrics", filters=spec.model_copy())
        True
    """
    payload = {"args": _canonical(list(args)), "kwargs": _canonical(kwargs)}
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(encoded.encode("utf-8")).hexdigest()
    return f"{name}:{digest}"


# =============================================================================
# STORE
# =============================================================================


def _consume_exception(task: "asyncio.Task[Any]") -> None:
    # Every caller may have timed out; retrieve the exception so it is not reported as unhandled.
    if not task.cancelled():
        task.exception()


class CacheStore:
    """
    In-process async cache with tag invalidation and single-flight misses.

    Not thread-safe: use from a single event loop.
    """

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, _InFlight] = {}
        self.stats = CacheStats()

    async def get_or_compute(
        self,
        key: str,
        tags: Iterable[Union[str, Enum]],
        compute: Callable[[], Awaitable[Any]],
        should_store: Optional[Callable[[Any], bool]] = None,
    ) -> Any:
        """
        Return the cached value for `key`, computing it on a miss.

        Args:
            key: Cache key (see make_cache_key).
            tags: Invalidation groups for the stored entry.
            compute: Zero-argument coroutine function producing the value.
            should_store: Optional predicate on the computed value; when it
                returns False the value is returned but not memoized.

        Returns:
            The cached or freshly computed value.

        Raises:
            Whatever `compute` raises; nothing is stored in that case.
        """
        entry = self._entries.get(key)
        if entry is not None:
            self.stats.hits += 1
            return entry.value

        self.stats.misses += 1
        flight = self._inflight.get(key)
        if flight is None:
            logger.debug(f"Cache miss for {key}; computing")
            flight = _InFlight(tags=frozenset(_tag_value(t) for t in tags), should_store=should_store)
            flight.task = asyncio.ensure_future(self._compute(key, flight, compute))
            flight.task.add_done_callback(_consume_exception)
            self._inflight[key] = flight
        else:
            self.stats.coalesced += 1
            logger.debug(f"Cache miss for {key}; joining in-flight computation")

        return await asyncio.shield(flight.task)

    async def _compute(self, key: str, flight: _InFlight, compute: Callable[[], Awaitable[Any]]) -> Any:
        self.stats.computations += 1
        try:
            value = await compute()
        finally:
            if self._inflight.get(key) is flight:
                del self._inflight[key]
        if flight.detached:
            logger.debug(f"Discarding result for {key}: invalidated while computing")
        elif flight.should_store is not None and not flight.should_store(value):
            self.stats.unstored += 1
            logger.debug(f"Not storing result for {key}: incomplete")
        else:
            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                tags=flight.tags,
                created_at=datetime.now(timezone.utc),
            )
        return value

    def invalidate(self, tag: Union[str, Enum]) -> int:
        """
        Evict every entry tagged `tag` and detach matching in-flight computations.

        Returns:
            Number of stored entries evicted.
        """
        tag = _tag_value(tag)
        stale = [key for key, entry in self._entries.items() if tag in entry.tags]
        for key in stale:
            del self._entries[key]

        detached = 0
        for key, flight in list(self._inflight.items()):
            if tag in flight.tags:
                flight.detached = True
                del self._inflight[key]
                detached += 1

        self.stats.evictions += len(stale)
        logger.info(f"Invalidated cache tag '{tag}': {len(stale)} entries evicted, {detached} in-flight detached")
        return len(stale)

    def invalidate_all(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        for flight in self._inflight.values():
            flight.detached = True
        self._inflight.clear()
        self.stats.evictions += count
        return count

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def keys(self) -> List[str]:
        return list(self._entries.keys())

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)


# =============================================================================
# DECORATOR
# =============================================================================


def cached_query(
    name: str,
    tag: Union[str, Enum],
    should_store: Optional[Callable[[Any], bool]] = None,
):
    """
    Memoize an async method through its owner's `cache` attribute.

    Arguments are bound against the method signature (defaults applied) before
    the key is derived, so passing a value positionally or by keyword gives the
    same key.

    Args:
        name: Stable operation name, the key prefix.
        tag: Invalidation group of every entry this method stores.
        should_store: Predicate deciding whether a result is memoized; partial
            fan-out results return False so a later call retries the failed part.
    """
    def decorator(func: Callable[..., Awaitable[Any]]):
        signature = inspect.signature(func)

        @functools.wraps(func)
        async def wrapper(self, *args: Any, **kwargs: Any) -> Any:
            bound = signature.bind(self, *args, **kwargs)
            bound.apply_defaults()
            arguments = dict(bound.arguments)
            arguments.pop(next(iter(signature.parameters)))
            key = make_cache_key(name, **arguments)
            return await self.cache.get_or_compute(
                key, (tag,), lambda: func(self, *args, **kwargs), should_store=should_store
            )

        wrapper.cache_name = name
        wrapper.cache_tag = _tag_value(tag)
        return wrapper

    return decorator


__all__ = [
    "CacheEntry",
    "CacheStats",
    "CacheStore",
    "make_cache_key",
    "cached_query",
]

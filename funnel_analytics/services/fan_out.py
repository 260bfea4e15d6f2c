"""
Concurrent fan-out helpers.

Some dashboard operations split into several independent warehouse queries
(one per pipeline stage, metrics plus goals, the closed-lost sources). Two
policies exist and each call site picks one explicitly:

- gather_isolated(): run everything concurrently, record each item's
  success or failure, log failures with the item that failed, and return the
  successes. One failing item never aborts its siblings.
- gather_strict(): run everything concurrently and raise the first failure.
  Used where a partial answer would be misleading.

Usage:
    result = await gather_isolated(stages, fetch_stage, label="pipeline stage")
    for stage, records in result.successes.items():
        ...
    if result.failures:
        ...
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Generic, Hashable, Iterable, List, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass
class FanOutResult(Generic[K, V]):
    """
    Per-item outcome of an isolated fan-out.

    Attributes:
        successes: Item -> value, in submission order.
        failures: Item -> exception raised by that item's worker.
    """
    successes: Dict[K, V] = field(default_factory=dict)
    failures: Dict[K, BaseException] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failures

    @property
    def failed_items(self) -> List[K]:
        return list(self.failures.keys())


async def gather_isolated(
    items: Iterable[K],
    worker: Callable[[K], Awaitable[V]],
    *,
    label: str = "item",
) -> FanOutResult[K, V]:
    """
    Run `worker(item)` for every item concurrently, isolating failures.

    Exceptions (other than cancellation) are captured per item and logged at
    WARNING with the item identity; they do not propagate.

    Args:
        items: Distinct, hashable work items.
        worker: Async function producing a value for one item.
        label: Human-readable item kind used in log messages.

    Returns:
        FanOutResult with successes and failures keyed by item.
    """
    keys = list(items)
    outcomes = await asyncio.gather(*(worker(k) for k in keys), return_exceptions=True)

    result: FanOutResult[K, V] = FanOutResult()
    for key, outcome in zip(keys, outcomes):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            logger.warning(f"{label} {key!r} failed and was omitted: {outcome}")
            result.failures[key] = outcome
        else:
            result.successes[key] = outcome
    return result


async def gather_strict(*aws: Awaitable[V]) -> List[V]:
    """
    Run awaitables concurrently; the first exception aborts the whole call.

    Remaining awaitables are cancelled when one fails.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        raise


__all__ = [
    "FanOutResult",
    "gather_isolated",
    "gather_strict",
]

"""
Tests for the tag-indexed, single-flight CacheStore.

Covers:
- Key derivation from equivalent filter states
- Hits and stats
- Exactly one computation for concurrent misses on a key
- Failures are shared with coalesced callers and never cached
- Results rejected by should_store are returned but not cached
- Tag invalidation, including computations in flight
- A caller timing out does not abort the shared computation
- The @cached_query decorator
"""

import asyncio
from datetime import date

import pytest

from funnel_analytics.core.cache import CacheStore, cached_query, make_cache_key
from funnel_analytics.core.errors import SourceQueryError
from funnel_analytics.models.enums import CacheTag, DatePreset
from funnel_analytics.models.schemas import AdvancedFilterSet, FilterSpec, MultiSelectFilter


async def settle(rounds: int = 5) -> None:
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# =============================================================================
# KEY DERIVATION
# =============================================================================


class TestMakeCacheKey:

    def test_equivalent_filters_share_a_key(self):
        a = FilterSpec(advancedFilters=AdvancedFilterSet(
            sources=MultiSelectFilter(selectAll=False, selected=frozenset(["Referral", "LinkedIn"]))
        ))
        b = FilterSpec.model_validate({
            "advancedFilters": {"sources": {"selectAll": False, "selected": ["LinkedIn", "Referral"]}},
        })
        assert make_cache_key("getFunnelMetrics", filters=a) == make_cache_key("getFunnelMetrics", filters=b)

    def test_different_filters_differ(self):
        a = FilterSpec(channel="Outbound")
        b = FilterSpec(channel="Marketing")
        assert make_cache_key("op", filters=a) != make_cache_key("op", filters=b)

    def test_operation_name_prefixes_key(self):
        spec = FilterSpec()
        key = make_cache_key("getConversionRates", filters=spec)
        assert key.startswith("getConversionRates:")
        assert key != make_cache_key("getFunnelMetrics", filters=spec)

    def test_dates_and_enums(self):
        k1 = make_cache_key("op", preset=DatePreset.Q1, day=date(2026, 1, 1))
        k2 = make_cache_key("op", preset="q1", day="2026-01-01")
        assert k1 == k2


# =============================================================================
# STORE
# =============================================================================


class TestGetOrCompute:

    @pytest.mark.asyncio
    async def test_hit_after_miss(self, cache):
        calls = []

        async def compute():
            calls.append(1)
            return {"sqos": 45}

        first = await cache.get_or_compute("k", ["dashboard"], compute)
        second = await cache.get_or_compute("k", ["dashboard"], compute)

        assert first == second == {"sqos": 45}
        assert len(calls) == 1
        assert cache.stats.hits == 1
        assert cache.stats.misses == 1
        assert cache.get_entry("k").tags == frozenset({"dashboard"})

    @pytest.mark.asyncio
    async def test_concurrent_misses_compute_once(self, cache):
        gate = asyncio.Event()
        calls = []

        async def compute():
            calls.append(1)
            await gate.wait()
            return "value"

        waiters = [asyncio.create_task(cache.get_or_compute("k", ["dashboard"], compute)) for _ in range(5)]
        await settle()
        assert cache.inflight_count == 1

        gate.set()
        results = await asyncio.gather(*waiters)

        assert results == ["value"] * 5
        assert len(calls) == 1
        assert cache.stats.coalesced == 4
        assert cache.stats.computations == 1

    @pytest.mark.asyncio
    async def test_different_keys_do_not_wait_on_each_other(self, cache):
        gate = asyncio.Event()

        async def blocked():
            await gate.wait()
            return "slow"

        async def quick():
            return "fast"

        slow_task = asyncio.create_task(cache.get_or_compute("slow", ["dashboard"], blocked))
        await settle()
        assert await cache.get_or_compute("fast", ["dashboard"], quick) == "fast"

        gate.set()
        assert await slow_task == "slow"

    @pytest.mark.asyncio
    async def test_failure_reaches_every_caller_and_is_not_cached(self, cache):
        gate = asyncio.Event()
        calls = []

        async def failing():
            calls.append(1)
            await gate.wait()
            raise SourceQueryError("warehouse down", query_name="funnel_metrics")

        waiters = [asyncio.create_task(cache.get_or_compute("k", ["dashboard"], failing)) for _ in range(3)]
        await settle()
        gate.set()
        results = await asyncio.gather(*waiters, return_exceptions=True)

        assert all(isinstance(r, SourceQueryError) for r in results)
        assert len(calls) == 1
        assert "k" not in cache
        assert cache.inflight_count == 0

        async def recovered():
            return "ok"

        assert await cache.get_or_compute("k", ["dashboard"], recovered) == "ok"

    @pytest.mark.asyncio
    async def test_timed_out_caller_does_not_abort_computation(self, cache):
        gate = asyncio.Event()

        async def compute():
            await gate.wait()
            return "late"

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(cache.get_or_compute("k", ["dashboard"], compute), timeout=0.01)

        gate.set()
        await settle()
        assert "k" in cache
        assert cache.get_entry("k").value == "late"

    @pytest.mark.asyncio
    async def test_rejected_result_is_shared_but_not_stored(self, cache):
        gate = asyncio.Event()
        outcomes = [{"failed": ["goals"]}, {"failed": []}]
        calls = []

        async def compute():
            calls.append(1)
            await gate.wait()
            return outcomes[len(calls) - 1]

        def complete(value):
            return not value["failed"]

        waiters = [
            asyncio.create_task(cache.get_or_compute("k", ["dashboard"], compute, should_store=complete))
            for _ in range(2)
        ]
        await settle()
        gate.set()
        results = await asyncio.gather(*waiters)

        assert results == [{"failed": ["goals"]}] * 2
        assert len(calls) == 1
        assert "k" not in cache
        assert cache.stats.unstored == 1

        assert await cache.get_or_compute("k", ["dashboard"], compute, should_store=complete) == {"failed": []}
        assert await cache.get_or_compute("k", ["dashboard"], compute, should_store=complete) == {"failed": []}
        assert len(calls) == 2


class TestInvalidate:

    @pytest.mark.asyncio
    async def test_evicts_only_tagged_entries(self, cache):
        async def value():
            return 1

        await cache.get_or_compute("a", [CacheTag.DASHBOARD], value)
        await cache.get_or_compute("b", [CacheTag.DASHBOARD], value)
        await cache.get_or_compute("c", [CacheTag.SGA_HUB], value)

        assert cache.invalidate(CacheTag.DASHBOARD) == 2
        assert cache.keys() == ["c"]
        assert cache.stats.evictions == 2

    @pytest.mark.asyncio
    async def test_unknown_tag_is_a_no_op(self, cache):
        async def value():
            return 1

        await cache.get_or_compute("a", ["dashboard"], value)
        assert cache.invalidate("nothing") == 0
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_in_flight_result_is_not_stored_after_invalidation(self, cache):
        gate = asyncio.Event()

        async def stale():
            await gate.wait()
            return "stale"

        async def fresh():
            await gate.wait()
            return "fresh"

        first = asyncio.create_task(cache.get_or_compute("k", ["dashboard"], stale))
        await settle()
        cache.invalidate("dashboard")

        second = asyncio.create_task(cache.get_or_compute("k", ["dashboard"], fresh))
        await settle()
        gate.set()

        assert await first == "stale"
        assert await second == "fresh"
        assert cache.get_entry("k").value == "fresh"
        assert cache.stats.computations == 2

    @pytest.mark.asyncio
    async def test_invalidate_all(self, cache):
        async def value():
            return 1

        await cache.get_or_compute("a", ["dashboard"], value)
        await cache.get_or_compute("b", ["sga-hub"], value)
        assert cache.invalidate_all() == 2
        assert len(cache) == 0


# =============================================================================
# DECORATOR
# =============================================================================


class Reports:

    def __init__(self, cache: CacheStore):
        self.cache = cache
        self.calls = []

    @cached_query("getReport", CacheTag.DASHBOARD)
    async def get_report(self, filters: FilterSpec, limit: int = 10):
        self.calls.append((filters, limit))
        return f"{filters.channel}:{limit}"

    @cached_query("getPartialReport", CacheTag.DASHBOARD, should_store=lambda rows: None not in rows)
    async def get_partial_report(self, rows):
        self.calls.append(rows)
        return list(rows)


class TestCachedQuery:

    @pytest.mark.asyncio
    async def test_positional_and_keyword_share_an_entry(self, cache):
        reports = Reports(cache)
        spec = FilterSpec(channel="Outbound")

        assert await reports.get_report(spec) == "Outbound:10"
        assert await reports.get_report(spec, 10) == "Outbound:10"
        assert await reports.get_report(filters=spec, limit=10) == "Outbound:10"
        assert len(reports.calls) == 1

    @pytest.mark.asyncio
    async def test_different_arguments_compute_separately(self, cache):
        reports = Reports(cache)
        await reports.get_report(FilterSpec(channel="Outbound"))
        await reports.get_report(FilterSpec(channel="Outbound"), 20)
        await reports.get_report(FilterSpec(channel="Marketing"))
        assert len(reports.calls) == 3

    @pytest.mark.asyncio
    async def test_entries_carry_the_method_tag(self, cache):
        reports = Reports(cache)
        await reports.get_report(FilterSpec())
        assert cache.invalidate(CacheTag.DASHBOARD) == 1
        await reports.get_report(FilterSpec())
        assert len(reports.calls) == 2

    @pytest.mark.asyncio
    async def test_should_store_applies_to_decorated_methods(self, cache):
        reports = Reports(cache)

        await reports.get_partial_report([1, None])
        await reports.get_partial_report([1, None])
        assert len(reports.calls) == 2

        await reports.get_partial_report([1, 2])
        await reports.get_partial_report([1, 2])
        assert len(reports.calls) == 3

    def test_metadata(self):
        assert Reports.get_report.cache_name == "getReport"
        assert Reports.get_report.cache_tag == "dashboard"

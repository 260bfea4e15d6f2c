"""
Tests for the closed-lost multi-source reconciler.

Covers re-engagement exclusion on both sources, deduplication, ordering, and
the strict failure policy of fetch_and_reconcile.
"""

from datetime import date

import pytest

from funnel_analytics.core.errors import ReconciliationError, SourceQueryError
from funnel_analytics.models.enums import TimeBucket
from funnel_analytics.models.schemas import ClosedLostRecord
from funnel_analytics.services.reconciler import (
    dedupe_by_id,
    exclude_reengaged,
    fetch_and_reconcile,
    normalize_crd,
    reconcile_closed_lost,
    sort_closed_lost,
)
from funnel_analytics.sql.params import CompiledQuery
from funnel_analytics.tests.conftest import FakeWarehouse, closed_lost_row, source_failure


def record(record_id, *, crd=None, closed=None, contact=None, name=None, bucket=TimeBucket.DAYS_30_60):
    return ClosedLostRecord(
        id=record_id,
        oppName=name or f"Advisor {record_id}",
        firmCrd=crd,
        closedLostDate=closed,
        lastContactDate=contact,
        timeSinceContactBucket=bucket,
    )


RECENT = CompiledQuery(name="closed_lost_recent", text="SELECT 1")
OLDER = CompiledQuery(name="closed_lost_180_plus", text="SELECT 2")
CRDS = CompiledQuery(name="re_engagement_crds", text="SELECT 3")


# =============================================================================
# MERGE STEPS
# =============================================================================


class TestNormalizeCrd:

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("0012345", "12345"),
            ("12345.0", "12345"),
            (12345, "12345"),
            (" 777 ", "777"),
            ("", None),
            ("000", None),
            (None, None),
        ],
    )
    def test_normalize(self, value, expected):
        assert normalize_crd(value) == expected


class TestExcludeReengaged:

    def test_drops_matching_crds_only(self):
        records = [record("a", crd="123"), record("b", crd="456"), record("c")]
        kept = exclude_reengaged(records, ["00123", None])
        assert [r.id for r in kept] == ["b", "c"]


class TestDedupeById:

    def test_keeps_first_occurrence(self):
        first = record("a", name="First")
        second = record("a", name="Second")
        result = dedupe_by_id([first, record("b"), second])
        assert [r.id for r in result] == ["a", "b"]
        assert result[0].oppName == "First"

    def test_strict_allows_identical_duplicates(self):
        assert len(dedupe_by_id([record("a"), record("a")], strict=True)) == 1

    def test_strict_rejects_conflicting_duplicates(self):
        with pytest.raises(ReconciliationError) as exc_info:
            dedupe_by_id([record("a", name="One"), record("a", name="Two")], strict=True)
        assert exc_info.value.context["ids"] == ["a"]

    def test_empty(self):
        assert dedupe_by_id([]) == []


class TestSortClosedLost:

    def test_closed_then_contact_descending_with_missing_last(self):
        records = [
            record("old", closed="2026-01-01", contact="2025-12-01"),
            record("none", closed=None, contact="2026-04-01"),
            record("new_b", closed="2026-03-01", contact="2026-01-01"),
            record("new_a", closed="2026-03-01", contact="2026-02-01"),
        ]
        assert [r.id for r in sort_closed_lost(records)] == ["new_a", "new_b", "old", "none"]


class TestReconcileClosedLost:

    def test_exclusion_applies_to_both_sources(self):
        recent = [record("r1", crd="111", closed="2026-04-01"), record("r2", crd="222", closed="2026-04-02")]
        older = [record("o1", crd="111", closed="2025-01-01", bucket=TimeBucket.OVER_180),
                 record("o2", crd="333", closed="2025-02-01", bucket=TimeBucket.OVER_180)]
        merged = reconcile_closed_lost(recent, older, ["111"])
        assert [r.id for r in merged] == ["r2", "o2"]


# =============================================================================
# EXECUTION
# =============================================================================


class TestFetchAndReconcile:

    @pytest.mark.asyncio
    async def test_merges_sources_and_excludes_reengaged(self):
        warehouse = FakeWarehouse({
            "closed_lost_recent": [
                closed_lost_row("006R1", last_contact="2026-04-01", closed_lost="2026-04-20",
                                bucket="30-60 days", crd="0042"),
                closed_lost_row("006R2", last_contact="2026-03-10", closed_lost="2026-04-25",
                                bucket="2 months since last contact"),
            ],
            "closed_lost_180_plus": [
                closed_lost_row("006O1", last_contact="2025-09-01", closed_lost="2025-10-01",
                                bucket="180+", days=256, crd="9"),
            ],
            "re_engagement_crds": [{"fa_crd": "42"}],
        })

        result = await fetch_and_reconcile(
            warehouse,
            recent_query=RECENT,
            older_query=OLDER,
            reengagement_query=CRDS,
            reference_date=date(2026, 5, 15),
        )

        assert [r.id for r in result] == ["006R2", "006O1"]
        assert result[0].timeSinceContactBucket == TimeBucket.DAYS_60_90
        assert result[1].timeSinceContactBucket == TimeBucket.OVER_180
        assert sorted(warehouse.call_names) == ["closed_lost_180_plus", "closed_lost_recent", "re_engagement_crds"]

    @pytest.mark.asyncio
    async def test_any_source_failure_aborts(self):
        warehouse = FakeWarehouse({
            "closed_lost_recent": [closed_lost_row("006R1", last_contact="2026-04-01", bucket="30-60")],
            "closed_lost_180_plus": source_failure("closed_lost_180_plus"),
        })
        with pytest.raises(SourceQueryError) as exc_info:
            await fetch_and_reconcile(
                warehouse,
                recent_query=RECENT,
                older_query=OLDER,
                reengagement_query=CRDS,
                reference_date=date(2026, 5, 15),
            )
        assert exc_info.value.query_name == "closed_lost_180_plus"

    @pytest.mark.asyncio
    async def test_reengagement_failure_aborts(self):
        warehouse = FakeWarehouse({"re_engagement_crds": source_failure("re_engagement_crds")})
        with pytest.raises(SourceQueryError):
            await fetch_and_reconcile(
                warehouse,
                recent_query=RECENT,
                reengagement_query=CRDS,
                reference_date=date(2026, 5, 15),
            )

    @pytest.mark.asyncio
    async def test_older_only(self):
        warehouse = FakeWarehouse({
            "closed_lost_180_plus": [closed_lost_row("006O1", last_contact="2025-01-01")],
        })
        result = await fetch_and_reconcile(
            warehouse,
            older_query=OLDER,
            reengagement_query=CRDS,
            reference_date=date(2026, 5, 15),
        )
        assert [r.timeSinceContactBucket for r in result] == [TimeBucket.OVER_180]
        assert "closed_lost_recent" not in warehouse.call_names

    @pytest.mark.asyncio
    async def test_no_sources_runs_nothing(self):
        warehouse = FakeWarehouse()
        result = await fetch_and_reconcile(warehouse, reengagement_query=CRDS, reference_date=date(2026, 5, 15))
        assert result == []
        assert warehouse.calls == []

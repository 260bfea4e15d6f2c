"""
Tests for warehouse row normalization.
"""

from datetime import date, datetime
from decimal import Decimal

import numpy as np
import pytest

from funnel_analytics.core.errors import SourceQueryError
from funnel_analytics.models.enums import ConversionMode, TimeBucket
from funnel_analytics.services.records import (
    activity_distributions_from_rows,
    closed_lost_record_from_row,
    conversion_rates_from_row,
    detail_record_from_row,
    funnel_metrics_from_rows,
    map_rows,
    normalize_date,
    select_aum,
    source_performance_from_row,
    to_flag,
    to_number,
    trend_point_from_row,
    weekday_index,
    weekly_actual_from_row,
)
from funnel_analytics.tests.conftest import closed_lost_row


# =============================================================================
# SCALARS
# =============================================================================


class TestNormalizeDate:

    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, None),
            ("", None),
            (date(2026, 1, 5), "2026-01-05"),
            (datetime(2026, 1, 5, 22, 30), "2026-01-05"),
            ("2026-01-05", "2026-01-05"),
            ("2026-01-05T10:00:00Z", "2026-01-05"),
            ("2026-01-05 10:00:00 UTC", "2026-01-05"),
            ({"value": "2026-01-05"}, "2026-01-05"),
            ({"value": None}, None),
        ],
    )
    def test_accepted_shapes(self, value, expected):
        assert normalize_date(value) == expected

    @pytest.mark.parametrize("value", ["garbage", "2026-13-01", 20260105])
    def test_rejects_non_dates(self, value):
        with pytest.raises(ValueError):
            normalize_date(value)


class TestNumbers:

    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, 0.0),
            (12, 12.0),
            ("12.5", 12.5),
            (" 7 ", 7.0),
            (Decimal("3.25"), 3.25),
            (np.float64(2.5), 2.5),
            (float("nan"), 0.0),
            (float("inf"), 0.0),
            ("abc", 0.0),
            (True, 0.0),
        ],
    )
    def test_to_number(self, value, expected):
        assert to_number(value) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [(1, True), ("1", True), ("true", True), (True, True), (0, False), (None, False), ("0", False)],
    )
    def test_to_flag(self, value, expected):
        assert to_flag(value) is expected


class TestSelectAum:

    def test_prefers_underwritten(self):
        assert select_aum(5_000_000, 7_000_000) == 5_000_000.0

    def test_falls_back_to_amount(self):
        assert select_aum(None, 7_000_000) == 7_000_000.0
        assert select_aum(float("nan"), "7000000") == 7_000_000.0

    def test_never_sums(self):
        assert select_aum(1.0, 2.0) == 1.0

    def test_neither_present(self):
        assert select_aum(None, None) == 0.0


# =============================================================================
# RECORD MAPPERS
# =============================================================================


class TestDetailRecordFromRow:

    def test_maps_mixed_shapes(self, detail_row):
        record = detail_record_from_row(detail_row)
        assert record.id == "00QDn000001"
        assert record.aum == 25_000_000.0
        assert record.relevantDate == "2026-02-03"
        assert record.contactedDate == "2026-01-10"
        assert record.mqlDate == "2026-01-20"
        assert record.sqlDate == "2026-02-03"
        assert record.sqoDate is None
        assert (record.isContacted, record.isMql, record.isSql, record.isSqo, record.isJoined) == (
            True, True, True, False, False,
        )
        assert record.isOpenPipeline is True
        assert record.sgm is None

    def test_missing_labels_default_to_unknown(self):
        record = detail_record_from_row({"id": 42})
        assert record.id == "42"
        assert record.advisorName == "Unknown"
        assert record.stage == "Unknown"
        assert record.isOpenPipeline is False
        assert record.aum == 0.0


class TestClosedLostRecordFromRow:

    def test_source_label_is_normalized(self):
        row = closed_lost_row("006A", last_contact="2026-04-01", bucket="1 month since last contact", days=44)
        record = closed_lost_record_from_row(row, date(2026, 5, 15))
        assert record.timeSinceContactBucket == TimeBucket.DAYS_30_60
        assert record.daysSinceContact == 44

    def test_bucket_derived_from_last_contact(self):
        row = closed_lost_row("006B", last_contact="2025-10-27")
        record = closed_lost_record_from_row(row, date(2026, 5, 15))
        assert record.daysSinceContact == 200
        assert record.timeSinceContactBucket == TimeBucket.OVER_180

    def test_salesforce_url_falls_back_to_opportunity_url(self):
        row = closed_lost_row("006C", last_contact="2026-04-01", bucket="30-60")
        record = closed_lost_record_from_row(row, date(2026, 5, 15))
        assert record.salesforceUrl == row["opportunity_url"]

    def test_unclassifiable_row_raises(self):
        row = closed_lost_row("006D", last_contact=None, bucket="someday")
        with pytest.raises(ValueError):
            closed_lost_record_from_row(row, date(2026, 5, 15))


class TestMapRows:

    def test_malformed_row_names_the_query(self):
        rows = [{"id": "a"}, {"advisor_name": "no id"}]
        with pytest.raises(SourceQueryError) as exc_info:
            map_rows(rows, detail_record_from_row, "detail_records")
        assert exc_info.value.query_name == "detail_records"
        assert exc_info.value.context["row"] == 1
        assert exc_info.value.status_code == 502


class TestWeeklyActualFromRow:

    def test_wrapped_week_start(self):
        actual = weekly_actual_from_row(
            {"week_start": {"value": "2026-05-11"}, "initial_calls": 7, "qualification_calls": None, "sqos": 2}
        )
        assert actual.weekStartDate == date(2026, 5, 11)
        assert actual.qualificationCalls == 0
        assert actual.sqos == 2

    def test_missing_week_start_is_malformed(self):
        with pytest.raises(SourceQueryError):
            map_rows([{"week_start": None}], weekly_actual_from_row, "weekly_actuals")


# =============================================================================
# AGGREGATES
# =============================================================================


class TestAggregateMappers:

    def test_funnel_metrics(self, funnel_metrics_row):
        metrics = funnel_metrics_from_rows(funnel_metrics_row, {"open_pipeline_aum": 9.5e8})
        assert metrics.sqos == 45
        assert metrics.openPipelineAum == 9.5e8
        assert metrics.joinedAum == 1.2e8

    def test_funnel_metrics_without_rows(self):
        metrics = funnel_metrics_from_rows(None, None)
        assert metrics.prospects == 0
        assert metrics.openPipelineAum == 0.0

    def test_conversion_rates(self):
        row = {"contacted_to_mql_numer": 30, "contacted_to_mql_denom": 120, "mql_to_sql_denom": 0}
        rates = conversion_rates_from_row(row, ConversionMode.COHORT)
        assert rates.mode == ConversionMode.COHORT
        assert rates.contactedToMql.rate == pytest.approx(0.25)
        assert rates.mqlToSql.rate == 0.0

    def test_trend_point(self):
        point = trend_point_from_row({"period": "2026-Q1", "sqls": 10, "sql_to_sqo_numer": 4, "sql_to_sqo_denom": 10})
        assert point.sqlToSqoRate == pytest.approx(0.4)
        assert point.contactedToMqlRate == 0.0
        assert point.isSelectedPeriod is False

    def test_source_performance(self):
        row = source_performance_from_row({"source": None, "channel": "Outbound", "sqos": 3, "sql_to_sqo_rate": None})
        assert row.source == "Unknown"
        assert row.channel == "Outbound"
        assert row.sqlToSqoRate == 0.0


class TestActivityDistribution:

    def test_weekday_index(self):
        assert weekday_index(1) == 0
        assert weekday_index("7") == 6
        with pytest.raises(ValueError):
            weekday_index(8)

    def test_groups_by_channel_monday_first(self):
        rows = [
            {"channel": "Outbound", "day_of_week": 1, "day_name": "Sunday",
             "current_avg": 2, "current_total": 4, "comparison_avg": 0, "comparison_total": 0},
            {"channel": "Outbound", "day_of_week": 2, "day_name": "Monday",
             "current_avg": 10, "current_total": 40, "comparison_avg": 8, "comparison_total": 32},
            {"channel": "Marketing", "day_of_week": 2, "day_name": "Monday",
             "current_avg": 99, "current_total": 99, "comparison_avg": 1, "comparison_total": 1},
            {"channel": "Email", "day_of_week": 3, "day_name": "Tuesday",
             "current_avg": 5, "current_total": 20, "comparison_avg": 5, "comparison_total": 20},
        ]
        distributions = activity_distributions_from_rows(rows)

        assert [d.channel for d in distributions] == ["Email", "Outbound"]
        outbound = distributions[1]
        assert [p.dayName for p in outbound.days] == ["Monday", "Sunday"]
        monday, sunday = outbound.days
        assert monday.dayOfWeek == 1
        assert monday.varianceAvg == 2.0
        assert monday.variancePercent == pytest.approx(25.0)
        assert sunday.dayOfWeek == 0
        assert sunday.variancePercent == 0.0

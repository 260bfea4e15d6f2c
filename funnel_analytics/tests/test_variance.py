"""
Tests for the variance and trend engine.

Covers goal variance, period vs cohort conversion rates, trend windows and
zero-filling, dense leaderboard ranking, quarterly pacing and weekly goals.
"""

from datetime import date

import pytest

from funnel_analytics.models.enums import ConversionMode, PacingStatus, TrendGranularity
from funnel_analytics.models.schemas import DetailRecord, LeaderboardEntry, TrendDataPoint, WeeklyActual, WeeklyGoal
from funnel_analytics.services.variance import (
    cohort_mode_rates,
    conversion_rate,
    conversion_rates_in_memory,
    dense_rank,
    expected_periods,
    fill_trend_periods,
    parse_quarter,
    period_mode_rates,
    quarter_bounds,
    quarter_pacing,
    trend_window,
    variance,
    week_monday,
    weekly_goal_vs_actual,
)


# =============================================================================
# VARIANCE
# =============================================================================


class TestVariance:

    def test_behind_goal(self):
        v = variance(80, 100)
        assert v.difference == -20.0
        assert v.percentVariance == pytest.approx(-20.0)
        assert v.isOnTrack is False

    def test_meeting_goal_is_on_track(self):
        assert variance(100, 100).isOnTrack is True

    def test_zero_goal_has_no_percentage(self):
        v = variance(5, 0)
        assert v.percentVariance is None
        assert v.difference == 5.0
        assert v.isOnTrack is True


class TestConversionRate:

    def test_zero_denominator_gives_zero_rate(self):
        rate = conversion_rate(3, 0)
        assert rate.rate == 0.0
        assert rate.numerator == 3.0
        assert rate.denominator == 0.0

    def test_rate(self):
        assert conversion_rate(1, 4).rate == pytest.approx(0.25)


# =============================================================================
# PERIOD VS COHORT
# =============================================================================


@pytest.fixture
def q1_records():
    """
    Four records around 2026-Q1:

    r1: contacted and MQL'd in Q1
    r2: contacted in Q4 2025, MQL'd in Q1
    r3: contacted in Q1, still open
    r4: contacted in Q1, closed without an MQL
    """
    return [
        DetailRecord(id="r1", contactedDate="2026-01-05", mqlDate="2026-02-01"),
        DetailRecord(id="r2", contactedDate="2025-12-20", mqlDate="2026-01-15"),
        DetailRecord(id="r3", contactedDate="2026-03-01"),
        DetailRecord(id="r4", contactedDate="2026-02-10", closedDate="2026-03-01"),
    ]


class TestConversionModes:

    def test_period_mode_counts_each_milestone_by_its_own_date(self, q1_records):
        rates = period_mode_rates(q1_records, "2026-Q1", TrendGranularity.QUARTER)
        assert rates.mode == ConversionMode.PERIOD
        # MQLs in Q1: r1, r2. Contacted in Q1: r1, r3, r4.
        assert rates.contactedToMql.numerator == 2
        assert rates.contactedToMql.denominator == 3
        assert rates.contactedToMql.rate == pytest.approx(2 / 3)

    def test_cohort_mode_excludes_open_records(self, q1_records):
        rates = cohort_mode_rates(q1_records, "2026-Q1", TrendGranularity.QUARTER)
        assert rates.mode == ConversionMode.COHORT
        # Cohort r1, r3, r4; r3 is unresolved; r1 converted.
        assert rates.contactedToMql.numerator == 1
        assert rates.contactedToMql.denominator == 2
        assert rates.contactedToMql.rate == pytest.approx(0.5)

    def test_cohort_rates_never_exceed_one(self, q1_records):
        rates = cohort_mode_rates(q1_records, "2026-Q1", TrendGranularity.QUARTER)
        for name in ("contactedToMql", "mqlToSql", "sqlToSqo", "sqoToJoined"):
            assert 0.0 <= getattr(rates, name).rate <= 1.0

    def test_period_rate_can_exceed_one(self):
        records = [
            DetailRecord(id="a", contactedDate="2025-12-01", mqlDate="2026-01-10"),
            DetailRecord(id="b", contactedDate="2025-12-02", mqlDate="2026-01-11"),
            DetailRecord(id="c", contactedDate="2026-01-03"),
        ]
        rates = period_mode_rates(records, "2026-Q1", TrendGranularity.QUARTER)
        assert rates.contactedToMql.rate == pytest.approx(2.0)

    def test_empty_transitions_are_zero(self, q1_records):
        rates = conversion_rates_in_memory(q1_records, "2026-Q1", TrendGranularity.QUARTER, ConversionMode.COHORT)
        assert rates.sqlToSqo.rate == 0.0
        assert rates.sqlToSqo.denominator == 0.0

    def test_monthly_period(self, q1_records):
        rates = period_mode_rates(q1_records, "2026-02", TrendGranularity.MONTH)
        # MQL in Feb: r1. Contacted in Feb: r4.
        assert rates.contactedToMql.numerator == 1
        assert rates.contactedToMql.denominator == 1



class TestSqlToSqoAcrossQuarters:
    """
    s1: SQL in Q1, SQO in Q2
    s2: SQL in Q1, still open
    s3: SQL in Q2, closed without an SQO
    """

    @pytest.fixture
    def records(self):
        return [
            DetailRecord(id="s1", sqlDate="2026-03-20", sqoDate="2026-04-10"),
            DetailRecord(id="s2", sqlDate="2026-03-05"),
            DetailRecord(id="s3", sqlDate="2026-04-02", closedDate="2026-05-01"),
        ]

    def test_period_mode_counts_the_sqo_in_the_later_quarter(self, records):
        q1 = period_mode_rates(records, "2026-Q1", TrendGranularity.QUARTER).sqlToSqo
        q2 = period_mode_rates(records, "2026-Q2", TrendGranularity.QUARTER).sqlToSqo

        assert (q1.numerator, q1.denominator) == (0, 2)
        assert (q2.numerator, q2.denominator) == (1, 1)

    def test_cohort_mode_credits_the_sql_quarter(self, records):
        q1 = cohort_mode_rates(records, "2026-Q1", TrendGranularity.QUARTER).sqlToSqo
        q2 = cohort_mode_rates(records, "2026-Q2", TrendGranularity.QUARTER).sqlToSqo

        # s2 is open: in neither numerator nor denominator.
        assert (q1.numerator, q1.denominator) == (1, 1)
        assert q1.rate == pytest.approx(1.0)
        assert (q2.numerator, q2.denominator) == (0, 1)


# =============================================================================
# TREND WINDOWS
# =============================================================================


class TestTrendWindow:

    def test_quarterly_window(self):
        start, end, periods, selected = trend_window(TrendGranularity.QUARTER, date(2026, 5, 15))
        assert periods == ["2025-Q3", "2025-Q4", "2026-Q1", "2026-Q2"]
        assert selected == ["2026-Q2"]
        assert start == date(2025, 7, 1)
        assert end == date(2026, 6, 30)

    def test_quarterly_window_crosses_years(self):
        assert expected_periods(TrendGranularity.QUARTER, date(2026, 2, 1)) == [
            "2025-Q2", "2025-Q3", "2025-Q4", "2026-Q1",
        ]

    def test_monthly_window_ends_with_selected_quarter(self):
        start, end, periods, selected = trend_window(TrendGranularity.MONTH, date(2026, 5, 15))
        assert len(periods) == 12
        assert periods[0] == "2025-07"
        assert periods[-1] == "2026-06"
        assert selected == ["2026-04", "2026-05", "2026-06"]
        assert start == date(2025, 7, 1)
        assert end == date(2026, 6, 30)

    def test_fill_adds_missing_periods_and_drops_outsiders(self):
        points = [
            TrendDataPoint(period="2026-Q1", sqls=12, sqlToSqoRate=0.5),
            TrendDataPoint(period="2024-Q1", sqls=99),
        ]
        periods = ["2025-Q3", "2025-Q4", "2026-Q1", "2026-Q2"]
        filled = fill_trend_periods(points, periods, ["2026-Q2"])

        assert [p.period for p in filled] == periods
        assert filled[0].sqls == 0
        assert filled[2].sqls == 12
        assert filled[2].sqlToSqoRate == 0.5
        assert [p.isSelectedPeriod for p in filled] == [False, False, False, True]


# =============================================================================
# RANKING AND PACING
# =============================================================================


class TestDenseRank:

    def test_ties_share_rank_without_gaps(self):
        entries = [
            LeaderboardEntry(sgaName="Dana", sqoCount=2),
            LeaderboardEntry(sgaName="Bea", sqoCount=4),
            LeaderboardEntry(sgaName="Ann", sqoCount=5),
            LeaderboardEntry(sgaName="Cal", sqoCount=4),
        ]
        ranked = dense_rank(entries)
        assert [(e.sgaName, e.rank) for e in ranked] == [
            ("Ann", 1), ("Bea", 2), ("Cal", 2), ("Dana", 3),
        ]

    def test_all_zero_counts_share_first_place(self):
        ranked = dense_rank([
            LeaderboardEntry(sgaName="B", sqoCount=0),
            LeaderboardEntry(sgaName="A", sqoCount=0),
        ])
        assert [e.rank for e in ranked] == [1, 1]
        assert [e.sgaName for e in ranked] == ["A", "B"]


class TestQuarters:

    @pytest.mark.parametrize(
        "label,expected",
        [("2026-Q1", (2026, 1)), (" 2026-q3 ", (2026, 3))],
    )
    def test_parse(self, label, expected):
        assert parse_quarter(label) == expected

    @pytest.mark.parametrize("label", ["2026-Q5", "2026Q1", "", "Q1-2026"])
    def test_parse_invalid(self, label):
        with pytest.raises(ValueError):
            parse_quarter(label)

    def test_bounds(self):
        assert quarter_bounds(2026, 1) == (date(2026, 1, 1), date(2026, 3, 31))
        assert quarter_bounds(2026, 4) == (date(2026, 10, 1), date(2026, 12, 31))


class TestQuarterPacing:
    """2026-Q2 has 91 days; 2026-05-15 is day 45."""

    @pytest.mark.parametrize(
        "actual,status",
        [
            (30, PacingStatus.BEHIND),
            (44, PacingStatus.ON_TRACK),
            (45, PacingStatus.AHEAD),
            (50, PacingStatus.AHEAD),
        ],
    )
    def test_status(self, actual, status):
        progress = quarter_pacing("Sam", "2026-Q2", 90.0, actual, 0.0, date(2026, 5, 15))
        assert progress.pacingStatus == status

    def test_expected_and_progress(self):
        progress = quarter_pacing("Sam", "2026-Q2", 90.0, 30, 1_000_000.0, date(2026, 5, 15))
        assert progress.daysInQuarter == 91
        assert progress.daysElapsed == 45
        assert progress.expectedSqos == pytest.approx(44.5)
        assert progress.pacingDiff == pytest.approx(-14.5)
        assert progress.progressPercent == 33.0
        assert progress.variance.difference == -60.0
        assert progress.hasGoal is True

    def test_without_goal(self):
        progress = quarter_pacing("Sam", "2026-Q2", None, 7, 0.0, date(2026, 5, 15))
        assert progress.pacingStatus == PacingStatus.NO_GOAL
        assert progress.hasGoal is False
        assert progress.progressPercent is None
        assert progress.variance is None

    def test_zero_goal(self):
        progress = quarter_pacing("Sam", "2026-Q2", 0.0, 7, 0.0, date(2026, 5, 15))
        assert progress.pacingStatus == PacingStatus.NO_GOAL
        assert progress.hasGoal is True

    def test_reference_before_quarter(self):
        progress = quarter_pacing("Sam", "2026-Q3", 90.0, 0, 0.0, date(2026, 5, 15))
        assert progress.daysElapsed == 0
        assert progress.expectedSqos == 0.0


# =============================================================================
# WEEKLY GOALS
# =============================================================================


class TestWeeklyGoals:

    def test_week_monday(self):
        assert week_monday(date(2026, 5, 15)) == date(2026, 5, 11)
        assert week_monday(date(2026, 5, 11)) == date(2026, 5, 11)
        assert week_monday(date(2026, 5, 17)) == date(2026, 5, 11)

    def test_goal_week_without_actuals_counts_as_zero(self):
        goal = WeeklyGoal(sgaName="Sam", weekStartDate=date(2026, 5, 18), initialCallsGoal=5, sqoGoal=1)
        actuals = [WeeklyActual(weekStartDate=date(2026, 5, 11), initialCalls=4, sqos=1)]

        weeks = weekly_goal_vs_actual(actuals, [goal])

        assert [w.weekStartDate for w in weeks] == [date(2026, 5, 18), date(2026, 5, 11)]
        upcoming = weeks[0]
        assert upcoming.actual.initialCalls == 0
        assert upcoming.variances["initialCalls"].difference == -5.0
        assert upcoming.variances["sqos"].isOnTrack is False
        assert weeks[1].hasGoal is False

    def test_zero_goal_has_no_percentage(self):
        goal = WeeklyGoal(sgaName="Sam", weekStartDate=date(2026, 5, 11))
        actuals = [WeeklyActual(weekStartDate=date(2026, 5, 11), qualificationCalls=2)]

        week = weekly_goal_vs_actual(actuals, [goal])[0]

        assert week.variances["qualificationCalls"].percentVariance is None
        assert week.variances["qualificationCalls"].isOnTrack is True

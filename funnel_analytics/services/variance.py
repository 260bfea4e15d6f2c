"""
Variance & Trend Engine.

Goal-vs-actual variance, conversion-rate math in period and cohort mode,
trend period windows, leaderboard ranking, quarterly pacing and weekly
goal-vs-actual.

Conversion modes:
- PERIOD ("what happened this period?"): the numerator counts records whose
  *target* milestone falls in the period and the denominator counts records
  whose *origin* milestone falls in the period. The two sets need not overlap,
  so rates can exceed 100%.
- COHORT ("how well does this period's cohort convert?"): only records whose
  origin milestone falls in the period count, and only once they are
  resolved (advanced to the target stage or closed/lost). Open records are
  excluded from numerator and denominator, so rates stay within [0, 1].

Division by a zero denominator always yields a rate of 0, with the inputs
still reported.

The warehouse computes the same rates in SQL (sql.funnel_queries); the
in-memory versions here operate on DetailRecords with pandas and share
the exact definitions.
"""

from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from funnel_analytics.models.enums import ConversionMode, PacingStatus, TrendGranularity
from funnel_analytics.models.schemas import (
    AnalyticsRecord,
    ConversionRate,
    ConversionRates,
    GoalVariance,
    LeaderboardEntry,
    QuarterlyProgress,
    TrendDataPoint,
    WeeklyActual,
    WeeklyGoal,
    WeeklyGoalWithActual,
)


# =============================================================================
# CONSTANTS
# =============================================================================

# Funnel transitions: (rate name, origin milestone field, target milestone field)
FUNNEL_TRANSITIONS: Tuple[Tuple[str, str, str], ...] = (
    ("contactedToMql", "contactedDate", "mqlDate"),
    ("mqlToSql", "mqlDate", "sqlDate"),
    ("sqlToSqo", "sqlDate", "sqoDate"),
    ("sqoToJoined", "sqoDate", "joinedDate"),
)

# Quarterly trends show the selected quarter plus this many prior quarters.
QUARTERS_BEFORE_SELECTED: int = 3

# Monthly trends show this many months ending with the selected quarter.
MONTHLY_WINDOW: int = 12

# Pacing tolerance (in SQOs) for 'on-track'.
PACING_TOLERANCE: float = 0.5


# =============================================================================
# VARIANCE
# =============================================================================


def variance(actual: float, goal: float) -> GoalVariance:
    """
    Compare an actual value with its goal.

    Args:
        actual: Observed value.
        goal: Target value.

    Returns:
        GoalVariance with difference = actual - goal, percentVariance =
        difference / goal * 100 (None when goal is 0), and
        isOnTrack = actual >= goal.

    Example:
        >>> v = variance(80, 100)
        >>> (v.difference, v.percentVariance, v.isOnTrack)
        (-20.0, -20.0, False)
    """
    actual_f = float(actual)
    goal_f = float(goal)
    difference = actual_f - goal_f
    percent: Optional[float] = None if goal_f == 0 else difference / goal_f * 100
    return GoalVariance(
        actual=actual_f,
        goal=goal_f,
        difference=difference,
        percentVariance=percent,
        isOnTrack=actual_f >= goal_f,
    )


# =============================================================================
# CONVERSION RATES
# =============================================================================


def safe_div(numerator: float, denominator: float) -> float:
    return 0.0 if not denominator else numerator / denominator


def conversion_rate(numerator: float, denominator: float) -> ConversionRate:
    """Build a ConversionRate; a zero denominator gives rate 0."""
    return ConversionRate(
        rate=safe_div(float(numerator), float(denominator)),
        numerator=float(numerator),
        denominator=float(denominator),
    )


def _records_frame(records: Iterable[AnalyticsRecord]) -> pd.DataFrame:
    columns = list(AnalyticsRecord.model_fields.keys())
    rows = [r.model_dump() for r in records]
    return pd.DataFrame(rows, columns=columns)


def _period_series(values: pd.Series, granularity: TrendGranularity) -> pd.Series:
    stamps = pd.to_datetime(values, errors="coerce")
    if granularity == TrendGranularity.MONTH:
        return stamps.dt.strftime("%Y-%m")
    years = stamps.dt.year.astype("Int64").astype(str)
    quarters = stamps.dt.quarter.astype("Int64").astype(str)
    return (years + "-Q" + quarters).where(stamps.notna())


def period_mode_rates(
    records: Sequence[AnalyticsRecord],
    period: str,
    granularity: TrendGranularity,
) -> ConversionRates:
    """
    Conversion rates for one period in PERIOD mode.

    Each transition's numerator counts records whose target milestone falls
    in `period`; its denominator counts records whose origin milestone falls
    in `period`. Resolution state is ignored.
    """
    frame = _records_frame(records)
    rates = {}
    for name, origin, target in FUNNEL_TRANSITIONS:
        numerator = int((_period_series(frame[target], granularity) == period).sum())
        denominator = int((_period_series(frame[origin], granularity) == period).sum())
        rates[name] = conversion_rate(numerator, denominator)
    return ConversionRates(mode=ConversionMode.PERIOD, **rates)


def cohort_mode_rates(
    records: Sequence[AnalyticsRecord],
    period: str,
    granularity: TrendGranularity,
) -> ConversionRates:
    """
    Conversion rates for one origin period in COHORT mode.

    The cohort is every record whose origin milestone falls in `period`. A
    cohort member counts only once resolved: it reached the target milestone
    (numerator and denominator) or was closed/lost without reaching it
    (denominator only). Open records are excluded entirely.
    """
    frame = _records_frame(records)
    closed = frame["closedDate"].notna()
    rates = {}
    for name, origin, target in FUNNEL_TRANSITIONS:
        in_cohort = _period_series(frame[origin], granularity) == period
        advanced = frame[target].notna()
        resolved = in_cohort & (advanced | closed)
        rates[name] = conversion_rate(int((resolved & advanced).sum()), int(resolved.sum()))
    return ConversionRates(mode=ConversionMode.COHORT, **rates)


def conversion_rates_in_memory(
    records: Sequence[AnalyticsRecord],
    period: str,
    granularity: TrendGranularity,
    mode: ConversionMode,
) -> ConversionRates:
    if mode == ConversionMode.COHORT:
        return cohort_mode_rates(records, period, granularity)
    return period_mode_rates(records, period, granularity)


# =============================================================================
# TREND PERIODS
# =============================================================================


def quarter_of(day: date) -> int:
    return (day.month - 1) // 3 + 1


def format_quarter(year: int, quarter: int) -> str:
    return f"{year}-Q{quarter}"


def format_month(year: int, month: int) -> str:
    return f"{year}-{month:02d}"


def parse_quarter(quarter: str) -> Tuple[int, int]:
    """
    Parse 'YYYY-Q#'.

    Raises:
        ValueError: If the string is not a valid quarter label.
    """
    try:
        year_text, q_text = quarter.strip().upper().split("-Q")
        year, q = int(year_text), int(q_text)
    except (AttributeError, ValueError) as e:
        raise ValueError(f"Invalid quarter '{quarter}', expected YYYY-Q#") from e
    if not 1 <= q <= 4:
        raise ValueError(f"Invalid quarter '{quarter}', expected YYYY-Q#")
    return year, q


def quarter_bounds(year: int, quarter: int) -> Tuple[date, date]:
    """First and last calendar day of a quarter."""
    start = date(year, (quarter - 1) * 3 + 1, 1)
    if quarter == 4:
        end = date(year, 12, 31)
    else:
        end = date(year, quarter * 3 + 1, 1) - timedelta(days=1)
    return start, end


def _shift_quarter(year: int, quarter: int, delta: int) -> Tuple[int, int]:
    index = year * 4 + (quarter - 1) + delta
    return index // 4, index % 4 + 1


def _shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def trend_window(
    granularity: TrendGranularity,
    selected_start: date,
) -> Tuple[date, date, List[str], List[str]]:
    """
    Periods shown on a conversion trend chart for a selected range.

    Quarterly: the quarter containing `selected_start` plus the 3 prior
    quarters. Monthly: 12 months ending with the last month of that quarter.

    Returns:
        Tuple of (window start date, window end date, expected period labels
        in chronological order, labels belonging to the selected quarter).
    """
    year, quarter = selected_start.year, quarter_of(selected_start)
    if granularity == TrendGranularity.QUARTER:
        quarters = [
            _shift_quarter(year, quarter, -offset)
            for offset in range(QUARTERS_BEFORE_SELECTED, -1, -1)
        ]
        start, _ = quarter_bounds(*quarters[0])
        _, end = quarter_bounds(*quarters[-1])
        periods = [format_quarter(y, q) for y, q in quarters]
        return start, end, periods, [format_quarter(year, quarter)]

    last_month = quarter * 3
    months = [
        _shift_month(year, last_month, -offset)
        for offset in range(MONTHLY_WINDOW - 1, -1, -1)
    ]
    start = date(months[0][0], months[0][1], 1)
    end_year, end_month = _shift_month(*months[-1], 1)
    end = date(end_year, end_month, 1) - timedelta(days=1)
    periods = [format_month(y, m) for y, m in months]
    selected = [format_month(year, m) for m in range(last_month - 2, last_month + 1)]
    return start, end, periods, selected


def expected_periods(granularity: TrendGranularity, selected_start: date) -> List[str]:
    """Period labels a trend chart must show, oldest first."""
    return trend_window(granularity, selected_start)[2]


def fill_trend_periods(
    points: Iterable[TrendDataPoint],
    expected_periods: Sequence[str],
    selected_periods: Sequence[str],
) -> List[TrendDataPoint]:
    """
    Guarantee one point per expected period, in chronological order.

    Missing periods get a zeroed point; points for periods outside the
    expected window are dropped. isSelectedPeriod is set from
    `selected_periods`.
    """
    by_period = {p.period: p for p in points}
    selected = set(selected_periods)
    filled: List[TrendDataPoint] = []
    for period in sorted(expected_periods):
        point = by_period.get(period) or TrendDataPoint(period=period)
        filled.append(point.model_copy(update={"isSelectedPeriod": period in selected}))
    return filled


# =============================================================================
# RANKING AND PACING
# =============================================================================


def dense_rank(entries: Iterable[LeaderboardEntry]) -> List[LeaderboardEntry]:
    """
    Rank leaderboard entries by SQO count (desc), name (asc).

    Ties share a rank and the next distinct count gets the next integer:
    counts [5, 4, 4, 2] rank as [1, 2, 2, 3].
    """
    ordered = sorted(entries, key=lambda e: (-e.sqoCount, e.sgaName))
    ranked: List[LeaderboardEntry] = []
    rank = 0
    previous: Optional[int] = None
    for entry in ordered:
        if entry.sqoCount != previous:
            rank += 1
            previous = entry.sqoCount
        ranked.append(entry.model_copy(update={"rank": rank}))
    return ranked


def quarter_pacing(
    sga_name: str,
    quarter: str,
    goal: Optional[float],
    actual: int,
    total_aum: float,
    reference_date: date,
) -> QuarterlyProgress:
    """
    Quarter-to-date pacing of SQOs against a pro-rated goal.

    expectedSqos = goal / daysInQuarter * daysElapsed (1 decimal). Status is
    'ahead' when actual beats expected by at least 0.5, 'behind' when it
    trails by more than 0.5, 'on-track' otherwise, and 'no-goal' without a
    positive goal.
    """
    year, q = parse_quarter(quarter)
    start, end = quarter_bounds(year, q)
    days_in_quarter = (end - start).days + 1
    days_elapsed = max(0, min(days_in_quarter, (reference_date - start).days + 1))

    expected = 0.0
    pacing_diff = 0.0
    progress: Optional[float] = None
    status = PacingStatus.NO_GOAL
    if goal is not None and goal > 0:
        expected = round(goal / days_in_quarter * days_elapsed, 1)
        pacing_diff = actual - expected
        progress = float(round(actual / goal * 100))
        if pacing_diff >= PACING_TOLERANCE:
            status = PacingStatus.AHEAD
        elif pacing_diff >= -PACING_TOLERANCE:
            status = PacingStatus.ON_TRACK
        else:
            status = PacingStatus.BEHIND

    return QuarterlyProgress(
        sgaName=sga_name,
        quarter=format_quarter(year, q),
        sqoGoal=goal,
        hasGoal=goal is not None,
        sqoActual=actual,
        totalAum=total_aum,
        progressPercent=progress,
        quarterStartDate=start,
        quarterEndDate=end,
        daysInQuarter=days_in_quarter,
        daysElapsed=days_elapsed,
        expectedSqos=expected,
        pacingDiff=round(pacing_diff, 1),
        pacingStatus=status,
        variance=variance(actual, goal) if goal is not None else None,
    )



# =============================================================================
# WEEKLY GOALS
# =============================================================================

# Weekly metric name -> WeeklyGoal field
WEEKLY_GOAL_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("initialCalls", "initialCallsGoal"),
    ("qualificationCalls", "qualificationCallsGoal"),
    ("sqos", "sqoGoal"),
)


def week_monday(day: date) -> date:
    return day - timedelta(days=day.weekday())


def weekly_variances(goal: WeeklyGoal, actual: WeeklyActual) -> Dict[str, GoalVariance]:
    return {
        metric: variance(getattr(actual, metric), getattr(goal, goal_field))
        for metric, goal_field in WEEKLY_GOAL_FIELDS
    }


def weekly_goal_vs_actual(
    actuals: Iterable[WeeklyActual],
    goals: Iterable[WeeklyGoal],
) -> List[WeeklyGoalWithActual]:
    """
    Pair each week's actuals with its goal, newest week first.

    A week with a goal but no actuals row counts as zero activity. A week
    without a goal has hasGoal=False and no variances.
    """
    by_week: Dict[date, WeeklyActual] = {a.weekStartDate: a for a in actuals}
    goals_by_week: Dict[date, WeeklyGoal] = {g.weekStartDate: g for g in goals}
    for week in goals_by_week:
        by_week.setdefault(week, WeeklyActual(weekStartDate=week))

    weeks: List[WeeklyGoalWithActual] = []
    for week in sorted(by_week, reverse=True):
        actual = by_week[week]
        goal = goals_by_week.get(week)
        weeks.append(WeeklyGoalWithActual(
            weekStartDate=week,
            weekEndDate=week + timedelta(days=6),
            goal=goal,
            actual=actual,
            hasGoal=goal is not None,
            variances=weekly_variances(goal, actual) if goal is not None else {},
        ))
    return weeks


__all__ = [
    "FUNNEL_TRANSITIONS",
    "WEEKLY_GOAL_FIELDS",
    "variance",
    "safe_div",
    "conversion_rate",
    "period_mode_rates",
    "cohort_mode_rates",
    "conversion_rates_in_memory",
    "quarter_of",
    "format_quarter",
    "format_month",
    "parse_quarter",
    "quarter_bounds",
    "trend_window",
    "expected_periods",
    "fill_trend_periods",
    "dense_rank",
    "quarter_pacing",
    "week_monday",
    "weekly_variances",
    "weekly_goal_vs_actual",
]

"""
Enumeration definitions for the funnel analytics layer.

All enums inherit from both `str` and `Enum` so they serialize as plain
strings in pydantic models and API responses, and compare equal to the raw
values the dashboards send.

Groups:
- Filter vocabulary: DatePreset, MetricFilter, AdvancedDatePreset
- Funnel math: ConversionMode, TrendGranularity, PacingStatus
- Closed-lost follow-up: TimeBucket
- Infrastructure: QueryKind, CacheTag
"""

from enum import Enum


# =============================================================================
# Filter Vocabulary
# =============================================================================


class DatePreset(str, Enum):
    """
    Named date range presets selectable on the dashboard.

    CUSTOM uses the explicit startDate/endDate; ALL_TIME starts at the
    warehouse floor date; every other preset is resolved against the
    reference date (today in the reporting timezone).
    """
    YTD = "ytd"
    QTD = "qtd"
    Q1 = "q1"
    Q2 = "q2"
    Q3 = "q3"
    Q4 = "q4"
    CUSTOM = "custom"
    LAST_30 = "last30"
    LAST_90 = "last90"
    ALL_TIME = "alltime"


class AdvancedDatePreset(str, Enum):
    """Presets of the advanced call-date filters (initial call, qualification call)."""
    ANY = "any"
    QTD = "qtd"
    YTD = "ytd"
    CUSTOM = "custom"


class MetricFilter(str, Enum):
    """
    Funnel stage used to scope detail-record queries.

    Each value selects both the milestone date field that the date range
    applies to and the classification flag a record must carry.
    """
    ALL = "all"
    PROSPECT = "prospect"
    CONTACTED = "contacted"
    MQL = "mql"
    SQL = "sql"
    SQO = "sqo"
    SIGNED = "signed"
    JOINED = "joined"
    OPEN_PIPELINE = "openPipeline"


# =============================================================================
# Funnel Math
# =============================================================================


class ConversionMode(str, Enum):
    """
    How conversion rates attribute outcomes to periods.

    - PERIOD: numerator and denominator each count every record whose own
      milestone falls in the period ("what happened this period"). Rates may
      exceed 100%.
    - COHORT: outcomes are attributed to the record's origin period and only
      resolved records (advanced or closed/lost) count, so rates stay in [0, 1].
    """
    PERIOD = "period"
    COHORT = "cohort"


class TrendGranularity(str, Enum):
    """Bucket size for conversion trend series ('YYYY-MM' or 'YYYY-Q#')."""
    MONTH = "month"
    QUARTER = "quarter"


class PacingStatus(str, Enum):
    """Quarter-to-date pacing of actual SQOs against the pro-rated goal."""
    AHEAD = "ahead"
    ON_TRACK = "on-track"
    BEHIND = "behind"
    NO_GOAL = "no-goal"


# =============================================================================
# Closed-Lost Follow-Up
# =============================================================================


class TimeBucket(str, Enum):
    """
    Canonical elapsed-time buckets since last contact.

    Buckets are contiguous, half-open 30-day ranges ([0,30), [30,60), ...,
    [150,180)) plus an open-ended 180+ bucket. ALL is a request-only value
    meaning "every bucket"; records are never classified as ALL.

    The 180+ bucket is served by a different warehouse source than the
    others (see services.reconciler).
    """
    UNDER_30 = "<30"
    DAYS_30_60 = "30-60"
    DAYS_60_90 = "60-90"
    DAYS_90_120 = "90-120"
    DAYS_120_150 = "120-150"
    DAYS_150_180 = "150-180"
    OVER_180 = "180+"
    ALL = "all"


# =============================================================================
# Infrastructure
# =============================================================================


class CacheTag(str, Enum):
    """
    Cache invalidation groups.

    DASHBOARD covers the main funnel dashboard operations; SGA_HUB covers the
    SGA hub (closed-lost, leaderboard, activity, quarterly progress). Both are
    invalidated after each warehouse refresh.
    """
    DASHBOARD = "dashboard"
    SGA_HUB = "sga-hub"


class QueryKind(str, Enum):
    """Logical query kinds understood by the query compiler."""
    FUNNEL_METRICS = "funnel_metrics"
    OPEN_PIPELINE_AUM = "open_pipeline_aum"
    CONVERSION_RATES = "conversion_rates"
    CONVERSION_TRENDS = "conversion_trends"
    CHANNEL_PERFORMANCE = "channel_performance"
    SOURCE_PERFORMANCE = "source_performance"
    DETAIL_RECORDS = "detail_records"
    PIPELINE_SUMMARY = "pipeline_summary"
    PIPELINE_DRILLDOWN = "pipeline_drilldown"
    CLOSED_LOST = "closed_lost"
    FORECAST_GOALS = "forecast_goals"
    ACTIVITY_DISTRIBUTION = "activity_distribution"
    SGA_LEADERBOARD = "sga_leaderboard"
    QUARTERLY_SQO_COUNT = "quarterly_sqo_count"
    WEEKLY_ACTUALS = "weekly_actuals"


__all__ = [
    "DatePreset",
    "AdvancedDatePreset",
    "MetricFilter",
    "ConversionMode",
    "TrendGranularity",
    "PacingStatus",
    "TimeBucket",
    "CacheTag",
    "QueryKind",
]

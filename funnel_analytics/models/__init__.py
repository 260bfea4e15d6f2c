"""
Package initialization file for funnel analytics models.

Re-exports all pydantic schemas and enumerations so other modules can
import them from funnel_analytics.models directly:

    from funnel_analytics.models import FilterSpec, TimeBucket, GoalVariance
"""

# =============================================================================
# Enums
# =============================================================================

from funnel_analytics.models.enums import (
    # Filter vocabulary
    DatePreset,
    AdvancedDatePreset,
    MetricFilter,
    # Funnel math
    ConversionMode,
    TrendGranularity,
    PacingStatus,
    # Closed-lost follow-up
    TimeBucket,
    # Infrastructure
    CacheTag,
    QueryKind,
)

# =============================================================================
# Schemas
# =============================================================================

from funnel_analytics.models.schemas import (
    # Filter state
    MultiSelectFilter,
    DateRangeFilter,
    AdvancedFilterSet,
    FilterSpec,
    # Records
    DetailRecord,
    AnalyticsRecord,
    ClosedLostRecord,
    # Funnel math results
    FunnelMetrics,
    ForecastGoals,
    GoalVariance,
    FunnelMetricsWithGoals,
    ConversionRate,
    ConversionRates,
    TrendDataPoint,
    # Performance tables
    ChannelPerformanceRow,
    SourcePerformanceRow,
    # Pipeline
    PipelineStageSummary,
    PipelineSummary,
    PipelineDrillDown,
    PipelineStagesDrillDown,
    # SGA hub
    ActivityDayPoint,
    ActivityDistribution,
    LeaderboardEntry,
    QuarterlyProgress,
    WeeklyActual,
    WeeklyGoal,
    WeeklyGoalWithActual,
    WeeklyProgress,
    # API bodies
    FunnelMetricsRequest,
    ConversionRequest,
    DashboardFiltersRequest,
    DetailRecordsRequest,
    PipelineSummaryRequest,
    PipelineDrillDownRequest,
    PipelineStagesRequest,
    ClosedLostRequest,
    ActivityDistributionRequest,
    LeaderboardRequest,
    QuarterlyProgressRequest,
    QuarterlyGoalRequest,
    QuarterlyGoalResponse,
    WeeklyRangeRequest,
    WeeklyGoalRequest,
    CacheRefreshResponse,
    ErrorResponse,
)

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
    "MultiSelectFilter",
    "DateRangeFilter",
    "AdvancedFilterSet",
    "FilterSpec",
    "DetailRecord",
    "AnalyticsRecord",
    "ClosedLostRecord",
    "FunnelMetrics",
    "ForecastGoals",
    "GoalVariance",
    "FunnelMetricsWithGoals",
    "ConversionRate",
    "ConversionRates",
    "TrendDataPoint",
    "ChannelPerformanceRow",
    "SourcePerformanceRow",
    "PipelineStageSummary",
    "PipelineSummary",
    "PipelineDrillDown",
    "PipelineStagesDrillDown",
    "ActivityDayPoint",
    "ActivityDistribution",
    "LeaderboardEntry",
    "QuarterlyProgress",
    "WeeklyActual",
    "WeeklyGoal",
    "WeeklyGoalWithActual",
    "WeeklyProgress",
    "FunnelMetricsRequest",
    "ConversionRequest",
    "DashboardFiltersRequest",
    "DetailRecordsRequest",
    "PipelineSummaryRequest",
    "PipelineDrillDownRequest",
    "PipelineStagesRequest",
    "ClosedLostRequest",
    "ActivityDistributionRequest",
    "LeaderboardRequest",
    "QuarterlyProgressRequest",
    "QuarterlyGoalRequest",
    "QuarterlyGoalResponse",
    "WeeklyRangeRequest",
    "WeeklyGoalRequest",
    "CacheRefreshResponse",
    "ErrorResponse",
]

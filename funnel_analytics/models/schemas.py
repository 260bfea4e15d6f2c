"""
Pydantic request/response models for the funnel analytics layer.

This module provides type-safe validation and serialization for:
- Filter state (FilterSpec, AdvancedFilterSet, MultiSelectFilter, DateRangeFilter)
- Funnel records (DetailRecord / AnalyticsRecord, ClosedLostRecord)
- Funnel math results (FunnelMetrics, ConversionRate(s), TrendDataPoint)
- Goals and variance (ForecastGoals, GoalVariance, QuarterlyProgress)
- Performance tables, pipeline summaries, SGA hub results
- API request bodies and error/refresh responses

Field names are camelCase to match the dashboard JSON contract. Filter
models are frozen: a FilterSpec is an immutable value object, hashable, and
safe to use as part of a cache key.

All models use Pydantic v2 syntax.
"""

from datetime import date as DateType, datetime
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from funnel_analytics.models.enums import (
    AdvancedDatePreset,
    ConversionMode,
    DatePreset,
    MetricFilter,
    PacingStatus,
    TimeBucket,
    TrendGranularity,
)


# =============================================================================
# Filter State
# =============================================================================


class MultiSelectFilter(BaseModel):
    """
    One multi-select filter group.

    States:
    - selectAll=True: no restriction; `selected` is ignored.
    - selectAll=False, selected non-empty: restrict to the selected values.
    - selectAll=False, selected empty: exclude everything. This is NOT the
      same as "no filter" and compiles to a predicate matching zero rows.
    """
    model_config = ConfigDict(frozen=True)

    selectAll: bool = Field(True, description="Ignore `selected` and match every value")
    selected: FrozenSet[str] = Field(
        default_factory=frozenset,
        description="Explicitly selected values (used only when selectAll is false)",
    )

    @property
    def is_active(self) -> bool:
        return not self.selectAll

    @property
    def excludes_everything(self) -> bool:
        return not self.selectAll and not self.selected


class DateRangeFilter(BaseModel):
    """Optional date-range restriction on a DATE column (advanced filters)."""
    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(False, description="Whether the range applies at all")
    preset: AdvancedDatePreset = Field(AdvancedDatePreset.ANY, description="Preset selected in the UI")
    startDate: Optional[DateType] = Field(None, description="Inclusive lower bound")
    endDate: Optional[DateType] = Field(None, description="Inclusive upper bound")


class AdvancedFilterSet(BaseModel):
    """Multi-select groups and call-date ranges from the advanced filter drawer."""
    model_config = ConfigDict(frozen=True)

    initialCallScheduled: DateRangeFilter = Field(default_factory=DateRangeFilter)
    qualificationCallDate: DateRangeFilter = Field(default_factory=DateRangeFilter)
    channels: MultiSelectFilter = Field(default_factory=MultiSelectFilter)
    sources: MultiSelectFilter = Field(default_factory=MultiSelectFilter)
    sgas: MultiSelectFilter = Field(default_factory=MultiSelectFilter)
    sgms: MultiSelectFilter = Field(default_factory=MultiSelectFilter)
    experimentationTags: MultiSelectFilter = Field(default_factory=MultiSelectFilter)
    campaigns: MultiSelectFilter = Field(default_factory=MultiSelectFilter)


class FilterSpec(BaseModel):
    """
    Immutable request-scoped filter state compiled into warehouse queries.

    Single-value filters apply only when set to a non-empty string. The date
    range is taken from `datePreset`; `startDate`/`endDate` are used for the
    custom preset.
    """
    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        json_schema_extra={
            "example": {
                "datePreset": "q1",
                "year": 2026,
                "channel": "Outbound",
                "sga": "Jane Smith",
                "metricFilter": "sqo",
                "advancedFilters": {
                    "sources": {"selectAll": False, "selected": ["LinkedIn", "Referral"]},
                },
            }
        },
    )

    startDate: Optional[DateType] = Field(None, description="Start of a custom range (inclusive)")
    endDate: Optional[DateType] = Field(None, description="End of a custom range (inclusive)")
    datePreset: DatePreset = Field(DatePreset.YTD, description="Named date range preset")
    year: Optional[int] = Field(None, description="Year for ytd/q1-q4 presets (defaults to the reference year)")
    channel: Optional[str] = Field(None, description="Mapped channel grouping")
    source: Optional[str] = Field(None, description="Original lead source")
    sga: Optional[str] = Field(None, description="SGA owner name")
    sgm: Optional[str] = Field(None, description="SGM owner name")
    stage: Optional[str] = Field(None, description="Opportunity stage name")
    experimentationTag: Optional[str] = Field(None, description="Experimentation tag")
    campaignId: Optional[str] = Field(None, description="Campaign id")
    metricFilter: MetricFilter = Field(MetricFilter.ALL, description="Funnel stage for detail records")
    advancedFilters: AdvancedFilterSet = Field(default_factory=AdvancedFilterSet)


# =============================================================================
# Records
# =============================================================================


class DetailRecord(BaseModel):
    """
    One funnel record (a lead and/or opportunity) from the funnel master view.

    `aum` holds exactly one value per record: the underwritten AUM when
    present, otherwise the raw amount.
    """
    id: str = Field(..., description="Warehouse primary key")
    advisorName: str = Field("Unknown")
    source: str = Field("Unknown")
    channel: str = Field("Unknown")
    stage: str = Field("Unknown")
    sga: Optional[str] = None
    sgm: Optional[str] = None
    campaignId: Optional[str] = None
    campaignName: Optional[str] = None
    aum: float = Field(0.0, description="Underwritten AUM, falling back to amount")
    salesforceUrl: str = ""
    relevantDate: Optional[str] = Field(None, description="Date the record matched the filter on (YYYY-MM-DD)")
    contactedDate: Optional[str] = None
    mqlDate: Optional[str] = None
    sqlDate: Optional[str] = None
    sqoDate: Optional[str] = None
    joinedDate: Optional[str] = None
    signedDate: Optional[str] = None
    closedDate: Optional[str] = Field(None, description="Closed-lost date, if the record was closed")
    initialCallScheduledDate: Optional[str] = None
    qualificationCallDate: Optional[str] = None
    isContacted: bool = False
    isMql: bool = False
    isSql: bool = False
    isSqo: bool = False
    isJoined: bool = False
    isOpenPipeline: bool = False
    opportunityId: Optional[str] = None
    recordTypeId: Optional[str] = None


# Generic funnel row used by the in-memory variance/trend engine.
AnalyticsRecord = DetailRecord


class ClosedLostRecord(BaseModel):
    """A closed-lost opportunity eligible for SGA follow-up."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "006Dn00000ABCDE",
                "oppName": "Jane Advisor",
                "leadId": "00QDn00000XYZ",
                "opportunityId": "006Dn00000ABCDE",
                "lastContactDate": "2026-05-02",
                "closedLostDate": "2026-06-01",
                "timeSinceContactBucket": "30-60",
                "daysSinceContact": 41,
            }
        }
    )

    id: str
    oppName: Optional[str] = None
    leadId: Optional[str] = None
    opportunityId: Optional[str] = None
    leadUrl: Optional[str] = None
    opportunityUrl: Optional[str] = None
    salesforceUrl: Optional[str] = None
    lastContactDate: Optional[str] = None
    closedLostDate: Optional[str] = None
    sqlDate: Optional[str] = None
    closedLostReason: Optional[str] = None
    closedLostDetails: Optional[str] = None
    timeSinceContactBucket: TimeBucket
    daysSinceContact: Optional[int] = None
    firmCrd: Optional[str] = Field(None, description="Firm registration number used for re-engagement exclusion")


# =============================================================================
# Funnel Metrics, Goals and Variance
# =============================================================================


class FunnelMetrics(BaseModel):
    """Funnel volumes and AUM totals for the selected range."""
    prospects: int = 0
    contacted: int = 0
    mqls: int = 0
    sqls: int = 0
    sqos: int = 0
    signed: int = 0
    joined: int = 0
    pipelineAum: float = Field(0.0, description="AUM of SQOs created in range")
    joinedAum: float = Field(0.0, description="AUM of advisors who joined in range")
    openPipelineAum: float = Field(0.0, description="Current open pipeline AUM (not date filtered)")


class ForecastGoals(BaseModel):
    """Daily-ized forecast goals summed over a date range."""
    prospects: float = 0.0
    mqls: float = 0.0
    sqls: float = 0.0
    sqos: float = 0.0
    joined: float = 0.0


class GoalVariance(BaseModel):
    """
    Actual-versus-goal comparison.

    percentVariance is None when the goal is 0 (the percentage is undefined).
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "actual": 80,
                "goal": 100,
                "difference": -20,
                "percentVariance": -20.0,
                "isOnTrack": False,
            }
        }
    )

    actual: float
    goal: float
    difference: float
    percentVariance: Optional[float] = None
    isOnTrack: bool


class FunnelMetricsWithGoals(BaseModel):
    """Funnel metrics plus forecast goals; goals are best-effort."""
    metrics: FunnelMetrics
    goals: Optional[ForecastGoals] = None
    variances: Dict[str, GoalVariance] = Field(default_factory=dict)
    unavailable: List[str] = Field(
        default_factory=list,
        description="Segments omitted because their sub-query failed",
    )


class ConversionRate(BaseModel):
    """A single conversion rate with its inputs (rate is 0 when denominator is 0)."""
    rate: float
    numerator: float
    denominator: float


class ConversionRates(BaseModel):
    """The four funnel transition rates for one range."""
    mode: ConversionMode
    contactedToMql: ConversionRate
    mqlToSql: ConversionRate
    sqlToSqo: ConversionRate
    sqoToJoined: ConversionRate


class TrendDataPoint(BaseModel):
    """One period of a conversion trend series."""
    period: str = Field(..., description="'YYYY-MM' for months, 'YYYY-Q#' for quarters")
    sqls: int = 0
    sqos: int = 0
    joined: int = 0
    contactedToMqlRate: float = 0.0
    mqlToSqlRate: float = 0.0
    sqlToSqoRate: float = 0.0
    sqoToJoinedRate: float = 0.0
    isSelectedPeriod: bool = False


# =============================================================================
# Performance Tables
# =============================================================================


class ChannelPerformanceRow(BaseModel):
    """Funnel volumes and cohort rates for one channel."""
    channel: str
    prospects: int = 0
    contacted: int = 0
    mqls: int = 0
    sqls: int = 0
    sqos: int = 0
    joined: int = 0
    contactedToMqlRate: float = 0.0
    mqlToSqlRate: float = 0.0
    sqlToSqoRate: float = 0.0
    sqoToJoinedRate: float = 0.0
    aum: float = 0.0
    goals: Optional[ForecastGoals] = None


class SourcePerformanceRow(ChannelPerformanceRow):
    """Funnel volumes and cohort rates for one original source."""
    source: str


# =============================================================================
# Pipeline
# =============================================================================


class PipelineStageSummary(BaseModel):
    stage: str
    count: int = 0
    aum: float = 0.0


class PipelineSummary(BaseModel):
    """Open pipeline totals broken down by stage."""
    totalAum: float = 0.0
    recordCount: int = 0
    byStage: List[PipelineStageSummary] = Field(default_factory=list)


class PipelineDrillDown(BaseModel):
    """Open pipeline records in one stage."""
    stage: str
    records: List[DetailRecord] = Field(default_factory=list)


class PipelineStagesDrillDown(BaseModel):
    """Open pipeline records for several stages fetched concurrently."""
    stages: Dict[str, List[DetailRecord]] = Field(default_factory=dict)
    failedStages: List[str] = Field(
        default_factory=list,
        description="Stages whose sub-query failed and were omitted",
    )


# =============================================================================
# SGA Hub
# =============================================================================


class ActivityDayPoint(BaseModel):
    """Average and total activity for one weekday in both periods."""
    dayOfWeek: int = Field(..., ge=0, le=6, description="0=Sunday ... 6=Saturday")
    dayName: str
    currentAvg: float = 0.0
    currentTotal: float = 0.0
    comparisonAvg: float = 0.0
    comparisonTotal: float = 0.0
    varianceAvg: float = 0.0
    variancePercent: float = Field(0.0, description="0 when the comparison average is 0")


class ActivityDistribution(BaseModel):
    """Day-of-week activity distribution for one channel (Mon..Sun order)."""
    channel: str
    days: List[ActivityDayPoint] = Field(default_factory=list)


class LeaderboardEntry(BaseModel):
    """SQO count for one SGA; tied counts share a rank."""
    sgaName: str
    sqoCount: int
    rank: int = 0


class QuarterlyProgress(BaseModel):
    """Quarter-to-date SQO progress and pacing for one SGA."""
    sgaName: str
    quarter: str = Field(..., description="'YYYY-Q#'")
    sqoGoal: Optional[float] = None
    hasGoal: bool = False
    sqoActual: int = 0
    totalAum: float = 0.0
    progressPercent: Optional[float] = None
    quarterStartDate: DateType
    quarterEndDate: DateType
    daysInQuarter: int
    daysElapsed: int
    expectedSqos: float = 0.0
    pacingDiff: float = 0.0
    pacingStatus: PacingStatus = PacingStatus.NO_GOAL
    variance: Optional[GoalVariance] = None
    unavailable: List[str] = Field(default_factory=list, description="Segments that failed (e.g. 'goal')")


class WeeklyActual(BaseModel):
    """Initial calls, qualification calls and SQOs for one SGA in one Monday-start week."""
    weekStartDate: DateType
    initialCalls: int = 0
    qualificationCalls: int = 0
    sqos: int = 0


class WeeklyGoal(BaseModel):
    sgaName: str
    weekStartDate: DateType
    initialCallsGoal: float = 0.0
    qualificationCallsGoal: float = 0.0
    sqoGoal: float = 0.0
    updatedAt: Optional[datetime] = None


class WeeklyGoalWithActual(BaseModel):
    """
    One week's goal next to its actuals.

    `variances` is keyed by initialCalls, qualificationCalls and sqos and is
    empty when no goal was set for the week.
    """
    weekStartDate: DateType
    weekEndDate: DateType
    goal: Optional[WeeklyGoal] = None
    actual: WeeklyActual
    hasGoal: bool = False
    variances: Dict[str, GoalVariance] = Field(default_factory=dict)


class WeeklyProgress(BaseModel):
    sgaName: str
    weeks: List[WeeklyGoalWithActual] = Field(default_factory=list)
    unavailable: List[str] = Field(default_factory=list, description="Segments that failed (e.g. 'goals')")


# =============================================================================
# API Request / Response Bodies
# =============================================================================


class FunnelMetricsRequest(BaseModel):
    filters: FilterSpec = Field(default_factory=FilterSpec)
    includeGoals: bool = True


class ConversionRequest(BaseModel):
    filters: FilterSpec = Field(default_factory=FilterSpec)
    mode: ConversionMode = ConversionMode.PERIOD
    granularity: TrendGranularity = TrendGranularity.QUARTER


class DashboardFiltersRequest(BaseModel):
    filters: FilterSpec = Field(default_factory=FilterSpec)
    includeGoals: bool = False


class DetailRecordsRequest(BaseModel):
    filters: FilterSpec = Field(default_factory=FilterSpec)
    limit: Optional[int] = Field(None, gt=0, description="Row cap (defaults to the configured limit)")


class PipelineSummaryRequest(BaseModel):
    stages: Optional[List[str]] = Field(None, description="Stages to include (defaults to open stages)")
    sgms: Optional[List[str]] = None


class PipelineDrillDownRequest(BaseModel):
    stage: str = Field(..., min_length=1)
    filters: FilterSpec = Field(default_factory=FilterSpec)
    sgms: Optional[List[str]] = None


class PipelineStagesRequest(BaseModel):
    stages: Optional[List[str]] = Field(None, description="Stages to fetch (defaults to open stages)")
    filters: FilterSpec = Field(default_factory=FilterSpec)
    sgms: Optional[List[str]] = None


class ClosedLostRequest(BaseModel):
    filters: FilterSpec = Field(default_factory=FilterSpec)
    timeBuckets: Optional[List[TimeBucket]] = Field(
        None, description="Buckets to include (defaults to every bucket from 30 days)"
    )


class ActivityDistributionRequest(BaseModel):
    filters: FilterSpec = Field(default_factory=FilterSpec)
    comparisonStartDate: DateType
    comparisonEndDate: DateType
    includeAutomated: bool = False


class LeaderboardRequest(BaseModel):
    filters: FilterSpec = Field(default_factory=FilterSpec)


class QuarterlyProgressRequest(BaseModel):
    sgaName: str = Field(..., min_length=1)
    quarter: str = Field(..., pattern=r"^\d{4}-Q[1-4]$")


class QuarterlyGoalRequest(BaseModel):
    sgaName: str = Field(..., min_length=1)
    quarter: str = Field(..., pattern=r"^\d{4}-Q[1-4]$")
    sqoGoal: float = Field(..., ge=0, description="Target SQOs for the quarter")


class QuarterlyGoalResponse(BaseModel):
    sgaName: str
    quarter: str
    sqoGoal: float
    updatedAt: datetime


class WeeklyRangeRequest(BaseModel):
    sgaName: str = Field(..., min_length=1)
    startDate: DateType
    endDate: DateType


class WeeklyGoalRequest(BaseModel):
    sgaName: str = Field(..., min_length=1)
    weekStartDate: DateType = Field(..., description="Monday of the week")
    initialCallsGoal: float = Field(0, ge=0)
    qualificationCallsGoal: float = Field(0, ge=0)
    sqoGoal: float = Field(0, ge=0)

    @field_validator("weekStartDate")
    @classmethod
    def must_be_monday(cls, value: DateType) -> DateType:
        if value.weekday() != 0:
            raise ValueError(f"{value.isoformat()} is not a Monday")
        return value


class CacheRefreshResponse(BaseModel):
    success: bool
    message: str
    tags: List[str]
    evicted: int = 0
    refreshedAt: datetime


class ErrorResponse(BaseModel):
    error: str
    message: str
    context: Optional[Dict[str, object]] = None


__all__ = [
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

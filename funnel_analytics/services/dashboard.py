"""
Dashboard service: the cached entry point for every dashboard operation.

Each public method compiles the FilterSpec into a QueryPlan, runs the plan
against the warehouse, post-processes the rows (reconciliation, bucketing,
variance, ranking) and returns typed results. Every public method is
memoized through the injected CacheStore with @cached_query; the tag decides
which refresh evicts it:

    CacheTag.DASHBOARD: funnel, conversion, performance, detail, pipeline
    CacheTag.SGA_HUB:   closed-lost, activity, leaderboard, quarterly progress,
                        weekly actuals and weekly progress

Fan-out policy per call site:
- Funnel metrics + forecast goals: isolated. Goals are best-effort; a goals
  failure is reported in `unavailable` and the metrics are still returned.
- Pipeline drill-down across several stages: isolated. Failed stages are
  listed in `failedStages`.
- Closed-lost sources: strict. A follow-up list missing one source would
  silently hide records, so any failure aborts the call.
- Quarterly progress count + goal: isolated. A missing goals store leaves
  the goal unset and lists 'goal' in `unavailable`.
- Weekly actuals + weekly goals: isolated, same as quarterly progress.

CompileError and SourceQueryError propagate unchanged and are never cached.
A best-effort result with a failed segment is returned but not cached, so
the next call retries the segment instead of serving the gap until the next
refresh.
"""

import logging
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from funnel_analytics.core.cache import CacheStore, cached_query
from funnel_analytics.core.errors import SourceQueryError
from funnel_analytics.models.enums import CacheTag, ConversionMode, QueryKind, TimeBucket, TrendGranularity
from funnel_analytics.models.schemas import (
    ActivityDistribution,
    ChannelPerformanceRow,
    ClosedLostRecord,
    ConversionRates,
    DetailRecord,
    FilterSpec,
    ForecastGoals,
    FunnelMetrics,
    FunnelMetricsWithGoals,
    LeaderboardEntry,
    PipelineDrillDown,
    PipelineStagesDrillDown,
    PipelineStageSummary,
    PipelineSummary,
    QuarterlyProgress,
    SourcePerformanceRow,
    TrendDataPoint,
    WeeklyActual,
    WeeklyProgress,
)
from funnel_analytics.services.fan_out import gather_isolated, gather_strict
from funnel_analytics.services.goals import (
    fetch_dimension_goals,
    fetch_forecast_goals,
    fetch_quarterly_goal,
    fetch_weekly_goals,
    goal_names,
)
from funnel_analytics.services.reconciler import fetch_and_reconcile
from funnel_analytics.services.records import (
    OPEN_PIPELINE_STAGES,
    STAGE_ORDER,
    activity_distributions_from_rows,
    channel_performance_from_row,
    conversion_rates_from_row,
    detail_record_from_row,
    funnel_metrics_from_rows,
    map_rows,
    source_performance_from_row,
    to_int,
    to_number,
    to_string,
    trend_point_from_row,
    weekly_actual_from_row,
)
from funnel_analytics.services.variance import (
    dense_rank,
    fill_trend_periods,
    quarter_pacing,
    trend_window,
    variance,
    week_monday,
    weekly_goal_vs_actual,
)
from funnel_analytics.sql.compiler import compile_query, resolve_date_range
from funnel_analytics.sql.closed_lost_queries import (
    OLDER_QUERY_NAME,
    RECENT_QUERY_NAME,
    REENGAGEMENT_QUERY_NAME,
)
from funnel_analytics.sql.params import QueryPlan

logger = logging.getLogger(__name__)


def _nothing_unavailable(result) -> bool:
    return not result.unavailable


def _no_failed_stages(result: PipelineStagesDrillDown) -> bool:
    return not result.failedStages


class DashboardService:
    """
    Cached dashboard operations.

    Attributes:
        settings: Settings with warehouse identifiers and limits.
        cache: Injected CacheStore used by @cached_query.
        warehouse: Object with an async `run_query(compiled_query)` method.
    """

    def __init__(
        self,
        settings,
        cache: CacheStore,
        warehouse,
        reference_date: Optional[Callable[[], date]] = None,
    ):
        self.settings = settings
        self.cache = cache
        self.warehouse = warehouse
        self._reference_date = reference_date or settings.reference_date

    def reference_date(self) -> date:
        return self._reference_date()

    def _compile(self, filters: FilterSpec, kind: QueryKind, **options) -> QueryPlan:
        return compile_query(
            filters,
            kind,
            reference_date=self.reference_date(),
            settings=self.settings,
            **options,
        )

    async def _rows(self, plan: QueryPlan) -> List[dict]:
        return await self.warehouse.run_query(plan.primary)

    # =========================================================================
    # FUNNEL METRICS AND GOALS
    # =========================================================================

    @cached_query("getFunnelMetrics", CacheTag.DASHBOARD)
    async def get_funnel_metrics(self, filters: FilterSpec) -> FunnelMetrics:
        plan = self._compile(filters, QueryKind.FUNNEL_METRICS)
        metrics_rows, pipeline_rows = await gather_strict(
            self.warehouse.run_query(plan.query("funnel_metrics")),
            self.warehouse.run_query(plan.query("open_pipeline_aum")),
        )
        return funnel_metrics_from_rows(
            metrics_rows[0] if metrics_rows else None,
            pipeline_rows[0] if pipeline_rows else None,
        )

    async def _forecast_goals(self, filters: FilterSpec) -> Optional[ForecastGoals]:
        start, _ = resolve_date_range(filters, self.reference_date())
        plan = self._compile(filters, QueryKind.FORECAST_GOALS)
        return await fetch_forecast_goals(
            self.warehouse, plan.primary, start, self.settings.forecast_start_date
        )

    @cached_query("getFunnelMetricsWithGoals", CacheTag.DASHBOARD, should_store=_nothing_unavailable)
    async def get_funnel_metrics_with_goals(self, filters: FilterSpec) -> FunnelMetricsWithGoals:
        """
        Funnel metrics plus forecast goals and per-metric variance.

        Goals are best-effort: when the goals query fails the metrics are
        returned with 'goals' listed in `unavailable`, and that result is not
        cached.

        Raises:
            CompileError: If the filters cannot be compiled.
            SourceQueryError: If the metrics query fails.
        """
        async def segment(name: str):
            if name == "metrics":
                return await self.get_funnel_metrics(filters)
            return await self._forecast_goals(filters)

        result = await gather_isolated(["metrics", "goals"], segment, label="funnel segment")
        if "metrics" in result.failures:
            raise result.failures["metrics"]

        metrics: FunnelMetrics = result.successes["metrics"]
        goals: Optional[ForecastGoals] = result.successes.get("goals")
        variances = {}
        if goals is not None:
            actuals = {"prospects": metrics.prospects, "mqls": metrics.mqls, "sqls": metrics.sqls,
                       "sqos": metrics.sqos, "joined": metrics.joined}
            variances = {name: variance(actuals[name], getattr(goals, name)) for name in goal_names()}
        return FunnelMetricsWithGoals(
            metrics=metrics,
            goals=goals,
            variances=variances,
            unavailable=result.failed_items,
        )

    # =========================================================================
    # CONVERSION RATES AND TRENDS
    # =========================================================================

    @cached_query("getConversionRates", CacheTag.DASHBOARD)
    async def get_conversion_rates(
        self,
        filters: FilterSpec,
        mode: ConversionMode = ConversionMode.PERIOD,
    ) -> ConversionRates:
        mode = ConversionMode(mode)
        plan = self._compile(filters, QueryKind.CONVERSION_RATES, mode=mode)
        rows = await self._rows(plan)
        return conversion_rates_from_row(rows[0] if rows else None, mode)

    @cached_query("getConversionTrends", CacheTag.DASHBOARD)
    async def get_conversion_trends(
        self,
        filters: FilterSpec,
        mode: ConversionMode = ConversionMode.PERIOD,
        granularity: TrendGranularity = TrendGranularity.QUARTER,
    ) -> List[TrendDataPoint]:
        """
        Conversion trend series: one point per expected period, oldest first.

        Quarterly shows the selected quarter plus the 3 before it; monthly
        shows the 12 months ending with the selected quarter.
        """
        granularity = TrendGranularity(granularity)
        plan = self._compile(filters, QueryKind.CONVERSION_TRENDS, mode=mode, granularity=granularity)
        rows = await self._rows(plan)
        points = map_rows(rows, trend_point_from_row, plan.primary.name)

        selected_start, _ = resolve_date_range(filters, self.reference_date())
        _, _, periods, selected = trend_window(granularity, selected_start)
        return fill_trend_periods(points, periods, selected)

    # =========================================================================
    # PERFORMANCE TABLES
    # =========================================================================

    async def _dimension_goals(self, filters: FilterSpec, dimension: str, key_column: str) -> Dict[str, ForecastGoals]:
        start, _ = resolve_date_range(filters, self.reference_date())
        plan = self._compile(filters, QueryKind.FORECAST_GOALS, dimension=dimension, channel=filters.channel)
        return await fetch_dimension_goals(
            self.warehouse, plan.primary, start, self.settings.forecast_start_date, key_column
        )

    @cached_query("getChannelPerformance", CacheTag.DASHBOARD)
    async def get_channel_performance(
        self,
        filters: FilterSpec,
        include_goals: bool = False,
    ) -> List[ChannelPerformanceRow]:
        plan = self._compile(filters, QueryKind.CHANNEL_PERFORMANCE)
        rows = map_rows(await self._rows(plan), channel_performance_from_row, plan.primary.name)
        if not include_goals:
            return rows

        goals = await self._optional_goals(filters, "channel", "channel_grouping_name")
        return [row.model_copy(update={"goals": goals.get(row.channel)}) for row in rows]

    @cached_query("getSourcePerformance", CacheTag.DASHBOARD)
    async def get_source_performance(
        self,
        filters: FilterSpec,
        include_goals: bool = False,
    ) -> List[SourcePerformanceRow]:
        plan = self._compile(filters, QueryKind.SOURCE_PERFORMANCE)
        rows = map_rows(await self._rows(plan), source_performance_from_row, plan.primary.name)
        if not include_goals:
            return rows

        goals = await self._optional_goals(filters, "source", "original_source")
        return [row.model_copy(update={"goals": goals.get(row.source)}) for row in rows]

    async def _optional_goals(self, filters: FilterSpec, dimension: str, key_column: str) -> Dict[str, ForecastGoals]:
        # Goals decorate the table; a failed lookup leaves rows without goals.
        try:
            return await self._dimension_goals(filters, dimension, key_column)
        except SourceQueryError as e:
            logger.warning(f"Forecast goals by {dimension} unavailable: {e}")
            return {}

    # =========================================================================
    # DETAIL RECORDS AND PIPELINE
    # =========================================================================

    @cached_query("getDetailRecords", CacheTag.DASHBOARD)
    async def get_detail_records(self, filters: FilterSpec, limit: Optional[int] = None) -> List[DetailRecord]:
        plan = self._compile(filters, QueryKind.DETAIL_RECORDS, limit=limit)
        return map_rows(await self._rows(plan), detail_record_from_row, plan.primary.name)

    @cached_query("getPipelineSummary", CacheTag.DASHBOARD)
    async def get_pipeline_summary(
        self,
        stages: Optional[Sequence[str]] = None,
        sgms: Optional[Sequence[str]] = None,
    ) -> PipelineSummary:
        """Open pipeline count and AUM per stage, in funnel stage order."""
        plan = self._compile(FilterSpec(), QueryKind.PIPELINE_SUMMARY, stages=stages, sgms=sgms)
        rows = await self._rows(plan)
        by_stage = [
            PipelineStageSummary(
                stage=to_string(row.get("stage")),
                count=to_int(row.get("count")),
                aum=to_number(row.get("aum")),
            )
            for row in rows
        ]
        by_stage.sort(key=lambda s: (STAGE_ORDER.index(s.stage) if s.stage in STAGE_ORDER else len(STAGE_ORDER), s.stage))
        return PipelineSummary(
            totalAum=sum(s.aum for s in by_stage),
            recordCount=sum(s.count for s in by_stage),
            byStage=by_stage,
        )

    @cached_query("getPipelineDrilldown", CacheTag.DASHBOARD)
    async def get_pipeline_drilldown(
        self,
        stage: str,
        filters: FilterSpec,
        sgms: Optional[Sequence[str]] = None,
    ) -> PipelineDrillDown:
        plan = self._compile(filters, QueryKind.PIPELINE_DRILLDOWN, stage=stage, sgms=sgms)
        records = map_rows(await self._rows(plan), detail_record_from_row, plan.primary.name)
        return PipelineDrillDown(stage=stage, records=records)

    @cached_query("getPipelineByStages", CacheTag.DASHBOARD, should_store=_no_failed_stages)
    async def get_pipeline_by_stages(
        self,
        filters: FilterSpec,
        stages: Optional[Sequence[str]] = None,
        sgms: Optional[Sequence[str]] = None,
    ) -> PipelineStagesDrillDown:
        """
        Drill-down records for several stages, fetched concurrently.

        Stages whose query fails are logged and listed in `failedStages`;
        the remaining stages are still returned. Only a result without
        failed stages is cached.
        """
        wanted = list(dict.fromkeys(stages or OPEN_PIPELINE_STAGES))

        async def fetch_stage(stage: str) -> List[DetailRecord]:
            drilldown = await self.get_pipeline_drilldown(stage, filters, sgms)
            return drilldown.records

        result = await gather_isolated(wanted, fetch_stage, label="pipeline stage")
        return PipelineStagesDrillDown(stages=result.successes, failedStages=result.failed_items)

    # =========================================================================
    # SGA HUB
    # =========================================================================

    @cached_query("getClosedLostRecords", CacheTag.SGA_HUB)
    async def get_closed_lost_records(
        self,
        filters: FilterSpec,
        time_buckets: Optional[Sequence[TimeBucket]] = None,
    ) -> List[ClosedLostRecord]:
        """
        Closed-lost follow-up records for the requested buckets.

        Both sources and the re-engagement lookup run concurrently under the
        strict policy: any failure aborts the call.
        """
        plan = self._compile(filters, QueryKind.CLOSED_LOST, buckets=time_buckets)
        return await fetch_and_reconcile(
            self.warehouse,
            recent_query=plan.get(RECENT_QUERY_NAME),
            older_query=plan.get(OLDER_QUERY_NAME),
            reengagement_query=plan.query(REENGAGEMENT_QUERY_NAME),
            reference_date=self.reference_date(),
        )

    @cached_query("getActivityDistribution", CacheTag.SGA_HUB)
    async def get_activity_distribution(
        self,
        filters: FilterSpec,
        comparison_start: date,
        comparison_end: date,
        include_automated: bool = False,
    ) -> List[ActivityDistribution]:
        plan = self._compile(
            filters,
            QueryKind.ACTIVITY_DISTRIBUTION,
            comparison_start=comparison_start,
            comparison_end=comparison_end,
            include_automated=include_automated,
        )
        rows = await self._rows(plan)
        try:
            return activity_distributions_from_rows(rows)
        except ValueError as e:
            raise SourceQueryError(
                f"Query '{plan.primary.name}' returned a malformed row: {e}",
                query_name=plan.primary.name,
            ) from e

    @cached_query("getSgaLeaderboard", CacheTag.SGA_HUB)
    async def get_sga_leaderboard(self, filters: FilterSpec) -> List[LeaderboardEntry]:
        """SQO leaderboard with dense ranking (ties share a rank)."""
        plan = self._compile(filters, QueryKind.SGA_LEADERBOARD)
        rows = await self._rows(plan)
        entries = [
            LeaderboardEntry(sgaName=to_string(row.get("sga_name")), sqoCount=to_int(row.get("sqo_count")))
            for row in rows
            if row.get("sga_name")
        ]
        return dense_rank(entries)

    @cached_query("getQuarterlyProgress", CacheTag.SGA_HUB, should_store=_nothing_unavailable)
    async def get_quarterly_progress(self, sga_name: str, quarter: str) -> QuarterlyProgress:
        """
        Quarter-to-date SQO progress and pacing for one SGA.

        Raises:
            CompileError: If the quarter label is invalid.
            SourceQueryError: If the SQO count query fails.
        """
        plan = self._compile(FilterSpec(), QueryKind.QUARTERLY_SQO_COUNT, sga_name=sga_name, quarter=quarter)

        async def segment(name: str):
            if name == "actual":
                return await self._rows(plan)
            return await fetch_quarterly_goal(sga_name, quarter)

        result = await gather_isolated(["actual", "goal"], segment, label="quarterly progress segment")
        if "actual" in result.failures:
            raise result.failures["actual"]

        rows = result.successes["actual"]
        row = rows[0] if rows else {}
        progress = quarter_pacing(
            sga_name,
            quarter,
            result.successes.get("goal"),
            to_int(row.get("sqo_count")),
            to_number(row.get("total_aum")),
            self.reference_date(),
        )
        return progress.model_copy(update={"unavailable": result.failed_items})

    @cached_query("getWeeklyActuals", CacheTag.SGA_HUB)
    async def get_weekly_actuals(self, sga_name: str, start: date, end: date) -> List[WeeklyActual]:
        """
        Initial calls, qualification calls and SQOs per Monday-start week,
        newest week first. Weeks without activity are zero-filled.

        Raises:
            CompileError: If the range is empty or inverted.
            SourceQueryError: If the query fails or returns a malformed row.
        """
        plan = self._compile(
            FilterSpec(), QueryKind.WEEKLY_ACTUALS, sga_name=sga_name, start_date=start, end_date=end
        )
        return map_rows(await self._rows(plan), weekly_actual_from_row, plan.primary.name)

    @cached_query("getWeeklyProgress", CacheTag.SGA_HUB, should_store=_nothing_unavailable)
    async def get_weekly_progress(self, sga_name: str, start: date, end: date) -> WeeklyProgress:
        """
        Weekly goals next to weekly actuals for one SGA.

        Goals are best-effort: when the goals store is down the weeks are
        returned without goals and 'goals' is listed in `unavailable`.
        """
        async def segment(name: str):
            if name == "actuals":
                return await self.get_weekly_actuals(sga_name, start, end)
            return await fetch_weekly_goals(sga_name, week_monday(start), end)

        result = await gather_isolated(["actuals", "goals"], segment, label="weekly progress segment")
        if "actuals" in result.failures:
            raise result.failures["actuals"]

        weeks = weekly_goal_vs_actual(result.successes["actuals"], result.successes.get("goals") or [])
        return WeeklyProgress(sgaName=sga_name, weeks=weeks, unavailable=result.failed_items)

    # =========================================================================
    # CACHE ADMINISTRATION
    # =========================================================================

    def invalidate(self, tags: Optional[Iterable[CacheTag]] = None) -> Dict[str, int]:
        """
        Evict cached results for the given tags (default: every tag).

        Returns:
            Tag value -> number of entries evicted.
        """
        targets = list(tags) if tags is not None else list(CacheTag)
        return {CacheTag(tag).value: self.cache.invalidate(tag) for tag in targets}


__all__ = ["DashboardService"]

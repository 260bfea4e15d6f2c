"""
Query Compiler.

Turns an immutable FilterSpec plus a query kind into a QueryPlan: one or
more CompiledQuery objects holding BigQuery text with `@name` placeholders
and the parameters to bind. Compilation is pure: the reference date and the
settings are passed in, nothing is read from the clock or the environment.

Filter compilation rules:
- A single-value filter (channel, source, sga, ...) produces a predicate
  only when it holds a non-empty value.
- A multi-select group with selectAll=true produces nothing.
- selectAll=false with values produces `expr IN UNNEST(@param)`.
- selectAll=false with no values produces MatchNothing (`FALSE`): the
  query returns zero rows.
- An enabled advanced date range compares its DATE column directly.

Malformed or contradictory filter state raises CompileError before any
warehouse call is made.

Usage:
    plan = compile_query(
        spec,
        QueryKind.CONVERSION_RATES,
        reference_date=settings.reference_date(),
        settings=settings,
        mode=ConversionMode.COHORT,
    )
    rows = await warehouse.run_query(plan.primary)
"""

import inspect
import logging
from datetime import date, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from funnel_analytics.core.errors import CompileError
from funnel_analytics.models.enums import (
    AdvancedDatePreset,
    ConversionMode,
    DatePreset,
    QueryKind,
    TimeBucket,
    TrendGranularity,
)
from funnel_analytics.models.schemas import DateRangeFilter, FilterSpec, MultiSelectFilter
from funnel_analytics.services.records import OPEN_PIPELINE_STAGES
from funnel_analytics.services.time_buckets import split_by_source
from funnel_analytics.services.variance import parse_quarter, quarter_bounds, quarter_of, trend_window
from funnel_analytics.sql.activity_queries import (
    activity_distribution_query,
    quarterly_sqo_count_query,
    sga_leaderboard_query,
    weekly_actuals_query,
)
from funnel_analytics.sql.closed_lost_queries import (
    closed_lost_older_query,
    closed_lost_recent_query,
    reengagement_crds_query,
)
from funnel_analytics.sql.fragments import CHANNEL_EXPR
from funnel_analytics.sql.funnel_queries import (
    conversion_rates_query,
    conversion_trends_query,
    forecast_goals_query,
    funnel_metrics_query,
    open_pipeline_aum_query,
    performance_query,
)
from funnel_analytics.sql.params import (
    ArrayContainsAny,
    DateRange,
    Equality,
    MatchNothing,
    Predicate,
    PredicateSet,
    QueryPlan,
    SetMembership,
)
from funnel_analytics.sql.pipeline_queries import (
    detail_records_query,
    pipeline_drilldown_query,
    pipeline_summary_query,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Start of the 'alltime' preset; predates every record in the warehouse.
ALL_TIME_START: date = date(2000, 1, 1)

# Single-value filter field -> filtered column expression
SINGLE_VALUE_COLUMNS: Dict[str, str] = {
    "channel": CHANNEL_EXPR,
    "source": "v.Original_source",
    "sga": "v.SGA_Owner_Name__c",
    "sgm": "v.SGM_Owner_Name__c",
    "stage": "v.StageName",
    "campaignId": "v.Campaign_Id__c",
}

EXPERIMENTATION_TAGS_COLUMN = "v.Experimentation_Tag_List"

# Multi-select group -> (column expression, parameter name, array column?)
MULTI_SELECT_COLUMNS: Dict[str, Tuple[str, str, bool]] = {
    "channels": (CHANNEL_EXPR, "adv_channels", False),
    "sources": ("v.Original_source", "adv_sources", False),
    "sgas": ("v.SGA_Owner_Name__c", "adv_sgas", False),
    "sgms": ("v.SGM_Owner_Name__c", "adv_sgms", False),
    "experimentationTags": (EXPERIMENTATION_TAGS_COLUMN, "adv_experimentation_tags", True),
    "campaigns": ("v.Campaign_Id__c", "adv_campaigns", False),
}

# Advanced date group -> (DATE column, start param, end param)
ADVANCED_DATE_COLUMNS: Dict[str, Tuple[str, str, str]] = {
    "initialCallScheduled": ("v.Initial_Call_Scheduled_Date__c", "adv_initial_start", "adv_initial_end"),
    "qualificationCallDate": ("v.Qualification_Call_Date__c", "adv_qual_start", "adv_qual_end"),
}


# =============================================================================
# DATE RESOLUTION
# =============================================================================


def resolve_date_range(spec: FilterSpec, reference_date: date) -> Tuple[date, date]:
    """
    Resolve a FilterSpec's date preset to an inclusive (start, end) pair.

    ytd and qtd end on the reference date; q1-q4 cover the whole quarter of
    `spec.year` (default: the reference year); last30/last90 start 30/90
    days before the reference date; alltime starts at ALL_TIME_START.

    Raises:
        CompileError: If the custom preset lacks a date, or start > end.
    """
    year = spec.year or reference_date.year
    preset = spec.datePreset

    if preset == DatePreset.YTD:
        start, end = date(year, 1, 1), reference_date
    elif preset == DatePreset.QTD:
        start, _ = quarter_bounds(year, quarter_of(reference_date))
        end = reference_date
    elif preset in (DatePreset.Q1, DatePreset.Q2, DatePreset.Q3, DatePreset.Q4):
        start, end = quarter_bounds(year, int(preset.value[1]))
    elif preset == DatePreset.LAST_30:
        start, end = reference_date - timedelta(days=30), reference_date
    elif preset == DatePreset.LAST_90:
        start, end = reference_date - timedelta(days=90), reference_date
    elif preset == DatePreset.ALL_TIME:
        start, end = ALL_TIME_START, reference_date
    else:
        if spec.startDate is None or spec.endDate is None:
            raise CompileError(
                "Custom date range requires both startDate and endDate",
                context={"startDate": spec.startDate, "endDate": spec.endDate},
            )
        start, end = spec.startDate, spec.endDate

    if start > end:
        raise CompileError(
            "startDate must not be after endDate",
            context={"startDate": start, "endDate": end, "datePreset": preset.value},
        )
    return start, end


def resolve_advanced_range(
    name: str,
    filt: DateRangeFilter,
    reference_date: date,
) -> Tuple[Optional[date], Optional[date]]:
    """
    Bounds of an enabled advanced date range (either bound may be None).

    qtd/ytd presets run from the quarter/year start to the reference date;
    custom and any use the explicit dates.

    Raises:
        CompileError: If both bounds are set and start > end.
    """
    if filt.preset == AdvancedDatePreset.QTD:
        start, _ = quarter_bounds(reference_date.year, quarter_of(reference_date))
        end: Optional[date] = reference_date
    elif filt.preset == AdvancedDatePreset.YTD:
        start, end = date(reference_date.year, 1, 1), reference_date
    else:
        start, end = filt.startDate, filt.endDate

    if start is not None and end is not None and start > end:
        raise CompileError(
            f"Advanced filter '{name}' has startDate after endDate",
            context={"filter": name, "startDate": start, "endDate": end},
        )
    return start, end


# =============================================================================
# FILTER PREDICATES
# =============================================================================


def _multi_select_predicate(group: str, filt: MultiSelectFilter) -> Optional[Predicate]:
    if filt.selectAll:
        return None
    expr, param, is_array = MULTI_SELECT_COLUMNS[group]
    if not filt.selected:
        return MatchNothing(reason=f"{group}: nothing selected")
    values = tuple(sorted(filt.selected))
    if is_array:
        return ArrayContainsAny(expr, param, values)
    return SetMembership(expr, param, values)


def filter_predicates(spec: FilterSpec, reference_date: date) -> List[Predicate]:
    """
    Predicates for every active filter in `spec` (the main date range excluded).

    Raises:
        CompileError: If an advanced date range is contradictory.
    """
    predicates: List[Predicate] = []

    for field_name, expr in SINGLE_VALUE_COLUMNS.items():
        value = getattr(spec, field_name)
        if value:
            predicates.append(Equality(expr, field_name, value))
    if spec.experimentationTag:
        predicates.append(
            ArrayContainsAny(EXPERIMENTATION_TAGS_COLUMN, "experimentationTag", (spec.experimentationTag,))
        )

    advanced = spec.advancedFilters
    for name, (column, start_param, end_param) in ADVANCED_DATE_COLUMNS.items():
        filt: DateRangeFilter = getattr(advanced, name)
        if not filt.enabled:
            continue
        start, end = resolve_advanced_range(name, filt, reference_date)
        if start is None and end is None:
            continue
        predicates.append(DateRange(column, start_param, end_param, start, end))

    for group in MULTI_SELECT_COLUMNS:
        predicate = _multi_select_predicate(group, getattr(advanced, group))
        if predicate is not None:
            predicates.append(predicate)

    return predicates


def build_filter_predicates(spec: FilterSpec, reference_date: date) -> PredicateSet:
    where = PredicateSet(filter_predicates(spec, reference_date))
    if where.matches_nothing:
        logger.debug("Filter state excludes every row; compiled queries will return nothing")
    return where


def selected_values(filt: MultiSelectFilter, single: Optional[str] = None) -> Optional[List[str]]:
    """
    Values a multi-select group restricts to, for queries that take plain lists.

    Returns None for "no restriction"; an empty list for "exclude everything".
    A single-value filter, when set, narrows to that one value; both filters
    apply, so a single value outside an explicit selection matches nothing.
    """
    if filt.excludes_everything:
        return []
    if single:
        return [single] if filt.selectAll or single in filt.selected else []
    if filt.selectAll:
        return None
    return sorted(filt.selected)


# =============================================================================
# QUERY PLANS
# =============================================================================


PlanBuilder = Callable[..., QueryPlan]


def _plan(kind: QueryKind, *queries) -> QueryPlan:
    return QueryPlan(kind=kind.value, queries=tuple(queries))


def _funnel_metrics(spec, reference_date, settings) -> QueryPlan:
    start, end = resolve_date_range(spec, reference_date)
    where = build_filter_predicates(spec, reference_date)
    return _plan(
        QueryKind.FUNNEL_METRICS,
        funnel_metrics_query(settings, where, start, end),
        open_pipeline_aum_query(settings),
    )


def _open_pipeline_aum(spec, reference_date, settings) -> QueryPlan:
    return _plan(QueryKind.OPEN_PIPELINE_AUM, open_pipeline_aum_query(settings))


def _conversion_rates(spec, reference_date, settings, mode=ConversionMode.PERIOD) -> QueryPlan:
    start, end = resolve_date_range(spec, reference_date)
    where = build_filter_predicates(spec, reference_date)
    return _plan(
        QueryKind.CONVERSION_RATES,
        conversion_rates_query(settings, where, start, end, ConversionMode(mode)),
    )


def _conversion_trends(
    spec,
    reference_date,
    settings,
    mode=ConversionMode.PERIOD,
    granularity=TrendGranularity.QUARTER,
) -> QueryPlan:
    granularity = TrendGranularity(granularity)
    selected_start, _ = resolve_date_range(spec, reference_date)
    window_start, window_end, periods, _ = trend_window(granularity, selected_start)
    where = build_filter_predicates(spec, reference_date)
    return _plan(
        QueryKind.CONVERSION_TRENDS,
        conversion_trends_query(
            settings, where, window_start, window_end, periods, ConversionMode(mode), granularity
        ),
    )


def _channel_performance(spec, reference_date, settings) -> QueryPlan:
    start, end = resolve_date_range(spec, reference_date)
    where = build_filter_predicates(spec, reference_date)
    return _plan(QueryKind.CHANNEL_PERFORMANCE, performance_query(settings, where, start, end))


def _source_performance(spec, reference_date, settings) -> QueryPlan:
    start, end = resolve_date_range(spec, reference_date)
    where = build_filter_predicates(spec, reference_date)
    return _plan(
        QueryKind.SOURCE_PERFORMANCE,
        performance_query(settings, where, start, end, by_source=True),
    )


def _detail_records(spec, reference_date, settings, limit: Optional[int] = None) -> QueryPlan:
    start, end = resolve_date_range(spec, reference_date)
    where = build_filter_predicates(spec, reference_date)
    return _plan(
        QueryKind.DETAIL_RECORDS,
        detail_records_query(
            settings, where, start, end, spec.metricFilter, limit or settings.detail_records_limit
        ),
    )


def _pipeline_summary(
    spec,
    reference_date,
    settings,
    stages: Optional[Sequence[str]] = None,
    sgms: Optional[Sequence[str]] = None,
) -> QueryPlan:
    return _plan(
        QueryKind.PIPELINE_SUMMARY,
        pipeline_summary_query(settings, stages or OPEN_PIPELINE_STAGES, sgms),
    )


def _pipeline_drilldown(
    spec,
    reference_date,
    settings,
    stage: Optional[str] = None,
    sgms: Optional[Sequence[str]] = None,
    limit: Optional[int] = None,
) -> QueryPlan:
    if not stage:
        raise CompileError("Pipeline drill-down requires a stage")
    where = build_filter_predicates(spec, reference_date)
    return _plan(
        QueryKind.PIPELINE_DRILLDOWN,
        pipeline_drilldown_query(settings, stage, where, sgms, limit or settings.drilldown_records_limit),
    )


def _closed_lost(
    spec,
    reference_date,
    settings,
    buckets: Optional[Sequence[Union[TimeBucket, str]]] = None,
) -> QueryPlan:
    try:
        recent, include_older = split_by_source(buckets)
    except ValueError as e:
        raise CompileError(f"Unknown time bucket: {e}", context={"buckets": list(buckets or [])}) from e

    queries = []
    if recent:
        queries.append(closed_lost_recent_query(settings, recent, spec.sga, reference_date))
    if include_older:
        queries.append(closed_lost_older_query(settings, spec.sga, reference_date))
    queries.append(reengagement_crds_query(settings))
    return _plan(QueryKind.CLOSED_LOST, *queries)


def _forecast_goals(
    spec,
    reference_date,
    settings,
    dimension: Optional[str] = None,
    channel: Optional[str] = None,
) -> QueryPlan:
    start, end = resolve_date_range(spec, reference_date)
    return _plan(
        QueryKind.FORECAST_GOALS,
        forecast_goals_query(settings, start, end, dimension, channel),
    )


def _activity_distribution(
    spec,
    reference_date,
    settings,
    comparison_start: Optional[date] = None,
    comparison_end: Optional[date] = None,
    include_automated: bool = False,
) -> QueryPlan:
    start, end = resolve_date_range(spec, reference_date)
    if comparison_start is None or comparison_end is None:
        raise CompileError("Activity distribution requires a comparison period")
    if comparison_start > comparison_end:
        raise CompileError(
            "Comparison period start must not be after its end",
            context={"comparisonStartDate": comparison_start, "comparisonEndDate": comparison_end},
        )
    return _plan(
        QueryKind.ACTIVITY_DISTRIBUTION,
        activity_distribution_query(
            settings, start, end, comparison_start, comparison_end, spec.sga, include_automated
        ),
    )


def _sga_leaderboard(spec, reference_date, settings) -> QueryPlan:
    start, end = resolve_date_range(spec, reference_date)
    advanced = spec.advancedFilters
    return _plan(
        QueryKind.SGA_LEADERBOARD,
        sga_leaderboard_query(
            settings,
            start,
            end,
            channels=selected_values(advanced.channels, spec.channel),
            sources=selected_values(advanced.sources, spec.source),
            sga_names=selected_values(advanced.sgas, spec.sga),
        ),
    )


def _quarterly_sqo_count(
    spec,
    reference_date,
    settings,
    sga_name: Optional[str] = None,
    quarter: Optional[str] = None,
) -> QueryPlan:
    sga_name = sga_name or spec.sga
    if not sga_name or not quarter:
        raise CompileError(
            "Quarterly progress requires an SGA name and a quarter",
            context={"sgaName": sga_name, "quarter": quarter},
        )
    try:
        start, end = quarter_bounds(*parse_quarter(quarter))
    except ValueError as e:
        raise CompileError(str(e), context={"quarter": quarter}) from e
    return _plan(QueryKind.QUARTERLY_SQO_COUNT, quarterly_sqo_count_query(settings, sga_name, start, end))


def _weekly_actuals(
    spec,
    reference_date,
    settings,
    sga_name: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> QueryPlan:
    sga_name = sga_name or spec.sga
    if not sga_name or start_date is None or end_date is None:
        raise CompileError(
            "Weekly actuals require an SGA name, a start date and an end date",
            context={"sgaName": sga_name, "startDate": start_date, "endDate": end_date},
        )
    if start_date > end_date:
        raise CompileError(
            f"Weekly range starts after it ends ({start_date} > {end_date})",
            context={"startDate": start_date, "endDate": end_date},
        )
    return _plan(QueryKind.WEEKLY_ACTUALS, weekly_actuals_query(settings, sga_name, start_date, end_date))


_BUILDERS: Dict[QueryKind, PlanBuilder] = {
    QueryKind.FUNNEL_METRICS: _funnel_metrics,
    QueryKind.OPEN_PIPELINE_AUM: _open_pipeline_aum,
    QueryKind.CONVERSION_RATES: _conversion_rates,
    QueryKind.CONVERSION_TRENDS: _conversion_trends,
    QueryKind.CHANNEL_PERFORMANCE: _channel_performance,
    QueryKind.SOURCE_PERFORMANCE: _source_performance,
    QueryKind.DETAIL_RECORDS: _detail_records,
    QueryKind.PIPELINE_SUMMARY: _pipeline_summary,
    QueryKind.PIPELINE_DRILLDOWN: _pipeline_drilldown,
    QueryKind.CLOSED_LOST: _closed_lost,
    QueryKind.FORECAST_GOALS: _forecast_goals,
    QueryKind.ACTIVITY_DISTRIBUTION: _activity_distribution,
    QueryKind.SGA_LEADERBOARD: _sga_leaderboard,
    QueryKind.QUARTERLY_SQO_COUNT: _quarterly_sqo_count,
    QueryKind.WEEKLY_ACTUALS: _weekly_actuals,
}


def compile_query(
    spec: FilterSpec,
    kind: Union[QueryKind, str],
    *,
    reference_date: date,
    settings,
    **options,
) -> QueryPlan:
    """
    Compile a FilterSpec into the queries for one operation.

    Args:
        spec: Immutable filter state.
        kind: Which operation to compile (QueryKind or its value).
        reference_date: "Today" for relative presets and elapsed days.
        settings: Settings with warehouse identifiers.
        **options: Kind-specific options (mode, granularity, limit, stages,
            sgms, stage, buckets, dimension, channel, comparison_start,
            comparison_end, include_automated, sga_name, quarter, start_date,
            end_date).

    Returns:
        QueryPlan whose queries are ready to run.

    Raises:
        CompileError: Unknown kind or option, or malformed filter state.
    """
    try:
        kind = QueryKind(kind)
    except ValueError as e:
        raise CompileError(f"Unknown query kind: {kind!r}", context={"kind": kind}) from e

    builder = _BUILDERS[kind]
    try:
        inspect.signature(builder).bind(spec, reference_date, settings, **options)
    except TypeError as e:
        raise CompileError(
            f"Invalid options for {kind.value}: {e}",
            context={"kind": kind.value, "options": sorted(options)},
        ) from e
    plan = builder(spec, reference_date, settings, **options)
    logger.debug(f"Compiled {kind.value} into {len(plan.queries)} query(ies): {plan.names}")
    return plan


__all__ = [
    "ALL_TIME_START",
    "SINGLE_VALUE_COLUMNS",
    "MULTI_SELECT_COLUMNS",
    "ADVANCED_DATE_COLUMNS",
    "resolve_date_range",
    "resolve_advanced_range",
    "filter_predicates",
    "build_filter_predicates",
    "selected_values",
    "compile_query",
]

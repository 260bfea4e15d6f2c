"""
Funnel Queries Module.

Parameterized BigQuery SQL for the funnel dashboard:
- Funnel volumes and AUM for a date range
- Open pipeline AUM (current state, never date filtered)
- Conversion rates in period and cohort mode
- Conversion trends per month or quarter
- Channel and source performance tables
- Forecast goals (aggregate, by channel, by source)

Each milestone is counted by its own date column (contacted by
stage_entered_contacting__c, SQLs by converted_date_raw, ...), never by the
view's generic FilterDate. Filter predicates arrive pre-rendered as a
PredicateSet from the compiler.

Cohort mode relies on the view's resolved-only fields:
eligible_for_*_conversions (1 when the record advanced or closed) and
*_progression (1 when it advanced).
"""

from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from funnel_analytics.core.errors import CompileError
from funnel_analytics.models.enums import ConversionMode, TrendGranularity
from funnel_analytics.services.records import OPEN_PIPELINE_STAGES
from funnel_analytics.sql.fragments import (
    AUM_EXPR,
    CHANNEL_EXPR,
    CONTACTED_DATE,
    JOINED_DATE,
    MQL_DATE,
    PROSPECT_DATE,
    SIGNED_DATE,
    SQL_DATE,
    SQO_DATE,
    and_filters,
    funnel_source,
    in_range,
    period_expr,
    range_params,
    recruiting_param,
    where_clause,
)
from funnel_analytics.sql.params import (
    CompiledQuery,
    PredicateSet,
    SetMembership,
    array_param,
    compiled,
    scalar_param,
)


# =============================================================================
# MILESTONES AND TRANSITIONS
# =============================================================================

# Milestone -> (date column, extra qualifying condition)
MILESTONES: Dict[str, Tuple[str, str]] = {
    "prospect": (PROSPECT_DATE, ""),
    "contacted": (CONTACTED_DATE, "AND v.is_contacted = 1"),
    "mql": (MQL_DATE, "AND v.is_mql = 1"),
    "sql": (SQL_DATE, "AND v.is_sql = 1"),
    "sqo": (SQO_DATE, "AND v.recordtypeid = @recruitingRecordType AND v.is_sqo_unique = 1"),
    "signed": (SIGNED_DATE, "AND v.recordtypeid = @recruitingRecordType AND v.is_sqo_unique = 1"),
    "joined": (JOINED_DATE, "AND v.is_joined_unique = 1"),
}

# (output prefix, origin milestone, target milestone, progression column, eligibility column)
TRANSITIONS: Tuple[Tuple[str, str, str, str, str], ...] = (
    ("contacted_to_mql", "contacted", "mql",
     "v.contacted_to_mql_progression", "v.eligible_for_contacted_conversions"),
    ("mql_to_sql", "mql", "sql",
     "v.mql_to_sql_progression", "v.eligible_for_mql_conversions"),
    ("sql_to_sqo", "sql", "sqo",
     "v.sql_to_sqo_progression", "v.eligible_for_sql_conversions"),
    ("sqo_to_joined", "sqo", "joined",
     "v.sqo_to_joined_progression", "v.eligible_for_sqo_conversions"),
)


def milestone_condition(
    milestone: str,
    start_param: str = "startDate",
    end_param: str = "endDate",
) -> str:
    """Condition for 'record reached `milestone` inside the window'."""
    column, extra = MILESTONES[milestone]
    return f"{in_range(column, start_param, end_param)} {extra}".strip()


# =============================================================================
# FUNNEL METRICS
# =============================================================================


def funnel_metrics_query(
    settings,
    where: PredicateSet,
    start: date,
    end: date,
) -> CompiledQuery:
    """
    Funnel volumes and AUM for one date range.

    Args:
        settings: Settings with warehouse identifiers.
        where: Compiled filter predicates (no date predicate).
        start: First day of the range.
        end: Last day of the range (inclusive).

    Returns:
        CompiledQuery 'funnel_metrics' producing one row with prospects,
        contacted, mqls, sqls, sqos, signed, joined, pipeline_aum, joined_aum.
    """
    text = f"""
    -- Funnel volumes: each milestone counted by its own date column
    SELECT
      COUNTIF({milestone_condition("prospect")}) AS prospects,
      COUNTIF({milestone_condition("contacted")}) AS contacted,
      COUNTIF({milestone_condition("mql")}) AS mqls,
      COUNTIF({milestone_condition("sql")}) AS sqls,
      COUNTIF({milestone_condition("sqo")}) AS sqos,
      COUNTIF({milestone_condition("signed")}) AS signed,
      COUNTIF({milestone_condition("joined")}) AS joined,
      SUM(CASE WHEN {milestone_condition("sqo")}
          THEN COALESCE({AUM_EXPR}, 0) ELSE 0 END) AS pipeline_aum,
      SUM(CASE WHEN {milestone_condition("joined")}
          THEN COALESCE({AUM_EXPR}, 0) ELSE 0 END) AS joined_aum
    FROM {funnel_source(settings)}
    {where_clause(where)}
    """
    return compiled(
        "funnel_metrics",
        text,
        [*where.parameters, *range_params(start, end), recruiting_param(settings)],
    )


def open_pipeline_aum_query(settings) -> CompiledQuery:
    """
    Current open pipeline AUM.

    Snapshot of the open stages right now: not filtered by date, channel,
    source or owner. Only primary opportunity rows contribute AUM.
    """
    where = PredicateSet()
    where.add_raw("v.recordtypeid = @recruitingRecordType", recruiting_param(settings))
    where.add(SetMembership("v.StageName", "openStages", OPEN_PIPELINE_STAGES))
    where.add_raw("v.is_sqo_unique = 1")
    text = f"""
    -- Open pipeline AUM (current state)
    SELECT
      COUNT(DISTINCT v.Full_Opportunity_ID__c) AS open_pipeline_count,
      SUM(CASE WHEN v.is_primary_opp_record = 1
          THEN COALESCE({AUM_EXPR}, 0) ELSE 0 END) AS open_pipeline_aum
    FROM {funnel_source(settings)}
    {where_clause(where)}
    """
    return compiled("open_pipeline_aum", text, where.parameters)


# =============================================================================
# CONVERSION RATES
# =============================================================================


def _period_rate_columns(start_param: str, end_param: str) -> List[str]:
    columns = []
    for prefix, origin, target, _, _ in TRANSITIONS:
        columns.append(f"COUNTIF({milestone_condition(target, start_param, end_param)}) AS {prefix}_numer")
        columns.append(f"COUNTIF({milestone_condition(origin, start_param, end_param)}) AS {prefix}_denom")
    return columns


def _cohort_rate_columns(start_param: str, end_param: str) -> List[str]:
    columns = []
    for prefix, origin, _, progression, eligible in TRANSITIONS:
        window = milestone_condition(origin, start_param, end_param)
        columns.append(f"SUM(CASE WHEN {window} THEN {progression} ELSE 0 END) AS {prefix}_numer")
        columns.append(f"SUM(CASE WHEN {window} THEN {eligible} ELSE 0 END) AS {prefix}_denom")
    return columns


def conversion_rates_query(
    settings,
    where: PredicateSet,
    start: date,
    end: date,
    mode: ConversionMode,
) -> CompiledQuery:
    """
    Four funnel conversion rates for one range.

    Period mode: numerator counts records whose target milestone falls in
    the range, denominator those whose origin milestone does.
    Cohort mode: records whose origin milestone falls in the range, counted
    only once resolved (eligible) and advanced (progression).

    Returns:
        CompiledQuery 'conversion_rates' producing one row with
        <transition>_numer / <transition>_denom columns.
    """
    if mode == ConversionMode.COHORT:
        columns = _cohort_rate_columns("startDate", "endDate")
    else:
        columns = _period_rate_columns("startDate", "endDate")
    select_list = ",\n      ".join(columns)
    text = f"""
    -- Conversion rates ({mode.value} mode)
    SELECT
      {select_list}
    FROM {funnel_source(settings)}
    {where_clause(where)}
    """
    return compiled(
        "conversion_rates",
        text,
        [*where.parameters, *range_params(start, end), recruiting_param(settings)],
    )


# =============================================================================
# CONVERSION TRENDS
# =============================================================================


def _milestone_cte(name: str, milestone: str, where: PredicateSet, settings, granularity) -> str:
    column, _ = MILESTONES[milestone]
    return f"""{name} AS (
      SELECT {period_expr(column, granularity)} AS period, COUNT(*) AS n
      FROM {funnel_source(settings)}
      WHERE {milestone_condition(milestone, "trendStartDate", "trendEndDate")}
        {and_filters(where)}
      GROUP BY period
    )"""


def _cohort_cte(name: str, transition: Tuple[str, str, str, str, str], where, settings, granularity) -> str:
    _, origin, _, progression, eligible = transition
    column, _ = MILESTONES[origin]
    return f"""{name} AS (
      SELECT {period_expr(column, granularity)} AS period,
        SUM({progression}) AS numer,
        SUM({eligible}) AS denom
      FROM {funnel_source(settings)}
      WHERE {milestone_condition(origin, "trendStartDate", "trendEndDate")}
        {and_filters(where)}
      GROUP BY period
    )"""


def conversion_trends_query(
    settings,
    where: PredicateSet,
    window_start: date,
    window_end: date,
    expected_periods: Sequence[str],
    mode: ConversionMode,
    granularity: TrendGranularity,
) -> CompiledQuery:
    """
    Conversion rates and volumes per period over a trend window.

    Every expected period is produced (LEFT JOIN from UNNEST(@expectedPeriods)
    with zero fill), in chronological order.

    Args:
        settings: Settings with warehouse identifiers.
        where: Compiled filter predicates (no date predicate).
        window_start: First day of the trend window.
        window_end: Last day of the trend window.
        expected_periods: Period labels the chart shows.
        mode: Period or cohort conversion semantics.
        granularity: Month or quarter buckets.

    Returns:
        CompiledQuery 'conversion_trends' with one row per period: period,
        <transition>_numer, <transition>_denom, sqls, sqos, joined.
    """
    ctes = [
        _milestone_cte("vol_sql", "sql", where, settings, granularity),
        _milestone_cte("vol_sqo", "sqo", where, settings, granularity),
        _milestone_cte("vol_joined", "joined", where, settings, granularity),
    ]
    joins = [
        "LEFT JOIN vol_sql ON ap.period = vol_sql.period",
        "LEFT JOIN vol_sqo ON ap.period = vol_sqo.period",
        "LEFT JOIN vol_joined ON ap.period = vol_joined.period",
    ]
    rate_columns = []

    if mode == ConversionMode.COHORT:
        for transition in TRANSITIONS:
            prefix = transition[0]
            ctes.append(_cohort_cte(f"c_{prefix}", transition, where, settings, granularity))
            joins.append(f"LEFT JOIN c_{prefix} ON ap.period = c_{prefix}.period")
            rate_columns.append(f"COALESCE(c_{prefix}.numer, 0) AS {prefix}_numer")
            rate_columns.append(f"COALESCE(c_{prefix}.denom, 0) AS {prefix}_denom")
    else:
        for milestone in ("contacted", "mql"):
            ctes.append(_milestone_cte(f"vol_{milestone}", milestone, where, settings, granularity))
            joins.append(f"LEFT JOIN vol_{milestone} ON ap.period = vol_{milestone}.period")
        for prefix, origin, target, _, _ in TRANSITIONS:
            rate_columns.append(f"COALESCE(vol_{target}.n, 0) AS {prefix}_numer")
            rate_columns.append(f"COALESCE(vol_{origin}.n, 0) AS {prefix}_denom")

    ctes.append("all_periods AS (\n      SELECT period FROM UNNEST(@expectedPeriods) AS period\n    )")
    select_list = ",\n      ".join(
        ["ap.period"]
        + rate_columns
        + [
            "COALESCE(vol_sql.n, 0) AS sqls",
            "COALESCE(vol_sqo.n, 0) AS sqos",
            "COALESCE(vol_joined.n, 0) AS joined",
        ]
    )
    join_list = "\n    ".join(joins)
    cte_list = ",\n    ".join(ctes)
    text = f"""
    -- Conversion trends ({mode.value} mode, by {granularity.value})
    WITH {cte_list}
    SELECT
      {select_list}
    FROM all_periods ap
    {join_list}
    ORDER BY ap.period
    """
    return compiled(
        "conversion_trends",
        text,
        [
            *where.parameters,
            *range_params(window_start, window_end, "trendStartDate", "trendEndDate"),
            recruiting_param(settings),
            array_param("expectedPeriods", expected_periods),
        ],
    )


# =============================================================================
# CHANNEL / SOURCE PERFORMANCE
# =============================================================================


def performance_query(
    settings,
    where: PredicateSet,
    start: date,
    end: date,
    *,
    by_source: bool = False,
) -> CompiledQuery:
    """
    Funnel volumes, cohort conversion rates and SQO AUM per channel, or per
    (channel, source) when `by_source` is set.

    Returns:
        CompiledQuery 'channel_performance' or 'source_performance'.
    """
    group_columns = [f"{CHANNEL_EXPR} AS channel"]
    group_keys = ["channel"]
    if by_source:
        group_columns.append("v.Original_source AS source")
        group_keys.append("source")

    rate_columns = []
    for prefix, origin, _, progression, eligible in TRANSITIONS:
        window = milestone_condition(origin)
        rate_columns.append(
            f"SAFE_DIVIDE(\n"
            f"        SUM(CASE WHEN {window} THEN {progression} ELSE 0 END),\n"
            f"        SUM(CASE WHEN {window} THEN {eligible} ELSE 0 END)\n"
            f"      ) AS {prefix}_rate"
        )

    select_list = ",\n      ".join(
        group_columns
        + [
            f"COUNTIF({milestone_condition('prospect')}) AS prospects",
            f"COUNTIF({milestone_condition('contacted')}) AS contacted",
            f"COUNTIF({milestone_condition('mql')}) AS mqls",
            f"COUNTIF({milestone_condition('sql')}) AS sqls",
            f"COUNTIF({milestone_condition('sqo')}) AS sqos",
            f"COUNTIF({milestone_condition('joined')}) AS joined",
        ]
        + rate_columns
        + [f"SUM(CASE WHEN {milestone_condition('sqo')} THEN COALESCE({AUM_EXPR}, 0) ELSE 0 END) AS aum"]
    )
    name = "source_performance" if by_source else "channel_performance"
    text = f"""
    -- {name.replace('_', ' ').title()}
    SELECT
      {select_list}
    FROM {funnel_source(settings)}
    {where_clause(where)}
    GROUP BY {", ".join(group_keys)}
    ORDER BY sqls DESC, {", ".join(group_keys)}
    """
    return compiled(
        name,
        text,
        [*where.parameters, *range_params(start, end), recruiting_param(settings)],
    )


# =============================================================================
# FORECAST GOALS
# =============================================================================

_GOAL_COLUMNS = """
      ROUND(SUM(prospects_daily), 2) AS prospects_goal,
      ROUND(SUM(mqls_daily), 2) AS mqls_goal,
      ROUND(SUM(sqls_daily), 2) AS sqls_goal,
      ROUND(SUM(sqos_daily), 2) AS sqos_goal,
      ROUND(SUM(joined_daily), 2) AS joined_goal"""


def forecast_goals_query(
    settings,
    start: date,
    end: date,
    dimension: Optional[str] = None,
    channel: Optional[str] = None,
) -> CompiledQuery:
    """
    Daily-ized forecast goals summed over a date range.

    Args:
        settings: Settings with the forecast view name.
        start: First day of the range.
        end: Last day of the range (inclusive; date_day is a DATE column).
        dimension: None for one aggregate row, 'channel' or 'source' for
            one row per channel / per (source, channel).
        channel: Optional channel restriction for the source breakdown.

    Returns:
        CompiledQuery 'forecast_goals', 'forecast_goals_by_channel' or
        'forecast_goals_by_source'.
    """
    params = [scalar_param("startDate", start, "DATE"), scalar_param("endDate", end, "DATE")]
    conditions = ["date_day BETWEEN @startDate AND @endDate"]

    if dimension is None:
        text = f"""
    -- Aggregate forecast goals
    SELECT{_GOAL_COLUMNS}
    FROM `{settings.daily_forecast_view}`
    WHERE {conditions[0]}
    """
        return compiled("forecast_goals", text, params)

    if dimension not in ("channel", "source"):
        raise CompileError(
            f"Unknown forecast goal dimension: {dimension!r}",
            context={"dimension": dimension},
        )

    having = "HAVING SUM(sqls_daily) > 0 OR SUM(sqos_daily) > 0 OR SUM(joined_daily) > 0"
    if dimension == "channel":
        text = f"""
    -- Forecast goals by channel
    SELECT
      channel_grouping_name,{_GOAL_COLUMNS}
    FROM `{settings.daily_forecast_view}`
    WHERE {conditions[0]}
    GROUP BY channel_grouping_name
    {having}
    ORDER BY SUM(sqos_daily) DESC
    """
        return compiled("forecast_goals_by_channel", text, params)

    if channel:
        conditions.append("channel_grouping_name = @channelFilter")
        params.append(scalar_param("channelFilter", channel, "STRING"))
    text = f"""
    -- Forecast goals by source
    SELECT
      original_source,
      channel_grouping_name,{_GOAL_COLUMNS}
    FROM `{settings.daily_forecast_view}`
    WHERE {" AND ".join(conditions)}
    GROUP BY original_source, channel_grouping_name
    {having}
    ORDER BY channel_grouping_name, SUM(sqos_daily) DESC
    """
    return compiled("forecast_goals_by_source", text, params)


__all__ = [
    "MILESTONES",
    "TRANSITIONS",
    "milestone_condition",
    "funnel_metrics_query",
    "open_pipeline_aum_query",
    "conversion_rates_query",
    "conversion_trends_query",
    "performance_query",
    "forecast_goals_query",
]

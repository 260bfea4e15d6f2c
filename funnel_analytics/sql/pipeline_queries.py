"""
Pipeline and detail-record queries.

- detail_records_query: records behind a scorecard, chosen by metricFilter
- pipeline_summary_query: open pipeline count/AUM per stage (current state)
- pipeline_drilldown_query: open pipeline records in one stage

Open pipeline queries are current-state snapshots and carry no date window.
"""

from datetime import date
from typing import Optional, Sequence

from funnel_analytics.models.enums import MetricFilter
from funnel_analytics.services.records import OPEN_PIPELINE_STAGES
from funnel_analytics.sql.fragments import (
    AUM_EXPR,
    DETAIL_COLUMNS,
    PROSPECT_DATE,
    funnel_source,
    range_params,
    recruiting_param,
    where_clause,
)
from funnel_analytics.sql.funnel_queries import MILESTONES, milestone_condition
from funnel_analytics.sql.params import (
    CompiledQuery,
    Equality,
    PredicateSet,
    SetMembership,
    compiled,
    scalar_param,
)


# metricFilter -> milestone whose date window selects the records
_METRIC_MILESTONES = {
    MetricFilter.ALL: "sql",
    MetricFilter.PROSPECT: "prospect",
    MetricFilter.CONTACTED: "contacted",
    MetricFilter.MQL: "mql",
    MetricFilter.SQL: "sql",
    MetricFilter.SQO: "sqo",
    MetricFilter.SIGNED: "signed",
    MetricFilter.JOINED: "joined",
}


def _open_pipeline_predicates(settings, stages: Sequence[str], sgms: Optional[Sequence[str]]) -> PredicateSet:
    where = PredicateSet()
    where.add_raw("v.recordtypeid = @recruitingRecordType", recruiting_param(settings))
    where.add_raw("v.is_sqo_unique = 1")
    where.add(SetMembership("v.StageName", "stages", tuple(stages)))
    if sgms:
        where.add(SetMembership("v.SGM_Owner_Name__c", "sgms", tuple(sgms)))
    return where


# =============================================================================
# DETAIL RECORDS
# =============================================================================


def detail_records_query(
    settings,
    where: PredicateSet,
    start: date,
    end: date,
    metric_filter: MetricFilter,
    limit: int,
) -> CompiledQuery:
    """
    Records behind a funnel scorecard.

    The metric filter picks the milestone whose date column must fall inside
    the range (prospect, contacted, mql, sql, sqo, signed, joined; 'all'
    behaves like sql). openPipeline ignores the range and selects the
    current open stages instead.

    Args:
        settings: Settings with warehouse identifiers.
        where: Compiled filter predicates (no date predicate).
        start: First day of the range.
        end: Last day of the range (inclusive).
        metric_filter: Scorecard the records belong to.
        limit: Maximum rows, largest AUM first.

    Returns:
        CompiledQuery 'detail_records'.
    """
    query_where = PredicateSet().merge(where)
    params = []
    if metric_filter == MetricFilter.OPEN_PIPELINE:
        query_where.merge(_open_pipeline_predicates(settings, OPEN_PIPELINE_STAGES, None))
        relevant_column = PROSPECT_DATE
    else:
        milestone = _METRIC_MILESTONES[metric_filter]
        relevant_column, _ = MILESTONES[milestone]
        query_where.add_raw(milestone_condition(milestone))
        params.extend(range_params(start, end))
        params.append(recruiting_param(settings))

    text = f"""
    -- Detail records ({metric_filter.value})
    SELECT{DETAIL_COLUMNS},
      {relevant_column} AS relevant_date
    FROM {funnel_source(settings)}
    {where_clause(query_where)}
    ORDER BY {AUM_EXPR} DESC NULLS LAST, v.primary_key
    LIMIT @limit
    """
    return compiled(
        "detail_records",
        text,
        [*query_where.parameters, *params, scalar_param("limit", int(limit), "INT64")],
    )


# =============================================================================
# OPEN PIPELINE
# =============================================================================


def pipeline_summary_query(
    settings,
    stages: Sequence[str],
    sgms: Optional[Sequence[str]] = None,
) -> CompiledQuery:
    """
    Open pipeline count and AUM per stage.

    Counts distinct opportunities; only primary opportunity rows contribute
    AUM so split records are not double counted.

    Returns:
        CompiledQuery 'pipeline_summary' with columns stage, count, aum.
    """
    where = _open_pipeline_predicates(settings, stages, sgms)
    text = f"""
    -- Open pipeline summary by stage
    SELECT
      v.StageName AS stage,
      COUNT(DISTINCT v.Full_Opportunity_ID__c) AS count,
      SUM(CASE WHEN v.is_primary_opp_record = 1
          THEN COALESCE({AUM_EXPR}, 0) ELSE 0 END) AS aum
    FROM {funnel_source(settings)}
    {where_clause(where)}
    GROUP BY stage
    """
    return compiled("pipeline_summary", text, where.parameters)


def pipeline_drilldown_query(
    settings,
    stage: str,
    where: PredicateSet,
    sgms: Optional[Sequence[str]],
    limit: int,
) -> CompiledQuery:
    """
    Open pipeline records in a single stage, largest AUM first.

    Returns:
        CompiledQuery 'pipeline_drilldown'.
    """
    query_where = PredicateSet()
    query_where.add_raw("v.recordtypeid = @recruitingRecordType", recruiting_param(settings))
    query_where.add_raw("v.is_sqo_unique = 1")
    query_where.add(Equality("v.StageName", "targetStage", stage))
    if sgms:
        query_where.add(SetMembership("v.SGM_Owner_Name__c", "sgms", tuple(sgms)))
    query_where.merge(where)

    text = f"""
    -- Pipeline drill-down for one stage
    SELECT{DETAIL_COLUMNS},
      {PROSPECT_DATE} AS relevant_date
    FROM {funnel_source(settings)}
    {where_clause(query_where)}
    ORDER BY {AUM_EXPR} DESC NULLS LAST, v.primary_key
    LIMIT @limit
    """
    return compiled(
        "pipeline_drilldown",
        text,
        [*query_where.parameters, scalar_param("limit", int(limit), "INT64")],
    )


__all__ = [
    "detail_records_query",
    "pipeline_summary_query",
    "pipeline_drilldown_query",
]

"""
SQL query layer for the funnel analytics service.

Parameterized BigQuery SQL for every dashboard operation, plus the compiler
that turns a FilterSpec into a QueryPlan. Query text only ever references
values through `@name` parameters.

Submodules:
    params: Query parameters, filter predicate variants, PredicateSet,
            CompiledQuery and QueryPlan.
    fragments: Shared column expressions and FROM clauses.
    funnel_queries: Funnel metrics, conversion rates/trends, performance
                    tables, forecast goals.
    pipeline_queries: Detail records, open pipeline summary and drill-down.
    closed_lost_queries: Closed-lost follow-up sources and re-engagement CRDs.
    activity_queries: SGA activity distribution, leaderboard, quarterly SQOs.
    compiler: compile_query() and filter/date resolution.

Example usage:
    from funnel_analytics.sql import compile_query
    from funnel_analytics.models import FilterSpec, QueryKind

    plan = compile_query(
        FilterSpec(datePreset="q1", year=2026, channel="Outbound"),
        QueryKind.FUNNEL_METRICS,
        reference_date=date(2026, 5, 1),
        settings=get_settings(),
    )
    for query in plan.queries:
        print(query.name, query.parameter_values())
"""

# =============================================================================
# PARAMETERS AND PREDICATES
# =============================================================================

from funnel_analytics.sql.params import (
    ArrayContainsAny,
    CompiledQuery,
    DateRange,
    Equality,
    Flag,
    MatchNothing,
    Predicate,
    PredicateSet,
    QueryParameter,
    QueryPlan,
    SetMembership,
    array_param,
    compiled,
    render_predicate,
    scalar_param,
)

# =============================================================================
# COMPILER
# =============================================================================

from funnel_analytics.sql.compiler import (
    ALL_TIME_START,
    build_filter_predicates,
    compile_query,
    filter_predicates,
    resolve_advanced_range,
    resolve_date_range,
    selected_values,
)

# =============================================================================
# CLOSED-LOST QUERY NAMES
# =============================================================================

from funnel_analytics.sql.closed_lost_queries import (
    OLDER_QUERY_NAME,
    RECENT_QUERY_NAME,
    REENGAGEMENT_QUERY_NAME,
)


__all__ = [
    # Parameters and predicates
    "QueryParameter",
    "scalar_param",
    "array_param",
    "Equality",
    "SetMembership",
    "ArrayContainsAny",
    "DateRange",
    "Flag",
    "MatchNothing",
    "Predicate",
    "render_predicate",
    "PredicateSet",
    "CompiledQuery",
    "QueryPlan",
    "compiled",
    # Compiler
    "ALL_TIME_START",
    "resolve_date_range",
    "resolve_advanced_range",
    "filter_predicates",
    "build_filter_predicates",
    "selected_values",
    "compile_query",
    # Closed-lost query names
    "RECENT_QUERY_NAME",
    "OLDER_QUERY_NAME",
    "REENGAGEMENT_QUERY_NAME",
]

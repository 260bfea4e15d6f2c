"""
Services Module

Business logic for the funnel analytics layer. The modules re-exported here
are pure (no I/O beyond the warehouse object passed in) and testable without
a database or BigQuery.

Services:
- time_buckets: elapsed-day classification for closed-lost follow-up
- records: warehouse row normalization into typed records
- variance: goal variance, conversion rates, trend windows, pacing
- fan_out: concurrent sub-query execution with explicit failure policies
- reconciler: closed-lost multi-source merge

Not re-exported (import them directly, they depend on core infrastructure):
- goals: forecast goals (BigQuery) and quarterly SGA goals (PostgreSQL)
- dashboard: DashboardService, the cached entry point used by the API layer
"""

# =============================================================================
# Time-Bucket Classifier Exports
# =============================================================================

from funnel_analytics.services.time_buckets import (
    BUCKET_BOUNDARIES,
    DEFAULT_FOLLOW_UP_BUCKETS,
    SOURCE_LABEL_VARIANTS,
    classify,
    classify_days,
    elapsed_days,
    expand_requested_buckets,
    normalize_bucket_label,
    render_bucket_case_sql,
    split_by_source,
)

# =============================================================================
# Record Normalization Exports
# =============================================================================

from funnel_analytics.services.records import (
    OPEN_PIPELINE_STAGES,
    STAGE_ORDER,
    closed_lost_record_from_row,
    detail_record_from_row,
    map_rows,
    normalize_date,
    select_aum,
)

# =============================================================================
# Variance & Trend Engine Exports
# =============================================================================

from funnel_analytics.services.variance import (
    FUNNEL_TRANSITIONS,
    cohort_mode_rates,
    conversion_rate,
    conversion_rates_in_memory,
    dense_rank,
    fill_trend_periods,
    period_mode_rates,
    quarter_pacing,
    trend_window,
    variance,
)

# =============================================================================
# Fan-Out Exports
# =============================================================================

from funnel_analytics.services.fan_out import (
    FanOutResult,
    gather_isolated,
    gather_strict,
)

# =============================================================================
# Reconciler Exports
# =============================================================================

from funnel_analytics.services.reconciler import (
    dedupe_by_id,
    exclude_reengaged,
    fetch_and_reconcile,
    reconcile_closed_lost,
    sort_closed_lost,
)

__all__ = [
    # ----- Time buckets -----
    'BUCKET_BOUNDARIES',
    'DEFAULT_FOLLOW_UP_BUCKETS',
    'SOURCE_LABEL_VARIANTS',
    'classify',
    'classify_days',
    'elapsed_days',
    'expand_requested_buckets',
    'normalize_bucket_label',
    'render_bucket_case_sql',
    'split_by_source',
    # ----- Records -----
    'OPEN_PIPELINE_STAGES',
    'STAGE_ORDER',
    'closed_lost_record_from_row',
    'detail_record_from_row',
    'map_rows',
    'normalize_date',
    'select_aum',
    # ----- Variance -----
    'FUNNEL_TRANSITIONS',
    'cohort_mode_rates',
    'conversion_rate',
    'conversion_rates_in_memory',
    'dense_rank',
    'fill_trend_periods',
    'period_mode_rates',
    'quarter_pacing',
    'trend_window',
    'variance',
    # ----- Fan-out -----
    'FanOutResult',
    'gather_isolated',
    'gather_strict',
    # ----- Reconciler -----
    'dedupe_by_id',
    'exclude_reengaged',
    'fetch_and_reconcile',
    'reconcile_closed_lost',
    'sort_closed_lost',
]

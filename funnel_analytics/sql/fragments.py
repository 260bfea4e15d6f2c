"""
Shared SQL fragments for the funnel master view.

Query modules compose their text from these pieces so that column
expressions (mapped channel, AUM selection, milestone date windows) are
spelled identically everywhere.
"""

from datetime import date
from typing import List

from funnel_analytics.models.enums import TrendGranularity
from funnel_analytics.sql.params import PredicateSet, QueryParameter, scalar_param


# =============================================================================
# COLUMN EXPRESSIONS
# =============================================================================

# Mapped channel: the mapping table wins over the view's own grouping.
CHANNEL_EXPR: str = "COALESCE(nm.Channel_Grouping_Name, v.Channel_Grouping_Name, 'Other')"

# One AUM value per record: underwritten when present, otherwise the amount.
AUM_EXPR: str = "COALESCE(v.Underwritten_AUM__c, v.Amount)"

# Milestone date columns on the funnel master view.
PROSPECT_DATE = "v.FilterDate"
CONTACTED_DATE = "v.stage_entered_contacting__c"
MQL_DATE = "v.mql_stage_entered_ts"
SQL_DATE = "v.converted_date_raw"
SQO_DATE = "v.Date_Became_SQO__c"
SIGNED_DATE = "v.Stage_Entered_Signed__c"
JOINED_DATE = "v.advisor_join_date__c"
CLOSED_DATE = "v.Stage_Entered_Closed__c"

# Columns selected for every detail-style record query.
DETAIL_COLUMNS: str = f"""
      v.primary_key AS id,
      v.advisor_name,
      v.Original_source AS source,
      {CHANNEL_EXPR} AS channel,
      v.StageName AS stage,
      v.SGA_Owner_Name__c AS sga,
      v.SGM_Owner_Name__c AS sgm,
      v.Campaign_Id__c AS campaign_id,
      v.Campaign_Name__c AS campaign_name,
      v.Underwritten_AUM__c AS underwritten_aum,
      v.Amount AS amount,
      v.salesforce_url,
      {CONTACTED_DATE} AS contacted_date,
      {MQL_DATE} AS mql_date,
      {SQL_DATE} AS sql_date,
      {SQO_DATE} AS sqo_date,
      {SIGNED_DATE} AS signed_date,
      {JOINED_DATE} AS joined_date,
      {CLOSED_DATE} AS closed_date,
      v.Initial_Call_Scheduled_Date__c AS initial_call_scheduled_date,
      v.Qualification_Call_Date__c AS qualification_call_date,
      v.is_contacted,
      v.is_mql,
      v.is_sql,
      v.is_sqo_unique AS is_sqo,
      v.is_joined_unique AS is_joined,
      v.Full_Opportunity_ID__c AS opportunity_id,
      v.recordtypeid"""


# =============================================================================
# FROM CLAUSES
# =============================================================================


def funnel_source(settings) -> str:
    """Funnel master view joined to the channel mapping table."""
    return (
        f"`{settings.funnel_table}` v\n"
        f"    LEFT JOIN `{settings.mapping_table}` nm\n"
        f"      ON v.Original_source = nm.original_source"
    )


# =============================================================================
# DATE WINDOWS
# =============================================================================


def in_range(column: str, start_param: str = "startDate", end_param: str = "endDate") -> str:
    """Timestamp-safe inclusive window test for a milestone column."""
    return (
        f"{column} IS NOT NULL "
        f"AND TIMESTAMP({column}) >= TIMESTAMP(@{start_param}) "
        f"AND TIMESTAMP({column}) <= TIMESTAMP(@{end_param})"
    )


def range_params(
    start: date,
    end: date,
    start_param: str = "startDate",
    end_param: str = "endDate",
) -> List[QueryParameter]:
    """Start/end parameters; the end is pushed to 23:59:59 to include the whole day."""
    return [
        scalar_param(start_param, start.isoformat(), "STRING"),
        scalar_param(end_param, f"{end.isoformat()} 23:59:59", "STRING"),
    ]


def period_expr(column: str, granularity: TrendGranularity) -> str:
    """Period label expression ('YYYY-MM' or 'YYYY-Q#') for a milestone column."""
    if granularity == TrendGranularity.MONTH:
        return f"FORMAT_DATE('%Y-%m', DATE({column}))"
    return (
        f"CONCAT(CAST(EXTRACT(YEAR FROM DATE({column})) AS STRING), '-Q', "
        f"CAST(EXTRACT(QUARTER FROM DATE({column})) AS STRING))"
    )


# =============================================================================
# FILTER GLUE
# =============================================================================


def where_clause(where: PredicateSet) -> str:
    return f"WHERE {where.sql()}" if len(where) else ""


def and_filters(where: PredicateSet) -> str:
    """Filter predicates appended to an existing WHERE."""
    return f"AND {where.sql()}" if len(where) else ""


def recruiting_param(settings) -> QueryParameter:
    return scalar_param("recruitingRecordType", settings.recruiting_record_type, "STRING")


__all__ = [
    "CHANNEL_EXPR",
    "AUM_EXPR",
    "PROSPECT_DATE",
    "CONTACTED_DATE",
    "MQL_DATE",
    "SQL_DATE",
    "SQO_DATE",
    "SIGNED_DATE",
    "JOINED_DATE",
    "CLOSED_DATE",
    "DETAIL_COLUMNS",
    "funnel_source",
    "in_range",
    "range_params",
    "period_expr",
    "where_clause",
    "and_filters",
    "recruiting_param",
]

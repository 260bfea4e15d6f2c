"""
SGA hub queries.

- activity_distribution_query: average activities per weekday and channel
  for a current and a comparison period
- sga_leaderboard_query: SQO counts per active SGA
- quarterly_sqo_count_query: one SGA's SQO count and AUM for a quarter
- weekly_actuals_query: one SGA's initial calls, qualification calls and
  SQOs per Monday-start week

Weekday numbers come back in BigQuery's DAYOFWEEK convention (1=Sunday ...
7=Saturday); conversion to the dashboard convention happens in the service.
"""

from datetime import date
from typing import Optional, Sequence

from funnel_analytics.sql.fragments import AUM_EXPR, CHANNEL_EXPR, SQO_DATE, range_params, recruiting_param
from funnel_analytics.sql.params import (
    CompiledQuery,
    PredicateSet,
    SetMembership,
    array_param,
    compiled,
    scalar_param,
)


_AND = "\n        AND "

# Activity subjects/subtypes produced by automated sequences.
AUTOMATED_ACTIVITY_FILTER = (
    "task_subject NOT LIKE '%[lemlist]%'\n"
    "        AND COALESCE(task_subtype, '') != 'ListEmail'"
)

# Channel correction applied to raw activity rows: explicit subjects first,
# then subject patterns, then the view's own channel group.
_ACTIVITY_CHANNEL_CASE = """CASE
          WHEN task_subject IN ('LinkedIn Message', 'LinkedIn Connect') THEN 'LinkedIn'
          WHEN task_subject IN ('Outgoing SMS', 'Incoming SMS') THEN 'SMS'
          WHEN LOWER(COALESCE(task_subject, '')) LIKE '%linkedin%'
            OR LOWER(COALESCE(task_subject, '')) LIKE '%linked in%' THEN 'LinkedIn'
          WHEN LOWER(COALESCE(task_subject, '')) LIKE '%sms%'
            OR LOWER(COALESCE(task_subject, '')) LIKE '%text%' THEN 'SMS'
          ELSE activity_channel_group
        END"""


# =============================================================================
# ACTIVITY DISTRIBUTION
# =============================================================================


def _period_cte(name: str, start_param: str, end_param: str, cap_today: bool) -> str:
    end_expr = f"@{end_param}"
    today_cap = ""
    if cap_today:
        end_expr = f"LEAST(@{end_param}, CURRENT_DATE(@reportingTimezone))"
        today_cap = "AND a.task_created_date_est <= CURRENT_DATE(@reportingTimezone)"
    return f"""{name}_days AS (
      SELECT EXTRACT(DAYOFWEEK FROM d) AS day_of_week, COUNT(*) AS occurrences
      FROM UNNEST(GENERATE_DATE_ARRAY(@{start_param}, {end_expr})) AS d
      GROUP BY day_of_week
    ),
    {name} AS (
      SELECT
        a.channel,
        EXTRACT(DAYOFWEEK FROM a.task_created_date_est) AS day_of_week,
        ANY_VALUE(a.activity_day_of_week) AS day_name,
        COUNT(DISTINCT a.task_id) AS total_count,
        SAFE_DIVIDE(COUNT(DISTINCT a.task_id), GREATEST(COALESCE(ANY_VALUE(o.occurrences), 1), 1)) AS avg_count
      FROM classified a
      LEFT JOIN {name}_days o
        ON EXTRACT(DAYOFWEEK FROM a.task_created_date_est) = o.day_of_week
      WHERE a.task_created_date_est BETWEEN @{start_param} AND @{end_param}
        {today_cap}
      GROUP BY a.channel, day_of_week
    )"""


def activity_distribution_query(
    settings,
    current_start: date,
    current_end: date,
    comparison_start: date,
    comparison_end: date,
    sga_name: Optional[str] = None,
    include_automated: bool = False,
) -> CompiledQuery:
    """
    Day-of-week activity averages for two periods, per channel.

    The average for a weekday is the distinct task count divided by how many
    times that weekday occurs in the period. The current period is capped at
    today in the reporting timezone. Marketing activity is excluded.

    Args:
        settings: Settings with the activity view name and timezone.
        current_start: First day of the current period.
        current_end: Last day of the current period.
        comparison_start: First day of the comparison period.
        comparison_end: Last day of the comparison period.
        sga_name: Restrict to one SGA's activity.
        include_automated: Keep automated sequence activity.

    Returns:
        CompiledQuery 'activity_distribution' with columns channel,
        day_of_week (1=Sunday), day_name, current_avg, current_total,
        comparison_avg, comparison_total.
    """
    where = PredicateSet()
    where.add_raw(
        "((task_created_date_est BETWEEN @currentStart AND @currentEnd)\n"
        "        OR (task_created_date_est BETWEEN @comparisonStart AND @comparisonEnd))"
    )
    where.add_raw("SGA_IsActive = TRUE")
    if not include_automated:
        where.add_raw(AUTOMATED_ACTIVITY_FILTER)
    if sga_name:
        where.add_raw("task_executor_name = @sga", scalar_param("sga", sga_name, "STRING"))

    text = f"""
    -- Activity distribution by day of week
    WITH view_data AS (
      SELECT DISTINCT
        task_id,
        task_created_date_est,
        activity_day_of_week,
        task_subject,
        task_subtype,
        activity_channel_group
      FROM `{settings.activity_view}`
      WHERE {where.sql(_AND)}
    ),
    classified AS (
      SELECT
        task_id,
        task_created_date_est,
        activity_day_of_week,
        {_ACTIVITY_CHANNEL_CASE} AS channel
      FROM view_data
    ),
    {_period_cte("current_period", "currentStart", "currentEnd", cap_today=True)},
    {_period_cte("comparison_period", "comparisonStart", "comparisonEnd", cap_today=False)}
    SELECT
      COALESCE(c.channel, p.channel) AS channel,
      COALESCE(c.day_of_week, p.day_of_week) AS day_of_week,
      COALESCE(c.day_name, p.day_name) AS day_name,
      COALESCE(c.avg_count, 0) AS current_avg,
      COALESCE(c.total_count, 0) AS current_total,
      COALESCE(p.avg_count, 0) AS comparison_avg,
      COALESCE(p.total_count, 0) AS comparison_total
    FROM current_period c
    FULL OUTER JOIN comparison_period p
      ON c.channel = p.channel AND c.day_of_week = p.day_of_week
    WHERE COALESCE(c.channel, p.channel) != 'Marketing'
    ORDER BY channel, day_of_week
    """
    return compiled(
        "activity_distribution",
        text,
        [
            *where.parameters,
            scalar_param("currentStart", current_start, "DATE"),
            scalar_param("currentEnd", current_end, "DATE"),
            scalar_param("comparisonStart", comparison_start, "DATE"),
            scalar_param("comparisonEnd", comparison_end, "DATE"),
            scalar_param("reportingTimezone", settings.reporting_timezone, "STRING"),
        ],
    )


# =============================================================================
# LEADERBOARD
# =============================================================================

# SQO owner: opportunity SGA user name, then the raw opportunity SGA, then the lead SGA.
SQO_OWNER_EXPR = "COALESCE(sga_user.Name, v.Opp_SGA_Name__c, v.SGA_Owner_Name__c)"


def sga_leaderboard_query(
    settings,
    start: date,
    end: date,
    channels: Optional[Sequence[str]] = None,
    sources: Optional[Sequence[str]] = None,
    sga_names: Optional[Sequence[str]] = None,
) -> CompiledQuery:
    """
    SQO counts per active SGA for a date range.

    Every active SGA appears, with 0 when they have no SQOs. Users listed in
    settings.excluded_sgas never appear.

    Args:
        settings: Settings with table names and exclusions.
        start: First day of the range.
        end: Last day of the range (inclusive).
        channels: Restrict SQOs to these mapped channels (None = every channel).
        sources: Restrict SQOs to these original sources.
        sga_names: Restrict the board to these SGAs.

    Returns:
        CompiledQuery 'sga_leaderboard' with columns sga_name, sqo_count,
        ordered by count desc then name.
    """
    active = PredicateSet()
    active.add_raw("u.IsSGA__c = TRUE")
    active.add_raw("u.IsActive = TRUE")
    active.add_raw(
        "u.Name NOT IN UNNEST(@excludedSgas)",
        array_param("excludedSgas", settings.excluded_sgas),
    )
    if sga_names is not None:
        active.add(SetMembership("u.Name", "sgaNames", tuple(sga_names)))

    sqos = PredicateSet()
    sqos.add_raw("v.is_sqo_unique = 1")
    sqos.add_raw("v.recordtypeid = @recruitingRecordType", recruiting_param(settings))
    sqos.add_raw(
        f"{SQO_DATE} IS NOT NULL\n"
        f"        AND TIMESTAMP({SQO_DATE}) >= TIMESTAMP(@startDate)\n"
        f"        AND TIMESTAMP({SQO_DATE}) <= TIMESTAMP(@endDate)"
    )
    if channels is not None:
        sqos.add(SetMembership(CHANNEL_EXPR, "channels", tuple(channels)))
    if sources is not None:
        sqos.add(SetMembership("v.Original_source", "sources", tuple(sources)))

    text = f"""
    -- SGA leaderboard (SQOs in range)
    WITH active_sgas AS (
      SELECT DISTINCT u.Name AS sga_name
      FROM `{settings.user_table}` u
      WHERE {active.sql(_AND)}
    ),
    sqo_data AS (
      SELECT
        {SQO_OWNER_EXPR} AS sga_name,
        v.primary_key
      FROM `{settings.funnel_table}` v
      LEFT JOIN `{settings.mapping_table}` nm
        ON v.Original_source = nm.original_source
      LEFT JOIN `{settings.user_table}` sga_user
        ON v.Opp_SGA_Name__c = sga_user.Id
      WHERE {sqos.sql(_AND)}
    )
    SELECT
      a.sga_name,
      COUNT(DISTINCT s.primary_key) AS sqo_count
    FROM active_sgas a
    LEFT JOIN sqo_data s ON s.sga_name = a.sga_name
    GROUP BY a.sga_name
    ORDER BY sqo_count DESC, a.sga_name ASC
    """
    return compiled(
        "sga_leaderboard",
        text,
        [
            *active.parameters,
            *sqos.parameters,
            *range_params(start, end),
        ],
    )


# =============================================================================
# QUARTERLY PROGRESS
# =============================================================================


def quarterly_sqo_count_query(
    settings,
    sga_name: str,
    quarter_start: date,
    quarter_end: date,
) -> CompiledQuery:
    """
    SQO count and SQO AUM for one SGA within one quarter.

    An SQO belongs to the SGA when they own the lead, own the opportunity,
    or are the opportunity SGA user.

    Returns:
        CompiledQuery 'quarterly_sqo_count' producing one row with
        sqo_count and total_aum.
    """
    text = f"""
    -- Quarterly SQO progress for one SGA
    SELECT
      COUNT(*) AS sqo_count,
      SUM(COALESCE({AUM_EXPR}, 0)) AS total_aum
    FROM `{settings.funnel_table}` v
    LEFT JOIN `{settings.user_table}` sga_user
      ON v.Opp_SGA_Name__c = sga_user.Id
    WHERE (v.SGA_Owner_Name__c = @sgaName
        OR v.Opp_SGA_Name__c = @sgaName
        OR COALESCE(sga_user.Name, v.Opp_SGA_Name__c) = @sgaName)
      AND v.is_sqo_unique = 1
      AND v.recordtypeid = @recruitingRecordType
      AND {SQO_DATE} IS NOT NULL
      AND TIMESTAMP({SQO_DATE}) >= TIMESTAMP(@startDate)
      AND TIMESTAMP({SQO_DATE}) <= TIMESTAMP(@endDate)
    """
    return compiled(
        "quarterly_sqo_count",
        text,
        [
            scalar_param("sgaName", sga_name, "STRING"),
            recruiting_param(settings),
            *range_params(quarter_start, quarter_end),
        ],
    )



# =============================================================================
# WEEKLY ACTUALS
# =============================================================================


def weekly_actuals_query(settings, sga_name: str, start: date, end: date) -> CompiledQuery:
    """
    Weekly activity for one SGA between two dates.

    Weeks start on Monday. Every week overlapping the range gets a row, with
    zeros for weeks without activity. Initial and qualification calls belong
    to the lead owner; SQOs use the same ownership match as quarterly
    progress.

    Returns:
        CompiledQuery 'weekly_actuals' with columns week_start,
        initial_calls, qualification_calls, sqos, newest week first.
    """
    text = f"""
    -- Weekly actuals for one SGA
    WITH initial_calls AS (
      SELECT
        DATE_TRUNC(v.Initial_Call_Scheduled_Date__c, WEEK(MONDAY)) AS week_start,
        COUNT(DISTINCT v.primary_key) AS count
      FROM `{settings.funnel_table}` v
      WHERE v.SGA_Owner_Name__c = @sgaName
        AND v.Initial_Call_Scheduled_Date__c IS NOT NULL
        AND v.Initial_Call_Scheduled_Date__c BETWEEN @startDay AND @endDay
      GROUP BY week_start
    ),
    qual_calls AS (
      SELECT
        DATE_TRUNC(v.Qualification_Call_Date__c, WEEK(MONDAY)) AS week_start,
        COUNT(DISTINCT v.Full_Opportunity_ID__c) AS count
      FROM `{settings.funnel_table}` v
      WHERE v.SGA_Owner_Name__c = @sgaName
        AND v.Qualification_Call_Date__c IS NOT NULL
        AND v.Qualification_Call_Date__c BETWEEN @startDay AND @endDay
      GROUP BY week_start
    ),
    sqos AS (
      SELECT
        DATE(DATE_TRUNC({SQO_DATE}, WEEK(MONDAY))) AS week_start,
        COUNT(*) AS count
      FROM `{settings.funnel_table}` v
      LEFT JOIN `{settings.user_table}` sga_user
        ON v.Opp_SGA_Name__c = sga_user.Id
      WHERE (v.SGA_Owner_Name__c = @sgaName
          OR v.Opp_SGA_Name__c = @sgaName
          OR COALESCE(sga_user.Name, v.Opp_SGA_Name__c) = @sgaName)
        AND v.is_sqo_unique = 1
        AND v.recordtypeid = @recruitingRecordType
        AND {SQO_DATE} IS NOT NULL
        AND TIMESTAMP({SQO_DATE}) >= TIMESTAMP(@startDate)
        AND TIMESTAMP({SQO_DATE}) <= TIMESTAMP(@endDate)
      GROUP BY week_start
    ),
    all_weeks AS (
      SELECT week_start
      FROM UNNEST(GENERATE_DATE_ARRAY(
        DATE_TRUNC(@startDay, WEEK(MONDAY)),
        DATE_TRUNC(@endDay, WEEK(MONDAY)),
        INTERVAL 1 WEEK
      )) AS week_start
    )
    SELECT
      aw.week_start,
      COALESCE(ic.count, 0) AS initial_calls,
      COALESCE(qc.count, 0) AS qualification_calls,
      COALESCE(s.count, 0) AS sqos
    FROM all_weeks aw
    LEFT JOIN initial_calls ic ON aw.week_start = ic.week_start
    LEFT JOIN qual_calls qc ON aw.week_start = qc.week_start
    LEFT JOIN sqos s ON aw.week_start = s.week_start
    ORDER BY aw.week_start DESC
    """
    return compiled(
        "weekly_actuals",
        text,
        [
            scalar_param("sgaName", sga_name, "STRING"),
            scalar_param("startDay", start, "DATE"),
            scalar_param("endDay", end, "DATE"),
            recruiting_param(settings),
            *range_params(start, end),
        ],
    )


__all__ = [
    "AUTOMATED_ACTIVITY_FILTER",
    "SQO_OWNER_EXPR",
    "activity_distribution_query",
    "sga_leaderboard_query",
    "quarterly_sqo_count_query",
    "weekly_actuals_query",
]

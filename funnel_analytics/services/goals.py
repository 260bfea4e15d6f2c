"""
Goal lookups.

Two goal sources feed the dashboards:

- Forecast goals (BigQuery): daily-ized targets summed over the selected
  range, globally or per channel/source. They only exist from
  settings.forecast_start_date; earlier ranges have no goals.
- SGA quarterly SQO goals (PostgreSQL, table `sga_quarterly_goal`), set by
  managers per SGA and quarter.
- SGA weekly goals (PostgreSQL, table `sga_weekly_goal`): initial calls,
  qualification calls and SQOs per SGA and Monday-start week.

A missing goal is None, never 0: a zero goal would make every variance
percentage undefined and every actual "on track".
"""

import logging
from datetime import date
from typing import Any, Dict, List, Mapping, Optional

from funnel_analytics.core.database import execute_query, execute_query_one
from funnel_analytics.models.schemas import ForecastGoals, WeeklyGoal
from funnel_analytics.services.records import to_number, to_string
from funnel_analytics.sql.params import CompiledQuery

logger = logging.getLogger(__name__)


_GOAL_FIELDS = ("prospects", "mqls", "sqls", "sqos", "joined")

QUARTERLY_GOAL_SQL = """
    SELECT sqo_goal
    FROM sga_quarterly_goal
    WHERE sga_name = $1 AND quarter = $2
"""

UPSERT_QUARTERLY_GOAL_SQL = """
    INSERT INTO sga_quarterly_goal (sga_name, quarter, sqo_goal, updated_at)
    VALUES ($1, $2, $3, NOW())
    ON CONFLICT (sga_name, quarter)
    DO UPDATE SET sqo_goal = EXCLUDED.sqo_goal, updated_at = NOW()
    RETURNING sga_name, quarter, sqo_goal, updated_at
"""

WEEKLY_GOALS_SQL = """
    SELECT sga_name, week_start_date, initial_calls_goal, qualification_calls_goal, sqo_goal, updated_at
    FROM sga_weekly_goal
    WHERE sga_name = $1 AND week_start_date BETWEEN $2 AND $3
    ORDER BY week_start_date DESC
"""

UPSERT_WEEKLY_GOAL_SQL = """
    INSERT INTO sga_weekly_goal
        (sga_name, week_start_date, initial_calls_goal, qualification_calls_goal, sqo_goal, updated_at)
    VALUES ($1, $2, $3, $4, $5, NOW())
    ON CONFLICT (sga_name, week_start_date)
    DO UPDATE SET initial_calls_goal = EXCLUDED.initial_calls_goal,
                  qualification_calls_goal = EXCLUDED.qualification_calls_goal,
                  sqo_goal = EXCLUDED.sqo_goal,
                  updated_at = NOW()
    RETURNING sga_name, week_start_date, initial_calls_goal, qualification_calls_goal, sqo_goal, updated_at
"""


def has_forecast_data(range_start: date, forecast_start: date) -> bool:
    return range_start >= forecast_start


def forecast_goals_from_row(row: Mapping[str, Any]) -> Optional[ForecastGoals]:
    """
    ForecastGoals from one `*_goal` row, or None when the row carries no goals.

    A row whose SQL, SQO and joined goals are all null means the forecast
    view had no days in range.
    """
    if all(row.get(f"{name}_goal") is None for name in ("sqls", "sqos", "joined")):
        return None
    return ForecastGoals(**{name: to_number(row.get(f"{name}_goal")) for name in _GOAL_FIELDS})


async def fetch_forecast_goals(
    warehouse,
    query: CompiledQuery,
    range_start: date,
    forecast_start: date,
) -> Optional[ForecastGoals]:
    """
    Aggregate forecast goals for a range.

    Returns:
        ForecastGoals, or None when the range starts before forecasts exist
        or the view returned nothing.

    Raises:
        SourceQueryError: If the warehouse query fails.
    """
    if not has_forecast_data(range_start, forecast_start):
        logger.debug(f"Range starting {range_start} predates forecast data ({forecast_start}); no goals")
        return None
    rows = await warehouse.run_query(query)
    if not rows:
        return None
    return forecast_goals_from_row(rows[0])


async def fetch_dimension_goals(
    warehouse,
    query: CompiledQuery,
    range_start: date,
    forecast_start: date,
    key_column: str,
) -> Dict[str, ForecastGoals]:
    """
    Forecast goals keyed by a dimension column (channel_grouping_name or
    original_source). Empty when forecasts do not cover the range.
    """
    if not has_forecast_data(range_start, forecast_start):
        return {}
    rows = await warehouse.run_query(query)
    goals: Dict[str, ForecastGoals] = {}
    for row in rows:
        key = to_string(row.get(key_column))
        parsed = forecast_goals_from_row(row)
        if key and parsed is not None:
            goals[key] = parsed
    return goals


async def fetch_quarterly_goal(sga_name: str, quarter: str) -> Optional[float]:
    """
    SQO goal for one SGA and quarter from the goals store.

    Returns:
        The goal, or None when no goal has been set.

    Raises:
        RuntimeError: If DATABASE_URL is not configured.
        asyncpg.PostgresError: If the lookup fails.
    """
    row = await execute_query_one(QUARTERLY_GOAL_SQL, sga_name, quarter)
    if row is None or row["sqo_goal"] is None:
        return None
    return float(row["sqo_goal"])


async def upsert_quarterly_goal(conn, sga_name: str, quarter: str, sqo_goal: float):
    """
    Create or replace one SGA's quarterly SQO goal.

    Args:
        conn: asyncpg connection from the goals pool.

    Returns:
        The stored row (sga_name, quarter, sqo_goal, updated_at).
    """
    return await conn.fetchrow(UPSERT_QUARTERLY_GOAL_SQL, sga_name, quarter, sqo_goal)


def weekly_goal_from_row(row: Mapping[str, Any]) -> WeeklyGoal:
    return WeeklyGoal(
        sgaName=row["sga_name"],
        weekStartDate=row["week_start_date"],
        initialCallsGoal=to_number(row["initial_calls_goal"]),
        qualificationCallsGoal=to_number(row["qualification_calls_goal"]),
        sqoGoal=to_number(row["sqo_goal"]),
        updatedAt=row["updated_at"],
    )


async def fetch_weekly_goals(sga_name: str, start: date, end: date) -> List[WeeklyGoal]:
    """
    Weekly goals for one SGA whose week starts between `start` and `end`,
    newest first.

    Raises:
        RuntimeError: If DATABASE_URL is not configured.
        asyncpg.PostgresError: If the lookup fails.
    """
    rows = await execute_query(WEEKLY_GOALS_SQL, sga_name, start, end)
    return [weekly_goal_from_row(row) for row in rows]


async def upsert_weekly_goal(
    conn,
    sga_name: str,
    week_start: date,
    initial_calls_goal: float,
    qualification_calls_goal: float,
    sqo_goal: float,
) -> WeeklyGoal:
    """
    Create or replace one SGA's goals for a week.

    Raises:
        ValueError: If week_start is not a Monday or a goal is negative.
    """
    if week_start.weekday() != 0:
        raise ValueError(f"Week start {week_start.isoformat()} is not a Monday")
    goals = (initial_calls_goal, qualification_calls_goal, sqo_goal)
    if any(goal < 0 for goal in goals):
        raise ValueError(f"Weekly goals must be non-negative, got {goals}")
    row = await conn.fetchrow(UPSERT_WEEKLY_GOAL_SQL, sga_name, week_start, *goals)
    return weekly_goal_from_row(row)


def goal_names() -> List[str]:
    return list(_GOAL_FIELDS)


__all__ = [
    "QUARTERLY_GOAL_SQL",
    "UPSERT_QUARTERLY_GOAL_SQL",
    "WEEKLY_GOALS_SQL",
    "UPSERT_WEEKLY_GOAL_SQL",
    "has_forecast_data",
    "forecast_goals_from_row",
    "fetch_forecast_goals",
    "fetch_dimension_goals",
    "fetch_quarterly_goal",
    "upsert_quarterly_goal",
    "weekly_goal_from_row",
    "fetch_weekly_goals",
    "upsert_weekly_goal",
    "goal_names",
]

"""
Tests for the goals store lookups and upserts.

The asyncpg pool is replaced by monkeypatching the database helpers; the
upserts receive a mocked connection.
"""

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from funnel_analytics.services.goals import (
    UPSERT_WEEKLY_GOAL_SQL,
    WEEKLY_GOALS_SQL,
    fetch_quarterly_goal,
    fetch_weekly_goals,
    upsert_weekly_goal,
)


UPDATED_AT = datetime(2026, 5, 15, 12, 0, tzinfo=timezone.utc)


def weekly_goal_row(week_start: date, sqo_goal: float = 2) -> dict:
    return {
        "sga_name": "Sam Caller",
        "week_start_date": week_start,
        "initial_calls_goal": 10,
        "qualification_calls_goal": 4,
        "sqo_goal": sqo_goal,
        "updated_at": UPDATED_AT,
    }


class TestQuarterlyGoal:

    @pytest.mark.asyncio
    async def test_unset_goal_is_none(self, monkeypatch):
        monkeypatch.setattr(
            "funnel_analytics.services.goals.execute_query_one", AsyncMock(return_value=None)
        )
        assert await fetch_quarterly_goal("Sam Caller", "2026-Q2") is None

    @pytest.mark.asyncio
    async def test_goal_is_a_float(self, monkeypatch):
        monkeypatch.setattr(
            "funnel_analytics.services.goals.execute_query_one", AsyncMock(return_value={"sqo_goal": 12})
        )
        assert await fetch_quarterly_goal("Sam Caller", "2026-Q2") == 12.0


class TestWeeklyGoals:

    @pytest.mark.asyncio
    async def test_fetch_maps_rows(self, monkeypatch):
        lookup = AsyncMock(return_value=[weekly_goal_row(date(2026, 5, 11)), weekly_goal_row(date(2026, 5, 4), 1)])
        monkeypatch.setattr("funnel_analytics.services.goals.execute_query", lookup)

        goals = await fetch_weekly_goals("Sam Caller", date(2026, 5, 4), date(2026, 5, 15))

        lookup.assert_awaited_once_with(WEEKLY_GOALS_SQL, "Sam Caller", date(2026, 5, 4), date(2026, 5, 15))
        assert [g.weekStartDate for g in goals] == [date(2026, 5, 11), date(2026, 5, 4)]
        assert goals[0].initialCallsGoal == 10.0
        assert goals[1].sqoGoal == 1.0

    @pytest.mark.asyncio
    async def test_upsert(self):
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value=weekly_goal_row(date(2026, 5, 11)))

        goal = await upsert_weekly_goal(conn, "Sam Caller", date(2026, 5, 11), 10, 4, 2)

        conn.fetchrow.assert_awaited_once_with(UPSERT_WEEKLY_GOAL_SQL, "Sam Caller", date(2026, 5, 11), 10, 4, 2)
        assert goal.sqoGoal == 2.0
        assert goal.updatedAt == UPDATED_AT

    @pytest.mark.asyncio
    async def test_upsert_rejects_a_week_not_starting_monday(self):
        conn = MagicMock()
        conn.fetchrow = AsyncMock()

        with pytest.raises(ValueError):
            await upsert_weekly_goal(conn, "Sam Caller", date(2026, 5, 13), 10, 4, 2)
        conn.fetchrow.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_upsert_rejects_negative_goals(self):
        conn = MagicMock()
        conn.fetchrow = AsyncMock()

        with pytest.raises(ValueError):
            await upsert_weekly_goal(conn, "Sam Caller", date(2026, 5, 11), 10, -1, 2)
        conn.fetchrow.assert_not_awaited()

"""
FastAPI router for the SGA hub.

Key Endpoints:
- POST /sga-hub/closed-lost - Closed-lost follow-up records by time-since-contact bucket
- POST /sga-hub/activity-distribution - Day-of-week activity, current vs comparison period
- POST /sga-hub/leaderboard - SQO leaderboard with dense ranking
- POST /sga-hub/quarterly-progress - Quarter-to-date SQO progress and pacing for one SGA
- PUT /sga-hub/quarterly-goal - Set an SGA's quarterly SQO goal
- POST /sga-hub/weekly-actuals - Calls and SQOs per Monday-start week for one SGA
- POST /sga-hub/weekly-progress - Weekly goals next to weekly actuals
- PUT /sga-hub/weekly-goal - Set an SGA's goals for one week

Reads are cached under the 'sga-hub' tag. Setting a goal invalidates that
tag so the next progress call sees the new goal.
"""

import logging
from typing import List

from fastapi import APIRouter, HTTPException

from funnel_analytics.api.errors import to_http_exception
from funnel_analytics.core.dependencies import DashboardServiceDep, DBSessionDep
from funnel_analytics.models.enums import CacheTag
from funnel_analytics.models.schemas import (
    ActivityDistribution,
    ActivityDistributionRequest,
    ClosedLostRecord,
    ClosedLostRequest,
    LeaderboardEntry,
    LeaderboardRequest,
    QuarterlyGoalRequest,
    QuarterlyGoalResponse,
    QuarterlyProgress,
    QuarterlyProgressRequest,
    WeeklyActual,
    WeeklyGoal,
    WeeklyGoalRequest,
    WeeklyProgress,
    WeeklyRangeRequest,
)
from funnel_analytics.services.goals import upsert_quarterly_goal, upsert_weekly_goal


# =============================================================================
# Module Configuration
# =============================================================================

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Closed-Lost Follow-Up
# =============================================================================


@router.post("/closed-lost", response_model=List[ClosedLostRecord])
async def closed_lost(
    request: ClosedLostRequest,
    service: DashboardServiceDep,
) -> List[ClosedLostRecord]:
    """
    Closed-lost opportunities due for follow-up.

    Omitting timeBuckets returns every bucket from 30 days since last contact.
    Firms with an open re-engagement opportunity are left out.
    """
    try:
        return await service.get_closed_lost_records(request.filters, request.timeBuckets)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "loading closed-lost records")


# =============================================================================
# Activity Distribution
# =============================================================================


@router.post("/activity-distribution", response_model=List[ActivityDistribution])
async def activity_distribution(
    request: ActivityDistributionRequest,
    service: DashboardServiceDep,
) -> List[ActivityDistribution]:
    try:
        return await service.get_activity_distribution(
            request.filters,
            request.comparisonStartDate,
            request.comparisonEndDate,
            request.includeAutomated,
        )
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "computing activity distribution")


# =============================================================================
# Leaderboard and Quarterly Progress
# =============================================================================


@router.post("/leaderboard", response_model=List[LeaderboardEntry])
async def leaderboard(
    request: LeaderboardRequest,
    service: DashboardServiceDep,
) -> List[LeaderboardEntry]:
    try:
        return await service.get_sga_leaderboard(request.filters)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "computing SGA leaderboard")


@router.post("/quarterly-progress", response_model=QuarterlyProgress)
async def quarterly_progress(
    request: QuarterlyProgressRequest,
    service: DashboardServiceDep,
) -> QuarterlyProgress:
    try:
        return await service.get_quarterly_progress(request.sgaName, request.quarter)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, f"computing quarterly progress for {request.sgaName}")


@router.put("/quarterly-goal", response_model=QuarterlyGoalResponse)
async def set_quarterly_goal(
    request: QuarterlyGoalRequest,
    service: DashboardServiceDep,
    db: DBSessionDep,
) -> QuarterlyGoalResponse:
    """
    Create or replace an SGA's SQO goal for a quarter.

    Invalidates the 'sga-hub' cache tag so progress and pacing pick up the
    new goal immediately.
    """
    try:
        row = await upsert_quarterly_goal(db, request.sgaName, request.quarter, request.sqoGoal)
        evicted = service.invalidate([CacheTag.SGA_HUB])
        logger.info(
            f"Set {request.quarter} SQO goal for {request.sgaName} to {request.sqoGoal} "
            f"({evicted[CacheTag.SGA_HUB.value]} cached entries evicted)"
        )
        return QuarterlyGoalResponse(
            sgaName=row["sga_name"],
            quarter=row["quarter"],
            sqoGoal=float(row["sqo_goal"]),
            updatedAt=row["updated_at"],
        )
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, f"saving quarterly goal for {request.sgaName}")


# =============================================================================
# Weekly Goals and Actuals
# =============================================================================


@router.post("/weekly-actuals", response_model=List[WeeklyActual])
async def weekly_actuals(
    request: WeeklyRangeRequest,
    service: DashboardServiceDep,
) -> List[WeeklyActual]:
    try:
        return await service.get_weekly_actuals(request.sgaName, request.startDate, request.endDate)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, f"loading weekly actuals for {request.sgaName}")


@router.post("/weekly-progress", response_model=WeeklyProgress)
async def weekly_progress(
    request: WeeklyRangeRequest,
    service: DashboardServiceDep,
) -> WeeklyProgress:
    try:
        return await service.get_weekly_progress(request.sgaName, request.startDate, request.endDate)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, f"computing weekly progress for {request.sgaName}")


@router.put("/weekly-goal", response_model=WeeklyGoal)
async def set_weekly_goal(
    request: WeeklyGoalRequest,
    service: DashboardServiceDep,
    db: DBSessionDep,
) -> WeeklyGoal:
    """Create or replace an SGA's goals for the week starting weekStartDate (a Monday)."""
    try:
        goal = await upsert_weekly_goal(
            db,
            request.sgaName,
            request.weekStartDate,
            request.initialCallsGoal,
            request.qualificationCallsGoal,
            request.sqoGoal,
        )
        evicted = service.invalidate([CacheTag.SGA_HUB])
        logger.info(
            f"Set goals for week of {request.weekStartDate} for {request.sgaName} "
            f"({evicted[CacheTag.SGA_HUB.value]} cached entries evicted)"
        )
        return goal
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, f"saving weekly goal for {request.sgaName}")

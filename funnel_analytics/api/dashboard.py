"""
FastAPI router for the funnel dashboard.

Every endpoint takes the dashboard filter state in the request body and
delegates to the cached DashboardService; identical filter states are served
from the cache until the next refresh invalidates the 'dashboard' tag.

Key Endpoints:
- POST /dashboard/funnel-metrics - Funnel volumes and AUM, optionally with forecast goals
- POST /dashboard/conversion-rates - Stage-to-stage conversion rates
- POST /dashboard/conversion-trends - Conversion rates per quarter or month
- POST /dashboard/channel-performance - Per-channel volumes and rates
- POST /dashboard/source-performance - Per-source volumes and rates
- POST /dashboard/detail-records - Record-level rows behind the metrics
- POST /dashboard/pipeline-summary - Open pipeline count and AUM per stage
- POST /dashboard/pipeline-drilldown - Open pipeline records for one stage
- POST /dashboard/pipeline-stages - Open pipeline records for several stages

Errors:
- CompileError -> 400 with {error, message, context}
- SourceQueryError -> 502 with {error, message, context}
- anything else -> 500
"""

import logging
from typing import List

from fastapi import APIRouter, HTTPException

from funnel_analytics.api.errors import to_http_exception
from funnel_analytics.core.dependencies import DashboardServiceDep
from funnel_analytics.models.schemas import (
    ChannelPerformanceRow,
    ConversionRates,
    ConversionRequest,
    DashboardFiltersRequest,
    DetailRecord,
    DetailRecordsRequest,
    FunnelMetricsRequest,
    FunnelMetricsWithGoals,
    PipelineDrillDown,
    PipelineDrillDownRequest,
    PipelineStagesDrillDown,
    PipelineStagesRequest,
    PipelineSummary,
    PipelineSummaryRequest,
    SourcePerformanceRow,
    TrendDataPoint,
)


# =============================================================================
# Module Configuration
# =============================================================================

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Funnel Metrics
# =============================================================================


@router.post("/funnel-metrics", response_model=FunnelMetricsWithGoals)
async def funnel_metrics(
    request: FunnelMetricsRequest,
    service: DashboardServiceDep,
) -> FunnelMetricsWithGoals:
    """
    Funnel volumes and AUM for the filter state.

    With includeGoals (the default) the response also carries forecast goals
    and per-metric variance. Goals are best-effort: if they cannot be loaded
    the metrics are still returned and 'goals' is listed in `unavailable`.
    """
    try:
        if request.includeGoals:
            return await service.get_funnel_metrics_with_goals(request.filters)
        metrics = await service.get_funnel_metrics(request.filters)
        return FunnelMetricsWithGoals(metrics=metrics)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "computing funnel metrics")


# =============================================================================
# Conversion Rates and Trends
# =============================================================================


@router.post("/conversion-rates", response_model=ConversionRates)
async def conversion_rates(
    request: ConversionRequest,
    service: DashboardServiceDep,
) -> ConversionRates:
    try:
        return await service.get_conversion_rates(request.filters, request.mode)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "computing conversion rates")


@router.post("/conversion-trends", response_model=List[TrendDataPoint])
async def conversion_trends(
    request: ConversionRequest,
    service: DashboardServiceDep,
) -> List[TrendDataPoint]:
    """
    Conversion rates per period, oldest first.

    Periods with no activity are returned as zero-filled points so charts
    always show the full window.
    """
    try:
        return await service.get_conversion_trends(request.filters, request.mode, request.granularity)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "computing conversion trends")


# =============================================================================
# Performance Tables
# =============================================================================


@router.post("/channel-performance", response_model=List[ChannelPerformanceRow])
async def channel_performance(
    request: DashboardFiltersRequest,
    service: DashboardServiceDep,
) -> List[ChannelPerformanceRow]:
    try:
        return await service.get_channel_performance(request.filters, request.includeGoals)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "computing channel performance")


@router.post("/source-performance", response_model=List[SourcePerformanceRow])
async def source_performance(
    request: DashboardFiltersRequest,
    service: DashboardServiceDep,
) -> List[SourcePerformanceRow]:
    try:
        return await service.get_source_performance(request.filters, request.includeGoals)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "computing source performance")


# =============================================================================
# Detail Records
# =============================================================================


@router.post("/detail-records", response_model=List[DetailRecord])
async def detail_records(
    request: DetailRecordsRequest,
    service: DashboardServiceDep,
) -> List[DetailRecord]:
    try:
        return await service.get_detail_records(request.filters, request.limit)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "loading detail records")


# =============================================================================
# Open Pipeline
# =============================================================================


@router.post("/pipeline-summary", response_model=PipelineSummary)
async def pipeline_summary(
    request: PipelineSummaryRequest,
    service: DashboardServiceDep,
) -> PipelineSummary:
    try:
        return await service.get_pipeline_summary(request.stages, request.sgms)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "computing pipeline summary")


@router.post("/pipeline-drilldown", response_model=PipelineDrillDown)
async def pipeline_drilldown(
    request: PipelineDrillDownRequest,
    service: DashboardServiceDep,
) -> PipelineDrillDown:
    try:
        return await service.get_pipeline_drilldown(request.stage, request.filters, request.sgms)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, f"loading pipeline records for stage '{request.stage}'")


@router.post("/pipeline-stages", response_model=PipelineStagesDrillDown)
async def pipeline_stages(
    request: PipelineStagesRequest,
    service: DashboardServiceDep,
) -> PipelineStagesDrillDown:
    """
    Open pipeline records for several stages at once.

    Stages whose query fails are omitted and listed in `failedStages`.
    """
    try:
        return await service.get_pipeline_by_stages(request.filters, request.stages, request.sgms)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "loading pipeline stages")

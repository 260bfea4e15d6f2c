"""
Warehouse row normalization.

BigQuery rows arrive with loosely typed values: integers as int or numeric
strings, nullable floats, and date fields as `date`, `datetime`, ISO strings,
or `{"value": "YYYY-MM-DD"}` wrapper objects depending on the column type and
client path. Everything here converts those raw values into the typed
records the dashboards consume.

Rules:
- Dates are normalized to 'YYYY-MM-DD' strings (time of day dropped).
- Missing/NaN/inf numbers become 0.
- AUM uses exactly one field per record: the underwritten AUM when present,
  otherwise the raw amount. The two are never added.

`map_rows()` converts a whole result set and turns any malformed row into a
SourceQueryError naming the query it came from.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, List, Mapping, Optional, TypeVar

import numpy as np

from funnel_analytics.core.errors import SourceQueryError
from funnel_analytics.models.enums import ConversionMode, TimeBucket
from funnel_analytics.models.schemas import (
    ActivityDayPoint,
    ActivityDistribution,
    ChannelPerformanceRow,
    ClosedLostRecord,
    ConversionRates,
    DetailRecord,
    FunnelMetrics,
    SourcePerformanceRow,
    TrendDataPoint,
    WeeklyActual,
)
from funnel_analytics.services.time_buckets import (
    classify_days,
    elapsed_days,
    normalize_bucket_label,
)
from funnel_analytics.services.variance import conversion_rate, safe_div

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# CONSTANTS
# =============================================================================

# Opportunity stages that make up the open pipeline, in funnel order.
OPEN_PIPELINE_STAGES: tuple = ("Qualifying", "Discovery", "Sales Process", "Negotiating")

# Display order for every stage that can appear in a pipeline summary.
STAGE_ORDER: tuple = (
    "Qualifying",
    "Discovery",
    "Sales Process",
    "Negotiating",
    "Signed",
    "On Hold",
    "Planned Nurture",
)


# =============================================================================
# SCALAR CONVERSION
# =============================================================================


def normalize_date(value: Any) -> Optional[str]:
    """
    Normalize a warehouse date value to 'YYYY-MM-DD'.

    Args:
        value: None, date, datetime, ISO string ('2026-01-05',
            '2026-01-05T10:00:00Z', '2026-01-05 10:00:00 UTC'), or a mapping
            with a 'value' key holding one of those.

    Returns:
        The calendar date as 'YYYY-MM-DD', or None for null/empty input.

    Raises:
        ValueError: If the value cannot be read as a date.
    """
    if value is None:
        return None
    if isinstance(value, Mapping):
        return normalize_date(value.get("value"))
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        day = text.split("T")[0].split(" ")[0]
        # Validates the shape; raises ValueError for garbage.
        return date.fromisoformat(day).isoformat()
    raise ValueError(f"Unsupported date value of type {type(value).__name__}")


def _finite_or_none(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal, np.number)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if np.isnan(number) or np.isinf(number):
        return None
    return number


def to_number(value: Any) -> float:
    """Convert a raw numeric value to float; null, NaN, inf and junk become 0.0."""
    number = _finite_or_none(value)
    return 0.0 if number is None else number


def to_int(value: Any) -> int:
    return int(round(to_number(value)))


def to_string(value: Any) -> str:
    return "" if value is None else str(value)


def to_optional_string(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text else None


def to_flag(value: Any) -> bool:
    """Warehouse 0/1 flags (int, bool or string) to bool."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return to_number(value) == 1


def select_aum(underwritten: Any, amount: Any) -> float:
    """
    Pick the single AUM value for a record.

    Returns the underwritten AUM when it is a finite number, otherwise the raw
    amount, otherwise 0. Never the sum of both.

    Example:
        >>> select_aum(5_000_000, 7_000_000)
        5000000.0
        >>> select_aum(None, 7_000_000)
        7000000.0
    """
    chosen = _finite_or_none(underwritten)
    if chosen is None:
        chosen = _finite_or_none(amount)
    return 0.0 if chosen is None else chosen


def _record_aum(row: Mapping[str, Any]) -> float:
    if "underwritten_aum" in row or "amount" in row:
        return select_aum(row.get("underwritten_aum"), row.get("amount"))
    return to_number(row.get("aum"))


# =============================================================================
# RECORD MAPPERS
# =============================================================================


def detail_record_from_row(row: Mapping[str, Any]) -> DetailRecord:
    """Build a DetailRecord from a funnel master row."""
    stage = to_string(row.get("stage")) or "Unknown"
    return DetailRecord(
        id=to_string(row["id"]),
        advisorName=to_string(row.get("advisor_name")) or "Unknown",
        source=to_string(row.get("source")) or "Unknown",
        channel=to_string(row.get("channel")) or "Unknown",
        stage=stage,
        sga=to_optional_string(row.get("sga")),
        sgm=to_optional_string(row.get("sgm")),
        campaignId=to_optional_string(row.get("campaign_id")),
        campaignName=to_optional_string(row.get("campaign_name")),
        aum=_record_aum(row),
        salesforceUrl=to_string(row.get("salesforce_url")),
        relevantDate=normalize_date(row.get("relevant_date")),
        contactedDate=normalize_date(row.get("contacted_date")),
        mqlDate=normalize_date(row.get("mql_date")),
        sqlDate=normalize_date(row.get("sql_date")),
        sqoDate=normalize_date(row.get("sqo_date")),
        joinedDate=normalize_date(row.get("joined_date")),
        signedDate=normalize_date(row.get("signed_date")),
        closedDate=normalize_date(row.get("closed_date")),
        initialCallScheduledDate=normalize_date(row.get("initial_call_scheduled_date")),
        qualificationCallDate=normalize_date(row.get("qualification_call_date")),
        isContacted=to_flag(row.get("is_contacted")),
        isMql=to_flag(row.get("is_mql")),
        isSql=to_flag(row.get("is_sql")),
        isSqo=to_flag(row.get("is_sqo")),
        isJoined=to_flag(row.get("is_joined")),
        isOpenPipeline=stage in OPEN_PIPELINE_STAGES,
        opportunityId=to_optional_string(row.get("opportunity_id")),
        recordTypeId=to_optional_string(row.get("recordtypeid")),
    )


def closed_lost_record_from_row(
    row: Mapping[str, Any],
    reference_date: date,
) -> ClosedLostRecord:
    """
    Build a ClosedLostRecord from either closed-lost source.

    The bucket comes from the row's label when the source provides one
    (any accepted variant, normalized to the canonical label); otherwise it
    is derived from the elapsed days. Elapsed days are recomputed from the
    last contact date when the source does not supply them.

    Raises:
        ValueError: If the row has neither a recognizable bucket label nor a
            last contact date / day count to classify from.
    """
    last_contact = normalize_date(row.get("last_contact_date"))
    days_raw = row.get("days_since_contact")
    days: Optional[int] = None if _finite_or_none(days_raw) is None else to_int(days_raw)
    if days is None and last_contact is not None:
        days = elapsed_days(reference_date, last_contact)

    label = row.get("time_since_last_contact_bucket")
    bucket: Optional[TimeBucket] = normalize_bucket_label(label)
    if bucket is None:
        if days is None:
            raise ValueError(
                f"Closed-lost row {row.get('id')!r} has no usable bucket label ({label!r}) "
                "and no last contact date"
            )
        bucket = classify_days(days)

    return ClosedLostRecord(
        id=to_string(row["id"]),
        oppName=to_optional_string(row.get("opp_name")),
        leadId=to_optional_string(row.get("lead_id")),
        opportunityId=to_optional_string(row.get("opportunity_id")),
        leadUrl=to_optional_string(row.get("lead_url")),
        opportunityUrl=to_optional_string(row.get("opportunity_url")),
        salesforceUrl=to_optional_string(row.get("salesforce_url"))
        or to_optional_string(row.get("opportunity_url"))
        or to_optional_string(row.get("lead_url")),
        lastContactDate=last_contact,
        closedLostDate=normalize_date(row.get("closed_lost_date")),
        sqlDate=normalize_date(row.get("sql_date")),
        closedLostReason=to_optional_string(row.get("closed_lost_reason")),
        closedLostDetails=to_optional_string(row.get("closed_lost_details")),
        timeSinceContactBucket=bucket,
        daysSinceContact=days,
        firmCrd=to_optional_string(row.get("firm_crd")),
    )


# =============================================================================
# AGGREGATE RESULT MAPPERS
# =============================================================================

# Conversion column prefix -> ConversionRates / row field stem
RATE_PREFIXES: tuple = (
    ("contacted_to_mql", "contactedToMql"),
    ("mql_to_sql", "mqlToSql"),
    ("sql_to_sqo", "sqlToSqo"),
    ("sqo_to_joined", "sqoToJoined"),
)

# Dashboard weekday order: Monday first, Sunday last (0=Sunday ... 6=Saturday).
WEEKDAY_DISPLAY_ORDER: tuple = (1, 2, 3, 4, 5, 6, 0)


def funnel_metrics_from_rows(
    metrics_row: Optional[Mapping[str, Any]],
    open_pipeline_row: Optional[Mapping[str, Any]],
) -> FunnelMetrics:
    """Combine the date-filtered metrics row and the open pipeline snapshot row."""
    row = metrics_row or {}
    pipeline = open_pipeline_row or {}
    return FunnelMetrics(
        prospects=to_int(row.get("prospects")),
        contacted=to_int(row.get("contacted")),
        mqls=to_int(row.get("mqls")),
        sqls=to_int(row.get("sqls")),
        sqos=to_int(row.get("sqos")),
        signed=to_int(row.get("signed")),
        joined=to_int(row.get("joined")),
        pipelineAum=to_number(row.get("pipeline_aum")),
        joinedAum=to_number(row.get("joined_aum")),
        openPipelineAum=to_number(pipeline.get("open_pipeline_aum")),
    )


def conversion_rates_from_row(row: Optional[Mapping[str, Any]], mode: ConversionMode) -> ConversionRates:
    row = row or {}
    rates = {
        stem: conversion_rate(to_number(row.get(f"{prefix}_numer")), to_number(row.get(f"{prefix}_denom")))
        for prefix, stem in RATE_PREFIXES
    }
    return ConversionRates(mode=mode, **rates)


def trend_point_from_row(row: Mapping[str, Any]) -> TrendDataPoint:
    rates = {
        f"{stem}Rate": safe_div(to_number(row.get(f"{prefix}_numer")), to_number(row.get(f"{prefix}_denom")))
        for prefix, stem in RATE_PREFIXES
    }
    return TrendDataPoint(
        period=to_string(row["period"]),
        sqls=to_int(row.get("sqls")),
        sqos=to_int(row.get("sqos")),
        joined=to_int(row.get("joined")),
        **rates,
    )


def performance_fields_from_row(row: Mapping[str, Any]) -> dict:
    """Shared volume/rate/AUM fields of a channel or source performance row."""
    fields = {
        "channel": to_string(row.get("channel")) or "Other",
        "prospects": to_int(row.get("prospects")),
        "contacted": to_int(row.get("contacted")),
        "mqls": to_int(row.get("mqls")),
        "sqls": to_int(row.get("sqls")),
        "sqos": to_int(row.get("sqos")),
        "joined": to_int(row.get("joined")),
        "aum": to_number(row.get("aum")),
    }
    for prefix, stem in RATE_PREFIXES:
        fields[f"{stem}Rate"] = to_number(row.get(f"{prefix}_rate"))
    return fields


def channel_performance_from_row(row: Mapping[str, Any]) -> ChannelPerformanceRow:
    return ChannelPerformanceRow(**performance_fields_from_row(row))


def source_performance_from_row(row: Mapping[str, Any]) -> SourcePerformanceRow:
    return SourcePerformanceRow(
        source=to_string(row.get("source")) or "Unknown",
        **performance_fields_from_row(row),
    )


def weekday_index(bigquery_day_of_week: Any) -> int:
    """
    BigQuery DAYOFWEEK (1=Sunday ... 7=Saturday) to the dashboard index
    (0=Sunday ... 6=Saturday).

    Raises:
        ValueError: If the value is not between 1 and 7.
    """
    day = to_int(bigquery_day_of_week)
    if not 1 <= day <= 7:
        raise ValueError(f"Day of week out of range: {bigquery_day_of_week!r}")
    return day - 1


def activity_distributions_from_rows(rows: Iterable[Mapping[str, Any]]) -> List[ActivityDistribution]:
    """
    Group activity rows by channel, Monday-first within each channel.

    Marketing rows are dropped. variancePercent is 0 when the comparison
    average is 0.
    """
    by_channel: dict = {}
    for row in rows:
        channel = to_string(row.get("channel"))
        if not channel or channel == "Marketing":
            continue
        current_avg = to_number(row.get("current_avg"))
        comparison_avg = to_number(row.get("comparison_avg"))
        current_total = to_number(row.get("current_total"))
        comparison_total = to_number(row.get("comparison_total"))
        point = ActivityDayPoint(
            dayOfWeek=weekday_index(row.get("day_of_week")),
            dayName=to_string(row.get("day_name")),
            currentAvg=current_avg,
            currentTotal=current_total,
            comparisonAvg=comparison_avg,
            comparisonTotal=comparison_total,
            varianceAvg=current_avg - comparison_avg,
            variancePercent=(current_avg - comparison_avg) / comparison_avg * 100 if comparison_avg > 0 else 0.0,
        )
        by_channel.setdefault(channel, []).append(point)

    return [
        ActivityDistribution(
            channel=channel,
            days=sorted(points, key=lambda p: WEEKDAY_DISPLAY_ORDER.index(p.dayOfWeek)),
        )
        for channel, points in sorted(by_channel.items())
    ]


def weekly_actual_from_row(row: Mapping[str, Any]) -> WeeklyActual:
    """
    One weekly_actuals row. week_start may arrive as a DATE, a string or
    BigQuery's {'value': ...} wrapper.
    """
    week_start = normalize_date(row.get("week_start"))
    if week_start is None:
        raise ValueError("week_start is null")
    return WeeklyActual(
        weekStartDate=week_start,
        initialCalls=to_int(row.get("initial_calls")),
        qualificationCalls=to_int(row.get("qualification_calls")),
        sqos=to_int(row.get("sqos")),
    )


def map_rows(
    rows: Iterable[Mapping[str, Any]],
    mapper: Callable[[Mapping[str, Any]], T],
    query_name: str,
) -> List[T]:
    """
    Apply a row mapper to a result set.

    Raises:
        SourceQueryError: If any row is missing required fields or holds
            values the mapper cannot convert.
    """
    mapped: List[T] = []
    for index, row in enumerate(rows):
        try:
            mapped.append(mapper(row))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Malformed row {index} from {query_name}: {e}")
            raise SourceQueryError(
                f"Query '{query_name}' returned a malformed row: {e}",
                query_name=query_name,
                context={"row": index},
            ) from e
    return mapped


__all__ = [
    "OPEN_PIPELINE_STAGES",
    "STAGE_ORDER",
    "normalize_date",
    "to_number",
    "to_int",
    "to_string",
    "to_optional_string",
    "to_flag",
    "select_aum",
    "detail_record_from_row",
    "closed_lost_record_from_row",
    "RATE_PREFIXES",
    "WEEKDAY_DISPLAY_ORDER",
    "funnel_metrics_from_rows",
    "conversion_rates_from_row",
    "trend_point_from_row",
    "channel_performance_from_row",
    "source_performance_from_row",
    "weekday_index",
    "activity_distributions_from_rows",
    "weekly_actual_from_row",
    "map_rows",
]

"""
Time-Bucket Classifier for closed-lost follow-up.

Maps the number of whole calendar days between a reference date and an event
date (last contact) onto a canonical TimeBucket. The same boundary table
drives three things so they can never drift apart:

- `classify()` / `classify_days()`: in-memory classification
- `render_bucket_case_sql()`: the SQL CASE expression used by the 180+ query
- `split_by_source()`: which warehouse source serves which requested buckets

Boundaries (half-open, lower bound inclusive):
    [0, 30)    -> '<30'
    [30, 60)   -> '30-60'
    [60, 90)   -> '60-90'
    [90, 120)  -> '90-120'
    [120, 150) -> '120-150'
    [150, 180) -> '150-180'
    [180, inf) -> '180+'

Negative elapsed days (event after the reference date) fall into the lowest
bucket. Elapsed days are computed from calendar dates only, matching
BigQuery's DATE_DIFF(..., DAY) on DATE values.

The recent closed-lost view labels its rows itself, and its labels have
drifted over time ('30-60', '30-60 days', '1 month since last contact').
SOURCE_LABEL_VARIANTS lists every accepted spelling per canonical bucket.
"""

from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple, Union

from funnel_analytics.models.enums import TimeBucket


DateLike = Union[date, datetime, str]


# =============================================================================
# BOUNDARY TABLE
# =============================================================================

# (lower bound inclusive, upper bound exclusive or None, bucket)
BUCKET_BOUNDARIES: Tuple[Tuple[int, Optional[int], TimeBucket], ...] = (
    (0, 30, TimeBucket.UNDER_30),
    (30, 60, TimeBucket.DAYS_30_60),
    (60, 90, TimeBucket.DAYS_60_90),
    (90, 120, TimeBucket.DAYS_90_120),
    (120, 150, TimeBucket.DAYS_120_150),
    (150, 180, TimeBucket.DAYS_150_180),
    (180, None, TimeBucket.OVER_180),
)

# Elapsed-day threshold where the recent view stops and the base-table join starts.
RECENT_SOURCE_LIMIT_DAYS: int = 180

# Buckets a record can be classified into (everything except the request-only ALL).
CLASSIFIABLE_BUCKETS: Tuple[TimeBucket, ...] = tuple(b for _, _, b in BUCKET_BOUNDARIES)

# Buckets returned when a caller asks for 'all' or passes nothing.
DEFAULT_FOLLOW_UP_BUCKETS: Tuple[TimeBucket, ...] = (
    TimeBucket.DAYS_30_60,
    TimeBucket.DAYS_60_90,
    TimeBucket.DAYS_90_120,
    TimeBucket.DAYS_120_150,
    TimeBucket.DAYS_150_180,
    TimeBucket.OVER_180,
)

# Canonical bucket -> labels the recent closed-lost view may use for it.
SOURCE_LABEL_VARIANTS: Dict[TimeBucket, Tuple[str, ...]] = {
    TimeBucket.UNDER_30: ("<30", "< 30 days"),
    TimeBucket.DAYS_30_60: ("30-60", "30-60 days", "1 month since last contact"),
    TimeBucket.DAYS_60_90: ("60-90", "60-90 days", "2 months since last contact"),
    TimeBucket.DAYS_90_120: ("90-120", "90-120 days", "3 months since last contact"),
    TimeBucket.DAYS_120_150: ("120-150", "120-150 days", "4 months since last contact"),
    TimeBucket.DAYS_150_180: ("150-180", "150-180 days", "5 months since last contact"),
}

_LABEL_LOOKUP: Dict[str, TimeBucket] = {
    label.strip().lower(): bucket
    for bucket, labels in SOURCE_LABEL_VARIANTS.items()
    for label in labels
}
_LABEL_LOOKUP[TimeBucket.OVER_180.value] = TimeBucket.OVER_180
_LABEL_LOOKUP["180+ days"] = TimeBucket.OVER_180
_LABEL_LOOKUP["6+ months since last contact"] = TimeBucket.OVER_180


# =============================================================================
# CLASSIFICATION
# =============================================================================


def to_calendar_date(value: DateLike) -> date:
    """
    Reduce a date-like value to its calendar day.

    Args:
        value: date, datetime, or ISO string ('2026-05-01' or
            '2026-05-01T13:45:00Z').

    Returns:
        The calendar date (time of day discarded).

    Raises:
        TypeError: If the value is not date-like.
        ValueError: If a string is not an ISO date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip()[:10])
    raise TypeError(f"Expected a date-like value, got {type(value).__name__}")


def elapsed_days(reference_date: DateLike, event_date: DateLike) -> int:
    """Whole calendar days from event_date to reference_date (negative if in the future)."""
    return (to_calendar_date(reference_date) - to_calendar_date(event_date)).days


def classify_days(days: int) -> TimeBucket:
    """
    Classify an elapsed-day count.

    Args:
        days: Whole elapsed days; negative values are treated as 0.

    Returns:
        The single canonical bucket containing `days`.
    """
    days = max(int(days), 0)
    for lower, upper, bucket in BUCKET_BOUNDARIES:
        if days >= lower and (upper is None or days < upper):
            return bucket
    # Unreachable: the last boundary is open-ended.
    return TimeBucket.OVER_180


def classify(reference_date: DateLike, event_date: DateLike) -> TimeBucket:
    """
    Classify the time between an event and a reference date.

    Example:
        >>> classify(date(2026, 6, 30), date(2026, 6, 1))
        <TimeBucket.UNDER_30: '<30'>
        >>> classify(date(2026, 6, 30), date(2026, 1, 1))
        <TimeBucket.OVER_180: '180+'>
    """
    return classify_days(elapsed_days(reference_date, event_date))


def render_bucket_case_sql(days_expr: str) -> str:
    """
    Render the boundary table as a SQL CASE expression.

    Args:
        days_expr: SQL expression producing whole elapsed days
            (e.g. "DATE_DIFF(@referenceDate, DATE(last_contact), DAY)").

    Returns:
        CASE expression yielding the canonical bucket label. Negative values
        hit the first branch, like classify_days().
    """
    branches = []
    for _, upper, bucket in BUCKET_BOUNDARIES:
        if upper is None:
            branches.append(f"ELSE '{bucket.value}'")
        else:
            branches.append(f"WHEN {days_expr} < {upper} THEN '{bucket.value}'")
    return "CASE " + " ".join(branches) + " END"


# =============================================================================
# REQUEST VOCABULARY
# =============================================================================


def normalize_bucket_label(label: Optional[str]) -> Optional[TimeBucket]:
    """Map a source-view label (any accepted variant) back to its canonical bucket."""
    if label is None:
        return None
    return _LABEL_LOOKUP.get(str(label).strip().lower())


def expand_requested_buckets(
    buckets: Optional[Iterable[Union[TimeBucket, str]]]
) -> Tuple[TimeBucket, ...]:
    """
    Resolve a requested bucket list into concrete buckets.

    None, an empty list, or any list containing 'all' resolves to
    DEFAULT_FOLLOW_UP_BUCKETS. Duplicates are removed; output follows the
    boundary-table order.

    Raises:
        ValueError: If a value is not a TimeBucket.
    """
    if not buckets:
        return DEFAULT_FOLLOW_UP_BUCKETS
    requested = {TimeBucket(b) for b in buckets}
    if TimeBucket.ALL in requested:
        return DEFAULT_FOLLOW_UP_BUCKETS
    return tuple(b for b in CLASSIFIABLE_BUCKETS if b in requested)


def split_by_source(
    buckets: Optional[Iterable[Union[TimeBucket, str]]]
) -> Tuple[Tuple[TimeBucket, ...], bool]:
    """
    Split requested buckets between the two closed-lost sources.

    Returns:
        Tuple of (buckets served by the recent view, whether 180+ is requested).
    """
    resolved = expand_requested_buckets(buckets)
    recent = tuple(b for b in resolved if b is not TimeBucket.OVER_180)
    return recent, TimeBucket.OVER_180 in resolved


def source_labels_for(buckets: Iterable[TimeBucket]) -> List[str]:
    """Every accepted recent-view label for the given buckets, in stable order."""
    labels: List[str] = []
    for bucket in buckets:
        labels.extend(SOURCE_LABEL_VARIANTS.get(bucket, (bucket.value,)))
    return labels


__all__ = [
    "BUCKET_BOUNDARIES",
    "RECENT_SOURCE_LIMIT_DAYS",
    "CLASSIFIABLE_BUCKETS",
    "DEFAULT_FOLLOW_UP_BUCKETS",
    "SOURCE_LABEL_VARIANTS",
    "to_calendar_date",
    "elapsed_days",
    "classify_days",
    "classify",
    "render_bucket_case_sql",
    "normalize_bucket_label",
    "expand_requested_buckets",
    "split_by_source",
    "source_labels_for",
]

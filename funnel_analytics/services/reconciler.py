"""
Multi-Source Reconciler for closed-lost follow-up records.

Closed-lost records cannot come from a single warehouse source:

- The recent follow-up view only retains records up to 179 days since last
  contact, and labels each row with a bucket (labels vary, see
  services.time_buckets.SOURCE_LABEL_VARIANTS).
- Records 180+ days old come from a join over the base opportunity tables,
  with elapsed days computed in SQL from the last contact date.

Both result sets then go through the same steps:

1. Exclude every record whose firm CRD also belongs to an open
   re-engagement opportunity (anti-join, applied to rows from both sources).
2. Union and deduplicate by record id, keeping the first occurrence. The
   bucket ranges are disjoint, so duplicates indicate upstream drift; strict
   mode raises ReconciliationError when duplicates disagree.
3. Sort by closed-lost date descending, then last contact date descending,
   with missing dates last.

Failure policy: the source queries run concurrently and any failure aborts
the whole call (gather_strict). A partial closed-lost list would silently
hide follow-ups, so no best-effort result is returned here.
"""

import logging
from datetime import date
from typing import Any, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from funnel_analytics.core.errors import ReconciliationError
from funnel_analytics.models.schemas import ClosedLostRecord
from funnel_analytics.services.fan_out import gather_strict
from funnel_analytics.services.records import closed_lost_record_from_row, map_rows

logger = logging.getLogger(__name__)


# Columns compared when deciding whether two rows with the same id conflict.
_IDENTITY_COLUMNS = (
    "oppName",
    "opportunityId",
    "lastContactDate",
    "closedLostDate",
    "closedLostReason",
)


# =============================================================================
# MERGE STEPS
# =============================================================================


def normalize_crd(value: Any) -> Optional[str]:
    """Canonical CRD text ('0012345' and '12345.0' both become '12345')."""
    if value is None:
        return None
    text = str(value).strip()
    if text.endswith(".0"):
        text = text[:-2]
    text = text.lstrip("0")
    return text or None


def exclude_reengaged(
    records: Iterable[ClosedLostRecord],
    reengaged_crds: Iterable[Any],
) -> List[ClosedLostRecord]:
    """
    Drop records whose firm CRD matches an open re-engagement opportunity.

    Records without a CRD are kept.
    """
    excluded = {c for c in (normalize_crd(v) for v in reengaged_crds) if c}
    kept = []
    for record in records:
        crd = normalize_crd(record.firmCrd)
        if crd is not None and crd in excluded:
            continue
        kept.append(record)
    return kept


def dedupe_by_id(
    records: Sequence[ClosedLostRecord],
    *,
    strict: bool = False,
) -> List[ClosedLostRecord]:
    """
    Keep the first record for each id.

    Args:
        records: Records in priority order (earlier wins).
        strict: Raise instead of silently dropping when duplicates carry
            different values.

    Raises:
        ReconciliationError: In strict mode, if two records share an id but
            differ in any identity column.
    """
    if not records:
        return []
    frame = pd.DataFrame([r.model_dump() for r in records])
    duplicated = frame.duplicated(subset="id", keep="first")
    if not duplicated.any():
        return list(records)

    dup_ids = sorted(frame.loc[duplicated, "id"].unique())
    logger.warning(f"Dropping {int(duplicated.sum())} duplicate closed-lost rows: {dup_ids[:10]}")

    if strict:
        subset = frame[frame["id"].isin(dup_ids)]
        distinct = subset.groupby("id")[list(_IDENTITY_COLUMNS)].nunique(dropna=False)
        conflicting = sorted(distinct[(distinct > 1).any(axis=1)].index)
        if conflicting:
            raise ReconciliationError(
                "Closed-lost sources returned conflicting rows for the same id",
                context={"ids": conflicting[:10]},
            )

    return [records[i] for i in frame.index[~duplicated]]


def sort_closed_lost(records: Sequence[ClosedLostRecord]) -> List[ClosedLostRecord]:
    """Closed-lost date desc, then last contact date desc; missing dates sort last."""
    if not records:
        return []
    frame = pd.DataFrame(
        {
            "closed": [r.closedLostDate for r in records],
            "contact": [r.lastContactDate for r in records],
        }
    )
    order = frame.sort_values(
        ["closed", "contact"],
        ascending=[False, False],
        na_position="last",
        kind="mergesort",
    ).index
    return [records[i] for i in order]


def reconcile_closed_lost(
    recent: Sequence[ClosedLostRecord],
    older: Sequence[ClosedLostRecord],
    reengaged_crds: Iterable[Any],
    *,
    strict: bool = False,
) -> List[ClosedLostRecord]:
    """
    Merge both closed-lost sources into one ordered, deduplicated list.

    The re-engagement exclusion is applied to each source before the union,
    so it behaves identically no matter which source produced a row.
    """
    crds = list(reengaged_crds)
    kept_recent = exclude_reengaged(recent, crds)
    kept_older = exclude_reengaged(older, crds)
    excluded = (len(recent) - len(kept_recent)) + (len(older) - len(kept_older))
    merged = dedupe_by_id(kept_recent + kept_older, strict=strict)
    logger.info(
        f"Reconciled closed-lost: recent={len(recent)} older={len(older)} "
        f"re-engaged excluded={excluded} result={len(merged)}"
    )
    return sort_closed_lost(merged)


# =============================================================================
# EXECUTION
# =============================================================================


async def fetch_and_reconcile(
    warehouse,
    *,
    recent_query=None,
    older_query=None,
    reengagement_query,
    reference_date: date,
    strict: bool = False,
) -> List[ClosedLostRecord]:
    """
    Run the closed-lost source queries concurrently and reconcile them.

    Args:
        warehouse: Object with an async `run_query(compiled_query)` method.
        recent_query: Compiled query for buckets under 180 days, or None when
            no such bucket was requested.
        older_query: Compiled query for the 180+ bucket, or None.
        reengagement_query: Compiled query returning open re-engagement CRDs
            (column 'fa_crd').
        reference_date: Date that elapsed days are measured from.
        strict: Raise ReconciliationError on conflicting duplicates.

    Raises:
        SourceQueryError: If any of the queries fails (the whole call aborts).
        ReconciliationError: In strict mode, on conflicting duplicates.
    """
    sources = [q for q in (recent_query, older_query) if q is not None]
    if not sources:
        return []

    results = await gather_strict(
        *(warehouse.run_query(q) for q in sources),
        warehouse.run_query(reengagement_query),
    )
    *source_rows, crd_rows = results

    def to_record(row: Mapping[str, Any]) -> ClosedLostRecord:
        return closed_lost_record_from_row(row, reference_date)

    mapped = {
        q.name: map_rows(rows, to_record, q.name)
        for q, rows in zip(sources, source_rows)
    }
    recent = mapped.get(recent_query.name, []) if recent_query is not None else []
    older = mapped.get(older_query.name, []) if older_query is not None else []
    crds = [row.get("fa_crd") for row in crd_rows]
    return reconcile_closed_lost(recent, older, crds, strict=strict)


__all__ = [
    "normalize_crd",
    "exclude_reengaged",
    "dedupe_by_id",
    "sort_closed_lost",
    "reconcile_closed_lost",
    "fetch_and_reconcile",
]

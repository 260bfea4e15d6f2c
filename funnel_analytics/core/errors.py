"""
Typed failure taxonomy for the analytics layer.

Every failure that reaches a caller of the dashboard service is one of three
kinds, so routers and callers can react uniformly:

- CompileError: the filter state is malformed or contradictory and cannot be
  turned into a query (e.g. start date after end date, custom preset without
  dates, unknown predicate variant).
- SourceQueryError: the warehouse call failed or returned rows that do not
  have the expected shape.
- ReconciliationError: a merge/dedup invariant was violated while assembling
  results from multiple sources.

CompileError and SourceQueryError propagate straight to the caller and are
never cached. Each error carries a human-readable message plus a small
context dict that is safe to log and to return in an API error body.

Usage:
    from funnel_analytics.core.errors import CompileError

    if start > end:
        raise CompileError(
            "startDate must not be after endDate",
            context={"startDate": start, "endDate": end},
        )
"""

from typing import Any, Dict, Optional


class AnalyticsError(Exception):
    """
    Base class for all typed analytics failures.

    Attributes:
        message: Human-readable description of the failure.
        context: Extra identifying details (query name, ids, dates).
    """

    #: HTTP status used by the API layer when this error escapes a route.
    status_code: int = 500

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize the error for an API response body or a log record.

        Returns:
            Dict with 'error' (the error kind), 'message', and 'context'
            when any context was supplied.
        """
        payload: Dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.context:
            payload["context"] = {k: _printable(v) for k, v in self.context.items()}
        return payload

    def __str__(self) -> str:
        return self.message


class CompileError(AnalyticsError):
    """Filter state could not be compiled into a query."""

    status_code = 400


class SourceQueryError(AnalyticsError):
    """
    A warehouse query failed or returned malformed rows.

    Attributes:
        query_name: Name of the compiled query that failed.
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        query_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        merged = dict(context or {})
        if query_name is not None:
            merged.setdefault("query", query_name)
        super().__init__(message, context=merged)
        self.query_name = query_name


class ReconciliationError(AnalyticsError):
    """Merging results from several sources violated an invariant."""

    status_code = 500


def _printable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (set, frozenset)):
        return sorted((_printable(v) for v in value), key=str)
    if isinstance(value, (list, tuple)):
        return [_printable(v) for v in value]
    return str(value)


__all__ = [
    "AnalyticsError",
    "CompileError",
    "SourceQueryError",
    "ReconciliationError",
]

"""
Query parameters, filter predicates and compiled query containers.

Every user-supplied value reaches BigQuery as a named query parameter
(`@name`); query text never contains interpolated user values. Filter
conditions are described as a closed set of predicate variants and rendered
to SQL in exactly one place, `render_predicate()`:

    Equality(expr, param, value)            ->  expr = @param
    SetMembership(expr, param, values)      ->  expr IN UNNEST(@param)
    ArrayContainsAny(array_expr, param, v)  ->  EXISTS (SELECT 1 FROM UNNEST(array_expr) ...)
    DateRange(expr, start_param, ...)       ->  expr >= @start AND expr <= @end
    Flag(expr, expected)                    ->  expr = 1 / expr = 0
    MatchNothing(reason)                    ->  FALSE

MatchNothing is what an explicitly empty multi-select compiles to: the
user unticked everything, so the query must return zero rows rather than
silently dropping the filter.

A PredicateSet accumulates predicates, merges their parameters, and
rejects two different values bound to the same parameter name.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from funnel_analytics.core.errors import CompileError


# =============================================================================
# PARAMETERS
# =============================================================================


@dataclass(frozen=True)
class QueryParameter:
    """
    One named BigQuery parameter.

    Attributes:
        name: Parameter name without the '@' prefix.
        value: Scalar value, or a tuple of values for array parameters.
        type_name: BigQuery standard SQL type (STRING, INT64, FLOAT64, DATE,
            TIMESTAMP, BOOL).
        is_array: Whether the parameter is an ARRAY<type_name>.
    """
    name: str
    value: Any
    type_name: str = 'STRING'
    is_array: bool = False


def scalar_param(name: str, value: Any, type_name: Optional[str] = None) -> QueryParameter:
    return QueryParameter(name=name, value=value, type_name=type_name or _infer_type(value))


def array_param(name: str, values: Iterable[Any], type_name: str = 'STRING') -> QueryParameter:
    """Array parameter with values sorted for a deterministic query fingerprint."""
    return QueryParameter(
        name=name,
        value=tuple(sorted(values, key=str)),
        type_name=type_name,
        is_array=True,
    )


def _infer_type(value: Any) -> str:
    if isinstance(value, bool):
        return 'BOOL'
    if isinstance(value, int):
        return 'INT64'
    if isinstance(value, float):
        return 'FLOAT64'
    if isinstance(value, datetime):
        return 'TIMESTAMP'
    if isinstance(value, date):
        return 'DATE'
    return 'STRING'


# =============================================================================
# PREDICATE VARIANTS
# =============================================================================


@dataclass(frozen=True)
class Equality:
    expr: str
    param: str
    value: Any
    type_name: str = 'STRING'


@dataclass(frozen=True)
class SetMembership:
    expr: str
    param: str
    values: Tuple[str, ...]


@dataclass(frozen=True)
class ArrayContainsAny:
    array_expr: str
    param: str
    values: Tuple[str, ...]


@dataclass(frozen=True)
class DateRange:
    """
    Inclusive date range on a column.

    With as_timestamp=True the column is a TIMESTAMP: the start is compared
    against midnight and the end against 23:59:59 of the end date, so the
    whole end day is included.
    """
    expr: str
    start_param: str
    end_param: str
    start: Optional[date]
    end: Optional[date]
    as_timestamp: bool = False


@dataclass(frozen=True)
class Flag:
    expr: str
    expected: bool = True


@dataclass(frozen=True)
class MatchNothing:
    reason: str


Predicate = Union[Equality, SetMembership, ArrayContainsAny, DateRange, Flag, MatchNothing]


def _date_bound(value: date, *, end: bool, as_timestamp: bool) -> Tuple[Any, str]:
    if not as_timestamp:
        return value, 'DATE'
    # Bound as text and cast in SQL so the warehouse applies its own timezone rules.
    suffix = ' 23:59:59' if end else ' 00:00:00'
    return value.isoformat() + suffix, 'STRING'


def render_predicate(predicate: Predicate) -> Tuple[str, List[QueryParameter]]:
    """
    Render one predicate to SQL text plus the parameters it binds.

    Raises:
        CompileError: For an unknown predicate type, or a DateRange with
            neither bound.
    """
    if isinstance(predicate, Equality):
        return (
            f"{predicate.expr} = @{predicate.param}",
            [QueryParameter(predicate.param, predicate.value, predicate.type_name)],
        )

    if isinstance(predicate, SetMembership):
        return (
            f"{predicate.expr} IN UNNEST(@{predicate.param})",
            [array_param(predicate.param, predicate.values)],
        )

    if isinstance(predicate, ArrayContainsAny):
        return (
            f"EXISTS (SELECT 1 FROM UNNEST({predicate.array_expr}) AS tag "
            f"WHERE tag IN UNNEST(@{predicate.param}))",
            [array_param(predicate.param, predicate.values)],
        )

    if isinstance(predicate, DateRange):
        clauses: List[str] = []
        params: List[QueryParameter] = []
        cast = "TIMESTAMP" if predicate.as_timestamp else "DATE"
        if predicate.start is not None:
            value, type_name = _date_bound(predicate.start, end=False, as_timestamp=predicate.as_timestamp)
            clauses.append(f"{predicate.expr} >= {cast}(@{predicate.start_param})")
            params.append(QueryParameter(predicate.start_param, value, type_name))
        if predicate.end is not None:
            value, type_name = _date_bound(predicate.end, end=True, as_timestamp=predicate.as_timestamp)
            clauses.append(f"{predicate.expr} <= {cast}(@{predicate.end_param})")
            params.append(QueryParameter(predicate.end_param, value, type_name))
        if not clauses:
            raise CompileError(
                "Date range predicate has neither a start nor an end",
                context={"column": predicate.expr},
            )
        return " AND ".join(clauses), params

    if isinstance(predicate, Flag):
        return f"{predicate.expr} = {1 if predicate.expected else 0}", []

    if isinstance(predicate, MatchNothing):
        return "FALSE", []

    raise CompileError(
        f"Unknown predicate type: {type(predicate).__name__}",
        context={"predicate": repr(predicate)},
    )


# =============================================================================
# PREDICATE SET
# =============================================================================


class PredicateSet:
    """
    Ordered collection of predicates with merged parameters.

    Usage:
        where = PredicateSet()
        where.add(Flag("v.is_sqo_unique"))
        where.add(Equality("v.SGA_Owner_Name__c", "sga", "Jane Smith"))
        where.bind(scalar_param("recordType", "012Dn000000mrO3IAI"))
        sql = f"SELECT ... WHERE {where.sql()}"
        params = where.parameters
    """

    def __init__(self, predicates: Iterable[Predicate] = ()):
        self._clauses: List[str] = []
        self._params: Dict[str, QueryParameter] = {}
        self.predicates: List[Predicate] = []
        for predicate in predicates:
            self.add(predicate)

    def add(self, predicate: Predicate) -> "PredicateSet":
        text, params = render_predicate(predicate)
        self.predicates.append(predicate)
        self._clauses.append(text)
        for param in params:
            self.bind(param)
        return self

    def extend(self, predicates: Iterable[Predicate]) -> "PredicateSet":
        for predicate in predicates:
            self.add(predicate)
        return self

    def add_raw(self, clause: str, *params: QueryParameter) -> "PredicateSet":
        """Add a fixed SQL clause (no user values) with any parameters it references."""
        self._clauses.append(clause)
        for param in params:
            self.bind(param)
        return self

    def bind(self, param: QueryParameter) -> "PredicateSet":
        """
        Register a parameter.

        Raises:
            CompileError: If the name is already bound to a different value.
        """
        existing = self._params.get(param.name)
        if existing is not None and existing != param:
            raise CompileError(
                f"Parameter '@{param.name}' bound to conflicting values",
                context={"param": param.name, "values": [existing.value, param.value]},
            )
        self._params[param.name] = param
        return self

    def merge(self, other: "PredicateSet") -> "PredicateSet":
        self._clauses.extend(other._clauses)
        self.predicates.extend(other.predicates)
        for param in other.parameters:
            self.bind(param)
        return self

    @property
    def matches_nothing(self) -> bool:
        return any(isinstance(p, MatchNothing) for p in self.predicates)

    @property
    def parameters(self) -> List[QueryParameter]:
        return list(self._params.values())

    def sql(self, joiner: str = "\n      AND ") -> str:
        return joiner.join(self._clauses) if self._clauses else "TRUE"

    def __len__(self) -> int:
        return len(self._clauses)


# =============================================================================
# COMPILED OUTPUT
# =============================================================================


@dataclass(frozen=True)
class CompiledQuery:
    """
    SQL text plus its bound parameters.

    Attributes:
        name: Stable query name used in logs, errors and test fakes.
        text: BigQuery standard SQL with @param placeholders.
        parameters: Every parameter referenced by the text.
    """
    name: str
    text: str
    parameters: Tuple[QueryParameter, ...] = ()

    def parameter(self, name: str) -> Optional[QueryParameter]:
        for param in self.parameters:
            if param.name == name:
                return param
        return None

    def parameter_values(self) -> Dict[str, Any]:
        return {p.name: p.value for p in self.parameters}


@dataclass(frozen=True)
class QueryPlan:
    """
    Ordered set of compiled queries for one operation.

    Most operations compile to a single query. Closed-lost compiles to up to
    three, funnel metrics to two (date-filtered metrics and open pipeline AUM).
    """
    kind: str
    queries: Tuple[CompiledQuery, ...] = field(default_factory=tuple)

    def get(self, name: str) -> Optional[CompiledQuery]:
        for query in self.queries:
            if query.name == name:
                return query
        return None

    def query(self, name: str) -> CompiledQuery:
        """
        Raises:
            KeyError: If the plan has no query with this name.
        """
        found = self.get(name)
        if found is None:
            raise KeyError(name)
        return found

    @property
    def primary(self) -> CompiledQuery:
        return self.queries[0]

    @property
    def names(self) -> List[str]:
        return [q.name for q in self.queries]


def compiled(name: str, text: str, parameters: Sequence[QueryParameter]) -> CompiledQuery:
    """
    Build a CompiledQuery, collapsing repeated identical parameters.

    Raises:
        CompileError: If one parameter name is bound to two different values.
    """
    unique: Dict[str, QueryParameter] = {}
    for param in parameters:
        existing = unique.get(param.name)
        if existing is not None and existing != param:
            raise CompileError(
                f"Parameter '@{param.name}' bound to conflicting values in query '{name}'",
                context={"param": param.name, "values": [existing.value, param.value]},
            )
        unique[param.name] = param
    return CompiledQuery(name=name, text=text, parameters=tuple(unique.values()))


__all__ = [
    "QueryParameter",
    "scalar_param",
    "array_param",
    "Equality",
    "SetMembership",
    "ArrayContainsAny",
    "DateRange",
    "Flag",
    "MatchNothing",
    "Predicate",
    "render_predicate",
    "PredicateSet",
    "CompiledQuery",
    "QueryPlan",
    "compiled",
]

"""
Pytest configuration and shared fixtures for funnel analytics tests.

Provides:
- Async test execution with pytest-asyncio
- Settings built without reading .env
- FakeWarehouse: an in-memory stand-in for WarehouseClient that answers
  compiled queries by name, records every call and can be told to fail
- A DashboardService wired to a fresh CacheStore, the fake warehouse and a
  fixed reference date
- Sample warehouse rows in the shapes BigQuery returns

Nothing here talks to BigQuery or PostgreSQL.
"""

import asyncio
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Union
from unittest.mock import AsyncMock

import pytest

from funnel_analytics.core.cache import CacheStore
from funnel_analytics.core.config import Settings
from funnel_analytics.core.errors import SourceQueryError
from funnel_analytics.services.dashboard import DashboardService
from funnel_analytics.sql.params import CompiledQuery


# ============================================================
# PYTEST PLUGINS CONFIGURATION
# ============================================================

pytest_plugins: List[str] = ['pytest_asyncio']


# Fixed "today" for every test; a Friday in the middle of 2026-Q2.
REFERENCE_DATE: date = date(2026, 5, 15)


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    """
    Register custom markers.

    - slow: marks tests as slow (deselect with -m "not slow")
    - integration: marks tests requiring a real warehouse or database
    """
    config.addinivalue_line(
        'markers',
        'slow: marks tests as slow (deselect with -m "not slow")'
    )
    config.addinivalue_line(
        'markers',
        'integration: marks tests requiring external service connectivity'
    )


# ============================================================
# FAKE WAREHOUSE
# ============================================================

Response = Union[List[Dict[str, Any]], BaseException, Callable[[CompiledQuery], Any]]


class FakeWarehouse:
    """
    In-memory warehouse answering compiled queries by name.

    Responses may be a list of row dicts, an exception instance (raised when
    the query runs) or a callable taking the CompiledQuery. Unknown query
    names return no rows. When `gate` is set, every query waits on it first,
    which lets tests hold computations in flight.

    Attributes:
        calls: Every CompiledQuery run, in order.
    """

    def __init__(self, responses: Optional[Dict[str, Response]] = None):
        self.responses: Dict[str, Response] = dict(responses or {})
        self.calls: List[CompiledQuery] = []
        self.gate: Optional[asyncio.Event] = None

    def set(self, name: str, response: Response) -> None:
        self.responses[name] = response

    def calls_for(self, name: str) -> List[CompiledQuery]:
        return [q for q in self.calls if q.name == name]

    @property
    def call_names(self) -> List[str]:
        return [q.name for q in self.calls]

    async def run_query(self, query: CompiledQuery) -> List[Dict[str, Any]]:
        self.calls.append(query)
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses.get(query.name, [])
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = response(query)
        return [dict(row) for row in response]


def source_failure(name: str) -> SourceQueryError:
    return SourceQueryError(f"Query '{name}' failed: backend unavailable", query_name=name)


# ============================================================
# CORE FIXTURES
# ============================================================

@pytest.fixture
def settings() -> Settings:
    """Settings with defaults only (no .env), no refresh secret."""
    return Settings(_env_file=None, admin_refresh_secret=None, database_url=None)


@pytest.fixture
def reference_date() -> date:
    return REFERENCE_DATE


@pytest.fixture
def cache() -> CacheStore:
    return CacheStore()


@pytest.fixture
def warehouse() -> FakeWarehouse:
    return FakeWarehouse()


@pytest.fixture
def service(settings: Settings, cache: CacheStore, warehouse: FakeWarehouse) -> DashboardService:
    """DashboardService over the fake warehouse, pinned to REFERENCE_DATE."""
    return DashboardService(settings, cache, warehouse, reference_date=lambda: REFERENCE_DATE)


@pytest.fixture
def quarterly_goal_lookup(monkeypatch) -> AsyncMock:
    """
    Replace the PostgreSQL quarterly goal lookup.

    Returns 90.0 by default; set `.return_value` or `.side_effect` per test.
    """
    lookup = AsyncMock(return_value=90.0)
    monkeypatch.setattr('funnel_analytics.services.dashboard.fetch_quarterly_goal', lookup)
    return lookup


@pytest.fixture
def weekly_goals_lookup(monkeypatch) -> AsyncMock:
    """
    Replace the PostgreSQL weekly goals lookup.

    Returns no goals by default.
    """
    lookup = AsyncMock(return_value=[])
    monkeypatch.setattr('funnel_analytics.services.dashboard.fetch_weekly_goals', lookup)
    return lookup


# ============================================================
# SAMPLE ROWS
# ============================================================

@pytest.fixture
def funnel_metrics_row() -> Dict[str, Any]:
    return {
        'prospects': 1200,
        'contacted': 800,
        'mqls': 240,
        'sqls': 90,
        'sqos': '45',
        'signed': 12,
        'joined': 10,
        'pipeline_aum': 450_000_000.0,
        'joined_aum': 120_000_000.0,
    }


@pytest.fixture
def detail_row() -> Dict[str, Any]:
    return {
        'id': '00QDn000001',
        'advisor_name': 'Jane Advisor',
        'source': 'LinkedIn',
        'channel': 'Outbound',
        'stage': 'Discovery',
        'sga': 'Sam Caller',
        'sgm': None,
        'underwritten_aum': None,
        'amount': 25_000_000,
        'salesforce_url': 'https://example.lightning.force.com/lightning/r/Lead/00QDn000001/view',
        'relevant_date': {'value': '2026-02-03'},
        'contacted_date': '2026-01-10T14:05:00Z',
        'mql_date': '2026-01-20 09:00:00 UTC',
        'sql_date': date(2026, 2, 3),
        'sqo_date': None,
        'is_contacted': 1,
        'is_mql': '1',
        'is_sql': True,
        'is_sqo': 0,
        'is_joined': None,
        'opportunity_id': '006Dn000009',
        'recordtypeid': '012Dn000000mrO3IAI',
    }


def closed_lost_row(
    record_id: str,
    *,
    last_contact: Optional[str],
    closed_lost: Optional[str] = None,
    bucket: Optional[str] = None,
    days: Optional[int] = None,
    crd: Optional[str] = None,
    name: Optional[str] = None,
) -> Dict[str, Any]:
    """Closed-lost row shaped like either closed-lost source."""
    return {
        'id': record_id,
        'opp_name': name or f'Advisor {record_id}',
        'lead_id': None,
        'opportunity_id': record_id,
        'opportunity_url': f'https://example.lightning.force.com/lightning/r/Opportunity/{record_id}/view',
        'last_contact_date': last_contact,
        'closed_lost_date': closed_lost,
        'closed_lost_reason': 'Timing',
        'time_since_last_contact_bucket': bucket,
        'days_since_contact': days,
        'firm_crd': crd,
    }

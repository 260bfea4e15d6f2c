"""
Funnel Analytics Package.

Cached, parameterized query layer behind the recruiting funnel dashboards.
Compiles dashboard filter state into BigQuery queries, reconciles results
from sources with different retention rules, and memoizes every dashboard
operation behind a tag-indexed in-process cache.

Subpackages:
    - api: FastAPI route handlers (thin request/response binding)
    - core: Configuration, cache store, warehouse client, errors, goals database
    - models: Pydantic schemas and enums
    - services: Time buckets, variance/trend math, reconciliation, dashboard service
    - sql: Parameterized BigQuery query builders
"""

__version__ = "1.0.0"

"""
BigQuery warehouse client.

Executes CompiledQuery objects with named query parameters and returns
plain row dicts. The google-cloud-bigquery client is synchronous, so every
call runs in a worker thread (`asyncio.to_thread`) to keep the event loop
free while the job runs.

Any failure (job error, timeout, rows that are not mappings) is raised as a
SourceQueryError carrying the failing query's name.

Usage:
    warehouse = WarehouseClient(settings)
    rows = await warehouse.run_query(plan.primary)
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

from google.cloud import bigquery

from funnel_analytics.core.errors import SourceQueryError
from funnel_analytics.sql.params import CompiledQuery, QueryParameter

logger = logging.getLogger(__name__)


def to_bigquery_parameter(param: QueryParameter):
    """Convert a QueryParameter to a ScalarQueryParameter or ArrayQueryParameter."""
    if param.is_array:
        return bigquery.ArrayQueryParameter(param.name, param.type_name, list(param.value))
    return bigquery.ScalarQueryParameter(param.name, param.type_name, param.value)


def build_job_config(query: CompiledQuery) -> bigquery.QueryJobConfig:
    return bigquery.QueryJobConfig(
        query_parameters=[to_bigquery_parameter(p) for p in query.parameters],
    )


class WarehouseClient:
    """
    Async facade over a BigQuery client.

    Attributes:
        project: Billing project for query jobs.
        location: Dataset location passed to each job.
        timeout: Seconds to wait for a job's results.
        credentials_path: Service account JSON; application default
            credentials are used when unset.
    """

    def __init__(self, settings, client: Optional[bigquery.Client] = None):
        self.project = settings.bigquery_project
        self.location = settings.bigquery_location
        self.timeout = settings.query_timeout_seconds
        self.credentials_path = settings.google_application_credentials
        self._client = client

    @property
    def client(self) -> bigquery.Client:
        # Created lazily so constructing the service never needs credentials.
        if self._client is None and self.credentials_path:
            self._client = bigquery.Client.from_service_account_json(self.credentials_path, project=self.project)
        elif self._client is None:
            self._client = bigquery.Client(project=self.project)
        return self._client

    def _execute(self, query: CompiledQuery) -> List[Dict[str, Any]]:
        job = self.client.query(
            query.text,
            job_config=build_job_config(query),
            location=self.location,
        )
        result = job.result(timeout=self.timeout)
        rows: List[Dict[str, Any]] = []
        for index, row in enumerate(result):
            if isinstance(row, Mapping):
                rows.append(dict(row))
            elif hasattr(row, "items"):
                rows.append(dict(row.items()))
            else:
                raise SourceQueryError(
                    f"Query '{query.name}' returned a row that is not a record",
                    query_name=query.name,
                    context={"row": index, "type": type(row).__name__},
                )
        return rows

    async def run_query(self, query: CompiledQuery) -> List[Dict[str, Any]]:
        """
        Execute one compiled query.

        Args:
            query: Query text plus bound parameters.

        Returns:
            List of row dicts keyed by column name.

        Raises:
            SourceQueryError: If the job fails or returns malformed rows.
        """
        logger.info(f"Executing BigQuery query '{query.name}' ({len(query.parameters)} params)")
        try:
            rows = await asyncio.to_thread(self._execute, query)
        except SourceQueryError:
            raise
        except Exception as e:
            logger.error(f"BigQuery query '{query.name}' failed: {e}")
            raise SourceQueryError(
                f"Query '{query.name}' failed: {e}",
                query_name=query.name,
            ) from e
        logger.info(f"BigQuery query '{query.name}' returned {len(rows)} rows")
        return rows


__all__ = [
    "to_bigquery_parameter",
    "build_job_config",
    "WarehouseClient",
]

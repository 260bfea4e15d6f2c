"""
Tests for the BigQuery warehouse client.

The google-cloud-bigquery client is replaced by a MagicMock; only parameter
conversion, row handling and error wrapping are exercised.
"""

from unittest.mock import MagicMock

import pytest
from google.cloud import bigquery

from funnel_analytics.core.errors import SourceQueryError
from funnel_analytics.core.warehouse import WarehouseClient, build_job_config, to_bigquery_parameter
from funnel_analytics.sql.params import CompiledQuery, array_param, scalar_param


def bigquery_client(rows=None, error=None) -> MagicMock:
    client = MagicMock()
    job = MagicMock()
    if error is not None:
        job.result.side_effect = error
    else:
        job.result.return_value = rows or []
    client.query.return_value = job
    return client


class TestParameters:

    def test_scalar(self):
        param = to_bigquery_parameter(scalar_param("startDate", "2026-01-01", "STRING"))
        assert isinstance(param, bigquery.ScalarQueryParameter)
        assert param.name == "startDate"
        assert param.value == "2026-01-01"

    def test_array_values_are_a_list(self):
        param = to_bigquery_parameter(array_param("sources", ["Referral", "LinkedIn"]))
        assert isinstance(param, bigquery.ArrayQueryParameter)
        assert param.values == ["LinkedIn", "Referral"]

    def test_job_config_carries_every_parameter(self):
        query = CompiledQuery(
            name="funnel_metrics",
            text="SELECT 1",
            parameters=(scalar_param("limit", 10, "INT64"), array_param("sgas", ["Ann"])),
        )
        config = build_job_config(query)
        assert [p.name for p in config.query_parameters] == ["limit", "sgas"]


class TestRunQuery:

    @pytest.mark.asyncio
    async def test_rows_are_plain_dicts(self, settings):
        client = bigquery_client(rows=[{"sqos": 3}, {"sqos": 4}])
        warehouse = WarehouseClient(settings, client=client)

        rows = await warehouse.run_query(CompiledQuery(name="funnel_metrics", text="SELECT 1"))

        assert rows == [{"sqos": 3}, {"sqos": 4}]
        _, kwargs = client.query.call_args
        assert kwargs["location"] == settings.bigquery_location

    @pytest.mark.asyncio
    async def test_job_failure_names_the_query(self, settings):
        warehouse = WarehouseClient(settings, client=bigquery_client(error=TimeoutError("deadline")))

        with pytest.raises(SourceQueryError) as exc_info:
            await warehouse.run_query(CompiledQuery(name="pipeline_summary", text="SELECT 1"))

        assert exc_info.value.query_name == "pipeline_summary"
        assert "deadline" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_non_record_rows_are_rejected(self, settings):
        warehouse = WarehouseClient(settings, client=bigquery_client(rows=[("a", 1)]))

        with pytest.raises(SourceQueryError) as exc_info:
            await warehouse.run_query(CompiledQuery(name="detail_records", text="SELECT 1"))

        assert exc_info.value.context["row"] == 0

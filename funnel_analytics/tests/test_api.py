"""
HTTP-level tests for the dashboard, SGA hub and admin routers.

The app is exercised through FastAPI's TestClient without running the
lifespan; the service, cache, settings and goals connection are supplied via
dependency_overrides.
"""

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from funnel_analytics.core.config import Settings
from funnel_analytics.core.dependencies import (
    get_cache,
    get_dashboard_service,
    get_db_session,
    get_settings_dependency,
)
from funnel_analytics.main import app
from funnel_analytics.tests.conftest import closed_lost_row, source_failure


@pytest.fixture
def goals_connection() -> MagicMock:
    conn = MagicMock()
    conn.fetchrow = AsyncMock(return_value={
        "sga_name": "Sam Caller",
        "quarter": "2026-Q2",
        "sqo_goal": 12,
        "updated_at": datetime(2026, 5, 15, 12, 0, tzinfo=timezone.utc),
    })
    return conn


@pytest.fixture
def client(service, cache, settings, goals_connection):
    async def db_session():
        yield goals_connection

    app.dependency_overrides[get_dashboard_service] = lambda: service
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_settings_dependency] = lambda: settings
    app.dependency_overrides[get_db_session] = db_session
    yield TestClient(app)
    app.dependency_overrides.clear()


# =============================================================================
# APPLICATION
# =============================================================================


class TestApplication:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_routes_registered(self):
        paths = app.openapi()["paths"]
        assert "/dashboard/funnel-metrics" in paths
        assert "/sga-hub/quarterly-goal" in paths
        assert "/sga-hub/weekly-goal" in paths
        assert "/admin/refresh-cache" in paths


# =============================================================================
# DASHBOARD
# =============================================================================


class TestDashboardRoutes:

    def test_funnel_metrics_without_goals(self, client, warehouse, funnel_metrics_row):
        warehouse.set("funnel_metrics", [funnel_metrics_row])

        response = client.post("/dashboard/funnel-metrics", json={"includeGoals": False})

        assert response.status_code == 200
        body = response.json()
        assert body["metrics"]["sqos"] == 45
        assert body["goals"] is None
        assert "forecast_goals" not in warehouse.call_names

    def test_compile_error_is_400_with_structured_body(self, client, warehouse):
        response = client.post(
            "/dashboard/funnel-metrics",
            json={"filters": {"datePreset": "custom", "startDate": "2026-03-01", "endDate": "2026-01-01"}},
        )

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "CompileError"
        assert detail["message"]
        assert warehouse.calls == []

    def test_source_failure_is_502(self, client, warehouse):
        warehouse.set("conversion_rates", source_failure("conversion_rates"))

        response = client.post("/dashboard/conversion-rates", json={"mode": "cohort"})

        assert response.status_code == 502
        detail = response.json()["detail"]
        assert detail["error"] == "SourceQueryError"
        assert detail["context"]["query"] == "conversion_rates"

    def test_unexpected_error_is_500(self, client, warehouse):
        warehouse.set("channel_performance", RuntimeError("socket closed"))

        response = client.post("/dashboard/channel-performance", json={})

        assert response.status_code == 500
        assert response.json()["detail"] == "Failed computing channel performance"

    def test_invalid_body_is_422(self, client):
        response = client.post("/dashboard/funnel-metrics", json={"filters": {"datePreset": "fortnight"}})
        assert response.status_code == 422

    def test_pipeline_stages_reports_failed_stages(self, client, warehouse, detail_row):
        def by_stage(query):
            if query.parameter_values()["targetStage"] == "Negotiating":
                raise source_failure("pipeline_drilldown")
            return [detail_row]

        warehouse.set("pipeline_drilldown", by_stage)

        response = client.post("/dashboard/pipeline-stages", json={"stages": ["Discovery", "Negotiating"]})

        assert response.status_code == 200
        body = response.json()
        assert list(body["stages"]) == ["Discovery"]
        assert body["failedStages"] == ["Negotiating"]


# =============================================================================
# SGA HUB
# =============================================================================


class TestSgaHubRoutes:

    def test_closed_lost(self, client, warehouse):
        warehouse.set("closed_lost_recent", [
            closed_lost_row("006R1", last_contact="2026-03-01", closed_lost="2026-04-01", bucket="60-90"),
        ])

        response = client.post("/sga-hub/closed-lost", json={"timeBuckets": ["60-90"]})

        assert response.status_code == 200
        assert [r["id"] for r in response.json()] == ["006R1"]
        assert "closed_lost_180_plus" not in warehouse.call_names

    def test_closed_lost_rejects_unknown_bucket(self, client):
        response = client.post("/sga-hub/closed-lost", json={"timeBuckets": ["1-2 weeks"]})
        assert response.status_code == 422

    def test_quarterly_progress(self, client, warehouse, quarterly_goal_lookup):
        warehouse.set("quarterly_sqo_count", [{"sqo_count": 50, "total_aum": 0}])

        response = client.post("/sga-hub/quarterly-progress", json={"sgaName": "Sam Caller", "quarter": "2026-Q2"})

        assert response.status_code == 200
        body = response.json()
        assert body["sqoGoal"] == 90.0
        assert body["pacingStatus"] == "ahead"

    def test_setting_a_goal_invalidates_sga_hub(self, client, cache, warehouse, goals_connection):
        client.post("/sga-hub/leaderboard", json={})
        assert len(cache) == 1

        response = client.put(
            "/sga-hub/quarterly-goal",
            json={"sgaName": "Sam Caller", "quarter": "2026-Q2", "sqoGoal": 12},
        )

        assert response.status_code == 200
        assert response.json()["sqoGoal"] == 12.0
        goals_connection.fetchrow.assert_awaited_once()
        assert goals_connection.fetchrow.await_args.args[1:] == ("Sam Caller", "2026-Q2", 12.0)
        assert len(cache) == 0

    def test_goal_quarter_format_is_validated(self, client, goals_connection):
        response = client.put(
            "/sga-hub/quarterly-goal",
            json={"sgaName": "Sam Caller", "quarter": "Q2-2026", "sqoGoal": 12},
        )
        assert response.status_code == 422
        goals_connection.fetchrow.assert_not_awaited()

    def test_weekly_actuals(self, client, warehouse):
        warehouse.set("weekly_actuals", [
            {"week_start": {"value": "2026-05-11"}, "initial_calls": 7, "qualification_calls": 3, "sqos": 2},
        ])

        response = client.post(
            "/sga-hub/weekly-actuals",
            json={"sgaName": "Sam Caller", "startDate": "2026-05-11", "endDate": "2026-05-15"},
        )

        assert response.status_code == 200
        assert response.json() == [
            {"weekStartDate": "2026-05-11", "initialCalls": 7, "qualificationCalls": 3, "sqos": 2},
        ]

    def test_weekly_progress_without_goals_store(self, client, warehouse, weekly_goals_lookup):
        weekly_goals_lookup.side_effect = RuntimeError("DATABASE_URL is not configured")

        response = client.post(
            "/sga-hub/weekly-progress",
            json={"sgaName": "Sam Caller", "startDate": "2026-05-11", "endDate": "2026-05-15"},
        )

        assert response.status_code == 200
        assert response.json()["unavailable"] == ["goals"]

    def test_setting_a_weekly_goal_invalidates_sga_hub(self, client, cache, goals_connection):
        goals_connection.fetchrow.return_value = {
            "sga_name": "Sam Caller",
            "week_start_date": date(2026, 5, 11),
            "initial_calls_goal": 10,
            "qualification_calls_goal": 4,
            "sqo_goal": 2,
            "updated_at": datetime(2026, 5, 15, 12, 0, tzinfo=timezone.utc),
        }
        client.post("/sga-hub/leaderboard", json={})
        assert len(cache) == 1

        response = client.put("/sga-hub/weekly-goal", json={
            "sgaName": "Sam Caller", "weekStartDate": "2026-05-11",
            "initialCallsGoal": 10, "qualificationCallsGoal": 4, "sqoGoal": 2,
        })

        assert response.status_code == 200
        assert response.json()["sqoGoal"] == 2.0
        assert len(cache) == 0

    def test_weekly_goal_must_start_on_monday(self, client, goals_connection):
        response = client.put("/sga-hub/weekly-goal", json={
            "sgaName": "Sam Caller", "weekStartDate": "2026-05-13", "sqoGoal": 2,
        })
        assert response.status_code == 422
        goals_connection.fetchrow.assert_not_awaited()


# =============================================================================
# ADMIN
# =============================================================================


class TestAdminRoutes:

    def test_refresh_without_configured_secret(self, client, warehouse, funnel_metrics_row):
        warehouse.set("funnel_metrics", [funnel_metrics_row])
        client.post("/dashboard/funnel-metrics", json={"includeGoals": False})
        client.post("/sga-hub/leaderboard", json={})

        response = client.post("/admin/refresh-cache", params={"tags": "dashboard"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["tags"] == ["dashboard"]
        assert body["evicted"] == 1

        stats = client.get("/admin/cache-stats").json()
        assert stats["entries"] == 1
        assert stats["evictions"] == 1

    def test_refresh_requires_matching_secret(self, client):
        app.dependency_overrides[get_settings_dependency] = lambda: Settings(
            _env_file=None, admin_refresh_secret="s3cret", database_url=None
        )

        assert client.post("/admin/refresh-cache").status_code == 401
        assert client.post("/admin/refresh-cache", headers={"X-Refresh-Secret": "wrong"}).status_code == 401

        response = client.post("/admin/refresh-cache", headers={"X-Refresh-Secret": "s3cret"})
        assert response.status_code == 200
        assert sorted(response.json()["tags"]) == ["dashboard", "sga-hub"]

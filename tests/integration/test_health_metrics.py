"""Integration tests for /health and /metrics endpoints."""

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from tripplanner.config import Settings
from tripplanner.main import create_app
from tripplanner.services.container import build_container


@pytest.fixture
def client(settings: Settings) -> Iterator[TestClient]:
    """Create test client."""
    with TestClient(create_app(container=build_container(settings))) as test_client:
        yield test_client


class TestHealthEndpoint:
    """Test /health endpoint."""

    def test_health_returns_200_with_memory_store(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["components"]["store"] == "memory"
        assert data["components"]["background_tasks"] == 0

    def test_health_checks_sql_store(self, settings: Settings, tmp_path: Path) -> None:
        sql_settings = settings.model_copy(
            update={"database_url": f"sqlite+aiosqlite:///{tmp_path}/health.db"}
        )

        with TestClient(create_app(container=build_container(sql_settings))) as client:
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["components"]["store"] == "ok"

    @patch("tripplanner.api.routes.health.check_store", new_callable=AsyncMock)
    def test_health_returns_503_when_store_fails(
        self, mock_check_store: AsyncMock, client: TestClient
    ) -> None:
        mock_check_store.return_value = (False, "error: OperationalError")

        response = client.get("/health")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert data["components"]["store"] == "error: OperationalError"


class TestMetricsEndpoint:
    """Test /metrics endpoint."""

    def test_metrics_returns_prometheus_format(self, client: TestClient) -> None:
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]

    def test_metrics_includes_planner_metrics(self, client: TestClient) -> None:
        from tripplanner.utils.metrics import (
            normalization_skipped_total,
            producer_runs_total,
            provider_errors_total,
            provider_latency_ms,
        )

        provider_latency_ms.labels(provider="test_provider", outcome="success").observe(100)
        provider_errors_total.labels(provider="test_provider", reason="timeout").inc()
        producer_runs_total.labels(producer="flight", status="completed").inc()
        normalization_skipped_total.labels(producer="flight", reason="malformed").inc()

        text = client.get("/metrics").text

        assert "provider_latency_ms" in text
        assert "provider_errors_total" in text
        assert "producer_runs_total" in text
        assert "normalization_skipped_total" in text

    def test_metrics_can_be_scraped_multiple_times(self, client: TestClient) -> None:
        response1 = client.get("/metrics")
        response2 = client.get("/metrics")

        assert response1.status_code == 200
        assert response2.status_code == 200


class TestRootEndpoint:
    """Test root endpoint."""

    def test_root_returns_api_info(self, client: TestClient) -> None:
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Trip Planner API"
        assert data["version"] == "0.1.0"

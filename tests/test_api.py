"""Tests for the FastAPI health routes."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from fastapi.testclient import TestClient

from healthwatch.api.server import create_app
from healthwatch.config import Settings
from healthwatch.health.engine import DuplicateNameError, HealthCheckAggregator, healthy, unhealthy
from healthwatch.health.probes import DatabaseProbe


def make_client(aggregator: HealthCheckAggregator) -> TestClient:
    app = create_app()
    app.state.aggregator = aggregator
    return TestClient(app)


@pytest.fixture
def healthy_client() -> TestClient:
    agg = HealthCheckAggregator()
    agg.register("database", lambda: healthy("SELECT 1 OK"))
    agg.register("email", lambda: healthy("250 localhost"))
    return make_client(agg)


@pytest.fixture
def failing_client() -> TestClient:
    agg = HealthCheckAggregator(enabled={"custom": False})
    agg.register("database", lambda: healthy())
    agg.register("email", lambda: unhealthy("SMTP connect failed"))
    agg.register("custom", lambda: healthy())
    return make_client(agg)


class TestHealthEndpoint:
    def test_healthy_returns_200(self, healthy_client: TestClient) -> None:
        resp = healthy_client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert [c["name"] for c in data["checks"]] == ["database", "email"]
        assert all(c["status"] == "healthy" for c in data["checks"])
        assert data["checks"][0]["reason"] == "SELECT 1 OK"
        assert "timestamp" in data

    def test_unhealthy_returns_503(self, failing_client: TestClient) -> None:
        resp = failing_client.get("/health")
        assert resp.status_code == 503
        data = resp.json()
        assert data["status"] == "unhealthy"
        by_name = {c["name"]: c for c in data["checks"]}
        assert by_name["email"]["status"] == "unhealthy"
        assert by_name["email"]["reason"] == "SMTP connect failed"
        assert by_name["custom"]["status"] == "skipped"

    def test_no_cache(self, healthy_client: TestClient) -> None:
        assert healthy_client.get("/health").headers["cache-control"] == "no-cache"

    def test_empty_aggregator_is_healthy(self) -> None:
        resp = make_client(HealthCheckAggregator()).get("/health")
        assert resp.status_code == 200
        assert resp.json()["checks"] == []

    def test_database_drop_and_recover(self, database_url: str) -> None:
        probe = DatabaseProbe(database_url)
        agg = HealthCheckAggregator()
        agg.register("database", probe)
        client = make_client(agg)

        assert client.get("/health").status_code == 200

        probe.disconnect()
        resp = client.get("/health")
        assert resp.status_code == 503
        assert resp.json()["checks"][0]["reason"] == "Database disconnected"

        probe.reconnect()
        assert client.get("/health").status_code == 200


class TestHealthSubset:
    def test_subset_healthy(self, failing_client: TestClient) -> None:
        resp = failing_client.get("/health/database")
        assert resp.status_code == 200
        assert [c["name"] for c in resp.json()["checks"]] == ["database"]

    def test_subset_unhealthy(self, failing_client: TestClient) -> None:
        resp = failing_client.get("/health/database,email")
        assert resp.status_code == 503
        assert len(resp.json()["checks"]) == 2

    def test_unknown_probe(self, failing_client: TestClient) -> None:
        resp = failing_client.get("/health/database,redis")
        assert resp.status_code == 404
        assert "redis" in resp.json()["detail"]

    def test_blank_names(self, failing_client: TestClient) -> None:
        assert failing_client.get("/health/,").status_code == 400


class TestProbesEndpoint:
    def test_list_probes(self, failing_client: TestClient) -> None:
        resp = failing_client.get("/probes")
        assert resp.status_code == 200
        data = resp.json()
        assert data["probes"] == [
            {"name": "database", "enabled": True},
            {"name": "email", "enabled": True},
            {"name": "custom", "enabled": False},
        ]
        assert data["max_workers"] == 1


class TestLifespan:
    def test_builds_aggregator_from_probes_file(self, tmp_path: Path, database_url: str) -> None:
        yml = tmp_path / "probes.yaml"
        yml.write_text(yaml.dump({"probes": [
            {"name": "database", "type": "database", "database_url": database_url},
        ]}))
        settings = Settings(_env_file=None, probes_file=str(yml))

        with patch("healthwatch.api.server.settings", settings):
            app = create_app()
            with TestClient(app) as client:
                resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.json()["checks"][0]["name"] == "database"

    def test_disabled_custom_target_is_not_imported(self, tmp_path: Path) -> None:
        yml = tmp_path / "probes.yaml"
        yml.write_text(yaml.dump({"probes": [
            {"name": "custom", "type": "custom",
             "target": "myapp.checks:custom_check", "enabled": False},
        ]}))
        settings = Settings(_env_file=None, probes_file=str(yml))

        with patch("healthwatch.api.server.settings", settings):
            with TestClient(create_app()) as client:
                resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.json()["checks"][0]["status"] == "skipped"

    def test_injected_aggregator_is_kept(self) -> None:
        agg = HealthCheckAggregator()
        agg.register("only", lambda: healthy())
        app = create_app()
        app.state.aggregator = agg
        with TestClient(app) as client:
            assert client.app.state.aggregator is agg
            assert client.get("/health").json()["checks"][0]["name"] == "only"

    def test_misconfiguration_stops_startup(self, tmp_path: Path) -> None:
        yml = tmp_path / "probes.yaml"
        yml.write_text(yaml.dump({"probes": [
            {"name": "flag", "type": "file", "path": "/tmp/a"},
            {"name": "flag", "type": "file", "path": "/tmp/b"},
        ]}))
        settings = Settings(_env_file=None, probes_file=str(yml))

        with patch("healthwatch.api.server.settings", settings):
            app = create_app()
            with pytest.raises(DuplicateNameError):
                with TestClient(app):
                    pass

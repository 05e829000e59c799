"""
Tests for the FastAPI backend.

Endpoints are exercised against a seeded SQLite log store swapped in for
the module-level aggregator.
"""

import json

import pytest
from fastapi.testclient import TestClient

from backend import api
from src.core.aggregator import Aggregator


@pytest.fixture
def client(seeded_db, monkeypatch):
    monkeypatch.setattr(api, "aggregator", Aggregator(db_path=seeded_db))
    api.archive_cache.clear()
    yield TestClient(api.app)
    api.archive_cache.clear()


class TestServiceEndpoints:
    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}


class TestTimelineEndpoint:
    def test_in_progress_order_with_explicit_now(self, client):
        """The timeline endpoint honours an explicit evaluation instant."""
        response = client.get(
            "/api/orders/WIP-1/timeline", params={"now": "2025-11-09T12:00:00Z"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["order_id"] == "WIP-1"
        assert data["window_end"] == "2025-11-09T12:00:00+00:00"
        assert data["summary"] == {
            "total_seconds": 7200,
            "active_seconds": 3600,
            "waiting_seconds": 3600,
        }
        assert [i["kind"] for i in data["intervals"]] == ["stage", "wait"]
        assert data["intervals"][0]["staff_name"] == "Goldsmith 1"
        assert data["stage_durations"] == {"Goldsmithing": 3600, "Total": 3600}

    def test_wait_threshold_only_changes_visible_intervals(self, client):
        """The wait threshold filters visible_intervals and leaves intervals intact."""
        response = client.get(
            "/api/orders/DONE-1/timeline", params={"min_wait_seconds": 3600}
        )

        data = response.json()
        # Goldsmithing starts at creation; the waits follow each stage
        assert [i["duration_seconds"] for i in data["intervals"] if i["kind"] == "wait"] == [
            1800,
            3600,
            3600,
        ]
        assert all(i["kind"] == "stage" for i in data["visible_intervals"])
        assert data["sanitized_count"] == 1

    def test_unknown_order_is_404(self, client):
        response = client.get("/api/orders/NOPE/timeline")

        assert response.status_code == 404
        assert "NOPE" in response.json()["detail"]

    def test_invalid_now_is_400(self, client):
        response = client.get("/api/orders/WIP-1/timeline", params={"now": "soon"})

        assert response.status_code == 400

    def test_negative_threshold_rejected(self, client):
        response = client.get(
            "/api/orders/WIP-1/timeline", params={"min_wait_seconds": -1}
        )

        assert response.status_code == 422


class TestArchiveEndpoint:
    def test_archive_rows(self, client):
        data = client.get("/api/archive").json()

        assert data["count"] == 2
        assert [job["id"] for job in data["jobs"]] == ["DONE-1", "DONE-2"]
        assert data["jobs"][0]["formatted"]["Total"] == "1h 31m"

    def test_archive_is_cached(self, client, monkeypatch):
        """A second request within the TTL is served from the cache."""
        first = client.get("/api/archive").json()

        def fail():
            raise AssertionError("archive rebuilt while cached")

        monkeypatch.setattr(api.aggregator, "build_archive", fail)

        assert client.get("/api/archive").json() == first

    def test_cache_bypass(self, client, monkeypatch):
        """use_cache=false rebuilds the archive."""
        client.get("/api/archive")
        monkeypatch.setattr(api.aggregator, "build_archive", lambda: [])

        data = client.get("/api/archive", params={"use_cache": False}).json()

        assert data == {"jobs": [], "count": 0}

    def test_archive_errors_are_500(self, client, monkeypatch):
        def broken():
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(api.aggregator, "build_archive", broken)

        response = client.get("/api/archive", params={"use_cache": False})

        assert response.status_code == 500
        assert "disk on fire" in response.json()["detail"]


class TestAnalyticsEndpoint:
    def test_analytics(self, client):
        """Quality metrics are read from the seeded production log."""
        response = client.get("/api/analytics")

        assert response.status_code == 200
        data = response.json()
        assert data["completions"] == 2
        assert data["redos"] == 1
        assert data["quality_rate"] == 88
        assert data["recent_redos"][0]["redo_reason"] == "Loose Stone"

    def test_analytics_errors_are_500(self, client, monkeypatch):
        def broken():
            raise RuntimeError("log table missing")

        monkeypatch.setattr(api.aggregator, "build_analytics", broken)

        response = client.get("/api/analytics")

        assert response.status_code == 500
        assert "log table missing" in response.json()["detail"]


class TestLoadConfig:
    """config.json is optional; anything unreadable falls back to defaults."""

    def test_reads_config(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"db_path": "/srv/workshop.db", "backend": {"port": 5000}}))

        assert api.load_config(path) == {"db_path": "/srv/workshop.db", "backend": {"port": 5000}}

    def test_missing_file_gives_empty_config(self, tmp_path, caplog):
        with caplog.at_level("INFO"):
            config = api.load_config(tmp_path / "config.json")

        assert config == {}
        assert "using defaults" in caplog.text

    def test_broken_file_gives_empty_config(self, tmp_path, caplog):
        """Malformed JSON is logged as a warning, not raised."""
        path = tmp_path / "config.json"
        path.write_text("{not json")

        with caplog.at_level("WARNING"):
            config = api.load_config(path)

        assert config == {}
        assert any(record.levelname == "WARNING" for record in caplog.records)

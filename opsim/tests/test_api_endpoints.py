"""
Tests for API endpoints
"""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from opsim import api
from opsim.api import app

client = TestClient(app)

START = datetime(2024, 1, 1)
KEY = "ActivePowerVariable__ThermalGenerator"


@pytest.fixture(autouse=True)
def simulation_folder(tmp_path, monkeypatch):
    monkeypatch.setattr(api.settings, "simulation_folder", str(tmp_path / "simulations"))


def make_request(steps=2, peak=150.0, stages=None):
    forecasts = {
        (START + timedelta(days=day)).isoformat(): [0.5 + 0.02 * h for h in range(24)]
        for day in range(steps)
    }
    return {
        "name": "api_test",
        "steps": steps,
        "initial_time": START.isoformat(),
        "interval_hours": 24,
        "system": {
            "name": "api_system",
            "generators": [
                {"name": "cheap", "pmax": 100.0, "variable_cost": 10.0},
                {"name": "peaker", "pmax": 100.0, "variable_cost": 50.0},
            ],
            "loads": [{"name": "city", "uuid": "load-1", "max_active_power": peak}],
            "time_series": [
                {
                    "component_uuid": "load-1",
                    "name": "max_active_power",
                    "series_type": "deterministic",
                    "resolution": 3600,
                    "forecasts": forecasts,
                }
            ],
        },
        "stages": stages if stages is not None else [{"name": "ED", "horizon": 24}],
    }


def test_root_endpoint():
    """Test root endpoint"""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert "message" in data
    assert "simulations" in data["endpoints"]


def test_health_endpoint():
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Request-ID" in response.headers


def test_request_id_is_echoed():
    """Test a client supplied request id is returned"""
    response = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert response.headers["X-Request-ID"] == "abc-123"


def test_run_simulation_and_read_results():
    """Test a two-step simulation runs and its results can be read back"""
    response = client.post("/simulations", json=make_request())
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["status"] == "successful"
    assert data["run_count"] == {"1": {"1": 1}, "2": {"1": 1}}
    assert len(data["outcomes"]) == 2
    assert data["cache_stats"]["ED"]["misses"] == 2

    run_id = data["id"]
    summary = client.get(f"/simulations/{run_id}")
    assert summary.status_code == 200
    assert summary.json()["id"] == run_id

    latest = client.get(f"/simulations/{run_id}/results/ED/variables/{KEY}")
    assert latest.status_code == 200
    result = latest.json()
    assert result["timestamp"].startswith("2024-01-02")
    assert len(result["data"]) == 2
    assert len(result["data"][0]) == 24

    first = client.get(
        f"/simulations/{run_id}/results/ED/variables/{KEY}",
        params={"timestamp": START.isoformat()},
    )
    assert first.status_code == 200
    assert first.json()["data"][0][0] == pytest.approx(75.0)


def test_failed_simulation_is_reported():
    """Test a run stopped by an infeasible stage returns success=False"""
    response = client.post("/simulations", json=make_request(steps=1, peak=500.0))
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["status"] == "failed"
    assert data["error"]
    assert data["outcomes"][0]["status"] == "failed"


def test_unknown_simulation_returns_404():
    """Test reading an unknown run"""
    response = client.get("/simulations/does-not-exist")
    assert response.status_code == 404
    assert response.json()["code"] == "http_404"


def test_unknown_result_key_returns_404():
    """Test reading a key that was never written"""
    run_id = client.post("/simulations", json=make_request(steps=1)).json()["id"]
    response = client.get(f"/simulations/{run_id}/results/ED/variables/Missing__Key")
    assert response.status_code == 404
    assert response.json()["code"] == "key_not_found"


def test_unknown_category_returns_400():
    """Test result categories are validated"""
    run_id = client.post("/simulations", json=make_request(steps=1)).json()["id"]
    response = client.get(f"/simulations/{run_id}/results/ED/bogus/{KEY}")
    assert response.status_code == 400


def test_invalid_request_returns_422():
    """Test a request without stages fails validation"""
    response = client.post("/simulations", json=make_request(stages=[]))
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


def test_core_errors_map_to_status_codes():
    """Test a stage interval that does not fit the resolution is a bad request"""
    stages = [{"name": "ED", "horizon": 24, "resolution_minutes": 420, "chronology": "feed_forward"}]
    response = client.post("/simulations", json=make_request(steps=1, stages=stages))
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_argument"


def test_cache_stats_endpoint():
    """Test cache statistics list registered runs"""
    client.post("/simulations", json=make_request(steps=1))
    response = client.get("/cache/stats")
    assert response.status_code == 200
    data = response.json()
    assert data["size"] >= 1
    assert "time_series" in data["runs"][-1]
    assert "result_store" in data["runs"][-1]


def test_unknown_dual_key_stops_simulation():
    """Test duals requested for a missing constraint fail the run instead of hanging it"""
    stages = [{"name": "ED", "horizon": 24, "constraint_duals": ["Bogus__System"]}]
    response = client.post("/simulations", json=make_request(steps=1, stages=stages))
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["status"] == "failed"
    assert data["outcomes"][0]["status"] == "failed"
    assert data["run_count"] == {"1": {"1": 1}}

"""
Smoke script for the operations simulation API
Run this against a live server (python main.py) to verify it end to end
"""

from datetime import datetime, timedelta

import requests

# Backend URL
BASE_URL = "http://localhost:8000"

START = datetime(2024, 1, 1)


def make_request(steps: int = 2) -> dict:
    """Two generators, one load, hourly forecasts for every step"""
    load_uuid = "load-1"
    forecasts = {
        (START + timedelta(hours=24 * day)).isoformat(): [0.5 + 0.02 * h for h in range(24)]
        for day in range(steps)
    }
    return {
        "name": "smoke",
        "steps": steps,
        "initial_time": START.isoformat(),
        "interval_hours": 24,
        "system": {
            "name": "smoke_system",
            "generators": [
                {"name": "cheap", "pmax": 100.0, "variable_cost": 10.0},
                {"name": "peaker", "pmax": 100.0, "variable_cost": 50.0},
            ],
            "loads": [{"name": "city", "uuid": load_uuid, "max_active_power": 150.0}],
            "time_series": [
                {
                    "component_uuid": load_uuid,
                    "name": "max_active_power",
                    "series_type": "deterministic",
                    "resolution": "PT1H",
                    "forecasts": forecasts,
                }
            ],
        },
        "stages": [{"name": "ED", "horizon": 24}],
    }


def check_health():
    """Check health endpoint"""
    print("Checking health endpoint...")
    try:
        response = requests.get(f"{BASE_URL}/health")
        if response.status_code == 200:
            print("Health check passed")
            return True
        print(f"Health check failed: {response.status_code}")
        return False
    except requests.RequestException as e:
        print(f"Health check failed: {e}")
        return False


def check_simulation():
    """Run a two-step economic dispatch and read back one result"""
    print("\nRunning two-step economic dispatch...")
    try:
        response = requests.post(f"{BASE_URL}/simulations", json=make_request())
        if response.status_code != 200:
            print(f"HTTP error: {response.status_code} {response.text}")
            return False
        result = response.json()
        if not result["success"]:
            print(f"Simulation failed: {result.get('error', 'Unknown error')}")
            return False
        print(f"Simulation succeeded: run_count={result['run_count']}")

        key = "ActivePowerVariable__ThermalGenerator"
        response = requests.get(
            f"{BASE_URL}/simulations/{result['id']}/results/ED/variables/{key}"
        )
        if response.status_code != 200:
            print(f"Result read failed: {response.status_code}")
            return False
        data = response.json()["data"]
        print(f"  {key}: {len(data)} generators x {len(data[0])} periods")
        return True
    except requests.RequestException as e:
        print(f"Simulation check failed: {e}")
        return False


def check_cache_stats():
    """Check cache statistics endpoint"""
    print("\nChecking cache statistics...")
    try:
        response = requests.get(f"{BASE_URL}/cache/stats")
        if response.status_code == 200:
            print(f"  Registered runs: {response.json()['size']}")
            return True
        print(f"HTTP error: {response.status_code}")
        return False
    except requests.RequestException as e:
        print(f"Cache stats check failed: {e}")
        return False


def main():
    """Run all checks"""
    print("=" * 60)
    print("Operations Simulation API smoke checks")
    print("=" * 60)

    checks = [check_health, check_simulation, check_cache_stats]
    passed = sum(1 for check in checks if check())

    print("\n" + "=" * 60)
    print(f"Checks passed: {passed}/{len(checks)}")
    print("=" * 60)

    if passed != len(checks):
        print("\nSome checks failed. Please check:")
        print("  1. Backend is running (python main.py)")
        print("  2. Backend is on http://localhost:8000")
        print("  3. The package is installed (pip install -e .)")


if __name__ == "__main__":
    main()

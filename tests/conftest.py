"""
Pytest configuration and shared fixtures.

This module provides common fixtures and utilities used across all tests.
"""

from concurrent.futures import Executor, Future

import pytest

SNAPSHOT_BASE = "https://snapshots.test/treasure"
OPENAQ_BASE = "https://openaq.test/v3"

# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def snapshot_base(monkeypatch):
    """Point snapshot downloads at a fake host so no test reaches the network."""
    monkeypatch.setenv("STRATOS_SNAPSHOT_BASE_URL", SNAPSHOT_BASE)
    return SNAPSHOT_BASE


@pytest.fixture
def openaq_env(monkeypatch):
    """Configure an OpenAQ API key and a fake OpenAQ host."""
    monkeypatch.setenv("OPENAQ_API_KEY", "test_key_123")
    monkeypatch.setenv("STRATOS_OPENAQ_BASE_URL", OPENAQ_BASE)
    return OPENAQ_BASE


@pytest.fixture
def no_retry_wait(monkeypatch):
    """Skip tenacity's backoff sleeps so retry paths run instantly."""
    monkeypatch.setattr("time.sleep", lambda seconds: None)


# ============================================================================
# Executors
# ============================================================================


class InlineExecutor(Executor):
    """Executor that runs each task immediately in the calling thread."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, /, *args, **kwargs):
        self.submitted += 1
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as e:
            future.set_exception(e)
        return future


@pytest.fixture
def inline_executor():
    return InlineExecutor()


# ============================================================================
# Data Fixtures - OpenAQ payloads
# ============================================================================


@pytest.fixture
def mock_locations_response():
    """Mock response from /locations for a search around central London."""
    return {
        "meta": {"name": "openaq-api", "page": 1, "limit": 10, "found": 2},
        "results": [
            {
                "id": 2178,
                "name": "London Marylebone Road",
                "coordinates": {"latitude": 51.5225, "longitude": -0.1546},
                "sensors": [
                    {
                        "id": 7117,
                        "name": "pm25 µg/m³",
                        "parameter": {"id": 2, "name": "pm25", "units": "µg/m³"},
                    },
                    {
                        "id": 7118,
                        "name": "no2 µg/m³",
                        "parameter": {"id": 19, "name": "no2", "units": "µg/m³"},
                    },
                ],
            },
            {
                "id": 2179,
                "name": "London Bloomsbury",
                "coordinates": {"latitude": 51.5222, "longitude": -0.1259},
                "sensors": [],
            },
        ],
    }


@pytest.fixture
def mock_latest_response():
    """Mock response from /locations/{id}/latest with an inline PM2.5 parameter."""
    return {
        "meta": {"name": "openaq-api", "page": 1, "limit": 100, "found": 2},
        "results": [
            {
                "datetime": {"utc": "2025-01-01T12:00:00Z"},
                "value": 41.3,
                "sensorsId": 7118,
                "parameter": {"id": 19, "name": "no2"},
            },
            {
                "datetime": {"utc": "2025-01-01T12:00:00Z"},
                "value": 12.0,
                "sensorsId": 7117,
                "parameter": {"id": 2, "name": "pm25"},
            },
        ],
    }


@pytest.fixture
def mock_latest_without_pm25():
    """Mock /latest response with no way of identifying a PM2.5 value."""
    return {
        "meta": {"name": "openaq-api", "page": 1, "limit": 100, "found": 1},
        "results": [
            {
                "value": 18.2,
                "sensorsId": 9001,
                "parameter": {"id": 5, "name": "o3"},
            },
        ],
    }

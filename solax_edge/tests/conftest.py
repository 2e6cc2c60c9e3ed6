"""
Shared test fixtures for Solax edge daemon tests.

Provides environment variable fixtures for EdgeSettings configuration tests
and a sample Solax Cloud real-time response.  All edge env vars are cleaned
before each test to ensure isolation.

CHANGELOG:
- 2026-10-19: Add sample cloud response fixture (STORY-005)
- 2026-10-19: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

from typing import Any

import pytest

# All EdgeSettings environment variable names, used for cleanup.
_ALL_EDGE_ENV_VARS = (
    "SOLAX_TOKEN_ID",
    "SOLAX_BRAND",
    "SOLAX_BASE_URL",
    "INVERTERS",
    "POLL_INTERVAL_S",
    "SMOOTHING_METHOD",
    "SMOOTHING_WINDOW",
    "SMOOTHING_MINUTES",
    "SMOOTHING_BUFFER_SIZE",
    "REQUEST_TIMEOUT_S",
    "POLL_BACKOFF_MAX_S",
    "PULSE_TIMEOUT_S",
    "API_ENABLED",
    "API_HOST",
    "API_PORT",
    "HEALTH_PATH",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_edge_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all edge env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_EDGE_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set all required and optional environment variables for EdgeSettings.

    Returns the dict of env var names to values for assertion convenience.
    """
    env = {
        "SOLAX_TOKEN_ID": "20201234567890123",
        "SOLAX_BRAND": "qcells",
        "SOLAX_BASE_URL": "https://proxy.example.com/api/getRealtimeInfo.do",
        "INVERTERS": (
            '[{"sn": "SWABCDEFGH", "name": "Roof", "has_battery": true},'
            ' {"sn": "SWIJKLMNOP", "name": "Garage"}]'
        ),
        "POLL_INTERVAL_S": "60",
        "SMOOTHING_METHOD": "sma",
        "SMOOTHING_WINDOW": "4",
        "SMOOTHING_MINUTES": "20",
        "SMOOTHING_BUFFER_SIZE": "512",
        "REQUEST_TIMEOUT_S": "5",
        "POLL_BACKOFF_MAX_S": "900",
        "PULSE_TIMEOUT_S": "2",
        "API_ENABLED": "false",
        "API_HOST": "127.0.0.1",
        "API_PORT": "9090",
        "HEALTH_PATH": "/tmp/test-health.json",
        "LOG_LEVEL": "debug",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def env_vars_required_only(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set only the required environment variables (no optional ones).

    Optional variables should fall back to their defaults.
    """
    env = {
        "SOLAX_TOKEN_ID": "token-xyz",
        "INVERTERS": '[{"sn": "SWABCDEFGH"}]',
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def sample_payload() -> dict[str, Any]:
    """A successful ``getRealtimeInfo.do`` response body."""
    return {
        "success": True,
        "exception": "Query success!",
        "result": {
            "inverterSN": "H1234567890123",
            "sn": "SWABCDEFGH",
            "acpower": 1214.0,
            "yieldtoday": 1.1,
            "yieldtotal": 121.1,
            "feedinpower": 37.0,
            "feedinenergy": 21.62,
            "consumeenergy": 41.91,
            "feedinpowerM2": 0.0,
            "soc": 0.0,
            "peps1": 0.0,
            "peps2": None,
            "peps3": None,
            "inverterType": "3",
            "inverterStatus": "102",
            "uploadTime": "2021-03-21 09:23:18",
            "batPower": 0.0,
            "powerdc1": 0.0,
            "powerdc2": 1258.0,
            "powerdc3": None,
            "powerdc4": None,
        },
    }

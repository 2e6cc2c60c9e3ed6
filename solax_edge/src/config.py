"""
Edge daemon configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
All configuration values come from environment variables or .env files;
no hardcoded tokens or serial numbers.

Inverters are configured as a JSON list, e.g.::

    INVERTERS='[{"sn": "SWABCDEFGH", "name": "Roof", "has_battery": true}]'

CHANGELOG:
- 2026-10-19: Enforce cloud API call quota on poll interval (STORY-012)
- 2026-10-19: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

import math
from typing import Literal

from pydantic import BaseModel, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from solax_edge.src.client import CLOUD_URLS

MAX_CALLS_PER_MINUTE: int = 10
"""Solax Cloud quota: API calls per minute for one token."""

MAX_CALLS_PER_DAY: int = 10_000
"""Solax Cloud quota: API calls per day for one token."""


def min_poll_interval_s(inverter_count: int) -> int:
    """Shortest poll interval (s) that keeps *inverter_count* loops in quota."""
    per_minute = math.ceil(60 * inverter_count / MAX_CALLS_PER_MINUTE)
    per_day = math.ceil(86_400 * inverter_count / MAX_CALLS_PER_DAY)
    return max(per_minute, per_day, 1)


class InverterConfig(BaseModel):
    """One configured inverter.

    Attributes:
        sn: Registration number of the inverter's communication module.
        name: Display name.  Defaults to the serial number.
        has_battery: Whether the inverter has battery storage.
    """

    sn: str
    name: str = ""
    has_battery: bool = False

    @field_validator("sn")
    @classmethod
    def sn_must_not_be_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("inverter sn must not be empty")
        return v

    @model_validator(mode="after")
    def _default_name(self) -> InverterConfig:
        """Default name to the serial number when not explicitly set."""
        if not self.name:
            self.name = self.sn
        return self


class EdgeSettings(BaseSettings):
    """Edge daemon configuration for the Solax cloud pipeline.

    All values are loaded from environment variables. Required variables
    must be set; optional variables have sensible defaults.

    Attributes:
        solax_token_id: Solax Cloud API token.
        solax_brand: Cloud portal to use (``solax`` or ``qcells``).
        solax_base_url: Endpoint override; defaults to the brand's URL.
        inverters: Configured inverters (JSON list).
        poll_interval_s: Seconds between polls of each inverter.  Must keep
            all inverters within the cloud quota (10/min, 10,000/day).
        smoothing_method: ``sma`` or ``ema``.
        smoothing_window: Window in polls; 0 derives it from
            ``smoothing_minutes / poll interval``.
        smoothing_minutes: Target smoothing horizon in minutes.
        smoothing_buffer_size: Samples kept per (source, flow).
        request_timeout_s: HTTP request timeout in seconds.
        poll_backoff_max_s: Cap of the exponential backoff after failed
            polls; 0 keeps a flat retry at the poll interval.
        pulse_timeout_s: Seconds an update pulse stays active.
        api_enabled: Serve the realtime HTTP API.
        api_host: Bind address of the realtime HTTP API.
        api_port: Port of the realtime HTTP API.
        health_path: Health JSON file path.
        log_level: Root log level.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    solax_token_id: str
    solax_brand: Literal["solax", "qcells"] = "solax"
    solax_base_url: str = ""
    inverters: list[InverterConfig]
    poll_interval_s: int = 300
    smoothing_method: Literal["sma", "ema"] = "ema"
    smoothing_window: int = 0
    smoothing_minutes: int = 15
    smoothing_buffer_size: int = 1024
    request_timeout_s: float = 10.0
    poll_backoff_max_s: int = 0
    pulse_timeout_s: float = 5.0
    api_enabled: bool = True
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    health_path: str = "/data/health.json"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator("smoothing_method", mode="before")
    @classmethod
    def smoothing_method_lowercase(cls, v: object) -> object:
        return v.lower() if isinstance(v, str) else v

    @field_validator("log_level", mode="before")
    @classmethod
    def log_level_uppercase(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v

    @field_validator("inverters")
    @classmethod
    def inverters_must_be_unique(cls, v: list[InverterConfig]) -> list[InverterConfig]:
        """Require at least one inverter and unique serial numbers."""
        if not v:
            raise ValueError("INVERTERS must list at least one inverter")
        serials = [inv.sn.lower() for inv in v]
        if len(set(serials)) != len(serials):
            raise ValueError("INVERTERS contains duplicate serial numbers")
        return v

    @field_validator("solax_base_url")
    @classmethod
    def solax_base_url_must_be_https(cls, v: str) -> str:
        if v and not v.lower().startswith("https://"):
            raise ValueError(f"SOLAX_BASE_URL must use HTTPS (got: '{v[:30]}...')")
        return v

    @field_validator("poll_interval_s")
    @classmethod
    def poll_interval_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("POLL_INTERVAL_S must be >= 1")
        return v

    @field_validator("smoothing_window", "poll_backoff_max_s")
    @classmethod
    def must_be_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("value must be >= 0")
        return v

    @field_validator("smoothing_minutes", "smoothing_buffer_size")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be >= 1")
        return v

    @field_validator("api_port")
    @classmethod
    def api_port_must_be_valid(cls, v: int) -> int:
        if v < 1 or v > 65535:
            raise ValueError("API_PORT must be between 1 and 65535")
        return v

    @model_validator(mode="after")
    def _check_quota_and_window(self) -> EdgeSettings:
        """Enforce the cloud call quota and derive the smoothing window."""
        minimum = min_poll_interval_s(len(self.inverters))
        if self.poll_interval_s < minimum:
            raise ValueError(
                f"POLL_INTERVAL_S must be >= {minimum} for {len(self.inverters)} "
                f"inverter(s) (cloud quota: {MAX_CALLS_PER_MINUTE} calls/min, "
                f"{MAX_CALLS_PER_DAY} calls/day)"
            )
        if self.smoothing_window == 0:
            self.smoothing_window = max(
                1, round(self.smoothing_minutes * 60 / self.poll_interval_s)
            )
        if self.smoothing_window > self.smoothing_buffer_size:
            raise ValueError("SMOOTHING_WINDOW must be <= SMOOTHING_BUFFER_SIZE")
        return self

    @property
    def cloud_url(self) -> str:
        """Real-time endpoint: explicit override, else the brand's URL."""
        return self.solax_base_url or CLOUD_URLS[self.solax_brand]

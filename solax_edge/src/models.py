"""
Pydantic models for Solax Cloud real-time telemetry snapshots.

Defines the wire model of the ``getRealtimeInfo.do`` response
(:class:`SolaxResponse` wrapping :class:`InverterData`), the immutable
:class:`Snapshot` produced by one poll, the :class:`ChargeState` ordinal enum,
and the lookup tables that turn inverter type/status codes into descriptions.

Every numeric reading is nullable on the wire.  The models keep ``None`` as
reported; flow derivation decides how missing channels are treated.

CHANGELOG:
- 2026-10-19: Add inverter type/status code tables (STORY-009)
- 2026-10-19: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations

from datetime import datetime
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ChargeState(IntEnum):
    """Battery charging state, ordered by ordinal value.

    The ordering is part of the aggregation contract: the aggregate of several
    batteries takes the *maximum* ordinal, so ``NOT_CHARGEABLE`` outranks
    ``CHARGING``.
    """

    NOT_CHARGING = 0
    CHARGING = 1
    NOT_CHARGEABLE = 2


class InverterData(BaseModel):
    """The ``result`` object of a Solax Cloud real-time response.

    Attributes:
        inverter_sn: Inverter serial number (``inverterSN``).
        sn: Communication module registration number.
        acpower: Inverter AC power total in watts.
        yieldtoday: Inverter AC energy out today in kWh.
        yieldtotal: Inverter AC energy out total in kWh.
        feedinpower: Grid connection point power in watts.
            Positive = exporting, negative = importing.
        feedinenergy: Energy exported to the grid, total, in kWh.
        consumeenergy: Energy imported from the grid, total, in kWh.
        feedin_power_m2: Address 2 meter AC power total in watts.
        soc: Battery state of charge in percent.
        peps1: EPS power phase R in watts.
        peps2: EPS power phase S in watts.
        peps3: EPS power phase T in watts.
        inverter_type: Inverter type code.
        inverter_status: Inverter status code.
        upload_time: Time the inverter last uploaded data to the cloud.
        bat_power: Battery DC power in watts.
            Positive = charging, negative = discharging.
        powerdc1: PV DC power MPPT1 in watts.
        powerdc2: PV DC power MPPT2 in watts.
        powerdc3: PV DC power MPPT3 in watts.
        powerdc4: PV DC power MPPT4 in watts.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    inverter_sn: str | None = Field(default=None, alias="inverterSN")
    sn: str | None = None
    acpower: float | None = None
    yieldtoday: float | None = None
    yieldtotal: float | None = None
    feedinpower: float | None = None
    feedinenergy: float | None = None
    consumeenergy: float | None = None
    feedin_power_m2: float | None = Field(default=None, alias="feedinpowerM2")
    soc: float | None = None
    peps1: float | None = None
    peps2: float | None = None
    peps3: float | None = None
    inverter_type: str | None = Field(default=None, alias="inverterType")
    inverter_status: str | None = Field(default=None, alias="inverterStatus")
    upload_time: str | None = Field(default=None, alias="uploadTime")
    bat_power: float | None = Field(default=None, alias="batPower")
    powerdc1: float | None = None
    powerdc2: float | None = None
    powerdc3: float | None = None
    powerdc4: float | None = None

    @field_validator("inverter_type", "inverter_status", mode="before")
    @classmethod
    def _code_as_string(cls, v: Any) -> Any:
        """The cloud sends type/status codes either as numbers or strings."""
        if isinstance(v, int | float) and not isinstance(v, bool):
            return str(int(v))
        return v


class SolaxResponse(BaseModel):
    """Envelope of a ``getRealtimeInfo.do`` response.

    Attributes:
        success: Whether the cloud reports the query as successful.
        exception: Server message (``"Query success!"`` or an error text).
        result: Inverter data, ``None`` when the query failed.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    success: bool = False
    exception: str = ""
    result: InverterData | None = None

    @field_validator("result", mode="before")
    @classmethod
    def _result_must_be_object(cls, v: Any) -> Any:
        # Failed queries carry a string (or nothing) in ``result``.
        if not isinstance(v, dict):
            return None
        return v

    @field_validator("exception", mode="before")
    @classmethod
    def _exception_as_text(cls, v: Any) -> str:
        return "" if v is None else str(v)


class Snapshot(BaseModel):
    """One poll of one source.

    If ``success`` is False, ``data`` must not be trusted and nothing derived
    from it may be published.

    Attributes:
        source_id: Identifier of the polled source (lower-cased serial).
        success: Whether the poll produced usable data.
        exception: Error message for failed polls, server message otherwise.
        fetched_at: When the poll completed (injected by the caller).
        data: Inverter readings, present only when ``success`` is True.
    """

    model_config = ConfigDict(frozen=True)

    source_id: str
    success: bool
    exception: str = ""
    fetched_at: datetime
    data: InverterData | None = None

    @classmethod
    def failed(cls, source_id: str, message: str, fetched_at: datetime) -> Snapshot:
        """Build a failed snapshot carrying *message*."""
        return cls(
            source_id=source_id,
            success=False,
            exception=message,
            fetched_at=fetched_at,
        )


# ---------------------------------------------------------------------------
# Code tables
# ---------------------------------------------------------------------------

INVERTER_TYPES: dict[str, str] = {
    "1": "X1-LX",
    "2": "X-Hybrid",
    "3": "X1-Hybiyd/Fit",
    "4": "X1-Boost/Air/Mini",
    "5": "X3-Hybiyd/Fit",
    "6": "X3-20K/30K",
    "7": "X3-MIC/PRO",
    "8": "X1-Smart",
    "9": "X1-AC",
    "10": "A1-Hybrid",
    "11": "A1-Fit",
    "12": "A1-Grid",
    "13": "J1-ESS",
}
"""Maps Solax inverter type code -> model description."""

INVERTER_STATUSES: dict[str, str] = {
    "100": "Wait Mode",
    "101": "Check Mode",
    "102": "Normal Mode",
    "103": "Fault Mode",
    "104": "Permanent Fault Mode",
    "105": "Update Mode",
    "106": "EPS Check Mode",
    "107": "EPS Mode",
    "108": "Self-Test Mode",
    "109": "Idle Mode",
    "110": "Standby Mode",
    "111": "Pv Wake Up Bat Mode",
    "112": "Gen Check Mode",
    "113": "Gen Run Mode",
}
"""Maps Solax inverter status code -> status description."""


def inverter_type_name(code: str | None) -> str:
    """Return the model description for an inverter type code."""
    return INVERTER_TYPES.get(code or "", "Unknown")


def inverter_status_name(code: str | None) -> str:
    """Return the description for an inverter status code."""
    return INVERTER_STATUSES.get(code or "", "Unknown")

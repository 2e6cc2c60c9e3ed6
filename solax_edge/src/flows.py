"""
Pure flow derivation from a Solax inverter snapshot.

Maps the raw readings of one :class:`~solax_edge.src.models.InverterData` to
the named, non-negative power/energy flows published by the daemon.  Signed
readings are split into two directional flows (grid power into ``toGrid`` /
``fromGrid``, battery power into ``toBattery`` / ``fromBattery``).

Every function here is pure: no I/O, no clock, no logging, and no exception
for well-formed input.  Missing (``None``) channels count as exactly 0.
Clamping of inconsistent values (``toHouse`` < 0) is left to the publish
boundary so that these functions stay total.

CHANGELOG:
- 2026-10-19: Add SourceReading and derive_reading (STORY-005)
- 2026-10-19: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from solax_edge.src.models import (
    ChargeState,
    InverterData,
    inverter_status_name,
    inverter_type_name,
)


class Flow(StrEnum):
    """Named flows derived from every snapshot."""

    PV = "pv"
    AC_OUT = "acOut"
    TO_GRID = "toGrid"
    FROM_GRID = "fromGrid"
    TO_HOUSE = "toHouse"
    TO_BATTERY = "toBattery"
    FROM_BATTERY = "fromBattery"
    TOTAL_YIELD = "totalYield"


POWER_FLOWS: tuple[Flow, ...] = (
    Flow.PV,
    Flow.AC_OUT,
    Flow.TO_GRID,
    Flow.FROM_GRID,
    Flow.TO_HOUSE,
    Flow.TO_BATTERY,
    Flow.FROM_BATTERY,
)
"""Power flows (W). These are clamped at publish time and smoothed."""

BATTERY_FLOWS: frozenset[Flow] = frozenset({Flow.TO_BATTERY, Flow.FROM_BATTERY})
"""Flows that only make sense for sources with storage."""


def _value(reading: float | None) -> float:
    return 0.0 if reading is None else float(reading)


# ---------------------------------------------------------------------------
# Single-flow functions
# ---------------------------------------------------------------------------


def pv_power(data: InverterData) -> float:
    """PV DC power (W): sum of the four MPPT channels, missing channels as 0."""
    return (
        _value(data.powerdc1)
        + _value(data.powerdc2)
        + _value(data.powerdc3)
        + _value(data.powerdc4)
    )


def ac_power(data: InverterData) -> float:
    """Inverter AC output power (W), as reported."""
    return _value(data.acpower)


def to_grid(data: InverterData) -> float:
    """Power exported to the grid (W)."""
    return max(_value(data.feedinpower), 0.0)


def from_grid(data: InverterData) -> float:
    """Power imported from the grid (W)."""
    return max(-_value(data.feedinpower), 0.0)


def to_house(data: InverterData) -> float:
    """Inverter power consumed by the house (W).

    Not clamped: an inconsistent snapshot may yield a negative value.
    """
    return ac_power(data) - to_grid(data)


def to_battery(data: InverterData) -> float:
    """Power charging the battery (W)."""
    return max(_value(data.bat_power), 0.0)


def from_battery(data: InverterData) -> float:
    """Power drawn from the battery (W)."""
    return max(-_value(data.bat_power), 0.0)


def battery_soc(data: InverterData) -> float:
    """Battery state of charge (%), 0 when not reported."""
    return _value(data.soc)


def total_yield(data: InverterData) -> float:
    """Inverter cumulative AC energy out (kWh)."""
    return _value(data.yieldtotal)


def yield_today(data: InverterData) -> float:
    """Inverter AC energy out today (kWh)."""
    return _value(data.yieldtoday)


def charge_state(data: InverterData, *, has_storage: bool = True) -> ChargeState:
    """Battery charge state: only positive battery power counts as charging."""
    if not has_storage:
        return ChargeState.NOT_CHARGEABLE
    if _value(data.bat_power) > 0:
        return ChargeState.CHARGING
    return ChargeState.NOT_CHARGING


_DERIVERS = {
    Flow.PV: pv_power,
    Flow.AC_OUT: ac_power,
    Flow.TO_GRID: to_grid,
    Flow.FROM_GRID: from_grid,
    Flow.TO_HOUSE: to_house,
    Flow.TO_BATTERY: to_battery,
    Flow.FROM_BATTERY: from_battery,
    Flow.TOTAL_YIELD: total_yield,
}


def derive_flows(data: InverterData) -> dict[Flow, float]:
    """Derive every :class:`Flow` from *data*, in :class:`Flow` order."""
    return {flow: derive(data) for flow, derive in _DERIVERS.items()}


# ---------------------------------------------------------------------------
# Per-source derived view
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SourceReading:
    """Latest derived view of a source (real or aggregated).

    Attributes:
        flows: Flow values.  Sources without storage omit battery flows.
        yield_today: Energy produced today in kWh.
        has_storage: Whether battery level/charge state are meaningful.
        battery_level: Battery state of charge (%), ``None`` without storage.
        charge_state: Battery charge state, ``None`` without storage.
        model: Inverter model description.
        status: Inverter status description.
    """

    flows: dict[Flow, float]
    yield_today: float = 0.0
    has_storage: bool = False
    battery_level: float | None = None
    charge_state: ChargeState | None = None
    model: str = "Unknown"
    status: str = "Unknown"


def derive_reading(data: InverterData, *, has_storage: bool) -> SourceReading:
    """Derive the full :class:`SourceReading` of one successful snapshot."""
    flows = derive_flows(data)
    if not has_storage:
        flows = {f: v for f, v in flows.items() if f not in BATTERY_FLOWS}
    return SourceReading(
        flows=flows,
        yield_today=yield_today(data),
        has_storage=has_storage,
        battery_level=battery_soc(data) if has_storage else None,
        charge_state=charge_state(data) if has_storage else None,
        model=inverter_type_name(data.inverter_type),
        status=inverter_status_name(data.inverter_status),
    )

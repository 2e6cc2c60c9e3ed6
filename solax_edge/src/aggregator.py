"""
Pure aggregation of several source readings into one totalized reading.

The "all inverters" source has no fetch of its own.  Its reading is a
reduction over the latest :class:`~solax_edge.src.flows.SourceReading` of
every member:

- power and yield flows (and today's yield) are summed, each power flow
  clamped at 0 first so the total equals the sum of what members publish;
- battery level is the arithmetic mean over members *with storage* only;
- charge state is the maximum :class:`~solax_edge.src.models.ChargeState`
  ordinal over members with storage, so ``NOT_CHARGEABLE`` (2) outranks
  ``CHARGING`` (1), which outranks ``NOT_CHARGING`` (0);
- without any storage-capable member, the aggregate has no storage and no
  battery flows.

Members that have not produced a reading yet are skipped, so the aggregate
can be recomputed after any single member update.

CHANGELOG:
- 2026-10-20: Clamp member power flows before summing (STORY-014)
- 2026-10-19: Initial creation (STORY-007)

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Iterable

from solax_edge.src.flows import BATTERY_FLOWS, POWER_FLOWS, Flow, SourceReading

AGGREGATE_SOURCE_ID: str = "all"
"""Identifier of the synthetic aggregated source."""

AGGREGATE_SOURCE_NAME: str = "All inverters"
"""Display name of the synthetic aggregated source."""


def aggregate(readings: Iterable[SourceReading | None]) -> SourceReading | None:
    """Reduce member readings into one totalized reading.

    Args:
        readings: Latest reading of every member, ``None`` for members that
            have not polled successfully yet.

    Returns:
        The aggregate reading, or ``None`` if no member has a reading.
    """
    present = [r for r in readings if r is not None]
    if not present:
        return None

    storage = [r for r in present if r.has_storage]
    has_storage = bool(storage)

    totals: dict[Flow, float] = {}
    for flow in Flow:
        if flow in BATTERY_FLOWS and not has_storage:
            continue
        values = [r.flows.get(flow, 0.0) for r in present]
        if flow in POWER_FLOWS:
            values = [max(v, 0.0) for v in values]
        totals[flow] = sum(values)

    battery_level = None
    charge_state = None
    if has_storage:
        levels = [r.battery_level or 0.0 for r in storage]
        battery_level = sum(levels) / len(levels)
        states = [r.charge_state for r in storage if r.charge_state is not None]
        charge_state = max(states) if states else None

    return SourceReading(
        flows=totals,
        yield_today=sum(r.yield_today for r in present),
        has_storage=has_storage,
        battery_level=battery_level,
        charge_state=charge_state,
        model=AGGREGATE_SOURCE_NAME,
        status=_combined_status(present),
    )


def _combined_status(readings: list[SourceReading]) -> str:
    statuses = {r.status for r in readings}
    if len(statuses) == 1:
        return statuses.pop()
    return "Mixed"

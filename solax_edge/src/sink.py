"""
Publication sink for derived flow values.

:class:`FlowSink` is the interface the pipeline publishes to: named raw and
smoothed flow values per source, battery state, source information, and a
zero-argument "data changed" pulse per source.

:class:`FlowStore` is the in-memory implementation used by the daemon.  It
keeps the latest published values per source and serves them to the
realtime API.  The pulse is only ever *set* by the pipeline; it reads as
active for ``pulse_timeout_s`` seconds and then clears itself.

CHANGELOG:
- 2026-10-19: Add battery low-level flag and source info (STORY-010)
- 2026-10-19: Initial creation (STORY-008)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from solax_edge.src.flows import Flow
from solax_edge.src.models import ChargeState

logger = logging.getLogger(__name__)

DEFAULT_PULSE_TIMEOUT_S: float = 5.0
"""Seconds after which a pulse clears itself."""

LOW_BATTERY_THRESHOLD: float = 10.0
"""Battery level (%) below which a battery is reported as low."""


class FlowSink(Protocol):
    """Receiver of published flow values."""

    def publish(
        self, source_id: str, flow: Flow, value: float, *, smoothed: bool = False
    ) -> None: ...

    def publish_battery(
        self, source_id: str, level: float, charge_state: ChargeState
    ) -> None: ...

    def publish_info(
        self, source_id: str, *, model: str, status: str, yield_today: float
    ) -> None: ...

    def pulse(self, source_id: str) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class SourceView:
    """Latest published state of one source.

    Attributes:
        source_id: Source identifier.
        name: Display name.
        raw: Latest raw flow values.
        smoothed: Latest smoothed flow values.
        battery_level: Latest battery level (%), ``None`` until published.
        charge_state: Latest battery charge state, ``None`` until published.
        model: Inverter model description.
        status: Inverter status description.
        yield_today: Energy produced today (kWh).
        updated_at: Time of the latest pulse.
    """

    source_id: str
    name: str
    raw: dict[Flow, float] = field(default_factory=dict)
    smoothed: dict[Flow, float] = field(default_factory=dict)
    battery_level: float | None = None
    charge_state: ChargeState | None = None
    model: str = "Unknown"
    status: str = "Unknown"
    yield_today: float | None = None
    updated_at: datetime | None = None


class FlowStore:
    """In-memory :class:`FlowSink` holding the latest view of every source.

    Args:
        pulse_timeout_s: How long a pulse reads as active.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        pulse_timeout_s: float = DEFAULT_PULSE_TIMEOUT_S,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._pulse_timeout_s = pulse_timeout_s
        self._clock = clock
        self._views: dict[str, SourceView] = {}

    # ------------------------------------------------------------------
    # Registration and lookup
    # ------------------------------------------------------------------

    def register(self, source_id: str, name: str) -> SourceView:
        """Register a source so it is listed before its first update."""
        view = self._views.get(source_id)
        if view is None:
            view = SourceView(source_id=source_id, name=name)
            self._views[source_id] = view
        return view

    def source_ids(self) -> list[str]:
        return list(self._views)

    def view(self, source_id: str) -> SourceView:
        """Return the view of *source_id*.

        Raises:
            KeyError: If the source was never registered or published.
        """
        return self._views[source_id]

    def _view(self, source_id: str) -> SourceView:
        return self.register(source_id, source_id)

    # ------------------------------------------------------------------
    # FlowSink
    # ------------------------------------------------------------------

    def publish(
        self, source_id: str, flow: Flow, value: float, *, smoothed: bool = False
    ) -> None:
        view = self._view(source_id)
        target = view.smoothed if smoothed else view.raw
        target[flow] = value
        logger.debug(
            "%s: SET %s%s=%s", source_id, flow, " (smooth)" if smoothed else "", value
        )

    def publish_battery(
        self, source_id: str, level: float, charge_state: ChargeState
    ) -> None:
        view = self._view(source_id)
        view.battery_level = level
        view.charge_state = charge_state
        logger.debug(
            "%s: SET battery (level=%s, charge_state=%s)",
            source_id,
            level,
            charge_state.name,
        )

    def publish_info(
        self, source_id: str, *, model: str, status: str, yield_today: float
    ) -> None:
        view = self._view(source_id)
        view.model = model
        view.status = status
        view.yield_today = yield_today

    def pulse(self, source_id: str) -> None:
        self._view(source_id).updated_at = self._clock()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def pulse_active(self, source_id: str) -> bool:
        """Whether *source_id* pulsed within the last ``pulse_timeout_s``."""
        updated_at = self._view(source_id).updated_at
        if updated_at is None:
            return False
        elapsed = (self._clock() - updated_at).total_seconds()
        return elapsed < self._pulse_timeout_s

    def as_dict(self, source_id: str) -> dict[str, Any]:
        """JSON-compatible view of one source.

        Raises:
            KeyError: If the source is unknown.
        """
        view = self.view(source_id)
        battery: dict[str, Any] | None = None
        if view.battery_level is not None and view.charge_state is not None:
            battery = {
                "level": view.battery_level,
                "charge_state": view.charge_state.name.lower(),
                "low": view.battery_level < LOW_BATTERY_THRESHOLD,
            }
        return {
            "source_id": view.source_id,
            "name": view.name,
            "model": view.model,
            "status": view.status,
            "yield_today": view.yield_today,
            "raw": {str(flow): value for flow, value in view.raw.items()},
            "smoothed": {str(flow): value for flow, value in view.smoothed.items()},
            "battery": battery,
            "updated": self.pulse_active(source_id),
            "updated_at": view.updated_at.isoformat() if view.updated_at else None,
        }

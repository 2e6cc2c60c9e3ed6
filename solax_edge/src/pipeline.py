"""
Derive -> publish -> smooth -> pulse pipeline for polled snapshots.

The :class:`Pipeline` owns every piece of mutable telemetry state: the
configured :class:`Source` list, the synthetic aggregate source, and the
:class:`~solax_edge.src.smoothing.SmoothingBank`.  The poll loops hand it
snapshots; nothing else mutates it.

For a successful snapshot the pipeline:

1. derives the source reading (pure, see ``flows.py``);
2. publishes the raw flows, clamping power flows at 0 on the way out;
3. feeds each power flow into its smoothing state and publishes the
   smoothed values;
4. publishes battery state (storage sources only) and source info;
5. pulses the sink.

A failed snapshot publishes nothing and feeds nothing.

With more than one source, :meth:`Pipeline.refresh_aggregate` recomputes the
"all inverters" reading from the members' latest readings and publishes it
through the same steps, under a lock so concurrent loops never interleave
partial aggregate updates.

CHANGELOG:
- 2026-10-19: Skip aggregate re-feed when no member changed (STORY-011)
- 2026-10-19: Initial creation (STORY-007)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from solax_edge.src.aggregator import (
    AGGREGATE_SOURCE_ID,
    AGGREGATE_SOURCE_NAME,
    aggregate,
)
from solax_edge.src.flows import POWER_FLOWS, Flow, SourceReading, derive_reading
from solax_edge.src.models import Snapshot
from solax_edge.src.sink import FlowSink
from solax_edge.src.smoothing import (
    DEFAULT_BUFFER_SIZE,
    SmoothingBank,
    SmoothingMethod,
)

logger = logging.getLogger(__name__)


@dataclass
class Source:
    """A telemetry source (one inverter, or the synthetic aggregate).

    Attributes:
        source_id: Identifier (lower-cased serial, or ``"all"``).
        name: Display name.
        sn: Inverter serial number sent to the cloud API.
        has_storage: Whether the inverter has a battery.
        latest: Latest derived reading, ``None`` before the first success.
    """

    source_id: str
    name: str
    sn: str
    has_storage: bool = False
    latest: SourceReading | None = None


class Pipeline:
    """Owner of all source, aggregate and smoothing state.

    Args:
        sources: Configured sources, in display order.
        sink: Receiver of published values.
        method: Smoothing method (``"sma"`` or ``"ema"``).
        window: Smoothing window in polls.
        buffer_size: Bound of every smoothing buffer.
    """

    def __init__(
        self,
        sources: Sequence[Source],
        sink: FlowSink,
        *,
        method: SmoothingMethod,
        window: int,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ) -> None:
        self._sources = list(sources)
        self._sink = sink
        self._method: SmoothingMethod = method
        self._window = window

        self.aggregate: Source | None = None
        if len(self._sources) > 1:
            self.aggregate = Source(
                source_id=AGGREGATE_SOURCE_ID,
                name=AGGREGATE_SOURCE_NAME,
                sn="",
            )

        self.smoothing = SmoothingBank(
            [s.source_id for s in self.all_sources],
            POWER_FLOWS,
            bound=buffer_size,
        )
        self._aggregate_lock = asyncio.Lock()
        # Number of successful member updates; the aggregate re-feeds its
        # smoothing only when this moved since its last recompute.
        self._generation = 0
        self._aggregated_generation = 0

    @property
    def all_sources(self) -> list[Source]:
        """Configured sources followed by the aggregate, if any."""
        if self.aggregate is None:
            return list(self._sources)
        return [*self._sources, self.aggregate]

    # ------------------------------------------------------------------
    # Member snapshots
    # ------------------------------------------------------------------

    def process(self, source: Source, snapshot: Snapshot) -> bool:
        """Apply one snapshot of *source*.

        Returns:
            True if the snapshot was successful and has been published,
            False if it was discarded.
        """
        if not snapshot.success or snapshot.data is None:
            logger.warning(
                "Poll failed for inverter '%s' (sn=%s): %s",
                source.name,
                source.sn,
                snapshot.exception or "no data",
            )
            return False

        reading = derive_reading(snapshot.data, has_storage=source.has_storage)
        source.latest = reading
        self._generation += 1
        self._publish(source.source_id, reading)
        logger.info(
            "Updated inverter '%s': pv=%.0fW ac=%.0fW to_grid=%.0fW from_grid=%.0fW",
            source.name,
            reading.flows.get(Flow.PV, 0.0),
            reading.flows.get(Flow.AC_OUT, 0.0),
            reading.flows.get(Flow.TO_GRID, 0.0),
            reading.flows.get(Flow.FROM_GRID, 0.0),
        )
        return True

    # ------------------------------------------------------------------
    # Aggregate
    # ------------------------------------------------------------------

    def recompute_aggregate(self) -> SourceReading | None:
        """Recompute and publish the aggregate from the members' latest readings.

        Does nothing without an aggregate, before any member has a reading,
        or when no member changed since the previous recompute.

        Returns:
            The current aggregate reading, or ``None`` if there is none.
        """
        if self.aggregate is None:
            return None
        if self._generation == self._aggregated_generation:
            return self.aggregate.latest

        reading = aggregate(s.latest for s in self._sources)
        self._aggregated_generation = self._generation
        if reading is None:
            return None

        self.aggregate.latest = reading
        self.aggregate.has_storage = reading.has_storage
        self._publish(self.aggregate.source_id, reading)
        logger.debug("Recomputed aggregate from %d inverters", len(self._sources))
        return reading

    async def refresh_aggregate(self) -> SourceReading | None:
        """Serialized :meth:`recompute_aggregate` for concurrent poll loops."""
        async with self._aggregate_lock:
            return self.recompute_aggregate()

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def _publish(self, source_id: str, reading: SourceReading) -> None:
        raw = {
            flow: max(value, 0.0) if flow in POWER_FLOWS else value
            for flow, value in reading.flows.items()
        }
        for flow, value in raw.items():
            self._sink.publish(source_id, flow, value)

        power = {flow: value for flow, value in raw.items() if flow in POWER_FLOWS}
        smoothed = self.smoothing.feed_and_smooth(
            source_id, power, self._method, self._window
        )
        for flow, value in smoothed.items():
            self._sink.publish(source_id, flow, value, smoothed=True)

        if (
            reading.has_storage
            and reading.battery_level is not None
            and reading.charge_state is not None
        ):
            self._sink.publish_battery(
                source_id, reading.battery_level, reading.charge_state
            )

        self._sink.publish_info(
            source_id,
            model=reading.model,
            status=reading.status,
            yield_today=reading.yield_today,
        )
        self._sink.pulse(source_id)

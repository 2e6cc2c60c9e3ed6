"""
Unit tests for the derive -> publish -> smooth -> pulse pipeline.

Tests verify:
- A successful snapshot publishes raw values, smoothed values, info and a
  final pulse.
- A failed snapshot publishes nothing and feeds no smoothing buffer.
- Power flows are clamped at 0 before publishing and smoothing.
- Battery state is only published for storage sources.
- The aggregate exists only with more than one source, sums its members,
  and is only re-fed when a member changed.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-007)

TODO:
- None
"""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock, call

import pytest

from solax_edge.src.flows import BATTERY_FLOWS, Flow
from solax_edge.src.models import ChargeState, InverterData, Snapshot
from solax_edge.src.pipeline import Pipeline, Source
from solax_edge.src.sink import FlowStore

_TS = datetime(2026, 10, 19, 12, 0, 0, tzinfo=UTC)


def _snapshot(source_id: str = "a", **fields: float) -> Snapshot:
    return Snapshot(
        source_id=source_id,
        success=True,
        exception="Query success!",
        fetched_at=_TS,
        data=InverterData(**fields),
    )


def _pipeline(
    *sources: Source, method: str = "sma", window: int = 4
) -> tuple[Pipeline, FlowStore]:
    store = FlowStore()
    pipeline = Pipeline(
        sources, store, method=method, window=window  # type: ignore[arg-type]
    )
    for source in pipeline.all_sources:
        store.register(source.source_id, source.name)
    return pipeline, store


class TestSuccessfulSnapshot:
    """Full publish sequence for a successful poll."""

    def test_publishes_raw_and_smoothed(self) -> None:
        source = Source("a", "Roof", "SWA")
        pipeline, store = _pipeline(source)

        ok = pipeline.process(
            source, _snapshot(powerdc1=1000, acpower=900, feedinpower=100)
        )

        view = store.view("a")
        assert ok is True
        assert view.raw[Flow.PV] == 1000.0
        assert view.raw[Flow.TO_GRID] == 100.0
        assert view.raw[Flow.TO_HOUSE] == 800.0
        assert view.smoothed[Flow.PV] == 1000.0
        assert view.updated_at is not None
        assert source.latest is not None

    def test_total_yield_is_raw_only(self) -> None:
        source = Source("a", "Roof", "SWA")
        pipeline, store = _pipeline(source)

        pipeline.process(source, _snapshot(yieldtotal=121.1))

        view = store.view("a")
        assert view.raw[Flow.TOTAL_YIELD] == 121.1
        assert Flow.TOTAL_YIELD not in view.smoothed

    def test_smoothed_values_follow_window(self) -> None:
        source = Source("a", "Roof", "SWA")
        pipeline, store = _pipeline(source, method="sma", window=2)

        for pv in (100, 200, 400):
            pipeline.process(source, _snapshot(powerdc1=pv))

        assert store.view("a").raw[Flow.PV] == 400.0
        assert store.view("a").smoothed[Flow.PV] == 300.0

    def test_pulse_is_last(self) -> None:
        source = Source("a", "Roof", "SWA")
        sink = MagicMock()
        pipeline = Pipeline([source], sink, method="ema", window=4)

        pipeline.process(source, _snapshot(powerdc1=10))

        assert sink.method_calls[-1] == call.pulse("a")
        sink.publish_info.assert_called_once_with(
            "a", model="Unknown", status="Unknown", yield_today=0.0
        )


class TestFailedSnapshot:
    """A failed poll leaves every piece of state untouched."""

    def test_nothing_published_or_fed(self) -> None:
        source = Source("a", "Roof", "SWA")
        sink = MagicMock()
        pipeline = Pipeline([source], sink, method="ema", window=4)

        ok = pipeline.process(source, Snapshot.failed("a", "network error", _TS))

        assert ok is False
        assert sink.method_calls == []
        assert len(pipeline.smoothing.state("a", Flow.PV)) == 0
        assert source.latest is None

    def test_previous_values_kept(self) -> None:
        source = Source("a", "Roof", "SWA")
        pipeline, store = _pipeline(source)
        pipeline.process(source, _snapshot(powerdc1=500))

        pipeline.process(source, Snapshot.failed("a", "query failed", _TS))

        assert store.view("a").raw[Flow.PV] == 500.0
        assert pipeline.smoothing.state("a", Flow.PV).samples == [500.0]


class TestClamping:
    """Negative power values never leave the pipeline."""

    def test_negative_to_house_clamped(self) -> None:
        source = Source("a", "Roof", "SWA")
        pipeline, store = _pipeline(source)

        pipeline.process(source, _snapshot(acpower=10, feedinpower=50))

        assert source.latest is not None
        assert source.latest.flows[Flow.TO_HOUSE] == -40.0
        assert store.view("a").raw[Flow.TO_HOUSE] == 0.0
        assert store.view("a").smoothed[Flow.TO_HOUSE] == 0.0
        assert pipeline.smoothing.state("a", Flow.TO_HOUSE).samples == [0.0]


class TestBatteryPublishing:
    """Battery state only for sources with storage."""

    def test_storage_source(self) -> None:
        source = Source("a", "Roof", "SWA", has_storage=True)
        pipeline, store = _pipeline(source)

        pipeline.process(source, _snapshot(bat_power=-21, soc=25))

        view = store.view("a")
        assert view.battery_level == 25.0
        assert view.charge_state is ChargeState.NOT_CHARGING
        assert view.raw[Flow.FROM_BATTERY] == 21.0
        assert view.raw[Flow.TO_BATTERY] == 0.0

    def test_source_without_storage(self) -> None:
        source = Source("a", "Roof", "SWA")
        pipeline, store = _pipeline(source)

        pipeline.process(source, _snapshot(bat_power=-21, soc=25))

        view = store.view("a")
        assert view.battery_level is None
        assert not BATTERY_FLOWS & set(view.raw)


class TestAggregate:
    """The synthetic "all" source."""

    def test_single_source_has_no_aggregate(self) -> None:
        source = Source("a", "Roof", "SWA")
        pipeline, store = _pipeline(source)

        assert pipeline.aggregate is None
        assert pipeline.recompute_aggregate() is None
        assert store.source_ids() == ["a"]

    def test_aggregate_sums_members(self) -> None:
        a = Source("a", "Roof", "SWA")
        b = Source("b", "Garage", "SWB")
        pipeline, store = _pipeline(a, b)

        pipeline.process(a, _snapshot(feedinpower=-48))
        pipeline.process(b, _snapshot(feedinpower=0))
        reading = pipeline.recompute_aggregate()

        assert reading is not None
        assert reading.flows[Flow.FROM_GRID] == 48.0
        assert store.view("all").raw[Flow.FROM_GRID] == 48.0
        assert store.view("all").updated_at is not None

    def test_aggregate_matches_published_member_values(self) -> None:
        a = Source("a", "Roof", "SWA")
        b = Source("b", "Garage", "SWB")
        pipeline, store = _pipeline(a, b)

        pipeline.process(a, _snapshot(acpower=10, feedinpower=50))
        pipeline.process(b, _snapshot(acpower=300))
        pipeline.recompute_aggregate()

        published = sum(store.view(s).raw[Flow.TO_HOUSE] for s in ("a", "b"))
        assert store.view("all").raw[Flow.TO_HOUSE] == published == 300.0
        assert store.view("all").smoothed[Flow.TO_HOUSE] == 300.0

    def test_aggregate_with_one_member_reading(self) -> None:
        a = Source("a", "Roof", "SWA")
        b = Source("b", "Garage", "SWB")
        pipeline, store = _pipeline(a, b)

        pipeline.process(a, _snapshot(powerdc1=300))
        pipeline.recompute_aggregate()

        assert store.view("all").raw[Flow.PV] == 300.0

    def test_aggregate_battery_from_storage_members(self) -> None:
        a = Source("a", "Roof", "SWA", has_storage=True)
        b = Source("b", "Garage", "SWB")
        pipeline, store = _pipeline(a, b)

        pipeline.process(a, _snapshot(soc=22, bat_power=5))
        pipeline.process(b, _snapshot(soc=0))
        pipeline.recompute_aggregate()

        view = store.view("all")
        assert view.battery_level == 22.0
        assert view.charge_state is ChargeState.CHARGING

    def test_no_refeed_without_member_change(self) -> None:
        a = Source("a", "Roof", "SWA")
        b = Source("b", "Garage", "SWB")
        pipeline, _ = _pipeline(a, b)

        pipeline.process(a, _snapshot(powerdc1=100))
        pipeline.recompute_aggregate()
        pipeline.process(b, Snapshot.failed("b", "query failed", _TS))
        pipeline.recompute_aggregate()

        assert pipeline.smoothing.state("all", Flow.PV).samples == [100.0]

    def test_no_aggregate_before_any_reading(self) -> None:
        a = Source("a", "Roof", "SWA")
        b = Source("b", "Garage", "SWB")
        pipeline, store = _pipeline(a, b)

        assert pipeline.recompute_aggregate() is None
        assert store.view("all").updated_at is None

    @pytest.mark.asyncio
    async def test_refresh_aggregate(self) -> None:
        a = Source("a", "Roof", "SWA")
        b = Source("b", "Garage", "SWB")
        pipeline, store = _pipeline(a, b)

        pipeline.process(a, _snapshot(powerdc1=100))
        pipeline.process(b, _snapshot(powerdc1=50))
        reading = await pipeline.refresh_aggregate()

        assert reading is not None
        assert reading.flows[Flow.PV] == 150.0
        assert store.view("all").smoothed[Flow.PV] == 150.0

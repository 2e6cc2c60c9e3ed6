"""
Edge daemon package for the Solax cloud telemetry pipeline.

Polls the Solax Cloud real-time API for one or more inverters, derives named
power/energy flows, smooths them with SMA/EMA, aggregates all inverters into
one synthetic source, and publishes raw and smoothed values to an in-memory
store served over a small realtime HTTP API.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-001)

TODO:
- None
"""

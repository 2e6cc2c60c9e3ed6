"""
Edge daemon main loop for the Solax cloud telemetry pipeline.

Runs one asyncio poll loop per configured inverter, plus (optionally) the
realtime HTTP API served by uvicorn:

1. **Poll loop** (per inverter): fetches the real-time snapshot from the
   Solax Cloud, hands it to the Pipeline (derive -> publish raw -> smooth ->
   publish smoothed -> pulse), refreshes the "all inverters" aggregate when
   more than one inverter is configured, records the attempt in the health
   file, then sleeps for the poll interval.
2. **API server**: serves the FlowStore's latest values over HTTP.

Every poll loop is resilient: a failed poll (network error, HTTP error,
malformed body or ``success: false``) publishes nothing and feeds no
smoothing buffer, and an exception in one iteration is logged and does not
crash the loop or affect other loops.  Retry is flat at the poll interval
unless POLL_BACKOFF_MAX_S enables exponential backoff.  Graceful shutdown on
SIGTERM/SIGINT sets a shared asyncio.Event; each loop finishes its current
cycle and exits, and the API server is told to stop.

Structured JSON logging is used for all events.

CHANGELOG:
- 2026-10-20: API server failures no longer stop the poll loops (STORY-014)
- 2026-10-19: Serve realtime API alongside poll loops (STORY-010)
- 2026-10-19: Optional exponential backoff between failed polls (STORY-012)
- 2026-10-19: Initial creation (STORY-011)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import logging
import signal
import sys
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from solax_edge.src.pipeline import Pipeline, Source

if TYPE_CHECKING:
    import uvicorn

    from solax_edge.src.client import SolaxCloudClient
    from solax_edge.src.config import EdgeSettings
    from solax_edge.src.health import HealthWriter

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging for the edge daemon.

    Sets up the root logger with a JSON-formatted handler writing to stderr.
    """

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def _masked_token(value: str | None) -> str:
    """Return a short non-reversible token fingerprint for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: EdgeSettings) -> None:
    """Log a config summary at startup, excluding secrets.

    The API token is only logged as a length + hash fingerprint.
    """
    logger.info(
        "Edge daemon starting with config: "
        "cloud_url=%s, inverters=%s, poll_interval_s=%s, "
        "smoothing_method=%s, smoothing_window=%s, smoothing_buffer_size=%s, "
        "poll_backoff_max_s=%s, api_enabled=%s, api_port=%s, "
        "health_path=%s, token_masked=%s",
        settings.cloud_url,
        [
            f"{inv.name} (sn={inv.sn}, battery={inv.has_battery})"
            for inv in settings.inverters
        ],
        settings.poll_interval_s,
        settings.smoothing_method,
        settings.smoothing_window,
        settings.smoothing_buffer_size,
        settings.poll_backoff_max_s,
        settings.api_enabled,
        settings.api_port,
        settings.health_path,
        _masked_token(settings.solax_token_id),
    )


def build_sources(settings: EdgeSettings) -> list[Source]:
    """Create one Source per configured inverter, in configuration order."""
    return [
        Source(
            source_id=inv.sn.lower(),
            name=inv.name,
            sn=inv.sn,
            has_storage=inv.has_battery,
        )
        for inv in settings.inverters
    ]


# ---------------------------------------------------------------------------
# Single-iteration functions (easily testable)
# ---------------------------------------------------------------------------


async def _poll_once(
    *,
    source: Source,
    client: SolaxCloudClient,
    pipeline: Pipeline,
    health: HealthWriter | None,
) -> bool:
    """Execute a single fetch -> pipeline -> aggregate cycle for *source*.

    Catches all exceptions so that the caller's loop is never broken.
    After each attempt the health writer records the outcome.

    Returns:
        True if the snapshot was successful and published, False otherwise.
    """
    ok = False
    try:
        logger.debug("Retrieving data from Solax Cloud for '%s'", source.name)
        snapshot = await client.fetch(source.sn, source_id=source.source_id)
        ok = pipeline.process(source, snapshot)
    except Exception:
        logger.error("Poll cycle error for inverter '%s'", source.name, exc_info=True)

    if pipeline.aggregate is not None:
        try:
            await pipeline.refresh_aggregate()
        except Exception:
            logger.error("Aggregate refresh error", exc_info=True)

    if health is not None:
        try:
            health.record_poll(source.source_id, success=ok)
        except Exception:
            logger.warning("Failed to write health file", exc_info=True)

    return ok


def _next_delay(poll_interval_s: float, failures: int, backoff_max_s: float) -> float:
    """Seconds to sleep before the next poll.

    Flat at *poll_interval_s* unless *backoff_max_s* > 0, in which case the
    delay doubles per consecutive failure beyond the first, capped at
    ``max(backoff_max_s, poll_interval_s)``.
    """
    if backoff_max_s <= 0 or failures <= 1:
        return poll_interval_s
    return min(
        poll_interval_s * (2 ** (failures - 1)),
        max(backoff_max_s, poll_interval_s),
    )


# ---------------------------------------------------------------------------
# Loop runners
# ---------------------------------------------------------------------------


async def _poll_loop(
    *,
    source: Source,
    client: SolaxCloudClient,
    pipeline: Pipeline,
    poll_interval_s: float,
    shutdown_event: asyncio.Event,
    health: HealthWriter | None,
    backoff_max_s: float = 0,
) -> None:
    """Run the poll loop of one source until shutdown_event is set.

    Executes _poll_once, then sleeps, checking the shutdown event between
    iterations.
    """
    logger.info(
        "Poll loop started for '%s' (sn=%s, interval=%ss)",
        source.name,
        source.sn,
        poll_interval_s,
    )
    failures = 0
    while not shutdown_event.is_set():
        ok = await _poll_once(
            source=source,
            client=client,
            pipeline=pipeline,
            health=health,
        )
        failures = 0 if ok else failures + 1
        delay = _next_delay(poll_interval_s, failures, backoff_max_s)
        if delay != poll_interval_s:
            logger.warning(
                "Backoff: sleeping %.1fs before retry (consecutive failures: %d)",
                delay,
                failures,
            )
        else:
            logger.debug("Delaying for %s seconds", delay)
        # Use wait with timeout so we can check shutdown between sleeps
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(shutdown_event.wait(), timeout=delay)
    logger.info("Poll loop stopped for '%s'", source.name)


async def _guarded_serve(server: uvicorn.Server) -> bool:
    """Run *server*; a failure is logged and never reaches the poll loops.

    uvicorn raises SystemExit when it cannot bind its socket, so that is
    caught here, inside the coroutine, before it can escape the task.

    Returns:
        True if the server stopped normally, False if it failed.
    """
    try:
        await server.serve()
    except (Exception, SystemExit):
        logger.error(
            "API server failed; poll loops continue without the realtime API",
            exc_info=True,
        )
        return False
    return True


async def _serve_api(server: uvicorn.Server, shutdown_event: asyncio.Event) -> None:
    """Serve the realtime API until shutdown_event is set or the server fails."""
    task = asyncio.create_task(_guarded_serve(server))
    stop = asyncio.create_task(shutdown_event.wait())
    await asyncio.wait({task, stop}, return_when=asyncio.FIRST_COMPLETED)
    server.should_exit = True
    stop.cancel()
    if await task:
        logger.info("API server stopped")


# ---------------------------------------------------------------------------
# Concurrent runner with graceful shutdown
# ---------------------------------------------------------------------------


async def run_loops(
    *,
    sources: Sequence[Source],
    client: SolaxCloudClient,
    pipeline: Pipeline,
    poll_interval_s: float,
    shutdown_event: asyncio.Event,
    health: HealthWriter | None = None,
    backoff_max_s: float = 0,
    server: uvicorn.Server | None = None,
) -> None:
    """Run one poll loop per source (and the API server) until shutdown.

    All loops run as independent asyncio tasks via asyncio.gather().  When
    the shutdown_event is set, every loop finishes its current cycle and
    returns.
    """
    logger.info("Starting %d poll loop(s)", len(sources))

    tasks = [
        _poll_loop(
            source=source,
            client=client,
            pipeline=pipeline,
            poll_interval_s=poll_interval_s,
            shutdown_event=shutdown_event,
            health=health,
            backoff_max_s=backoff_max_s,
        )
        for source in sources
    ]
    if server is not None:
        tasks.append(_serve_api(server, shutdown_event))

    await asyncio.gather(*tasks)
    logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load config, build components, run loops.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.
    """
    from solax_edge.src.config import EdgeSettings

    settings = EdgeSettings()
    configure_logging(settings.log_level)
    log_config_summary(settings)

    import uvicorn

    from solax_edge.src.api import create_app
    from solax_edge.src.client import SolaxCloudClient
    from solax_edge.src.health import HealthWriter
    from solax_edge.src.sink import FlowStore

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    sources = build_sources(settings)
    store = FlowStore(pulse_timeout_s=settings.pulse_timeout_s)
    pipeline = Pipeline(
        sources,
        store,
        method=settings.smoothing_method,
        window=settings.smoothing_window,
        buffer_size=settings.smoothing_buffer_size,
    )
    for source in pipeline.all_sources:
        store.register(source.source_id, source.name)

    server = None
    if settings.api_enabled:
        server = uvicorn.Server(
            uvicorn.Config(
                create_app(store),
                host=settings.api_host,
                port=settings.api_port,
                log_level="warning",
            )
        )
        # Keep process signal handling here so shutdown stays predictable.
        server.install_signal_handlers = lambda: None  # type: ignore[method-assign]
        logger.info(
            "Realtime API available at http://%s:%d",
            settings.api_host,
            settings.api_port,
        )

    health = HealthWriter(settings.health_path)

    async with SolaxCloudClient(
        url=settings.cloud_url,
        token_id=settings.solax_token_id,
        timeout_s=settings.request_timeout_s,
    ) as client:
        await run_loops(
            sources=sources,
            client=client,
            pipeline=pipeline,
            poll_interval_s=settings.poll_interval_s,
            shutdown_event=shutdown_event,
            health=health,
            backoff_max_s=settings.poll_backoff_max_s,
            server=server,
        )


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event.

    Args:
        shutdown_event: The event to set for graceful shutdown.
    """
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the edge daemon."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()

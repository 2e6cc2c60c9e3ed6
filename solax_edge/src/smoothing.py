"""
Moving-average smoothing of flow sample streams.

Two layers:

- **Series functions** (:func:`simple_moving_average`,
  :func:`exponential_moving_average`) compute the full SMA/EMA series of a
  list of values.  They return an empty list when the window does not fit.
- **Incremental state** (:class:`SmoothingState`) keeps a bounded buffer of
  the most recent raw samples of one (source, flow) pair plus the last EMA,
  and produces one smoothed estimate per poll.  Insufficient data degrades
  gracefully (mean of what is available) instead of returning "no data".

:class:`SmoothingBank` is the explicit ``(source_id, flow) -> state`` map
owned by the pipeline.

All arithmetic is float64 and nothing is rounded here.  No function in this
module raises for numeric input.

CHANGELOG:
- 2026-10-19: Add SmoothingBank keyed by (source_id, flow) (STORY-006)
- 2026-10-19: Initial creation (STORY-004)

TODO:
- None
"""

from __future__ import annotations

import logging
import math
from collections import deque
from collections.abc import Iterable, Mapping, Sequence
from typing import Literal

from solax_edge.src.flows import Flow

logger = logging.getLogger(__name__)

SmoothingMethod = Literal["sma", "ema"]

DEFAULT_BUFFER_SIZE: int = 1024
"""Maximum number of raw samples kept per (source, flow)."""


# ---------------------------------------------------------------------------
# Series functions
# ---------------------------------------------------------------------------


def simple_moving_average(
    series: Sequence[float],
    window: int,
    max_calculations: int | None = None,
) -> list[float]:
    """Simple moving average of *series* over a sliding *window*.

    ``SMA = (V1 + V2 + ... + Vw) / w`` for every ``w``-wide slice, so a series
    of length ``n >= w`` yields ``n - w + 1`` values.

    Args:
        series: Values in arrival order.
        window: Window size.  ``window <= 0`` or ``window > len(series)``
            yields an empty list.
        max_calculations: Stop after this many averages (all when ``None``).

    Returns:
        The list of window means, oldest window first.
    """
    n = len(series)
    if window <= 0 or n < window:
        return []

    count = n - window + 1
    if max_calculations is not None:
        count = min(count, max(max_calculations, 0))

    return [math.fsum(series[i : i + window]) / window for i in range(count)]


def exponential_moving_average(series: Sequence[float], window: int) -> list[float]:
    """Exponential moving average of *series*.

    The first value is the SMA of the first *window* samples; every following
    value is ``EMA_t = (V_t - EMA_{t-1}) * k + EMA_{t-1}`` with
    ``k = 2 / (window + 1)``.

    Returns:
        ``len(series) - window + 1`` values, or an empty list when the window
        does not fit.
    """
    seed = simple_moving_average(series, window, max_calculations=1)
    if not seed:
        return []

    k = 2.0 / (window + 1)
    result = [seed[0]]
    for value in series[window:]:
        previous = result[-1]
        result.append((value - previous) * k + previous)
    return result


# ---------------------------------------------------------------------------
# Incremental state
# ---------------------------------------------------------------------------


class SmoothingState:
    """Bounded sample buffer and EMA memory for one (source, flow) pair.

    Samples are kept in arrival order; once ``bound`` samples are held the
    oldest one is evicted on every :meth:`feed`.  ``observed`` counts every
    sample ever fed and drives the EMA cold start.

    Args:
        bound: Maximum number of samples kept (default 1024).
    """

    __slots__ = ("_samples", "last_ema", "observed")

    def __init__(self, bound: int = DEFAULT_BUFFER_SIZE) -> None:
        self._samples: deque[float] = deque(maxlen=max(bound, 1))
        self.last_ema: float = 0.0
        self.observed: int = 0

    @property
    def bound(self) -> int:
        return self._samples.maxlen or 0

    @property
    def samples(self) -> list[float]:
        """Copy of the buffered samples, oldest first."""
        return list(self._samples)

    def __len__(self) -> int:
        return len(self._samples)

    def feed(self, value: float) -> None:
        """Append *value*, evicting the oldest sample when full."""
        self._samples.append(float(value))
        self.observed += 1

    def simple_average(self, window: int) -> float:
        """Mean of the last ``min(window, len(buffer))`` samples.

        Returns 0.0 when the buffer is empty or ``window <= 0``.
        """
        n = min(window, len(self._samples))
        if n <= 0:
            return 0.0
        tail = list(self._samples)[-n:]
        return math.fsum(tail) / n

    def exponential_average(self, window: int) -> float:
        """Incremental EMA including the most recently fed sample.

        Until *window* samples have been observed, the result is the simple
        average of what is available.  Afterwards it applies the EMA
        recurrence to the newest sample and the stored ``last_ema``.  The
        result is always stored as the new ``last_ema``.
        """
        if window <= 0 or not self._samples:
            return 0.0

        if self.observed < window:
            result = self.simple_average(window)
        else:
            k = 2.0 / (window + 1)
            result = (self._samples[-1] - self.last_ema) * k + self.last_ema

        self.last_ema = result
        return result

    def smooth(self, method: SmoothingMethod, window: int) -> float:
        """Smoothed estimate using *method* (``"sma"`` or ``"ema"``).

        The method is validated by configuration; anything other than
        ``"ema"`` is treated as ``"sma"``.
        """
        if method == "ema":
            return self.exponential_average(window)
        return self.simple_average(window)

    def __repr__(self) -> str:
        return (
            f"SmoothingState(len={len(self._samples)}, bound={self.bound}, "
            f"observed={self.observed}, last_ema={self.last_ema!r})"
        )


def feed(state: SmoothingState, value: float) -> None:
    """Append *value* to *state*'s buffer."""
    state.feed(value)


def smooth(state: SmoothingState, method: SmoothingMethod, window: int) -> float:
    """Dispatch to the SMA or EMA estimate of *state*."""
    return state.smooth(method, window)


# ---------------------------------------------------------------------------
# (source_id, flow) map
# ---------------------------------------------------------------------------


class SmoothingBank:
    """Smoothing states keyed by ``(source_id, flow)``.

    States are created up front for every source/flow pair handed to the
    constructor and live for the whole process.

    Args:
        source_ids: Sources to create states for (including the aggregate).
        flows: Flows smoothed for each source.
        bound: Buffer bound for every state.
    """

    def __init__(
        self,
        source_ids: Iterable[str],
        flows: Iterable[Flow],
        bound: int = DEFAULT_BUFFER_SIZE,
    ) -> None:
        flow_list = tuple(flows)
        self._bound = bound
        self._states: dict[tuple[str, Flow], SmoothingState] = {
            (source_id, flow): SmoothingState(bound)
            for source_id in source_ids
            for flow in flow_list
        }

    def __len__(self) -> int:
        return len(self._states)

    def state(self, source_id: str, flow: Flow) -> SmoothingState:
        """Return the state of one pair.

        Raises:
            KeyError: If the pair was not registered at construction.
        """
        return self._states[(source_id, flow)]

    def feed_and_smooth(
        self,
        source_id: str,
        values: Mapping[Flow, float],
        method: SmoothingMethod,
        window: int,
    ) -> dict[Flow, float]:
        """Feed every registered flow in *values* and return the smoothed view.

        Flows of *values* without a registered state are skipped.
        """
        smoothed: dict[Flow, float] = {}
        for flow, value in values.items():
            state = self._states.get((source_id, flow))
            if state is None:
                continue
            state.feed(value)
            smoothed[flow] = state.smooth(method, window)
            logger.debug(
                "Smoothed %s/%s (method=%s, window=%d, raw=%s, smoothed=%s)",
                source_id,
                flow,
                method,
                window,
                value,
                smoothed[flow],
            )
        return smoothed

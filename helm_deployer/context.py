"""Utilities for context tracing of deploy steps."""

from collections import defaultdict
import contextvars
from contextlib import contextmanager
import logging
from time import perf_counter
from typing import Generator


_LOGGER = logging.getLogger(__name__)

__all__ = [
    "trace_context",
    "get_trace_collector",
    "TraceCollector",
]


class TraceCollector:
    """Accumulates the time spent in each traced step."""

    def __init__(self) -> None:
        """Initialize TraceCollector."""
        self.timings: dict[str, float] = defaultdict(float)
        self.counts: dict[str, int] = defaultdict(int)

    def add(self, name: str, duration: float) -> None:
        """Record a completed step."""
        self.timings[name] += duration
        self.counts[name] += 1


trace: contextvars.ContextVar[list[str]] = contextvars.ContextVar("trace")
_collector: contextvars.ContextVar[TraceCollector | None] = contextvars.ContextVar(
    "trace_collector", default=None
)


@contextmanager
def get_trace_collector() -> Generator[TraceCollector, None, None]:
    """Collect timings for all traces started within the context."""
    collector = TraceCollector()
    token = _collector.set(collector)
    try:
        yield collector
    finally:
        _collector.reset(token)


@contextmanager
def trace_context(name: str) -> Generator[None, None, None]:
    stack = trace.get([])
    token = trace.set(stack + [name])
    label = " > ".join(stack + [name])
    t1 = perf_counter()
    _LOGGER.debug("[Trace] > %s", label)
    try:
        yield
    finally:
        t2 = perf_counter()
        trace.reset(token)
        _LOGGER.debug("[Trace] < %s (%0.2fs)", label, (t2 - t1))
        if (collector := _collector.get()) is not None:
            collector.add(label, t2 - t1)

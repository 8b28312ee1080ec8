"""Tests for context tracing."""

import pytest

from helm_deployer.context import get_trace_collector, trace_context


def test_trace_collector() -> None:
    """Test nested traces are recorded with their full label."""
    with get_trace_collector() as collector:
        with trace_context("Deploy"):
            with trace_context("Release 'app'"):
                pass
            with trace_context("Release 'app'"):
                pass

    assert set(collector.timings) == {"Deploy", "Deploy > Release 'app'"}
    assert collector.counts["Deploy"] == 1
    assert collector.counts["Deploy > Release 'app'"] == 2


def test_trace_recorded_on_error() -> None:
    """Test a trace is recorded when the step raises."""
    with get_trace_collector() as collector:
        with pytest.raises(ValueError):
            with trace_context("Release 'app'"):
                raise ValueError("failed")
    assert collector.counts["Release 'app'"] == 1


def test_trace_without_collector() -> None:
    """Test tracing outside of a collector."""
    with get_trace_collector() as collector:
        pass
    with trace_context("Release 'app'"):
        pass
    assert not collector.timings

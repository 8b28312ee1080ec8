"""Test fixtures for helm-deployer."""

from collections.abc import Generator
import logging

import pytest

from helm_deployer import command, context

_LOGGER = logging.getLogger(__name__)

HELM_BIN = "helm"

# Global collector for the whole session
SESSION_COLLECTOR = context.TraceCollector()


class FakeRunner(command.Runner):
    """A runner that returns canned output for each helm argument vector.

    The helm binary is stripped from the recorded commands. Commands without a
    canned response succeed with empty output.
    """

    def __init__(self) -> None:
        """Initialize FakeRunner."""
        self.calls: list[list[str]] = []
        self._outputs: dict[tuple[str, ...], str] = {}
        self._failures: dict[tuple[str, ...], int | None] = {}

    def respond(self, args: list[str], output: str) -> None:
        """Return the output when the args are run."""
        self._outputs[tuple(args)] = output

    def fail(self, args: list[str], times: int | None = None) -> None:
        """Fail the command when the args are run, or only the first times."""
        self._failures[tuple(args)] = times

    async def run(self, cmd: command.Command) -> str:
        """Record the command and return the canned output."""
        assert cmd.cmd[0] == HELM_BIN
        args = cmd.cmd[1:]
        self.calls.append(args)
        key = tuple(args)
        if key in self._failures:
            remaining = self._failures[key]
            if remaining is not None:
                if remaining <= 0:
                    return self._outputs.get(key, "")
                self._failures[key] = remaining - 1
            raise cmd.exc(f"Command '{cmd}' failed with return code 1")
        return self._outputs.get(key, "")

    def verbs(self) -> list[str]:
        """Return the first argument of each command that was run."""
        return [call[0] for call in self.calls]


@pytest.fixture(name="runner")
def runner_fixture() -> FakeRunner:
    """Fixture for a fake helm runner."""
    return FakeRunner()


@pytest.fixture(autouse=True)
def trace_capture() -> Generator[None, None, None]:
    """Capture traces for each test and add them to the session collector."""
    with context.get_trace_collector() as collector:
        yield
        for name, duration in collector.timings.items():
            SESSION_COLLECTOR.add(name, duration)


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    """Log the trace summary at the end of the session."""
    if not SESSION_COLLECTOR.timings:
        return
    for name, duration in sorted(
        SESSION_COLLECTOR.timings.items(), key=lambda x: x[1], reverse=True
    ):
        count = SESSION_COLLECTOR.counts[name]
        _LOGGER.debug("%s: %0.2fs (count: %d)", name, duration, count)

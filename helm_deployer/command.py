"""Library for issuing commands using asyncio and returning the result.

The deployer never creates processes directly. It hands a `Command` to a
`Runner`, which makes it possible to swap in a fake runner that returns canned
output for each argument vector.
"""

import asyncio
from abc import ABC, abstractmethod
import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
import os

from .exceptions import CommandException

_LOGGER = logging.getLogger(__name__)

_CONCURRENCY = 20
_SEM = asyncio.Semaphore(_CONCURRENCY)


__all__ = [
    "Command",
    "Runner",
    "CommandRunner",
    "run",
]


def format_path(path: Path) -> str:
    """Format path for debugging."""
    if path.is_absolute():
        cwd = Path.cwd()
        if path.is_relative_to(cwd):
            rel_path = str(path.relative_to(cwd))
            return f"{rel_path} (abs)"
    return str(path)


@dataclass
class Command:
    """An instance of a command to run."""

    cmd: list[str]
    """Array of command line arguments."""

    cwd: Path | None = None
    """Current working directory."""

    exc: type[CommandException] = CommandException
    """Exception to throw in case of an error."""

    env: dict[str, str] | None = None
    """Environment variables for the subprocess."""

    timeout: float | None = None
    """Seconds to wait for the command before it is killed, or forever."""

    @property
    def string(self) -> str:
        """Render the command as a single string."""
        return " ".join([shlex.quote(arg) for arg in self.cmd])

    def __str__(self) -> str:
        """Render as a debug string."""
        cwd: str = ""
        if self.cwd:
            cwd = f"({format_path(self.cwd)}) "
        return f"{cwd}{self.string}"

    async def _communicate(self) -> tuple[int | None, bytes]:
        env = {
            **os.environ,
            **(self.env if self.env else {}),
        }
        proc = await asyncio.create_subprocess_exec(
            *self.cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            cwd=self.cwd,
            env=env,
        )
        try:
            out, _ = await proc.communicate()
        except asyncio.CancelledError:
            _LOGGER.debug("Killing cancelled command: %s", self)
            proc.kill()
            await proc.wait()
            raise
        return proc.returncode, out

    async def run(self) -> bytes:
        """Run the command, returning combined stdout and stderr."""
        _LOGGER.debug("Running command: %s", self)
        try:
            returncode, out = await asyncio.wait_for(
                self._communicate(), self.timeout
            )
        except asyncio.TimeoutError as err:
            raise self.exc(f"Command '{self}' timed out") from err
        except OSError as err:
            raise self.exc(f"Command '{self}' could not be started: {err}") from err
        if returncode:
            errors = [f"Command '{self}' failed with return code {returncode}"]
            if out:
                errors.append(out.decode("utf-8", errors="replace"))
            _LOGGER.debug("\n".join(errors))
            raise self.exc("\n".join(errors))
        return out


async def run(cmd: Command) -> str:
    """Run the specified command and return its output."""
    async with _SEM:
        out = await cmd.run()
    return out.decode("utf-8", errors="replace") if out else ""


class Runner(ABC):
    """Capability that executes an argument vector and returns its output."""

    @abstractmethod
    async def run(self, cmd: Command) -> str:
        """Execute the command and return the combined output.

        Raises the exception type configured on the command when it fails.
        """


class CommandRunner(Runner):
    """A runner that spawns real processes."""

    async def run(self, cmd: Command) -> str:
        """Execute the command and return the combined output."""
        return await run(cmd)

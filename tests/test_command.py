"""Tests for command library."""

import asyncio
from pathlib import Path

import pytest

from helm_deployer.command import Command, CommandRunner, run
from helm_deployer.exceptions import CommandException, HelmException


async def test_command() -> None:
    """Test stdout parsing of a command."""
    result = await run(Command(["echo", "Hello"]))
    assert result == "Hello\n"


async def test_combined_output() -> None:
    """Test that stderr is included in the command output."""
    result = await run(Command(["sh", "-c", "echo out; echo err >&2"]))
    assert result == "out\nerr\n"


async def test_failed_command() -> None:
    """Test a failing command."""
    with pytest.raises(CommandException, match="return code 1"):
        await run(Command(["/bin/false"]))


async def test_failed_command_exception_type() -> None:
    """Test a failing command raises the configured exception."""
    with pytest.raises(HelmException, match="Error: release not found"):
        await run(
            Command(
                ["sh", "-c", "echo 'Error: release not found' >&2; exit 1"],
                exc=HelmException,
            )
        )


async def test_invalid_utf8_output() -> None:
    """Test output that is not valid utf-8 is replaced instead of failing."""
    result = await run(Command(["sh", "-c", "printf 'ok \\377\\n'"]))
    assert result == "ok \ufffd\n"


async def test_invalid_utf8_failure() -> None:
    """Test a failing command with invalid utf-8 output raises the command error."""
    with pytest.raises(HelmException, match="return code 1"):
        await run(
            Command(
                ["sh", "-c", "printf '\\377\\n'; exit 1"],
                exc=HelmException,
            )
        )


async def test_missing_binary() -> None:
    """Test a command that does not exist."""
    with pytest.raises(CommandException, match="could not be started"):
        await run(Command(["/does/not/exist/helm"]))


async def test_timeout() -> None:
    """Test a command that takes longer than the timeout."""
    with pytest.raises(CommandException, match="timed out"):
        await run(Command(["sleep", "5"], timeout=0.1))


async def test_cancel() -> None:
    """Test that cancelling a running command propagates the cancellation."""
    task = asyncio.create_task(run(Command(["sleep", "5"])))
    await asyncio.sleep(0.1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


async def test_command_runner(tmp_path: Path) -> None:
    """Test the runner runs the command in the working directory."""
    runner = CommandRunner()
    result = await runner.run(Command(["pwd"], cwd=tmp_path))
    assert result.strip() == str(tmp_path.resolve())

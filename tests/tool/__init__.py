"""Test helpers for helm-deployer tools."""

from pathlib import Path

from helm_deployer.command import Command, run

HELM_DEPLOYER_BIN = "helm-deployer"


async def run_command(args: list[str], cwd: Path | None = None) -> str:
    return await run(Command([HELM_DEPLOYER_BIN] + args, cwd=cwd))

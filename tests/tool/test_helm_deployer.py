"""Tests for the helm-deployer command line tool."""

from pathlib import Path

import pytest

from helm_deployer.exceptions import CommandException

from . import run_command


@pytest.fixture(name="chart_config")
def chart_config_fixture(tmp_path: Path) -> Path:
    """Fixture that creates a local chart and a config that deploys it."""
    chart = tmp_path / "charts" / "app"
    (chart / "templates").mkdir(parents=True)
    (chart / "Chart.yaml").write_text("apiVersion: v2\nname: app\nversion: 0.1.0\n")
    (chart / "templates" / "service.yaml").write_text("kind: Service\n")
    config = tmp_path / "helm-deploy.yaml"
    config.write_text(
        "releases:\n"
        "- name: app\n"
        "  chartPath: charts/app\n"
        "  valuesFiles:\n"
        "  - values/app.yaml\n"
    )
    return config


@pytest.mark.parametrize("command", ["dependencies", "deps"])
async def test_dependencies(chart_config: Path, command: str) -> None:
    """Test listing the files the releases depend on."""
    result = await run_command([command], cwd=chart_config.parent)
    assert result.splitlines() == [
        "charts/app/Chart.yaml",
        "charts/app/templates/service.yaml",
        "values/app.yaml",
    ]


async def test_config_flag(chart_config: Path, tmp_path: Path) -> None:
    """Test passing the config file path explicitly."""
    result = await run_command(
        ["dependencies", "--config", str(chart_config)], cwd=tmp_path
    )
    assert "charts/app/Chart.yaml" in result.splitlines()


async def test_missing_config(tmp_path: Path) -> None:
    """Test the tool exits with an error when the config does not exist."""
    with pytest.raises(CommandException, match="helm-deployer error"):
        await run_command(["dependencies", "--config", "missing.yaml"], cwd=tmp_path)


async def test_invalid_config(tmp_path: Path) -> None:
    """Test the tool exits with an error for an invalid release."""
    (tmp_path / "helm-deploy.yaml").write_text("releases:\n- name: app\n")
    with pytest.raises(CommandException, match="missing chartPath"):
        await run_command(["dependencies"], cwd=tmp_path)

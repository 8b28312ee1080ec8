"""Command line tool for deploying releases with built images."""

import logging
import pathlib
from argparse import (
    ArgumentParser,
    BooleanOptionalAction,
    _SubParsersAction as SubParsersAction,
)
from typing import Any, cast

from helm_deployer.helm import HelmDeployer
from helm_deployer.manifest import read_builds

from . import options
from .format import PrintFormatter, YamlFormatter

_LOGGER = logging.getLogger(__name__)


class DeployAction:
    """Deploy every release with the built images."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "deploy",
                help="Install or upgrade releases with built images",
                description=(
                    "Install or upgrade every release in the configuration, "
                    "binding the built images to the chart values."
                ),
            ),
        )
        options.add_config_flags(args)
        options.add_cluster_flags(args)
        args.add_argument(
            "--build-artifacts",
            "-a",
            help="Yaml file with a list of built images with `imageName` and `tag`",
            type=pathlib.Path,
            default=None,
        )
        args.add_argument(
            "--force",
            default=False,
            action=BooleanOptionalAction,
            help="Pass --force when upgrading releases",
        )
        args.add_argument(
            "--output",
            "-o",
            choices=["table", "yaml"],
            default="table",
            help="Output format of the deployed objects",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        config: pathlib.Path,
        build_artifacts: pathlib.Path | None,
        output: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        helm_config = await options.load_config(config)
        builds = await read_builds(build_artifacts) if build_artifacts else []
        deployer = HelmDeployer(helm_config, options.build_options(**kwargs))
        result = await deployer.deploy(builds)

        if output == "yaml":
            YamlFormatter().print(
                {
                    "namespaces": result.namespaces,
                    "labels": result.labels,
                    "artifacts": [artifact.to_dict() for artifact in result.artifacts],
                }
            )
            return
        PrintFormatter(["namespace", "kind", "name"]).print(
            [artifact.to_dict() for artifact in result.artifacts]
        )

"""Command line tool for listing the files releases depend on."""

import logging
import pathlib
from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
from typing import cast

from helm_deployer.helm import HelmDeployer

from . import options

_LOGGER = logging.getLogger(__name__)


class DependenciesAction:
    """Print the files that trigger a new deploy when changed."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "dependencies",
                aliases=["deps"],
                help="Print the files the releases depend on",
                description=(
                    "Print the values files and local chart files used by the "
                    "releases, one per line in sorted order."
                ),
            ),
        )
        options.add_config_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        config: pathlib.Path,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        helm_config = await options.load_config(config)
        for dep in HelmDeployer(helm_config).dependencies():
            print(dep)

"""Command line tool for deleting deployed releases."""

import logging
import pathlib
from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
from typing import cast

from helm_deployer.helm import HelmDeployer

from . import options

_LOGGER = logging.getLogger(__name__)


class DeleteAction:
    """Delete every release in the configuration."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "delete",
                help="Delete the releases from the cluster",
                description="Delete every release in the configuration.",
            ),
        )
        options.add_config_flags(args)
        options.add_cluster_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        config: pathlib.Path,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        helm_config = await options.load_config(config)
        deployer = HelmDeployer(helm_config, options.build_options(**kwargs))
        await deployer.cleanup()
        _LOGGER.info("Deleted %d releases", len(helm_config.releases))

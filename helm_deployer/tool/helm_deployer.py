"""Command line tool for deploying helm releases with built images."""

import argparse
import asyncio
import logging
import sys
import traceback

from helm_deployer.exceptions import DeployerException
from . import delete, dependencies, deploy

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for deploying helm releases.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    deploy.DeployAction.register(subparsers)
    dependencies.DependenciesAction.register(subparsers)
    delete.DeleteAction.register(subparsers)
    return parser


def main() -> None:
    """helm-deployer command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args()

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except DeployerException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("helm-deployer error: ", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

"""Library for common command line flags."""

from argparse import ArgumentParser
import logging
import pathlib
from typing import Any

from helm_deployer.helm import DeployOptions
from helm_deployer.manifest import HelmDeployConfig, read_config

_LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG = "helm-deploy.yaml"


def add_config_flags(args: ArgumentParser) -> None:
    """Add flags for the release configuration file."""
    args.add_argument(
        "--config",
        help="Path to the yaml file with the releases to deploy",
        type=pathlib.Path,
        default=pathlib.Path(DEFAULT_CONFIG),
    )


def add_cluster_flags(args: ArgumentParser) -> None:
    """Add flags for the cluster that releases are deployed to."""
    args.add_argument(
        "--kube-context",
        help="The kubeconfig context passed on to helm",
        type=str,
        default=None,
    )
    args.add_argument(
        "--kubeconfig",
        help="The kubeconfig file passed on to helm",
        type=str,
        default=None,
    )
    args.add_argument(
        "--namespace",
        "-n",
        help="Deploy all releases to this namespace",
        type=str,
        default=None,
    )


def build_options(**kwargs: Any) -> DeployOptions:
    """Build the deploy options from command line arguments."""
    return DeployOptions(
        kube_context=kwargs.get("kube_context"),
        kube_config=kwargs.get("kubeconfig"),
        namespace=kwargs.get("namespace"),
        force=kwargs.get("force", False),
    )


async def load_config(config: pathlib.Path) -> HelmDeployConfig:
    """Read the release configuration file."""
    _LOGGER.debug("Loading releases from %s", config)
    return await read_config(config)

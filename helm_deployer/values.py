"""Module for binding built images to chart values.

Each release declares chart parameters that receive a built image, e.g.
`image: gcr.io/project/app`. The parameter is bound to the build artifact with
that image name and set on the command line with `--set-string`. How the tag
is written depends on the release image strategy:

  - no convention: `image=gcr.io/project/app:v1@sha256:...`
  - helm convention: `image.repository=gcr.io/project/app,image.tag=v1@sha256:...`
  - explicit registry: `image.registry=gcr.io,image.repository=project/app,image.tag=...`
"""

from collections.abc import Iterable
import logging

from .exceptions import HelmException, InputException
from .image import parse_reference
from .manifest import BuildArtifact, HelmConventionConfig

__all__ = [
    "ValuesSetTracker",
    "env_var_for_image",
    "build_env_map",
    "pair_params_to_artifacts",
    "image_set_from_config",
]

_LOGGER = logging.getLogger(__name__)


class ValuesSetTracker:
    """Records every value passed to helm with `--set` style arguments.

    This is shared across all releases of a deploy and used afterwards to
    find images that were built but never referenced by any release.
    """

    def __init__(self) -> None:
        """Initialize ValuesSetTracker."""
        self._values: set[str] = set()

    def add(self, value: str) -> None:
        """Record that the value was set on the command line."""
        self._values.add(value)

    def __contains__(self, value: object) -> bool:
        return value in self._values

    def __len__(self) -> int:
        return len(self._values)

    def unused(self, builds: Iterable[BuildArtifact]) -> list[BuildArtifact]:
        """Return the builds whose tag was never set."""
        return [build for build in builds if build.tag not in self._values]


def env_var_for_image(image_name: str, digest: str) -> dict[str, str]:
    """Return the template variables describing a single built image.

    The tag is exposed as `DIGEST` for compatibility. `DIGEST_ALGO` and
    `DIGEST_HEX` split the tag on the first colon.
    """
    env = {
        "IMAGE_NAME": image_name,
        "DIGEST": digest,
    }
    if not digest:
        return env
    algo, sep, hex_value = digest.partition(":")
    if sep:
        env["DIGEST_ALGO"] = algo
        env["DIGEST_HEX"] = hex_value
    else:
        env["DIGEST_HEX"] = digest
    return env


def build_env_map(builds: list[BuildArtifact]) -> dict[str, str]:
    """Return the template variables for all builds.

    The first build uses the plain names and each later build appends its
    position to the names, e.g. `IMAGE_NAME2` for the second build.
    """
    env: dict[str, str] = {}
    for idx, build in enumerate(builds):
        suffix = str(idx + 1) if idx > 0 else ""
        for key, value in env_var_for_image(build.image_name, build.tag).items():
            env[f"{key}{suffix}"] = value
    _LOGGER.debug("Template environment: %s", env)
    return env


def pair_params_to_artifacts(
    builds: list[BuildArtifact], params: dict[str, str]
) -> dict[str, BuildArtifact]:
    """Associate each chart parameter with the build of its image."""
    image_to_build = {build.image_name: build for build in builds}
    param_to_build: dict[str, BuildArtifact] = {}
    for param, image_name in params.items():
        if (build := image_to_build.get(image_name)) is None:
            raise HelmException(f"no build present for {image_name}")
        param_to_build[param] = build
    return param_to_build


def image_set_from_config(
    cfg: HelmConventionConfig | None, value_name: str, tag: str
) -> str:
    """Return the `--set-string` value binding the tag to the chart parameter."""
    if cfg is None:
        return f"{value_name}={tag}"

    try:
        ref = parse_reference(tag)
    except InputException as err:
        raise HelmException(f"cannot parse the image reference {tag}: {err}") from err

    image_tag = f"{ref.tag}@{ref.digest}" if ref.digest else ref.tag

    if cfg.explicit_registry:
        if not ref.domain:
            raise HelmException(f"image reference {tag} has no domain")
        return (
            f"{value_name}.registry={ref.domain},"
            f"{value_name}.repository={ref.path},"
            f"{value_name}.tag={image_tag}"
        )

    return f"{value_name}.repository={ref.base_name},{value_name}.tag={image_tag}"

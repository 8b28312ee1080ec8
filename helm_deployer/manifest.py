"""Representation of the helm deploy configuration and its results.

The configuration is a YAML document with a list of `releases` to deploy and
optional extra `flags` passed to the helm binary, for example:

```yaml
releases:
- name: "{{.USER}}-app"
  chartPath: charts/app
  namespace: apps
  values:
    image: gcr.io/project/app
  setValueTemplates:
    image.digest: "{{.DIGEST_HEX}}"
  valuesFiles:
  - ~/overrides/values.yaml
  imageStrategy:
    helm:
      explicitRegistry: true
flags:
  upgrade: ["--atomic"]
```

Build artifacts are supplied per deploy as a list of image names and the
tags that were produced for them.
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any

import aiofiles
import yaml
from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

from .exceptions import InputException

__all__ = [
    "read_config",
    "read_builds",
    "BuildArtifact",
    "DeployedArtifact",
    "HelmConventionConfig",
    "HelmDeployConfig",
    "HelmFlags",
    "HelmRelease",
    "ImageStrategy",
    "PackageConfig",
]

_LOGGER = logging.getLogger(__name__)


def _str_list(doc: dict[str, Any], key: str) -> list[str]:
    """Return a list of strings from the document or raise if malformed."""
    value = doc.get(key) or []
    if not isinstance(value, list):
        raise InputException(f"Expected '{key}' to be a list, found {type(value)}")
    return [str(item) for item in value]


def _str_dict(doc: dict[str, Any], key: str) -> dict[str, str]:
    """Return a string mapping from the document or raise if malformed."""
    value = doc.get(key) or {}
    if not isinstance(value, dict):
        raise InputException(f"Expected '{key}' to be a mapping, found {type(value)}")
    return {str(k): str(v) for k, v in value.items()}


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass
class BuildArtifact(BaseManifest):
    """An image that was built, identified by name and its resolved tag."""

    image_name: str = field(metadata=field_options(alias="imageName"))
    """The image name as referenced by the release values."""

    tag: str
    """The fully qualified tag, possibly with a digest e.g. `img:v1@sha256:abc`."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "BuildArtifact":
        """Parse a BuildArtifact from a raw object."""
        if not (image_name := doc.get("imageName")):
            raise InputException(f"Invalid build artifact missing imageName: {doc}")
        if not (tag := doc.get("tag")):
            raise InputException(f"Invalid build artifact missing tag: {doc}")
        return cls(image_name=str(image_name), tag=str(tag))


@dataclass
class DeployedArtifact(BaseManifest):
    """A kubernetes object reported by helm as part of a deployed release."""

    namespace: str
    """The namespace the release was deployed into, may be empty."""

    kind: str
    """The kind of the object."""

    name: str
    """The name of the object."""

    api_version: str = field(metadata=field_options(alias="apiVersion"))
    """The apiVersion of the object."""


@dataclass
class PackageConfig(BaseManifest):
    """Packages the chart into an archive with a specific version before deploying."""

    version: str | None = None
    """Template for the chart version set in the archive."""

    app_version: str | None = field(
        metadata=field_options(alias="appVersion"), default=None
    )
    """Template for the application version set in the archive."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "PackageConfig":
        """Parse a PackageConfig from the `packaged` release field."""
        return cls(
            version=doc.get("version"),
            app_version=doc.get("appVersion"),
        )


@dataclass
class HelmConventionConfig(BaseManifest):
    """Sets image values as `<param>.repository` and `<param>.tag` chart values."""

    explicit_registry: bool = field(
        metadata=field_options(alias="explicitRegistry"), default=False
    )
    """Also set `<param>.registry` with the domain of the image."""


@dataclass
class ImageStrategy(BaseManifest):
    """How built images are bound to chart values.

    Without a helm convention the full tag is set as the parameter value.
    """

    helm: HelmConventionConfig | None = None
    """The helm convention, if configured."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ImageStrategy":
        """Parse an ImageStrategy from the `imageStrategy` release field."""
        if "helm" in doc and "fqn" in doc:
            raise InputException(
                f"Invalid imageStrategy, only one of helm or fqn may be set: {doc}"
            )
        if "helm" not in doc:
            return cls()
        helm = doc.get("helm") or {}
        return cls(
            helm=HelmConventionConfig(
                explicit_registry=bool(helm.get("explicitRegistry", False))
            )
        )


@dataclass
class HelmRelease(BaseManifest):
    """A declarative description of a helm release to install or upgrade."""

    name: str
    """Template for the name of the release."""

    chart_path: str = field(metadata=field_options(alias="chartPath"))
    """Local path to the chart, or a chart reference in a repository when remote."""

    values_files: list[str] = field(
        metadata=field_options(alias="valuesFiles"), default_factory=list
    )
    """Values files passed with `-f`, may be templates and use `~`."""

    values: dict[str, str] = field(default_factory=dict)
    """Chart parameter names mapped to the image name bound to them."""

    namespace: str | None = None
    """The namespace to deploy the release to."""

    version: str | None = None
    """The chart version, only used for charts deployed from a repository."""

    set_values: dict[str, str] = field(
        metadata=field_options(alias="setValues"), default_factory=dict
    )
    """Literal values passed with `--set`."""

    set_value_templates: dict[str, str] = field(
        metadata=field_options(alias="setValueTemplates"), default_factory=dict
    )
    """Values passed with `--set` after expanding them with image variables."""

    set_files: dict[str, str] = field(
        metadata=field_options(alias="setFiles"), default_factory=dict
    )
    """Values read from files, passed with `--set-file`."""

    wait: bool = False
    """Wait for the release resources to become ready."""

    recreate_pods: bool = field(
        metadata=field_options(alias="recreatePods"), default=False
    )
    """Recreate pods when upgrading the release."""

    skip_build_dependencies: bool = field(
        metadata=field_options(alias="skipBuildDependencies"), default=False
    )
    """Do not run `helm dep build` before deploying."""

    use_helm_secrets: bool = field(
        metadata=field_options(alias="useHelmSecrets"), default=False
    )
    """Run the install through the helm secrets plugin."""

    remote: bool = False
    """The chart is in a repository and not on the local filesystem."""

    overrides: dict[str, Any] = field(default_factory=dict)
    """Arbitrary values written to a temporary values file."""

    packaged: PackageConfig | None = None
    """Package the chart before deploying it."""

    image_strategy: ImageStrategy = field(
        metadata=field_options(alias="imageStrategy"), default_factory=ImageStrategy
    )
    """How built images are bound to chart values."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "HelmRelease":
        """Parse a HelmRelease from a raw release object."""
        if not (name := doc.get("name")):
            raise InputException(f"Invalid release missing name: {doc}")
        if not (chart_path := doc.get("chartPath")):
            raise InputException(f"Invalid release {name} missing chartPath: {doc}")
        overrides = doc.get("overrides") or {}
        if not isinstance(overrides, dict):
            raise InputException(f"Invalid release {name} overrides: {overrides}")
        packaged: PackageConfig | None = None
        if (packaged_doc := doc.get("packaged")) is not None:
            packaged = PackageConfig.parse_doc(packaged_doc or {})
        return cls(
            name=str(name),
            chart_path=str(chart_path),
            values_files=_str_list(doc, "valuesFiles"),
            values=_str_dict(doc, "values"),
            namespace=doc.get("namespace"),
            version=doc.get("version"),
            set_values=_str_dict(doc, "setValues"),
            set_value_templates=_str_dict(doc, "setValueTemplates"),
            set_files=_str_dict(doc, "setFiles"),
            wait=bool(doc.get("wait", False)),
            recreate_pods=bool(doc.get("recreatePods", False)),
            skip_build_dependencies=bool(doc.get("skipBuildDependencies", False)),
            use_helm_secrets=bool(doc.get("useHelmSecrets", False)),
            remote=bool(doc.get("remote", False)),
            overrides=overrides,
            packaged=packaged,
            image_strategy=ImageStrategy.parse_doc(doc.get("imageStrategy") or {}),
        )

    @property
    def convention(self) -> HelmConventionConfig | None:
        """The helm image convention, or None to set the full tag."""
        return self.image_strategy.helm


@dataclass
class HelmFlags(BaseManifest):
    """Additional flags passed on to helm."""

    global_flags: list[str] = field(
        metadata=field_options(alias="global"), default_factory=list
    )
    """Flags added to every helm invocation except `version`."""

    install: list[str] = field(default_factory=list)
    """Flags added to `helm install`."""

    upgrade: list[str] = field(default_factory=list)
    """Flags added to `helm upgrade`."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "HelmFlags":
        """Parse HelmFlags from the `flags` field."""
        return cls(
            global_flags=_str_list(doc, "global"),
            install=_str_list(doc, "install"),
            upgrade=_str_list(doc, "upgrade"),
        )


@dataclass
class HelmDeployConfig(BaseManifest):
    """The set of releases deployed together."""

    releases: list[HelmRelease] = field(default_factory=list)
    """Releases in the order they are deployed."""

    flags: HelmFlags = field(default_factory=HelmFlags)
    """Additional flags passed on to helm."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "HelmDeployConfig":
        """Parse the deploy configuration document."""
        if not isinstance(doc, dict):
            raise InputException(f"Invalid helm deploy config: {doc}")
        releases = doc.get("releases") or []
        if not isinstance(releases, list):
            raise InputException(f"Invalid helm deploy config releases: {releases}")
        return cls(
            releases=[HelmRelease.parse_doc(release) for release in releases],
            flags=HelmFlags.parse_doc(doc.get("flags") or {}),
        )


async def _read_yaml(path: Path) -> Any:
    """Read and parse a YAML file."""
    try:
        async with aiofiles.open(str(path)) as yaml_file:
            content = await yaml_file.read()
    except OSError as err:
        raise InputException(f"Unable to read {path}: {err}") from err
    try:
        return yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse {path} as yaml: {err}") from err


async def read_config(config_path: Path) -> HelmDeployConfig:
    """Return the helm deploy configuration stored in the file."""
    doc = await _read_yaml(config_path)
    if not doc:
        raise InputException(f"Helm deploy config file {config_path} is empty")
    _LOGGER.debug("Read helm deploy config %s", config_path)
    return HelmDeployConfig.parse_doc(doc)


async def read_builds(builds_path: Path) -> list[BuildArtifact]:
    """Return the build artifacts stored in the file.

    The file contains either a list of `{imageName, tag}` objects or an object
    with a `builds` key holding that list.
    """
    doc = await _read_yaml(builds_path)
    if isinstance(doc, dict):
        doc = doc.get("builds")
    if not doc:
        return []
    if not isinstance(doc, list):
        raise InputException(f"Invalid build artifacts file {builds_path}: {doc}")
    return [BuildArtifact.parse_doc(build) for build in doc]

"""Library for deploying helm releases with freshly built images.

A `HelmDeployer` installs or upgrades every release in a `HelmDeployConfig`,
binding the built images into the chart values:

```python
from helm_deployer.helm import HelmDeployer
from helm_deployer.manifest import BuildArtifact, read_config

config = await read_config(Path("helm-deploy.yaml"))
deployer = HelmDeployer(config)
result = await deployer.deploy(
    [BuildArtifact(image_name="gcr.io/project/app", tag="gcr.io/project/app:v1")]
)
for artifact in result.artifacts:
    print(f"Deployed {artifact.kind} {artifact.namespace}/{artifact.name}")
```

Each release is deployed by issuing a sequence of helm commands:
  - `helm get` to decide between `helm install` and `helm upgrade`
  - `helm dep build` for local charts
  - `helm package` when the release asks for a packaged chart
  - `helm install` or `helm upgrade` with all values
  - `helm get` again to find the objects that were deployed

Deploying stops at the first release that fails. Releases deployed before it
are left in place.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
import logging
import os
from pathlib import Path
import re
import tempfile

import aiofiles
import aiofiles.os
import yaml

from . import command
from .context import trace_context
from .exceptions import (
    CommandException,
    DeployerException,
    HelmException,
    InputException,
    TemplateException,
)
from .manifest import BuildArtifact, DeployedArtifact, HelmDeployConfig, HelmRelease
from .template import expand
from .values import (
    ValuesSetTracker,
    build_env_map,
    image_set_from_config,
    pair_params_to_artifacts,
)
from .version import BinaryVersion, parse_version_output

__all__ = [
    "HelmDeployer",
    "DeployOptions",
    "DeployResult",
    "ReleaseResult",
    "InstallOptions",
    "install_args",
    "get_args",
    "parse_release_info",
]

_LOGGER = logging.getLogger(__name__)


HELM_BIN = "helm"

# Overrides are written to this file in the working directory for the
# duration of a single install.
OVERRIDES_FILENAME = "helm-deployer-overrides.yaml"

DEPLOYER_LABEL = "helm-deployer/deployer"

CHART_DEPS_DIR = "charts"

_PACKAGE_TMP_PREFIX = "helm-deployer"
_HELM3_MAJOR = 3
_DOC_SEPARATOR_RE = re.compile(r"^---[ \t]*$", re.MULTILINE)
_UNUSED_IMAGE_HELP = (
    "Set the image with `values`, `setValues` or `setValueTemplates` on a "
    "release so the chart templates can use the built tag."
)


@dataclass
class DeployOptions:
    """Options for the cluster and environment that releases are deployed to."""

    kube_context: str | None = None
    """Value of the helm --kube-context flag."""

    kube_config: str | None = None
    """Value of the helm --kubeconfig flag."""

    namespace: str | None = None
    """Namespace for all releases, takes precedence over the release namespace."""

    force: bool = False
    """Pass --force when upgrading releases."""

    work_dir: Path | None = None
    """Directory where the overrides values file is written, defaults to cwd."""

    package_tmp_dir: Path | None = None
    """Destination of packaged charts, a new temporary directory when unset."""

    helm_bin: str = HELM_BIN
    """The helm binary to run."""


@dataclass
class InstallOptions:
    """Options for a single `helm install` or `helm upgrade` command.

    These are derived per release while it is being deployed.
    """

    release_name: str
    """The expanded release name."""

    chart_path: str
    """The chart path, or the path to the packaged chart archive."""

    upgrade: bool = True
    """Upgrade the existing release, otherwise install it."""

    flags: list[str] = field(default_factory=list)
    """Extra install or upgrade flags."""

    force: bool = False
    """Pass --force when upgrading."""

    namespace: str | None = None
    """The namespace to deploy to."""

    overrides_file: str | None = None
    """Values file holding the release overrides."""

    install_name_flag: bool = True
    """Pass the release name with --name to `helm install` (helm 2)."""


@dataclass
class ReleaseResult:
    """The outcome of deploying a single release."""

    namespace: str | None = None
    """The namespace the release was deployed to."""

    artifacts: list[DeployedArtifact] = field(default_factory=list)
    """Objects reported by helm for the release."""


@dataclass
class DeployResult:
    """The outcome of deploying all releases."""

    artifacts: list[DeployedArtifact] = field(default_factory=list)
    """Objects reported by helm for all deployed releases."""

    namespaces: list[str] = field(default_factory=list)
    """Distinct namespaces that releases were deployed to."""

    labels: dict[str, str] = field(default_factory=dict)
    """Labels identifying the deployer of the artifacts."""


def get_args(release_name: str, helm3: bool = False) -> list[str]:
    """Return the arguments to `helm get` for the release."""
    if helm3:
        return ["get", "all", release_name]
    return ["get", release_name]


def install_args(
    release: HelmRelease,
    builds: list[BuildArtifact],
    values_set: ValuesSetTracker,
    opts: InstallOptions,
) -> list[str]:
    """Return the arguments to `helm install` or `helm upgrade` for the release.

    Every value passed with `--set`, `--set-string` or `--set-file` is recorded
    in `values_set` once all arguments have been built successfully.
    """
    args: list[str] = []
    if opts.upgrade:
        args.extend(["upgrade", opts.release_name])
        args.extend(opts.flags)
        if opts.force:
            args.append("--force")
        if release.recreate_pods:
            args.append("--recreate-pods")
    else:
        args.append("install")
        if opts.install_name_flag:
            args.append("--name")
        args.append(opts.release_name)
        args.extend(opts.flags)

    # A packaged chart already has its version set in the archive, the
    # version only applies to a chart deployed from a repository.
    if release.packaged is None and release.version:
        args.extend(["--version", release.version])

    args.append(opts.chart_path)

    if opts.namespace:
        args.extend(["--namespace", opts.namespace])

    try:
        params = pair_params_to_artifacts(builds, release.values)
    except HelmException as err:
        raise HelmException(f"matching build results to chart values: {err}") from err

    if opts.overrides_file:
        args.extend(["-f", opts.overrides_file])

    used: list[str] = []
    for param, build in sorted(params.items()):
        value = image_set_from_config(release.convention, param, build.tag)
        used.append(build.tag)
        args.extend(["--set-string", value])

    for key in sorted(release.set_values):
        value = release.set_values[key]
        used.append(value)
        args.extend(["--set", f"{key}={value}"])

    for key in sorted(release.set_files):
        value = release.set_files[key]
        used.append(value)
        args.extend(["--set-file", f"{key}={value}"])

    env = build_env_map(builds)
    for key in sorted(release.set_value_templates):
        value = expand(release.set_value_templates[key], env)
        used.append(value)
        args.extend(["--set", f"{key}={value}"])

    for values_file in release.values_files:
        try:
            expanded = expand(os.path.expanduser(values_file), env)
        except TemplateException as err:
            raise HelmException(f"unable to expand {values_file}: {err}") from err
        args.extend(["-f", expanded])

    if release.wait:
        args.append("--wait")

    for value in used:
        values_set.add(value)
    return args


def parse_release_info(namespace: str, output: str) -> list[DeployedArtifact]:
    """Return the kubernetes objects listed in the `helm get` output.

    The output is parsed on a best effort basis and documents that are not
    kubernetes objects are ignored.
    """
    artifacts: list[DeployedArtifact] = []
    for chunk in _DOC_SEPARATOR_RE.split(output):
        try:
            doc = yaml.safe_load(chunk)
        except yaml.YAMLError as err:
            _LOGGER.debug("Skipping release document that is not yaml: %s", err)
            continue
        if not isinstance(doc, dict):
            continue
        kind = doc.get("kind")
        api_version = doc.get("apiVersion")
        metadata = doc.get("metadata")
        if not isinstance(kind, str) or not isinstance(api_version, str):
            continue
        if not isinstance(metadata, dict) or not (name := metadata.get("name")):
            _LOGGER.debug("Skipping %s without metadata.name", kind)
            continue
        artifacts.append(
            DeployedArtifact(
                namespace=namespace,
                kind=kind,
                name=str(name),
                api_version=api_version,
            )
        )
    return artifacts


class HelmDeployer:
    """Deploys releases with the helm CLI."""

    def __init__(
        self,
        config: HelmDeployConfig,
        options: DeployOptions | None = None,
        runner: command.Runner | None = None,
    ) -> None:
        """Initialize HelmDeployer."""
        self._config = config
        self._options = options or DeployOptions()
        self._runner = runner or command.CommandRunner()
        self._bin_version: BinaryVersion | None = None

    @property
    def labels(self) -> dict[str, str]:
        """Labels identifying objects deployed by this deployer."""
        return {DEPLOYER_LABEL: "helm"}

    def _helm3(self) -> bool:
        """Return True when the helm binary is known to be helm 3 or later."""
        return self._bin_version is not None and self._bin_version.major >= _HELM3_MAJOR

    def _helm_args(self, args: list[str], use_secrets: bool = False) -> list[str]:
        """Add the cluster and global flags to the helm arguments."""
        if args[0] == "version":
            return [self._options.helm_bin, *args]
        full_args: list[str] = []
        if self._options.kube_context:
            full_args.extend(["--kube-context", self._options.kube_context])
        full_args.extend(args)
        full_args.extend(self._config.flags.global_flags)
        if self._options.kube_config:
            full_args.extend(["--kubeconfig", self._options.kube_config])
        if use_secrets:
            full_args.insert(0, "secrets")
        return [self._options.helm_bin, *full_args]

    async def _exec(self, args: list[str], use_secrets: bool = False) -> str:
        """Run a helm command and return the combined output."""
        cmd = command.Command(
            self._helm_args(args, use_secrets),
            cwd=self._options.work_dir,
            exc=HelmException,
        )
        return await self._runner.run(cmd)

    async def binary_version(self) -> BinaryVersion:
        """Return the version of the helm binary, cached after the first call."""
        if self._bin_version is not None:
            return self._bin_version
        try:
            out = await self._exec(["version", "--short", "-c"])
        except CommandException as err:
            raise HelmException(f"helm version: {err}") from err
        version = parse_version_output(out)
        if not version.is_zero:
            self._bin_version = version
        return version

    async def _resolve_version(self) -> None:
        """Resolve the helm version, logging instead of failing."""
        try:
            version = await self.binary_version()
        except DeployerException as err:
            _LOGGER.debug("Failed to parse helm binary version: %s", err)
        else:
            _LOGGER.debug("Deploying with helm version %s", version)

    async def deploy(self, builds: list[BuildArtifact]) -> DeployResult:
        """Deploy every release with the build results."""
        await self._resolve_version()

        artifacts: list[DeployedArtifact] = []
        namespaces: set[str] = set()
        values_set = ValuesSetTracker()

        for release in self._config.releases:
            try:
                release_name = expand(release.name)
            except TemplateException as err:
                raise HelmException(
                    f"cannot parse the release name template {release.name!r}: {err}"
                ) from err

            with trace_context(f"Release '{release_name}'"):
                try:
                    result = await self.deploy_release(
                        release, release_name, builds, values_set
                    )
                except DeployerException as err:
                    raise HelmException(f"deploying {release_name}: {err}") from err

            if trimmed := (result.namespace or "").strip():
                namespaces.add(trimmed)
            artifacts.extend(result.artifacts)

        # Every image tag should be set on some release, otherwise the chart
        # templates have no way to use the images that were built.
        for build in values_set.unused(builds):
            _LOGGER.warning("image [%s] is not used.", build.tag)
            _LOGGER.warning("image [%s] is used instead.", build.image_name)
            _LOGGER.warning(_UNUSED_IMAGE_HELP)

        return DeployResult(
            artifacts=artifacts,
            namespaces=sorted(namespaces),
            labels=self.labels,
        )

    async def deploy_release(
        self,
        release: HelmRelease,
        release_name: str,
        builds: list[BuildArtifact],
        values_set: ValuesSetTracker,
    ) -> ReleaseResult:
        """Deploy a single release, returning the objects helm reports for it."""
        helm3 = self._helm3()
        opts = InstallOptions(
            release_name=release_name,
            chart_path=release.chart_path,
            upgrade=True,
            flags=list(self._config.flags.upgrade),
            force=self._options.force,
            install_name_flag=not helm3,
        )

        try:
            await self._exec(get_args(release_name, helm3))
        except CommandException:
            _LOGGER.info("Helm release %s not installed. Installing...", release_name)
            opts.upgrade = False
            opts.flags = list(self._config.flags.install)

        if self._options.namespace:
            opts.namespace = self._options.namespace
        elif release.namespace:
            opts.namespace = release.namespace

        # Only build local dependencies, but allow a user to skip them.
        if not release.skip_build_dependencies and not release.remote:
            _LOGGER.info("Building helm dependencies...")
            try:
                await self._exec(["dep", "build", release.chart_path])
            except CommandException as err:
                raise HelmException(f"building helm dependencies: {err}") from err

        async with self._overrides_file(release) as overrides_file:
            opts.overrides_file = overrides_file

            if release.packaged is not None:
                try:
                    opts.chart_path = await self.package_chart(release)
                except DeployerException as err:
                    raise HelmException(f"cannot package chart: {err}") from err

            try:
                args = install_args(release, builds, values_set, opts)
            except DeployerException as err:
                raise HelmException(f"release args: {err}") from err

            await self._exec(args, use_secrets=release.use_helm_secrets)

        # The release is deployed, so failing to describe it is not an error
        try:
            out = await self._exec(get_args(release_name, helm3))
        except CommandException as err:
            _LOGGER.warning("Unable to get release %s: %s", release_name, err)
            return ReleaseResult(namespace=opts.namespace)

        return ReleaseResult(
            namespace=opts.namespace,
            artifacts=parse_release_info(opts.namespace or "", out),
        )

    @asynccontextmanager
    async def _overrides_file(
        self, release: HelmRelease
    ) -> AsyncGenerator[str | None, None]:
        """Write the release overrides to a values file that exists while in scope."""
        if not release.overrides:
            yield None
            return

        try:
            content = yaml.dump(release.overrides, sort_keys=False)
        except yaml.YAMLError as err:
            raise HelmException(
                f"cannot marshal overrides to create overrides values.yaml: {err}"
            ) from err

        overrides_path = (self._options.work_dir or Path.cwd()) / OVERRIDES_FILENAME
        try:
            async with aiofiles.open(str(overrides_path), mode="w") as overrides_file:
                await overrides_file.write(content)
        except OSError as err:
            raise HelmException(f"cannot create file {overrides_path}: {err}") from err

        try:
            yield OVERRIDES_FILENAME
        finally:
            try:
                await aiofiles.os.remove(str(overrides_path))
            except OSError as err:
                _LOGGER.warning("Unable to remove %s: %s", overrides_path, err)

    async def package_chart(self, release: HelmRelease) -> str:
        """Package the chart and return the path to the chart archive."""
        if release.packaged is None:
            raise InputException(f"Release {release.name} is not packaged")

        if self._options.package_tmp_dir is not None:
            tmp_dir = str(self._options.package_tmp_dir)
        else:
            try:
                tmp_dir = tempfile.mkdtemp(prefix=_PACKAGE_TMP_PREFIX)
            except OSError as err:
                raise HelmException(f"tempdir: {err}") from err

        package_args = ["package", release.chart_path, "--destination", tmp_dir]
        if release.packaged.version:
            try:
                version = expand(release.packaged.version)
            except TemplateException as err:
                raise HelmException(
                    f'concretize "packaged.version" template: {err}'
                ) from err
            package_args.extend(["--version", version])

        if release.packaged.app_version:
            try:
                app_version = expand(release.packaged.app_version)
            except TemplateException as err:
                raise HelmException(
                    f'concretize "packaged.appVersion" template: {err}'
                ) from err
            package_args.extend(["--app-version", app_version])

        try:
            out = await self._exec(package_args)
        except CommandException as err:
            raise HelmException(
                f"package chart into a .tgz archive: {package_args}: {err}"
            ) from err

        output = out.strip()
        if (idx := output.find(tmp_dir)) < 0:
            raise HelmException("cannot locate packaged chart archive")

        archive = output[idx + len(tmp_dir) :].lstrip(os.sep)
        return os.path.join(tmp_dir, archive)

    def dependencies(self) -> list[str]:
        """Return the sorted list of files the releases depend on.

        Files under the chart `charts/` directory are written by `helm dep build`
        so they are only included when dependency building is skipped, otherwise
        every deploy would trigger a new build.
        """
        deps: list[str] = []

        def walk_error(err: OSError) -> None:
            raise InputException(
                f"failure accessing path '{err.filename}': {err}"
            ) from err

        for release in self._config.releases:
            deps.extend(release.values_files)

            # The chart is only a dependency when it is on the local filesystem
            if release.remote:
                continue

            if os.path.isfile(release.chart_path):
                deps.append(release.chart_path)
                continue

            chart_deps_dir = Path(release.chart_path) / CHART_DEPS_DIR
            for root, dirs, files in os.walk(release.chart_path, onerror=walk_error):
                # Symlinks to directories are not followed and count as files
                links = [d for d in dirs if os.path.islink(os.path.join(root, d))]
                for file in files + links:
                    path = os.path.join(root, file)
                    if release.skip_build_dependencies or not Path(
                        path
                    ).is_relative_to(chart_deps_dir):
                        deps.append(path)

        deps.sort()
        return deps

    async def cleanup(self) -> None:
        """Delete every release deployed by `deploy`."""
        await self._resolve_version()
        for release in self._config.releases:
            try:
                release_name = expand(release.name)
            except TemplateException as err:
                raise HelmException(
                    f"cannot parse the release name template {release.name!r}: {err}"
                ) from err

            if self._helm3():
                args = ["uninstall", release_name]
            else:
                args = ["delete", release_name, "--purge"]
            try:
                await self._exec(args)
            except CommandException as err:
                raise HelmException(f"deleting {release_name}: {err}") from err

"""Parsing of the helm binary version."""

from dataclasses import dataclass
import re

from .exceptions import VersionParseException

__all__ = [
    "BinaryVersion",
    "parse_version_output",
]

_SEMVER_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?$"
)


@dataclass(frozen=True, order=True)
class BinaryVersion:
    """Semantic version of the helm binary."""

    major: int
    minor: int
    patch: int
    pre: str = ""

    @property
    def is_zero(self) -> bool:
        """Return True for the zero version, which is treated as unknown."""
        return (self.major, self.minor, self.patch) == (0, 0, 0)

    def __str__(self) -> str:
        version = f"{self.major}.{self.minor}.{self.patch}"
        if self.pre:
            return f"{version}-{self.pre}"
        return version


def parse_version_output(raw: str) -> BinaryVersion:
    """Parse the output of `helm version --short -c`.

    Helm 3 prints `v3.1.0+gb29d20b` and helm 2 prints `Client: v2.15.1+gcf1de4f`.
    The build metadata after `+` is dropped before parsing.
    """
    if (idx := raw.find("v")) < 0:
        raise VersionParseException(f"v not found in output: {raw!r}")
    version = raw[idx + 1 :].split("+", 1)[0].strip()
    if not (match := _SEMVER_RE.match(version)):
        raise VersionParseException(f"Invalid semantic version {version!r}: {raw!r}")
    return BinaryVersion(
        major=int(match.group(1)),
        minor=int(match.group(2)),
        patch=int(match.group(3)),
        pre=match.group(4) or "",
    )

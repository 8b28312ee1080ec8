"""Helper functions for working with container image references.

A reference has the form `[domain/]path[:tag][@digest]`, for example
`gcr.io/project/app:v1@sha256:4355a46b...`. When the name has more than one
path component, the first component is the domain.
"""

from dataclasses import dataclass
import logging
import re

from .exceptions import InputException

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "ImageReference",
    "parse_reference",
]

NAME_TOTAL_LENGTH_MAX = 255

_ALPHA_NUMERIC = r"[a-z0-9]+"
_SEPARATOR = r"(?:[._]|__|[-]+)"
_PATH_COMPONENT = rf"{_ALPHA_NUMERIC}(?:{_SEPARATOR}{_ALPHA_NUMERIC})*"
_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_DOMAIN = rf"{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*(?::[0-9]+)?"
_TAG = r"[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}"
_DIGEST = r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}"
_NAME = rf"(?:{_DOMAIN}/)?{_PATH_COMPONENT}(?:/{_PATH_COMPONENT})*"

_REFERENCE_RE = re.compile(
    rf"^(?P<name>{_NAME})(?::(?P<tag>{_TAG}))?(?:@(?P<digest>{_DIGEST}))?$"
)
_NAME_RE = re.compile(
    rf"^(?:(?P<domain>{_DOMAIN})/)?(?P<path>{_PATH_COMPONENT}(?:/{_PATH_COMPONENT})*)$"
)


@dataclass(frozen=True)
class ImageReference:
    """The parsed parts of an image reference."""

    base_name: str
    """The name without tag or digest, including the domain."""

    domain: str
    """The registry host, empty when the name has a single component."""

    path: str
    """The name without the domain."""

    tag: str
    """The tag, empty when not present."""

    digest: str
    """The digest e.g. `sha256:abcd...`, empty when not present."""


def parse_reference(image: str) -> ImageReference:
    """Parse an image reference or raise an `InputException`."""
    if not image:
        raise InputException("repository name must have at least one component")
    if not (match := _REFERENCE_RE.match(image)):
        if _REFERENCE_RE.match(image.lower()):
            raise InputException(f"repository name must be lowercase: {image}")
        raise InputException(f"invalid reference format: {image}")
    name = match.group("name")
    if len(name) > NAME_TOTAL_LENGTH_MAX:
        raise InputException(
            f"repository name must not be more than {NAME_TOTAL_LENGTH_MAX} characters"
        )
    name_match = _NAME_RE.match(name)
    if name_match is None:
        raise InputException(f"invalid reference format: {image}")
    ref = ImageReference(
        base_name=name,
        domain=name_match.group("domain") or "",
        path=name_match.group("path"),
        tag=match.group("tag") or "",
        digest=match.group("digest") or "",
    )
    _LOGGER.debug("Parsed image reference %s: %s", image, ref)
    return ref

"""Exceptions related to helm-deployer."""

__all__ = [
    "DeployerException",
    "InputException",
    "CommandException",
    "HelmException",
    "TemplateException",
    "VersionParseException",
]


class DeployerException(Exception):
    """Generic base exception used for this library."""


class InputException(DeployerException):
    """Raised when the input files or values are not formatted as expected."""


class CommandException(DeployerException):
    """Raised when there is a failure running a subcommand."""


class HelmException(CommandException):
    """Raised when there is a failure running a helm command or deploying a release."""


class TemplateException(InputException):
    """Raised when a template string cannot be parsed or executed."""


class VersionParseException(DeployerException):
    """Raised when the helm binary version output is not understood.

    This is distinct from a `HelmException` so callers can tell the binary
    failing apart from the output not being parseable.
    """

"""
helm-deployer installs or upgrades helm releases with freshly built images.

The library binds built image tags to chart values, builds the helm command
lines for each release, runs them and reports the objects that were deployed.
"""

__all__ = [
    "command",
    "context",
    "exceptions",
    "helm",
    "image",
    "manifest",
    "template",
    "values",
    "version",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]

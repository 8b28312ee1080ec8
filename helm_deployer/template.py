"""Library for expanding environment templates in release configuration.

Release names, value templates and values file paths may reference
variables with the `{{.NAME}}` syntax, for example `{{.IMAGE_NAME}}:{{.DIGEST_HEX}}`.
Variables are looked up in the supplied map first and then in the process
environment. The supported actions are:

  - `{{.NAME}}` the value of a variable
  - `{{"text"}}` a literal string
  - `{{default "text" .NAME}}` the variable, or the literal when it is empty

A variable that is not set expands to `<no value>`.
"""

from dataclasses import dataclass
import logging
import os
import re
import shlex

from .exceptions import TemplateException

__all__ = [
    "expand",
    "Template",
]

_LOGGER = logging.getLogger(__name__)

NO_VALUE = "<no value>"

_ACTION_RE = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_FIELD_RE = re.compile(r"^\.([A-Za-z_][A-Za-z0-9_]*)$")
_DEFAULT_FUNC = "default"


@dataclass(frozen=True)
class _Literal:
    text: str

    def render(self, env: dict[str, str]) -> str:
        return self.text


@dataclass(frozen=True)
class _Field:
    name: str

    def render(self, env: dict[str, str]) -> str:
        return env.get(self.name, NO_VALUE)


@dataclass(frozen=True)
class _Default:
    fallback: str
    name: str

    def render(self, env: dict[str, str]) -> str:
        if value := env.get(self.name):
            return value
        return self.fallback


_Node = _Literal | _Field | _Default


def _parse_operand(template: str, token: str) -> _Field:
    """Parse a single field reference."""
    if match := _FIELD_RE.match(token):
        return _Field(match.group(1))
    raise TemplateException(f"parsing template {template!r}: unexpected {token!r}")


def _parse_action(template: str, body: str) -> _Node:
    """Parse the contents of a `{{ }}` action."""
    stripped = body.strip()
    if not stripped:
        raise TemplateException(f"parsing template {template!r}: missing value")
    if stripped.startswith("."):
        return _parse_operand(template, stripped)
    try:
        tokens = shlex.split(stripped)
    except ValueError as err:
        raise TemplateException(f"parsing template {template!r}: {err}") from err
    if stripped.startswith('"'):
        if len(tokens) != 1:
            raise TemplateException(
                f"parsing template {template!r}: unexpected {stripped!r}"
            )
        return _Literal(tokens[0])
    if tokens[0] == _DEFAULT_FUNC:
        if len(tokens) != 3 or not stripped[len(_DEFAULT_FUNC) :].lstrip().startswith(
            '"'
        ):
            raise TemplateException(
                f"parsing template {template!r}: default expects a string and a field"
            )
        operand = _parse_operand(template, tokens[2])
        return _Default(fallback=tokens[1], name=operand.name)
    raise TemplateException(
        f"parsing template {template!r}: function {tokens[0]!r} not defined"
    )


class Template:
    """A parsed template that may be executed many times."""

    def __init__(self, nodes: list[_Node]) -> None:
        """Initialize Template, use `Template.parse` to create."""
        self._nodes = nodes

    @classmethod
    def parse(cls, template: str) -> "Template":
        """Parse the template string or raise a `TemplateException`."""
        nodes: list[_Node] = []
        pos = 0
        for match in _ACTION_RE.finditer(template):
            text = template[pos : match.start()]
            if text:
                nodes.append(_Literal(text))
            nodes.append(_parse_action(template, match.group(1)))
            pos = match.end()
        tail = template[pos:]
        if "{{" in tail:
            raise TemplateException(
                f"parsing template {template!r}: unclosed action"
            )
        if tail:
            nodes.append(_Literal(tail))
        return cls(nodes)

    def execute(self, env: dict[str, str] | None = None) -> str:
        """Render the template with the process environment and the map."""
        variables = {**os.environ, **(env or {})}
        return "".join(node.render(variables) for node in self._nodes)


def expand(template: str, env: dict[str, str] | None = None) -> str:
    """Parse and execute the template with an optional variable map."""
    result = Template.parse(template).execute(env)
    _LOGGER.debug("Expanded template %r to %r", template, result)
    return result

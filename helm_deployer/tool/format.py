"""Library for formatting command output."""

from collections.abc import Generator
from typing import Any, TextIO
import sys

import yaml


PADDING = 4


def format_columns(
    headers: list[str], rows: list[list[str]]
) -> Generator[str, None, None]:
    """Yield the header and rows aligned in columns padded to the widest value."""
    if not headers:
        return
    data = [headers] + rows
    widths = [max(len(row[i]) for row in data) + PADDING for i in range(len(headers))]
    for row in data:
        yield "".join(value.ljust(width) for value, width in zip(row, widths))


class PrintFormatter:
    """A formatter that prints a human readable table."""

    def __init__(self, keys: list[str]):
        """Initialize the PrintFormatter with the keys of each column."""
        self._keys = keys

    def format(self, data: list[dict[str, Any]]) -> Generator[str, None, None]:
        """Format the data objects, one row per object."""
        if not data:
            return
        rows = [[str(row.get(key) or "") for key in self._keys] for row in data]
        yield from format_columns([key.upper() for key in self._keys], rows)

    def print(self, data: list[dict[str, Any]], file: TextIO = sys.stdout) -> None:
        """Output the data objects."""
        for line in self.format(data):
            print(line, file=file)


class YamlFormatter:
    """A formatter that prints a single yaml document."""

    def format(self, data: Any) -> Generator[str, None, None]:
        """Format the data object."""
        content = yaml.dump(data, sort_keys=False, explicit_start=True)
        yield from content.rstrip("\n").split("\n")

    def print(self, data: Any, file: TextIO = sys.stdout) -> None:
        """Output the data object."""
        for line in self.format(data):
            print(line, file=file)

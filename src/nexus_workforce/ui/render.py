"""Plain-text output helpers for the nexus-workforce CLI.

Respects the ``NO_COLOR`` environment variable and the ``--no-color`` flag;
output never depends on terminal capabilities beyond plain text.
"""

from __future__ import annotations

import os
import sys
from typing import IO, TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from nexus_workforce.domain.models import AllocationComposition


def _color_allowed(no_color_flag: bool, stream: IO[str]) -> bool:
    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


class CLIRenderer:
    """Deterministic plain-text renderer bound to one output stream."""

    def __init__(self, *, no_color: bool = False, stream: IO[str] | None = None) -> None:
        self._stream = stream if stream is not None else sys.stdout
        self._color = _color_allowed(no_color, self._stream)

    def _write(self, line: str = "") -> None:
        self._stream.write(line + "\n")

    def heading(self, text: str) -> None:
        self._write(f"\033[1m{text}\033[0m" if self._color else text)

    def kv(self, key: str, value: object) -> None:
        self._write(f"{key}: {value}")

    def text(self, line: str) -> None:
        self._write(line)

    def section(self, title: str) -> None:
        self._write()
        self.heading(title)

    def warning(self, text: str) -> None:
        self._write(f"  Warning: {text}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[object]],
        *,
        title: str | None = None,
    ) -> None:
        if not rows:
            return
        cells = [[str(cell) for cell in row] for row in rows]
        widths = [len(header) for header in headers]
        for row in cells:
            for index, cell in enumerate(row[: len(headers)]):
                widths[index] = max(widths[index], len(cell))

        def _pad(values: Sequence[str]) -> str:
            padded = [
                (values[index] if index < len(values) else "").ljust(width)
                for index, width in enumerate(widths)
            ]
            return "  ".join(padded).rstrip()

        if title:
            self.section(title)
        self._write(f"  {_pad(list(headers))}")
        self._write(f"  {'  '.join('-' * width for width in widths)}")
        for row in cells:
            self._write(f"  {_pad(row)}")

    def composition(self, composition: AllocationComposition, *, title: str) -> None:
        rows = [(role.value, count) for role, count in composition.counts]
        self.table(("role", "workers"), rows, title=title)
        self.kv("  total", composition.total)


def create_renderer(*, no_color: bool = False, stream: IO[str] | None = None) -> CLIRenderer:
    return CLIRenderer(no_color=no_color, stream=stream)


__all__ = ["CLIRenderer", "create_renderer"]

"""Console output abstraction.

Services report progress through `ConsoleProtocol` instead of printing, so
the CLI can render with Rich and tests can capture output with `MockConsole`.
Matrix jobs write from worker threads; both implementations serialize writes.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Protocol

__all__ = [
    "Style",
    "ConsoleProtocol",
    "RichConsole",
    "MockConsole",
    "PrefixedConsole",
]


class Style(Enum):
    """Text styles for console output."""

    DEFAULT = auto()
    SUCCESS = auto()
    ERROR = auto()
    WARNING = auto()
    DIM = auto()
    BOLD = auto()
    HEADER = auto()

    def __str__(self) -> str:
        return self.name.lower()


class ConsoleProtocol(Protocol):
    """Protocol for console output."""

    def print(self, message: str, style: Style = Style.DEFAULT) -> None:
        """Print a message with optional styling."""
        ...

    def success(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...

    def header(self, message: str) -> None:
        """Print a section header."""
        ...


class RichConsole:
    """Console implementation using the Rich library."""

    def __init__(self, *, stderr: bool = False) -> None:
        # Import Rich lazily to avoid import-time dependency
        from rich.console import Console

        self._console = Console(stderr=stderr, highlight=False)
        self._lock = threading.Lock()
        self._style_map = {
            Style.DEFAULT: "",
            Style.SUCCESS: "green",
            Style.ERROR: "red bold",
            Style.WARNING: "yellow",
            Style.DIM: "dim",
            Style.BOLD: "bold",
            Style.HEADER: "blue bold",
        }

    def _emit(self, message: str, style: str = "") -> None:
        with self._lock:
            if style:
                self._console.print(message, style=style, markup=False)
            else:
                self._console.print(message, markup=False)

    def _emit_markup(self, markup: str, message: str) -> None:
        from rich.text import Text

        text = Text.from_markup(markup)
        text.append(message)
        with self._lock:
            self._console.print(text)

    def print(self, message: str, style: Style = Style.DEFAULT) -> None:
        self._emit(message, self._style_map.get(style, ""))

    def success(self, message: str) -> None:
        self._emit_markup("[green]OK[/green] ", message)

    def error(self, message: str) -> None:
        self._emit_markup("[red bold]error:[/red bold] ", message)

    def warning(self, message: str) -> None:
        self._emit_markup("[yellow]warning:[/yellow] ", message)

    def header(self, message: str) -> None:
        with self._lock:
            self._console.print()
        self._emit(message, "blue bold")


@dataclass
class OutputRecord:
    """A single output record for MockConsole."""

    message: str
    style: Style


def _empty_outputs() -> list[OutputRecord]:
    return []


@dataclass
class MockConsole:
    """Console implementation that captures output for testing."""

    outputs: list[OutputRecord] = field(default_factory=_empty_outputs)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def _append(self, message: str, style: Style) -> None:
        with self._lock:
            self.outputs.append(OutputRecord(message, style))

    def print(self, message: str, style: Style = Style.DEFAULT) -> None:
        self._append(message, style)

    def success(self, message: str) -> None:
        self._append(f"OK {message}", Style.SUCCESS)

    def error(self, message: str) -> None:
        self._append(f"error: {message}", Style.ERROR)

    def warning(self, message: str) -> None:
        self._append(f"warning: {message}", Style.WARNING)

    def header(self, message: str) -> None:
        self._append(message, Style.HEADER)

    # Test helper methods

    def clear(self) -> None:
        with self._lock:
            self.outputs.clear()

    @property
    def messages(self) -> list[str]:
        return [o.message for o in self.outputs]

    @property
    def text(self) -> str:
        return "\n".join(self.messages)

    def has_error(self) -> bool:
        return any(o.style == Style.ERROR for o in self.outputs)

    def has_warning(self) -> bool:
        return any(o.style == Style.WARNING for o in self.outputs)

    def find(self, substring: str) -> list[OutputRecord]:
        """Find all outputs containing a substring."""
        return [o for o in self.outputs if substring in o.message]


class PrefixedConsole:
    """Console wrapper tagging every line with the stage that produced it.

    Parallel matrix jobs interleave their output; the prefix keeps each line
    attributable to one image.
    """

    def __init__(self, inner: ConsoleProtocol, prefix: str) -> None:
        self._inner = inner
        self._prefix = f"[{prefix}] "

    def print(self, message: str, style: Style = Style.DEFAULT) -> None:
        self._inner.print(self._prefix + message, style)

    def success(self, message: str) -> None:
        self._inner.success(self._prefix + message)

    def error(self, message: str) -> None:
        self._inner.error(self._prefix + message)

    def warning(self, message: str) -> None:
        self._inner.warning(self._prefix + message)

    def header(self, message: str) -> None:
        self._inner.header(self._prefix + message)

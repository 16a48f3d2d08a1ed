"""Result type for explicit error handling.

Every stage of a publish run returns a Result instead of raising, so the
orchestrator can decide per stage whether a failure is fatal, isolated to a
matrix entry, or only worth reporting.

Usage:
    def inspect(ref: str) -> Result[str, PublishError]:
        if not ref:
            return Err(PublishError(kind="invalid_input", message="empty ref"))
        return Ok("sha256:...")

    match inspect("ghcr.io/astral-sh/uv:0.5.0"):
        case Ok(digest):
            print(digest)
        case Err(error):
            print(error.pretty())
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Ok[T]:
    """A successful result.

    Attributes:
        value: The success value.
    """

    value: T

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err[E]:
    """A failed result.

    Attributes:
        error: The error value.
    """

    error: E

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


type Result[T, E] = Ok[T] | Err[E]

"""Shared helpers for CLI commands."""

from __future__ import annotations

from typing import TYPE_CHECKING, NoReturn

import typer

from imagepub.core.result import Err, Result
from imagepub.output.errors import print_publish_error, publish_error_exit_code
from imagepub.services.publish.errors import PublishError

if TYPE_CHECKING:
    from imagepub.cli.context import CLIContext


def unwrap_or_exit[T](result: Result[T, PublishError], ctx: CLIContext) -> T:
    """Return the value of an Ok result, or report the error and exit.

    This helper reduces boilerplate for the common pattern:
        match result:
            case Err(e):
                print_publish_error(e, ctx.console)
                raise typer.Exit(code=publish_error_exit_code(e))
            case Ok(value):
                ...
    """
    if isinstance(result, Err):
        print_publish_error(result.error, ctx.console)
        raise typer.Exit(code=publish_error_exit_code(result.error))
    return result.value


def exit_with_code(code: int) -> NoReturn:
    """Exit with given code. Explicit helper for clarity."""
    raise typer.Exit(code=code)

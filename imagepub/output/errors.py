"""Error presentation utilities.

Centralized error formatting and exit code mapping for consistent UX.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from imagepub.core.errors import ErrorCode
from imagepub.output.console import Style
from imagepub.services.publish.errors import PublishError
from imagepub.services.publish.matrix import EXTRA_NODE_PREFIX

if TYPE_CHECKING:
    from imagepub.output.console import ConsoleProtocol
    from imagepub.services.publish.pipeline import RunReport

__all__ = ["print_publish_error", "publish_error_exit_code", "run_report_exit_code"]


def print_publish_error(error: PublishError, console: ConsoleProtocol) -> None:
    """Print publish error to console with appropriate formatting."""
    where = f"[{error.stage}] " if error.stage else ""
    subject = f"{error.image}: " if error.image else ""
    console.error(f"{where}{subject}{error.message}")
    if error.hint:
        for line in error.hint.splitlines():
            console.print(f"hint: {line}", Style.DIM)


def publish_error_exit_code(error: PublishError) -> int:
    """Get exit code for a publish error."""
    match error.kind:
        case "invalid_input" | "plan_inconsistency":
            return int(ErrorCode.USER_ERROR)
        case "tool_missing" | "registry_login_failed":
            return int(ErrorCode.ENV_ERROR)
        case "build_failed" | "annotation_noop":
            return int(ErrorCode.BUILD_ERROR)
        case "registry_push_failed" | "attestation_failed":
            return int(ErrorCode.NETWORK_ERROR)


def run_report_exit_code(report: RunReport) -> int:
    """Exit code for a finished run.

    A failure of the base image or its final annotation decides the code;
    failed matrix jobs alone make the run a build error.
    """
    failures = report.failures
    if not failures:
        return int(ErrorCode.OK)
    for outcome in failures:
        if not outcome.name.startswith(EXTRA_NODE_PREFIX) and outcome.error is not None:
            return publish_error_exit_code(outcome.error)
    return int(ErrorCode.BUILD_ERROR)

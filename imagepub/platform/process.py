"""Subprocess execution with Result-based error handling.

Every external collaborator (build backends, `docker buildx imagetools`,
`docker login`, `cosign`) is invoked through `run`. Output is captured and
failures come back as a `ProcessError` value instead of an exception.

Usage:
    match run(["docker", "buildx", "version"], cwd=Path(".")):
        case Ok(stdout):
            print(stdout)
        case Err(error):
            print(f"Failed: {error.stderr}")
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

from imagepub.core.result import Err, Ok, Result

__all__ = ["NEVER_STARTED", "ProcessError", "run"]

NEVER_STARTED = -1


@dataclass(frozen=True, slots=True)
class ProcessError:
    """A command that failed to start, timed out, or exited non-zero.

    `returncode` is `NEVER_STARTED` when no exit status exists.
    """

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def started(self) -> bool:
        return self.returncode != NEVER_STARTED

    def __str__(self) -> str:
        shown = " ".join(self.command[:3])
        if len(self.command) > 3:
            shown += " ..."
        if not self.started:
            return f"{shown} could not run: {self.stderr}"
        return f"{shown} failed (exit {self.returncode})"


def _failed(
    cmd: list[str], returncode: int, *, stdout: str = "", stderr: str = ""
) -> Err[ProcessError]:
    return Err(ProcessError(tuple(cmd), returncode, stdout, stderr))


def run(
    cmd: list[str],
    cwd: Path,
    env: dict[str, str] | None = None,
    *,
    input: str | None = None,
    timeout: float | None = None,
) -> Result[str, ProcessError]:
    """Run `cmd` in `cwd` and return its stdout.

    `input` is written to stdin (registry passwords go this way so they never
    appear in argv). `env=None` inherits the current environment.
    """
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(cwd),
            env=env,
            input=input,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        partial = e.stdout if isinstance(e.stdout, str) else ""
        return _failed(
            cmd, NEVER_STARTED, stdout=partial, stderr=f"timed out after {timeout}s"
        )
    except OSError as e:
        return _failed(cmd, NEVER_STARTED, stderr=str(e))

    if proc.returncode != 0:
        return _failed(cmd, proc.returncode, stdout=proc.stdout, stderr=proc.stderr)
    return Ok(proc.stdout)

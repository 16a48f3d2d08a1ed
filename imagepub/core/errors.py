"""Exit codes for the imagepub CLI.

Each failure category of a publish run maps to one stable process exit code,
so the enclosing automation can tell a bad plan from a broken build.
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    """Exit codes for CLI commands.

    - 0: Success
    - 1: User error (malformed plan, tag/version mismatch)
    - 2: Environment error (missing tool, registry login refused)
    - 3: Build error (build backend failed, matrix entry failed)
    - 4: Network error (registry rewrite or attestation failed)
    - 5: I/O error (config or metadata file unreadable)
    """

    OK = 0
    USER_ERROR = 1
    ENV_ERROR = 2
    BUILD_ERROR = 3
    NETWORK_ERROR = 4
    IO_ERROR = 5

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")

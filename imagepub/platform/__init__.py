"""Platform abstraction layer."""

from .files import (
    atomic_write_text,
    fresh_dir,
)
from .process import (
    ProcessError,
    run,
)

__all__ = [
    # files
    "atomic_write_text",
    "fresh_dir",
    # process
    "ProcessError",
    "run",
]

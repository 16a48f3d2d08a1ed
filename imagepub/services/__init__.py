# SPDX-License-Identifier: MIT
"""Application services for the imagepub CLI.

Services implement the business logic of the application, coordinating
between the domain layer (core/) and infrastructure (platform/).
"""

from imagepub.services.publish import (
    PublishDecision,
    PublishError,
    RunReport,
    resolve_run,
    run_publish,
)

__all__ = [
    # Decisions and results
    "PublishDecision",
    "PublishError",
    "RunReport",
    # Entry points
    "resolve_run",
    "run_publish",
]

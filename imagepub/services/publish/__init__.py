# SPDX-License-Identifier: MIT
"""Image publishing: plan, build, tag, annotate and attest."""

from imagepub.services.publish.errors import PublishError, PublishErrorKind
from imagepub.services.publish.model import (
    BuildResult,
    ImageTags,
    MatrixEntry,
    PublishDecision,
    ReleasePlan,
    RunEnvironment,
    TagRule,
    TriggerContext,
)
from imagepub.services.publish.pipeline import (
    Collaborators,
    RunContext,
    RunReport,
    resolve_run,
    run_publish,
)

__all__ = [
    "BuildResult",
    "Collaborators",
    "ImageTags",
    "MatrixEntry",
    "PublishDecision",
    "PublishError",
    "PublishErrorKind",
    "ReleasePlan",
    "RunContext",
    "RunEnvironment",
    "RunReport",
    "TagRule",
    "TriggerContext",
    "resolve_run",
    "run_publish",
]

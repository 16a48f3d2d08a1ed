from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal

PublishErrorKind = Literal[
    "invalid_input",
    "plan_inconsistency",
    "tool_missing",
    "registry_login_failed",
    "build_failed",
    "registry_push_failed",
    "attestation_failed",
    "annotation_noop",
]


@dataclass(frozen=True, slots=True)
class PublishError:
    """Failure of one publish stage.

    `stage` and `image` identify where the run broke; they are filled in by
    the pipeline when a collaborator error bubbles up through a stage.
    """

    kind: PublishErrorKind
    message: str
    hint: str | None = None
    stage: str | None = None
    image: str | None = None

    def at(self, *, stage: str, image: str | None = None) -> PublishError:
        return replace(self, stage=self.stage or stage, image=self.image or image)

    def pretty(self) -> str:
        where = ""
        if self.stage:
            where = f"[{self.stage}] "
        if self.image:
            where += f"{self.image}: "
        if self.hint:
            return f"{where}{self.message} (hint: {self.hint})"
        return f"{where}{self.message}"

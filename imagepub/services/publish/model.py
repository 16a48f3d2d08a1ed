from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

PublishMode = Literal["build", "build and publish"]
TagKind = Literal["raw", "version", "major_minor", "latest"]

DRY_RUN_TAG = "dry-run"


@dataclass(frozen=True, slots=True)
class ReleasePlan:
    """The subset of the release plan that decides whether images are published."""

    announcement_tag: str
    announcement_tag_is_implicit: bool


@dataclass(frozen=True, slots=True)
class TriggerContext:
    """Where the run was triggered from.

    `head_repository` is the source repository of a pull request, None for
    pushes, tags and workflow calls.
    """

    head_repository: str | None = None
    labels: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class PublishDecision:
    login: bool
    push: bool
    tag: str
    mode: PublishMode

    @property
    def dry_run(self) -> bool:
        return not self.push


@dataclass(frozen=True, slots=True)
class TagRule:
    """One tag template.

    `version` renders the full version, `major_minor` its `major.minor`
    truncation, `latest` the floating tag, `raw` the literal `value`.
    """

    kind: TagKind
    value: str = ""
    enabled: bool = True
    suffix: str = ""


@dataclass(frozen=True, slots=True)
class ImageTags:
    refs: tuple[str, ...]  # image:tag, grouped by image in target order
    version: str  # canonical org.opencontainers.image.version

    @property
    def tags(self) -> tuple[str, ...]:
        """Tag names without the image part, in first-seen order."""
        seen: dict[str, None] = {}
        for ref in self.refs:
            seen.setdefault(ref.rsplit(":", 1)[1], None)
        return tuple(seen)


@dataclass(frozen=True, slots=True)
class MatrixEntry:
    base_image: str
    aliases: tuple[str, ...]  # most specific first

    @property
    def name(self) -> str:
        return self.base_image


@dataclass(frozen=True, slots=True)
class BuildResult:
    digest: str | None  # None when nothing was pushed
    tags: tuple[str, ...]
    annotations: tuple[str, ...]  # "level:key=value"
    labels: tuple[str, ...]  # "key=value"
    version_label: str


@dataclass(frozen=True, slots=True)
class ManifestRef:
    image: str
    reference: str  # sha256:<hex> or a tag

    def __str__(self) -> str:
        if self.reference.startswith("sha256:"):
            return f"{self.image}@{self.reference}"
        return f"{self.image}:{self.reference}"


@dataclass(frozen=True, slots=True)
class AttestationRecord:
    subject_name: str
    subject_digest: str
    predicate_type: str


@dataclass(frozen=True, slots=True)
class RunEnvironment:
    """Facts about the enclosing CI run, captured once at the CLI edge."""

    repository: str | None = None
    sha: str | None = None
    ref: str | None = None
    run_id: str | None = None
    run_attempt: str | None = None
    workflow_ref: str | None = None
    server_url: str = "https://github.com"

    @property
    def repository_url(self) -> str | None:
        if self.repository is None:
            return None
        return f"{self.server_url}/{self.repository}"

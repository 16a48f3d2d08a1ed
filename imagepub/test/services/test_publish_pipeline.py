"""End-to-end runs of the publish pipeline against in-memory collaborators."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Sequence
from pathlib import Path

import pytest

from imagepub.core.config import ExtraConfig, PublishConfig
from imagepub.core.errors import ErrorCode
from imagepub.core.result import Err, Ok, Result
from imagepub.output.console import MockConsole
from imagepub.output.errors import run_report_exit_code
from imagepub.services.publish.attest import PREDICATE_TYPE
from imagepub.services.publish.builder import BuildRequest
from imagepub.services.publish.errors import PublishError
from imagepub.services.publish.model import (
    AttestationRecord,
    BuildResult,
    ManifestRef,
    PublishDecision,
    RunEnvironment,
    TriggerContext,
)
from imagepub.services.publish.pipeline import (
    ANNOTATE_BASE_NODE,
    BASE_NODE,
    Collaborators,
    RunContext,
    RunReport,
    resolve_run,
    run_publish,
)
from imagepub.services.publish.project import ProjectMetadata

SECRETS = {
    "DOCKERHUB_TOKEN_RO": "ro-token",
    "DOCKERHUB_TOKEN_RW": "rw-token",
    "GITHUB_TOKEN": "gh-token",
}
MATRIX = (
    "alpine:3.21,alpine3.21,alpine",
    "debian:bookworm-slim,bookworm-slim,debian-slim",
)
RELEASE = PublishDecision(login=True, push=True, tag="0.5.0", mode="build and publish")
DRY_RUN = PublishDecision(login=True, push=False, tag="dry-run", mode="build")


def _digest(seed: str) -> str:
    return "sha256:" + hashlib.sha256(seed.encode()).hexdigest()


class FakeBuilder:
    def __init__(self, *, fail_labels: Sequence[str] = (), report_digest: bool = True) -> None:
        self.fail_labels = set(fail_labels)
        self.report_digest = report_digest
        self.requests: list[BuildRequest] = []

    @property
    def native_annotations(self) -> bool:
        return False

    def build(self, request: BuildRequest, *, console: object) -> Result[BuildResult, PublishError]:
        del console
        self.requests.append(request)
        if request.version_label in self.fail_labels:
            return Err(PublishError(kind="build_failed", message="build failed (exit 1)"))
        return Ok(
            BuildResult(
                digest=_digest(request.version_label) if request.push and self.report_digest else None,
                tags=request.tags,
                annotations=request.annotations,
                labels=request.labels,
                version_label=request.version_label,
            )
        )


class FakeRegistry:
    """Annotating a manifest gives it a new digest, like a real registry."""

    def __init__(self, *, noop: bool = False, refuse_login: bool = False) -> None:
        self.noop = noop
        self.refuse_login = refuse_login
        self.logins: list[tuple[str, str, str]] = []
        self.created: list[tuple[ManifestRef, tuple[str, ...], tuple[str, ...]]] = []

    def login(self, *, registry: str, username: str, password: str) -> Result[None, PublishError]:
        self.logins.append((registry, username, password))
        if self.refuse_login:
            return Err(PublishError(kind="registry_login_failed", message="unauthorized"))
        return Ok(None)

    def create_manifest(
        self, *, source: ManifestRef, tags: Sequence[str], annotations: Sequence[str]
    ) -> Result[None, PublishError]:
        self.created.append((source, tuple(tags), tuple(annotations)))
        return Ok(None)

    def inspect_digest(self, ref: ManifestRef) -> Result[str, PublishError]:
        if self.noop:
            return Ok(_digest(ref.reference))
        return Ok(_digest(f"annotated:{ref}"))


class FakeAttestor:
    def __init__(self) -> None:
        self.subjects: list[tuple[str, str]] = []

    def attest(
        self, *, subject_name: str, subject_digest: str
    ) -> Result[AttestationRecord, PublishError]:
        self.subjects.append((subject_name, subject_digest))
        return Ok(AttestationRecord(subject_name, subject_digest, PREDICATE_TYPE))


def _context(root: Path, decision: PublishDecision, *, matrix: tuple[str, ...] = MATRIX) -> RunContext:
    return RunContext(
        config=PublishConfig(extra=ExtraConfig(matrix=matrix)),
        decision=decision,
        metadata=ProjectMetadata(name="uv", version="0.5.0", license="MIT OR Apache-2.0"),
        environment=RunEnvironment(repository="astral-sh/uv", sha="abc123"),
        workspace_root=root,
        created="2024-11-11T00:00:00Z",
    )


def _run(
    root: Path,
    decision: PublishDecision,
    *,
    builder: FakeBuilder | None = None,
    registry: FakeRegistry | None = None,
    attestor: FakeAttestor | None = None,
    matrix: tuple[str, ...] = MATRIX,
) -> tuple[Result[RunReport, PublishError], Collaborators, MockConsole]:
    tools = Collaborators(
        builder=builder or FakeBuilder(),
        registry=registry or FakeRegistry(),
        attestor=attestor or FakeAttestor(),
    )
    console = MockConsole()
    result = run_publish(
        _context(root, decision, matrix=matrix),
        tools,
        secrets=SECRETS,
        console=console,
        max_workers=4,
    )
    return result, tools, console


class TestRelease:
    def test_publishes_every_image(self, tmp_path: Path) -> None:
        builder, registry, attestor = FakeBuilder(), FakeRegistry(), FakeAttestor()

        result, _, _ = _run(tmp_path, RELEASE, builder=builder, registry=registry, attestor=attestor)

        assert isinstance(result, Ok)
        report = result.value
        assert report.ok
        assert list(report.outcomes) == [
            BASE_NODE,
            "extra:alpine:3.21",
            "extra:debian:bookworm-slim",
            ANNOTATE_BASE_NODE,
        ]
        assert run_report_exit_code(report) == ErrorCode.OK
        assert all(r.push for r in builder.requests)

    def test_empty_matrix_publishes_only_the_base(self, tmp_path: Path) -> None:
        builder = FakeBuilder()

        result, _, _ = _run(tmp_path, RELEASE, builder=builder, matrix=())

        assert isinstance(result, Ok)
        assert list(result.value.outcomes) == [BASE_NODE, ANNOTATE_BASE_NODE]
        assert result.value.ok
        assert len(builder.requests) == 1

    def test_logs_in_with_write_credentials(self, tmp_path: Path) -> None:
        registry = FakeRegistry()

        _run(tmp_path, RELEASE, registry=registry)

        assert registry.logins == [
            ("docker.io", "astral", "rw-token"),
            ("ghcr.io", "astral-sh", "gh-token"),
        ]

    def test_base_tags(self, tmp_path: Path) -> None:
        builder = FakeBuilder()

        _run(tmp_path, RELEASE, builder=builder)

        base = next(r for r in builder.requests if r.version_label == "0.5.0")
        assert base.tags == (
            "ghcr.io/astral-sh/uv:0.5.0",
            "ghcr.io/astral-sh/uv:0.5",
            "ghcr.io/astral-sh/uv:latest",
            "docker.io/astral/uv:0.5.0",
            "docker.io/astral/uv:0.5",
            "docker.io/astral/uv:latest",
        )
        assert "org.opencontainers.image.version=0.5.0" in base.labels
        assert base.dockerfile == tmp_path / "Dockerfile"

    def test_extra_images_build_from_their_own_recipe(self, tmp_path: Path) -> None:
        builder = FakeBuilder()

        _run(tmp_path, RELEASE, builder=builder)

        alpine = next(r for r in builder.requests if r.version_label == "0.5.0-alpine3.21")
        assert alpine.context == tmp_path / ".imagepub" / "extra" / "alpine-3.21"
        assert alpine.dockerfile.read_text(encoding="utf-8").startswith(
            "FROM alpine:3.21\nCOPY --from=ghcr.io/astral-sh/uv:latest "
        )
        assert "docker.io/astral/uv:0.5-alpine" in alpine.tags
        assert not any(t.endswith(":latest") for t in alpine.tags)

    def test_attests_before_and_after_annotation(self, tmp_path: Path) -> None:
        attestor = FakeAttestor()

        _run(tmp_path, RELEASE, attestor=attestor)

        digests = [d for _, d in attestor.subjects]
        # base as built, each extra as built and annotated, base annotated
        assert len(digests) == 6
        assert len(set(digests)) == 6
        assert {name for name, _ in attestor.subjects} == {"ghcr.io/astral-sh/uv"}
        assert _digest("0.5.0") in digests
        assert _digest("annotated:ghcr.io/astral-sh/uv:0.5.0") in digests
        assert _digest("annotated:ghcr.io/astral-sh/uv:0.5.0-bookworm-slim") in digests

    def test_base_is_annotated_last(self, tmp_path: Path) -> None:
        registry = FakeRegistry()

        _run(tmp_path, RELEASE, registry=registry)

        sources = [src.reference for src, _, _ in registry.created]
        assert len(sources) == 6  # three images on two registries
        assert sources[-2:] == [_digest("0.5.0"), _digest("0.5.0")]
        assert _digest("0.5.0") not in sources[:-2]

    def test_annotations_are_index_level(self, tmp_path: Path) -> None:
        registry = FakeRegistry()

        _run(tmp_path, RELEASE, registry=registry)

        _, tags, annotations = registry.created[-1]
        assert "index:org.opencontainers.image.version=0.5.0" in annotations
        assert all(a.startswith("index:") for a in annotations)
        assert tags == (
            "docker.io/astral/uv:0.5.0",
            "docker.io/astral/uv:0.5",
            "docker.io/astral/uv:latest",
        )


class TestDryRun:
    def test_builds_without_pushing(self, tmp_path: Path) -> None:
        builder, registry, attestor = FakeBuilder(), FakeRegistry(), FakeAttestor()

        result, _, _ = _run(tmp_path, DRY_RUN, builder=builder, registry=registry, attestor=attestor)

        assert isinstance(result, Ok)
        assert result.value.ok
        assert ANNOTATE_BASE_NODE not in result.value.outcomes
        assert not any(r.push for r in builder.requests)
        assert registry.created == []
        assert attestor.subjects == []
        assert run_report_exit_code(result.value) == ErrorCode.OK

    def test_uses_dry_run_and_alias_tags(self, tmp_path: Path) -> None:
        builder = FakeBuilder()

        _run(tmp_path, DRY_RUN, builder=builder)

        tags = {r.version_label: r.tags for r in builder.requests}
        assert tags["dry-run"] == ("ghcr.io/astral-sh/uv:dry-run", "docker.io/astral/uv:dry-run")
        assert tags["alpine3.21"] == (
            "ghcr.io/astral-sh/uv:alpine3.21",
            "ghcr.io/astral-sh/uv:alpine",
            "docker.io/astral/uv:alpine3.21",
            "docker.io/astral/uv:alpine",
        )

    def test_never_uses_write_credentials(self, tmp_path: Path) -> None:
        registry = FakeRegistry()

        _run(tmp_path, DRY_RUN, registry=registry)

        assert registry.logins == [
            ("docker.io", "astralshbot", "ro-token"),
            ("ghcr.io", "astral-sh", "gh-token"),
        ]

    def test_untrusted_trigger_does_not_log_in(self, tmp_path: Path) -> None:
        registry = FakeRegistry()
        untrusted = PublishDecision(login=False, push=False, tag="dry-run", mode="build")

        result, _, _ = _run(tmp_path, untrusted, registry=registry)

        assert isinstance(result, Ok)
        assert registry.logins == []


class TestFailures:
    def test_base_failure_skips_everything_else(self, tmp_path: Path) -> None:
        builder = FakeBuilder(fail_labels=("0.5.0",))

        result, _, _ = _run(tmp_path, RELEASE, builder=builder)

        assert isinstance(result, Ok)
        report = result.value
        assert report.outcomes[BASE_NODE].status == "failed"
        assert all(
            o.status == "skipped" for name, o in report.outcomes.items() if name != BASE_NODE
        )
        assert len(builder.requests) == 1
        assert run_report_exit_code(report) == ErrorCode.BUILD_ERROR

    def test_pushed_image_without_digest_is_a_build_failure(self, tmp_path: Path) -> None:
        attestor = FakeAttestor()

        result, _, _ = _run(tmp_path, RELEASE, builder=FakeBuilder(report_digest=False), attestor=attestor)

        assert isinstance(result, Ok)
        failure = result.value.outcomes[BASE_NODE].error
        assert failure is not None
        assert failure.kind == "build_failed"
        assert failure.stage == BASE_NODE
        assert "no digest" in failure.message
        assert attestor.subjects == []

    def test_failed_extra_does_not_stop_the_others(self, tmp_path: Path) -> None:
        builder, registry = FakeBuilder(fail_labels=("0.5.0-alpine3.21",)), FakeRegistry()

        result, _, _ = _run(tmp_path, RELEASE, builder=builder, registry=registry)

        assert isinstance(result, Ok)
        report = result.value
        assert report.outcomes["extra:alpine:3.21"].status == "failed"
        assert report.outcomes["extra:debian:bookworm-slim"].succeeded
        assert report.outcomes[ANNOTATE_BASE_NODE].succeeded
        assert run_report_exit_code(report) == ErrorCode.BUILD_ERROR

        failure = report.outcomes["extra:alpine:3.21"].error
        assert failure is not None
        assert failure.stage == "extra:alpine:3.21"
        assert failure.image == "alpine:3.21"

    def test_annotation_without_effect_fails_the_stage(self, tmp_path: Path) -> None:
        registry = FakeRegistry(noop=True)

        result, _, _ = _run(tmp_path, RELEASE, registry=registry)

        assert isinstance(result, Ok)
        report = result.value
        errors = [o.error for o in report.failures if o.error is not None]
        assert {e.kind for e in errors} == {"annotation_noop"}
        assert report.outcomes[ANNOTATE_BASE_NODE].status == "failed"
        assert run_report_exit_code(report) == ErrorCode.BUILD_ERROR

    def test_login_failure_aborts_before_building(self, tmp_path: Path) -> None:
        builder = FakeBuilder()

        result, _, _ = _run(tmp_path, RELEASE, builder=builder, registry=FakeRegistry(refuse_login=True))

        assert isinstance(result, Err)
        assert result.error.kind == "registry_login_failed"
        assert result.error.stage == "login"
        assert builder.requests == []

    def test_invalid_matrix_aborts_before_building(self, tmp_path: Path) -> None:
        builder = FakeBuilder()

        result, _, _ = _run(tmp_path, RELEASE, builder=builder, matrix=("alpine:3.21",))

        assert isinstance(result, Err)
        assert result.error.kind == "invalid_input"
        assert result.error.stage == "matrix"
        assert builder.requests == []


class TestResolveRun:
    @pytest.fixture
    def root(self, tmp_path: Path) -> Path:
        (tmp_path / "pyproject.toml").write_text(
            '[project]\nname = "uv"\nversion = "0.5.0"\n', encoding="utf-8"
        )
        return tmp_path

    def test_release(self, root: Path) -> None:
        plan = json.dumps({"announcement_tag": "0.5.0", "announcement_tag_is_implicit": False})

        result = resolve_run(plan_text=plan, trigger=TriggerContext(), config=PublishConfig(), workspace_root=root)

        assert isinstance(result, Ok)
        decision, metadata = result.value
        assert decision == RELEASE
        assert metadata.name == "uv"

    def test_dry_run_from_fork(self, root: Path) -> None:
        result = resolve_run(
            plan_text=None,
            trigger=TriggerContext(head_repository="someone/uv"),
            config=PublishConfig(),
            workspace_root=root,
        )

        assert isinstance(result, Ok)
        decision, _ = result.value
        assert decision.login is False
        assert decision.push is False

    def test_dry_run_outside_pull_requests_logs_in(self, root: Path) -> None:
        # push, schedule and workflow_dispatch runs come from the repository itself
        result = resolve_run(plan_text=None, trigger=TriggerContext(), config=PublishConfig(), workspace_root=root)

        assert isinstance(result, Ok)
        decision, _ = result.value
        assert decision.login is True
        assert decision.push is False

    def test_tag_mismatch_is_fatal(self, root: Path) -> None:
        plan = json.dumps({"announcement_tag": "0.5.1", "announcement_tag_is_implicit": False})

        result = resolve_run(plan_text=plan, trigger=TriggerContext(), config=PublishConfig(), workspace_root=root)

        assert isinstance(result, Err)
        assert result.error.kind == "plan_inconsistency"

    def test_malformed_plan(self, root: Path) -> None:
        result = resolve_run(plan_text="{", trigger=TriggerContext(), config=PublishConfig(), workspace_root=root)

        assert isinstance(result, Err)
        assert result.error.kind == "invalid_input"
        assert result.error.stage == "plan"

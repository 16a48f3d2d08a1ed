"""Publish run orchestration.

    plan ──► login ──► base ──┬──► extra:<entry> (xN, parallel) ──┐
                              └───────────────────────────────────┴──► annotate-base

`plan` and `login` run before the graph and abort the run on failure.
`base` builds, pushes and attests the core image. Every extra job needs the
base image pushed, because its recipe copies binaries out of it by tag.
`annotate-base` (push runs only) needs `base` and waits for every extra job,
whatever their outcome, so the base image is the last one touched and shows
first in registry listings.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from imagepub.core.config import PublishConfig
from imagepub.core.result import Err, Ok, Result
from imagepub.output.console import ConsoleProtocol, PrefixedConsole
from imagepub.services.publish.attest import Attestor, attest_digest, reattest_after_annotation
from imagepub.services.publish.builder import Builder, BuildRequest
from imagepub.services.publish.errors import PublishError
from imagepub.services.publish.graph import NodeOutcome, Outcomes, TaskGraph
from imagepub.services.publish.matrix import (
    ExtraJob,
    expand_matrix,
    extra_tag_rules,
    parse_matrix,
    write_recipe,
)
from imagepub.services.publish.model import (
    AttestationRecord,
    BuildResult,
    MatrixEntry,
    PublishDecision,
    RunEnvironment,
    TagRule,
    TriggerContext,
)
from imagepub.services.publish.plan import (
    check_tag_consistency,
    is_trusted,
    parse_release_plan,
    resolve_decision,
)
from imagepub.services.publish.project import ProjectMetadata, read_project_metadata
from imagepub.services.publish.registry import Registry, annotate_manifest, login_all, plan_logins
from imagepub.services.publish.tags import (
    base_tag_rules,
    compute_annotations,
    compute_labels,
    compute_tags,
    format_labels,
)

BASE_NODE = "base"
ANNOTATE_BASE_NODE = "annotate-base"


@dataclass(frozen=True, slots=True)
class Collaborators:
    builder: Builder
    registry: Registry
    attestor: Attestor


@dataclass(frozen=True, slots=True)
class RunContext:
    config: PublishConfig
    decision: PublishDecision
    metadata: ProjectMetadata
    environment: RunEnvironment
    workspace_root: Path
    created: str

    @property
    def targets(self) -> tuple[str, ...]:
        return self.config.images.targets

    @property
    def attest_image(self) -> str:
        return self.config.images.attest

    @property
    def work_dir(self) -> Path:
        return self.workspace_root / self.config.work_dir


@dataclass(frozen=True, slots=True)
class ImagePublication:
    name: str
    build: BuildResult
    attestations: tuple[AttestationRecord, ...] = ()


@dataclass(frozen=True, slots=True)
class RunReport:
    decision: PublishDecision
    outcomes: dict[str, NodeOutcome]
    skipped_by_label: bool = False

    @property
    def failures(self) -> list[NodeOutcome]:
        return [o for o in self.outcomes.values() if o.status == "failed"]

    @property
    def ok(self) -> bool:
        return not self.failures

    def publication(self, name: str) -> ImagePublication | None:
        outcome = self.outcomes.get(name)
        if outcome is None or not isinstance(outcome.value, ImagePublication):
            return None
        return outcome.value


def resolve_run(
    *,
    plan_text: str | None,
    trigger: TriggerContext,
    config: PublishConfig,
    workspace_root: Path,
) -> Result[tuple[PublishDecision, ProjectMetadata], PublishError]:
    """Decide what this run does; fails before anything is built."""
    plan = parse_release_plan(plan_text)
    if isinstance(plan, Err):
        return Err(plan.error.at(stage="plan"))

    trusted = is_trusted(trigger, trusted_repository=config.trigger.trusted_repository)
    decision = resolve_decision(plan.value, trusted=trusted)

    metadata = read_project_metadata(workspace_root / config.metadata_file)
    if isinstance(metadata, Err):
        return Err(metadata.error.at(stage="plan"))

    consistent = check_tag_consistency(decision, project_version=metadata.value.version)
    if isinstance(consistent, Err):
        return consistent

    return Ok((decision, metadata.value))


def _build_and_attest(
    ctx: RunContext,
    tools: Collaborators,
    *,
    name: str,
    rules: Sequence[TagRule],
    context: Path,
    dockerfile: Path,
    console: ConsoleProtocol,
) -> Result[ImagePublication, PublishError]:
    tags = compute_tags(images=ctx.targets, rules=rules, version=ctx.decision.tag)
    if isinstance(tags, Err):
        return tags

    labels = compute_labels(
        metadata=ctx.metadata,
        environment=ctx.environment,
        version_label=tags.value.version,
        created=ctx.created,
    )
    request = BuildRequest(
        context=context,
        dockerfile=dockerfile,
        platforms=ctx.config.build.platforms,
        tags=tags.value.refs,
        labels=format_labels(labels),
        annotations=compute_annotations(labels),
        version_label=tags.value.version,
        push=ctx.decision.push,
    )

    console.print(f"{ctx.decision.mode} {name} ({', '.join(tags.value.tags)})")
    built = tools.builder.build(request, console=console)
    if isinstance(built, Err):
        return built

    if not ctx.decision.push:
        console.success(f"built {name}")
        return Ok(ImagePublication(name=name, build=built.value))

    digest = built.value.digest
    if digest is None:
        return Err(_missing_digest(name))
    record = attest_digest(tools.attestor, subject_name=ctx.attest_image, digest=digest, console=console)
    if isinstance(record, Err):
        return record

    console.success(f"published {name} {digest}")
    return Ok(ImagePublication(name=name, build=built.value, attestations=(record.value,)))


def _missing_digest(name: str) -> PublishError:
    return PublishError(
        kind="build_failed",
        message=f"no digest for pushed image {name}",
        hint="the build backend must report the pushed manifest digest",
    )


def _annotate_and_reattest(
    ctx: RunContext,
    tools: Collaborators,
    publication: ImagePublication,
    *,
    console: ConsoleProtocol,
) -> Result[ImagePublication, PublishError]:
    build = publication.build
    if build.digest is None:
        return Err(_missing_digest(publication.name))

    annotated = annotate_manifest(
        tools.registry,
        images=ctx.targets,
        digest=build.digest,
        refs=build.tags,
        annotations=build.annotations,
        console=console,
    )
    if isinstance(annotated, Err):
        return annotated

    record = reattest_after_annotation(
        tools.registry,
        tools.attestor,
        subject_name=ctx.attest_image,
        version_label=build.version_label,
        previous_digest=build.digest,
        noop_is_error=not tools.builder.native_annotations,
        console=console,
    )
    if isinstance(record, Err):
        return record

    console.success(f"annotated {publication.name} {record.value.subject_digest}")
    return Ok(
        ImagePublication(
            name=publication.name,
            build=build,
            attestations=publication.attestations + (record.value,),
        )
    )


def _base_stage(ctx: RunContext, tools: Collaborators, console: ConsoleProtocol):
    def run(_: Outcomes) -> Result[object, PublishError]:
        out = PrefixedConsole(console, BASE_NODE)
        result = _build_and_attest(
            ctx,
            tools,
            name=BASE_NODE,
            rules=base_tag_rules(ctx.decision),
            context=ctx.workspace_root / ctx.config.build.context,
            dockerfile=ctx.workspace_root / ctx.config.build.dockerfile,
            console=out,
        )
        return _tagged(result, stage=BASE_NODE, image=ctx.attest_image)

    return run


def _extra_stage(ctx: RunContext, tools: Collaborators, job: ExtraJob, console: ConsoleProtocol):
    def run(_: Outcomes) -> Result[object, PublishError]:
        out = PrefixedConsole(console, job.name)
        recipe = write_recipe(job, core_image=ctx.targets[0], recipe=ctx.config.extra)
        if isinstance(recipe, Err):
            return _tagged(recipe, stage=job.name, image=job.entry.base_image)

        built = _build_and_attest(
            ctx,
            tools,
            name=job.entry.base_image,
            rules=extra_tag_rules(job.entry, ctx.decision),
            context=job.context_dir,
            dockerfile=job.dockerfile,
            console=out,
        )
        if isinstance(built, Err) or not ctx.decision.push:
            return _tagged(built, stage=job.name, image=job.entry.base_image)

        result = _annotate_and_reattest(ctx, tools, built.value, console=out)
        return _tagged(result, stage=job.name, image=job.entry.base_image)

    return run


def _annotate_base_stage(ctx: RunContext, tools: Collaborators, console: ConsoleProtocol):
    def run(outcomes: Outcomes) -> Result[object, PublishError]:
        out = PrefixedConsole(console, ANNOTATE_BASE_NODE)
        base = outcomes[BASE_NODE].value
        if not isinstance(base, ImagePublication):
            missing = PublishError(kind="build_failed", message="base stage produced no image")
            return _tagged(Err(missing), stage=ANNOTATE_BASE_NODE, image=ctx.attest_image)
        result = _annotate_and_reattest(ctx, tools, base, console=out)
        return _tagged(result, stage=ANNOTATE_BASE_NODE, image=ctx.attest_image)

    return run


def _tagged[T](
    result: Result[T, PublishError], *, stage: str, image: str
) -> Result[object, PublishError]:
    if isinstance(result, Err):
        return Err(result.error.at(stage=stage, image=image))
    return result


def build_graph(
    ctx: RunContext,
    tools: Collaborators,
    entries: Sequence[MatrixEntry],
    *,
    console: ConsoleProtocol,
) -> TaskGraph:
    graph = TaskGraph()
    graph.add(BASE_NODE, _base_stage(ctx, tools, console))

    jobs = expand_matrix(entries, work_dir=ctx.work_dir)
    for job in jobs:
        graph.add(job.name, _extra_stage(ctx, tools, job, console), needs=(BASE_NODE,))

    if ctx.decision.push:
        graph.add(
            ANNOTATE_BASE_NODE,
            _annotate_base_stage(ctx, tools, console),
            needs=(BASE_NODE,),
            after=tuple(job.name for job in jobs),
        )
    return graph


def run_publish(
    ctx: RunContext,
    tools: Collaborators,
    *,
    secrets: Mapping[str, str],
    console: ConsoleProtocol,
    max_workers: int = 8,
) -> Result[RunReport, PublishError]:
    """Log in, then run the build graph.

    Returns Err only for failures before any build starts; stage failures are
    reported in the RunReport.
    """
    entries = parse_matrix(ctx.config.extra.matrix)
    if isinstance(entries, Err):
        return Err(entries.error.at(stage="matrix"))

    logins = plan_logins(ctx.decision, logins=ctx.config.logins, secrets=secrets)
    if isinstance(logins, Err):
        return logins
    logged_in = login_all(tools.registry, logins.value, console=console)
    if isinstance(logged_in, Err):
        return logged_in

    graph = build_graph(ctx, tools, entries.value, console=console)
    outcomes = graph.run(max_workers=max_workers)
    return Ok(RunReport(decision=ctx.decision, outcomes=outcomes))


def skipped_report(decision: PublishDecision) -> RunReport:
    return RunReport(decision=decision, outcomes={}, skipped_by_label=True)

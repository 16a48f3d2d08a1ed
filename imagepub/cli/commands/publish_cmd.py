from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import typer

from imagepub.cli.commands._helpers import exit_with_code, unwrap_or_exit
from imagepub.cli.context import (
    CLIContext,
    build_context,
    created_timestamp,
    read_plan_text,
    run_environment_from_env,
    trigger_from_env,
)
from imagepub.core.result import Err, Ok, Result
from imagepub.output.console import Style
from imagepub.output.errors import print_publish_error, run_report_exit_code
from imagepub.services.publish.attest import CosignAttestor
from imagepub.services.publish.builder import ImageBuilder, backend_from_config
from imagepub.services.publish.errors import PublishError
from imagepub.services.publish.matrix import (
    expand_matrix,
    extra_tag_rules,
    parse_matrix,
    write_recipe,
)
from imagepub.services.publish.model import MatrixEntry, PublishDecision, TriggerContext
from imagepub.services.publish.pipeline import (
    Collaborators,
    RunContext,
    RunReport,
    resolve_run,
    run_publish,
    skipped_report,
)
from imagepub.services.publish.plan import should_skip
from imagepub.services.publish.project import ProjectMetadata
from imagepub.services.publish.registry import DockerRegistry
from imagepub.services.publish.tags import base_tag_rules, compute_tags

PLAN_ENV = "IMAGEPUB_PLAN"

_PLAN_OPTION = typer.Option(
    None, "--plan", envvar=PLAN_ENV, help="Release plan JSON (empty means dry run)"
)
_PLAN_FILE_OPTION = typer.Option(None, "--plan-file", help="Read the release plan from a file")
_HEAD_REPO_OPTION = typer.Option(
    None, "--head-repository", help="Pull request head repository (default: from the CI event)"
)
_LABEL_OPTION = typer.Option(None, "--label", help="Pull request label (repeatable)")


@dataclass(frozen=True, slots=True)
class _Resolved:
    decision: PublishDecision
    metadata: ProjectMetadata
    trigger: TriggerContext


def _trigger(head_repository: str | None, labels: list[str] | None) -> TriggerContext:
    from_env = trigger_from_env(os.environ)
    return TriggerContext(
        head_repository=head_repository if head_repository is not None else from_env.head_repository,
        labels=tuple(labels) if labels else from_env.labels,
    )


def _resolve(
    ctx: CLIContext,
    *,
    plan: str | None,
    plan_file: Path | None,
    head_repository: str | None,
    labels: list[str] | None,
) -> _Resolved:
    text = unwrap_or_exit(read_plan_text(plan, plan_file), ctx)
    trigger = _trigger(head_repository, labels)
    decision, metadata = unwrap_or_exit(
        resolve_run(plan_text=text, trigger=trigger, config=ctx.config, workspace_root=ctx.root),
        ctx,
    )
    return _Resolved(decision=decision, metadata=metadata, trigger=trigger)


def _write_github_output(decision: PublishDecision) -> None:
    path = os.environ.get("GITHUB_OUTPUT")
    if not path:
        return
    lines = [
        f"login={str(decision.login).lower()}",
        f"push={str(decision.push).lower()}",
        f"tag={decision.tag}",
        f"action={decision.mode}",
    ]
    with Path(path).open("a", encoding="utf-8") as f:
        f.write("\n".join(lines) + "\n")


def plan(
    plan: str | None = _PLAN_OPTION,
    plan_file: Path | None = _PLAN_FILE_OPTION,
    head_repository: str | None = _HEAD_REPO_OPTION,
    label: list[str] | None = _LABEL_OPTION,
) -> None:
    """Resolve the release plan into a publish decision."""
    ctx = build_context()
    resolved = _resolve(
        ctx, plan=plan, plan_file=plan_file, head_repository=head_repository, labels=label
    )
    decision = resolved.decision

    ctx.console.print(f"project: {resolved.metadata.name} {resolved.metadata.version}", Style.DIM)
    ctx.console.print(f"mode: {decision.mode}")
    ctx.console.print(f"tag: {decision.tag}")
    ctx.console.print(f"login: {str(decision.login).lower()}")
    ctx.console.print(f"push: {str(decision.push).lower()}")
    if should_skip(resolved.trigger, skip_label=ctx.config.trigger.skip_label):
        ctx.console.warning(f"label {ctx.config.trigger.skip_label!r} set: builds will be skipped")

    _write_github_output(decision)


def _find_entry(ctx: CLIContext, name: str) -> MatrixEntry:
    entries = unwrap_or_exit(parse_matrix(ctx.config.extra.matrix), ctx)
    for entry in entries:
        if entry.base_image == name or name in entry.aliases:
            return entry
    return unwrap_or_exit(
        Err(
            PublishError(
                kind="invalid_input",
                message=f"no matrix entry for {name!r}",
                hint="run `imagepub matrix` to list entries",
            )
        ),
        ctx,
    )


def tags(
    entry: str | None = typer.Option(
        None, "--entry", help="Matrix base image or alias (default: the base image)"
    ),
    plan: str | None = _PLAN_OPTION,
    plan_file: Path | None = _PLAN_FILE_OPTION,
) -> None:
    """Show the tags a run would publish."""
    ctx = build_context()
    resolved = _resolve(ctx, plan=plan, plan_file=plan_file, head_repository=None, labels=None)
    decision = resolved.decision

    if entry is None:
        rules = base_tag_rules(decision)
    else:
        rules = extra_tag_rules(_find_entry(ctx, entry), decision)

    computed = unwrap_or_exit(
        compute_tags(images=ctx.config.images.targets, rules=rules, version=decision.tag), ctx
    )
    for ref in computed.refs:
        ctx.console.print(ref)
    ctx.console.print(f"version label: {computed.version}", Style.DIM)


def matrix(
    write: bool = typer.Option(False, "--write", help="Write every build recipe to the work dir"),
) -> None:
    """List the extra images and, optionally, render their build recipes."""
    ctx = build_context()
    entries = unwrap_or_exit(parse_matrix(ctx.config.extra.matrix), ctx)
    jobs = expand_matrix(entries, work_dir=ctx.root / ctx.config.work_dir)
    core_image = ctx.config.images.targets[0]

    for job in jobs:
        ctx.console.print(f"{job.entry.base_image}: {', '.join(job.entry.aliases)}")
        if write:
            path = unwrap_or_exit(
                write_recipe(job, core_image=core_image, recipe=ctx.config.extra), ctx
            )
            ctx.console.print(f"  {path}", Style.DIM)

    ctx.console.print(f"{len(jobs)} extra images", Style.DIM)


def _default_collaborators(ctx: CLIContext, run_ctx: RunContext) -> Collaborators:
    return Collaborators(
        builder=ImageBuilder(backend=backend_from_config(ctx.config.build), workspace_root=ctx.root),
        registry=DockerRegistry(workspace_root=ctx.root),
        attestor=CosignAttestor(
            workspace_root=ctx.root, work_dir=run_ctx.work_dir, environment=run_ctx.environment
        ),
    )


def _print_report(ctx: CLIContext, report: RunReport) -> None:
    console = ctx.console
    console.header("Summary")
    if report.skipped_by_label:
        console.warning(f"label {ctx.config.trigger.skip_label!r} set: all build stages skipped")
        return

    for outcome in report.outcomes.values():
        if outcome.status == "succeeded":
            console.success(outcome.name)
        elif outcome.status == "skipped":
            console.print(f"{outcome.name}: skipped ({outcome.reason})", Style.WARNING)
        elif outcome.error is not None:
            print_publish_error(outcome.error.at(stage=outcome.name), console)


def execute(
    ctx: CLIContext,
    resolved: _Resolved,
    *,
    collaborators: Collaborators | None = None,
    max_workers: int = 8,
) -> Result[RunReport, PublishError]:
    """Run every stage; split from `run` so tests can swap the collaborators."""
    if should_skip(resolved.trigger, skip_label=ctx.config.trigger.skip_label):
        return Ok(skipped_report(resolved.decision))

    run_ctx = RunContext(
        config=ctx.config,
        decision=resolved.decision,
        metadata=resolved.metadata,
        environment=run_environment_from_env(os.environ),
        workspace_root=ctx.root,
        created=created_timestamp(os.environ),
    )
    tools = collaborators or _default_collaborators(ctx, run_ctx)

    ctx.console.header(f"{resolved.decision.mode}: {resolved.metadata.name} {resolved.decision.tag}")
    return run_publish(
        run_ctx, tools, secrets=os.environ, console=ctx.console, max_workers=max_workers
    )


def run(
    plan: str | None = _PLAN_OPTION,
    plan_file: Path | None = _PLAN_FILE_OPTION,
    head_repository: str | None = _HEAD_REPO_OPTION,
    label: list[str] | None = _LABEL_OPTION,
    jobs: int = typer.Option(8, "--jobs", "-j", min=1, help="Parallel build jobs"),
) -> None:
    """Build, push, annotate and attest every image."""
    ctx = build_context()
    resolved = _resolve(
        ctx, plan=plan, plan_file=plan_file, head_repository=head_repository, labels=label
    )
    report = unwrap_or_exit(execute(ctx, resolved, max_workers=jobs), ctx)
    _print_report(ctx, report)
    exit_with_code(run_report_exit_code(report))

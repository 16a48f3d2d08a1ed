from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import typer

from imagepub.core.config import CONFIG_FILE_NAME, PublishConfig, load_config_or_default
from imagepub.core.errors import ErrorCode
from imagepub.core.result import Err, Ok, Result
from imagepub.core.structured import as_obj_list, as_str_dict, get_str, get_table
from imagepub.output.console import ConsoleProtocol, RichConsole
from imagepub.services.publish.errors import PublishError
from imagepub.services.publish.model import RunEnvironment, TriggerContext

ROOT_ENV = "IMAGEPUB_ROOT"
CONFIG_ENV = "IMAGEPUB_CONFIG"

_PR_EVENTS = ("pull_request", "pull_request_target")


@dataclass(frozen=True, slots=True)
class CLIContext:
    root: Path
    config: PublishConfig
    console: ConsoleProtocol


def build_context() -> CLIContext:
    root = Path(os.environ.get(ROOT_ENV) or Path.cwd())
    config_path = Path(os.environ.get(CONFIG_ENV) or root / CONFIG_FILE_NAME)

    config_result = load_config_or_default(config_path)
    if isinstance(config_result, Err):
        typer.echo(f"error: {config_result.error.message}", err=True)
        raise typer.Exit(code=int(ErrorCode.IO_ERROR))

    return CLIContext(root=root, config=config_result.value, console=RichConsole())


def read_plan_text(plan: str | None, plan_file: Path | None) -> Result[str | None, PublishError]:
    """Inline plan JSON wins over a plan file; neither means a dry run."""
    if plan is not None:
        return Ok(plan)
    if plan_file is None:
        return Ok(None)
    try:
        return Ok(plan_file.read_text(encoding="utf-8"))
    except OSError as e:
        return Err(
            PublishError(
                kind="invalid_input",
                message=f"failed to read release plan: {e}",
                hint=str(plan_file),
                stage="plan",
            )
        )


def run_environment_from_env(environ: Mapping[str, str]) -> RunEnvironment:
    return RunEnvironment(
        repository=environ.get("GITHUB_REPOSITORY") or None,
        sha=environ.get("GITHUB_SHA") or None,
        ref=environ.get("GITHUB_REF") or None,
        run_id=environ.get("GITHUB_RUN_ID") or None,
        run_attempt=environ.get("GITHUB_RUN_ATTEMPT") or None,
        workflow_ref=environ.get("GITHUB_WORKFLOW_REF") or None,
        server_url=environ.get("GITHUB_SERVER_URL") or "https://github.com",
    )


def trigger_from_event(event_name: str | None, payload: Mapping[str, object]) -> TriggerContext:
    """Pull request head repository and labels from a GitHub event payload."""
    if event_name not in _PR_EVENTS:
        return TriggerContext()

    pr = get_table(payload, "pull_request") or {}
    head = get_table(pr, "head") or {}
    repo = get_table(head, "repo") or {}

    labels: list[str] = []
    for item in as_obj_list(pr.get("labels")) or []:
        label = as_str_dict(item)
        name = get_str(label, "name") if label is not None else None
        if name:
            labels.append(name)

    # A PR whose head repository was deleted has no repo object: treat as a fork.
    return TriggerContext(head_repository=get_str(repo, "full_name") or "", labels=tuple(labels))


def trigger_from_env(environ: Mapping[str, str]) -> TriggerContext:
    event_name = environ.get("GITHUB_EVENT_NAME")
    event_path = environ.get("GITHUB_EVENT_PATH")
    if event_name not in _PR_EVENTS or not event_path:
        return TriggerContext()
    try:
        payload: object = json.loads(Path(event_path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return trigger_from_event(event_name, {})
    return trigger_from_event(event_name, as_str_dict(payload) or {})


def created_timestamp(environ: Mapping[str, str]) -> str:
    """RFC 3339 creation time, pinned by SOURCE_DATE_EPOCH when set."""
    epoch = environ.get("SOURCE_DATE_EPOCH")
    if epoch and epoch.isdigit():
        moment = datetime.fromtimestamp(int(epoch), tz=UTC)
    else:
        moment = datetime.now(tz=UTC)
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")

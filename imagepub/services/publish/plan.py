"""Release plan resolution.

The plan comes from the release tooling as JSON. No plan, or a plan whose
announcement tag is implicit, means nothing was explicitly released and the
run only builds.
"""

from __future__ import annotations

import json

from packaging.version import InvalidVersion, Version

from imagepub.core.result import Err, Ok, Result
from imagepub.core.structured import as_str_dict, get_bool
from imagepub.services.publish.errors import PublishError
from imagepub.services.publish.model import (
    DRY_RUN_TAG,
    PublishDecision,
    ReleasePlan,
    TriggerContext,
)


def parse_release_plan(text: str | None) -> Result[ReleasePlan | None, PublishError]:
    if text is None or not text.strip():
        return Ok(None)

    try:
        obj: object = json.loads(text)
    except json.JSONDecodeError as e:
        return Err(
            PublishError(
                kind="invalid_input",
                message=f"release plan is not valid JSON: {e}",
            )
        )

    data = as_str_dict(obj)
    if data is None:
        return Err(PublishError(kind="invalid_input", message="release plan must be a JSON object"))

    implicit = get_bool(data, "announcement_tag_is_implicit")
    if implicit is None:
        return Err(
            PublishError(
                kind="invalid_input",
                message="release plan is missing announcement_tag_is_implicit",
                hint="expected a boolean",
            )
        )

    tag = data.get("announcement_tag")
    if tag is None and implicit:
        tag = ""
    if not isinstance(tag, str):
        return Err(
            PublishError(
                kind="invalid_input",
                message="release plan announcement_tag must be a string",
            )
        )
    if not implicit and not tag.strip():
        return Err(
            PublishError(
                kind="invalid_input",
                message="release plan has an explicit but empty announcement_tag",
            )
        )

    return Ok(ReleasePlan(announcement_tag=tag.strip(), announcement_tag_is_implicit=implicit))


def is_trusted(trigger: TriggerContext, *, trusted_repository: str) -> bool:
    """Changes from forks never get credentials, even read-only ones."""
    if trigger.head_repository is None:
        return True
    return trigger.head_repository == trusted_repository


def should_skip(trigger: TriggerContext, *, skip_label: str) -> bool:
    return skip_label in trigger.labels


def resolve_decision(plan: ReleasePlan | None, *, trusted: bool) -> PublishDecision:
    if plan is None or plan.announcement_tag_is_implicit:
        # Trusted dry runs still log in so pulls are not rate limited.
        return PublishDecision(login=trusted, push=False, tag=DRY_RUN_TAG, mode="build")

    return PublishDecision(
        login=True,
        push=True,
        tag=plan.announcement_tag,
        mode="build and publish",
    )


def check_tag_consistency(
    decision: PublishDecision, *, project_version: str
) -> Result[None, PublishError]:
    """Refuse to publish a tag that is not the version the project declares."""
    if not decision.push:
        return Ok(None)

    try:
        Version(decision.tag)
    except InvalidVersion:
        return Err(
            PublishError(
                kind="plan_inconsistency",
                message=f"release tag is not a valid version: {decision.tag}",
                stage="plan",
            )
        )

    if decision.tag != project_version:
        return Err(
            PublishError(
                kind="plan_inconsistency",
                message="the release tag does not match the project version",
                hint=f"tag {decision.tag}, project {project_version}",
                stage="plan",
            )
        )

    return Ok(None)

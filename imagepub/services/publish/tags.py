"""Tag, label and annotation computation.

Tag rules are evaluated in declared order. The first tag produced by a full
`version` rule becomes the canonical `org.opencontainers.image.version`
label, which is also the tag the manifest digest is read back through after
annotation. Reordering rules therefore changes which manifest gets attested.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from packaging.version import InvalidVersion, Version

from imagepub.core.result import Err, Ok, Result
from imagepub.services.publish.errors import PublishError
from imagepub.services.publish.model import (
    DRY_RUN_TAG,
    ImageTags,
    PublishDecision,
    RunEnvironment,
    TagRule,
)
from imagepub.services.publish.project import ProjectMetadata

OCI_PREFIX = "org.opencontainers.image"
ANNOTATION_LEVELS = ("index",)


def render_rule(rule: TagRule, version: Version | None) -> str | None:
    """Render one rule, or None when it emits nothing."""
    if not rule.enabled:
        return None

    match rule.kind:
        case "raw":
            if not rule.value:
                return None
            return rule.value + rule.suffix
        case "version":
            if version is None:
                return None
            return str(version) + rule.suffix
        case "major_minor":
            # Pre-releases only ever get the full version tag.
            if version is None or version.is_prerelease:
                return None
            return f"{version.major}.{version.minor}{rule.suffix}"
        case "latest":
            if version is None or version.is_prerelease:
                return None
            return "latest" + rule.suffix

    raise AssertionError(f"unexpected tag rule kind: {rule.kind}")


def _needs_version(rules: Iterable[TagRule]) -> bool:
    return any(r.enabled and r.kind != "raw" for r in rules)


def compute_tags(
    *,
    images: Sequence[str],
    rules: Sequence[TagRule],
    version: str,
) -> Result[ImageTags, PublishError]:
    parsed: Version | None = None
    if _needs_version(rules):
        try:
            parsed = Version(version)
        except InvalidVersion:
            return Err(
                PublishError(
                    kind="invalid_input",
                    message=f"not a valid version: {version}",
                    hint="tags are rendered from PEP 440 versions",
                )
            )

    tags: list[str] = []
    canonical: str | None = None
    for rule in rules:
        tag = render_rule(rule, parsed)
        if tag is None or tag in tags:
            continue
        tags.append(tag)
        if canonical is None and rule.kind == "version":
            canonical = tag

    if not tags:
        return Err(
            PublishError(
                kind="invalid_input",
                message="no tag rule is enabled",
                hint="at least one tag is needed to reference the image",
            )
        )

    refs = tuple(f"{image}:{tag}" for image in images for tag in tags)
    return Ok(ImageTags(refs=refs, version=canonical or tags[0]))


def base_tag_rules(decision: PublishDecision) -> tuple[TagRule, ...]:
    return (
        TagRule(kind="raw", value=DRY_RUN_TAG, enabled=not decision.push),
        TagRule(kind="version", enabled=decision.push),
        TagRule(kind="major_minor", enabled=decision.push),
        TagRule(kind="latest", enabled=decision.push),
    )


def tags_for_image(refs: Iterable[str], image: str) -> tuple[str, ...]:
    prefix = f"{image}:"
    return tuple(r for r in refs if r.startswith(prefix))


def compute_labels(
    *,
    metadata: ProjectMetadata,
    environment: RunEnvironment,
    version_label: str,
    created: str,
) -> tuple[tuple[str, str], ...]:
    values: list[tuple[str, str | None]] = [
        ("created", created),
        ("description", metadata.description),
        ("licenses", metadata.license),
        ("revision", environment.sha),
        ("source", environment.repository_url or metadata.url),
        ("title", metadata.name),
        ("url", environment.repository_url or metadata.url),
        ("version", version_label),
    ]
    return tuple((f"{OCI_PREFIX}.{k}", v) for k, v in values if v)


def format_labels(labels: Iterable[tuple[str, str]]) -> tuple[str, ...]:
    return tuple(f"{k}={v}" for k, v in labels)


def compute_annotations(
    labels: Iterable[tuple[str, str]],
    *,
    levels: Sequence[str] = ANNOTATION_LEVELS,
) -> tuple[str, ...]:
    return dedupe_annotations(f"{level}:{k}={v}" for level in levels for k, v in labels)


def dedupe_annotations(annotations: Iterable[str]) -> tuple[str, ...]:
    """Drop repeated keys, keeping the first value for each `level:key`."""
    seen: set[str] = set()
    out: list[str] = []
    for item in annotations:
        key = item.split("=", 1)[0]
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
    return tuple(out)

"""Extra images derived from third-party base images.

Every matrix entry becomes an independent job with its own build context, so
parallel jobs never write the same recipe file. The recipe copies the
binaries out of `<core image>:latest` rather than a pinned digest; within a
release run that tag was just moved by the base build.
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from imagepub.core.config import ExtraConfig
from imagepub.core.result import Err, Ok, Result
from imagepub.platform.files import atomic_write_text, fresh_dir
from imagepub.services.publish.errors import PublishError
from imagepub.services.publish.model import MatrixEntry, PublishDecision, TagRule

CORE_IMAGE_REF = "latest"
EXTRA_NODE_PREFIX = "extra:"

_SLUG_RE = re.compile(r"[^A-Za-z0-9.]+")


@dataclass(frozen=True, slots=True)
class ExtraJob:
    entry: MatrixEntry
    context_dir: Path

    @property
    def name(self) -> str:
        return f"{EXTRA_NODE_PREFIX}{self.entry.base_image}"

    @property
    def dockerfile(self) -> Path:
        return self.context_dir / "Dockerfile"


def parse_matrix_entry(text: str) -> Result[MatrixEntry, PublishError]:
    parts = [p.strip() for p in text.split(",")]
    base, aliases = parts[0], tuple(p for p in parts[1:] if p)
    if not base or not aliases:
        return Err(
            PublishError(
                kind="invalid_input",
                message=f"invalid matrix entry: {text!r}",
                hint="expected: <base image>,<alias>[,<alias>...]",
            )
        )
    return Ok(MatrixEntry(base_image=base, aliases=aliases))


def parse_matrix(items: Sequence[str]) -> Result[tuple[MatrixEntry, ...], PublishError]:
    entries: list[MatrixEntry] = []
    owner: dict[str, str] = {}
    contexts: dict[str, str] = {}
    for item in items:
        parsed = parse_matrix_entry(item)
        if isinstance(parsed, Err):
            return parsed
        entry = parsed.value
        if any(e.base_image == entry.base_image for e in entries):
            return Err(
                PublishError(
                    kind="invalid_input",
                    message=f"duplicate matrix base image: {entry.base_image}",
                )
            )
        # Each job owns its build context directory.
        context = slug(entry.base_image)
        if context in contexts:
            return Err(
                PublishError(
                    kind="invalid_input",
                    message=f"matrix entries share the build directory {context!r}",
                    hint=f"{contexts[context]} and {entry.base_image}",
                )
            )
        contexts[context] = entry.base_image
        for alias in entry.aliases:
            # Aliases become raw tags; two entries sharing one would overwrite each other.
            if alias in owner:
                return Err(
                    PublishError(
                        kind="invalid_input",
                        message=f"matrix alias {alias!r} is used twice",
                        hint=f"{owner[alias]} and {entry.base_image}",
                    )
                )
            owner[alias] = entry.base_image
        entries.append(entry)
    return Ok(tuple(entries))


def slug(base_image: str) -> str:
    return _SLUG_RE.sub("-", base_image).strip("-")


def expand_matrix(entries: Sequence[MatrixEntry], *, work_dir: Path) -> tuple[ExtraJob, ...]:
    return tuple(
        ExtraJob(entry=e, context_dir=work_dir / "extra" / slug(e.base_image)) for e in entries
    )


def render_dockerfile(entry: MatrixEntry, *, core_image: str, recipe: ExtraConfig) -> str:
    sources = " ".join(recipe.binaries)
    bin_dir = recipe.bin_dir.rstrip("/") + "/"
    lines = [
        f"FROM {entry.base_image}",
        f"COPY --from={core_image}:{CORE_IMAGE_REF} {sources} {bin_dir}",
    ]
    for key, value in recipe.env:
        lines.append(f"ENV {key}={json.dumps(value)}")
    lines.append("ENTRYPOINT []")
    lines.append(f"CMD {json.dumps(list(recipe.cmd))}")
    return "\n".join(lines) + "\n"


def write_recipe(job: ExtraJob, *, core_image: str, recipe: ExtraConfig) -> Result[Path, PublishError]:
    try:
        fresh_dir(job.context_dir)
        atomic_write_text(
            job.dockerfile, render_dockerfile(job.entry, core_image=core_image, recipe=recipe)
        )
    except OSError as e:
        return Err(
            PublishError(
                kind="invalid_input",
                message=f"failed to write build recipe: {e}",
                hint=str(job.dockerfile),
            )
        )
    return Ok(job.dockerfile)


def extra_tag_rules(entry: MatrixEntry, decision: PublishDecision) -> tuple[TagRule, ...]:
    """Version tags suffixed with each alias, then the bare alias.

    The first alias comes first so its suffixed full version is the canonical
    version label of the image.
    """
    rules: list[TagRule] = []
    for alias in entry.aliases:
        suffix = f"-{alias}"
        rules.append(TagRule(kind="version", enabled=decision.push, suffix=suffix))
        rules.append(TagRule(kind="major_minor", enabled=decision.push, suffix=suffix))
        rules.append(TagRule(kind="raw", value=alias))
    return tuple(rules)

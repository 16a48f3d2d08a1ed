from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path

from imagepub.core.result import Err, Ok, Result
from imagepub.core.structured import as_str_dict, get_str, get_table
from imagepub.services.publish.errors import PublishError

_URL_KEYS = ("Repository", "Source", "repository", "source", "Homepage", "homepage")


@dataclass(frozen=True, slots=True)
class ProjectMetadata:
    """What the packaging metadata says about the published binary."""

    name: str
    version: str
    description: str | None = None
    license: str | None = None
    url: str | None = None


def read_project_metadata(path: Path) -> Result[ProjectMetadata, PublishError]:
    """Read the authoritative version from a pyproject.toml `[project]` table."""
    try:
        data_obj: object = tomllib.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        return Err(
            PublishError(
                kind="invalid_input",
                message=f"failed to read project metadata: {e}",
                hint=str(path),
            )
        )
    except tomllib.TOMLDecodeError as e:
        return Err(
            PublishError(
                kind="invalid_input",
                message=f"invalid TOML in project metadata: {e}",
                hint=str(path),
            )
        )

    data = as_str_dict(data_obj) or {}
    project = get_table(data, "project")
    if project is None:
        return Err(
            PublishError(
                kind="invalid_input",
                message="project metadata has no [project] table",
                hint=str(path),
            )
        )

    name = get_str(project, "name")
    version = get_str(project, "version")
    if name is None or version is None:
        return Err(
            PublishError(
                kind="invalid_input",
                message="project metadata must declare a static name and version",
                hint=str(path),
            )
        )

    return Ok(
        ProjectMetadata(
            name=name,
            version=version,
            description=get_str(project, "description"),
            license=_license(project.get("license")),
            url=_url(get_table(project, "urls") or {}),
        )
    )


def _license(value: object) -> str | None:
    if isinstance(value, str):
        return value.strip() or None
    table = as_str_dict(value)
    if table is None:
        return None
    return get_str(table, "text")


def _url(urls: dict[str, object]) -> str | None:
    for key in _URL_KEYS:
        url = get_str(urls, key)
        if url is not None:
            return url
    return None

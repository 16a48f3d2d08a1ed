"""Multi-platform image builds through an external build backend.

Both backends take the same flags as `docker buildx build` and report the
pushed index digest through `--metadata-file`.
"""

from __future__ import annotations

import json
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from imagepub.core.config import BuildConfig
from imagepub.core.result import Err, Ok, Result
from imagepub.core.structured import as_str_dict, get_str
from imagepub.output.console import ConsoleProtocol, Style
from imagepub.platform.process import run as run_process
from imagepub.services.publish.errors import PublishError
from imagepub.services.publish.model import BuildResult

_DIGEST_KEY = "containerimage.digest"


@dataclass(frozen=True, slots=True)
class BuildRequest:
    context: Path
    dockerfile: Path
    platforms: tuple[str, ...]
    tags: tuple[str, ...]
    labels: tuple[str, ...]
    annotations: tuple[str, ...]
    version_label: str
    push: bool


class BuildBackend(Protocol):
    @property
    def executable(self) -> str: ...

    @property
    def native_annotations(self) -> bool: ...

    def command(self, request: BuildRequest, *, metadata_file: Path) -> list[str]: ...


def _common_flags(
    request: BuildRequest, *, metadata_file: Path, annotations: bool
) -> list[str]:
    flags = [
        "--platform",
        ",".join(request.platforms),
        "--file",
        str(request.dockerfile),
        "--metadata-file",
        str(metadata_file),
    ]
    for tag in request.tags:
        flags.extend(["--tag", tag])
    for label in request.labels:
        flags.extend(["--label", label])
    if annotations:
        for annotation in request.annotations:
            flags.extend(["--annotation", annotation])
    if request.push:
        flags.append("--push")
    flags.append(str(request.context))
    return flags


@dataclass(frozen=True, slots=True)
class DepotBackend:
    project: str | None
    native_annotations: bool = False

    @property
    def executable(self) -> str:
        return "depot"

    def command(self, request: BuildRequest, *, metadata_file: Path) -> list[str]:
        cmd = ["depot", "build"]
        if self.project:
            cmd.extend(["--project", self.project])
        cmd.extend(
            _common_flags(
                request, metadata_file=metadata_file, annotations=self.native_annotations
            )
        )
        return cmd


@dataclass(frozen=True, slots=True)
class BuildxBackend:
    native_annotations: bool = False

    @property
    def executable(self) -> str:
        return "docker"

    def command(self, request: BuildRequest, *, metadata_file: Path) -> list[str]:
        return [
            "docker",
            "buildx",
            "build",
            *_common_flags(
                request, metadata_file=metadata_file, annotations=self.native_annotations
            ),
        ]


class Builder(Protocol):
    @property
    def native_annotations(self) -> bool: ...

    def build(
        self, request: BuildRequest, *, console: ConsoleProtocol
    ) -> Result[BuildResult, PublishError]: ...


def backend_from_config(build: BuildConfig) -> BuildBackend:
    if build.backend == "buildx":
        return BuildxBackend(native_annotations=build.native_annotations)
    return DepotBackend(project=build.depot_project, native_annotations=build.native_annotations)


def _tail(text: str, lines: int = 20) -> str | None:
    stripped = text.strip()
    if not stripped:
        return None
    return "\n".join(stripped.splitlines()[-lines:])


def read_build_digest(metadata_file: Path) -> str | None:
    try:
        obj: object = json.loads(metadata_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    data = as_str_dict(obj)
    if data is None:
        return None
    return get_str(data, _DIGEST_KEY)


class ImageBuilder:
    """Runs one build per call; safe to share between matrix jobs."""

    def __init__(self, *, backend: BuildBackend, workspace_root: Path) -> None:
        self._backend = backend
        self._workspace_root = workspace_root

    @property
    def native_annotations(self) -> bool:
        return self._backend.native_annotations

    def build(
        self, request: BuildRequest, *, console: ConsoleProtocol
    ) -> Result[BuildResult, PublishError]:
        if shutil.which(self._backend.executable) is None:
            return Err(
                PublishError(
                    kind="tool_missing",
                    message=f"{self._backend.executable}: missing",
                    hint="Install the build backend CLI and put it on PATH.",
                )
            )

        with tempfile.TemporaryDirectory(prefix="imagepub-build-") as tmp:
            metadata_file = Path(tmp) / "metadata.json"
            cmd = self._backend.command(request, metadata_file=metadata_file)
            console.print(" ".join(cmd[:3]) + " ...", Style.DIM)

            result = run_process(cmd, cwd=self._workspace_root)
            if isinstance(result, Err):
                e = result.error
                return Err(
                    PublishError(
                        kind="build_failed",
                        message=str(e),
                        hint=_tail(e.stderr) or _tail(e.stdout),
                    )
                )

            digest = read_build_digest(metadata_file)

        if request.push and digest is None:
            return Err(
                PublishError(
                    kind="build_failed",
                    message="build backend did not report a digest for the pushed image",
                    hint=f"expected {_DIGEST_KEY} in --metadata-file output",
                )
            )

        return Ok(
            BuildResult(
                digest=digest,
                tags=request.tags,
                annotations=request.annotations,
                labels=request.labels,
                version_label=request.version_label,
            )
        )

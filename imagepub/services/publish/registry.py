"""Registry-side manifest operations.

The build backend cannot attach index-level annotations, so published
manifests are recreated afterwards with `docker buildx imagetools create`:
same platform manifests, plus annotations and tags. Recreating with the same
inputs yields the same index, so the rewrite is safe to repeat.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from imagepub.core.config import RegistryLoginConfig
from imagepub.core.result import Err, Ok, Result
from imagepub.core.structured import as_str_dict, get_str
from imagepub.output.console import ConsoleProtocol, Style
from imagepub.platform.process import run as run_process
from imagepub.services.publish.errors import PublishError
from imagepub.services.publish.model import ManifestRef, PublishDecision
from imagepub.services.publish.tags import dedupe_annotations, tags_for_image


class Registry(Protocol):
    def login(self, *, registry: str, username: str, password: str) -> Result[None, PublishError]: ...

    def create_manifest(
        self,
        *,
        source: ManifestRef,
        tags: Sequence[str],
        annotations: Sequence[str],
    ) -> Result[None, PublishError]: ...

    def inspect_digest(self, ref: ManifestRef) -> Result[str, PublishError]: ...


class DockerRegistry:
    """Registry operations through the docker CLI."""

    def __init__(self, *, workspace_root: Path) -> None:
        self._root = workspace_root

    def login(self, *, registry: str, username: str, password: str) -> Result[None, PublishError]:
        result = run_process(
            ["docker", "login", registry, "--username", username, "--password-stdin"],
            cwd=self._root,
            input=password,
        )
        if isinstance(result, Err):
            return Err(
                PublishError(
                    kind="registry_login_failed",
                    message=f"login to {registry} failed",
                    hint=result.error.stderr.strip() or None,
                )
            )
        return Ok(None)

    def create_manifest(
        self,
        *,
        source: ManifestRef,
        tags: Sequence[str],
        annotations: Sequence[str],
    ) -> Result[None, PublishError]:
        cmd = ["docker", "buildx", "imagetools", "create"]
        for annotation in annotations:
            cmd.extend(["--annotation", annotation])
        for tag in tags:
            cmd.extend(["--tag", tag])
        cmd.append(str(source))

        result = run_process(cmd, cwd=self._root)
        if isinstance(result, Err):
            return Err(
                PublishError(
                    kind="registry_push_failed",
                    message=f"failed to recreate manifest {source}",
                    hint=result.error.stderr.strip() or None,
                )
            )
        return Ok(None)

    def inspect_digest(self, ref: ManifestRef) -> Result[str, PublishError]:
        # imagetools create does not report the digest it wrote, so read it back.
        result = run_process(
            [
                "docker",
                "buildx",
                "imagetools",
                "inspect",
                str(ref),
                "--format",
                "{{json .Manifest}}",
            ],
            cwd=self._root,
        )
        if isinstance(result, Err):
            return Err(
                PublishError(
                    kind="registry_push_failed",
                    message=f"failed to inspect {ref}",
                    hint=result.error.stderr.strip() or None,
                )
            )
        return parse_manifest_digest(result.value, ref=ref)


def parse_manifest_digest(payload: str, *, ref: ManifestRef) -> Result[str, PublishError]:
    try:
        obj: object = json.loads(payload)
    except json.JSONDecodeError as e:
        return Err(
            PublishError(
                kind="registry_push_failed",
                message=f"invalid manifest JSON for {ref}: {e}",
            )
        )
    data = as_str_dict(obj)
    digest = get_str(data, "digest") if data is not None else None
    if digest is None or not digest.startswith("sha256:"):
        return Err(
            PublishError(
                kind="registry_push_failed",
                message=f"manifest for {ref} has no digest",
            )
        )
    return Ok(digest)


def annotate_manifest(
    registry: Registry,
    *,
    images: Sequence[str],
    digest: str,
    refs: Sequence[str],
    annotations: Sequence[str],
    console: ConsoleProtocol,
) -> Result[None, PublishError]:
    """Recreate the manifest of `digest` on every image with annotations and tags.

    Every registry is attempted even after a failure; partial success is
    reported in the error, never rolled back.
    """
    unique = dedupe_annotations(annotations)
    done: list[str] = []
    failed: list[PublishError] = []

    for image in images:
        source = ManifestRef(image=image, reference=digest)
        console.print(f"annotate {source}", Style.DIM)
        result = registry.create_manifest(
            source=source,
            tags=tags_for_image(refs, image),
            annotations=unique,
        )
        if isinstance(result, Err):
            failed.append(result.error.at(stage="annotate", image=image))
            console.error(result.error.pretty())
            continue
        done.append(image)

    if failed:
        names = ", ".join(e.image or "?" for e in failed)
        return Err(
            PublishError(
                kind="registry_push_failed",
                message=f"manifest annotation failed for: {names}",
                hint=f"annotated: {', '.join(done)}" if done else failed[0].hint,
            )
        )
    return Ok(None)


@dataclass(frozen=True, slots=True)
class LoginCredential:
    registry: str
    username: str
    password: str
    write: bool


@dataclass(frozen=True, slots=True)
class LoginPlan:
    credentials: tuple[LoginCredential, ...]
    skipped: tuple[str, ...]


def plan_logins(
    decision: PublishDecision,
    *,
    logins: Sequence[RegistryLoginConfig],
    secrets: Mapping[str, str],
) -> Result[LoginPlan, PublishError]:
    """Pick credentials per registry: write for pushes, read-only otherwise.

    A registry without read credentials is skipped; a pushing run without
    write credentials is an error.
    """
    if not decision.login:
        return Ok(LoginPlan(credentials=(), skipped=tuple(c.registry for c in logins)))

    creds: list[LoginCredential] = []
    skipped: list[str] = []
    for cfg in logins:
        if decision.push:
            username, env_name = cfg.write_username, cfg.write_password_env
        else:
            username, env_name = cfg.read_username, cfg.read_password_env

        password = secrets.get(env_name, "") if env_name else ""
        if username and password:
            creds.append(
                LoginCredential(
                    registry=cfg.registry,
                    username=username,
                    password=password,
                    write=decision.push,
                )
            )
            continue

        if decision.push:
            return Err(
                PublishError(
                    kind="registry_login_failed",
                    message=f"missing write credentials for {cfg.registry}",
                    hint=f"set {env_name}" if env_name else "configure write_password_env",
                    stage="login",
                )
            )
        skipped.append(cfg.registry)

    return Ok(LoginPlan(credentials=tuple(creds), skipped=tuple(skipped)))


def login_all(
    registry: Registry, plan: LoginPlan, *, console: ConsoleProtocol
) -> Result[None, PublishError]:
    for cred in plan.credentials:
        access = "write" if cred.write else "read-only"
        console.print(f"docker login {cred.registry} ({access}, {cred.username})", Style.DIM)
        result = registry.login(
            registry=cred.registry, username=cred.username, password=cred.password
        )
        if isinstance(result, Err):
            return Err(result.error.at(stage="login", image=cred.registry))
    for name in plan.skipped:
        console.print(f"login skipped: {name}", Style.DIM)
    return Ok(None)

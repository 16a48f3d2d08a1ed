"""Build provenance attestations bound to manifest digests.

Annotating an image recreates its index and so changes its digest. An
attestation for the as-built digest does not cover what is actually
distributed, so every annotated image is attested a second time against the
digest read back from the registry.
"""

from __future__ import annotations

import hashlib
import json
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from imagepub.core.result import Err, Ok, Result
from imagepub.output.console import ConsoleProtocol, Style
from imagepub.platform.files import atomic_write_text
from imagepub.platform.process import run as run_process
from imagepub.services.publish.errors import PublishError
from imagepub.services.publish.model import AttestationRecord, ManifestRef, RunEnvironment
from imagepub.services.publish.registry import Registry

PREDICATE_TYPE = "https://slsa.dev/provenance/v1"
BUILD_TYPE = "https://actions.github.io/buildtypes/workflow/v1"
BUILDER_ID = "https://github.com/actions/runner/github-hosted"

_DIGEST_RE = re.compile(r"^sha256:[0-9a-f]{64}$")


class Attestor(Protocol):
    def attest(
        self, *, subject_name: str, subject_digest: str
    ) -> Result[AttestationRecord, PublishError]: ...


def build_provenance(environment: RunEnvironment) -> dict[str, object]:
    """SLSA v1 provenance predicate describing the CI run."""
    repo_url = environment.repository_url
    workflow: dict[str, object] = {}
    if environment.ref:
        workflow["ref"] = environment.ref
    if repo_url:
        workflow["repository"] = repo_url
    if environment.workflow_ref and "@" in environment.workflow_ref:
        path = environment.workflow_ref.split("@", 1)[0]
        if environment.repository and path.startswith(environment.repository + "/"):
            path = path[len(environment.repository) + 1 :]
        workflow["path"] = path

    dependencies: list[dict[str, object]] = []
    if repo_url and environment.sha:
        uri = f"git+{repo_url}@{environment.ref}" if environment.ref else f"git+{repo_url}"
        dependencies.append({"uri": uri, "digest": {"gitCommit": environment.sha}})

    metadata: dict[str, object] = {}
    if repo_url and environment.run_id:
        attempt = environment.run_attempt or "1"
        metadata["invocationId"] = f"{repo_url}/actions/runs/{environment.run_id}/attempts/{attempt}"

    return {
        "buildDefinition": {
            "buildType": BUILD_TYPE,
            "externalParameters": {"workflow": workflow},
            "resolvedDependencies": dependencies,
        },
        "runDetails": {
            "builder": {"id": BUILDER_ID},
            "metadata": metadata,
        },
    }


def _check_digest(digest: str) -> Result[None, PublishError]:
    if _DIGEST_RE.match(digest) is None:
        return Err(
            PublishError(
                kind="attestation_failed",
                message=f"not a sha256 manifest digest: {digest!r}",
            )
        )
    return Ok(None)


@dataclass(frozen=True, slots=True)
class CosignAttestor:
    """Signs provenance with cosign (keyless in CI) and pushes it to the registry."""

    workspace_root: Path
    work_dir: Path
    environment: RunEnvironment

    def attest(
        self, *, subject_name: str, subject_digest: str
    ) -> Result[AttestationRecord, PublishError]:
        ok = _check_digest(subject_digest)
        if isinstance(ok, Err):
            return ok

        if shutil.which("cosign") is None:
            return Err(
                PublishError(
                    kind="tool_missing",
                    message="cosign: missing",
                    hint="Install cosign: https://docs.sigstore.dev/cosign/system_config/installation/",
                )
            )

        key = hashlib.sha256(f"{subject_name}@{subject_digest}".encode()).hexdigest()[:16]
        predicate_path = self.work_dir / "attestations" / f"{key}.json"
        try:
            atomic_write_text(
                predicate_path, json.dumps(build_provenance(self.environment), indent=2) + "\n"
            )
        except OSError as e:
            return Err(
                PublishError(
                    kind="attestation_failed",
                    message=f"failed to write provenance predicate: {e}",
                    hint=str(predicate_path),
                )
            )

        subject = ManifestRef(image=subject_name, reference=subject_digest)
        result = run_process(
            [
                "cosign",
                "attest",
                "--yes",
                "--type",
                "slsaprovenance1",
                "--predicate",
                str(predicate_path),
                str(subject),
            ],
            cwd=self.workspace_root,
        )
        if isinstance(result, Err):
            return Err(
                PublishError(
                    kind="attestation_failed",
                    message=f"attestation failed for {subject}",
                    hint=result.error.stderr.strip() or None,
                )
            )

        return Ok(
            AttestationRecord(
                subject_name=subject_name,
                subject_digest=subject_digest,
                predicate_type=PREDICATE_TYPE,
            )
        )


def attest_digest(
    attestor: Attestor,
    *,
    subject_name: str,
    digest: str,
    console: ConsoleProtocol,
) -> Result[AttestationRecord, PublishError]:
    console.print(f"attest {subject_name}@{digest}", Style.DIM)
    return attestor.attest(subject_name=subject_name, subject_digest=digest)


def reattest_after_annotation(
    registry: Registry,
    attestor: Attestor,
    *,
    subject_name: str,
    version_label: str,
    previous_digest: str,
    noop_is_error: bool,
    console: ConsoleProtocol,
) -> Result[AttestationRecord, PublishError]:
    """Attest the digest the annotated manifest now has.

    An unchanged digest means the annotation had no effect. That is an error
    unless the build backend already attached the annotations itself.
    """
    current = registry.inspect_digest(ManifestRef(image=subject_name, reference=version_label))
    if isinstance(current, Err):
        return current

    digest = current.value
    if digest == previous_digest:
        noop = PublishError(
            kind="annotation_noop",
            message=f"annotating {subject_name}:{version_label} did not change its digest",
            hint=digest,
        )
        if noop_is_error:
            return Err(noop)
        console.warning(noop.pretty())

    return attest_digest(attestor, subject_name=subject_name, digest=digest, console=console)

"""Typed configuration loading and access.

The optional `imagepub.toml` at the project root maps onto frozen dataclasses.
Every value has a default reproducing the uv image set, so a project without
a config file publishes exactly like the upstream release workflow.

Example:

    [images]
    targets = ["ghcr.io/astral-sh/uv", "docker.io/astral/uv"]
    attest = "ghcr.io/astral-sh/uv"

    [build]
    backend = "depot"
    depot_project = "7hd4vdzmw5"

    [extra]
    matrix = ["alpine:3.21,alpine3.21,alpine"]

    [[logins]]
    registry = "docker.io"
    read_username = "astralshbot"
    read_password_env = "DOCKERHUB_TOKEN_RO"
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from .result import Err, Ok, Result
from .structured import (
    StrDict,
    as_str_dict,
    get_bool,
    get_list,
    get_str,
    get_str_list,
    get_str_map,
    get_table,
)

__all__ = [
    "BuildBackendName",
    "BuildConfig",
    "ConfigError",
    "DEFAULT_MATRIX",
    "DOCKERHUB_IMAGE",
    "ExtraConfig",
    "GHCR_IMAGE",
    "ImagesConfig",
    "PublishConfig",
    "RegistryLoginConfig",
    "TriggerConfig",
    "load_config",
    "load_config_or_default",
]

CONFIG_FILE_NAME = "imagepub.toml"

GHCR_IMAGE = "ghcr.io/astral-sh/uv"
DOCKERHUB_IMAGE = "docker.io/astral/uv"

DEFAULT_PLATFORMS = ("linux/amd64", "linux/arm64")
DEFAULT_TARGETS = (GHCR_IMAGE, DOCKERHUB_IMAGE)
DEFAULT_DEPOT_PROJECT = "7hd4vdzmw5"
DEFAULT_BINARIES = ("/uv", "/uvx")
DEFAULT_BIN_DIR = "/usr/local/bin"
DEFAULT_EXTRA_ENV = (("UV_TOOL_BIN_DIR", "/usr/local/bin"),)
DEFAULT_CMD = ("/usr/local/bin/uv",)
DEFAULT_TRUSTED_REPOSITORY = "astral-sh/uv"
DEFAULT_SKIP_LABEL = "no-build"

# Base image followed by one or more aliases; the first alias is the most
# specific and drives the org.opencontainers.image.version label.
DEFAULT_MATRIX: tuple[str, ...] = (
    "alpine:3.21,alpine3.21,alpine",
    "debian:bookworm-slim,bookworm-slim,debian-slim",
    "buildpack-deps:bookworm,bookworm,debian",
    "python:3.14-rc-alpine,python3.14-rc-alpine",
    "python:3.13-alpine,python3.13-alpine",
    "python:3.12-alpine,python3.12-alpine",
    "python:3.11-alpine,python3.11-alpine",
    "python:3.10-alpine,python3.10-alpine",
    "python:3.9-alpine,python3.9-alpine",
    "python:3.8-alpine,python3.8-alpine",
    "python:3.14-rc-bookworm,python3.14-rc-bookworm",
    "python:3.13-bookworm,python3.13-bookworm",
    "python:3.12-bookworm,python3.12-bookworm",
    "python:3.11-bookworm,python3.11-bookworm",
    "python:3.10-bookworm,python3.10-bookworm",
    "python:3.9-bookworm,python3.9-bookworm",
    "python:3.8-bookworm,python3.8-bookworm",
    "python:3.14-rc-slim-bookworm,python3.14-rc-bookworm-slim",
    "python:3.13-slim-bookworm,python3.13-bookworm-slim",
    "python:3.12-slim-bookworm,python3.12-bookworm-slim",
    "python:3.11-slim-bookworm,python3.11-bookworm-slim",
    "python:3.10-slim-bookworm,python3.10-bookworm-slim",
    "python:3.9-slim-bookworm,python3.9-bookworm-slim",
    "python:3.8-slim-bookworm,python3.8-bookworm-slim",
)

BuildBackendName = Literal["depot", "buildx"]


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when config cannot be loaded or parsed."""

    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class ImagesConfig:
    """Image namespaces published on every run.

    `attest` is the image whose digests are attested and read back; it must be
    one of `targets`.
    """

    targets: tuple[str, ...] = DEFAULT_TARGETS
    attest: str = GHCR_IMAGE


@dataclass(frozen=True, slots=True)
class BuildConfig:
    backend: BuildBackendName = "depot"
    depot_project: str | None = DEFAULT_DEPOT_PROJECT
    context: str = "."
    dockerfile: str = "Dockerfile"
    platforms: tuple[str, ...] = DEFAULT_PLATFORMS
    # Depot drops annotations; buildx can attach them at build time.
    native_annotations: bool = False


@dataclass(frozen=True, slots=True)
class ExtraConfig:
    """Recipe for the derived images built on top of third-party bases."""

    binaries: tuple[str, ...] = DEFAULT_BINARIES
    bin_dir: str = DEFAULT_BIN_DIR
    env: tuple[tuple[str, str], ...] = DEFAULT_EXTRA_ENV
    cmd: tuple[str, ...] = DEFAULT_CMD
    matrix: tuple[str, ...] = DEFAULT_MATRIX


@dataclass(frozen=True, slots=True)
class RegistryLoginConfig:
    """Credentials for one registry, by environment variable name.

    Read credentials are used by trusted dry runs to avoid rate limits; write
    credentials only when the run pushes.
    """

    registry: str
    read_username: str | None = None
    read_password_env: str | None = None
    write_username: str | None = None
    write_password_env: str | None = None


def _default_logins() -> tuple[RegistryLoginConfig, ...]:
    return (
        RegistryLoginConfig(
            registry="docker.io",
            read_username="astralshbot",
            read_password_env="DOCKERHUB_TOKEN_RO",
            write_username="astral",
            write_password_env="DOCKERHUB_TOKEN_RW",
        ),
        RegistryLoginConfig(
            registry="ghcr.io",
            read_username="astral-sh",
            read_password_env="GITHUB_TOKEN",
            write_username="astral-sh",
            write_password_env="GITHUB_TOKEN",
        ),
    )


@dataclass(frozen=True, slots=True)
class TriggerConfig:
    trusted_repository: str = DEFAULT_TRUSTED_REPOSITORY
    skip_label: str = DEFAULT_SKIP_LABEL


@dataclass(frozen=True, slots=True)
class PublishConfig:
    """Main configuration container."""

    images: ImagesConfig = field(default_factory=ImagesConfig)
    build: BuildConfig = field(default_factory=BuildConfig)
    extra: ExtraConfig = field(default_factory=ExtraConfig)
    logins: tuple[RegistryLoginConfig, ...] = field(default_factory=_default_logins)
    trigger: TriggerConfig = field(default_factory=TriggerConfig)
    metadata_file: str = "pyproject.toml"
    work_dir: str = ".imagepub"

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> PublishConfig:
        """Create PublishConfig from a mapping (parsed TOML).

        Raises:
            ValueError: If a value is present but invalid.
        """
        images: StrDict = get_table(data, "images") or {}
        build: StrDict = get_table(data, "build") or {}
        extra: StrDict = get_table(data, "extra") or {}
        trigger: StrDict = get_table(data, "trigger") or {}

        targets = _required_list(images, "targets", "images", DEFAULT_TARGETS)
        attest = get_str(images, "attest") or targets[0]
        if attest not in targets:
            raise ValueError(f"images.attest must be one of images.targets: {attest}")

        backend = get_str(build, "backend") or "depot"
        if backend not in ("depot", "buildx"):
            raise ValueError(f"unknown build.backend: {backend!r}")

        platforms = _required_list(build, "platforms", "build", DEFAULT_PLATFORMS)
        native = get_bool(build, "native_annotations")

        env = get_str_map(extra, "env")

        return cls(
            images=ImagesConfig(targets=targets, attest=attest),
            build=BuildConfig(
                backend=backend,
                depot_project=get_str(build, "depot_project") or DEFAULT_DEPOT_PROJECT,
                context=get_str(build, "context") or ".",
                dockerfile=get_str(build, "dockerfile") or "Dockerfile",
                platforms=platforms,
                native_annotations=bool(native),
            ),
            extra=ExtraConfig(
                binaries=_required_list(extra, "binaries", "extra", DEFAULT_BINARIES),
                bin_dir=get_str(extra, "bin_dir") or DEFAULT_BIN_DIR,
                env=tuple(env.items()) if env is not None else DEFAULT_EXTRA_ENV,
                cmd=_optional_list(extra, "cmd", DEFAULT_CMD),
                matrix=_optional_list(extra, "matrix", DEFAULT_MATRIX),
            ),
            logins=_parse_logins(data) or _default_logins(),
            trigger=TriggerConfig(
                trusted_repository=get_str(trigger, "trusted_repository")
                or DEFAULT_TRUSTED_REPOSITORY,
                skip_label=get_str(trigger, "skip_label") or DEFAULT_SKIP_LABEL,
            ),
            metadata_file=get_str(data, "metadata_file") or "pyproject.toml",
            work_dir=get_str(data, "work_dir") or ".imagepub",
        )


def _optional_list(
    table: Mapping[str, object], key: str, default: tuple[str, ...]
) -> tuple[str, ...]:
    """An explicit empty list is kept; only a missing key falls back."""
    items = get_str_list(table, key)
    return default if items is None else items


def _required_list(
    table: Mapping[str, object], key: str, section: str, default: tuple[str, ...]
) -> tuple[str, ...]:
    items = _optional_list(table, key, default)
    if not items:
        raise ValueError(f"{section}.{key} must not be empty")
    return items


def _parse_logins(data: Mapping[str, object]) -> tuple[RegistryLoginConfig, ...]:
    items = get_list(data, "logins")
    if items is None:
        return ()

    out: list[RegistryLoginConfig] = []
    for item in items:
        d = as_str_dict(item)
        if d is None:
            raise ValueError("logins entries must be tables")
        registry = get_str(d, "registry")
        if registry is None:
            raise ValueError("logins entry is missing 'registry'")
        out.append(
            RegistryLoginConfig(
                registry=registry,
                read_username=get_str(d, "read_username"),
                read_password_env=get_str(d, "read_password_env"),
                write_username=get_str(d, "write_username"),
                write_password_env=get_str(d, "write_password_env"),
            )
        )
    return tuple(out)


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    """Parse a TOML file, handling read and parse errors."""
    import tomllib

    try:
        content = path.read_bytes()
        data_obj: object = tomllib.loads(content.decode("utf-8"))
        data = as_str_dict(data_obj)
        if data is None:
            return Err(ConfigError("Config root must be a TOML table", path=path))
        return Ok(data)
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))


def load_config(path: Path) -> Result[PublishConfig, ConfigError]:
    """Load and parse configuration from a TOML file.

    Args:
        path: Path to imagepub.toml

    Returns:
        Ok(PublishConfig) on success, Err(ConfigError) on failure
    """
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        return Ok(PublishConfig.from_dict(result.value))
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config structure: {e}", path=path))


def load_config_or_default(path: Path) -> Result[PublishConfig, ConfigError]:
    """Load config from file, or the defaults if the file doesn't exist.

    A file that exists but fails to parse is still an error.
    """
    if not path.exists():
        return Ok(PublishConfig())
    return load_config(path)

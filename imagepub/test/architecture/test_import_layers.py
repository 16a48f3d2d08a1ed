from __future__ import annotations

from imagepub.test.architecture._gate import require_arch_checks_enabled
from imagepub.test.architecture._utils import (
    iter_python_files,
    matches_prefix,
    package_root,
    parse_imports,
)


def _offenders(subdir: str, forbidden: tuple[str, ...]) -> list[str]:
    root = package_root()
    offenders: list[str] = []
    for file_path in iter_python_files(root / subdir):
        rel = file_path.relative_to(root)
        for item in parse_imports(file_path):
            if any(matches_prefix(item.module, prefix) for prefix in forbidden):
                offenders.append(f"{rel}:{item.line}: forbidden import '{item.module}'")
    return offenders


def test_services_do_not_import_cli_modules() -> None:
    require_arch_checks_enabled()

    offenders = _offenders("services", ("imagepub.cli",))

    assert not offenders, "services -> cli dependency violations:\n" + "\n".join(offenders)


def test_core_and_platform_stay_at_the_bottom() -> None:
    require_arch_checks_enabled()

    upper = ("imagepub.services", "imagepub.cli", "imagepub.output")
    offenders = _offenders("core", upper + ("imagepub.platform",)) + _offenders("platform", upper)

    assert not offenders, "core/platform layering violations:\n" + "\n".join(offenders)


def test_only_the_pipeline_wires_stages_together() -> None:
    require_arch_checks_enabled()

    root = package_root()
    offenders: list[str] = []
    for file_path in iter_python_files(root / "services" / "publish"):
        if file_path.name in {"pipeline.py", "__init__.py"}:
            continue
        rel = file_path.relative_to(root)
        for item in parse_imports(file_path):
            if matches_prefix(item.module, "imagepub.services.publish.pipeline"):
                offenders.append(f"{rel}:{item.line}: stage module imports the pipeline")

    assert not offenders, "publish stage layering violations:\n" + "\n".join(offenders)

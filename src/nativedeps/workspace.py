"""Workspace filesystem layout.

Every piece of orchestrator state lives in the workspace directory:

* ``<name>-<version>.tar.*``: the fetched archive
* ``<name>-<version>/``: the extracted source tree
* ``<name>-<version>/.nativedeps-built.json``: the completion marker
* ``.nativedeps/``: run reports

Temporaries (``*.part`` downloads, ``.<name>-<version>.extracting`` trees)
only exist while a step runs or after it was interrupted.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from nativedeps.cache import CompletionMarker
from nativedeps.models import Target

REPORT_DIR = ".nativedeps"


@dataclass(frozen=True, slots=True)
class Workspace:
    root: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", Path(self.root).absolute())

    @property
    def report_dir(self) -> Path:
        return self.root / REPORT_DIR

    @property
    def report_path(self) -> Path:
        return self.report_dir / "report.json"

    def archive_path(self, target: Target) -> Path:
        return self.root / target.archive

    def partial_archive_path(self, target: Target) -> Path:
        return self.root / f"{target.archive}.part"

    def source_dir(self, target: Target) -> Path:
        return self.root / target.key

    def extracting_dir(self, target: Target) -> Path:
        return self.root / f".{target.key}.extracting"

    def marker(self, target: Target) -> CompletionMarker:
        return CompletionMarker(self.source_dir(target))

    def include_paths(self, target: Target) -> list[Path]:
        return [_join(self.source_dir(target), rel) for rel in target.include_dirs]

    def lib_paths(self, target: Target) -> list[Path]:
        return [_join(self.source_dir(target), rel) for rel in target.lib_dirs]

    def temporaries(self, target: Target) -> list[Path]:
        candidates = (self.partial_archive_path(target), self.extracting_dir(target))
        return [path for path in candidates if path.exists()]


def _join(base: Path, rel: str) -> Path:
    return base / rel if rel else base

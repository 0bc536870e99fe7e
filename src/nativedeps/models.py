"""Core typed dataclasses for target declarations and run results."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Literal
from urllib.parse import urlparse

from .errors import NativeDepsError, ValidationError

TargetState = Literal["missing", "fetched", "extracted", "patched", "built"]
StepKind = Literal["fetch", "extract", "patch", "build", "downstream"]
StepStatus = Literal["executed", "skipped", "failed"]

ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".tar.xz", ".tar.bz2", ".tar")


def archive_suffix(filename: str) -> str | None:
    """Return the supported archive suffix of *filename*, if any."""
    for suffix in ARCHIVE_SUFFIXES:
        if filename.endswith(suffix):
            return suffix
    return None


@dataclass(frozen=True, slots=True)
class PatchOperation:
    """An override file copied into an extracted tree before configure."""

    source: Path
    destination: str

    def __post_init__(self) -> None:
        if not str(self.source):
            raise ValidationError("Patch operations require a source file.")
        dest = PurePosixPath(self.destination)
        if not self.destination or dest.is_absolute() or ".." in dest.parts:
            raise ValidationError(
                "Patch destination must be a relative path inside the source tree.",
                context={"destination": self.destination},
            )


@dataclass(frozen=True, slots=True)
class Target:
    """A pinned native library with its fetch/extract/patch/build inputs."""

    name: str
    version: str
    url: str
    archive: str = ""
    patches: tuple[PatchOperation, ...] = ()
    configure_flags: tuple[str, ...] = ()
    depends_on: tuple[str, ...] = ()
    include_dirs: tuple[str, ...] = ("",)
    lib_dirs: tuple[str, ...] = ("",)
    sha256: str = ""
    configure_cmd: tuple[str, ...] = ("./configure",)
    make_cmd: tuple[str, ...] = ("make",)

    def __post_init__(self) -> None:
        if not self.name or "/" in self.name:
            raise ValidationError("Targets require a non-empty name without slashes.")
        if not self.version:
            raise ValidationError(
                "Targets require a pinned version.",
                context={"target": self.name},
            )
        if not self.url:
            raise ValidationError(
                "Targets require a source archive URL.",
                context={"target": self.name},
            )
        if self.name in self.depends_on:
            raise ValidationError(
                "A target cannot depend on itself.",
                context={"target": self.name},
            )
        if not self.configure_cmd or not self.make_cmd:
            raise ValidationError(
                "Targets require non-empty configure and make commands.",
                context={"target": self.name},
            )
        if self.archive:
            suffix = archive_suffix(self.archive)
        else:
            suffix = archive_suffix(PurePosixPath(urlparse(self.url).path).name)
            if suffix is not None:
                object.__setattr__(self, "archive", f"{self.key}{suffix}")
        if suffix is None:
            raise ValidationError(
                "Unsupported source archive format.",
                hint=f"Use one of: {', '.join(ARCHIVE_SUFFIXES)}.",
                context={"target": self.name, "url": self.url, "archive": self.archive},
            )

    @property
    def key(self) -> str:
        """``<name>-<version>``: names both the archive and the extracted tree."""
        return f"{self.name}-{self.version}"


@dataclass(frozen=True, slots=True)
class DownstreamBuild:
    """The external project's own build entry point."""

    command: tuple[str, ...] = ("cargo", "build")
    clean_command: tuple[str, ...] = ("cargo", "clean")
    cwd: Path | None = None
    enabled: bool = True


@dataclass(frozen=True, slots=True)
class StepRecord:
    step: str
    kind: StepKind
    target: str | None
    status: StepStatus
    detail: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "step": self.step,
            "kind": self.kind,
            "target": self.target,
            "status": self.status,
            "detail": self.detail,
        }


@dataclass(slots=True)
class RunResult:
    records: list[StepRecord] = field(default_factory=list)
    error: NativeDepsError | None = None
    failed_step: str | None = None
    failed_target: str | None = None
    report_path: Path | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def executed(self, kind: StepKind | None = None) -> list[StepRecord]:
        return [
            record
            for record in self.records
            if record.status == "executed" and (kind is None or record.kind == kind)
        ]

    def skipped(self) -> list[StepRecord]:
        return [record for record in self.records if record.status == "skipped"]

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "ok": self.ok,
            "steps": [record.to_dict() for record in self.records],
        }
        if self.error is not None:
            payload["failure"] = {
                "step": self.failed_step,
                "target": self.failed_target,
                "error": self.error.to_dict(),
            }
        return payload

"""Shared test fixtures."""

from __future__ import annotations

import io
import tarfile
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from nativedeps.builders import CommandResult
from nativedeps.executor import BuildGraphExecutor
from nativedeps.extract import ArchiveExtractor
from nativedeps.fetch import ArchiveFetcher
from nativedeps.graph import BuildGraph
from nativedeps.models import DownstreamBuild, PatchOperation, Target
from nativedeps.observability import StructuredLogger
from nativedeps.patch import SourcePatcher
from nativedeps.workspace import Workspace

MakeTarball = Callable[..., Path]


@dataclass
class RecordingRunner:
    """CommandRunner that records invocations instead of running a toolchain.

    ``fail_on`` maps ``(argv[0], cwd.name)`` to the exit status to return.
    """

    events: list[tuple[Any, ...]] = field(default_factory=list)
    fail_on: dict[tuple[str, str], int] = field(default_factory=dict)
    calls: list[tuple[tuple[str, ...], Path, dict[str, str]]] = field(default_factory=list)

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        command = tuple(argv)
        self.calls.append((command, Path(cwd), dict(env or {})))
        self.events.append(("run", command[0], Path(cwd).name))
        returncode = self.fail_on.get((command[0], Path(cwd).name), 0)
        return CommandResult(
            argv=command,
            returncode=returncode,
            stderr="boom" if returncode else "",
        )


class RecordingFetcher(ArchiveFetcher):
    def __init__(self, workspace: Workspace, events: list[tuple[Any, ...]], **kwargs: Any) -> None:
        super().__init__(workspace, **kwargs)
        self.events = events

    def fetch(self, target: Target) -> Path:
        self.events.append(("fetch", target.archive))
        return super().fetch(target)


class RecordingExtractor(ArchiveExtractor):
    def __init__(self, workspace: Workspace, events: list[tuple[Any, ...]]) -> None:
        super().__init__(workspace)
        self.events = events

    def extract(self, target: Target, *, replace: bool = False) -> Path:
        self.events.append(("extract", target.key))
        return super().extract(target, replace=replace)


class RecordingPatcher(SourcePatcher):
    def __init__(self, workspace: Workspace, events: list[tuple[Any, ...]], **kwargs: Any) -> None:
        super().__init__(workspace, **kwargs)
        self.events = events

    def patch(self, target: Target) -> list[Path]:
        self.events.append(("patch", target.key))
        return super().patch(target)


@dataclass
class Harness:
    root: Path
    workspace: Workspace
    graph: BuildGraph
    runner: RecordingRunner

    @property
    def events(self) -> list[tuple[Any, ...]]:
        return self.runner.events

    def executor(self, **kwargs: Any) -> BuildGraphExecutor:
        events = self.runner.events
        logger = StructuredLogger()
        return BuildGraphExecutor(
            self.workspace,
            runner=self.runner,
            logger=logger,
            fetcher=RecordingFetcher(self.workspace, events, logger=logger, **kwargs),
            extractor=RecordingExtractor(self.workspace, events),
            patcher=RecordingPatcher(self.workspace, events, logger=logger),
        )


def _make_tarball(
    directory: Path,
    top: str,
    files: Mapping[str, str],
    *,
    mode: str = "w:gz",
    suffix: str = ".tar.gz",
) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    archive = directory / f"{top}{suffix}"
    with tarfile.open(archive, mode) as handle:
        for rel, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(f"{top}/{rel}")
            info.size = len(data)
            handle.addfile(info, io.BytesIO(data))
    return archive


@pytest.fixture
def make_tarball(tmp_path: Path) -> MakeTarball:
    def factory(
        top: str,
        files: Mapping[str, str],
        *,
        mode: str = "w:gz",
        suffix: str = ".tar.gz",
        directory: Path | None = None,
    ) -> Path:
        return _make_tarball(directory or tmp_path / "mirror", top, files, mode=mode, suffix=suffix)

    return factory


@pytest.fixture
def harness(tmp_path: Path, make_tarball: MakeTarball) -> Harness:
    """zlib and xapian-core served from a local mirror, xapian-core carrying two overrides."""
    zlib_archive = make_tarball(
        "zlib-1.2.11",
        {"configure": "#!/bin/sh\n", "zlib.h": "/* zlib */\n", "Makefile.in": "all:\n"},
    )
    xapian_archive = make_tarball(
        "xapian-core-1.4.17",
        {
            "configure": "#!/bin/sh\n",
            "include/xapian/version.h": "/* upstream */\n",
            "api/omdatabase.cc": "// upstream\n",
        },
        mode="w:xz",
        suffix=".tar.xz",
    )
    overrides = tmp_path / "overrides"
    overrides.mkdir()
    (overrides / "version.h").write_text("/* patched */\n", encoding="utf-8")
    (overrides / "omdatabase.cc").write_text("// patched\n", encoding="utf-8")

    zlib = Target(name="zlib", version="1.2.11", url=zlib_archive.as_uri())
    xapian = Target(
        name="xapian-core",
        version="1.4.17",
        url=xapian_archive.as_uri(),
        depends_on=("zlib",),
        include_dirs=("include",),
        lib_dirs=(".libs",),
        patches=(
            PatchOperation(overrides / "version.h", "include/xapian/version.h"),
            PatchOperation(overrides / "omdatabase.cc", "api/omdatabase.cc"),
        ),
    )
    workspace_root = tmp_path / "workspace"
    workspace_root.mkdir()
    graph = BuildGraph(targets=(zlib, xapian), downstream=DownstreamBuild())
    return Harness(
        root=tmp_path,
        workspace=Workspace(workspace_root),
        graph=graph,
        runner=RecordingRunner(),
    )

"""Invocation of the downstream project's own build and clean commands."""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from nativedeps.builders.base import CommandResult, CommandRunner, SubprocessRunner, search_path_flags
from nativedeps.errors import DownstreamBuildError
from nativedeps.models import DownstreamBuild, Target
from nativedeps.observability import StructuredLogger
from nativedeps.workspace import Workspace


@dataclass(slots=True)
class DownstreamBuilder:
    workspace: Workspace
    config: DownstreamBuild = field(default_factory=DownstreamBuild)
    runner: CommandRunner = field(default_factory=SubprocessRunner)
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    @property
    def cwd(self) -> Path:
        return self.config.cwd or self.workspace.root

    def environment(
        self,
        targets: Sequence[Target],
        base: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        """Search-path variables exposing every native target's headers and libraries."""
        inherited = os.environ if base is None else base
        include_paths = [p for t in targets for p in self.workspace.include_paths(t)]
        lib_paths = [p for t in targets for p in self.workspace.lib_paths(t)]

        env: dict[str, str] = {}
        for name, value in search_path_flags(include_paths, lib_paths).items():
            env[name] = _join_flags(value, inherited.get(name, ""))
        search = os.pathsep.join(str(p) for p in lib_paths)
        for name in ("LIBRARY_PATH", "LD_LIBRARY_PATH"):
            existing = inherited.get(name, "")
            env[name] = f"{search}{os.pathsep}{existing}" if existing else search
        return env

    def build(self, targets: Sequence[Target]) -> CommandResult:
        result = self.runner.run(self.config.command, cwd=self.cwd, env=self.environment(targets))
        self.logger.log(
            operation="downstream_build",
            target=None,
            step="downstream",
            level="info" if result.ok else "error",
            message=f"Downstream build exited with status {result.returncode}.",
            extra={"argv": list(result.argv), "cwd": str(self.cwd)},
        )
        if not result.ok:
            raise DownstreamBuildError(
                "Downstream build failed.",
                hint="The native dependencies are built; inspect the downstream project's output.",
                context={
                    "operation": "downstream",
                    "command": " ".join(result.argv),
                    "returncode": str(result.returncode),
                    "stderr": result.stderr_tail(),
                },
            )
        return result

    def clean(self) -> bool:
        """Run the downstream clean command; failures are logged, not raised."""
        if not self.config.enabled or not self.config.clean_command:
            return True
        if not self.cwd.is_dir():
            return True
        result = self.runner.run(self.config.clean_command, cwd=self.cwd)
        self.logger.log(
            operation="downstream_clean",
            target=None,
            step="clean",
            level="info" if result.ok else "warning",
            message=f"Downstream clean exited with status {result.returncode}.",
            extra={"argv": list(result.argv)},
        )
        return result.ok


def _join_flags(value: str, existing: str) -> str:
    return f"{value} {existing}".strip()

"""Configure/make builder for one native library."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from nativedeps.builders.base import (
    CommandResult,
    CommandRunner,
    SubprocessRunner,
    merge_assignments,
    search_path_flags,
)
from nativedeps.errors import CompileError, ConfigureError
from nativedeps.models import Target
from nativedeps.observability import StructuredLogger
from nativedeps.workspace import Workspace


@dataclass(slots=True)
class NativeLibraryBuilder:
    workspace: Workspace
    runner: CommandRunner = field(default_factory=SubprocessRunner)
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def is_built(self, target: Target, *, key: str) -> bool:
        return self.workspace.marker(target).matches(key)

    def configure_command(self, target: Target, dependencies: Sequence[Target] = ()) -> list[str]:
        include_paths = [p for dep in dependencies for p in self.workspace.include_paths(dep)]
        lib_paths = [p for dep in dependencies for p in self.workspace.lib_paths(dep)]
        flags = search_path_flags(include_paths, lib_paths)
        return [*target.configure_cmd, *merge_assignments(target.configure_flags, flags)]

    def build(
        self,
        target: Target,
        dependencies: Sequence[Target] = (),
        *,
        key: str,
    ) -> bool:
        """Configure and compile *target*; return False when already built.

        *dependencies* are the prerequisite targets whose include and library
        directories are passed to the configure step. *key* is the target's
        build key as computed by :meth:`BuildGraph.build_keys`.
        """
        marker = self.workspace.marker(target)
        if marker.matches(key):
            self.logger.log(
                operation="build_skip",
                target=target.name,
                step="build",
                message="Completion marker is current.",
            )
            return False

        source_dir = self.workspace.source_dir(target)
        if not source_dir.is_dir():
            raise ConfigureError(
                "Source tree to build does not exist.",
                hint="Run the extract step before building.",
                context={"operation": "configure", "target": target.name, "tree": str(source_dir)},
            )
        if marker.exists():
            marker.remove()
            self.logger.log(
                operation="build_stale",
                target=target.name,
                step="build",
                level="warning",
                message="Completion marker does not match declared inputs; rebuilding.",
            )

        configure = self.configure_command(target, dependencies)
        result = self.runner.run(configure, cwd=source_dir)
        self._log_command(target, "configure", result)
        if not result.ok:
            raise ConfigureError(
                "Configure step failed.",
                hint="Inspect config.log in the source tree.",
                context=_failure_context(target, "configure", result),
            )

        make = list(target.make_cmd)
        result = self.runner.run(make, cwd=source_dir)
        self._log_command(target, "compile", result)
        if not result.ok:
            raise CompileError(
                "Compile step failed.",
                hint="Inspect the compiler output above.",
                context=_failure_context(target, "compile", result),
            )

        try:
            marker.write(key=key, target=target.name, version=target.version, commands=[configure, make])
        except OSError as exc:
            raise CompileError(
                "Unable to write the completion marker.",
                hint="The library compiled; check permissions on the source tree.",
                context={"operation": "compile", "target": target.name, "reason": str(exc)},
            ) from exc
        return True

    def _log_command(self, target: Target, operation: str, result: CommandResult) -> None:
        self.logger.log(
            operation=operation,
            target=target.name,
            step="build",
            level="info" if result.ok else "error",
            message=f"{operation} exited with status {result.returncode}.",
            extra={"argv": list(result.argv)},
        )


def _failure_context(target: Target, operation: str, result: CommandResult) -> dict[str, str]:
    return {
        "operation": operation,
        "target": target.name,
        "command": " ".join(result.argv),
        "returncode": str(result.returncode),
        "stderr": result.stderr_tail(),
    }

"""Best-effort removal of everything the build derived."""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path

from nativedeps.builders import CommandRunner, DownstreamBuilder, SubprocessRunner
from nativedeps.graph import BuildGraph
from nativedeps.observability import StructuredLogger
from nativedeps.workspace import Workspace


@dataclass(slots=True)
class WorkspaceCleaner:
    workspace: Workspace
    graph: BuildGraph
    runner: CommandRunner = field(default_factory=SubprocessRunner)
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def clean(self, *, archives: bool = False, downstream: bool = True) -> list[Path]:
        """Remove extracted trees, temporaries and reports; return the paths removed.

        Fetched archives are kept unless *archives* is set. Nothing here raises:
        a path that cannot be removed is logged and skipped.
        """
        candidates: list[Path] = []
        for target in self.graph.targets:
            candidates.append(self.workspace.source_dir(target))
            candidates.extend(self.workspace.temporaries(target))
            if archives:
                candidates.append(self.workspace.archive_path(target))
        candidates.append(self.workspace.report_dir)

        removed = [path for path in candidates if self._remove(path)]
        if downstream:
            DownstreamBuilder(
                self.workspace,
                self.graph.downstream,
                runner=self.runner,
                logger=self.logger,
            ).clean()
        return removed

    def _remove(self, path: Path) -> bool:
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            elif path.exists() or path.is_symlink():
                path.unlink()
            else:
                return False
        except OSError as exc:
            self.logger.log(
                operation="clean",
                target=None,
                step="clean",
                level="warning",
                message="Unable to remove path.",
                extra={"path": str(path), "error": str(exc)},
            )
            return False
        self.logger.log(
            operation="clean",
            target=None,
            step="clean",
            message="Removed path.",
            extra={"path": str(path)},
        )
        return True

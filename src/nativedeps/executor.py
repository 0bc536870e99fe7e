"""Sequential, fail-fast execution of the build graph."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

from nativedeps.builders import CommandRunner, DownstreamBuilder, NativeLibraryBuilder, SubprocessRunner
from nativedeps.errors import NativeDepsError
from nativedeps.extract import ArchiveExtractor
from nativedeps.fetch import ArchiveFetcher
from nativedeps.graph import BuildGraph, Step
from nativedeps.models import RunResult, StepRecord, Target, TargetState
from nativedeps.observability import StructuredLogger
from nativedeps.patch import SourcePatcher
from nativedeps.policy import Policy
from nativedeps.workspace import Workspace


@dataclass(slots=True)
class BuildGraphExecutor:
    """Walk the step order of a :class:`BuildGraph`, skipping satisfied steps.

    A step is satisfied when the filesystem already shows its result: the
    archive (matching its pinned sha256, if any) for ``fetch``, the
    versioned tree for ``extract``, matching override files for ``patch``
    and a current completion marker for ``build``. A tree that still holds
    an override no longer configured is extracted again. A built target
    satisfies all of its steps. The downstream build is never satisfied;
    it runs once on every successful run.
    """

    workspace: Workspace
    policy: Policy = field(default_factory=Policy)
    runner: CommandRunner = field(default_factory=SubprocessRunner)
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    fetcher: ArchiveFetcher | None = None
    extractor: ArchiveExtractor | None = None
    patcher: SourcePatcher | None = None
    builder: NativeLibraryBuilder | None = None
    _fetcher: ArchiveFetcher = field(init=False, repr=False)
    _extractor: ArchiveExtractor = field(init=False, repr=False)
    _patcher: SourcePatcher = field(init=False, repr=False)
    _builder: NativeLibraryBuilder = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._fetcher = self.fetcher or ArchiveFetcher(
            self.workspace, policy=self.policy, logger=self.logger
        )
        self._extractor = self.extractor or ArchiveExtractor(self.workspace)
        self._patcher = self.patcher or SourcePatcher(self.workspace, logger=self.logger)
        self._builder = self.builder or NativeLibraryBuilder(
            self.workspace, runner=self.runner, logger=self.logger
        )

    def state(self, graph: BuildGraph) -> dict[str, TargetState]:
        keys = graph.build_keys()
        states: dict[str, TargetState] = {}
        for target in graph.targets:
            states[target.name] = self._target_state(target, keys[target.name])
        return states

    def plan(self, graph: BuildGraph, *, include_downstream: bool = True) -> list[tuple[Step, bool]]:
        """Return every step in execution order paired with whether it still needs to run."""
        keys = graph.build_keys()
        return [
            (step, not self._satisfied(step, graph, keys))
            for step in graph.steps(include_downstream=include_downstream)
        ]

    def run(
        self,
        graph: BuildGraph,
        *,
        include_downstream: bool = True,
        report_path: Path | None = None,
    ) -> RunResult:
        result = RunResult()
        keys = graph.build_keys()
        for step in graph.steps(include_downstream=include_downstream):
            if self._satisfied(step, graph, keys):
                result.records.append(StepRecord(step.id, step.kind, step.target, "skipped"))
                self.logger.log(
                    operation="step_skip",
                    target=step.target,
                    step=step.kind,
                    message=f"{step.id} already satisfied.",
                )
                continue

            self.logger.log(
                operation="step_start",
                target=step.target,
                step=step.kind,
                message=f"Running {step.id}.",
            )
            try:
                detail = self._execute(step, graph, keys)
            except NativeDepsError as exc:
                result.error = exc
                result.failed_step = step.id
                result.failed_target = step.target
                result.records.append(
                    StepRecord(step.id, step.kind, step.target, "failed", detail=exc.message),
                )
                self.logger.log(
                    operation="step_failed",
                    target=step.target,
                    step=step.kind,
                    level="error",
                    message=f"{step.id} failed: {exc.message}",
                    extra={"code": exc.code},
                )
                break
            result.records.append(StepRecord(step.id, step.kind, step.target, "executed", detail))
            self.logger.log(
                operation="step_complete",
                target=step.target,
                step=step.kind,
                message=f"Completed {step.id}.",
            )

        result.report_path = self._write_report(result, report_path or self.workspace.report_path)
        return result

    def _target_state(self, target: Target, key: str) -> TargetState:
        if self._builder.is_built(target, key=key):
            return "built"
        if self._extractor.is_extracted(target):
            if target.patches and self._patcher.is_patched(target):
                return "patched"
            return "extracted"
        if self._fetcher.is_fetched(target):
            return "fetched"
        return "missing"

    def _satisfied(self, step: Step, graph: BuildGraph, keys: dict[str, str]) -> bool:
        if step.target is None:
            return False
        target = graph.target(step.target)
        if self._builder.is_built(target, key=keys[target.name]):
            return True
        if step.kind == "fetch":
            if self._fetcher.has_archive(target):
                return self._fetcher.is_fetched(target)
            return self._tree_is_current(target)
        if step.kind == "extract":
            return self._tree_is_current(target)
        if step.kind == "patch":
            return self._patcher.is_patched(target)
        return False

    def _tree_is_current(self, target: Target) -> bool:
        return self._extractor.is_extracted(target) and not self._patcher.has_stale_overrides(target)

    def _execute(self, step: Step, graph: BuildGraph, keys: dict[str, str]) -> str:
        if step.kind == "downstream":
            downstream = DownstreamBuilder(
                self.workspace,
                graph.downstream,
                runner=self.runner,
                logger=self.logger,
            )
            downstream.build(graph.target_order())
            return " ".join(graph.downstream.command)

        target = graph.target(step.target or "")
        if step.kind == "fetch":
            return str(self._fetcher.fetch(target))
        if step.kind == "extract":
            stale = self._patcher.has_stale_overrides(target)
            return str(self._extractor.extract(target, replace=stale))
        if step.kind == "patch":
            written = self._patcher.patch(target)
            return f"{len(written)} file(s) written"
        built = self._builder.build(target, graph.dependencies(target), key=keys[target.name])
        return "built" if built else "already built"

    def _write_report(self, result: RunResult, path: Path) -> Path:
        payload = {**result.to_dict(), "logs": self.logger.records}
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
        return path

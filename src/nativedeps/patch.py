"""Override-file patching of extracted source trees.

Applied destinations are recorded in ``.nativedeps-patches.json`` inside the
tree. A recorded destination that is no longer configured means the tree
still carries an override it should not, so it has to be extracted again.
"""

from __future__ import annotations

import filecmp
import json
import os
import shutil
from pathlib import Path

from nativedeps.errors import PatchApplicationError
from nativedeps.models import PatchOperation, Target
from nativedeps.observability import StructuredLogger
from nativedeps.workspace import Workspace

PATCH_RECORD_NAME = ".nativedeps-patches.json"


class SourcePatcher:
    def __init__(self, workspace: Workspace, *, logger: StructuredLogger | None = None) -> None:
        self.workspace = workspace
        self.logger = logger or StructuredLogger()

    def is_patched(self, target: Target) -> bool:
        """True when every destination already holds its override content."""
        source_dir = self.workspace.source_dir(target)
        if not source_dir.is_dir():
            return False
        return all(_matches(op.source, source_dir / op.destination) for op in target.patches)

    def applied(self, target: Target) -> set[str]:
        record = self.workspace.source_dir(target) / PATCH_RECORD_NAME
        try:
            parsed = json.loads(record.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError, UnicodeDecodeError):
            return set()
        if not isinstance(parsed, list):
            return set()
        return {item for item in parsed if isinstance(item, str)}

    def has_stale_overrides(self, target: Target) -> bool:
        """True when the tree holds overrides that are no longer configured."""
        configured = {op.destination for op in target.patches}
        return bool(self.applied(target) - configured)

    def patch(self, target: Target) -> list[Path]:
        """Copy each override file over its destination and return the paths written."""
        source_dir = self.workspace.source_dir(target)
        if not source_dir.is_dir():
            raise PatchApplicationError(
                "Source tree to patch does not exist.",
                hint="Run the extract step before patching.",
                context={"operation": "patch", "target": target.name, "tree": str(source_dir)},
            )

        written: list[Path] = []
        for op in target.patches:
            destination = self._check(target, op, source_dir)
            if _matches(op.source, destination):
                self.logger.log(
                    operation="patch_skip",
                    target=target.name,
                    step="patch",
                    message="Destination already matches override.",
                    extra={"destination": op.destination},
                )
                continue
            try:
                shutil.copyfile(op.source, destination)
            except OSError as exc:
                raise PatchApplicationError(
                    "Unable to copy override file into the source tree.",
                    context={**_context(target, op), "reason": str(exc)},
                ) from exc
            written.append(destination)
            self.logger.log(
                operation="patch_apply",
                target=target.name,
                step="patch",
                message="Applied override file.",
                extra={"source": str(op.source), "destination": op.destination},
            )
        self._record(target, source_dir)
        return written

    def _record(self, target: Target, source_dir: Path) -> None:
        record = source_dir / PATCH_RECORD_NAME
        temp_path = record.with_name(f"{PATCH_RECORD_NAME}.tmp")
        payload = sorted(self.applied(target) | {op.destination for op in target.patches})
        try:
            temp_path.write_text(json.dumps(payload) + "\n", encoding="utf-8")
            os.replace(temp_path, record)
        except OSError as exc:
            raise PatchApplicationError(
                "Unable to record applied overrides.",
                context={"operation": "patch", "target": target.name, "reason": str(exc)},
            ) from exc

    def _check(self, target: Target, op: PatchOperation, source_dir: Path) -> Path:
        context = _context(target, op)
        if not op.source.is_file():
            raise PatchApplicationError(
                "Override source file does not exist.",
                hint="Check the patch list in the target configuration.",
                context=context,
            )
        destination = source_dir / op.destination
        if not destination.parent.is_dir():
            raise PatchApplicationError(
                "Destination directory does not exist in the extracted tree.",
                hint="The patch set may not match this library version.",
                context=context,
            )
        if destination.is_dir():
            raise PatchApplicationError(
                "Destination is a directory in the extracted tree.",
                hint="Patch destinations must name a file.",
                context=context,
            )
        return destination


def _context(target: Target, op: PatchOperation) -> dict[str, str]:
    return {
        "operation": "patch",
        "target": target.name,
        "source": str(op.source),
        "destination": op.destination,
    }


def _matches(source: Path, destination: Path) -> bool:
    if not source.is_file() or not destination.is_file():
        return False
    return filecmp.cmp(source, destination, shallow=False)

"""Archive extraction into versioned source directories."""

from __future__ import annotations

import lzma
import os
import shutil
import tarfile
import zlib
from collections.abc import Callable
from pathlib import Path

from nativedeps.errors import ExtractionError
from nativedeps.models import Target
from nativedeps.workspace import Workspace

_ARCHIVE_ERRORS = (tarfile.TarError, OSError, EOFError, zlib.error, lzma.LZMAError)


class ArchiveExtractor:
    """Unpack a fetched archive into ``<workspace>/<name>-<version>/``.

    The tree is unpacked into a hidden sibling directory first and renamed
    into place once complete, so the versioned directory only ever exists
    for a finished extraction.
    """

    def __init__(self, workspace: Workspace) -> None:
        self.workspace = workspace

    def is_extracted(self, target: Target) -> bool:
        return self.workspace.source_dir(target).is_dir()

    def extract(self, target: Target, *, replace: bool = False) -> Path:
        """Unpack *target*'s archive; with *replace*, an existing tree is discarded first."""
        source_dir = self.workspace.source_dir(target)
        archive_path = self.workspace.archive_path(target)
        context = {
            "operation": "extract",
            "target": target.name,
            "archive": str(archive_path),
        }
        if source_dir.is_dir():
            if not replace:
                return source_dir
            if not archive_path.is_file():
                raise ExtractionError(
                    "Archive to re-extract does not exist.",
                    hint="Run the fetch step first.",
                    context=context,
                )
            self._filesystem(shutil.rmtree, source_dir, context=context)
        if not archive_path.is_file():
            raise ExtractionError(
                "Archive to extract does not exist.",
                hint="Run the fetch step first.",
                context=context,
            )

        staging = self.workspace.extracting_dir(target)
        if staging.exists():
            self._filesystem(shutil.rmtree, staging, context=context)
        self._filesystem(staging.mkdir, parents=True, context=context)
        try:
            with tarfile.open(archive_path, "r:*") as archive:
                archive.extractall(staging, filter="data")
        except _ARCHIVE_ERRORS as exc:
            shutil.rmtree(staging, ignore_errors=True)
            raise ExtractionError(
                "Archive is corrupt or unreadable.",
                hint="Delete the archive so it is fetched again.",
                context={**context, "reason": str(exc)},
            ) from exc

        entries = list(staging.iterdir())
        if len(entries) == 1 and entries[0].is_dir():
            self._filesystem(os.replace, entries[0], source_dir, context=context)
            self._filesystem(staging.rmdir, context=context)
        else:
            self._filesystem(os.replace, staging, source_dir, context=context)
        return source_dir

    @staticmethod
    def _filesystem(
        operation: Callable[..., object],
        *args: object,
        context: dict[str, str],
        **kwargs: object,
    ) -> None:
        try:
            operation(*args, **kwargs)
        except OSError as exc:
            raise ExtractionError(
                "Unable to prepare the extracted source tree.",
                hint="Remove the leftover paths in the workspace or run clean.",
                context={**context, "reason": str(exc)},
            ) from exc

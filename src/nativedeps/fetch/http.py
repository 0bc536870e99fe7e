"""Source archive download with explicit retry and integrity checks."""

from __future__ import annotations

import hashlib
import os
import time
from collections.abc import Callable
from http.client import HTTPException
from pathlib import Path
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import urlopen

from nativedeps.errors import FetchError, ValidationError
from nativedeps.models import Target
from nativedeps.observability import StructuredLogger
from nativedeps.policy import Policy, ensure_network_allowed
from nativedeps.workspace import Workspace

CHUNK_SIZE = 1 << 16
DEFAULT_TIMEOUT = 60.0


class ArchiveFetcher:
    """Download a target's archive into the workspace unless it is already there."""

    def __init__(
        self,
        workspace: Workspace,
        *,
        policy: Policy | None = None,
        logger: StructuredLogger | None = None,
        opener: Callable[..., Any] = urlopen,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.workspace = workspace
        self.policy = policy or Policy()
        self.logger = logger or StructuredLogger()
        self._opener = opener
        self._sleep = sleep
        self.timeout = timeout

    def has_archive(self, target: Target) -> bool:
        return self.workspace.archive_path(target).is_file()

    def is_fetched(self, target: Target) -> bool:
        """True when the archive is present and matches its pinned sha256, if any."""
        archive_path = self.workspace.archive_path(target)
        if not archive_path.is_file():
            return False
        return not target.sha256 or _sha256(archive_path) == target.sha256

    def fetch(self, target: Target) -> Path:
        archive_path = self.workspace.archive_path(target)
        if archive_path.is_file():
            if target.sha256:
                _assert_hash_matches(archive_path, target=target)
            return archive_path

        if self.policy.require_integrity and not target.sha256:
            raise ValidationError(
                "Policy requires a pinned sha256 for every archive.",
                hint="Add a sha256 to the target or relax policy.require_integrity.",
                context={"target": target.name, "url": target.url},
            )
        ensure_network_allowed(policy=self.policy, operation="fetch", target=target.name)

        partial_path = self.workspace.partial_archive_path(target)
        try:
            archive_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FetchError(
                "Unable to create the workspace directory.",
                context={"operation": "fetch", "target": target.name, "reason": str(exc)},
            ) from exc
        retry = self.policy.retry
        for attempt in range(retry.attempts):
            try:
                self._download(target, partial_path)
                break
            except FetchError as exc:
                partial_path.unlink(missing_ok=True)
                if attempt + 1 >= retry.attempts or not _is_retryable(exc):
                    raise
                delay = retry.delay(attempt)
                self.logger.log(
                    operation="fetch_retry",
                    target=target.name,
                    step="fetch",
                    level="warning",
                    message=f"Download failed, retrying in {delay:.1f}s.",
                    extra={"attempt": attempt + 1, "error": exc.message},
                )
                self._sleep(delay)

        if target.sha256:
            try:
                _assert_hash_matches(partial_path, target=target)
            except FetchError:
                partial_path.unlink(missing_ok=True)
                raise
        try:
            os.replace(partial_path, archive_path)
        except OSError as exc:
            raise FetchError(
                "Unable to move the downloaded archive into place.",
                context={"operation": "fetch", "target": target.name, "reason": str(exc)},
            ) from exc
        return archive_path

    def _download(self, target: Target, destination: Path) -> None:
        context = {"operation": "fetch", "target": target.name, "url": target.url}
        received = 0
        expected: int | None = None
        try:
            with self._opener(target.url, timeout=self.timeout) as response:
                length = response.headers.get("Content-Length") if response.headers else None
                if length is not None and length.isdigit():
                    expected = int(length)
                with destination.open("wb") as handle:
                    for chunk in iter(lambda: response.read(CHUNK_SIZE), b""):
                        handle.write(chunk)
                        received += len(chunk)
        except HTTPError as exc:
            raise FetchError(
                f"Download failed with HTTP status {exc.code}.",
                hint="Check that the pinned URL still serves this archive.",
                context={**context, "status": str(exc.code)},
            ) from exc
        except (URLError, HTTPException, OSError) as exc:
            raise FetchError(
                "Download failed.",
                hint="Check network connectivity or mirror the archive locally.",
                context={**context, "reason": str(getattr(exc, "reason", exc))},
            ) from exc

        if expected is not None and received != expected:
            raise FetchError(
                "Download ended before the advertised length was received.",
                hint="Retry the build; the transfer was truncated.",
                context={**context, "expected": str(expected), "received": str(received)},
            )


def _is_retryable(exc: FetchError) -> bool:
    status = exc.context.get("status", "")
    return not status.startswith("4")


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _assert_hash_matches(path: Path, *, target: Target) -> None:
    actual = _sha256(path)
    if actual != target.sha256:
        raise FetchError(
            "Archive hash mismatch.",
            hint="Delete the archive and refetch, or update the pinned sha256.",
            context={
                "operation": "fetch",
                "target": target.name,
                "path": str(path),
                "expected": target.sha256,
                "actual": actual,
            },
        )

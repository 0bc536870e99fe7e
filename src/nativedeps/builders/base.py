"""Command runner interface and search-path helpers shared by builders."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

STDERR_TAIL = 2000


@dataclass(frozen=True, slots=True)
class CommandResult:
    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def stderr_tail(self) -> str:
        return self.stderr[-STDERR_TAIL:] if self.stderr else ""


class CommandRunner(Protocol):
    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run *argv* in *cwd* with *env* layered over the process environment."""


@dataclass(slots=True)
class SubprocessRunner:
    """Blocking toolchain invocation through ``subprocess.run``."""

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        command = tuple(argv)
        full_env = {**os.environ, **env} if env else None
        try:
            completed = subprocess.run(
                list(command),
                cwd=str(cwd),
                env=full_env,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            return CommandResult(argv=command, returncode=127, stderr=str(exc))
        except PermissionError as exc:
            return CommandResult(argv=command, returncode=126, stderr=str(exc))
        return CommandResult(
            argv=command,
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )


def search_path_flags(
    include_paths: Sequence[Path],
    lib_paths: Sequence[Path],
) -> dict[str, str]:
    """Return ``CPPFLAGS``/``LDFLAGS`` values pointing at prerequisite builds."""
    flags: dict[str, str] = {}
    if include_paths:
        flags["CPPFLAGS"] = " ".join(f"-I{path}" for path in include_paths)
    if lib_paths:
        flags["LDFLAGS"] = " ".join(f"-L{path}" for path in lib_paths)
    return flags


def merge_assignments(args: Sequence[str], extra: Mapping[str, str]) -> list[str]:
    """Fold ``NAME=value`` *extra* assignments into *args*.

    An assignment already present in *args* keeps its own value after the
    extra one, so explicit configuration can still override search paths.
    """
    merged = list(args)
    pending = dict(extra)
    for index, arg in enumerate(merged):
        name, sep, value = arg.partition("=")
        if sep and name in pending:
            merged[index] = f"{name}={pending.pop(name)} {value}".rstrip()
    merged.extend(f"{name}={value}" for name, value in pending.items())
    return merged

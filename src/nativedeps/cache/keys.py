"""Build key derivation."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from nativedeps.models import Target


@dataclass(frozen=True, slots=True)
class BuildInputs:
    name: str
    version: str
    url: str
    sha256: str
    configure: tuple[str, ...]
    make: tuple[str, ...]
    patches: tuple[tuple[str, str], ...] = ()
    dependencies: tuple[str, ...] = ()


def build_inputs(target: Target, dependencies: Sequence[str] = ()) -> BuildInputs:
    """Collect the declared inputs of *target*; *dependencies* are prerequisite build keys."""
    return BuildInputs(
        name=target.name,
        version=target.version,
        url=target.url,
        sha256=target.sha256,
        configure=(*target.configure_cmd, *target.configure_flags),
        make=target.make_cmd,
        patches=tuple((str(op.source), op.destination) for op in target.patches),
        dependencies=tuple(dependencies),
    )


def build_key(inputs: BuildInputs) -> str:
    canonical = json.dumps(_to_payload(inputs), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _to_payload(inputs: BuildInputs) -> dict[str, Any]:
    return {
        "name": inputs.name,
        "version": inputs.version,
        "url": inputs.url,
        "sha256": inputs.sha256,
        "configure": list(inputs.configure),
        "make": list(inputs.make),
        "patches": [list(item) for item in inputs.patches],
        "dependencies": list(inputs.dependencies),
    }

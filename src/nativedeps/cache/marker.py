"""Atomically written completion markers for native library builds."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

MARKER_NAME = ".nativedeps-built.json"


class CompletionMarker:
    """Marker file inside an extracted tree, written only after a build fully succeeds."""

    def __init__(self, tree: str | Path) -> None:
        self.tree = Path(tree)
        self.path = self.tree / MARKER_NAME

    def exists(self) -> bool:
        return self.path.is_file()

    def read(self) -> dict[str, Any] | None:
        """Return the marker payload, or None when absent or unreadable."""
        try:
            parsed = json.loads(self.path.read_text(encoding="utf-8"))
        except (FileNotFoundError, json.JSONDecodeError, UnicodeDecodeError):
            return None
        if not isinstance(parsed, dict):
            return None
        return parsed

    def matches(self, key: str) -> bool:
        payload = self.read()
        return payload is not None and payload.get("key") == key

    def write(self, *, key: str, target: str, version: str, commands: list[list[str]]) -> Path:
        payload = {
            "key": key,
            "target": target,
            "version": version,
            "commands": commands,
        }
        temp_path = self.path.with_name(f"{MARKER_NAME}.tmp")
        temp_path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
        os.replace(temp_path, self.path)
        return self.path

    def remove(self) -> None:
        self.path.unlink(missing_ok=True)

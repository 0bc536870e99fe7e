"""Target configuration: compiled-in defaults and the JSON configuration file."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from nativedeps.errors import ConfigError, ValidationError
from nativedeps.graph import BuildGraph
from nativedeps.models import DownstreamBuild, PatchOperation, Target

CONFIG_VERSION = 1
DEFAULT_CONFIG_NAME = "nativedeps.json"

ZLIB = Target(
    name="zlib",
    version="1.2.11",
    url="https://zlib.net/fossils/zlib-1.2.11.tar.gz",
)
XAPIAN_CORE = Target(
    name="xapian-core",
    version="1.4.17",
    url="https://oligarchy.co.uk/xapian/1.4.17/xapian-core-1.4.17.tar.xz",
    depends_on=("zlib",),
    include_dirs=("include",),
    lib_dirs=(".libs",),
)


def default_graph() -> BuildGraph:
    """zlib, then xapian-core against it, then ``cargo build``."""
    return BuildGraph(targets=(ZLIB, XAPIAN_CORE), downstream=DownstreamBuild())


def load_config(path: str | Path) -> BuildGraph:
    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(
            "Configuration file does not exist.",
            context={"path": str(config_path)},
        ) from exc
    return parse_config(raw, base_dir=config_path.absolute().parent)


def parse_config(raw: str, *, base_dir: Path) -> BuildGraph:
    """Parse a JSON configuration; patch sources resolve against *base_dir*."""
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError("Invalid configuration JSON.", hint=str(exc)) from exc
    if not isinstance(payload, dict):
        raise ConfigError("Invalid configuration payload type.")

    version = payload.get("version", CONFIG_VERSION)
    if version != CONFIG_VERSION:
        raise ConfigError(
            f"Unsupported configuration version: {version}",
            hint=f"This release reads version {CONFIG_VERSION}.",
        )

    targets_raw = payload.get("targets")
    if not isinstance(targets_raw, list) or not targets_raw:
        raise ConfigError("Invalid configuration `targets` value.")
    targets = [_parse_target(item, base_dir=base_dir) for item in targets_raw]
    downstream = _parse_downstream(payload.get("downstream", {}), base_dir=base_dir)
    try:
        return BuildGraph(targets=tuple(targets), downstream=downstream)
    except ValidationError as exc:
        raise ConfigError(exc.message, hint=exc.hint, context=exc.context) from exc


def serialize_graph(graph: BuildGraph) -> str:
    payload = {
        "version": CONFIG_VERSION,
        "targets": [
            {
                "name": target.name,
                "version": target.version,
                "url": target.url,
                "archive": target.archive,
                "sha256": target.sha256,
                "depends_on": list(target.depends_on),
                "configure_flags": list(target.configure_flags),
                "include_dirs": list(target.include_dirs),
                "lib_dirs": list(target.lib_dirs),
                "configure_cmd": list(target.configure_cmd),
                "make_cmd": list(target.make_cmd),
                "patches": [
                    {"source": str(op.source), "destination": op.destination}
                    for op in target.patches
                ],
            }
            for target in graph.targets
        ],
        "downstream": {
            "command": list(graph.downstream.command),
            "clean_command": list(graph.downstream.clean_command),
            "enabled": graph.downstream.enabled,
        },
    }
    if graph.downstream.cwd is not None:
        payload["downstream"]["cwd"] = str(graph.downstream.cwd)  # type: ignore[index]
    return json.dumps(payload, indent=2, sort_keys=True) + "\n"


def _parse_target(item: Any, *, base_dir: Path) -> Target:
    if not isinstance(item, dict):
        raise ConfigError("Invalid target entry in configuration.")
    name = _required_str(item, "name")
    optional: dict[str, Any] = {}
    if "archive" in item:
        optional["archive"] = _required_str(item, "archive", owner=name)
    if item.get("sha256"):
        optional["sha256"] = _required_str(item, "sha256", owner=name).lower()
    for key in ("depends_on", "configure_flags", "include_dirs", "lib_dirs"):
        if key in item:
            optional[key] = _str_tuple(item, key, owner=name, allow_empty_items=key.endswith("_dirs"))
    for key in ("configure_cmd", "make_cmd"):
        if key in item:
            optional[key] = _str_tuple(item, key, owner=name)
    patches_raw = item.get("patches", [])
    if not isinstance(patches_raw, list):
        raise ConfigError("Invalid target `patches` value.", context={"target": name})
    try:
        patches = tuple(_parse_patch(entry, owner=name, base_dir=base_dir) for entry in patches_raw)
        return Target(
            name=name,
            version=_required_str(item, "version", owner=name),
            url=_required_str(item, "url", owner=name),
            patches=patches,
            **optional,
        )
    except ValidationError as exc:
        raise ConfigError(exc.message, hint=exc.hint, context=exc.context) from exc


def _parse_patch(entry: Any, *, owner: str, base_dir: Path) -> PatchOperation:
    if not isinstance(entry, dict):
        raise ConfigError("Invalid patch entry in configuration.", context={"target": owner})
    source = Path(_required_str(entry, "source", owner=owner))
    if not source.is_absolute():
        source = base_dir / source
    return PatchOperation(source=source, destination=_required_str(entry, "destination", owner=owner))


def _parse_downstream(value: Any, *, base_dir: Path) -> DownstreamBuild:
    if not isinstance(value, dict):
        raise ConfigError("Invalid configuration `downstream` value.")
    defaults = DownstreamBuild()
    enabled = value.get("enabled", True)
    if not isinstance(enabled, bool):
        raise ConfigError("Invalid downstream `enabled` value.")
    cwd: Path | None = None
    if "cwd" in value:
        cwd = Path(_required_str(value, "cwd", owner="downstream"))
        if not cwd.is_absolute():
            cwd = base_dir / cwd
    command = _str_tuple(value, "command", owner="downstream") if "command" in value else defaults.command
    clean_command = defaults.clean_command
    if "clean_command" in value:
        clean_command = _str_tuple(value, "clean_command", owner="downstream", allow_empty=True)
    if enabled and not command:
        raise ConfigError("Downstream build requires a command when enabled.")
    return DownstreamBuild(command=command, clean_command=clean_command, cwd=cwd, enabled=enabled)


def _required_str(payload: dict[str, Any], key: str, *, owner: str | None = None) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(
            f"Invalid configuration `{key}` value.",
            context={"target": owner or ""},
        )
    return value


def _str_tuple(
    payload: dict[str, Any],
    key: str,
    *,
    owner: str,
    allow_empty: bool = False,
    allow_empty_items: bool = False,
) -> tuple[str, ...]:
    value = payload.get(key)
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"Invalid configuration `{key}` value.", context={"target": owner})
    if not allow_empty and not value and key in ("command", "configure_cmd", "make_cmd"):
        raise ConfigError(f"Configuration `{key}` must not be empty.", context={"target": owner})
    if not allow_empty_items and any(not item for item in value):
        raise ConfigError(f"Configuration `{key}` contains an empty entry.", context={"target": owner})
    return tuple(value)

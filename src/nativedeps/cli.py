"""Command-line entry point.

Usage:
    nativedeps build [--workspace DIR] [--config FILE] [--offline] [--retries N]
    nativedeps clean [--workspace DIR] [--config FILE] [--archives] [--skip-downstream]
    nativedeps status [--workspace DIR] [--config FILE]
    nativedeps config [--output FILE]
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path

from nativedeps.builders import CommandRunner, SubprocessRunner
from nativedeps.clean import WorkspaceCleaner
from nativedeps.config import DEFAULT_CONFIG_NAME, default_graph, load_config, serialize_graph
from nativedeps.errors import ConfigError, NativeDepsError, ValidationError
from nativedeps.executor import BuildGraphExecutor
from nativedeps.graph import BuildGraph
from nativedeps.policy import Policy, RetryPolicy
from nativedeps.workspace import Workspace

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

_STATUS_LABELS = {"executed": "done", "skipped": "skip", "failed": "FAIL"}


def load_graph(args: argparse.Namespace) -> BuildGraph:
    if args.config is not None:
        return load_config(args.config)
    candidate = Path(args.workspace) / DEFAULT_CONFIG_NAME
    if candidate.is_file():
        return load_config(candidate)
    return default_graph()


def cmd_build(args: argparse.Namespace, runner: CommandRunner) -> int:
    graph = load_graph(args)
    policy = Policy(
        network_mode="offline" if args.offline else "online",
        retry=RetryPolicy(attempts=args.retries + 1, backoff_seconds=args.backoff),
        require_integrity=args.require_sha256,
    )
    executor = BuildGraphExecutor(Workspace(Path(args.workspace)), policy=policy, runner=runner)
    result = executor.run(
        graph,
        include_downstream=not args.skip_downstream,
        report_path=Path(args.report) if args.report else None,
    )
    for record in result.records:
        label = _STATUS_LABELS[record.status]
        suffix = f" ({record.detail})" if record.detail and record.status != "failed" else ""
        print(f"[{label}] {record.step}{suffix}")

    if result.error is not None:
        where = result.failed_step or "unknown step"
        if result.failed_target:
            where = f"{where} (target {result.failed_target})"
        print(f"error: {where} failed [{result.error.code}]", file=sys.stderr)
        print(str(result.error), file=sys.stderr)
        return EXIT_FAILURE
    print(f"Build complete; report written to {result.report_path}")
    return EXIT_OK


def cmd_clean(args: argparse.Namespace, runner: CommandRunner) -> int:
    try:
        graph = load_graph(args)
    except (ConfigError, ValidationError) as exc:
        print(f"warning: {exc}", file=sys.stderr)
        print("warning: cleaning the built-in targets instead", file=sys.stderr)
        graph = default_graph()
    cleaner = WorkspaceCleaner(Workspace(Path(args.workspace)), graph, runner=runner)
    removed = cleaner.clean(archives=args.archives, downstream=not args.skip_downstream)
    for path in removed:
        print(f"removed {path}")
    for record in cleaner.logger.records_at_level("warning"):
        print(f"warning: {record['message']} {record.get('extra', {})}", file=sys.stderr)
    return EXIT_OK


def cmd_status(args: argparse.Namespace, runner: CommandRunner) -> int:
    graph = load_graph(args)
    executor = BuildGraphExecutor(Workspace(Path(args.workspace)), runner=runner)
    for name, state in executor.state(graph).items():
        target = graph.target(name)
        print(f"{target.key}: {state}")
    print("plan:")
    for step, needed in executor.plan(graph):
        print(f"  {'run ' if needed else 'skip'} {step.id}")
    return EXIT_OK


def cmd_config(args: argparse.Namespace, runner: CommandRunner) -> int:
    graph = load_graph(args)
    rendered = serialize_graph(graph)
    if args.output:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(rendered, encoding="utf-8")
        print(f"Wrote {output}")
    else:
        sys.stdout.write(rendered)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nativedeps",
        description="Fetch, patch and build pinned native dependencies, then the downstream project.",
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--workspace", default=".", help="Workspace directory (default: cwd)")
    common.add_argument(
        "--config",
        default=None,
        help=f"JSON target configuration (default: <workspace>/{DEFAULT_CONFIG_NAME} or built-in)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    build_p = sub.add_parser("build", parents=[common], help="Build every stale target, then downstream")
    build_p.add_argument("--offline", action="store_true", help="Fail instead of downloading archives")
    build_p.add_argument("--retries", type=_non_negative_int, default=0, help="Download retries")
    build_p.add_argument("--backoff", type=float, default=1.0, help="Initial retry delay in seconds")
    build_p.add_argument(
        "--require-sha256",
        action="store_true",
        help="Refuse to download archives without a pinned digest",
    )
    build_p.add_argument("--skip-downstream", action="store_true", help="Stop after native targets")
    build_p.add_argument("--report", default=None, help="Run report path")

    clean_p = sub.add_parser("clean", parents=[common], help="Remove derived artifacts")
    clean_p.add_argument("--archives", action="store_true", help="Also remove fetched archives")
    clean_p.add_argument(
        "--skip-downstream",
        action="store_true",
        help="Do not run the downstream clean command",
    )

    sub.add_parser("status", parents=[common], help="Show target states and the pending plan")

    config_p = sub.add_parser("config", parents=[common], help="Print the effective configuration")
    config_p.add_argument("--output", default=None, help="Write to a file instead of stdout")
    return parser


def main(argv: Sequence[str] | None = None, *, runner: CommandRunner | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    commands = {
        "build": cmd_build,
        "clean": cmd_clean,
        "status": cmd_status,
        "config": cmd_config,
    }
    try:
        return commands[args.command](args, runner or SubprocessRunner())
    except (ConfigError, ValidationError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_USAGE
    except NativeDepsError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_FAILURE


def _non_negative_int(value: str) -> int:
    parsed = int(value)
    if parsed < 0:
        raise argparse.ArgumentTypeError("must be zero or greater")
    return parsed


if __name__ == "__main__":
    sys.exit(main())

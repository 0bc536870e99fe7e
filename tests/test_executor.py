import hashlib
import json
from dataclasses import replace
from pathlib import Path
from urllib.error import URLError

from nativedeps.builders import NativeLibraryBuilder
from nativedeps.clean import WorkspaceCleaner
from nativedeps.errors import ConfigureError, FetchError, PatchApplicationError
from nativedeps.extract import ArchiveExtractor
from nativedeps.fetch import ArchiveFetcher
from nativedeps.graph import BuildGraph
from nativedeps.models import DownstreamBuild, PatchOperation, Target

EXPECTED_SEQUENCE = [
    ("fetch", "zlib-1.2.11.tar.gz"),
    ("extract", "zlib-1.2.11"),
    ("run", "./configure", "zlib-1.2.11"),
    ("run", "make", "zlib-1.2.11"),
    ("fetch", "xapian-core-1.4.17.tar.xz"),
    ("extract", "xapian-core-1.4.17"),
    ("patch", "xapian-core-1.4.17"),
    ("run", "./configure", "xapian-core-1.4.17"),
    ("run", "make", "xapian-core-1.4.17"),
    ("run", "cargo", "workspace"),
]


def test_empty_workspace_build_runs_full_sequence(harness) -> None:
    result = harness.executor().run(harness.graph)

    assert result.ok
    assert harness.events == EXPECTED_SEQUENCE
    assert len(result.executed("downstream")) == 1

    xapian_configure = harness.runner.calls[2][0]
    zlib_dir = harness.workspace.root / "zlib-1.2.11"
    assert xapian_configure[0] == "./configure"
    assert f"CPPFLAGS=-I{zlib_dir}" in xapian_configure
    assert f"LDFLAGS=-L{zlib_dir}" in xapian_configure

    xapian_dir = harness.workspace.root / "xapian-core-1.4.17"
    assert (xapian_dir / "include/xapian/version.h").read_text() == "/* patched */\n"
    assert (xapian_dir / "api/omdatabase.cc").read_text() == "// patched\n"


def test_second_build_performs_no_fetch_extract_or_compile(harness) -> None:
    executor = harness.executor()
    assert executor.run(harness.graph).ok
    harness.events.clear()

    second = harness.executor().run(harness.graph)

    assert second.ok
    assert harness.events == [("run", "cargo", "workspace")]
    assert {record.step for record in second.skipped()} == {
        "fetch:zlib",
        "extract:zlib",
        "build:zlib",
        "fetch:xapian-core",
        "extract:xapian-core",
        "patch:xapian-core",
        "build:xapian-core",
    }


def test_compression_build_completes_before_search_engine_configure(harness) -> None:
    harness.executor().run(harness.graph)

    kinds = harness.events
    zlib_make = kinds.index(("run", "make", "zlib-1.2.11"))
    xapian_configure = kinds.index(("run", "./configure", "xapian-core-1.4.17"))
    xapian_make = kinds.index(("run", "make", "xapian-core-1.4.17"))
    downstream = kinds.index(("run", "cargo", "workspace"))
    assert zlib_make < xapian_configure < xapian_make < downstream


def test_patch_runs_once_between_extract_and_configure(harness) -> None:
    harness.executor().run(harness.graph)

    patch_events = [event for event in harness.events if event[0] == "patch"]
    assert patch_events == [("patch", "xapian-core-1.4.17")]
    patch_index = harness.events.index(("patch", "xapian-core-1.4.17"))
    assert harness.events.index(("extract", "xapian-core-1.4.17")) < patch_index
    assert patch_index < harness.events.index(("run", "./configure", "xapian-core-1.4.17"))


def test_clean_then_build_repeats_full_sequence(harness) -> None:
    assert harness.executor().run(harness.graph).ok
    WorkspaceCleaner(harness.workspace, harness.graph, runner=harness.runner).clean(archives=True)
    harness.events.clear()

    result = harness.executor().run(harness.graph)

    assert result.ok
    assert harness.events == EXPECTED_SEQUENCE


def test_fetch_failure_stops_before_any_other_step(harness, tmp_path: Path) -> None:
    (tmp_path / "mirror" / "zlib-1.2.11.tar.gz").unlink()

    result = harness.executor().run(harness.graph)

    assert not result.ok
    assert isinstance(result.error, FetchError)
    assert result.failed_step == "fetch:zlib"
    assert result.failed_target == "zlib"
    assert harness.events == [("fetch", "zlib-1.2.11.tar.gz")]
    assert not (harness.workspace.root / "zlib-1.2.11").exists()


def test_configure_failure_is_fail_fast_without_rollback(harness) -> None:
    harness.runner.fail_on[("./configure", "xapian-core-1.4.17")] = 1

    result = harness.executor().run(harness.graph)

    assert isinstance(result.error, ConfigureError)
    assert result.failed_step == "build:xapian-core"
    assert harness.events[-1] == ("run", "./configure", "xapian-core-1.4.17")
    assert ("run", "cargo", "workspace") not in harness.events
    assert (harness.workspace.root / "xapian-core-1.4.17").is_dir()
    assert harness.executor().state(harness.graph) == {
        "zlib": "built",
        "xapian-core": "patched",
    }


def test_interrupted_compile_is_not_treated_as_built(harness) -> None:
    harness.runner.fail_on[("make", "zlib-1.2.11")] = 2
    harness.executor().run(harness.graph)
    (harness.workspace.root / "zlib-1.2.11" / ".libs").mkdir()
    harness.runner.fail_on.clear()
    harness.events.clear()

    result = harness.executor().run(harness.graph)

    assert result.ok
    assert ("run", "./configure", "zlib-1.2.11") in harness.events
    assert ("extract", "zlib-1.2.11") not in harness.events


def test_changed_configure_flags_rebuild_target_and_dependents(harness) -> None:
    assert harness.executor().run(harness.graph).ok
    zlib, xapian = harness.graph.targets
    changed = BuildGraph(
        targets=(
            Target(
                name=zlib.name,
                version=zlib.version,
                url=zlib.url,
                configure_flags=("--static",),
            ),
            xapian,
        ),
    )
    harness.events.clear()

    result = harness.executor().run(changed)

    assert result.ok
    assert ("run", "make", "zlib-1.2.11") in harness.events
    assert ("run", "make", "xapian-core-1.4.17") in harness.events
    assert not any(event[0] in ("fetch", "extract", "patch") for event in harness.events)


def test_retry_policy_recovers_from_transient_fetch_failure(harness) -> None:
    from urllib.request import urlopen

    from nativedeps.policy import Policy, RetryPolicy

    failures = {"remaining": 1}
    delays: list[float] = []

    def flaky_open(url: str, timeout: float):
        if failures["remaining"]:
            failures["remaining"] -= 1
            raise URLError("connection reset")
        return urlopen(url, timeout=timeout)

    executor = harness.executor(
        policy=Policy(retry=RetryPolicy(attempts=2, backoff_seconds=0.5)),
        opener=flaky_open,
        sleep=delays.append,
    )
    result = executor.run(harness.graph)

    assert result.ok
    assert delays == [0.5]


def test_skip_downstream_omits_downstream_step(harness) -> None:
    result = harness.executor().run(harness.graph, include_downstream=False)

    assert result.ok
    assert ("run", "cargo", "workspace") not in harness.events
    assert result.executed("downstream") == []


def test_disabled_downstream_is_not_part_of_the_graph(harness) -> None:
    graph = BuildGraph(targets=harness.graph.targets, downstream=DownstreamBuild(enabled=False))

    result = harness.executor().run(graph)

    assert result.ok
    assert all(record.kind != "downstream" for record in result.records)


def test_plan_and_state_follow_workspace(harness) -> None:
    executor = harness.executor()
    assert executor.state(harness.graph) == {"zlib": "missing", "xapian-core": "missing"}
    assert all(needed for _, needed in executor.plan(harness.graph))

    executor.run(harness.graph)

    assert executor.state(harness.graph) == {"zlib": "built", "xapian-core": "built"}
    needed = [step.id for step, needed in executor.plan(harness.graph) if needed]
    assert needed == ["downstream"]


def test_run_writes_report(harness) -> None:
    harness.runner.fail_on[("make", "zlib-1.2.11")] = 2

    result = harness.executor().run(harness.graph)

    assert result.report_path == harness.workspace.report_path
    report = json.loads(result.report_path.read_text(encoding="utf-8"))
    assert report["ok"] is False
    assert report["failure"]["step"] == "build:zlib"
    assert report["failure"]["error"]["code"] == "E_COMPILE"
    assert any(record["operation"] == "step_failed" for record in report["logs"])


def test_pinned_archive_in_workspace_is_verified_before_extract(harness, tmp_path: Path) -> None:
    zlib, xapian = harness.graph.targets
    genuine = (tmp_path / "mirror" / "zlib-1.2.11.tar.gz").read_bytes()
    pinned = BuildGraph(
        targets=(replace(zlib, sha256=hashlib.sha256(genuine).hexdigest()), xapian),
    )
    archive = harness.workspace.root / "zlib-1.2.11.tar.gz"
    archive.write_bytes(b"not the pinned archive")

    result = harness.executor().run(pinned)

    assert isinstance(result.error, FetchError)
    assert result.failed_step == "fetch:zlib"
    assert harness.events == [("fetch", "zlib-1.2.11.tar.gz")]
    assert not (harness.workspace.root / "zlib-1.2.11").exists()

    archive.write_bytes(genuine)
    harness.events.clear()

    assert harness.executor().run(pinned).ok
    assert ("fetch", "zlib-1.2.11.tar.gz") not in harness.events
    assert ("extract", "zlib-1.2.11") in harness.events


def test_patch_onto_directory_is_reported_as_patch_failure(harness) -> None:
    zlib, xapian = harness.graph.targets
    broken = replace(xapian, patches=(PatchOperation(xapian.patches[0].source, "include/xapian"),))

    result = harness.executor().run(BuildGraph(targets=(zlib, broken)))

    assert isinstance(result.error, PatchApplicationError)
    assert result.failed_step == "patch:xapian-core"
    assert result.failed_target == "xapian-core"
    report = json.loads(harness.workspace.report_path.read_text(encoding="utf-8"))
    assert report["failure"]["error"]["code"] == "E_PATCH"


def test_dropped_override_triggers_fresh_extraction(harness) -> None:
    assert harness.executor().run(harness.graph).ok
    zlib, xapian = harness.graph.targets
    fewer = BuildGraph(targets=(zlib, replace(xapian, patches=xapian.patches[:1])))
    harness.events.clear()

    result = harness.executor().run(fewer)

    assert result.ok
    assert harness.events == [
        ("extract", "xapian-core-1.4.17"),
        ("patch", "xapian-core-1.4.17"),
        ("run", "./configure", "xapian-core-1.4.17"),
        ("run", "make", "xapian-core-1.4.17"),
        ("run", "cargo", "workspace"),
    ]
    xapian_dir = harness.workspace.root / "xapian-core-1.4.17"
    assert (xapian_dir / "api/omdatabase.cc").read_text() == "// upstream\n"
    assert (xapian_dir / "include/xapian/version.h").read_text() == "/* patched */\n"

    harness.events.clear()
    assert harness.executor().run(fewer).ok
    assert harness.events == [("run", "cargo", "workspace")]


def test_target_built_outside_executor_with_graph_key_is_not_rebuilt(harness) -> None:
    zlib = harness.graph.target("zlib")
    ArchiveFetcher(harness.workspace).fetch(zlib)
    ArchiveExtractor(harness.workspace).extract(zlib)
    NativeLibraryBuilder(harness.workspace, runner=harness.runner).build(
        zlib,
        key=harness.graph.build_keys()["zlib"],
    )
    harness.events.clear()

    result = harness.executor().run(harness.graph, include_downstream=False)

    assert result.ok
    assert {"fetch:zlib", "extract:zlib", "build:zlib"} <= {r.step for r in result.skipped()}
    assert ("run", "make", "zlib-1.2.11") not in harness.events

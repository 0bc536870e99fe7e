"""Declared build graph and its expansion into an ordered task graph.

Targets declare ``depends_on`` edges. :meth:`BuildGraph.steps` expands every
target into ``fetch -> extract -> [patch] -> build`` step nodes, adds an edge
from each prerequisite's ``build`` to the dependent's ``build`` and from every
``build`` to the single ``downstream`` step, and returns a topological order.
Ties are broken by declaration order, so independent work keeps the order in
which targets were declared.
"""

from __future__ import annotations

import heapq
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from nativedeps.cache import build_inputs, build_key
from nativedeps.errors import ValidationError
from nativedeps.models import DownstreamBuild, StepKind, Target

DOWNSTREAM_STEP = "downstream"


@dataclass(frozen=True, slots=True)
class Step:
    id: str
    kind: StepKind
    target: str | None = None


def step_id(kind: StepKind, target: str) -> str:
    return f"{kind}:{target}"


def topological_order(nodes: Sequence[str], edges: Mapping[str, Iterable[str]]) -> list[str]:
    """Kahn's algorithm over *nodes*; ``edges[a]`` lists nodes that must follow ``a``."""
    index = {node: position for position, node in enumerate(nodes)}
    indegree = dict.fromkeys(nodes, 0)
    for source, successors in edges.items():
        if source not in index:
            raise ValidationError(f"Unknown graph node: {source}")
        for successor in successors:
            if successor not in index:
                raise ValidationError(f"Unknown graph node: {successor}")
            indegree[successor] += 1

    ready = [index[node] for node in nodes if indegree[node] == 0]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        node = nodes[heapq.heappop(ready)]
        order.append(node)
        for successor in edges.get(node, ()):
            indegree[successor] -= 1
            if indegree[successor] == 0:
                heapq.heappush(ready, index[successor])

    if len(order) != len(nodes):
        remaining = sorted(node for node in nodes if indegree[node] > 0)
        raise ValidationError(
            "Build graph contains a dependency cycle.",
            hint="Remove one of the depends_on edges between these targets.",
            context={"nodes": ", ".join(remaining)},
        )
    return order


@dataclass(frozen=True, slots=True)
class BuildGraph:
    targets: tuple[Target, ...]
    downstream: DownstreamBuild = field(default_factory=DownstreamBuild)

    def __post_init__(self) -> None:
        object.__setattr__(self, "targets", tuple(self.targets))
        if not self.targets:
            raise ValidationError("A build graph requires at least one target.")
        names = [target.name for target in self.targets]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValidationError(
                "Target names must be unique.",
                context={"duplicates": ", ".join(duplicates)},
            )
        keys = [target.key for target in self.targets]
        shared = sorted({key for key in keys if keys.count(key) > 1})
        if shared:
            raise ValidationError(
                "Targets must not share an archive and source directory name.",
                hint="Rename one of the targets so name-version differs.",
                context={"keys": ", ".join(shared)},
            )
        for target in self.targets:
            for dependency in target.depends_on:
                if dependency not in names:
                    raise ValidationError(
                        "Target depends on an undeclared target.",
                        hint="Declare the dependency or remove it from depends_on.",
                        context={"target": target.name, "dependency": dependency},
                    )
        self.target_order()

    def target(self, name: str) -> Target:
        for target in self.targets:
            if target.name == name:
                return target
        raise ValidationError(f"Unknown target: {name}")

    def dependencies(self, target: Target) -> list[Target]:
        return [self.target(name) for name in target.depends_on]

    def target_order(self) -> list[Target]:
        names = [target.name for target in self.targets]
        edges: dict[str, list[str]] = {name: [] for name in names}
        for target in self.targets:
            for dependency in target.depends_on:
                edges[dependency].append(target.name)
        return [self.target(name) for name in topological_order(names, edges)]

    def build_keys(self) -> dict[str, str]:
        """Build key per target; a prerequisite's key feeds into its dependents' keys."""
        keys: dict[str, str] = {}
        for target in self.target_order():
            inputs = build_inputs(target, [keys[name] for name in target.depends_on])
            keys[target.name] = build_key(inputs)
        return keys

    def steps(self, *, include_downstream: bool = True) -> list[Step]:
        nodes: dict[str, Step] = {}
        edges: dict[str, list[str]] = {}

        def add(step: Step, *after: str) -> None:
            nodes[step.id] = step
            edges.setdefault(step.id, [])
            for previous in after:
                edges[previous].append(step.id)

        for target in self.targets:
            fetch = Step(step_id("fetch", target.name), "fetch", target.name)
            extract = Step(step_id("extract", target.name), "extract", target.name)
            add(fetch)
            add(extract, fetch.id)
            last = extract.id
            if target.patches:
                patch = Step(step_id("patch", target.name), "patch", target.name)
                add(patch, extract.id)
                last = patch.id
            add(Step(step_id("build", target.name), "build", target.name), last)

        for target in self.targets:
            for dependency in target.depends_on:
                edges[step_id("build", dependency)].append(step_id("build", target.name))

        if include_downstream and self.downstream.enabled:
            add(
                Step(DOWNSTREAM_STEP, "downstream"),
                *(step_id("build", target.name) for target in self.targets),
            )

        order = topological_order(list(nodes), edges)
        return [nodes[node] for node in order]

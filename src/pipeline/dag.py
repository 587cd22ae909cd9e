"""Stage dependency ordering."""

from __future__ import annotations

from collections import deque
from typing import Iterable, Mapping

from core.errors import QuiverPipelineError
from core.types import StageDefinition


def pipeline_order(
    stages: Mapping[str, StageDefinition],
    targets: Iterable[str] | None = None,
) -> list[StageDefinition]:
    """Return stages in execution order.

    A stage depends on another when one of its dependency paths equals, or
    lies below, an output path of the other stage. Ties keep declaration
    order.

    Args:
        stages: Stage definitions keyed by name in declaration order.
        targets: Optional stage names; their upstream stages are included.

    Returns:
        Topologically ordered stage definitions.

    Raises:
        QuiverPipelineError: If a target is unknown or stages form a cycle.
    """
    upstream = _upstream_edges(stages)
    selected = _select_stages(stages, upstream, targets)
    remaining = {name: len(upstream[name] & selected) for name in selected}
    downstream: dict[str, list[str]] = {name: [] for name in selected}
    for name in selected:
        for parent in upstream[name] & selected:
            downstream[parent].append(name)
    declared = [name for name in stages if name in selected]
    ready = deque(name for name in declared if remaining[name] == 0)
    ordered: list[StageDefinition] = []
    while ready:
        name = ready.popleft()
        ordered.append(stages[name])
        for child in sorted(downstream[name], key=declared.index):
            remaining[child] -= 1
            if remaining[child] == 0:
                ready.append(child)
    if len(ordered) != len(selected):
        cyclic = sorted(name for name, count in remaining.items() if count > 0)
        raise QuiverPipelineError(
            f"Stage dependencies form a cycle between: {', '.join(cyclic)}. "
            "Remove a dependency so every stage can run after its inputs."
        )
    return ordered


def _upstream_edges(stages: Mapping[str, StageDefinition]) -> dict[str, set[str]]:
    producers = {output.path: stage.name for stage in stages.values() for output in stage.outs}
    edges: dict[str, set[str]] = {name: set() for name in stages}
    for stage in stages.values():
        for dep in stage.deps:
            for out_path, producer in producers.items():
                if producer != stage.name and _path_matches(dep, out_path):
                    edges[stage.name].add(producer)
    return edges


def _select_stages(
    stages: Mapping[str, StageDefinition],
    upstream: Mapping[str, set[str]],
    targets: Iterable[str] | None,
) -> set[str]:
    if targets is None:
        return set(stages)
    selected: set[str] = set()
    pending = list(targets)
    for target in pending:
        if target not in stages:
            raise QuiverPipelineError(
                f"Unknown stage '{target}'. Available stages: {', '.join(stages)}."
            )
    while pending:
        name = pending.pop()
        if name in selected:
            continue
        selected.add(name)
        pending.extend(upstream[name])
    return selected


def _path_matches(dep: str, out_path: str) -> bool:
    return dep == out_path or dep.startswith(out_path.rstrip("/") + "/") or (
        out_path.startswith(dep.rstrip("/") + "/")
    )

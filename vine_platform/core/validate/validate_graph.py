from __future__ import annotations

from collections import Counter, deque

from vine_platform.core.errors import validation_error
from vine_platform.core.model import RefTask, VineGraph


def validate(graph: VineGraph) -> None:
    """Check every structural invariant of a graph.

    Raises VineValidationError on the first violation. Checks run in a fixed
    order so that later checks can rely on earlier ones (e.g. the cycle search
    only follows edges that are known to exist):

      non-empty-graph, unique-ids, missing-dependency, no-cycles, no-islands,
      ref-requires-uri, ref-forbids-attachments
    """

    _check_non_empty(graph)
    _check_unique_ids(graph)
    _check_dependencies_exist(graph)
    _check_no_cycles(graph)
    _check_no_islands(graph)
    _check_refs(graph)


def _check_non_empty(graph: VineGraph) -> None:
    if not graph.tasks or not graph.order:
        raise validation_error("non-empty-graph", "graph must contain at least one task")


def _check_unique_ids(graph: VineGraph) -> None:
    counts = Counter(graph.order)
    dupes = sorted(tid for tid, n in counts.items() if n > 1)
    if dupes:
        raise validation_error(
            "unique-ids",
            f"duplicate task id(s) in order: {', '.join(dupes)}",
            duplicateIds=dupes,
        )

    mismatched = sorted(set(graph.tasks) ^ set(counts))
    if mismatched:
        raise validation_error(
            "unique-ids",
            f"order and tasks disagree on id(s): {', '.join(mismatched)}",
            taskIds=mismatched,
        )

    for key, task in graph.tasks.items():
        if task.id != key:
            raise validation_error(
                "unique-ids",
                f"task stored under {key!r} carries id {task.id!r}",
                taskIds=[key, task.id],
            )


def _check_dependencies_exist(graph: VineGraph) -> None:
    for tid in graph.order:
        for dep in graph.tasks[tid].dependencies:
            if dep not in graph.tasks:
                raise validation_error(
                    "missing-dependency",
                    f"task {tid!r} references unknown dependency {dep!r}",
                    taskId=tid,
                    missingDep=dep,
                )


def _check_no_cycles(graph: VineGraph) -> None:
    # Iterative DFS; `path` mirrors the recursion stack so the cycle can be reported.
    done: set[str] = set()
    on_stack: set[str] = set()

    for start in graph.order:
        if start in done:
            continue
        path: list[str] = [start]
        on_stack.add(start)
        iters = [iter(graph.tasks[start].dependencies)]

        while iters:
            dep = next(iters[-1], None)
            if dep is None:
                node = path.pop()
                on_stack.discard(node)
                done.add(node)
                iters.pop()
                continue
            if dep in on_stack:
                cycle = path[path.index(dep):]
                raise validation_error(
                    "no-cycles",
                    f"cycle detected: {' -> '.join(cycle + [dep])}",
                    cycle=cycle,
                )
            if dep in done:
                continue
            path.append(dep)
            on_stack.add(dep)
            iters.append(iter(graph.tasks[dep].dependencies))


def _check_no_islands(graph: VineGraph) -> None:
    root = graph.order[0]
    visited = {root}
    queue = deque([root])
    while queue:
        current = queue.popleft()
        for dep in graph.tasks[current].dependencies:
            if dep not in visited:
                visited.add(dep)
                queue.append(dep)

    islands = [tid for tid in graph.order if tid not in visited]
    if islands:
        raise validation_error(
            "no-islands",
            f"{len(islands)} task(s) not reachable from root {root!r}: {', '.join(islands)}",
            islandTaskIds=islands,
        )


def _check_refs(graph: VineGraph) -> None:
    for tid in graph.order:
        task = graph.tasks[tid]
        if not isinstance(task, RefTask):
            continue
        if not task.vine or not task.vine.strip():
            raise validation_error(
                "ref-requires-uri",
                f"reference node {tid!r} must have a non-empty vine URI",
                taskId=tid,
            )
        # RefTask has no attachments field; only a hand-built value can carry one.
        if getattr(task, "attachments", ()):
            raise validation_error(
                "ref-forbids-attachments",
                f"reference node {tid!r} must not carry attachments",
                taskId=tid,
            )

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Optional

from vine_platform.core.errors import task_not_found
from vine_platform.core.model import VALID_STATUSES, ConcreteTask, RefTask, Status, Task, VineGraph


@dataclass(frozen=True)
class GraphSummary:
    total: int
    by_status: dict[str, int]
    root_id: str
    root_name: str
    leaf_count: int
    ref_count: int


def get_task(graph: VineGraph, task_id: str) -> Task:
    task = graph.tasks.get(task_id)
    if task is None:
        raise task_not_found(task_id)
    return task


def get_root(graph: VineGraph) -> Task:
    return graph.tasks[graph.order[0]]


def get_dependencies(graph: VineGraph, task_id: str) -> list[Task]:
    """Direct dependencies of `task_id`, in the order they were declared."""
    task = get_task(graph, task_id)
    return [graph.tasks[d] for d in task.dependencies]


def get_dependants(graph: VineGraph, task_id: str) -> list[Task]:
    """Tasks that list `task_id` as a dependency, in graph order."""
    get_task(graph, task_id)
    return [graph.tasks[tid] for tid in graph.order if task_id in graph.tasks[tid].dependencies]


def get_descendants(graph: VineGraph, task_id: str) -> list[Task]:
    """Everything that transitively depends on `task_id`, excluding itself."""
    get_task(graph, task_id)

    dependants: dict[str, list[str]] = {tid: [] for tid in graph.order}
    for tid in graph.order:
        for dep in graph.tasks[tid].dependencies:
            dependants[dep].append(tid)

    seen: set[str] = set()
    queue = deque(dependants[task_id])
    while queue:
        tid = queue.popleft()
        if tid in seen:
            continue
        seen.add(tid)
        queue.extend(dependants[tid])

    seen.discard(task_id)
    return [graph.tasks[tid] for tid in graph.order if tid in seen]


def filter_by_status(graph: VineGraph, status: Status) -> list[ConcreteTask]:
    out: list[ConcreteTask] = []
    for tid in graph.order:
        task = graph.tasks[tid]
        if isinstance(task, ConcreteTask) and task.status == status:
            out.append(task)
    return out


def search_tasks(graph: VineGraph, query: str) -> list[Task]:
    """Case-insensitive substring match over id, short name and description."""
    needle = query.strip().lower()
    if not needle:
        return [graph.tasks[tid] for tid in graph.order]

    hits: list[Task] = []
    for tid in graph.order:
        task = graph.tasks[tid]
        haystack = (task.id, task.short_name, task.description)
        if any(needle in field.lower() for field in haystack):
            hits.append(task)
    return hits


def get_leaves(graph: VineGraph) -> list[Task]:
    return [graph.tasks[tid] for tid in graph.order if not graph.tasks[tid].dependencies]


def get_refs(graph: VineGraph) -> list[RefTask]:
    return [t for t in (graph.tasks[tid] for tid in graph.order) if isinstance(t, RefTask)]


def get_summary(graph: VineGraph) -> GraphSummary:
    by_status = {s: 0 for s in VALID_STATUSES}
    for task in graph.tasks.values():
        if isinstance(task, ConcreteTask):
            by_status[task.status] += 1
    root = get_root(graph)
    return GraphSummary(
        total=len(graph.order),
        by_status=by_status,
        root_id=root.id,
        root_name=root.short_name,
        leaf_count=len(get_leaves(graph)),
        ref_count=len(get_refs(graph)),
    )


def get_annotation(task: Task, key: str) -> Optional[str]:
    """First value of annotation `key`, or None if the key is absent or has no values."""
    values = task.annotations.get(key)
    if not values:
        return None
    return values[0]

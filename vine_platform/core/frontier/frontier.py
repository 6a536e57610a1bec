from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from vine_platform.core.model import VALID_STATUSES, ConcreteTask, RefTask, Status, Task, VineGraph


SATISFIED: frozenset[str] = frozenset({"complete", "reviewing"})
STARTABLE: frozenset[str] = frozenset({"notstarted", "planning"})
CONSUMING: frozenset[str] = frozenset({"started", "reviewing", "complete"})


@dataclass(frozen=True)
class Progress:
    total: int
    complete: int
    percentage: int
    ready_count: int
    by_status: dict[str, int]
    root_id: str
    root_status: Optional[Status]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "complete": self.complete,
            "percentage": self.percentage,
            "readyCount": self.ready_count,
            "byStatus": dict(self.by_status),
            "rootId": self.root_id,
            "rootStatus": self.root_status,
        }


@dataclass(frozen=True)
class Frontier:
    ready: tuple[ConcreteTask, ...]
    completable: tuple[ConcreteTask, ...]
    blocked: tuple[ConcreteTask, ...]
    expandable: tuple[RefTask, ...]
    progress: Progress


def frontier(graph: VineGraph) -> Frontier:
    """Compute which tasks are actionable right now.

    ready        notstarted/planning tasks whose dependencies are all satisfied
    completable  reviewing tasks some dependant has started consuming; the root
                 qualifies once every other task is complete and no refs remain
    blocked      blocked tasks whose dependencies are all satisfied
    expandable   refs whose dependencies are all satisfied

    A dependency is satisfied when it is a concrete task in complete or
    reviewing. Result tuples follow graph order.
    """

    dependants: dict[str, list[str]] = {tid: [] for tid in graph.order}
    for tid in graph.order:
        for dep in graph.tasks[tid].dependencies:
            dependants[dep].append(tid)

    def satisfied(task: Task) -> bool:
        return all(_status(graph.tasks[d]) in SATISFIED for d in task.dependencies)

    root_id = graph.order[0]
    has_refs = any(isinstance(t, RefTask) for t in graph.tasks.values())
    others_complete = all(
        _status(graph.tasks[tid]) == "complete" for tid in graph.order if tid != root_id
    )

    ready: list[ConcreteTask] = []
    completable: list[ConcreteTask] = []
    blocked: list[ConcreteTask] = []
    expandable: list[RefTask] = []
    by_status = {s: 0 for s in VALID_STATUSES}

    for tid in graph.order:
        task = graph.tasks[tid]
        if isinstance(task, RefTask):
            if satisfied(task):
                expandable.append(task)
            continue

        by_status[task.status] += 1
        if task.status in STARTABLE and satisfied(task):
            ready.append(task)
        elif task.status == "blocked" and satisfied(task):
            blocked.append(task)
        elif task.status == "reviewing":
            if tid == root_id:
                if others_complete and not has_refs:
                    completable.append(task)
            elif any(_status(graph.tasks[d]) in CONSUMING for d in dependants[tid]):
                completable.append(task)

    total = len(graph.order)
    complete = by_status["complete"]
    root = graph.tasks[root_id]
    progress = Progress(
        total=total,
        complete=complete,
        percentage=(complete * 100 * 2 + total) // (2 * total),
        ready_count=len(ready),
        by_status=by_status,
        root_id=root_id,
        root_status=root.status if isinstance(root, ConcreteTask) else None,
    )
    return Frontier(
        ready=tuple(ready),
        completable=tuple(completable),
        blocked=tuple(blocked),
        expandable=tuple(expandable),
        progress=progress,
    )


def _status(task: Task) -> Optional[str]:
    return task.status if isinstance(task, ConcreteTask) else None

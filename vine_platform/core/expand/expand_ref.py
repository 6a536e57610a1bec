from __future__ import annotations

import logging
from dataclasses import replace

from vine_platform.core.errors import VineError
from vine_platform.core.model import ConcreteTask, RefTask, Task, VineGraph, build_graph
from vine_platform.core.validate.validate_graph import validate

logger = logging.getLogger(__name__)


def build_id_map(child: VineGraph, ref_id: str, prefix: str) -> dict[str, str]:
    """Map every child id into the parent's namespace.

    The child root takes over the ref's id; other ids become `<prefix>/<id>`,
    or stay as-is when the prefix is empty.
    """
    child_root = child.order[0]
    id_map: dict[str, str] = {}
    for cid in child.order:
        if cid == child_root:
            id_map[cid] = ref_id
        else:
            id_map[cid] = f"{prefix}/{cid}" if prefix else cid
    return id_map


def expand_ref(parent: VineGraph, ref_id: str, child: VineGraph) -> VineGraph:
    """Inline `child` in place of the reference node `ref_id`.

    - The ref becomes a concrete task carrying the child root's name, status,
      description, attachments and annotations. Decisions are the child
      root's followed by the ref's; dependencies are the child root's
      (remapped) followed by the ref's, without duplicates.
    - Other child tasks are inserted right after the ref in `order`, under
      the child's declared `prefix` or, when it declares none, under `ref_id`.
    - The composite graph is validated before it is returned.
    """

    ref = parent.tasks.get(ref_id)
    if ref is None:
        raise VineError(code="E_TASK_NOT_FOUND", message=f"task {ref_id!r} does not exist in the parent graph")
    if not isinstance(ref, RefTask):
        raise VineError(code="E_WRONG_KIND", message=f"task {ref_id!r} is not a reference node")
    if not child.order:
        raise VineError(code="E_EMPTY_CHILD", message="child graph is empty")

    child_root = child.tasks[child.order[0]]
    if not isinstance(child_root, ConcreteTask):
        raise VineError(code="E_WRONG_KIND", message="child graph root must be a concrete task")

    prefix = child.prefix if child.prefix is not None else ref_id
    id_map = build_id_map(child, ref_id, prefix)

    for cid, new_id in id_map.items():
        if cid != child_root.id and new_id in parent.tasks:
            raise VineError(
                code="E_ID_COLLISION",
                message=f"id collision: {new_id!r} already exists in the parent graph",
            )

    deps = [id_map.get(d, d) for d in child_root.dependencies] + list(ref.dependencies)
    expanded_root = ConcreteTask(
        id=ref_id,
        short_name=child_root.short_name,
        status=child_root.status,
        description=child_root.description,
        dependencies=tuple(dict.fromkeys(deps)),
        decisions=child_root.decisions + ref.decisions,
        attachments=child_root.attachments,
        annotations=child_root.annotations,
    )

    inlined: list[Task] = []
    for cid in child.order[1:]:
        task = child.tasks[cid]
        inlined.append(
            replace(
                task,
                id=id_map[cid],
                dependencies=tuple(id_map.get(d, d) for d in task.dependencies),
            )
        )

    tasks: dict[str, Task] = dict(parent.tasks)
    tasks[ref_id] = expanded_root
    for task in inlined:
        tasks[task.id] = task

    order: list[str] = []
    for tid in parent.order:
        order.append(tid)
        if tid == ref_id:
            order.extend(t.id for t in inlined)

    composite = build_graph(parent, tasks, order)
    validate(composite)
    logger.debug("expanded ref %r with %d inlined task(s) under prefix %r", ref_id, len(inlined), prefix)
    return composite

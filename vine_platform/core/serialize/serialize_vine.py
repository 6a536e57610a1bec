from __future__ import annotations

from typing import Mapping

from vine_platform.core.errors import VineError
from vine_platform.core.model import DEFAULT_DELIMITER, ConcreteTask, RefTask, Task, VineGraph


def serialize(graph: VineGraph) -> str:
    """Render a graph as canonical VINE text.

    Layout: magic line, metadata (alphabetical, only non-default values), the
    `---` terminator, then one block per id in `order` joined by the graph's
    delimiter. Block body order is description, decisions, dependencies,
    attachments. Output always ends with a single newline.
    """

    head = [f"vine {graph.version}"]
    if graph.delimiter != DEFAULT_DELIMITER:
        head.append(f"delimiter: {graph.delimiter}")
    if graph.prefix is not None:
        head.append(f"prefix: {graph.prefix}")
    if graph.title is not None:
        head.append(f"title: {graph.title}")
    head.append("---")

    blocks: list[str] = []
    for tid in graph.order:
        task = graph.tasks.get(tid)
        if task is None:
            raise VineError(
                code="E_ORDER_MISMATCH",
                message=f"task {tid!r} is listed in order but missing from tasks",
            )
        blocks.append("\n".join(_block_lines(task)))

    return "\n".join(head) + "\n" + f"\n{graph.delimiter}\n".join(blocks) + "\n"


def _block_lines(task: Task) -> list[str]:
    if isinstance(task, RefTask):
        header = f"ref [{task.id}] {task.short_name} ({task.vine})"
    else:
        header = f"[{task.id}] {task.short_name} ({task.status})"

    lines = [header + _annotation_suffix(task.annotations)]
    if task.description:
        lines.extend(task.description.split("\n"))
    lines.extend(f"> {d}" for d in task.decisions)
    lines.extend(f"-> {d}" for d in task.dependencies)
    if isinstance(task, ConcreteTask):
        lines.extend(f"@{a.cls} {a.mime} {a.uri}" for a in task.attachments)
    return lines


def _annotation_suffix(annotations: Mapping[str, tuple[str, ...]]) -> str:
    return "".join(f" @{key}({','.join(annotations[key])})" for key in sorted(annotations))

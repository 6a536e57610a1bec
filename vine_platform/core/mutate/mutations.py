from __future__ import annotations

from dataclasses import replace
from types import MappingProxyType
from typing import Mapping, Optional, Sequence

from vine_platform.core.errors import VineError, task_not_found
from vine_platform.core.model import (
    ATTACHMENT_CLASSES,
    DEFAULT_DELIMITER,
    DEFAULT_VERSION,
    Attachment,
    ANNOTATION_KEY_RE,
    ConcreteTask,
    RefTask,
    Status,
    Task,
    VineGraph,
    build_graph,
    freeze_annotations,
    is_valid_status,
    is_valid_task_id,
    is_valid_version,
    normalize_description,
)
from vine_platform.core.validate.validate_graph import validate


# Every primitive is pure: it returns a new graph and leaves `graph` untouched.
# `validate_result=False` is used by apply_batch, which validates once at the end.

# Description lines starting with these would be read back as edges, decisions or attachments.
STRUCTURAL_PREFIXES: tuple[str, ...] = ("-> ", "> ") + tuple(f"@{c} " for c in ATTACHMENT_CLASSES)


def new_graph(
    root_id: str,
    short_name: str,
    *,
    status: Status = "notstarted",
    description: str = "",
    title: Optional[str] = None,
    version: str = DEFAULT_VERSION,
) -> VineGraph:
    """Bootstrap a one-task graph."""
    _require_valid_id(root_id)
    _require_valid_status(status)
    if not is_valid_version(version):
        raise VineError(code="E_INVALID_VERSION", message=f"version must be dotted digits like 1.2.0, got {version!r}")
    if title is not None:
        if "\n" in title or "\r" in title:
            raise VineError(code="E_INVALID_FIELD", message="title must be a single line")
        title = title.strip()
    root = ConcreteTask(
        id=root_id,
        short_name=_clean_name(short_name),
        status=status,
        description=_clean_description(DEFAULT_DELIMITER, root_id, description),
    )
    graph = VineGraph(
        version=version,
        title=title,
        tasks=MappingProxyType({root_id: root}),
        order=(root_id,),
    )
    validate(graph)
    return graph


def add_task(graph: VineGraph, task: ConcreteTask, *, validate_result: bool = True) -> VineGraph:
    if not isinstance(task, ConcreteTask):
        raise VineError(code="E_WRONG_KIND", message=f"add_task expects a concrete task, got {task.kind!r}")
    _require_valid_status(task.status)
    _require_valid_attachments(task.id, task.attachments)
    return _insert(graph, task, validate_result)


def add_ref(graph: VineGraph, ref: RefTask, *, validate_result: bool = True) -> VineGraph:
    if not isinstance(ref, RefTask):
        raise VineError(code="E_WRONG_KIND", message=f"add_ref expects a reference node, got {ref.kind!r}")
    _require_uri(ref.id, ref.vine)
    return _insert(graph, ref, validate_result)


def remove_task(graph: VineGraph, task_id: str, *, validate_result: bool = True) -> VineGraph:
    if task_id not in graph.tasks:
        raise task_not_found(task_id)
    if task_id == graph.root_id:
        raise VineError(code="E_REMOVE_ROOT", message="cannot remove the root task")

    tasks: dict[str, Task] = {}
    for tid, task in graph.tasks.items():
        if tid == task_id:
            continue
        if task_id in task.dependencies:
            task = replace(task, dependencies=tuple(d for d in task.dependencies if d != task_id))
        tasks[tid] = task
    order = [tid for tid in graph.order if tid != task_id]
    return _finish(graph, tasks, order, validate_result)


def set_status(graph: VineGraph, task_id: str, status: Status, *, validate_result: bool = True) -> VineGraph:
    task = _get_concrete(graph, task_id, "set status on")
    _require_valid_status(status)
    return _replace_task(graph, replace(task, status=status), validate_result)


def claim(graph: VineGraph, task_id: str, *, validate_result: bool = True) -> VineGraph:
    """Pick up a task: same as set_status(task_id, "started")."""
    _get_concrete(graph, task_id, "claim")
    return set_status(graph, task_id, "started", validate_result=validate_result)


def update_task(
    graph: VineGraph,
    task_id: str,
    *,
    short_name: Optional[str] = None,
    description: Optional[str] = None,
    decisions: Optional[Sequence[str]] = None,
    attachments: Optional[Sequence[Attachment]] = None,
    annotations: Optional[Mapping[str, Sequence[str]]] = None,
    validate_result: bool = True,
) -> VineGraph:
    """Replace any subset of the editable fields. Ids, status and edges have their own primitives."""
    task = _get(graph, task_id)
    changes: dict[str, object] = {}

    if short_name is not None:
        changes["short_name"] = _clean_name(short_name)
    if description is not None:
        changes["description"] = _clean_description(graph.delimiter, task_id, description)
    if decisions is not None:
        changes["decisions"] = _clean_decisions(decisions)
    if annotations is not None:
        _require_valid_annotations(task_id, annotations)
        changes["annotations"] = freeze_annotations(annotations)
    if attachments is not None:
        if isinstance(task, RefTask):
            raise VineError(
                code="E_REF_ATTACHMENT",
                message=f"cannot set attachments on reference node {task_id!r}",
            )
        _require_valid_attachments(task_id, attachments)
        changes["attachments"] = tuple(attachments)

    if not changes:
        return graph
    return _replace_task(graph, replace(task, **changes), validate_result)


def add_dependency(graph: VineGraph, task_id: str, dep_id: str, *, validate_result: bool = True) -> VineGraph:
    task = _get(graph, task_id)
    if dep_id not in graph.tasks:
        raise task_not_found(dep_id)
    if dep_id in task.dependencies:
        raise VineError(
            code="E_DUPLICATE_EDGE",
            message=f"task {task_id!r} already depends on {dep_id!r}",
        )
    updated = replace(task, dependencies=task.dependencies + (dep_id,))
    return _replace_task(graph, updated, validate_result)


def remove_dependency(graph: VineGraph, task_id: str, dep_id: str, *, validate_result: bool = True) -> VineGraph:
    task = _get(graph, task_id)
    if dep_id not in graph.tasks:
        raise task_not_found(dep_id)
    if dep_id not in task.dependencies:
        raise VineError(
            code="E_MISSING_EDGE",
            message=f"task {task_id!r} does not depend on {dep_id!r}",
        )
    updated = replace(task, dependencies=tuple(d for d in task.dependencies if d != dep_id))
    return _replace_task(graph, updated, validate_result)


def update_ref_uri(graph: VineGraph, task_id: str, uri: str, *, validate_result: bool = True) -> VineGraph:
    task = _get(graph, task_id)
    if not isinstance(task, RefTask):
        raise VineError(code="E_WRONG_KIND", message=f"task {task_id!r} is not a reference node")
    _require_uri(task_id, uri)
    return _replace_task(graph, replace(task, vine=uri), validate_result)


def _get(graph: VineGraph, task_id: str) -> Task:
    task = graph.tasks.get(task_id)
    if task is None:
        raise task_not_found(task_id)
    return task


def _get_concrete(graph: VineGraph, task_id: str, action: str) -> ConcreteTask:
    task = _get(graph, task_id)
    if isinstance(task, RefTask):
        raise VineError(code="E_WRONG_KIND", message=f"cannot {action} reference node {task_id!r}")
    return task


def _insert(graph: VineGraph, task: Task, validate_result: bool) -> VineGraph:
    _require_valid_id(task.id)
    task = _normalized(graph, task)
    _require_valid_annotations(task.id, task.annotations)
    if task.id in graph.tasks:
        raise VineError(code="E_DUPLICATE_ID", message=f"task {task.id!r} already exists")
    tasks = dict(graph.tasks)
    tasks[task.id] = task
    return _finish(graph, tasks, graph.order + (task.id,), validate_result)


def _replace_task(graph: VineGraph, task: Task, validate_result: bool) -> VineGraph:
    tasks = dict(graph.tasks)
    tasks[task.id] = task
    return _finish(graph, tasks, graph.order, validate_result)


def _finish(
    graph: VineGraph,
    tasks: Mapping[str, Task],
    order: Sequence[str],
    validate_result: bool,
) -> VineGraph:
    nxt = build_graph(graph, tasks, order)
    if validate_result:
        validate(nxt)
    return nxt


def _normalized(graph: VineGraph, task: Task) -> Task:
    """Bring free-text fields into the shape the text form can carry."""
    cleaned = replace(
        task,
        short_name=_clean_name(task.short_name),
        dependencies=tuple(task.dependencies),
        description=_clean_description(graph.delimiter, task.id, task.description),
        decisions=_clean_decisions(task.decisions),
        annotations=freeze_annotations(task.annotations),
    )
    return task if cleaned == task else cleaned


def _clean_name(name: str) -> str:
    if not name.strip() or "\n" in name:
        raise VineError(code="E_INVALID_FIELD", message="short name must be a non-empty single line")
    return name.strip()


def _clean_description(delimiter: str, task_id: str, text: str) -> str:
    """Normalize a description and reject lines that would read back as structure."""
    text = normalize_description(text)
    for line in text.split("\n"):
        if line in (delimiter, "---") or line.startswith(STRUCTURAL_PREFIXES):
            raise VineError(
                code="E_INVALID_FIELD",
                message=f"description of {task_id!r} has a line that would parse as structure: {line!r}",
            )
    return text


def _clean_decisions(decisions: Sequence[str]) -> tuple[str, ...]:
    if any("\n" in d for d in decisions):
        raise VineError(code="E_INVALID_FIELD", message="decisions must be single lines")
    return tuple(d.strip() for d in decisions)


def _require_valid_annotations(task_id: str, annotations: Mapping[str, Sequence[str]]) -> None:
    for key, values in annotations.items():
        if not ANNOTATION_KEY_RE.fullmatch(key):
            raise VineError(code="E_INVALID_ANNOTATION", message=f"invalid annotation key {key!r} on {task_id!r}")
        if list(values) == [""]:
            raise VineError(
                code="E_INVALID_ANNOTATION",
                message=f"annotation @{key} on {task_id!r}: use an empty list, not an empty value",
            )
        for v in values:
            if v != v.strip() or any(c in v for c in ",()\n"):
                raise VineError(
                    code="E_INVALID_ANNOTATION",
                    message=f"annotation @{key} on {task_id!r} has an unrepresentable value {v!r}",
                )


def _require_valid_id(task_id: str) -> None:
    if not isinstance(task_id, str) or not is_valid_task_id(task_id):
        raise VineError(
            code="E_INVALID_ID",
            message=f"invalid task id {task_id!r} (segments of letters, digits and hyphens joined by '/')",
        )


def _require_valid_status(status: str) -> None:
    if not is_valid_status(status):
        raise VineError(code="E_INVALID_STATUS", message=f"invalid status {status!r}")


def _require_uri(task_id: str, uri: str) -> None:
    if not isinstance(uri, str) or not uri.strip():
        raise VineError(code="E_EMPTY_URI", message=f"reference node {task_id!r} needs a non-empty vine URI")
    if any(c.isspace() for c in uri):
        raise VineError(code="E_INVALID_URI", message=f"vine URI for {task_id!r} must not contain whitespace")


def _require_valid_attachments(task_id: str, attachments: Sequence[Attachment]) -> None:
    """An attachment line is `@<cls> <mime> <uri>`: the mime is one token, the uri the stripped rest."""
    seen: set[str] = set()
    for att in attachments:
        if att.cls not in ATTACHMENT_CLASSES:
            raise VineError(
                code="E_INVALID_FIELD",
                message=f"attachment class {att.cls!r} on {task_id!r} is not one of {', '.join(ATTACHMENT_CLASSES)}",
            )
        if not att.mime or any(c.isspace() for c in att.mime):
            raise VineError(
                code="E_INVALID_FIELD",
                message=f"attachment mime on {task_id!r} must be a single non-empty token, got {att.mime!r}",
            )
        if not att.uri.strip() or att.uri != att.uri.strip() or "\n" in att.uri or "\r" in att.uri:
            raise VineError(
                code="E_INVALID_FIELD",
                message=f"attachment uri on {task_id!r} must be a non-empty single line without surrounding blanks, got {att.uri!r}",
            )
        if att.uri in seen:
            raise VineError(
                code="E_DUPLICATE_ATTACHMENT",
                message=f"task {task_id!r} has more than one attachment with uri {att.uri!r}",
            )
        seen.add(att.uri)

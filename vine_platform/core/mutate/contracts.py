from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, NoReturn, Optional, Union, cast

from vine_platform.core.errors import VineError
from vine_platform.core.model import (
    ATTACHMENT_CLASSES,
    EMPTY_ANNOTATIONS,
    VALID_STATUSES,
    Attachment,
    AttachmentClass,
    Status,
    freeze_annotations,
    is_valid_status,
)


# Operation names only a host (with access to other files) can carry out.
HOST_ONLY_OPS: tuple[str, ...] = ("create", "extract_to_ref")


@dataclass(frozen=True)
class AddTaskOp:
    id: str
    name: str
    status: Status = "notstarted"
    description: str = ""
    depends_on: tuple[str, ...] = ()
    decisions: tuple[str, ...] = ()
    attachments: tuple[Attachment, ...] = ()
    annotations: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: EMPTY_ANNOTATIONS)
    op: Literal["add_task"] = field(default="add_task", init=False)


@dataclass(frozen=True)
class RemoveTaskOp:
    id: str
    op: Literal["remove_task"] = field(default="remove_task", init=False)


@dataclass(frozen=True)
class SetStatusOp:
    id: str
    status: Status
    op: Literal["set_status"] = field(default="set_status", init=False)


@dataclass(frozen=True)
class ClaimOp:
    id: str
    op: Literal["claim"] = field(default="claim", init=False)


@dataclass(frozen=True)
class UpdateOp:
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    decisions: Optional[tuple[str, ...]] = None
    attachments: Optional[tuple[Attachment, ...]] = None
    annotations: Optional[Mapping[str, tuple[str, ...]]] = None
    op: Literal["update"] = field(default="update", init=False)


@dataclass(frozen=True)
class AddDepOp:
    task_id: str
    dep_id: str
    op: Literal["add_dep"] = field(default="add_dep", init=False)


@dataclass(frozen=True)
class RemoveDepOp:
    task_id: str
    dep_id: str
    op: Literal["remove_dep"] = field(default="remove_dep", init=False)


@dataclass(frozen=True)
class AddRefOp:
    id: str
    name: str
    vine: str
    description: str = ""
    depends_on: tuple[str, ...] = ()
    decisions: tuple[str, ...] = ()
    annotations: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: EMPTY_ANNOTATIONS)
    op: Literal["add_ref"] = field(default="add_ref", init=False)


@dataclass(frozen=True)
class UpdateRefUriOp:
    id: str
    uri: str
    op: Literal["update_ref_uri"] = field(default="update_ref_uri", init=False)


@dataclass(frozen=True)
class HostOnlyOp:
    """`create` / `extract_to_ref`: parsed so they can be routed, never applied by the engine."""

    op: Literal["create", "extract_to_ref"]
    fields: dict[str, Any] = field(default_factory=dict)


Operation = Union[
    AddTaskOp,
    RemoveTaskOp,
    SetStatusOp,
    ClaimOp,
    UpdateOp,
    AddDepOp,
    RemoveDepOp,
    AddRefOp,
    UpdateRefUriOp,
    HostOnlyOp,
]


def parse_operations(raw: Any) -> list[Operation]:
    """Convert a list of plain dicts (the wire shape) into typed operations.

    Field names follow the tool surface external callers already use:
    id, name, status, description, dependsOn, decisions, attachments,
    annotations, taskId, depId, vine, uri.
    """
    if not isinstance(raw, list):
        raise VineError(code="E_INVALID_OPERATION", message="operations must be a list")
    return [parse_operation(item, i) for i, item in enumerate(raw)]


def parse_operation(obj: Any, index: int = 0) -> Operation:
    r = _Reader(obj, index)
    op = r.op

    if op == "add_task":
        status = r.opt_str("status") or "notstarted"
        if not is_valid_status(status):
            r.fail(f"invalid status {status!r} (valid: {', '.join(VALID_STATUSES)})")
        return AddTaskOp(
            id=r.req_str("id"),
            name=r.req_str("name"),
            status=cast(Status, status),
            description=r.opt_str("description") or "",
            depends_on=r.opt_str_list("dependsOn") or (),
            decisions=r.opt_str_list("decisions") or (),
            attachments=r.opt_attachments("attachments") or (),
            annotations=freeze_annotations(r.opt_annotations("annotations")),
        )
    if op == "remove_task":
        return RemoveTaskOp(id=r.req_str("id"))
    if op == "set_status":
        status = r.req_str("status")
        if not is_valid_status(status):
            r.fail(f"invalid status {status!r} (valid: {', '.join(VALID_STATUSES)})")
        return SetStatusOp(id=r.req_str("id"), status=cast(Status, status))
    if op == "claim":
        return ClaimOp(id=r.req_str("id"))
    if op == "update":
        annotations = r.opt_annotations("annotations")
        return UpdateOp(
            id=r.req_str("id"),
            name=r.opt_str("name"),
            description=r.opt_str("description"),
            decisions=r.opt_str_list("decisions"),
            attachments=r.opt_attachments("attachments"),
            annotations=None if annotations is None else freeze_annotations(annotations),
        )
    if op in ("add_dep", "remove_dep"):
        cls = AddDepOp if op == "add_dep" else RemoveDepOp
        return cls(task_id=r.req_str("taskId"), dep_id=r.req_str("depId"))
    if op == "add_ref":
        return AddRefOp(
            id=r.req_str("id"),
            name=r.req_str("name"),
            vine=r.req_str("vine"),
            description=r.opt_str("description") or "",
            depends_on=r.opt_str_list("dependsOn") or (),
            decisions=r.opt_str_list("decisions") or (),
            annotations=freeze_annotations(r.opt_annotations("annotations")),
        )
    if op == "update_ref_uri":
        return UpdateRefUriOp(id=r.req_str("id"), uri=r.req_str("uri"))
    if op in HOST_ONLY_OPS:
        fields = {k: v for k, v in r.obj.items() if k != "op"}
        return HostOnlyOp(op=cast(Literal["create", "extract_to_ref"], op), fields=fields)

    r.fail(f"unknown op {op!r}")


def describe_operation(op: Operation) -> str:
    """One-line human summary of an operation."""
    if isinstance(op, AddTaskOp):
        return f'added task "{op.id}"'
    if isinstance(op, RemoveTaskOp):
        return f'removed task "{op.id}"'
    if isinstance(op, SetStatusOp):
        return f'set "{op.id}" -> {op.status}'
    if isinstance(op, ClaimOp):
        return f'claimed "{op.id}"'
    if isinstance(op, UpdateOp):
        return f'updated "{op.id}"'
    if isinstance(op, AddDepOp):
        return f"added dep {op.task_id} -> {op.dep_id}"
    if isinstance(op, RemoveDepOp):
        return f"removed dep {op.task_id} -> {op.dep_id}"
    if isinstance(op, AddRefOp):
        return f'added ref "{op.id}"'
    if isinstance(op, UpdateRefUriOp):
        return f'updated ref URI for "{op.id}"'
    return f"{op.op} (host-only)"


class _Reader:
    def __init__(self, obj: Any, index: int) -> None:
        self.index = index
        if not isinstance(obj, dict):
            self.fail("operation must be an object")
        self.obj: dict[str, Any] = obj
        op = obj.get("op")
        if not isinstance(op, str) or not op:
            self.fail('missing "op" field')
        self.op: str = op

    def fail(self, message: str) -> NoReturn:
        raise VineError(code="E_INVALID_OPERATION", message=f"operation {self.index}: {message}")

    def req_str(self, key: str) -> str:
        v = self.obj.get(key)
        if not isinstance(v, str) or not v:
            self.fail(f'{self.op} requires a non-empty string "{key}"')
        return v

    def opt_str(self, key: str) -> Optional[str]:
        v = self.obj.get(key)
        if v is not None and not isinstance(v, str):
            self.fail(f'"{key}" must be a string')
        return v

    def opt_str_list(self, key: str) -> Optional[tuple[str, ...]]:
        v = self.obj.get(key)
        if v is None:
            return None
        if not isinstance(v, list) or any(not isinstance(x, str) for x in v):
            self.fail(f'"{key}" must be a list of strings')
        return tuple(v)

    def opt_attachments(self, key: str) -> Optional[tuple[Attachment, ...]]:
        v = self.obj.get(key)
        if v is None:
            return None
        if not isinstance(v, list):
            self.fail(f'"{key}" must be a list')
        out: list[Attachment] = []
        for item in v:
            if not isinstance(item, dict):
                self.fail(f'each "{key}" item must be an object')
            cls, mime, uri = item.get("class"), item.get("mime"), item.get("uri")
            if cls not in ATTACHMENT_CLASSES:
                self.fail(f"attachment class must be one of {', '.join(ATTACHMENT_CLASSES)}")
            if not isinstance(mime, str) or not mime or not isinstance(uri, str) or not uri:
                self.fail("attachments need non-empty mime and uri")
            out.append(Attachment(cls=cast(AttachmentClass, cls), mime=mime, uri=uri))
        return tuple(out)

    def opt_annotations(self, key: str) -> Optional[dict[str, list[str]]]:
        v = self.obj.get(key)
        if v is None:
            return None
        if not isinstance(v, dict):
            self.fail(f'"{key}" must be a mapping of key -> list of strings')
        out: dict[str, list[str]] = {}
        for k, vals in v.items():
            if not isinstance(k, str) or not k:
                self.fail("annotation keys must be non-empty strings")
            if isinstance(vals, str):
                vals = [vals]
            if not isinstance(vals, list) or any(not isinstance(x, str) for x in vals):
                self.fail(f"annotation {k!r} values must be strings")
            out[k] = list(vals)
        return out

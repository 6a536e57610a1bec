from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Literal, Mapping, Optional, Sequence, Union


Status = Literal["notstarted", "planning", "started", "reviewing", "blocked", "complete"]
AttachmentClass = Literal["artifact", "guidance", "file"]

VALID_STATUSES: tuple[str, ...] = (
    "notstarted",
    "planning",
    "started",
    "reviewing",
    "blocked",
    "complete",
)
ATTACHMENT_CLASSES: tuple[str, ...] = ("artifact", "guidance", "file")

DEFAULT_DELIMITER = "---"
DEFAULT_VERSION = "1.2.0"

VERSION_PATTERN = r"\d+(?:\.\d+)*"
VERSION_RE = re.compile(VERSION_PATTERN)
TASK_ID_PATTERN = r"[a-zA-Z0-9-]+(?:/[a-zA-Z0-9-]+)*"
TASK_ID_RE = re.compile(TASK_ID_PATTERN)
ANNOTATION_KEY_RE = re.compile(r"[a-zA-Z][a-zA-Z0-9]*")

# Shared by every task that carries no annotations.
EMPTY_ANNOTATIONS: Mapping[str, tuple[str, ...]] = MappingProxyType({})


def is_valid_status(value: str) -> bool:
    return value in VALID_STATUSES


def is_valid_task_id(value: str) -> bool:
    return TASK_ID_RE.fullmatch(value) is not None


def is_valid_version(value: str) -> bool:
    return VERSION_RE.fullmatch(value) is not None


def normalize_description(text: str) -> str:
    """Drop trailing blank lines; the text form cannot carry them."""
    lines = text.split("\n")
    while lines and not lines[-1].strip():
        lines.pop()
    return "\n".join(lines)


def freeze_annotations(
    annotations: Optional[Mapping[str, Sequence[str]]],
) -> Mapping[str, tuple[str, ...]]:
    if not annotations:
        return EMPTY_ANNOTATIONS
    return MappingProxyType({k: tuple(v) for k, v in annotations.items()})


@dataclass(frozen=True)
class Attachment:
    cls: AttachmentClass
    mime: str
    uri: str


@dataclass(frozen=True)
class ConcreteTask:
    id: str
    short_name: str
    status: Status = "notstarted"
    description: str = ""
    dependencies: tuple[str, ...] = ()
    decisions: tuple[str, ...] = ()
    attachments: tuple[Attachment, ...] = ()
    annotations: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: EMPTY_ANNOTATIONS)

    kind: Literal["task"] = field(default="task", init=False)


@dataclass(frozen=True)
class RefTask:
    id: str
    short_name: str
    vine: str
    description: str = ""
    dependencies: tuple[str, ...] = ()
    decisions: tuple[str, ...] = ()
    annotations: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: EMPTY_ANNOTATIONS)

    kind: Literal["ref"] = field(default="ref", init=False)


Task = Union[ConcreteTask, RefTask]


@dataclass(frozen=True)
class VineGraph:
    version: str
    tasks: Mapping[str, Task]
    order: tuple[str, ...]  # order[0] is the root
    title: Optional[str] = None
    delimiter: str = DEFAULT_DELIMITER
    prefix: Optional[str] = None

    @property
    def root_id(self) -> str:
        return self.order[0]


def build_graph(
    source: VineGraph,
    tasks: Mapping[str, Task],
    order: Sequence[str],
) -> VineGraph:
    """Return a graph with `source`'s metadata and the given tasks/order.

    `tasks` is wrapped read-only; the Task values themselves are shared.
    """
    return VineGraph(
        version=source.version,
        title=source.title,
        delimiter=source.delimiter,
        prefix=source.prefix,
        tasks=MappingProxyType(dict(tasks)),
        order=tuple(order),
    )

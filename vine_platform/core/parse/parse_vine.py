from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Optional, cast

from vine_platform.core.errors import VineParseError, validation_error
from vine_platform.core.model import (
    ATTACHMENT_CLASSES,
    DEFAULT_DELIMITER,
    TASK_ID_PATTERN,
    VERSION_PATTERN,
    Attachment,
    AttachmentClass,
    ConcreteTask,
    RefTask,
    Status,
    Task,
    VineGraph,
    freeze_annotations,
    normalize_description,
)
from vine_platform.core.validate.validate_graph import validate

logger = logging.getLogger(__name__)


MAGIC_RE = re.compile(rf"^vine\s+({VERSION_PATTERN})$")
PREAMBLE_TERMINATOR = "---"
METADATA_KEYS = ("title", "prefix", "delimiter")

_ANNOTATIONS = r"((?:\s+@[a-zA-Z][a-zA-Z0-9]*\([^)]*\))*)"
HEADER_RE = re.compile(
    rf"^\[({TASK_ID_PATTERN})\]\s+(.+?)\s+"
    r"\((notstarted|planning|started|reviewing|blocked|complete)\)"
    rf"{_ANNOTATIONS}$"
)
REF_HEADER_RE = re.compile(rf"^ref\s+\[({TASK_ID_PATTERN})\]\s+(.+?)\s+\((\S+)\){_ANNOTATIONS}$")
ANNOTATION_RE = re.compile(r"@([a-zA-Z][a-zA-Z0-9]*)\(([^)]*)\)")


@dataclass(frozen=True)
class _Preamble:
    version: str
    title: Optional[str]
    prefix: Optional[str]
    delimiter: str
    body_start: int  # index into lines


@dataclass(frozen=True)
class _RawBlock:
    start_line: int  # 1-based
    lines: list[str]


def parse(text: str) -> VineGraph:
    """Parse VINE text into a validated VineGraph.

    Raises VineParseError on malformed syntax and VineValidationError when the
    well-formed result breaks a structural invariant.
    """

    lines = re.split(r"\r?\n", text)
    if lines and lines[-1] == "":
        lines.pop()

    preamble = _parse_preamble(lines)
    blocks = _split_blocks(lines, preamble.body_start, preamble.delimiter)
    if not blocks:
        raise VineParseError(
            code="E_EMPTY_BODY",
            message="no task blocks found after the preamble",
            line=preamble.body_start + 1,
        )

    tasks: dict[str, Task] = {}
    order: list[str] = []
    for block in blocks:
        task = _parse_block(block)
        if task.id in tasks:
            raise validation_error(
                "unique-ids",
                f"duplicate task id {task.id!r} (line {block.start_line})",
                duplicateIds=[task.id],
            )
        tasks[task.id] = task
        order.append(task.id)

    graph = VineGraph(
        version=preamble.version,
        title=preamble.title,
        delimiter=preamble.delimiter,
        prefix=preamble.prefix,
        tasks=MappingProxyType(tasks),
        order=tuple(order),
    )
    validate(graph)
    logger.debug("parsed vine %s graph with %d task(s)", graph.version, len(order))
    return graph


def _parse_preamble(lines: list[str]) -> _Preamble:
    if not lines:
        raise VineParseError(code="E_MAGIC_LINE", message="empty input: missing magic line", line=1)
    m = MAGIC_RE.match(lines[0])
    if not m:
        raise VineParseError(
            code="E_MAGIC_LINE",
            message=f'expected "vine <version>", got {lines[0]!r}',
            line=1,
        )

    meta: dict[str, str] = {}
    meta_lines: dict[str, int] = {}
    for i in range(1, len(lines)):
        line = lines[i]
        if line == PREAMBLE_TERMINATOR:
            delimiter = meta.get("delimiter", DEFAULT_DELIMITER)
            if not delimiter:
                raise VineParseError(
                    code="E_INVALID_METADATA",
                    message="delimiter must not be empty",
                    line=meta_lines.get("delimiter", i + 1),
                )
            return _Preamble(
                version=m.group(1),
                title=meta.get("title"),
                prefix=meta.get("prefix"),
                delimiter=delimiter,
                body_start=i + 1,
            )

        key, sep, value = line.partition(":")
        if not sep:
            # Unknown, non key/value lines are ignored.
            continue
        key = key.strip().lower()
        if key not in METADATA_KEYS:
            continue
        if key in meta:
            raise VineParseError(
                code="E_DUPLICATE_METADATA",
                message=f"metadata key {key!r} given more than once",
                line=i + 1,
            )
        meta[key] = value.strip()
        meta_lines[key] = i + 1

    raise VineParseError(
        code="E_MISSING_TERMINATOR",
        message=f'missing preamble terminator "{PREAMBLE_TERMINATOR}"',
        line=len(lines),
    )


def _split_blocks(lines: list[str], body_start: int, delimiter: str) -> list[_RawBlock]:
    blocks: list[_RawBlock] = []
    current: list[str] = []
    start_line = body_start + 1

    for i in range(body_start, len(lines)):
        line = lines[i]
        if line == delimiter:
            if any(x.strip() for x in current):
                blocks.append(_RawBlock(start_line=start_line, lines=current))
            current = []
            start_line = i + 2
            continue
        current.append(line)

    if any(x.strip() for x in current):
        blocks.append(_RawBlock(start_line=start_line, lines=current))
    return blocks


def _parse_annotations(raw: str, line_no: int) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {}
    for m in ANNOTATION_RE.finditer(raw):
        key, body = m.group(1), m.group(2)
        if key in out:
            raise VineParseError(
                code="E_DUPLICATE_ANNOTATION",
                message=f"annotation @{key} given more than once",
                line=line_no,
            )
        out[key] = [v.strip() for v in body.split(",")] if body.strip() else []
    return out


def _parse_header(line: str, line_no: int) -> tuple[str, str, Optional[str], Optional[str], dict[str, list[str]]]:
    """Return (id, short_name, status, vine, annotations). Exactly one of status/vine is set."""
    header = line.strip()
    if header.startswith("ref "):
        m = REF_HEADER_RE.match(header)
        if not m:
            raise VineParseError(
                code="E_INVALID_HEADER",
                message=f"invalid reference header: {header!r}",
                line=line_no,
            )
        return m.group(1), m.group(2), None, m.group(3), _parse_annotations(m.group(4), line_no)

    m = HEADER_RE.match(header)
    if not m:
        raise VineParseError(
            code="E_INVALID_HEADER",
            message=f"invalid task header: {header!r}",
            line=line_no,
        )
    return m.group(1), m.group(2), m.group(3), None, _parse_annotations(m.group(4), line_no)


def _parse_attachment(cls: str, remainder: str, line_no: int) -> Attachment:
    mime, _, uri = remainder.strip().partition(" ")
    uri = uri.strip()
    if not mime or not uri:
        raise VineParseError(
            code="E_INVALID_ATTACHMENT",
            message=f'expected "@{cls} <mime> <uri>", got "@{cls} {remainder}"',
            line=line_no,
        )
    return Attachment(cls=cast(AttachmentClass, cls), mime=mime, uri=uri)


def _parse_block(block: _RawBlock) -> Task:
    header_idx = next(i for i, line in enumerate(block.lines) if line.strip())
    header_line_no = block.start_line + header_idx
    task_id, short_name, status, vine, annotations = _parse_header(block.lines[header_idx], header_line_no)

    dependencies: list[str] = []
    decisions: list[str] = []
    description: list[str] = []
    attachments: list[Attachment] = []

    for offset, line in enumerate(block.lines[header_idx + 1 :], start=header_idx + 1):
        line_no = block.start_line + offset

        if line.startswith("-> "):
            dependencies.append(line[3:].strip())
            continue
        if line.startswith("> "):
            decisions.append(line[2:].strip())
            continue

        cls = next((c for c in ATTACHMENT_CLASSES if line.startswith(f"@{c} ")), None)
        if cls is None:
            description.append(line)
            continue

        if vine is not None:
            raise VineParseError(
                code="E_REF_ATTACHMENT",
                message=f"attachments are not allowed on reference node {task_id!r}",
                line=line_no,
            )
        att = _parse_attachment(cls, line[len(cls) + 2 :], line_no)
        if any(a.uri == att.uri for a in attachments):
            raise VineParseError(
                code="E_DUPLICATE_ATTACHMENT",
                message=f"task {task_id!r} already has an attachment with uri {att.uri!r}",
                line=line_no,
            )
        attachments.append(att)

    if vine is not None:
        return RefTask(
            id=task_id,
            short_name=short_name,
            vine=vine,
            description=normalize_description("\n".join(description)),
            dependencies=tuple(dependencies),
            decisions=tuple(decisions),
            annotations=freeze_annotations(annotations),
        )
    return ConcreteTask(
        id=task_id,
        short_name=short_name,
        status=cast(Status, status),
        description=normalize_description("\n".join(description)),
        dependencies=tuple(dependencies),
        decisions=tuple(decisions),
        attachments=tuple(attachments),
        annotations=freeze_annotations(annotations),
    )

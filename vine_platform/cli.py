from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, NoReturn, Optional, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from vine_platform.config import SettingsError, configure_logging, load_settings
from vine_platform.core.errors import VineError, VineLoadError, VineParseError, VineValidationError
from vine_platform.core.expand.expand_ref import expand_ref
from vine_platform.core.frontier.frontier import frontier
from vine_platform.core.model import VALID_STATUSES, ConcreteTask, RefTask, Task, VineGraph, is_valid_status
from vine_platform.core.mutate import mutations
from vine_platform.core.mutate.apply_batch import apply_batch
from vine_platform.core.mutate.contracts import (
    AddDepOp,
    AddRefOp,
    AddTaskOp,
    Operation,
    describe_operation,
    parse_operations,
)
from vine_platform.core.query.graph_query import filter_by_status, get_summary, get_task, search_tasks
from vine_platform.core.serialize.serialize_vine import serialize
from vine_platform.io.vine_files import load_operations, read_graph, write_graph

app = typer.Typer(add_completion=False, no_args_is_help=True)

FORMATS = ("text", "json")

T = TypeVar("T")


@app.callback()
def _callback(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        help="YAML settings file (defaults to $VINE_CONFIG)",
    ),
) -> None:
    """VINE task-graph CLI."""
    try:
        settings = load_settings(config)
    except FileNotFoundError as e:
        _print_errors(
            [VineLoadError(code="E_CONFIG_NOT_FOUND", message=f"settings file not found: {e.filename}")]
        )
        raise typer.Exit(code=1)
    except SettingsError as e:
        _print_errors([VineError(code="E_CONFIG_INVALID", message=str(e))])
        raise typer.Exit(code=2)

    configure_logging(settings["log_level"])
    ctx.obj = settings


@app.command("validate")
def validate(
    path: str = typer.Argument(..., help="Path to a .vine file"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Parse and validate a graph file."""
    _require_format(format)
    graph = _load_graph(path, command="validate", format=format)

    summary = get_summary(graph)
    if format == "text":
        typer.echo(f"OK: {summary.total} tasks (root: {summary.root_id})")
        return

    _emit_json(
        "validate",
        ok=True,
        exit_code=0,
        errors=[],
        result={
            "version": graph.version,
            "task_count": summary.total,
            "root_id": summary.root_id,
            "ref_count": summary.ref_count,
        },
    )


@app.command("show")
def show(
    path: str = typer.Argument(..., help="Path to a .vine file"),
    task_id: Optional[str] = typer.Argument(None, help="Show one task instead of the graph summary"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Summarize a graph, or print the details of one task."""
    _require_format(format)
    graph = _load_graph(path, command="show", format=format)

    if task_id is None:
        summary = get_summary(graph)
        if format == "json":
            _emit_json(
                "show",
                ok=True,
                exit_code=0,
                errors=[],
                result={
                    "title": graph.title,
                    "version": graph.version,
                    "total": summary.total,
                    "by_status": summary.by_status,
                    "root_id": summary.root_id,
                    "root_name": summary.root_name,
                    "leaf_count": summary.leaf_count,
                    "ref_count": summary.ref_count,
                },
            )
        if graph.title:
            typer.echo(graph.title)
        typer.echo(f"root: {summary.root_id} ({summary.root_name})")
        typer.echo(f"tasks: {summary.total} (refs: {summary.ref_count}, leaves: {summary.leaf_count})")
        for status, count in summary.by_status.items():
            if count:
                typer.echo(f"  {status}: {count}")
        return

    try:
        task = get_task(graph, task_id)
    except VineError as e:
        _fail("show", [e], exit_code=2, format=format)

    if format == "json":
        _emit_json("show", ok=True, exit_code=0, errors=[], result=_task_to_dict(task))

    typer.echo(f"[{task.id}] {task.short_name}")
    if isinstance(task, RefTask):
        typer.echo(f"  ref: {task.vine}")
    else:
        typer.echo(f"  status: {task.status}")
    if task.dependencies:
        typer.echo(f"  depends on: {', '.join(task.dependencies)}")
    for decision in task.decisions:
        typer.echo(f"  decision: {decision}")
    if isinstance(task, ConcreteTask):
        for att in task.attachments:
            typer.echo(f"  {att.cls}: {att.uri} ({att.mime})")
    for key in sorted(task.annotations):
        typer.echo(f"  @{key}: {', '.join(task.annotations[key])}")
    if task.description:
        typer.echo("")
        typer.echo(task.description)


@app.command("list")
def list_tasks(
    path: str = typer.Argument(..., help="Path to a .vine file"),
    status: Optional[str] = typer.Option(None, "--status", help="Only concrete tasks with this status"),
    search: Optional[str] = typer.Option(None, "--search", help="Case-insensitive text filter"),
) -> None:
    """List tasks in graph order."""
    if status is not None and not is_valid_status(status):
        _fail(
            "list",
            [VineError(code="E_INVALID_STATUS", message=f"invalid status {status!r} (valid: {', '.join(VALID_STATUSES)})")],
            exit_code=2,
            format="text",
        )
    graph = _load_graph(path, command="list", format="text")

    tasks: list[Task] = [graph.tasks[tid] for tid in graph.order]
    if status is not None:
        wanted = {t.id for t in filter_by_status(graph, status)}
        tasks = [t for t in tasks if t.id in wanted]
    if search is not None:
        hits = {t.id for t in search_tasks(graph, search)}
        tasks = [t for t in tasks if t.id in hits]

    table = Table(title=graph.title or "tasks")
    table.add_column("ID", no_wrap=True)
    table.add_column("Name")
    table.add_column("Status", no_wrap=True)
    table.add_column("Depends on")
    for t in tasks:
        state = f"ref -> {t.vine}" if isinstance(t, RefTask) else t.status
        table.add_row(t.id, t.short_name, state, ", ".join(t.dependencies))
    Console().print(table)


@app.command("next")
def next_cmd(
    path: str = typer.Argument(..., help="Path to a .vine file"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Show what can be worked on now."""
    _require_format(format)
    graph = _load_graph(path, command="next", format=format)
    f = frontier(graph)

    if format == "json":
        _emit_json(
            "next",
            ok=True,
            exit_code=0,
            errors=[],
            result={
                "ready": [t.id for t in f.ready],
                "completable": [t.id for t in f.completable],
                "blocked": [t.id for t in f.blocked],
                "expandable": [t.id for t in f.expandable],
                "progress": f.progress.to_dict(),
            },
        )

    sections = (
        ("Ready", f.ready),
        ("Completable", f.completable),
        ("Blocked", f.blocked),
        ("Expandable", f.expandable),
    )
    for title, items in sections:
        if not items:
            continue
        typer.echo(f"{title}:")
        for t in items:
            typer.echo(f"- [{t.id}] {t.short_name}")
    p = f.progress
    typer.echo(f"Progress: {p.complete}/{p.total} complete ({p.percentage}%), root {p.root_id} is {p.root_status or 'a ref'}")


@app.command("status")
def status_cmd(
    path: str = typer.Argument(..., help="Path to a .vine file"),
    task_id: str = typer.Argument(..., help="Task id"),
    status: str = typer.Argument(..., help="New status"),
) -> None:
    """Set the status of a task."""
    graph = _load_graph(path, command="status", format="text")
    updated = _run("status", lambda: mutations.set_status(graph, task_id, status))
    write_graph(path, updated)
    typer.echo(f"OK: {task_id} -> {status}")


@app.command("claim")
def claim_cmd(
    path: str = typer.Argument(..., help="Path to a .vine file"),
    task_id: str = typer.Argument(..., help="Task id"),
) -> None:
    """Mark a task as started."""
    graph = _load_graph(path, command="claim", format="text")
    updated = _run("claim", lambda: mutations.claim(graph, task_id))
    write_graph(path, updated)
    typer.echo(f"OK: claimed {task_id}")


@app.command("add")
def add_cmd(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Path to a .vine file"),
    task_id: str = typer.Option(..., "--id", help="New task id"),
    name: str = typer.Option(..., "--name", help="Short name"),
    status: Optional[str] = typer.Option(None, "--status", help="Initial status (default from settings)"),
    description: str = typer.Option("", "--description", help="Description text"),
    depends_on: list[str] = typer.Option([], "--depends-on", help="Dependency id (repeatable)"),
    parent: Optional[str] = typer.Option(None, "--parent", help="Existing task that should depend on the new one"),
) -> None:
    """Add a concrete task."""
    settings = ctx.obj or {}
    ops: list[Operation] = [
        AddTaskOp(
            id=task_id,
            name=name,
            status=status or settings.get("default_status", "notstarted"),
            description=description,
            depends_on=tuple(depends_on),
        )
    ]
    if parent is not None:
        ops.append(AddDepOp(task_id=parent, dep_id=task_id))
    _apply_and_write(path, ops, command="add")


@app.command("add-ref")
def add_ref_cmd(
    path: str = typer.Argument(..., help="Path to a .vine file"),
    task_id: str = typer.Option(..., "--id", help="New reference node id"),
    name: str = typer.Option(..., "--name", help="Short name"),
    vine: str = typer.Option(..., "--vine", help="URI of the referenced graph"),
    description: str = typer.Option("", "--description", help="Description text"),
    depends_on: list[str] = typer.Option([], "--depends-on", help="Dependency id (repeatable)"),
    parent: Optional[str] = typer.Option(None, "--parent", help="Existing task that should depend on the new ref"),
) -> None:
    """Add a reference node pointing at another graph."""
    ops: list[Operation] = [
        AddRefOp(id=task_id, name=name, vine=vine, description=description, depends_on=tuple(depends_on))
    ]
    if parent is not None:
        ops.append(AddDepOp(task_id=parent, dep_id=task_id))
    _apply_and_write(path, ops, command="add-ref")


@app.command("apply")
def apply_cmd(
    path: str = typer.Argument(..., help="Path to a .vine file"),
    ops_file: str = typer.Argument(..., help="YAML/JSON list of operations"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Apply a batch of operations; either all of them land or none do."""
    _require_format(format)
    graph = _load_graph(path, command="apply", format=format)

    try:
        raw = load_operations(ops_file)
    except VineLoadError as e:
        _fail("apply", [e], exit_code=1, format=format)

    ops = _run("apply", lambda: parse_operations(raw), format=format)
    updated = _run("apply", lambda: apply_batch(graph, ops), format=format)
    write_graph(path, updated)

    if format == "json":
        _emit_json(
            "apply",
            ok=True,
            exit_code=0,
            errors=[],
            result={"applied": [describe_operation(op) for op in ops], "task_count": len(updated.order)},
        )
    typer.echo(f"OK: applied {len(ops)} operation(s) to {path}")
    for op in ops:
        typer.echo(f"- {describe_operation(op)}")


@app.command("expand")
def expand_cmd(
    path: str = typer.Argument(..., help="Path to the parent .vine file"),
    ref_id: str = typer.Argument(..., help="Reference node to inline"),
    child_path: str = typer.Argument(..., help="Path to the child .vine file"),
    out: Optional[str] = typer.Option(None, "--out", help="Write the result here instead of PATH"),
) -> None:
    """Inline a child graph in place of a reference node."""
    parent = _load_graph(path, command="expand", format="text")
    child = _load_graph(child_path, command="expand", format="text")
    composite = _run("expand", lambda: expand_ref(parent, ref_id, child))

    target = out or path
    write_graph(target, composite)
    added = len(composite.order) - len(parent.order)
    typer.echo(f"OK: expanded {ref_id} (+{added} tasks), wrote {target}")


@app.command("fmt")
def fmt_cmd(
    path: str = typer.Argument(..., help="Path to a .vine file"),
    check: bool = typer.Option(False, "--check", help="Exit 1 instead of rewriting when not canonical"),
) -> None:
    """Rewrite a file in canonical form."""
    graph = _load_graph(path, command="fmt", format="text")
    canonical = serialize(graph)
    current = Path(path).read_text(encoding="utf-8")

    if current == canonical:
        typer.echo(f"OK: {path} is canonical")
        return
    if check:
        typer.echo(f"would reformat {path}", err=True)
        raise typer.Exit(code=1)
    Path(path).write_text(canonical, encoding="utf-8")
    typer.echo(f"OK: reformatted {path}")


@app.command("init")
def init_cmd(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Path of the .vine file to create"),
    task_id: str = typer.Option(..., "--id", help="Root task id"),
    name: str = typer.Option(..., "--name", help="Root task short name"),
    title: Optional[str] = typer.Option(None, "--title", help="Graph title"),
) -> None:
    """Create a new graph holding a single root task."""
    if Path(path).exists():
        _print_errors([VineLoadError(code="E_FILE_EXISTS", message=f"refusing to overwrite {path}")])
        raise typer.Exit(code=1)

    settings = ctx.obj or {}
    graph = _run(
        "init",
        lambda: mutations.new_graph(
            task_id,
            name,
            status=settings.get("default_status", "notstarted"),
            title=title,
            version=settings.get("version", "1.2.0"),
        ),
    )
    write_graph(path, graph)
    typer.echo(f"OK: wrote {path}")


def _apply_and_write(path: str, ops: list[Operation], *, command: str) -> None:
    graph = _load_graph(path, command=command, format="text")
    updated = _run(command, lambda: apply_batch(graph, ops))
    write_graph(path, updated)
    typer.echo(f"OK: {'; '.join(describe_operation(op) for op in ops)}")


def _load_graph(path: str, *, command: str, format: str) -> VineGraph:
    try:
        return read_graph(path)
    except VineLoadError as e:
        _fail(command, [e], exit_code=1, format=format)
    except VineError as e:
        _fail(command, [e], exit_code=2, format=format)


def _run(command: str, fn: Callable[[], T], *, format: str = "text") -> T:
    try:
        return fn()
    except VineError as e:
        _fail(command, [e], exit_code=2, format=format)


def _require_format(format: str) -> None:
    if format not in FORMATS:
        err = VineError(
            code="E_UNKNOWN_FORMAT",
            message=f"unknown format: {format} (choose one of: {', '.join(FORMATS)})",
        )
        _print_errors([err])
        raise typer.Exit(code=2)


def _fail(command: str, errors: list[VineError], *, exit_code: int, format: str) -> NoReturn:
    if format == "json":
        _emit_json(command, ok=False, exit_code=exit_code, errors=errors, result=None)
    _print_errors(errors)
    raise typer.Exit(code=exit_code)


def _error_item(e: VineError) -> dict[str, Any]:
    if isinstance(e, VineLoadError):
        source = "load"
    elif isinstance(e, VineParseError):
        source = "parse"
    elif isinstance(e, VineValidationError):
        source = "validate"
    else:
        source = "engine"

    item: dict[str, Any] = {"code": e.code, "message": e.message, "source": source}
    if isinstance(e, VineParseError):
        item["line"] = e.line
    if isinstance(e, VineValidationError):
        item["constraint"] = e.constraint
        item["details"] = e.details
    return item


def _emit_json(
    command: str,
    *,
    ok: bool,
    exit_code: int,
    errors: list[VineError],
    result: Optional[dict[str, Any]],
) -> NoReturn:
    payload = {
        "tool": "vine",
        "command": command,
        "ok": ok,
        "error_count": len(errors),
        "errors": [_error_item(e) for e in errors],
        "result": result,
    }
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))
    raise typer.Exit(code=exit_code)


def _task_to_dict(task: Task) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": task.id,
        "kind": task.kind,
        "shortName": task.short_name,
        "description": task.description,
        "dependencies": list(task.dependencies),
        "decisions": list(task.decisions),
        "annotations": {k: list(v) for k, v in task.annotations.items()},
    }
    if isinstance(task, RefTask):
        out["vine"] = task.vine
    else:
        out["status"] = task.status
        out["attachments"] = [{"class": a.cls, "mime": a.mime, "uri": a.uri} for a in task.attachments]
    return out


def _print_errors(errors: list[VineError]) -> None:
    for e in errors:
        typer.echo(str(e), err=True)


def main() -> None:
    app(prog_name="vine")


cli = typer.main.get_command(app)

if __name__ == "__main__":
    main()

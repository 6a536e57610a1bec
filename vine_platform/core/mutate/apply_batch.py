from __future__ import annotations

import logging
from typing import Sequence

from vine_platform.core.errors import VineError
from vine_platform.core.model import ConcreteTask, RefTask, VineGraph
from vine_platform.core.mutate import mutations
from vine_platform.core.mutate.contracts import (
    AddDepOp,
    AddRefOp,
    AddTaskOp,
    ClaimOp,
    HostOnlyOp,
    Operation,
    RemoveDepOp,
    RemoveTaskOp,
    SetStatusOp,
    UpdateOp,
    UpdateRefUriOp,
    describe_operation,
)
from vine_platform.core.validate.validate_graph import validate

logger = logging.getLogger(__name__)


def apply_batch(graph: VineGraph, operations: Sequence[Operation]) -> VineGraph:
    """Apply operations in order and validate once at the end.

    Deferring validation lets a caller add a task and wire it into the graph
    in the same batch without tripping the island rule in between. An
    ill-formed operation raises its VineError straight away; a failed final
    validation raises VineValidationError. Either way `graph` is unchanged.
    """

    working = graph
    for i, op in enumerate(operations):
        working = _apply_one(working, op)
        logger.debug("batch op %d: %s", i, describe_operation(op))

    validate(working)
    return working


def _apply_one(graph: VineGraph, op: Operation) -> VineGraph:
    if isinstance(op, AddTaskOp):
        task = ConcreteTask(
            id=op.id,
            short_name=op.name,
            status=op.status,
            description=op.description,
            dependencies=op.depends_on,
            decisions=op.decisions,
            attachments=op.attachments,
            annotations=op.annotations,
        )
        return mutations.add_task(graph, task, validate_result=False)
    if isinstance(op, AddRefOp):
        ref = RefTask(
            id=op.id,
            short_name=op.name,
            vine=op.vine,
            description=op.description,
            dependencies=op.depends_on,
            decisions=op.decisions,
            annotations=op.annotations,
        )
        return mutations.add_ref(graph, ref, validate_result=False)
    if isinstance(op, RemoveTaskOp):
        return mutations.remove_task(graph, op.id, validate_result=False)
    if isinstance(op, SetStatusOp):
        return mutations.set_status(graph, op.id, op.status, validate_result=False)
    if isinstance(op, ClaimOp):
        return mutations.claim(graph, op.id, validate_result=False)
    if isinstance(op, UpdateOp):
        return mutations.update_task(
            graph,
            op.id,
            short_name=op.name,
            description=op.description,
            decisions=op.decisions,
            attachments=op.attachments,
            annotations=op.annotations,
            validate_result=False,
        )
    if isinstance(op, AddDepOp):
        return mutations.add_dependency(graph, op.task_id, op.dep_id, validate_result=False)
    if isinstance(op, RemoveDepOp):
        return mutations.remove_dependency(graph, op.task_id, op.dep_id, validate_result=False)
    if isinstance(op, UpdateRefUriOp):
        return mutations.update_ref_uri(graph, op.id, op.uri, validate_result=False)
    if isinstance(op, HostOnlyOp):
        raise VineError(
            code="E_UNSUPPORTED_OP",
            message=f"{op.op!r} needs access to other graphs and must be handled by the caller",
        )
    raise VineError(code="E_INVALID_OPERATION", message=f"unknown operation: {op!r}")

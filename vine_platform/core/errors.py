from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(eq=False)
class VineError(Exception):
    """Base error envelope. Precondition failures (unknown id, wrong node kind, ...) use it directly."""

    code: str
    message: str

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


@dataclass(eq=False)
class VineParseError(VineError):
    line: int = 1  # 1-based

    def __str__(self) -> str:
        return f"line {self.line}: {self.code}: {self.message}"


@dataclass(eq=False)
class VineValidationError(VineError):
    constraint: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.code} [{self.constraint}]: {self.message}"


class VineLoadError(VineError):
    pass


def validation_error(constraint: str, message: str, **details: Any) -> VineValidationError:
    code = "E_" + constraint.upper().replace("-", "_")
    return VineValidationError(code=code, message=message, constraint=constraint, details=details)


def task_not_found(task_id: str) -> VineError:
    return VineError(code="E_TASK_NOT_FOUND", message=f"task not found: {task_id}")

from contextlib import contextmanager

import pytest

from vine_platform.core.errors import VineError, VineParseError
from vine_platform.core.model import EMPTY_ANNOTATIONS, ConcreteTask, RefTask, is_valid_version
from vine_platform.core.mutate.contracts import AddRefOp, AddTaskOp


def test_default_annotations_share_the_empty_mapping():
    assert ConcreteTask(id="a", short_name="A").annotations is EMPTY_ANNOTATIONS
    assert RefTask(id="r", short_name="R", vine="r.vine").annotations is EMPTY_ANNOTATIONS
    assert AddTaskOp(id="a", name="A").annotations is EMPTY_ANNOTATIONS
    assert AddRefOp(id="r", name="R", vine="r.vine").annotations is EMPTY_ANNOTATIONS


def test_version_grammar():
    assert is_valid_version("1")
    assert is_valid_version("1.2.0")
    assert not is_valid_version("latest")
    assert not is_valid_version("1.2.")
    assert not is_valid_version("v1.2")


@contextmanager
def _passthrough():
    yield


def test_errors_propagate_through_context_managers():
    with pytest.raises(VineParseError) as exc:
        with _passthrough():
            raise VineParseError(code="E_INVALID_HEADER", message="bad header", line=4)
    assert exc.value.line == 4
    assert str(exc.value) == "line 4: E_INVALID_HEADER: bad header"

    with pytest.raises(VineError) as exc:
        with _passthrough():
            raise VineError(code="E_TASK_NOT_FOUND", message="task not found: x")
    assert exc.value.code == "E_TASK_NOT_FOUND"

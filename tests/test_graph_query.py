from pathlib import Path

import pytest

from vine_platform.core.errors import VineError
from vine_platform.core.parse.parse_vine import parse
from vine_platform.core.query.graph_query import (
    filter_by_status,
    get_annotation,
    get_dependants,
    get_dependencies,
    get_descendants,
    get_leaves,
    get_refs,
    get_root,
    get_summary,
    get_task,
    search_tasks,
)

EXAMPLES = Path(__file__).resolve().parents[1] / "examples"


def _release():
    return parse((EXAMPLES / "release.vine").read_text(encoding="utf-8"))


def _ids(tasks):
    return [t.id for t in tasks]


def test_lookup_helpers():
    g = _release()
    assert get_task(g, "api").short_name == "Stabilize API"
    assert get_root(g).id == "release"
    with pytest.raises(VineError) as exc:
        get_task(g, "ghost")
    assert exc.value.code == "E_TASK_NOT_FOUND"


def test_edges_in_both_directions():
    g = _release()
    assert _ids(get_dependencies(g, "build")) == ["api", "auth"]
    assert _ids(get_dependants(g, "api")) == ["docs", "build"]
    assert _ids(get_descendants(g, "api")) == ["release", "docs", "build"]
    assert get_descendants(g, "release") == []


def test_filters():
    g = _release()
    assert _ids(filter_by_status(g, "notstarted")) == ["release", "docs"]
    assert _ids(search_tasks(g, "API")) == ["api"]
    assert _ids(search_tasks(g, "public surface")) == ["api"]
    assert _ids(search_tasks(g, "  ")) == list(g.order)
    assert _ids(get_leaves(g)) == ["api", "auth"]
    assert _ids(get_refs(g)) == ["auth"]


def test_summary_and_annotations():
    g = _release()
    s = get_summary(g)
    assert s.total == 5
    assert s.root_id == "release"
    assert s.root_name == "Ship release 2.0"
    assert s.leaf_count == 2
    assert s.ref_count == 1
    assert s.by_status["reviewing"] == 1

    assert get_annotation(get_task(g, "build"), "tags") == "linux"
    assert get_annotation(get_task(g, "build"), "missing") is None

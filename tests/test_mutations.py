import pytest

from vine_platform.core.errors import VineError, VineValidationError
from vine_platform.core.model import Attachment, ConcreteTask, RefTask
from vine_platform.core.mutate import mutations
from vine_platform.core.parse.parse_vine import parse


BASE = """vine 1.2.0
---
[root] Root (notstarted)
-> a
-> r
---
[a] A (notstarted)
-> b
---
[b] B (complete)
---
ref [r] Remote (r.vine)
"""


def _base():
    return parse(BASE)


def _code(fn, *args, **kwargs):
    with pytest.raises(VineError) as exc:
        fn(*args, **kwargs)
    return exc.value.code


def test_new_graph_bootstraps_single_root():
    g = mutations.new_graph("plan", "The plan", title="T", status="planning")
    assert g.order == ("plan",)
    assert g.title == "T"
    assert g.tasks["plan"].status == "planning"
    assert g.version == "1.2.0"


def test_add_task_is_pure_and_appends_to_order():
    g = _base()
    g2 = mutations.add_task(g, ConcreteTask(id="c", short_name="C"), validate_result=False)
    g2 = mutations.add_dependency(g2, "a", "c")

    assert "c" not in g.tasks
    assert g.order == ("root", "a", "b", "r")
    assert g2.order == ("root", "a", "b", "r", "c")
    assert g2.tasks["a"].dependencies == ("b", "c")
    # untouched tasks are shared, not copied
    assert g2.tasks["b"] is g.tasks["b"]


def test_add_task_without_edge_is_an_island():
    with pytest.raises(VineValidationError) as exc:
        mutations.add_task(_base(), ConcreteTask(id="c", short_name="C"))
    assert exc.value.constraint == "no-islands"


def test_add_task_rejects_bad_input():
    g = _base()
    assert _code(mutations.add_task, g, ConcreteTask(id="a", short_name="dup", dependencies=())) == "E_DUPLICATE_ID"
    assert _code(mutations.add_task, g, ConcreteTask(id="bad id", short_name="x")) == "E_INVALID_ID"
    assert _code(mutations.add_task, g, ConcreteTask(id="c", short_name="C", status="done")) == "E_INVALID_STATUS"
    assert _code(mutations.add_task, g, RefTask(id="c", short_name="C", vine="x")) == "E_WRONG_KIND"
    assert _code(mutations.add_task, g, ConcreteTask(id="c", short_name="   ")) == "E_INVALID_FIELD"
    assert _code(mutations.add_task, g, ConcreteTask(id="c", short_name="C", description="ok\n-> b")) == "E_INVALID_FIELD"
    assert (
        _code(mutations.add_task, g, ConcreteTask(id="c", short_name="C", annotations={"k": ["a,b"]}))
        == "E_INVALID_ANNOTATION"
    )
    dup = (Attachment("file", "text/plain", "x"), Attachment("artifact", "text/plain", "x"))
    assert _code(mutations.add_task, g, ConcreteTask(id="c", short_name="C", attachments=dup)) == "E_DUPLICATE_ATTACHMENT"


def test_add_ref_requires_uri():
    g = _base()
    assert _code(mutations.add_ref, g, RefTask(id="r2", short_name="R2", vine="")) == "E_EMPTY_URI"
    assert _code(mutations.add_ref, g, RefTask(id="r2", short_name="R2", vine="a b.vine")) == "E_INVALID_URI"


def test_remove_task_strips_incoming_edges():
    g = mutations.remove_task(_base(), "r")
    assert "r" not in g.tasks
    assert g.tasks["root"].dependencies == ("a",)


def test_remove_task_that_strands_others_is_rejected():
    with pytest.raises(VineValidationError) as exc:
        mutations.remove_task(_base(), "a")
    assert exc.value.constraint == "no-islands"
    assert exc.value.details["islandTaskIds"] == ["b"]


@pytest.mark.parametrize("source", [BASE, "vine 1.0\n---\n[root] Only (started)\n"])
def test_remove_root_always_fails(source):
    assert _code(mutations.remove_task, parse(source), "root") == "E_REMOVE_ROOT"


def test_remove_unknown_task():
    assert _code(mutations.remove_task, _base(), "nope") == "E_TASK_NOT_FOUND"


def test_set_status_and_claim():
    g = mutations.set_status(_base(), "a", "reviewing")
    assert g.tasks["a"].status == "reviewing"
    g = mutations.claim(g, "root")
    assert g.tasks["root"].status == "started"

    assert _code(mutations.set_status, g, "a", "finished") == "E_INVALID_STATUS"
    assert _code(mutations.set_status, g, "r", "complete") == "E_WRONG_KIND"
    assert _code(mutations.claim, g, "r") == "E_WRONG_KIND"
    assert _code(mutations.claim, g, "ghost") == "E_TASK_NOT_FOUND"


def test_update_task_fields():
    g = mutations.update_task(
        _base(),
        "a",
        short_name="Renamed",
        description="new text\n",
        decisions=["use sqlite"],
        attachments=[Attachment("guidance", "text/markdown", "guide.md")],
        annotations={"owner": ["me"]},
    )
    a = g.tasks["a"]
    assert a.short_name == "Renamed"
    assert a.description == "new text"
    assert a.decisions == ("use sqlite",)
    assert a.attachments[0].uri == "guide.md"
    assert a.annotations["owner"] == ("me",)
    assert a.status == "notstarted"
    assert a.dependencies == ("b",)


@pytest.mark.parametrize(
    "att",
    [
        Attachment("link", "text/plain", "notes.txt"),
        Attachment("file", "", "notes.txt"),
        Attachment("file", "text plain", "notes.txt"),
        Attachment("file", "text/plain", ""),
        Attachment("file", "text/plain", "   "),
        Attachment("file", "text/plain", " notes.txt"),
        Attachment("file", "text/plain", "notes.txt "),
        Attachment("file", "text/plain", "x\n-> root"),
    ],
)
def test_attachments_that_cannot_be_written_are_rejected(att):
    g = _base()
    assert _code(mutations.update_task, g, "a", attachments=[att]) == "E_INVALID_FIELD"
    new = ConcreteTask(id="c", short_name="C", attachments=(att,))
    assert _code(mutations.add_task, g, new) == "E_INVALID_FIELD"


def test_attachment_uri_may_contain_inner_spaces():
    g = mutations.update_task(_base(), "a", attachments=[Attachment("file", "text/plain", "my notes.txt")])
    assert g.tasks["a"].attachments[0].uri == "my notes.txt"


def test_new_graph_rejects_unwritable_version_and_title():
    assert _code(mutations.new_graph, "plan", "P", version="latest") == "E_INVALID_VERSION"
    assert _code(mutations.new_graph, "plan", "P", version="1.2.") == "E_INVALID_VERSION"
    assert _code(mutations.new_graph, "plan", "P", title="two\nlines") == "E_INVALID_FIELD"
    assert mutations.new_graph("plan", "P", title="  Q3  ").title == "Q3"


def test_update_task_without_changes_returns_same_graph():
    g = _base()
    assert mutations.update_task(g, "a") is g


def test_update_ref_cannot_take_attachments():
    code = _code(mutations.update_task, _base(), "r", attachments=[Attachment("file", "text/plain", "x")])
    assert code == "E_REF_ATTACHMENT"


def test_dependency_edges():
    g = _base()
    assert _code(mutations.add_dependency, g, "a", "b") == "E_DUPLICATE_EDGE"
    assert _code(mutations.add_dependency, g, "a", "ghost") == "E_TASK_NOT_FOUND"
    assert _code(mutations.remove_dependency, g, "b", "a") == "E_MISSING_EDGE"

    with pytest.raises(VineValidationError) as exc:
        mutations.add_dependency(g, "b", "root")
    assert exc.value.constraint == "no-cycles"

    g2 = mutations.add_dependency(g, "root", "b")
    g2 = mutations.remove_dependency(g2, "a", "b")
    assert g2.tasks["a"].dependencies == ()
    assert g2.tasks["root"].dependencies == ("a", "r", "b")


def test_update_ref_uri():
    g = mutations.update_ref_uri(_base(), "r", "other.vine")
    assert g.tasks["r"].vine == "other.vine"
    assert _code(mutations.update_ref_uri, g, "a", "x.vine") == "E_WRONG_KIND"
    assert _code(mutations.update_ref_uri, g, "r", " ") == "E_EMPTY_URI"

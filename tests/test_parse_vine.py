from pathlib import Path

import pytest

from vine_platform.core.errors import VineParseError, VineValidationError
from vine_platform.core.model import ConcreteTask, RefTask
from vine_platform.core.parse.parse_vine import parse

EXAMPLES = Path(__file__).resolve().parents[1] / "examples"


def test_parse_two_task_graph():
    g = parse("vine 1.0.0\n---\n[root] Root (started)\n-> leaf\n---\n[leaf] Leaf (complete)\n")
    assert g.version == "1.0.0"
    assert g.order == ("root", "leaf")
    assert g.tasks["root"].dependencies == ("leaf",)
    assert g.tasks["root"].status == "started"
    assert g.tasks["leaf"].status == "complete"
    assert g.title is None
    assert g.delimiter == "---"


def test_parse_example_file_fields():
    g = parse((EXAMPLES / "release.vine").read_text(encoding="utf-8"))
    assert g.title == "Release 2.0"
    assert g.order == ("release", "docs", "build", "api", "auth")

    release = g.tasks["release"]
    assert isinstance(release, ConcreteTask)
    assert release.description == "Cut the 2.0 release once the feature work and docs are in."
    assert release.decisions == ("Ship on a Tuesday",)
    assert release.dependencies == ("docs", "build")
    assert dict(release.annotations) == {"owner": ("ops",)}

    build = g.tasks["build"]
    assert build.annotations["tags"] == ("linux", "mac")
    assert len(build.attachments) == 1
    att = build.attachments[0]
    assert (att.cls, att.mime, att.uri) == ("artifact", "application/zip", "https://ci.example.com/builds/2.0.zip")

    auth = g.tasks["auth"]
    assert isinstance(auth, RefTask)
    assert auth.kind == "ref"
    assert auth.vine == "vines/auth.vine"


def test_parse_metadata_and_custom_delimiter():
    text = "vine 1.2.0\ndelimiter: ===\nprefix: ext\ntitle: Outer\nsomething else\n---\n[a] A (notstarted)\n-> b\n===\n[b] B (planning)\n"
    g = parse(text)
    assert g.delimiter == "==="
    assert g.prefix == "ext"
    assert g.title == "Outer"
    assert g.order == ("a", "b")


def test_parse_accepts_crlf_and_blank_blocks():
    text = "vine 1.2.0\r\n---\r\n[a] A (notstarted)\r\n-> b\r\n---\r\n\r\n---\r\n[b] B (complete)\r\n"
    g = parse(text)
    assert g.order == ("a", "b")


def test_parse_multiline_description_keeps_inner_blank_lines():
    text = "vine 1.2.0\n---\n[a] A (notstarted)\nfirst line\n\n  indented line\n\n"
    g = parse(text)
    assert g.tasks["a"].description == "first line\n\n  indented line"


def test_parse_empty_annotation_means_empty_list():
    g = parse("vine 1.2.0\n---\n[a] A (notstarted) @flag() @k(x, y)\n")
    assert g.tasks["a"].annotations["flag"] == ()
    assert g.tasks["a"].annotations["k"] == ("x", "y")


def test_parse_ref_with_annotations():
    text = "vine 1.2.0\n---\n[a] A (notstarted)\n-> r\n---\nref [r] Other graph (./other.vine) @team(core)\n"
    g = parse(text)
    r = g.tasks["r"]
    assert isinstance(r, RefTask)
    assert r.vine == "./other.vine"
    assert r.annotations["team"] == ("core",)


@pytest.mark.parametrize(
    "text, code, line",
    [
        ("", "E_MAGIC_LINE", 1),
        ("VINE 1.0\n---\n[a] A (started)\n", "E_MAGIC_LINE", 1),
        ("vine 1.0\ntitle: x\n[a] A (started)\n", "E_MISSING_TERMINATOR", 3),
        ("vine 1.0\ntitle: x\ntitle: y\n---\n[a] A (started)\n", "E_DUPLICATE_METADATA", 3),
        ("vine 1.0\ndelimiter:\ntitle: x\n---\n[a] A (started)\n", "E_INVALID_METADATA", 2),
        ("vine 1.0\n---\n", "E_EMPTY_BODY", 3),
        ("vine 1.0\n---\n[a] A (done)\n", "E_INVALID_HEADER", 3),
        ("vine 1.0\n---\n[a b] A (started)\n", "E_INVALID_HEADER", 3),
        ("vine 1.0\n---\n[a] A (started) @k(1) @k(2)\n", "E_DUPLICATE_ANNOTATION", 3),
        ("vine 1.0\n---\n[a] A (started)\n@file text/plain\n", "E_INVALID_ATTACHMENT", 4),
        ("vine 1.0\n---\n[a] A (started)\n-> r\n---\nref [r] R (x.vine)\n@file text/plain a.txt\n", "E_REF_ATTACHMENT", 7),
        (
            "vine 1.0\n---\n[a] A (started)\n@file text/plain a.txt\n@artifact text/plain a.txt\n",
            "E_DUPLICATE_ATTACHMENT",
            5,
        ),
    ],
)
def test_parse_errors_carry_code_and_line(text, code, line):
    with pytest.raises(VineParseError) as exc:
        parse(text)
    assert exc.value.code == code
    assert exc.value.line == line
    assert str(exc.value).startswith(f"line {line}: {code}")


def test_parse_duplicate_id_is_a_validation_error():
    text = "vine 1.0\n---\n[a] A (started)\n-> a2\n---\n[a2] B (started)\n---\n[a] C (started)\n"
    with pytest.raises(VineValidationError) as exc:
        parse(text)
    assert exc.value.constraint == "unique-ids"


def test_parse_runs_structural_validation():
    try:
        parse((EXAMPLES / "invalid-cycle.vine").read_text(encoding="utf-8"))
        assert False, "expected VineValidationError"
    except VineValidationError as e:
        assert e.code == "E_NO_CYCLES"
        assert e.details["cycle"] == ["a", "b"]

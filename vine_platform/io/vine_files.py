from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from vine_platform.core.errors import VineLoadError
from vine_platform.core.model import VineGraph
from vine_platform.core.parse.parse_vine import parse
from vine_platform.core.serialize.serialize_vine import serialize


def read_graph(path: str | Path) -> VineGraph:
    """Read and parse a .vine file.

    Missing files raise VineLoadError; bad content raises the parser's
    VineParseError / VineValidationError unchanged.
    """
    p = Path(path)
    if not p.exists():
        raise VineLoadError(code="E_FILE_NOT_FOUND", message=f"file does not exist: {p}")
    return parse(_read_text(p))


def write_graph(path: str | Path, graph: VineGraph) -> None:
    p = Path(path)
    if str(p.parent) not in (".", ""):
        p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(serialize(graph), encoding="utf-8")


def load_operations(path: str | Path) -> list[Any]:
    """Load a YAML/JSON list of operation objects.

    Accepts either a top-level list or a mapping with an `operations` list.
    Does not check operation shape; contracts.parse_operations owns that.
    """

    p = Path(path)
    if not p.exists():
        raise VineLoadError(code="E_FILE_NOT_FOUND", message=f"file does not exist: {p}")

    suffix = p.suffix.lower()
    raw_text = _read_text(p)

    try:
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(raw_text)
        elif suffix == ".json":
            data = json.loads(raw_text)
        else:
            raise VineLoadError(
                code="E_UNSUPPORTED_FORMAT",
                message=f"{p}: supported formats are .yaml/.yml and .json",
            )
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        code = "E_YAML_PARSE" if suffix in {".yaml", ".yml"} else "E_JSON_PARSE"
        raise VineLoadError(code=code, message=f"{p}: {e}") from e

    if isinstance(data, dict) and "operations" in data:
        data = data["operations"]
    if not isinstance(data, list):
        raise VineLoadError(
            code="E_INVALID_TOP_LEVEL",
            message=f"{p}: top-level document must be a list of operations or a mapping with 'operations'",
        )
    return data


def _read_text(p: Path) -> str:
    try:
        return p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise VineLoadError(code="E_FILE_READ", message=f"{p}: {e}") from e

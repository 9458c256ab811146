from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import yaml

from agent_workflow.core.errors import PlanLoadError


# suffix -> (parser, error code when the text does not parse)
_PARSERS: dict[str, tuple[Callable[[str], Any], str]] = {
    ".yaml": (yaml.safe_load, "E_YAML_PARSE"),
    ".yml": (yaml.safe_load, "E_YAML_PARSE"),
    ".json": (json.loads, "E_JSON_PARSE"),
}


def load_plan(path: str) -> dict[str, Any]:
    """Read a plan file into a plain document for `compile_plan`.

    Only `plan_name` and `activities` are carried over, untouched, together
    with `__file__` so compile errors can point back at the source.
    """

    p = Path(path)
    source = str(p)
    if not p.exists():
        raise PlanLoadError(code="E_FILE_NOT_FOUND", message="file does not exist", file=source)

    parser = _PARSERS.get(p.suffix.lower())
    if parser is None:
        raise PlanLoadError(
            code="E_UNSUPPORTED_FORMAT",
            message=f"expected one of {', '.join(sorted(_PARSERS))}, got '{p.suffix or '(none)'}'",
            file=source,
        )
    parse, parse_code = parser

    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:  # pragma: no cover
        raise PlanLoadError(code="E_FILE_READ", message=str(e), file=source) from e

    try:
        document = parse(text)
    except (yaml.YAMLError, ValueError) as e:
        raise PlanLoadError(code=parse_code, message=str(e), file=source) from e

    if not isinstance(document, dict):
        raise PlanLoadError(
            code="E_INVALID_TOP_LEVEL",
            message=f"a plan must be a mapping, not {type(document).__name__}",
            file=source,
        )

    return {
        "plan_name": document.get("plan_name"),
        "activities": document.get("activities"),
        "__file__": source,
    }

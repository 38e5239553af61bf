"""
CDS Hooks Service - Card Expression Language.

Dot-path lookup into evaluation results and `${path}` interpolation over
card templates. A template that is exactly one marker keeps the resolved
value's type; markers embedded in text are replaced by their string form.
"""
from __future__ import annotations
import json
import re
from collections.abc import Mapping, Sequence
from typing import Any

MARKER_PATTERN = re.compile(r"\$\{([^}]+)\}")


def resolve_expression(results: Any, path: str) -> Any:
    """Walk `path` ("A.B.C") through nested results.

    Missing keys short-circuit; an absent or null final value resolves to "".
    """
    value = results
    for part in path.split("."):
        if value is None:
            break
        value = _lookup(value, part)
    return "" if value is None else value


def _lookup(value: Any, key: str) -> Any:
    if isinstance(value, Mapping):
        return value.get(key)
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        if key.isdigit() and int(key) < len(value):
            return value[int(key)]
    return None


def to_display_string(value: Any) -> str:
    """String form used when a value is embedded in surrounding text."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def interpolate(template: Any, results: Mapping[str, Any]) -> Any:
    """Return a rendered copy of `template`; the input is never mutated."""
    if isinstance(template, str):
        return _interpolate_string(template, results)
    if isinstance(template, Mapping):
        return {key: interpolate(value, results) for key, value in template.items()}
    if isinstance(template, (list, tuple)):
        return [interpolate(item, results) for item in template]
    return template


def _interpolate_string(template: str, results: Mapping[str, Any]) -> Any:
    whole = MARKER_PATTERN.fullmatch(template)
    if whole:
        return resolve_expression(results, whole.group(1))
    return MARKER_PATTERN.sub(
        lambda match: to_display_string(resolve_expression(results, match.group(1))),
        template,
    )

"""Template substitution for the format nodes.

Syntax: ``$`` followed by ``.field`` / ``[index]`` segments selects from the
input value (``$`` alone is the whole value), optionally followed by a filter:

    Your booking starts $.detail.start|format("YYYY-MM-dd HH:mm")
    Hello $.detail.name|upper()

Unresolvable paths render as ``<missing:path>`` instead of raising, so a
typo in a template shows up in the output rather than aborting the run.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

_EXPRESSION = re.compile(
    r"\$(?P<path>(?:\.[A-Za-z_][\w-]*|\[\d+\])*)(?!\w)"
    r"(?:\|(?P<filter>[a-z]+)\((?:\"(?P<arg>(?:[^\"\\]|\\.)*)\")?\))?"
)
_SEGMENT = re.compile(r"\.([A-Za-z_][\w-]*)|\[(\d+)\]")

# Longest tokens first so "YYYY" wins over "YY"
_DATE_TOKENS = {
    "YYYY": "%Y",
    "YY": "%y",
    "MM": "%m",
    "DD": "%d",
    "dd": "%d",
    "HH": "%H",
    "hh": "%I",
    "mm": "%M",
    "ss": "%S",
    "A": "%p",
}
_DATE_TOKEN_RE = re.compile("|".join(_DATE_TOKENS))

_MARKDOWN_SPECIALS = re.compile(r"([\\`*_{}\[\]()#+\-.!|>~])")

_MISSING = object()


def resolve_path(data: Any, path: str) -> Any:
    """Resolve a ``.a.b[0]`` path against ``data``.

    Returns the module-level missing sentinel when any segment does not resolve.
    """
    current = data
    for match in _SEGMENT.finditer(path):
        key, index = match.groups()
        if key is not None:
            if isinstance(current, Mapping) and key in current:
                current = current[key]
            elif hasattr(current, key) and not key.startswith("_"):
                current = getattr(current, key)
            else:
                return _MISSING
        else:
            i = int(index)
            if isinstance(current, Sequence) and not isinstance(current, str) and i < len(current):
                current = current[i]
            else:
                return _MISSING
    return current


def lookup(data: Any, expression: str, default: Any = None) -> Any:
    """Resolve a bare ``$.path`` expression, returning ``default`` when missing."""
    if not expression.startswith("$"):
        raise ValueError(f"Path expressions must start with '$': {expression!r}")
    value = resolve_path(data, expression[1:])
    return default if value is _MISSING else value


def to_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return datetime.fromtimestamp(value, UTC)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


def format_date(value: Any, pattern: str) -> str:
    moment = to_datetime(value)
    if moment is None:
        return stringify(value)
    strftime_pattern = _DATE_TOKEN_RE.sub(
        lambda m: _DATE_TOKENS[m.group(0)], pattern.replace("%", "%%")
    )
    return moment.strftime(strftime_pattern)


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping | list | tuple):
        return json.dumps(value, default=str)
    if hasattr(value, "model_dump_json"):
        return value.model_dump_json()
    return str(value)


def escape_markdown(text: str) -> str:
    return _MARKDOWN_SPECIALS.sub(r"\\\1", text)


_FILTERS: dict[str, Callable[[Any, str | None], str]] = {
    "format": lambda v, arg: format_date(v, arg or "YYYY-MM-DD HH:mm:ss"),
    "upper": lambda v, _: stringify(v).upper(),
    "lower": lambda v, _: stringify(v).lower(),
    "json": lambda v, _: json.dumps(v, default=str),
}


def render(template: str, data: Any, escape: Callable[[str], str] | None = None) -> str:
    """Substitute every ``$`` expression in ``template`` with values from ``data``.

    Args:
        template: Template text
        data: Value the expressions select from
        escape: Optional function applied to each substituted value

    Returns:
        The rendered string
    """

    def substitute(match: re.Match) -> str:
        path = match.group("path")
        value = resolve_path(data, path)
        if value is _MISSING:
            return f"<missing:${path}>"
        name = match.group("filter")
        if name is None:
            text = stringify(value)
        elif name in _FILTERS:
            arg = match.group("arg")
            text = _FILTERS[name](value, arg.replace('\\"', '"') if arg is not None else None)
        else:
            return f"<unknown-filter:{name}>"
        return escape(text) if escape else text

    return _EXPRESSION.sub(substitute, template)

"""
Reference templates - ``{{...}}`` substitution in node configuration.

A config string is parsed once into a small AST of parts:

- ``Literal``: plain text
- ``VariableRef``: ``{{variable.name}}`` / ``{{variables.name}}`` and the
  reserved ``{{trigger.field}}`` (the trigger payload lives in the variable
  environment under ``trigger``)
- ``InputRef``: ``{{input.field}}``, the output of the node that led here
- ``NodeOutputRef``: ``{{nodeId.field}}``

A string that is exactly one reference resolves to the referenced value with
its type intact; mixed strings are rendered to text.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from storeflow.errors import UnresolvedReferenceError

OPEN = "{{"
CLOSE = "}}"

VARIABLE_PREFIXES = ("variable", "variables")
TRIGGER_KEY = "trigger"
INPUT_KEY = "input"


@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class VariableRef:
    raw: str
    name: str
    path: Tuple[str, ...] = ()


@dataclass(frozen=True)
class InputRef:
    raw: str
    path: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NodeOutputRef:
    raw: str
    node_id: str
    path: Tuple[str, ...] = ()


Reference = Union[VariableRef, InputRef, NodeOutputRef]
Part = Union[Literal, VariableRef, InputRef, NodeOutputRef]


@dataclass(frozen=True)
class Template:
    """Parsed form of a config string."""

    parts: Tuple[Part, ...]

    @property
    def references(self) -> List[Reference]:
        return [part for part in self.parts if not isinstance(part, Literal)]

    @property
    def is_single_reference(self) -> bool:
        return len(self.parts) == 1 and not isinstance(self.parts[0], Literal)

    @property
    def is_literal(self) -> bool:
        return not self.references


def _parse_reference(raw: str) -> Reference:
    segments = [segment.strip() for segment in raw.split(".")]
    if not raw or any(not segment for segment in segments):
        raise UnresolvedReferenceError(raw, "malformed reference")

    head, rest = segments[0], tuple(segments[1:])
    if head in VARIABLE_PREFIXES:
        if not rest:
            raise UnresolvedReferenceError(raw, "missing variable name")
        return VariableRef(raw=raw, name=rest[0], path=rest[1:])
    if head == TRIGGER_KEY:
        return VariableRef(raw=raw, name=TRIGGER_KEY, path=rest)
    if head == INPUT_KEY:
        return InputRef(raw=raw, path=rest)
    return NodeOutputRef(raw=raw, node_id=head, path=rest)


@lru_cache(maxsize=1024)
def parse_template(text: str) -> Template:
    """
    Parse a string into literal and reference parts.

    Raises:
        UnresolvedReferenceError: For unterminated or malformed references.
    """
    parts: List[Part] = []
    pos = 0
    while True:
        start = text.find(OPEN, pos)
        if start == -1:
            if pos < len(text):
                parts.append(Literal(text[pos:]))
            break
        if start > pos:
            parts.append(Literal(text[pos:start]))
        end = text.find(CLOSE, start + len(OPEN))
        if end == -1:
            raise UnresolvedReferenceError(text[start + len(OPEN):].strip(), "unterminated reference")
        parts.append(_parse_reference(text[start + len(OPEN):end].strip()))
        pos = end + len(CLOSE)
    return Template(parts=tuple(parts))


_MISSING = object()


def _walk(value: Any, path: Tuple[str, ...], raw: str) -> Any:
    current = value
    for segment in path:
        if isinstance(current, Mapping):
            current = current.get(segment, _MISSING)
        elif isinstance(current, (list, tuple)) and segment.lstrip("-").isdigit():
            index = int(segment)
            current = current[index] if -len(current) <= index < len(current) else _MISSING
        else:
            current = _MISSING
        if current is _MISSING:
            raise UnresolvedReferenceError(raw, f"'{segment}' not found")
    return current


@dataclass
class ResolutionScope:
    """Values a reference can point at during one node's resolution."""

    variables: Mapping[str, Any]
    node_outputs: Mapping[str, Any]
    input: Any = None

    def lookup(self, ref: Reference) -> Any:
        if isinstance(ref, VariableRef):
            if ref.name not in self.variables:
                raise UnresolvedReferenceError(ref.raw, f"variable '{ref.name}' is not defined")
            return _walk(self.variables[ref.name], ref.path, ref.raw)
        if isinstance(ref, InputRef):
            return _walk(self.input, ref.path, ref.raw)
        if ref.node_id not in self.node_outputs:
            raise UnresolvedReferenceError(ref.raw, f"node '{ref.node_id}' has no output")
        return _walk(self.node_outputs[ref.node_id], ref.path, ref.raw)


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def resolve_string(text: str, scope: ResolutionScope) -> Any:
    template = parse_template(text)
    if template.is_literal:
        return text
    if template.is_single_reference:
        return scope.lookup(template.parts[0])  # type: ignore[arg-type]
    return "".join(
        part.text if isinstance(part, Literal) else _render(scope.lookup(part))
        for part in template.parts
    )


def resolve_value(value: Any, scope: ResolutionScope) -> Any:
    """Recursively resolve references inside a config value."""
    if isinstance(value, str):
        return resolve_string(value, scope)
    if isinstance(value, dict):
        return {key: resolve_value(item, scope) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_value(item, scope) for item in value]
    return value


def collect_references(value: Any) -> List[Reference]:
    """List every reference found in a config value (used for diagnostics)."""
    found: List[Reference] = []
    if isinstance(value, str):
        found.extend(parse_template(value).references)
    elif isinstance(value, dict):
        for item in value.values():
            found.extend(collect_references(item))
    elif isinstance(value, list):
        for item in value:
            found.extend(collect_references(item))
    return found


def rename_node_references(text: str, id_map: Mapping[str, str]) -> str:
    """
    Rewrite ``{{nodeId...}}`` references through ``id_map``.

    The string is re-rendered from its parsed parts, so spacing inside the
    braces does not matter. Literal text and other references are kept.

    Raises:
        UnresolvedReferenceError: For unterminated or malformed references.
    """
    template = parse_template(text)
    if not any(isinstance(ref, NodeOutputRef) and ref.node_id in id_map for ref in template.references):
        return text

    rendered: List[str] = []
    for part in template.parts:
        if isinstance(part, Literal):
            rendered.append(part.text)
        elif isinstance(part, NodeOutputRef) and part.node_id in id_map:
            rendered.append(OPEN + ".".join((id_map[part.node_id],) + part.path) + CLOSE)
        else:
            rendered.append(OPEN + part.raw + CLOSE)
    return "".join(rendered)


__all__ = [
    "Literal",
    "VariableRef",
    "InputRef",
    "NodeOutputRef",
    "Template",
    "ResolutionScope",
    "parse_template",
    "resolve_value",
    "collect_references",
    "rename_node_references",
]

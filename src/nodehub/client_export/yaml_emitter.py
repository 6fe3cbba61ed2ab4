"""
Small block-style YAML emitter for subscription documents.

Values are first turned into a tree of Scalar / Sequence / MappingNode and then written
depth-first. Sequences of mappings use the compact form clients expect:

    proxies:
    - name: a
      port: 443

Strings are quoted only when a plain scalar would be read back as something else.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import Any, Mapping, Union

_INDENT = "  "
_RESERVED_WORDS = frozenset(
    {"true", "false", "yes", "no", "on", "off", "y", "n", "null", "~", ".inf", "-.inf", "+.inf", ".nan"}
)
_NUMBER_LIKE = re.compile(r"[-+]?[.]?[0-9][0-9a-fA-FxXoO_:.eE+-]*")
_LEADING_INDICATORS = frozenset("-?:,[]{}#&*!|>'\"%@`")


@dataclass(frozen=True)
class Scalar:
    value: Any


@dataclass(frozen=True)
class Sequence:
    items: tuple["Node", ...]


@dataclass(frozen=True)
class MappingNode:
    items: tuple[tuple[str, "Node"], ...]


Node = Union[Scalar, Sequence, MappingNode]


def to_node(value: Any) -> Node:
    """Build the node tree; mapping entries whose value is None are left out."""
    if isinstance(value, Mapping):
        return MappingNode(tuple((str(key), to_node(item)) for key, item in value.items() if item is not None))
    if isinstance(value, (list, tuple)):
        return Sequence(tuple(to_node(item) for item in value if item is not None))
    return Scalar(value)


def _needs_quotes(text: str) -> bool:
    if not text or text != text.strip():
        return True
    if text[0] in _LEADING_INDICATORS:
        return True
    if ": " in text or " #" in text or text.endswith(":"):
        return True
    if any(ord(ch) < 0x20 for ch in text):
        return True
    if text.lower() in _RESERVED_WORDS:
        return True
    return _NUMBER_LIKE.fullmatch(text) is not None


def format_scalar(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return ".nan"
        if math.isinf(value):
            return ".inf" if value > 0 else "-.inf"
        return repr(value)
    text = str(value)
    if _needs_quotes(text):
        return json.dumps(text, ensure_ascii=False)
    return text


def _flow(node: Node) -> str:
    if isinstance(node, Scalar):
        return format_scalar(node.value)
    if isinstance(node, Sequence):
        return "[" + ", ".join(_flow(item) for item in node.items) + "]"
    return "{" + ", ".join(f"{format_scalar(key)}: {_flow(item)}" for key, item in node.items) + "}"


def _emit_sequence_items(node: Sequence, pad: str, out: list[str]) -> None:
    for item in node.items:
        if isinstance(item, MappingNode) and item.items:
            lines: list[str] = []
            _emit_mapping(item, "", lines)
            out.append(f"{pad}- {lines[0]}")
            out.extend(f"{pad}{_INDENT}{line}" for line in lines[1:])
        else:
            out.append(f"{pad}- {_flow(item)}")


def _emit_mapping(node: MappingNode, pad: str, out: list[str]) -> None:
    for key, value in node.items:
        label = format_scalar(key)
        if isinstance(value, Sequence):
            out.append(f"{pad}{label}:")
            if not value.items:
                out.append(f"{pad}{_INDENT}[]")
            else:
                _emit_sequence_items(value, pad, out)
        elif isinstance(value, MappingNode):
            if not value.items:
                out.append(f"{pad}{label}: {{}}")
            else:
                out.append(f"{pad}{label}:")
                _emit_mapping(value, pad + _INDENT, out)
        else:
            out.append(f"{pad}{label}: {format_scalar(value.value)}")


def dump(value: Mapping[str, Any]) -> str:
    node = to_node(value)
    if not isinstance(node, MappingNode):
        raise TypeError("top-level YAML document must be a mapping")
    lines: list[str] = []
    _emit_mapping(node, "", lines)
    return "\n".join(lines) + "\n" if lines else "{}\n"

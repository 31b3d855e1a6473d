"""Tagged-variant schema representation built once per operation at load time.

Resolved schema documents are arbitrary nested mappings. They are converted
into :class:`SchemaNode` trees with exactly six kinds (string, number,
boolean, object, array, union). Everything downstream, such as typed input
models or JSON schema summaries, is derived by walking those trees with the
pure recursive functions in this module.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union


MAX_DEPTH = 32


class SchemaKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"
    UNION = "union"


@dataclass(frozen=True)
class SchemaNode:
    kind: SchemaKind
    description: Optional[str] = None
    integer: bool = False
    nullable: bool = False
    enum: Tuple[Any, ...] = ()
    default: Any = None
    items: Optional["SchemaNode"] = None
    properties: Tuple[Tuple[str, "SchemaNode"], ...] = ()
    variants: Tuple["SchemaNode", ...] = ()
    circular_ref: Optional[str] = None


STRING = SchemaNode(SchemaKind.STRING)
ANY_OBJECT = SchemaNode(SchemaKind.OBJECT)


def build_schema_node(raw: Any, _depth: int = 0) -> SchemaNode:
    """Convert a resolved schema mapping into a :class:`SchemaNode`."""
    if not isinstance(raw, Mapping):
        return STRING
    if _depth >= MAX_DEPTH:
        return ANY_OBJECT

    description = raw.get("description")
    common: Dict[str, Any] = {
        "description": description if isinstance(description, str) else None,
        "nullable": bool(raw.get("nullable", False)),
        "default": raw.get("default"),
    }
    enum = raw.get("enum")
    if isinstance(enum, list):
        common["enum"] = tuple(enum)

    if "x-circular-ref" in raw:
        return SchemaNode(SchemaKind.OBJECT, circular_ref=str(raw["x-circular-ref"]), **common)

    for key in ("oneOf", "anyOf"):
        options = raw.get(key)
        if isinstance(options, list) and options:
            variants = tuple(build_schema_node(option, _depth + 1) for option in options)
            return _union(variants, common)

    parts = raw.get("allOf")
    if isinstance(parts, list) and parts:
        return _merge_all_of([build_schema_node(part, _depth + 1) for part in parts], common)

    schema_type = raw.get("type")
    if isinstance(schema_type, list):
        kinds = [item for item in schema_type if item != "null"]
        if "null" in schema_type:
            common["nullable"] = True
        if len(kinds) > 1:
            variants = tuple(
                build_schema_node({**raw, "type": item}, _depth + 1) for item in kinds
            )
            return _union(variants, common)
        schema_type = kinds[0] if kinds else None

    if schema_type == "string":
        return SchemaNode(SchemaKind.STRING, **common)
    if schema_type == "integer":
        return SchemaNode(SchemaKind.NUMBER, integer=True, **common)
    if schema_type == "number":
        return SchemaNode(SchemaKind.NUMBER, **common)
    if schema_type == "boolean":
        return SchemaNode(SchemaKind.BOOLEAN, **common)
    if schema_type == "array" or (schema_type is None and "items" in raw):
        items = raw.get("items")
        item_node = build_schema_node(items, _depth + 1) if isinstance(items, Mapping) else None
        return SchemaNode(SchemaKind.ARRAY, items=item_node, **common)
    if schema_type == "object" or "properties" in raw or "additionalProperties" in raw:
        properties = raw.get("properties")
        if not isinstance(properties, Mapping):
            properties = {}
        return SchemaNode(
            SchemaKind.OBJECT,
            properties=tuple(
                (str(name), build_schema_node(value, _depth + 1))
                for name, value in properties.items()
            ),
            **common,
        )
    return SchemaNode(SchemaKind.STRING, **common)


def _union(variants: Tuple[SchemaNode, ...], common: Dict[str, Any]) -> SchemaNode:
    if len(variants) == 1:
        return variants[0]
    return SchemaNode(SchemaKind.UNION, variants=variants, **common)


def _merge_all_of(parts: List[SchemaNode], common: Dict[str, Any]) -> SchemaNode:
    objects = [part for part in parts if part.kind is SchemaKind.OBJECT]
    if not objects:
        return parts[0]
    merged: Dict[str, SchemaNode] = {}
    for part in objects:
        merged.update(part.properties)
    return SchemaNode(SchemaKind.OBJECT, properties=tuple(merged.items()), **common)


def python_type(node: Optional[SchemaNode]) -> Any:
    """Map a node onto the Python annotation used for generated input models."""
    if node is None:
        return Any
    if node.kind is SchemaKind.STRING:
        return str
    if node.kind is SchemaKind.NUMBER:
        return int if node.integer else float
    if node.kind is SchemaKind.BOOLEAN:
        return bool
    if node.kind is SchemaKind.ARRAY:
        return List[python_type(node.items)]  # type: ignore[misc]
    if node.kind is SchemaKind.OBJECT:
        return Dict[str, Any]
    options: List[Any] = []
    for variant in node.variants:
        annotation = python_type(variant)
        if annotation not in options:
            options.append(annotation)
    if len(options) == 1:
        return options[0]
    return Union[tuple(options)]  # type: ignore[return-value]


def to_json_schema(node: Optional[SchemaNode]) -> Dict[str, Any]:
    """Render a node as a compact JSON schema fragment."""
    if node is None:
        return {}
    if node.kind is SchemaKind.UNION:
        result: Dict[str, Any] = {"anyOf": [to_json_schema(v) for v in node.variants]}
    elif node.kind is SchemaKind.NUMBER:
        result = {"type": "integer" if node.integer else "number"}
    elif node.kind is SchemaKind.ARRAY:
        result = {"type": "array"}
        if node.items is not None:
            result["items"] = to_json_schema(node.items)
    elif node.kind is SchemaKind.OBJECT:
        result = {"type": "object"}
        if node.properties:
            result["properties"] = {
                name: to_json_schema(child) for name, child in node.properties
            }
        if node.circular_ref:
            result["x-circular-ref"] = node.circular_ref
    else:
        result = {"type": node.kind.value}
    if node.description:
        result["description"] = node.description
    if node.enum:
        result["enum"] = list(node.enum)
    if node.default is not None:
        result["default"] = node.default
    if node.nullable:
        result["nullable"] = True
    return result

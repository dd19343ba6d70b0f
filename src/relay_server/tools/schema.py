"""JSON-Schema sanitizer for tool parameter schemas.

OpenAI-compatible providers (and Gemini behind OpenAI-style gateways) reject a
number of JSON-Schema keywords that MCP servers commonly emit. This module
strips them before schemas are handed to the completion provider.
"""

import copy
from typing import Any

UNSUPPORTED_SCHEMA_KEYS = (
    "$schema",
    "$id",
    "$ref",
    "$comment",
    "$defs",
    "definitions",
    "examples",
    "default",
)

COMPOSITE_KEYS = ("allOf", "anyOf", "oneOf")

EMPTY_PARAMETERS: dict[str, Any] = {"type": "object", "properties": {}, "required": []}


def sanitize_schema(schema: Any) -> Any:
    """Return a cleaned deep copy of a tool parameter schema.

    Unsupported keys are removed at every level reachable through
    ``properties``, ``items``, ``allOf``/``anyOf``/``oneOf``,
    ``patternProperties`` and object-valued ``additionalProperties``.
    Anything that is not a dict (including None) is returned as-is.

    Args:
        schema: A JSON-Schema-shaped object

    Returns:
        The sanitized copy; the input is never mutated
    """
    if not isinstance(schema, dict):
        return schema

    cleaned = copy.deepcopy(schema)
    _strip(cleaned)
    return cleaned


def _strip(node: Any) -> None:
    if not isinstance(node, dict):
        return

    for key in UNSUPPORTED_SCHEMA_KEYS:
        node.pop(key, None)

    properties = node.get("properties")
    if isinstance(properties, dict):
        for child in properties.values():
            _strip(child)

    items = node.get("items")
    if isinstance(items, list):
        for child in items:
            _strip(child)
    else:
        _strip(items)

    for key in COMPOSITE_KEYS:
        branches = node.get(key)
        if isinstance(branches, list):
            for child in branches:
                _strip(child)

    additional = node.get("additionalProperties")
    if isinstance(additional, dict):
        _strip(additional)

    pattern_properties = node.get("patternProperties")
    if isinstance(pattern_properties, dict):
        for child in pattern_properties.values():
            _strip(child)

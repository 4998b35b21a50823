"""Portable representations of graph driver values.

Query results arrive as neo4j driver objects. ``from_driver_value`` maps them
onto a small set of tagged variants and ``normalize_value`` turns a variant
tree into plain JSON-friendly data:

* node -> ``{"_labels": [...], **properties}``
* relationship -> ``{"_type": "...", **properties}``
* path -> ``{"start", "end", "segments": [{"start", "relationship", "end"}]}``

Lists and mappings are converted element-wise; any other value (numbers,
strings, temporal and spatial types) is returned unchanged.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from neo4j.graph import Node, Path, Relationship


@dataclass(frozen=True)
class NodeValue:
    labels: tuple[str, ...]
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RelationshipValue:
    type: str
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PathSegmentValue:
    start: NodeValue
    relationship: RelationshipValue
    end: NodeValue


@dataclass(frozen=True)
class PathValue:
    start: NodeValue
    end: NodeValue
    segments: tuple[PathSegmentValue, ...] = ()


GraphValue = Union[NodeValue, RelationshipValue, PathValue]


def _node_from_driver(node: Node) -> NodeValue:
    return NodeValue(
        labels=tuple(sorted(node.labels)),
        properties={key: from_driver_value(value) for key, value in node.items()},
    )


def _relationship_from_driver(relationship: Relationship) -> RelationshipValue:
    return RelationshipValue(
        type=relationship.type,
        properties={key: from_driver_value(value) for key, value in relationship.items()},
    )


def _path_from_driver(path: Path) -> PathValue:
    nodes = [_node_from_driver(node) for node in path.nodes]
    # Segments follow the path order, which may run against a relationship's direction.
    segments = tuple(
        PathSegmentValue(
            start=nodes[index],
            relationship=_relationship_from_driver(relationship),
            end=nodes[index + 1],
        )
        for index, relationship in enumerate(path.relationships)
    )
    return PathValue(start=nodes[0], end=nodes[-1], segments=segments)


def from_driver_value(value: Any) -> Any:
    if isinstance(value, Node):
        return _node_from_driver(value)
    if isinstance(value, Relationship):
        return _relationship_from_driver(value)
    if isinstance(value, Path):
        return _path_from_driver(value)
    if isinstance(value, (list, tuple)):
        return [from_driver_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): from_driver_value(item) for key, item in value.items()}
    return value


def normalize_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, NodeValue):
        return {"_labels": list(value.labels), **normalize_value(value.properties)}
    if isinstance(value, RelationshipValue):
        return {"_type": value.type, **normalize_value(value.properties)}
    if isinstance(value, PathValue):
        return {
            "start": normalize_value(value.start),
            "end": normalize_value(value.end),
            "segments": [
                {
                    "start": normalize_value(segment.start),
                    "relationship": normalize_value(segment.relationship),
                    "end": normalize_value(segment.end),
                }
                for segment in value.segments
            ],
        }
    if isinstance(value, (list, tuple)):
        return [normalize_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): normalize_value(item) for key, item in value.items()}
    return value


def normalize_driver_value(value: Any) -> Any:
    return normalize_value(from_driver_value(value))

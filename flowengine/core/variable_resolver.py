"""Resolution of `{"$var": "$.<node>.<field>..."}` references against prior node results.

Path grammar::

    $.[Previous Steps.]<node name or id>[.<field>]*

The node portion may itself contain dots once spaces are substituted
(``$.HTTP.Request.id`` names the node ``HTTP Request``), so the node is found
by trying successively longer prefixes of the segments; see
:func:`match_node_prefix`.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..models.core import NodeExecutionResult
from .exceptions import ReferenceResolutionError

VARIABLE_KEY = "$var"
PATH_PREFIX = "$."
PREVIOUS_STEPS_SEGMENT = "Previous Steps"


@dataclass(frozen=True)
class VariablePath:
    """A parsed variable path, before the owning node is known."""
    raw: str
    segments: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class NodePath:
    """A variable path split into the owning node and the fields inside its output."""
    node_name_or_id: str
    field_segments: List[str]
    result: NodeExecutionResult


def is_variable_reference(value: Any) -> bool:
    return isinstance(value, dict) and VARIABLE_KEY in value


def parse_variable_path(path: Any) -> VariablePath:
    """Validate the `$.` prefix and drop the cosmetic `Previous Steps` namespace."""
    if not isinstance(path, str) or not path.startswith(PATH_PREFIX):
        raise ReferenceResolutionError(
            f'Invalid variable path: {path}. Must start with "{PATH_PREFIX}"',
            path=str(path),
        )

    segments = path[len(PATH_PREFIX):].split(".")
    if segments and segments[0] == PREVIOUS_STEPS_SEGMENT:
        segments = segments[1:]

    if not segments or not segments[0]:
        raise ReferenceResolutionError(f"Variable path does not name a node: {path}", path=path)

    return VariablePath(raw=path, segments=segments)


def _find_result(candidate: str, previous_results: Sequence[NodeExecutionResult]) -> Optional[NodeExecutionResult]:
    for result in previous_results:
        if result.node_id == candidate or result.node_name == candidate:
            return result
    return None


def match_node_prefix(variable_path: VariablePath, previous_results: Sequence[NodeExecutionResult]) -> NodePath:
    """
    Find the node a path refers to.

    Prefixes of increasing length are joined with spaces and compared with each
    prior result's node name and node id; the first prefix that matches wins
    and the remaining segments become the field path. This is ambiguous when
    one node's name is a space-separated prefix of another's (``A`` vs
    ``A B``): the shorter name is always chosen.

    Raises:
        ReferenceResolutionError: If no prefix matches any prior node
    """
    segments = variable_path.segments
    for length in range(1, len(segments) + 1):
        candidate = " ".join(segments[:length])
        result = _find_result(candidate, previous_results)
        if result is not None:
            return NodePath(
                node_name_or_id=candidate,
                field_segments=segments[length:],
                result=result,
            )

    raise ReferenceResolutionError(f"Node not found: {segments[0]}", path=variable_path.raw)


def walk_output(data: Any, field_segments: Sequence[str], path: Optional[str] = None) -> Any:
    """Follow `field_segments` through nested dicts and lists by plain property access."""
    current = data
    for segment in field_segments:
        if isinstance(current, dict):
            current = current.get(segment)
        elif isinstance(current, list):
            current = current[int(segment)] if segment.isdigit() and int(segment) < len(current) else None
        else:
            raise ReferenceResolutionError(
                f"Cannot access property {segment} on {type(current).__name__}. "
                f"Current data: {json.dumps(current, default=str)}",
                path=path,
            )
    return current


def resolve_variable_path(path: Any, previous_results: Sequence[NodeExecutionResult]) -> Any:
    """Resolve one variable path to the value it points at."""
    variable_path = parse_variable_path(path)
    node_path = match_node_prefix(variable_path, previous_results)
    return walk_output(node_path.result.output, node_path.field_segments, path=variable_path.raw)


def resolve_variables(
    input_mapping: Dict[str, Any],
    previous_results: Sequence[NodeExecutionResult]
) -> Dict[str, Any]:
    """
    Replace every top-level `$var` reference in an input mapping with its value.

    Only the first level of the mapping is scanned; nested values are passed
    through untouched.

    Args:
        input_mapping: Node input mapping of literals and references
        previous_results: Results of nodes already executed in this run

    Returns:
        A new mapping with references substituted

    Raises:
        ReferenceResolutionError: If any reference cannot be resolved
    """
    resolved = {}
    for key, value in (input_mapping or {}).items():
        if is_variable_reference(value):
            resolved[key] = resolve_variable_path(value[VARIABLE_KEY], previous_results)
        else:
            resolved[key] = value
    return resolved

"""Turn raw definition payloads into typed graphs."""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import ValidationError

from ..contracts import WorkflowGraph
from ..errors import GraphParseError


def parse_graph(payload: Mapping[str, Any] | WorkflowGraph) -> WorkflowGraph:
    """Parse ``{nodes: [...], connections: [...]}`` into a :class:`WorkflowGraph`.

    Node configuration is resolved into its typed variant here, once, so the
    engine never has to interpret untyped property bags at execution time.

    Raises:
        GraphParseError: If the payload is not a well-formed graph.
    """
    if isinstance(payload, WorkflowGraph):
        return payload
    if not isinstance(payload, Mapping):
        raise GraphParseError(
            f"graph payload must be a mapping, got {type(payload).__name__}"
        )
    try:
        return WorkflowGraph.model_validate(dict(payload))
    except ValidationError as exc:
        raise GraphParseError(f"invalid workflow graph: {exc}") from exc

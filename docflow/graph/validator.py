"""Structural validation of workflow graphs.

Errors make a graph unusable for execution; warnings flag reachability
problems but never block activation.
"""

from __future__ import annotations

from ..contracts import (
    NodeType,
    ValidationIssue,
    ValidationResult,
    WorkflowDefinition,
    WorkflowGraph,
)


def validate_graph(graph: WorkflowGraph) -> ValidationResult:
    """Return the errors and warnings for ``graph``. Pure and deterministic."""
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []

    if not graph.nodes:
        errors.append(
            ValidationIssue(
                code="EmptyWorkflow",
                message="Workflow must contain at least one node",
            )
        )

    start_nodes = graph.nodes_of_type(NodeType.START)
    if not start_nodes:
        errors.append(
            ValidationIssue(
                code="MissingStartNode",
                message="Workflow must have at least one start node",
            )
        )
    elif len(start_nodes) > 1:
        warnings.append(
            ValidationIssue(
                code="MultipleStartNodes",
                message="Workflow has multiple start nodes",
            )
        )

    if not graph.nodes_of_type(NodeType.END):
        errors.append(
            ValidationIssue(
                code="MissingEndNode",
                message="Workflow must have at least one end node",
            )
        )

    targets = {c.target_node_id for c in graph.connections}
    sources = {c.source_node_id for c in graph.connections}
    for node in graph.nodes:
        if node.type is not NodeType.START and node.id not in targets:
            warnings.append(
                ValidationIssue(
                    code="UnreachableNode",
                    message=f"Node '{node.name}' has no incoming connections",
                    node_id=node.id,
                )
            )
        if node.type is not NodeType.END and node.id not in sources:
            warnings.append(
                ValidationIssue(
                    code="DeadEndNode",
                    message=f"Node '{node.name}' has no outgoing connections",
                    node_id=node.id,
                )
            )

    known = {node.id for node in graph.nodes}
    for connection in graph.connections:
        for endpoint in (connection.source_node_id, connection.target_node_id):
            if endpoint not in known:
                warnings.append(
                    ValidationIssue(
                        code="UnknownNodeReference",
                        message=(
                            f"Connection {connection.source_node_id} -> "
                            f"{connection.target_node_id} references unknown node"
                        ),
                        node_id=endpoint,
                    )
                )

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def validate_definition(definition: WorkflowDefinition) -> ValidationResult:
    return validate_graph(definition.graph)

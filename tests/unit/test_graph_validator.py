"""Tests for structural graph validation."""

import pytest

from docflow.errors import GraphParseError
from docflow.graph import parse_graph, validate_graph


def _codes(issues):
    return sorted((i.code, i.node_id) for i in issues)


def test_linear_graph_is_clean(linear):
    result = validate_graph(parse_graph(linear))
    assert result.is_valid
    assert result.errors == []
    assert result.warnings == []


def test_missing_connection_only_warns(linear):
    linear["connections"] = [
        c for c in linear["connections"] if c["sourceNodeId"] != "t1"
    ]
    result = validate_graph(parse_graph(linear))
    assert result.is_valid
    assert _codes(result.warnings) == [("DeadEndNode", "t1"), ("UnreachableNode", "e1")]


def test_empty_graph_reports_every_error():
    result = validate_graph(parse_graph({"nodes": [], "connections": []}))
    assert not result.is_valid
    assert [e.code for e in result.errors] == [
        "EmptyWorkflow",
        "MissingStartNode",
        "MissingEndNode",
    ]


@pytest.mark.parametrize("removed", ["start", "end"])
def test_missing_start_or_end_is_invalid(linear, removed):
    linear["nodes"] = [n for n in linear["nodes"] if n["type"] != removed]
    result = validate_graph(parse_graph(linear))
    assert not result.is_valid
    expected = "MissingStartNode" if removed == "start" else "MissingEndNode"
    assert [e.code for e in result.errors] == [expected]


def test_multiple_start_nodes_warn(linear):
    linear["nodes"].append({"id": "s2", "name": "Other start", "type": "start"})
    linear["connections"].append({"sourceNodeId": "s2", "targetNodeId": "t1"})
    result = validate_graph(parse_graph(linear))
    assert result.is_valid
    assert [w.code for w in result.warnings] == ["MultipleStartNodes"]


def test_start_without_outgoing_is_dead_end():
    graph = parse_graph(
        {
            "nodes": [
                {"id": "s", "name": "Start", "type": "start"},
                {"id": "e", "name": "End", "type": "end"},
            ],
            "connections": [],
        }
    )
    result = validate_graph(graph)
    assert result.is_valid
    assert _codes(result.warnings) == [("DeadEndNode", "s"), ("UnreachableNode", "e")]


def test_unknown_connection_endpoint_warns(linear):
    linear["connections"].append({"sourceNodeId": "t1", "targetNodeId": "ghost"})
    result = validate_graph(parse_graph(linear))
    assert result.is_valid
    assert ("UnknownNodeReference", "ghost") in _codes(result.warnings)


def test_validation_is_idempotent(approval):
    graph = parse_graph(approval)
    assert validate_graph(graph) == validate_graph(graph)


def test_parse_rejects_duplicate_ids(linear):
    linear["nodes"].append({"id": "t1", "name": "Again", "type": "task"})
    with pytest.raises(GraphParseError):
        parse_graph(linear)


def test_parse_rejects_mismatched_config(linear):
    linear["nodes"][1]["config"] = {"type": "end"}
    with pytest.raises(GraphParseError):
        parse_graph(linear)


def test_parse_resolves_typed_config(approval):
    graph = parse_graph(approval)
    review = graph.node("review")
    assert review.config.assignee_role == "reviewer"
    assert review.config.due_in_hours == 24
    assert graph.node("approved").config.outcome == "approved"
    assert [c.target_node_id for c in graph.outgoing("route")] == ["publish", "rejected"]

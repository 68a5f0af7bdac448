import pytest

from docflow.contracts import WorkflowConnection
from docflow.graph import evaluate_condition, select_connection


@pytest.mark.parametrize(
    "condition, context, expected",
    [
        (None, {}, True),
        ("", {}, True),
        ("else", {}, True),
        ("TRUE", {}, True),
        ("false", {"x": 1}, False),
        ("decision == approve", {"decision": "approve"}, True),
        ("decision == 'approve'", {"decision": "approve"}, True),
        ("decision == approve", {"decision": "reject"}, False),
        ("decision == approve", {}, False),
        ("decision != approve", {}, True),
        ("decision != approve", {"decision": "reject"}, True),
        ("amount == 100", {"amount": 100}, True),
        ("urgent == true", {"urgent": True}, True),
        ("urgent", {"urgent": True}, True),
        ("urgent", {"urgent": "True"}, True),
        ("urgent", {"urgent": "yes"}, False),
        ("urgent", {}, False),
    ],
)
def test_evaluate_condition(condition, context, expected):
    assert evaluate_condition(condition, context) is expected


def test_first_matching_connection_wins():
    connections = [
        WorkflowConnection(source_node_id="d", target_node_id="a", condition="x == 1"),
        WorkflowConnection(source_node_id="d", target_node_id="b", condition="x != 2"),
        WorkflowConnection(source_node_id="d", target_node_id="c"),
    ]
    assert select_connection(connections, {"x": 1}).target_node_id == "a"
    assert select_connection(connections, {"x": 3}).target_node_id == "b"
    assert select_connection(connections, {"x": 2}).target_node_id == "c"


def test_no_connection_matches():
    connections = [
        WorkflowConnection(source_node_id="d", target_node_id="a", condition="x == 1")
    ]
    assert select_connection(connections, {}) is None

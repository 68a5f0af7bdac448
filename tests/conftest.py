from datetime import datetime, timedelta, timezone

import pytest

from docflow import DefinitionService, DocflowConfig, ExecutionEngine
from docflow.contracts import CreateDefinitionRequest
from docflow.graph import parse_graph
from docflow.persistence import InMemoryWorkflowRepository
from docflow.security import StaticRoleResolver


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def linear_payload() -> dict:
    """start s1 -> task t1 -> end e1"""
    return {
        "nodes": [
            {"id": "s1", "name": "Start", "type": "start"},
            {"id": "t1", "name": "Review", "type": "task"},
            {"id": "e1", "name": "Done", "type": "end"},
        ],
        "connections": [
            {"sourceNodeId": "s1", "targetNodeId": "t1"},
            {"sourceNodeId": "t1", "targetNodeId": "e1"},
        ],
    }


def approval_payload() -> dict:
    """start -> review task -> decision on the review action -> approved/rejected ends."""
    return {
        "nodes": [
            {"id": "start", "name": "Start", "type": "start"},
            {
                "id": "review",
                "name": "Review document",
                "type": "task",
                "config": {"assignee_role": "reviewer", "due_in_hours": 24},
            },
            {"id": "route", "name": "Route", "type": "decision"},
            {
                "id": "publish",
                "name": "Publish",
                "type": "task",
                "config": {"assignee": "publisher"},
            },
            {
                "id": "approved",
                "name": "Approved",
                "type": "end",
                "config": {"outcome": "approved"},
            },
            {
                "id": "rejected",
                "name": "Rejected",
                "type": "end",
                "config": {"outcome": "rejected"},
            },
        ],
        "connections": [
            {"sourceNodeId": "start", "targetNodeId": "review"},
            {"sourceNodeId": "review", "targetNodeId": "route"},
            {
                "sourceNodeId": "route",
                "targetNodeId": "publish",
                "condition": "last_action == approve",
            },
            {
                "sourceNodeId": "route",
                "targetNodeId": "rejected",
                "condition": "last_action == reject",
            },
            {"sourceNodeId": "publish", "targetNodeId": "approved"},
        ],
    }


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def repo():
    return InMemoryWorkflowRepository()


@pytest.fixture
def roles():
    return StaticRoleResolver({"rita": ["reviewer"], "quinn": ["reviewer"]})


@pytest.fixture
def config():
    return DocflowConfig()


@pytest.fixture
def engine(repo, roles, config, clock):
    return ExecutionEngine(repo, roles, config, clock=clock)


@pytest.fixture
def definitions(repo, engine, clock):
    return DefinitionService(repo, engine.policy, clock=clock)


@pytest.fixture
def make_definition(definitions):
    async def _make(payload=None, name="Linear", tenant="acme", owner="owner", **kwargs):
        request = CreateDefinitionRequest(
            name=name, graph=parse_graph(payload or linear_payload()), **kwargs
        )
        return await definitions.create_definition(tenant, owner, request)

    return _make


@pytest.fixture
def linear():
    return linear_payload()


@pytest.fixture
def approval():
    return approval_payload()

"""Example running the contract approval workflow in memory."""

import asyncio
import logging
from pathlib import Path

from docflow import (
    CompleteTaskRequest,
    CreateDefinitionRequest,
    CreateInstanceRequest,
    DefinitionService,
    DocflowConfig,
    ExecutionEngine,
)
from docflow.cli_utils.loader import graph_payload, load_document
from docflow.graph import parse_graph
from docflow.persistence import InMemoryWorkflowRepository
from docflow.security import StaticRoleResolver


async def main():
    repository = InMemoryWorkflowRepository()
    roles = StaticRoleResolver({"rita": ["reviewer"]})
    engine = ExecutionEngine(repository, roles, DocflowConfig())
    definitions = DefinitionService(repository, engine.policy)

    document = load_document(Path(__file__).with_name("contract_approval.yaml"))
    definition = await definitions.create_definition(
        "acme",
        "owner",
        CreateDefinitionRequest(
            name=document["name"],
            description=document.get("description"),
            graph=parse_graph(graph_payload(document)),
            category=document.get("category", "General"),
        ),
    )

    started = await engine.create_instance(
        definition.id,
        "owner",
        CreateInstanceRequest(document_id="contract-7", assigned_to="pat"),
    )
    instance = started.unwrap()
    print(f"Instance {instance.id} waiting at {instance.current_state}")

    # Rita reviews through her role; the publish step falls to the instance assignee.
    for user, action in (("rita", "approve"), ("pat", "published")):
        (task,) = await engine.tasks.pending_tasks(user, "acme")
        outcome = await engine.tasks.complete_task(
            task.id, user, CompleteTaskRequest(action=action)
        )
        instance = outcome.unwrap()
        print(f"{user} -> {action}: {instance.status.value} at {instance.current_state}")

    details = (await engine.get_instance(instance.id, "owner")).unwrap()
    for entry in details.history:
        print(f"  {entry.action}: {entry.from_state} -> {entry.to_state}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())

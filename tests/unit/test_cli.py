import asyncio
import json

import pytest
from typer.testing import CliRunner

from docflow.cli import app
from docflow.persistence import InMemoryWorkflowRepository, reset_repository


@pytest.fixture
def cli_repo(tmp_path, monkeypatch):
    monkeypatch.setenv("DOCFLOW_CONFIG", str(tmp_path / "config.yaml"))
    monkeypatch.delenv("DOCFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    repo = InMemoryWorkflowRepository()
    reset_repository(repo)
    yield repo
    reset_repository()


@pytest.fixture
def graph_file(tmp_path, linear):
    path = tmp_path / "linear.json"
    path.write_text(json.dumps({"name": "Linear", "category": "Legal", "graph": linear}))
    return path


def _create(runner, graph_file, repo):
    result = runner.invoke(
        app,
        ["definition", "create", str(graph_file), "--tenant", "acme", "--user", "owner"],
    )
    assert result.exit_code == 0, result.stdout
    (definition,) = asyncio.run(repo.list_definitions("acme"))
    return definition


def test_definition_commands(cli_repo, graph_file):
    runner = CliRunner()
    definition = _create(runner, graph_file, cli_repo)
    assert definition.category == "Legal"

    listed = runner.invoke(app, ["definition", "list", "--tenant", "acme"])
    assert listed.exit_code == 0
    assert definition.id in listed.stdout
    assert "Linear" in listed.stdout

    shown = runner.invoke(app, ["definition", "show", definition.id, "--user", "owner"])
    assert shown.exit_code == 0
    assert "t1 [task] Review" in shown.stdout

    refused = runner.invoke(app, ["definition", "show", definition.id, "--user", "eve"])
    assert refused.exit_code == 1
    assert "Insufficient permissions" in refused.stdout


def test_definition_validate_offline(tmp_path, cli_repo, linear):
    runner = CliRunner()
    good = tmp_path / "good.yaml"
    good.write_text(json.dumps(linear))
    result = runner.invoke(app, ["definition", "validate", str(good)])
    assert result.exit_code == 0
    assert "Definition is valid" in result.stdout

    linear["nodes"] = [n for n in linear["nodes"] if n["type"] != "end"]
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps(linear))
    result = runner.invoke(app, ["definition", "validate", str(bad)])
    assert result.exit_code == 1
    assert "MissingEndNode" in result.stdout

    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    result = runner.invoke(app, ["definition", "validate", str(broken)])
    assert result.exit_code == 1


def test_instance_and_task_flow(cli_repo, graph_file):
    runner = CliRunner()
    definition = _create(runner, graph_file, cli_repo)

    started = runner.invoke(
        app,
        [
            "instance",
            "start",
            definition.id,
            "--user",
            "owner",
            "--assign",
            "alice",
            "--context",
            '{"amount": 5}',
        ],
    )
    assert started.exit_code == 0, started.stdout
    (instance,) = asyncio.run(cli_repo.list_instances())
    assert instance.context == {"amount": 5}

    pending = runner.invoke(app, ["task", "pending", "--user", "alice", "--tenant", "acme"])
    assert "Review" in pending.stdout
    (task,) = asyncio.run(cli_repo.list_tasks(instance_id=instance.id))

    paused = runner.invoke(app, ["instance", "pause", instance.id, "--user", "owner"])
    assert "Paused" in paused.stdout
    again = runner.invoke(app, ["instance", "pause", instance.id, "--user", "owner"])
    assert again.exit_code == 1
    runner.invoke(app, ["instance", "resume", instance.id, "--user", "owner"])

    completed = runner.invoke(
        app,
        ["task", "complete", task.id, "--user", "alice", "--action", "approve"],
    )
    assert completed.exit_code == 0, completed.stdout
    assert "Completed at completed" in completed.stdout

    shown = runner.invoke(app, ["instance", "show", instance.id, "--user", "owner"])
    assert shown.exit_code == 0
    assert "TaskCompleted:approve" in shown.stdout

    missing = runner.invoke(app, ["instance", "show", "missing-id", "--user", "owner"])
    assert missing.exit_code == 1
    assert "not found" in missing.stdout


def test_bad_json_option_is_rejected(cli_repo, graph_file):
    runner = CliRunner()
    definition = _create(runner, graph_file, cli_repo)
    result = runner.invoke(
        app,
        ["instance", "start", definition.id, "--user", "owner", "--context", "[1, 2]"],
    )
    assert result.exit_code != 0
    assert asyncio.run(cli_repo.list_instances()) == []


def test_engine_sweep_single_pass(cli_repo):
    runner = CliRunner()
    result = runner.invoke(app, ["engine", "sweep"])
    assert result.exit_code == 0
    assert "Scanned 0 instances" in result.stdout

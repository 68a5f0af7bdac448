"""Read workflow definition documents from disk."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import yaml

from ..contracts import WorkflowGraph
from ..errors import GraphParseError
from ..graph import parse_graph

_YAML_SUFFIXES = {".yaml", ".yml"}


def load_document(path: Path) -> Dict[str, Any]:
    """Load a JSON or YAML file into a mapping.

    The document is either a bare graph (``nodes`` / ``connections``) or a
    definition with ``name``, ``description``, ``category``, ``tags`` and a
    nested ``graph``.
    """
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() in _YAML_SUFFIXES:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise GraphParseError(f"{path}: {exc}") from exc
    if not isinstance(data, dict):
        raise GraphParseError(f"{path}: expected a mapping at the top level")
    return data


def graph_payload(document: Dict[str, Any]) -> Dict[str, Any]:
    graph = document.get("graph", document)
    if not isinstance(graph, dict):
        raise GraphParseError("'graph' must be a mapping")
    return graph


def load_graph(path: Path) -> WorkflowGraph:
    return parse_graph(graph_payload(load_document(path)))

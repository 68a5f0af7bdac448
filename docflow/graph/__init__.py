"""Graph parsing, validation and branch selection."""

from .conditions import evaluate_condition, select_connection
from .parser import parse_graph
from .validator import validate_definition, validate_graph

__all__ = [
    "evaluate_condition",
    "select_connection",
    "parse_graph",
    "validate_definition",
    "validate_graph",
]

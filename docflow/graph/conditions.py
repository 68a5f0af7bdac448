"""Condition evaluation for decision-node connections.

Only a deliberately small grammar is understood:

* ``key == value`` / ``key != value`` compare the context value as text
* a bare ``key`` is true when the context value is truthy (``"true"`` strings
  count, case-insensitively)
* an empty condition, ``true``, ``else`` or ``default`` always matches
* ``false`` never matches

There is no operator precedence, no boolean composition and no arithmetic.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from ..contracts import WorkflowConnection

logger = logging.getLogger(__name__)

_ALWAYS = {"", "true", "else", "default"}


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def _literal(raw: str) -> str:
    text = raw.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in {"'", '"'}:
        return text[1:-1]
    return text


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def evaluate_condition(condition: Optional[str], context: Mapping[str, Any]) -> bool:
    """Evaluate ``condition`` against ``context``."""
    expression = (condition or "").strip()
    lowered = expression.lower()
    if lowered in _ALWAYS:
        return True
    if lowered == "false":
        return False

    for operator in ("!=", "=="):
        if operator in expression:
            left, right = expression.split(operator, 1)
            key = left.strip()
            expected = _literal(right)
            present = key in context
            matches = present and _as_text(context[key]) == expected
            return not matches if operator == "!=" else matches

    return _truthy(context.get(expression))


def select_connection(
    connections: Iterable[WorkflowConnection], context: Mapping[str, Any]
) -> Optional[WorkflowConnection]:
    """Return the first connection, in declaration order, whose condition holds."""
    for connection in connections:
        if evaluate_condition(connection.condition, context):
            return connection
        logger.debug(
            f"Condition {connection.condition!r} on "
            f"{connection.source_node_id}->{connection.target_node_id} did not match"
        )
    return None

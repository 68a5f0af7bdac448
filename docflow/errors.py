"""Exceptions raised by docflow.

Expected business outcomes (missing records, refused permissions, illegal
transitions) are reported through :mod:`docflow.outcomes`. The exceptions here
signal faults a caller cannot branch on as ordinary data.
"""

from __future__ import annotations


class DocflowError(Exception):
    """Base class for docflow errors."""


class GraphParseError(DocflowError, ValueError):
    """A definition payload could not be turned into a typed graph."""


class UnsupportedBackendError(DocflowError, ValueError):
    """The configured database URL names no known backend."""


class ConcurrentModificationError(DocflowError):
    """A compare-and-swap write lost against a concurrent writer."""

    def __init__(self, entity: str, entity_id: str, detail: str = "") -> None:
        self.entity = entity
        self.entity_id = entity_id
        message = f"{entity} {entity_id} was modified concurrently"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

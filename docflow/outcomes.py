"""Result values returned by docflow operations.

Callers branch on :attr:`Outcome.kind` instead of catching exceptions for
ordinary business results such as a missing instance or a refused permission.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

from .contracts import ValidationResult

T = TypeVar("T")


class OutcomeKind(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    INVALID_STATE = "invalid_state"
    VALIDATION_FAILED = "validation_failed"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    kind: OutcomeKind
    value: Optional[T] = None
    message: str = ""
    validation: Optional[ValidationResult] = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.OK

    def unwrap(self) -> T:
        """Return the value of a successful outcome."""
        if self.kind is not OutcomeKind.OK or self.value is None:
            raise ValueError(f"outcome is {self.kind.value}: {self.message}")
        return self.value

    @classmethod
    def success(cls, value: T, message: str = "") -> "Outcome[T]":
        return cls(OutcomeKind.OK, value=value, message=message)

    @classmethod
    def not_found(cls, message: str) -> "Outcome[T]":
        return cls(OutcomeKind.NOT_FOUND, message=message)

    @classmethod
    def unauthorized(cls, message: str) -> "Outcome[T]":
        return cls(OutcomeKind.UNAUTHORIZED, message=message)

    @classmethod
    def invalid_state(cls, message: str) -> "Outcome[T]":
        return cls(OutcomeKind.INVALID_STATE, message=message)

    @classmethod
    def validation_failed(
        cls, message: str, validation: Optional[ValidationResult] = None
    ) -> "Outcome[T]":
        return cls(OutcomeKind.VALIDATION_FAILED, message=message, validation=validation)

    @classmethod
    def conflict(cls, message: str) -> "Outcome[T]":
        return cls(OutcomeKind.CONFLICT, message=message)

"""Result values returned across every public operation boundary."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum


class ErrorKind(str, Enum):
    """Failure taxonomy surfaced to callers."""

    NOT_INSTALLED = "not-installed"
    DAEMON_NOT_RUNNING = "daemon-not-running"
    OTHER = "other"
    SOFT_WARNING = "soft-warning"


@dataclass(frozen=True)
class OperationError:
    """Classified failure of an operation."""

    kind: ErrorKind
    message: str


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a single operation.

    Attributes
    ----------
    success : bool
        Whether the operation took effect
    error : OperationError | None
        Classified error when ``success`` is False
    warnings : tuple[str, ...]
        Soft warnings that did not flip the outcome to failure
    """

    success: bool
    error: OperationError | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def ok(cls, *warnings: str) -> OperationResult:
        return cls(success=True, warnings=tuple(warnings))

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> OperationResult:
        return cls(success=False, error=OperationError(kind=kind, message=message))

    @property
    def message(self) -> str | None:
        return self.error.message if self.error else None

    def with_warning(self, warning: str) -> OperationResult:
        return replace(self, warnings=self.warnings + (warning,))


@dataclass(frozen=True)
class LaunchResult(OperationResult):
    """Outcome of a launch, including whether image retrieval dominated it."""

    instance_name: str | None = None
    was_downloading: bool = False

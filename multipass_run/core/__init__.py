"""Core multipass-run functionality."""

from __future__ import annotations

from multipass_run.core.results import (
    ErrorKind,
    LaunchResult,
    OperationError,
    OperationResult,
)

__all__ = [
    "ErrorKind",
    "LaunchResult",
    "OperationError",
    "OperationResult",
]

"""Classification of multipass failure messages.

The daemon and the CLI do not expose structured error codes, so failures are
classified by substring matching on their wording. The wording has changed
between multipass releases; keep the table versioned and extend it instead of
editing patterns in place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from multipass_run.core.results import ErrorKind, OperationResult
from multipass_run.providers.exceptions import (
    ProviderCommandError,
    ProviderError,
    ProviderNotInstalledError,
)

logger = logging.getLogger(__name__)

ERROR_PATTERNS_VERSION = 1


@dataclass(frozen=True)
class ErrorPattern:
    """A rule matching when every substring in ``all_of`` occurs in a message."""

    kind: ErrorKind
    all_of: tuple[str, ...]
    since: int = 1


ERROR_PATTERNS: tuple[ErrorPattern, ...] = (
    ErrorPattern(ErrorKind.DAEMON_NOT_RUNNING, ("cannot connect to the multipass socket",)),
    ErrorPattern(ErrorKind.DAEMON_NOT_RUNNING, ("socket", "connect")),
    ErrorPattern(ErrorKind.DAEMON_NOT_RUNNING, ("service is not running",)),
    ErrorPattern(ErrorKind.NOT_INSTALLED, ("command not found",)),
    ErrorPattern(ErrorKind.NOT_INSTALLED, ("not found",)),
    ErrorPattern(ErrorKind.NOT_INSTALLED, ("No such file or directory",)),
)
"""Ordered rules; the first match wins, daemon rules are checked first."""

USER_MESSAGES = {
    ErrorKind.DAEMON_NOT_RUNNING: "Multipass daemon is not running. Please start Multipass.",
    ErrorKind.NOT_INSTALLED: "Multipass is not installed on your system",
}


def classify_message(message: str) -> ErrorKind:
    """Map a raw failure message to an ``ErrorKind``.

    Parameters
    ----------
    message : str
        Error text from stderr, stdout or an exception

    Returns
    -------
    ErrorKind
        First matching pattern kind, or ``ErrorKind.OTHER``
    """
    for pattern in ERROR_PATTERNS:
        if pattern.since > ERROR_PATTERNS_VERSION:
            continue
        if all(fragment in message for fragment in pattern.all_of):
            return pattern.kind
    return ErrorKind.OTHER


def classify_exception(error: BaseException) -> ErrorKind:
    """Classify an exception raised while running multipass."""
    if isinstance(error, ProviderNotInstalledError):
        return ErrorKind.NOT_INSTALLED
    if isinstance(error, ProviderCommandError):
        return classify_message(error.details)
    return classify_message(str(error))


def result_from_exception(
    error: BaseException, fallback: str = "Failed to execute multipass command"
) -> OperationResult:
    """Convert an exception caught at an operation boundary into a result.

    ``ProviderError`` messages are surfaced raw; other exceptions are logged
    with their traceback before conversion.
    """
    if not isinstance(error, ProviderError):
        logger.debug("Unexpected error running multipass", exc_info=error)
    message = str(error) or fallback
    return OperationResult.failure(classify_exception(error), message)

"""Exceptions raised below the operation boundary.

Public operations never let these escape; they are converted into
``OperationResult`` values by the component that issued the command.
"""

from __future__ import annotations


class ProviderError(RuntimeError):
    """Base class for failures talking to the virtualization CLI."""


class ProviderNotInstalledError(ProviderError):
    """Raised when no candidate binary location resolves to an executable.

    Parameters
    ----------
    candidates : tuple[str, ...]
        Locations that were tried, in order
    """

    def __init__(self, candidates: tuple[str, ...] | list[str]) -> None:
        self.candidates = tuple(candidates)
        tried = ", ".join(self.candidates) or "<none>"
        super().__init__(f"multipass: command not found (tried: {tried})")


class ProviderCommandError(ProviderError):
    """Raised when the binary resolved but exited non-zero.

    Parameters
    ----------
    args : list[str]
        Full argv that was executed
    returncode : int
        Process exit code
    stdout : str
        Captured standard output
    stderr : str
        Captured standard error
    """

    def __init__(
        self, args: list[str], returncode: int, stdout: str = "", stderr: str = ""
    ) -> None:
        self.argv = list(args)
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        super().__init__(self.details)

    @property
    def details(self) -> str:
        """Stderr if present, else stdout, else a generic description."""
        stderr = self.stderr.strip()
        if stderr:
            return stderr
        stdout = self.stdout.strip()
        if stdout:
            return stdout
        return f"Command failed (exit {self.returncode}): {' '.join(self.argv)}"


class ProviderParseError(ProviderError):
    """Raised when CLI output cannot be parsed as the expected JSON shape."""

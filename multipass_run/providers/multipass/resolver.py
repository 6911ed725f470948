"""Resolution of the multipass binary across install locations."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable, Sequence
from typing import Any

from multipass_run.constants import MULTIPASS_PATHS
from multipass_run.providers.exceptions import (
    ProviderCommandError,
    ProviderNotInstalledError,
)

logger = logging.getLogger(__name__)

RESOLUTION_ERRORS = (FileNotFoundError, PermissionError, NotADirectoryError)
"""OSErrors meaning "this candidate is not an executable", as opposed to a run failure."""


class CommandResolver:
    """Run multipass subcommands against the first candidate that resolves.

    A candidate that cannot be executed at all is skipped and the next one is
    tried. A candidate that executes but exits non-zero stops the search: that
    failure is real and is raised as ``ProviderCommandError``.

    Parameters
    ----------
    candidates : Sequence[str]
        Binary locations in priority order
    runner : Callable[..., subprocess.CompletedProcess[str]] | None
        Replacement for ``subprocess.run`` (for tests)
    popen_factory : Callable[..., subprocess.Popen[str]] | None
        Replacement for ``subprocess.Popen`` (for tests)
    """

    def __init__(
        self,
        candidates: Sequence[str] = MULTIPASS_PATHS,
        runner: Callable[..., subprocess.CompletedProcess[str]] | None = None,
        popen_factory: Callable[..., subprocess.Popen[str]] | None = None,
    ) -> None:
        self.candidates = tuple(candidates)
        self._runner = runner or subprocess.run
        self._popen_factory = popen_factory or subprocess.Popen

    def run(
        self, args: Sequence[str], timeout: float | None = None
    ) -> subprocess.CompletedProcess[str]:
        """Run ``<binary> *args`` and return the completed process.

        Parameters
        ----------
        args : Sequence[str]
            Subcommand and its arguments
        timeout : float | None
            Optional timeout passed to the runner

        Returns
        -------
        subprocess.CompletedProcess[str]
            Result of the first candidate that resolved and exited zero

        Raises
        ------
        ProviderCommandError
            If the resolved binary exited non-zero
        ProviderNotInstalledError
            If no candidate could be executed
        subprocess.TimeoutExpired
            If ``timeout`` elapsed
        """
        for candidate in self.candidates:
            argv = [candidate, *args]
            try:
                proc = self._runner(
                    argv,
                    capture_output=True,
                    text=True,
                    check=False,
                    timeout=timeout,
                )
            except RESOLUTION_ERRORS as e:
                logger.debug("Candidate %s did not resolve: %s", candidate, e)
                continue

            if proc.returncode != 0:
                raise ProviderCommandError(argv, proc.returncode, proc.stdout, proc.stderr)

            return proc

        raise ProviderNotInstalledError(self.candidates)

    def spawn(self, args: Sequence[str], **popen_kwargs: Any) -> subprocess.Popen[str]:
        """Start ``<binary> *args`` as a monitored subprocess.

        Candidates that fail to spawn with a resolution error are skipped.

        Raises
        ------
        ProviderNotInstalledError
            If no candidate could be spawned
        """
        for candidate in self.candidates:
            try:
                return self._popen_factory([candidate, *args], **popen_kwargs)
            except RESOLUTION_ERRORS as e:
                logger.debug("Candidate %s did not spawn: %s", candidate, e)
                continue

        raise ProviderNotInstalledError(self.candidates)

    def resolve(self) -> CommandResolver:
        """Find the working binary and return a resolver pinned to it.

        Used by multi-step flows so every step talks to the same installation.

        Raises
        ------
        ProviderCommandError
            If the resolved binary fails its version probe
        ProviderNotInstalledError
            If no candidate could be executed
        """
        for candidate in self.candidates:
            pinned = CommandResolver(
                (candidate,), runner=self._runner, popen_factory=self._popen_factory
            )
            try:
                pinned.run(["version"])
            except ProviderNotInstalledError:
                continue
            return pinned

        raise ProviderNotInstalledError(self.candidates)

    @property
    def binary(self) -> str:
        """First candidate; the binary itself for a pinned resolver."""
        return self.candidates[0]

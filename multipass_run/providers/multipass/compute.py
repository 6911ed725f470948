"""Single state-transition commands against multipass instances."""

from __future__ import annotations

import logging
import subprocess

from multipass_run.core.results import OperationResult
from multipass_run.providers.exceptions import ProviderError
from multipass_run.providers.multipass.errors import result_from_exception
from multipass_run.providers.multipass.resolver import CommandResolver

logger = logging.getLogger(__name__)


class LifecycleController:
    """Issue one multipass subcommand per lifecycle verb.

    No method checks that the instance's current state permits the
    transition; callers are responsible for that. Every method returns an
    ``OperationResult`` and never raises.

    Parameters
    ----------
    resolver : CommandResolver
        Resolver used for every command
    """

    def __init__(self, resolver: CommandResolver) -> None:
        self.resolver = resolver

    def _issue(self, verb: str, args: list[str]) -> OperationResult:
        logger.info("Running multipass %s", " ".join(args))
        try:
            self.resolver.run(args)
        except (ProviderError, OSError, subprocess.SubprocessError) as e:
            logger.error("Failed to %s: %s", verb, e)
            return result_from_exception(e, fallback=f"Failed to {verb}")
        return OperationResult.ok()

    def start(self, name: str) -> OperationResult:
        return self._issue("start instance", ["start", name])

    def stop(self, name: str) -> OperationResult:
        return self._issue("stop instance", ["stop", name])

    def suspend(self, name: str) -> OperationResult:
        return self._issue("suspend instance", ["suspend", name])

    def delete(self, name: str, purge: bool = False) -> OperationResult:
        """Delete an instance, permanently when ``purge`` is set.

        Purging an already-deleted instance is the same command.
        """
        args = ["delete", "--purge", name] if purge else ["delete", name]
        return self._issue("delete instance", args)

    def purge(self, name: str) -> OperationResult:
        return self.delete(name, purge=True)

    def recover(self, name: str) -> OperationResult:
        return self._issue("recover instance", ["recover", name])

    def purge_all(self) -> OperationResult:
        """Permanently remove every deleted instance."""
        return self._issue("purge deleted instances", ["purge"])

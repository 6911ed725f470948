"""Convergence polling after mutating operations.

Multipass applies state transitions asynchronously. After issuing a command
the caller re-reads the registry on a fixed interval until a predicate over
the instance holds or the attempt budget runs out. A timeout only ends active
observation; it is reported as a warning and never undoes a prior success.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from multipass_run.constants import POLL_INTERVAL_SECONDS, POLL_MAX_ATTEMPTS, InstanceState
from multipass_run.providers.multipass.models import Instance, InstanceLists

logger = logging.getLogger(__name__)

Predicate = Callable[[Instance | None], bool]
SnapshotCallback = Callable[[InstanceLists], None]


class InstanceSource(Protocol):
    def list_instances(self) -> InstanceLists: ...


def is_running(instance: Instance | None) -> bool:
    return instance is not None and instance.is_running


def is_running_with_address(instance: Instance | None) -> bool:
    return is_running(instance) and instance.has_address


def is_stopped(instance: Instance | None) -> bool:
    return instance is not None and InstanceState.matches(instance.state, InstanceState.STOPPED)


def is_suspended(instance: Instance | None) -> bool:
    return instance is not None and InstanceState.matches(
        instance.state, InstanceState.SUSPENDED
    )


def is_deleted(instance: Instance | None) -> bool:
    return instance is not None and instance.is_deleted


def is_gone(instance: Instance | None) -> bool:
    return instance is None


def is_recovered(instance: Instance | None) -> bool:
    return instance is not None and not instance.is_deleted


@dataclass(frozen=True)
class PollOutcome:
    """How a poll ended.

    Attributes
    ----------
    name : str
        Instance that was observed
    converged : bool
        True when the predicate held
    attempts : int
        Number of ticks executed
    instance : Instance | None
        Last observed record of the instance
    snapshot : InstanceLists | None
        Last observed registry snapshot
    cancelled : bool
        True when a newer poll for the same name superseded this one
    """

    name: str
    converged: bool
    attempts: int
    instance: Instance | None = None
    snapshot: InstanceLists | None = None
    cancelled: bool = False

    @property
    def timed_out(self) -> bool:
        return not self.converged and not self.cancelled


class ConvergencePoller:
    """Re-read the registry until a predicate holds or the budget is spent.

    Parameters
    ----------
    registry : InstanceSource
        Anything with ``list_instances()``
    interval_seconds : float
        Delay before each tick
    """

    def __init__(
        self, registry: InstanceSource, interval_seconds: float = POLL_INTERVAL_SECONDS
    ) -> None:
        self.registry = registry
        self.interval_seconds = interval_seconds

    def poll(
        self,
        name: str,
        predicate: Predicate = is_running,
        max_attempts: int = POLL_MAX_ATTEMPTS,
        on_snapshot: SnapshotCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> PollOutcome:
        """Poll until ``predicate`` holds for ``name``.

        Exactly ``min(ticks until the predicate holds, max_attempts)`` ticks
        run. Every tick pushes its snapshot to ``on_snapshot``, whether or not
        the predicate held. A tick whose registry read failed counts against
        the budget but is never taken as an observation.

        Parameters
        ----------
        name : str
            Instance name, matched exactly across active and deleted
        predicate : Predicate
            Done condition over the observed instance (None when absent)
        max_attempts : int
            Tick budget
        on_snapshot : SnapshotCallback | None
            Receives each tick's registry snapshot
        cancel_event : threading.Event | None
            Set by the owner to stop observation early

        Returns
        -------
        PollOutcome
            Converged, timed out, or cancelled, with the last observation
        """
        event = cancel_event or threading.Event()
        instance: Instance | None = None
        snapshot: InstanceLists | None = None

        for attempt in range(1, max_attempts + 1):
            if event.wait(self.interval_seconds):
                return PollOutcome(name, False, attempt - 1, instance, snapshot, cancelled=True)

            snapshot = self.registry.list_instances()

            if on_snapshot is not None:
                on_snapshot(snapshot)

            if snapshot.error is not None:
                logger.debug(
                    "Registry read failed for %s (attempt %s/%s): %s",
                    name,
                    attempt,
                    max_attempts,
                    snapshot.error.message,
                )
                continue

            instance = snapshot.find(name)
            if predicate(instance):
                logger.info("Instance %s converged after %s attempt(s)", name, attempt)
                return PollOutcome(name, True, attempt, instance, snapshot)

            logger.debug(
                "Instance %s not converged (attempt %s/%s, state=%s)",
                name,
                attempt,
                max_attempts,
                instance.state if instance else "missing",
            )

        logger.warning(
            "Instance %s is taking longer than expected (%s attempts)", name, max_attempts
        )
        return PollOutcome(name, False, max_attempts, instance, snapshot)


class PollRegistry:
    """At most one outstanding poll per instance name.

    Starting a poll for a name that is already being observed cancels the
    older poll before the new one begins, so two pollers never race on the
    same instance.

    Parameters
    ----------
    poller : ConvergencePoller
        Poller executing each poll on a background thread
    """

    def __init__(self, poller: ConvergencePoller) -> None:
        self.poller = poller
        self._lock = threading.Lock()
        self._polls: dict[str, tuple[threading.Thread, threading.Event]] = {}

    def start(
        self,
        name: str,
        predicate: Predicate = is_running,
        max_attempts: int = POLL_MAX_ATTEMPTS,
        on_snapshot: SnapshotCallback | None = None,
        on_complete: Callable[[PollOutcome], None] | None = None,
    ) -> threading.Thread:
        """Start a background poll for ``name``, superseding any existing one."""
        cancel_event = threading.Event()

        def run() -> None:
            try:
                outcome = self.poller.poll(
                    name,
                    predicate=predicate,
                    max_attempts=max_attempts,
                    on_snapshot=on_snapshot,
                    cancel_event=cancel_event,
                )
                if on_complete is not None and not outcome.cancelled:
                    on_complete(outcome)
            finally:
                with self._lock:
                    current = self._polls.get(name)
                    if current is not None and current[1] is cancel_event:
                        del self._polls[name]

        thread = threading.Thread(target=run, name=f"poll-{name}", daemon=True)

        with self._lock:
            previous = self._polls.get(name)
            if previous is not None:
                logger.debug("Cancelling outstanding poll for %s", name)
                previous[1].set()
            self._polls[name] = (thread, cancel_event)

        thread.start()
        return thread

    def cancel(self, name: str) -> bool:
        """Cancel the outstanding poll for ``name``; False if there is none."""
        with self._lock:
            current = self._polls.pop(name, None)
        if current is None:
            return False
        current[1].set()
        return True

    def cancel_all(self) -> None:
        with self._lock:
            polls = list(self._polls.values())
            self._polls.clear()
        for _, event in polls:
            event.set()

    def active(self) -> list[str]:
        with self._lock:
            return sorted(self._polls)

    def join(self, timeout: float | None = None) -> None:
        """Wait for every outstanding poll thread to finish."""
        with self._lock:
            threads = [thread for thread, _ in self._polls.values()]
        for thread in threads:
            thread.join(timeout)

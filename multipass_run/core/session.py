"""Session context: request dispatch, optimistic state and reconciliation.

A ``Session`` owns every component needed to serve requests and the small
amount of state a front end relies on between them: the last registry
snapshot and optimistic records shown while a mutating request is in flight.
Replies are pushed through the ``emit`` callback, possibly from poll threads.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from functools import partial
from typing import Any, assert_never

from multipass_run.constants import (
    LAUNCH_POLL_MAX_ATTEMPTS,
    POLL_MAX_ATTEMPTS,
    InstanceState,
)
from multipass_run.core.messages import (
    DeleteInstance,
    GetInstanceInfo,
    InfoReply,
    LaunchInstance,
    PollReply,
    ProgressReply,
    PurgeAll,
    PurgeInstance,
    RecoverInstance,
    RefreshList,
    Reply,
    Request,
    ResultReply,
    SetupSSH,
    SnapshotReply,
    StartInstance,
    StopInstance,
    SuspendInstance,
)
from multipass_run.core.polling import (
    ConvergencePoller,
    PollOutcome,
    PollRegistry,
    Predicate,
    is_deleted,
    is_gone,
    is_recovered,
    is_running,
    is_running_with_address,
    is_stopped,
    is_suspended,
)
from multipass_run.core.results import ErrorKind, OperationResult
from multipass_run.providers.multipass.compute import LifecycleController
from multipass_run.providers.multipass.launch import LaunchOrchestrator, validate_launch_spec
from multipass_run.providers.multipass.models import Instance, InstanceLists
from multipass_run.providers.multipass.registry import InstanceRegistry
from multipass_run.providers.multipass.resolver import CommandResolver
from multipass_run.services.ssh import SSHProvisioner

logger = logging.getLogger(__name__)

Emit = Callable[[Reply], None]


def _discard(reply: Reply) -> None:
    pass


class Session:
    """Serve lifecycle requests against one multipass installation.

    Parameters
    ----------
    registry : InstanceRegistry
        Read-side queries
    controller : LifecycleController
        State-transition commands
    orchestrator : LaunchOrchestrator
        Instance launches
    provisioner : SSHProvisioner
        SSH access setup and cleanup
    polls : PollRegistry
        Keyed convergence polls, at most one per instance
    emit : Emit | None
        Receives every reply
    poll_max_attempts : int
        Tick budget for start, stop, suspend, delete and recover polls
    launch_poll_max_attempts : int
        Tick budget for the post-launch poll, which also waits for an address
    """

    def __init__(
        self,
        registry: InstanceRegistry,
        controller: LifecycleController,
        orchestrator: LaunchOrchestrator,
        provisioner: SSHProvisioner,
        polls: PollRegistry,
        emit: Emit | None = None,
        poll_max_attempts: int = POLL_MAX_ATTEMPTS,
        launch_poll_max_attempts: int = LAUNCH_POLL_MAX_ATTEMPTS,
    ) -> None:
        self.registry = registry
        self.controller = controller
        self.orchestrator = orchestrator
        self.provisioner = provisioner
        self.polls = polls
        self.emit = emit or _discard
        self.poll_max_attempts = poll_max_attempts
        self.launch_poll_max_attempts = launch_poll_max_attempts
        self._lock = threading.Lock()
        self._optimistic: dict[str, Instance] = {}
        self._last_snapshot = InstanceLists()

    @classmethod
    def from_config(cls, config: dict[str, Any], emit: Emit | None = None) -> Session:
        """Build a session and its components from an effective configuration."""
        resolver = CommandResolver(config["multipass_paths"])
        registry = InstanceRegistry(resolver)
        return cls(
            registry=registry,
            controller=LifecycleController(resolver),
            orchestrator=LaunchOrchestrator(resolver, config["launch_timeout_seconds"]),
            provisioner=SSHProvisioner(
                resolver,
                key_path=config["ssh_key_path"],
                config_path=config["ssh_config_path"],
                username=config["ssh_username"],
                test_timeout=config["ssh_test_timeout_seconds"],
            ),
            polls=PollRegistry(ConvergencePoller(registry, config["poll_interval_seconds"])),
            emit=emit,
            poll_max_attempts=config["poll_max_attempts"],
            launch_poll_max_attempts=config["launch_poll_max_attempts"],
        )

    def handle(self, request: Request) -> OperationResult:
        """Serve one request and return its immediate result.

        Mutating requests also emit a ``ResultReply`` and, on success, start
        a convergence poll whose snapshots and final ``PollReply`` are
        emitted from the poll thread.
        """
        if isinstance(request, RefreshList):
            return self._refresh()
        if isinstance(request, GetInstanceInfo):
            return self._get_info(request.name)
        if isinstance(request, StartInstance):
            return self._transition(
                request, self.controller.start, is_running, InstanceState.STARTING
            )
        if isinstance(request, StopInstance):
            return self._transition(
                request, self.controller.stop, is_stopped, InstanceState.STOPPING
            )
        if isinstance(request, SuspendInstance):
            return self._transition(request, self.controller.suspend, is_suspended)
        if isinstance(request, LaunchInstance):
            return self._launch(request)
        if isinstance(request, DeleteInstance):
            return self._delete(request)
        if isinstance(request, RecoverInstance):
            return self._transition(request, self.controller.recover, is_recovered)
        if isinstance(request, PurgeInstance):
            return self._delete(request)
        if isinstance(request, PurgeAll):
            return self._purge_all(request)
        if isinstance(request, SetupSSH):
            return self._reply(request.verb, request.name, self.setup_ssh(request.name))
        assert_never(request)

    @property
    def snapshot(self) -> InstanceLists:
        """Last registry snapshot with optimistic records applied."""
        with self._lock:
            return self._overlay(self._last_snapshot)

    def optimistic_state(self, name: str) -> str | None:
        with self._lock:
            instance = self._optimistic.get(name)
        return instance.state if instance else None

    def wait_for_polls(self, timeout: float | None = None) -> None:
        self.polls.join(timeout)

    def close(self) -> None:
        """Cancel outstanding polls."""
        self.polls.cancel_all()

    def setup_ssh(self, name: str) -> OperationResult:
        """Provision SSH access after checking the instance can accept it."""
        lists = self.registry.list_instances()
        if lists.error is not None:
            return OperationResult.failure(lists.error.kind, lists.error.message)

        instance = lists.find(name)
        if instance is None or instance.is_deleted:
            return OperationResult.failure(ErrorKind.OTHER, f"Instance '{name}' not found")
        if not instance.is_running:
            return OperationResult.failure(
                ErrorKind.OTHER,
                f"Instance '{name}' must be running to set up SSH (state: {instance.state})",
            )
        if not instance.has_address:
            return OperationResult.failure(
                ErrorKind.OTHER, f"Instance '{name}' has no IP address yet"
            )

        return self.provisioner.setup_ssh_for_instance(name, instance.ipv4)

    def _reply(self, verb: str, name: str | None, result: OperationResult) -> OperationResult:
        self.emit(ResultReply(verb=verb, name=name, result=result))
        return result

    def _overlay(self, lists: InstanceLists) -> InstanceLists:
        if not self._optimistic or lists.error is not None:
            return lists
        active = [self._optimistic.get(i.name, i) for i in lists.active]
        known = {i.name for i in lists.active}
        active.extend(i for name, i in self._optimistic.items() if name not in known)
        deleted = tuple(i for i in lists.deleted if i.name not in self._optimistic)
        return InstanceLists(active=tuple(active), deleted=deleted)

    def _publish(self, lists: InstanceLists) -> None:
        """Record a fresh registry read and emit it.

        A successful read overwrites optimistic records for every name it
        contains. Records for names it lacks stay until their request ends.
        """
        with self._lock:
            if lists.error is None:
                for instance in lists.all():
                    self._optimistic.pop(instance.name, None)
                self._last_snapshot = lists
            merged = self._overlay(lists)
        self.emit(SnapshotReply(merged))

    def _set_optimistic(self, name: str, state: InstanceState) -> None:
        with self._lock:
            previous = self._optimistic.get(name) or self._last_snapshot.find(name)
            self._optimistic[name] = Instance(
                name=name,
                state=state.value,
                ipv4=previous.ipv4 if previous else "",
                release=previous.release if previous else "N/A",
            )
            merged = self._overlay(self._last_snapshot)
        self.emit(SnapshotReply(merged))

    def _clear_optimistic(self, name: str) -> None:
        with self._lock:
            if self._optimistic.pop(name, None) is None:
                return
            merged = self._overlay(self._last_snapshot)
        self.emit(SnapshotReply(merged))

    def _refresh(self) -> OperationResult:
        lists = self.registry.list_instances()
        self._publish(lists)
        if lists.error is not None:
            return OperationResult.failure(lists.error.kind, lists.error.message)
        return OperationResult.ok()

    def _get_info(self, name: str) -> OperationResult:
        info = self.registry.get_instance_info(name)
        self.emit(InfoReply(name=name, info=info))
        if info is None:
            return OperationResult.failure(
                ErrorKind.OTHER, f"Failed to get info for instance '{name}'"
            )
        return OperationResult.ok()

    def _watch(
        self,
        verb: str,
        name: str,
        predicate: Predicate,
        max_attempts: int,
        then: Callable[[PollOutcome], None] | None = None,
    ) -> None:
        def on_complete(outcome: PollOutcome) -> None:
            self._clear_optimistic(name)
            self.emit(
                PollReply(
                    verb=verb,
                    name=name,
                    converged=outcome.converged,
                    instance=outcome.instance,
                )
            )
            if then is not None:
                then(outcome)

        self.polls.start(
            name,
            predicate=predicate,
            max_attempts=max_attempts,
            on_snapshot=self._publish,
            on_complete=on_complete,
        )

    def _transition(
        self,
        request: StartInstance | StopInstance | SuspendInstance | RecoverInstance,
        command: Callable[[str], OperationResult],
        predicate: Predicate,
        optimistic: InstanceState | None = None,
    ) -> OperationResult:
        name = request.name
        if optimistic is not None:
            self._set_optimistic(name, optimistic)

        result = command(name)
        self._reply(request.verb, name, result)

        if not result.success:
            self._clear_optimistic(name)
            return result

        self._watch(request.verb, name, predicate, self.poll_max_attempts)
        return result

    def _launch(self, request: LaunchInstance) -> OperationResult:
        spec = request.spec
        try:
            validate_launch_spec(spec)
        except ValueError as e:
            return self._reply(
                request.verb, spec.name, OperationResult.failure(ErrorKind.OTHER, str(e))
            )

        if self.registry.instance_name_exists(spec.name):
            return self._reply(
                request.verb,
                spec.name,
                OperationResult.failure(
                    ErrorKind.OTHER, f"An instance named '{spec.name}' already exists"
                ),
            )

        self._set_optimistic(spec.name, InstanceState.CREATING)
        downloading = False

        def on_progress(message: str, is_downloading: bool) -> None:
            nonlocal downloading
            if is_downloading and not downloading:
                downloading = True
                self._set_optimistic(spec.name, InstanceState.DOWNLOADING_IMAGE)
            elif not is_downloading and downloading:
                downloading = False
                self._set_optimistic(spec.name, InstanceState.CREATING)
            self.emit(ProgressReply(name=spec.name, message=message, downloading=is_downloading))

        result = self.orchestrator.launch(spec, on_progress=on_progress)
        self._reply(request.verb, spec.name, result)

        if not result.success:
            self._clear_optimistic(spec.name)
            return result

        then = partial(self._setup_ssh_after_launch, spec.name) if spec.enable_ssh else None
        self._watch(
            request.verb, spec.name, is_running_with_address, self.launch_poll_max_attempts, then
        )
        return result

    def _setup_ssh_after_launch(self, name: str, outcome: PollOutcome) -> None:
        if not outcome.converged or outcome.instance is None:
            logger.warning("Instance %s never reported an IP address, skipping SSH setup", name)
            self._reply(
                SetupSSH.verb,
                name,
                OperationResult.failure(
                    ErrorKind.SOFT_WARNING,
                    f"Instance '{name}' has no IP address yet. "
                    f"Set up SSH later with: multipass-run ssh {name}",
                ),
            )
            return

        result = self.provisioner.setup_ssh_for_instance(name, outcome.instance.ipv4)
        self._reply(SetupSSH.verb, name, result)

    def _remove_ssh_config(self, name: str, result: OperationResult) -> OperationResult:
        cleanup = self.provisioner.remove_ssh_config_for_instance(name)
        if cleanup.success:
            return result
        logger.warning("SSH config cleanup for %s failed: %s", name, cleanup.message)
        return result.with_warning(cleanup.message or f"Failed to remove SSH config for '{name}'")

    def _delete(self, request: DeleteInstance | PurgeInstance) -> OperationResult:
        name = request.name
        purge = isinstance(request, PurgeInstance) or request.purge

        result = self.controller.delete(name, purge=purge)
        if result.success and purge:
            result = self._remove_ssh_config(name, result)
        self._reply(request.verb, name, result)

        if result.success:
            self._watch(
                request.verb, name, is_gone if purge else is_deleted, self.poll_max_attempts
            )
        return result

    def _purge_all(self, request: PurgeAll) -> OperationResult:
        before = self.registry.list_instances()
        result = self.controller.purge_all()

        if result.success:
            for instance in before.deleted:
                result = self._remove_ssh_config(instance.name, result)

        self._reply(request.verb, None, result)
        self._publish(self.registry.list_instances())
        return result

from __future__ import annotations

import logging
import subprocess
import sys
from collections.abc import Callable
from typing import Any

from multipass_run.core.messages import (
    DeleteInstance,
    LaunchInstance,
    PollReply,
    ProgressReply,
    PurgeAll,
    PurgeInstance,
    RecoverInstance,
    Reply,
    Request,
    ResultReply,
    SetupSSH,
    StartInstance,
    StopInstance,
    SuspendInstance,
)
from multipass_run.core.results import ErrorKind, OperationResult
from multipass_run.core.session import Emit, Session
from multipass_run.providers.multipass.launch import LaunchSpec
from multipass_run.providers.multipass.models import Instance, InstanceLists
from multipass_run.services.ssh_config import host_alias

logger = logging.getLogger(__name__)

SessionFactory = Callable[[Emit], Session]

CONVERGED_MESSAGES = {
    StartInstance.verb: "is now running",
    StopInstance.verb: "is now stopped",
    SuspendInstance.verb: "is now suspended",
    LaunchInstance.verb: "is running",
    DeleteInstance.verb: "has been deleted",
    RecoverInstance.verb: "has been recovered",
    PurgeInstance.verb: "has been purged",
}


class LifecycleManager:
    """Manages multipass instance lifecycle commands for the CLI.

    Each command prints a human-readable outcome. Failures are printed to
    stderr and exit with code 1; a convergence timeout is only a warning.

    Parameters
    ----------
    session_factory : SessionFactory
        Builds the session, given the callback receiving its replies
    log_and_print_error : Any
        Function to log and print errors to stderr
    truncate_name : Any
        Function to truncate instance names for display
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        log_and_print_error: Any,
        truncate_name: Any,
    ) -> None:
        self.log_and_print_error = log_and_print_error
        self.truncate_name = truncate_name
        self.session = session_factory(self.report)

    def report(self, reply: Reply) -> None:
        """Print replies emitted while a command runs or converges."""
        if isinstance(reply, ProgressReply):
            print(f"  {reply.message}")
        elif isinstance(reply, PollReply):
            if reply.converged:
                suffix = CONVERGED_MESSAGES.get(reply.verb, "has converged")
                details = ""
                if reply.instance is not None and reply.instance.has_address:
                    details = f" ({reply.instance.ipv4})"
                print(f"Instance {reply.name} {suffix}{details}.")
            else:
                state = reply.instance.state if reply.instance else "missing"
                logger.warning(
                    "Instance %s is taking longer than expected (last state: %s). "
                    "Check again with: multipass-run list",
                    reply.name,
                    state,
                )
        elif isinstance(reply, ResultReply) and reply.verb == SetupSSH.verb:
            self._print_ssh_result(reply.name or "", reply.result)

    def _print_ssh_result(self, name: str, result: OperationResult) -> None:
        if result.error is not None and result.error.kind is ErrorKind.SOFT_WARNING:
            logger.warning(result.error.message)
            return

        if not result.success:
            self.log_and_print_error("SSH setup for %s failed: %s", name, result.message)
            return

        for warning in result.warnings:
            logger.warning(warning)
        print(f"SSH configured. Connect with: ssh {host_alias(name)}")

    def _fail(self, result: OperationResult, fallback: str) -> None:
        self.log_and_print_error("%s", result.message or fallback)
        sys.exit(1)

    def _require_instances(self) -> InstanceLists:
        lists = self.session.registry.list_instances()
        if lists.error is not None:
            self.log_and_print_error("%s", lists.error.message)
            sys.exit(1)
        return lists

    def _find_instance(self, name: str) -> Instance:
        """Look up an instance by exact name, exiting when it does not exist."""
        instance = self._require_instances().find(name)
        if instance is None:
            self.log_and_print_error("No instance named '%s' found.", name)
            sys.exit(1)
        return instance

    def _run(self, request: Request, fallback: str) -> OperationResult:
        """Handle a mutating request and wait for its convergence poll."""
        result = self.session.handle(request)

        if not result.success:
            self._fail(result, fallback)

        for warning in result.warnings:
            logger.warning(warning)

        try:
            self.session.wait_for_polls()
        except KeyboardInterrupt:
            self.session.close()
            print("\nStopped waiting. The operation continues in the background.")

        return result

    def list(self) -> None:
        """List active and deleted instances."""
        lists = self._require_instances()

        if not lists.all():
            print("No instances found")
            return

        print(f"{'NAME':<20} {'STATE':<18} {'IPV4':<16} {'RELEASE':<20}")
        print("-" * 76)

        for instance in lists.active:
            name = self.truncate_name(instance.name)
            ipv4 = instance.ipv4 if instance.has_address else "--"
            print(f"{name:<20} {instance.state:<18} {ipv4:<16} {instance.release:<20}")

        if lists.deleted:
            print("\nDeleted (recover with: multipass-run recover NAME):")
            for instance in lists.deleted:
                print(f"  {self.truncate_name(instance.name)}")

    def info(self, name: str) -> None:
        """Display detailed information about an instance."""
        info = self.session.registry.get_instance_info(name)

        if info is None:
            self.log_and_print_error("Failed to get info for instance '%s'.", name)
            sys.exit(1)

        print(f"Instance Information: {info.name}")
        print(f"  State: {info.state}")
        print(f"  Zone: {info.zone}")
        print(f"  Snapshots: {info.snapshot_count}")
        print(f"  IPv4: {info.ipv4 or '--'}")
        print(f"  Release: {info.release}")
        print(f"  CPUs: {info.cpu_count}")
        print(f"  Load: {info.load_display}")
        print(f"  Disk usage: {info.disk_usage_display}")
        print(f"  Memory usage: {info.memory_usage_display}")
        print(f"  Mounts: {info.mounts_display}")

    def images(self) -> None:
        """List images available for launch."""
        catalog = self.session.registry.find_images()

        if catalog is None:
            self.log_and_print_error("Failed to fetch available images.")
            sys.exit(1)

        for error in catalog.errors:
            logger.warning("Image catalog: %s", error)

        print(f"{'IMAGE':<22} {'ALIASES':<24} {'VERSION':<12} {'DESCRIPTION'}")
        print("-" * 84)

        default = catalog.default_image_key
        for image in catalog.sorted_images():
            key = f"{image.name} *" if image.name == default else image.name
            aliases = ",".join(sorted(image.aliases))
            print(f"{key:<22} {aliases:<24} {image.version:<12} {image.label}")

        if catalog.blueprints:
            print("\nBlueprints:")
            for key in sorted(catalog.blueprints):
                print(f"  {key:<20} {catalog.blueprints[key].label}")

    def launch(self, spec: LaunchSpec) -> None:
        """Launch a new instance and wait until it is running with an address."""
        if spec.image and self.session.registry.is_image_already_downloaded(spec.image):
            print(f"Launching {spec.name} ({spec.image}, image already cached)...")
        else:
            print(f"Launching {spec.name}...")

        result = self._run(LaunchInstance(spec), "Failed to launch instance")

        if result.success:
            print(f"Launched {spec.name}.")

    def start(self, name: str) -> None:
        instance = self._find_instance(name)

        if instance.is_running:
            print("Instance already running")
            return

        if instance.is_deleted:
            self.log_and_print_error(
                "Instance %s is deleted. Recover it first: multipass-run recover %s",
                name,
                name,
            )
            sys.exit(1)

        print(f"Starting {name}...")
        self._run(StartInstance(name), "Failed to start instance")

    def stop(self, name: str) -> None:
        instance = self._find_instance(name)

        if instance.is_deleted:
            self.log_and_print_error("Instance %s is deleted.", name)
            sys.exit(1)

        if not instance.is_running:
            print(f"Instance already {instance.state.lower()}")
            return

        print(f"Stopping {name}...")
        self._run(StopInstance(name), "Failed to stop instance")

    def suspend(self, name: str) -> None:
        instance = self._find_instance(name)

        if not instance.is_running:
            self.log_and_print_error(
                "Instance %s is in state '%s' and cannot be suspended. "
                "Valid state for suspending: Running",
                name,
                instance.state,
            )
            sys.exit(1)

        print(f"Suspending {name}...")
        self._run(SuspendInstance(name), "Failed to suspend instance")

    def delete(self, name: str, purge: bool = False) -> None:
        instance = self._find_instance(name)

        if instance.is_deleted and not purge:
            print("Instance already deleted")
            print(f"\n  Purge with: multipass-run purge {name}")
            return

        print(f"{'Purging' if purge else 'Deleting'} {name}...")
        self._run(DeleteInstance(name, purge=purge), "Failed to delete instance")

        if not purge:
            print(f"\n  Recover with: multipass-run recover {name}")

    def recover(self, name: str) -> None:
        instance = self._find_instance(name)

        if not instance.is_deleted:
            self.log_and_print_error("Instance %s is not deleted.", name)
            sys.exit(1)

        print(f"Recovering {name}...")
        self._run(RecoverInstance(name), "Failed to recover instance")

    def purge(self, name: str | None = None) -> None:
        """Permanently remove one instance, or every deleted instance."""
        if name is not None:
            instance = self._find_instance(name)
            if instance.is_running:
                self.log_and_print_error(
                    "Instance %s is running. Stop or delete it first.", name
                )
                sys.exit(1)
            print(f"Purging {name}...")
            self._run(PurgeInstance(name), "Failed to purge instance")
            return

        deleted = self._require_instances().deleted
        if not deleted:
            print("No deleted instances to purge")
            return

        print(f"Purging {len(deleted)} deleted instance(s)...")
        self._run(PurgeAll(), "Failed to purge deleted instances")
        print("Purged: " + ", ".join(instance.name for instance in deleted))

    def ssh(self, name: str) -> None:
        """Provision SSH access to a running instance."""
        result = self.session.handle(SetupSSH(name))

        if not result.success:
            sys.exit(1)

    def connect(self, name: str) -> int:
        """Open an interactive SSH session to a provisioned instance.

        Returns
        -------
        int
            Exit code of the ``ssh`` client
        """
        result = self.session.provisioner.connect_to_instance(name)

        if not result.success:
            self._fail(result, "Failed to connect")

        logger.debug("Running %s", " ".join(result.argv))
        return subprocess.call(list(result.argv))

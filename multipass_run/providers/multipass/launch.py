"""Instance launch: spec validation, progress classification and monitoring."""

from __future__ import annotations

import logging
import re
import subprocess
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from multipass_run.constants import LAUNCH_TIMEOUT_SECONDS
from multipass_run.core.results import ErrorKind, LaunchResult, OperationError
from multipass_run.providers.exceptions import ProviderError
from multipass_run.providers.multipass.errors import classify_exception, classify_message
from multipass_run.providers.multipass.resolver import CommandResolver

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, bool], None]

INSTANCE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
SIZE_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)([KMG])$")
PERCENT_PATTERN = re.compile(r"(\d+)%")

SIZE_UNITS = {"K": 1024, "M": 1024**2, "G": 1024**3}
MIN_MEMORY_BYTES = 128 * 1024**2
MIN_DISK_BYTES = 512 * 1024**2


@dataclass(frozen=True)
class LaunchSpec:
    """Parameters of a new instance.

    Optional fields left as None are omitted from the command line so
    multipass applies its own defaults.
    """

    name: str
    image: str | None = None
    cpus: str | None = None
    memory: str | None = None
    disk: str | None = None
    enable_ssh: bool = False


def parse_size(value: str) -> int:
    """Convert a size such as ``"1.5G"`` to bytes.

    Raises
    ------
    ValueError
        If the value does not match ``<number>[KMG]``
    """
    match = SIZE_PATTERN.match(value)
    if not match:
        raise ValueError(f"Invalid size '{value}'. Format: number with K, M, or G suffix (e.g., 1G, 512M)")
    amount, unit = match.groups()
    return int(float(amount) * SIZE_UNITS[unit])


def validate_instance_name(name: str) -> None:
    if not name or not name.strip():
        raise ValueError("Instance name cannot be empty")
    if not INSTANCE_NAME_PATTERN.match(name):
        raise ValueError(
            "Instance name can only contain letters, numbers, hyphens, and underscores"
        )


def validate_cpus(cpus: str) -> None:
    try:
        count = int(cpus)
    except ValueError as e:
        raise ValueError(f"CPUs must be a positive integer, got '{cpus}'") from e
    if count < 1:
        raise ValueError(f"CPUs must be a positive integer, got '{cpus}'")


def validate_memory(memory: str) -> None:
    if parse_size(memory) < MIN_MEMORY_BYTES:
        raise ValueError("Minimum memory: 128M")


def validate_disk(disk: str) -> None:
    if parse_size(disk) < MIN_DISK_BYTES:
        raise ValueError("Minimum disk: 512M")


def validate_launch_spec(spec: LaunchSpec) -> None:
    """Validate every field of a launch spec.

    Raises
    ------
    ValueError
        Describing the first invalid field
    """
    validate_instance_name(spec.name)
    if spec.cpus is not None:
        validate_cpus(spec.cpus)
    if spec.memory is not None:
        validate_memory(spec.memory)
    if spec.disk is not None:
        validate_disk(spec.disk)


def build_launch_args(spec: LaunchSpec) -> list[str]:
    """Build the launch argv; the image token must precede ``--name``."""
    args = ["launch"]
    if spec.image:
        args.append(spec.image)
    args.extend(["--name", spec.name])
    if spec.cpus:
        args.extend(["--cpus", spec.cpus])
    if spec.memory:
        args.extend(["--memory", spec.memory])
    if spec.disk:
        args.extend(["--disk", spec.disk])
    return args


class LaunchPhase(str, Enum):
    DOWNLOADING = "downloading"
    PROVISIONING = "provisioning"


@dataclass(frozen=True)
class PhaseRule:
    """Marks ``phase`` when a stdout line contains any of ``any_of``."""

    phase: LaunchPhase
    any_of: tuple[str, ...]


PHASE_RULES: tuple[PhaseRule, ...] = (
    PhaseRule(LaunchPhase.DOWNLOADING, ("Retrieving image", "Downloading")),
    PhaseRule(LaunchPhase.PROVISIONING, ("Launching", "Starting")),
)
"""Ordered line-classification table; the first matching rule wins."""


@dataclass(frozen=True)
class LaunchProgress:
    phase: LaunchPhase
    message: str

    @property
    def downloading(self) -> bool:
        return self.phase is LaunchPhase.DOWNLOADING


def classify_line(line: str) -> LaunchProgress | None:
    """Classify one line of launch output, or None when it carries no phase."""
    for rule in PHASE_RULES:
        if not any(token in line for token in rule.any_of):
            continue
        if rule.phase is LaunchPhase.DOWNLOADING:
            percent = PERCENT_PATTERN.search(line)
            if percent:
                return LaunchProgress(rule.phase, f"Retrieving image: {percent.group(1)}%")
            return LaunchProgress(rule.phase, "Retrieving image...")
        return LaunchProgress(rule.phase, "Creating instance...")
    return None


class LaunchOrchestrator:
    """Launch instances, streaming progress when a callback is supplied.

    Parameters
    ----------
    resolver : CommandResolver
        Resolver used to run or spawn the launch command
    timeout_seconds : float
        Upper bound for a monitored launch; the process is killed after it
    """

    def __init__(
        self, resolver: CommandResolver, timeout_seconds: float = LAUNCH_TIMEOUT_SECONDS
    ) -> None:
        self.resolver = resolver
        self.timeout_seconds = timeout_seconds

    def launch(
        self, spec: LaunchSpec, on_progress: ProgressCallback | None = None
    ) -> LaunchResult:
        """Launch an instance from ``spec``.

        Parameters
        ----------
        spec : LaunchSpec
            Validated before anything is executed
        on_progress : ProgressCallback | None
            Called with ``(message, is_downloading)`` for each classified
            output line; when None, launch runs as one blocking command

        Returns
        -------
        LaunchResult
            Success with the sticky downloading flag, or a classified failure
        """
        try:
            validate_launch_spec(spec)
        except ValueError as e:
            return LaunchResult(
                success=False,
                error=_error(ErrorKind.OTHER, str(e)),
                instance_name=spec.name,
            )

        args = build_launch_args(spec)
        logger.info("Launching instance %s: multipass %s", spec.name, " ".join(args))

        if on_progress is None:
            try:
                self.resolver.run(args)
            except (ProviderError, OSError, subprocess.SubprocessError) as e:
                logger.error("Failed to launch instance %s: %s", spec.name, e)
                return LaunchResult(
                    success=False,
                    error=_error(classify_exception(e), str(e) or "Failed to launch instance"),
                    instance_name=spec.name,
                )
            return LaunchResult(success=True, instance_name=spec.name)

        try:
            proc = self.resolver.spawn(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                bufsize=1,
            )
        except (ProviderError, OSError) as e:
            logger.error("Failed to start launch of %s: %s", spec.name, e)
            return LaunchResult(
                success=False,
                error=_error(classify_exception(e), str(e)),
                instance_name=spec.name,
            )

        return self._monitor(spec.name, proc, on_progress)

    def _monitor(
        self, name: str, proc: subprocess.Popen[str], on_progress: ProgressCallback
    ) -> LaunchResult:
        stderr_parts: list[str] = []
        stdout_parts: list[str] = []
        was_downloading = False
        timed_out = threading.Event()

        def drain_stderr() -> None:
            if proc.stderr is not None:
                stderr_parts.append(proc.stderr.read())

        def kill() -> None:
            timed_out.set()
            proc.kill()

        stderr_thread = threading.Thread(target=drain_stderr, daemon=True)
        stderr_thread.start()
        timer = threading.Timer(self.timeout_seconds, kill)
        timer.daemon = True
        timer.start()

        try:
            for line in proc.stdout or ():
                stdout_parts.append(line)
                logger.debug("%s", line.rstrip(), extra={"stream": "stdout"})
                progress = classify_line(line)
                if progress is None:
                    continue
                if progress.downloading:
                    was_downloading = True
                on_progress(progress.message, progress.downloading)
            returncode = proc.wait()
        except OSError as e:
            proc.kill()
            return LaunchResult(
                success=False,
                error=_error(ErrorKind.OTHER, str(e)),
                instance_name=name,
                was_downloading=was_downloading,
            )
        except BaseException:
            proc.kill()
            raise
        finally:
            timer.cancel()
            stderr_thread.join(timeout=5)

        if timed_out.is_set():
            message = f"Launch of '{name}' timed out after {self.timeout_seconds} seconds"
            logger.error(message)
            return LaunchResult(
                success=False,
                error=_error(ErrorKind.OTHER, message),
                instance_name=name,
                was_downloading=was_downloading,
            )

        if returncode == 0:
            logger.info("Instance %s launched (downloaded image: %s)", name, was_downloading)
            return LaunchResult(success=True, instance_name=name, was_downloading=was_downloading)

        stderr = "".join(stderr_parts).strip()
        stdout = "".join(stdout_parts).strip()
        message = stderr or stdout or "Failed to launch instance"
        logger.error("Launch of %s failed (exit %s): %s", name, returncode, message)
        return LaunchResult(
            success=False,
            error=_error(classify_message(message), message),
            instance_name=name,
            was_downloading=was_downloading,
        )


def _error(kind: ErrorKind, message: str) -> OperationError:
    return OperationError(kind=kind, message=message)

"""Global constants for multipass-run.

This module contains application-wide constants that are used across multiple
components: where the multipass binary may live, how long to watch the daemon
converge, and the SSH layout managed on the local machine.
"""

from enum import Enum

MULTIPASS_PATHS = (
    "multipass",
    "/snap/bin/multipass",
    "/usr/local/bin/multipass",
    "/opt/homebrew/bin/multipass",
)
"""Candidate locations of the multipass binary, tried in order.

PATH lookup comes first since it covers most installations. The absolute
paths cover snap (Ubuntu), manual Linux installs and Homebrew on Apple Silicon,
where the binary is often missing from the PATH of GUI-launched processes.
"""

POLL_INTERVAL_SECONDS = 2.0
"""Delay between convergence poll ticks in seconds."""

POLL_MAX_ATTEMPTS = 30
"""Attempt budget for simple convergence polls (start, stop, suspend)."""

LAUNCH_POLL_MAX_ATTEMPTS = 60
"""Attempt budget for polls that must also wait for an IPv4 assignment.

Freshly launched instances report Running before cloud-init has finished
bringing up networking, so the launch flow waits twice as long.
"""

LAUNCH_TIMEOUT_SECONDS = 1800
"""Upper bound in seconds for a monitored launch subprocess.

Thirty minutes allows a first-time image download over a slow link.
"""

SSH_TEST_TIMEOUT_SECONDS = 10
"""Timeout in seconds for the post-provisioning SSH connectivity test."""

SSH_USERNAME = "ubuntu"
"""Default login user of multipass Ubuntu images."""

SSH_KEY_PATH = "~/.ssh/multipass_id_rsa"
"""Private key shared by every managed instance. The public key adds ``.pub``."""

SSH_CONFIG_PATH = "~/.ssh/config"
"""Local SSH client configuration file holding managed host blocks."""

SSH_KEY_BITS = 4096
"""RSA key size for the generated key pair."""

SSH_KEY_COMMENT = "multipass-run"
"""Comment appended to the generated public key."""

SSH_HOST_PREFIX = "multipass-"
"""Prefix of host aliases written to the SSH client configuration."""

SSH_MARKER_PREFIX = "# Multipass instance:"
"""Start of the marker comment delimiting a managed SSH config block."""

SSH_MARKER_SUFFIX = "(managed by multipass-run)"
"""Trailer of the marker comment, informational only."""

REMOTE_KEY_TEMP_PATH = "/tmp/multipass_run_key.pub"
"""Remote scratch path used while appending the public key."""

DEFAULT_IMAGE_KEY = "24.04"
"""Catalog key preselected when listing images."""

DEFAULT_NAME_COLUMN_WIDTH = 19
"""Default width in characters for the instance name column."""

EXIT_SUCCESS = 0
"""Exit code indicating successful program completion."""

EXIT_ERROR = 1
"""Exit code indicating a failed operation."""

EXIT_CONFIG_ERROR = 2
"""Exit code indicating invalid configuration or arguments."""


class InstanceState(str, Enum):
    """Instance state values.

    Values match the wording multipass prints. CREATING and
    DOWNLOADING_IMAGE are never reported by the daemon; they only appear in
    optimistic snapshots while a launch is in flight.
    """

    STOPPED = "Stopped"
    STARTING = "Starting"
    RUNNING = "Running"
    STOPPING = "Stopping"
    SUSPENDING = "Suspending"
    SUSPENDED = "Suspended"
    DELETED = "Deleted"
    RECOVERING = "Recovering"
    UNKNOWN = "Unknown"
    CREATING = "Creating"
    DOWNLOADING_IMAGE = "Downloading Image"

    @classmethod
    def matches(cls, state: str | None, expected: "InstanceState") -> bool:
        """Compare a raw state string with ``expected`` case-insensitively."""
        return (state or "").lower() == expected.value.lower()

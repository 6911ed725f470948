"""SSH access provisioning for multipass instances."""

from __future__ import annotations

import logging
import shlex
import subprocess
import tempfile
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import paramiko

from multipass_run.constants import (
    REMOTE_KEY_TEMP_PATH,
    SSH_CONFIG_PATH,
    SSH_KEY_BITS,
    SSH_KEY_COMMENT,
    SSH_KEY_PATH,
    SSH_TEST_TIMEOUT_SECONDS,
    SSH_USERNAME,
)
from multipass_run.core.results import ErrorKind, OperationError, OperationResult
from multipass_run.providers.exceptions import ProviderError
from multipass_run.providers.multipass.errors import result_from_exception
from multipass_run.providers.multipass.resolver import CommandResolver
from multipass_run.services.ssh_config import (
    SSHConfigBlock,
    has_block,
    host_alias,
    remove_block,
    upsert_block,
)
from multipass_run.utils import atomic_file_write, read_text_or_empty

logger = logging.getLogger(__name__)

ENSURE_SSH_DIR_SCRIPT = "mkdir -p ~/.ssh && chmod 700 ~/.ssh"
KEY_FOUND = "found"
KEY_NOT_FOUND = "not_found"

RUN_ERRORS = (ProviderError, OSError, subprocess.SubprocessError)
CONFIG_FILE_ERRORS = (OSError, ValueError)


class KeyGenerationError(RuntimeError):
    """Raised when the local key pair cannot be created."""


@dataclass(frozen=True)
class ConnectResult(OperationResult):
    """Outcome of resolving how to connect to an instance."""

    host_alias: str | None = None
    argv: tuple[str, ...] = field(default_factory=tuple)


class SSHProvisioner:
    """Provision key-based SSH access to instances.

    Parameters
    ----------
    resolver : CommandResolver
        Resolver for the multipass binary
    key_path : str | Path
        Private key location; the public key adds ``.pub``
    config_path : str | Path
        SSH client configuration holding managed blocks
    username : str
        Login user on the instance
    test_timeout : float
        Timeout for the connectivity test in seconds
    ssh_client_factory : Callable[[], paramiko.SSHClient] | None
        Replacement for ``paramiko.SSHClient`` (for tests)

    Attributes
    ----------
    key_path : Path
        Expanded private key path
    config_path : Path
        Expanded SSH config path
    """

    def __init__(
        self,
        resolver: CommandResolver,
        key_path: str | Path = SSH_KEY_PATH,
        config_path: str | Path = SSH_CONFIG_PATH,
        username: str = SSH_USERNAME,
        test_timeout: float = SSH_TEST_TIMEOUT_SECONDS,
        ssh_client_factory: Callable[[], paramiko.SSHClient] | None = None,
    ) -> None:
        self.resolver = resolver
        self.key_path = Path(key_path).expanduser()
        self.config_path = Path(config_path).expanduser()
        self.username = username
        self.test_timeout = test_timeout
        self._ssh_client_factory = ssh_client_factory or paramiko.SSHClient

    @property
    def public_key_path(self) -> Path:
        return self.key_path.with_name(self.key_path.name + ".pub")

    def ensure_key_pair(self) -> str:
        """Create the key pair if missing and return the public key line.

        Returns
        -------
        str
            OpenSSH public key line

        Raises
        ------
        KeyGenerationError
            If the key directory or key files cannot be created
        """
        key_dir = self.key_path.parent

        try:
            if not key_dir.exists():
                key_dir.mkdir(parents=True, mode=0o700)

            if not self.key_path.exists():
                logger.info("Generating %s-bit RSA key pair at %s", SSH_KEY_BITS, self.key_path)
                key = paramiko.RSAKey.generate(bits=SSH_KEY_BITS)
                key.write_private_key_file(str(self.key_path))
                self.public_key_path.write_text(
                    f"{key.get_name()} {key.get_base64()} {SSH_KEY_COMMENT}\n", encoding="utf-8"
                )
                self.key_path.chmod(0o600)
                self.public_key_path.chmod(0o644)
            elif not self.public_key_path.exists():
                logger.info("Restoring missing public key %s", self.public_key_path)
                key = paramiko.RSAKey.from_private_key_file(str(self.key_path))
                self.public_key_path.write_text(
                    f"{key.get_name()} {key.get_base64()} {SSH_KEY_COMMENT}\n", encoding="utf-8"
                )
                self.public_key_path.chmod(0o644)

            return self.public_key_path.read_text(encoding="utf-8").strip()
        except (OSError, paramiko.SSHException) as e:
            raise KeyGenerationError(str(e)) from e

    def _exec(self, multipass: CommandResolver, name: str, script: str) -> str:
        proc = multipass.run(["exec", name, "--", "bash", "-c", script])
        return proc.stdout or ""

    def authorize_key(self, multipass: CommandResolver, name: str, public_key: str) -> bool:
        """Append ``public_key`` to the instance's authorized keys unless present.

        Returns
        -------
        bool
            True if the key was added, False if it was already trusted
        """
        check_script = (
            f"grep -qxF -- {shlex.quote(public_key)} ~/.ssh/authorized_keys 2>/dev/null "
            f"&& echo {KEY_FOUND} || echo {KEY_NOT_FOUND}"
        )
        if self._exec(multipass, name, check_script).strip() == KEY_FOUND:
            logger.info("SSH key already present in instance %s", name)
            return False

        with tempfile.NamedTemporaryFile(
            mode="w", prefix="multipass_key_", suffix=".pub", delete=False
        ) as f:
            f.write(public_key + "\n")
            local_key = Path(f.name)

        try:
            multipass.run(["transfer", str(local_key), f"{name}:{REMOTE_KEY_TEMP_PATH}"])
            self._exec(
                multipass,
                name,
                f"cat {REMOTE_KEY_TEMP_PATH} >> ~/.ssh/authorized_keys "
                f"&& chmod 600 ~/.ssh/authorized_keys && rm -f {REMOTE_KEY_TEMP_PATH}",
            )
        finally:
            local_key.unlink(missing_ok=True)

        logger.info("SSH key added to instance %s", name)
        return True

    def write_config_block(self, name: str, ip: str) -> SSHConfigBlock:
        """Insert or replace the managed block for ``name``; mode 0600."""
        block = SSHConfigBlock(
            instance_name=name,
            hostname=ip,
            identity_file=str(self.key_path),
            user=self.username,
        )
        existing = read_text_or_empty(self.config_path)
        atomic_file_write(self.config_path, upsert_block(existing, block), mode=0o600)
        logger.info("SSH config entry for %s written as host %s (%s)", name, block.host_alias, ip)
        return block

    def test_connection(self, ip: str) -> bool:
        """Best-effort login check with host key verification disabled."""
        client = self._ssh_client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=ip,
                username=self.username,
                key_filename=str(self.key_path),
                timeout=self.test_timeout,
                auth_timeout=self.test_timeout,
                banner_timeout=self.test_timeout,
                allow_agent=False,
                look_for_keys=False,
            )
            _, stdout, _ = client.exec_command(
                "echo 'SSH connection successful'", timeout=self.test_timeout
            )
            output = stdout.read().decode("utf-8", errors="replace")
        except (paramiko.SSHException, OSError) as e:
            logger.warning(
                "SSH connection test to %s failed: %s. The connection might work after a short delay.",
                ip,
                e,
            )
            return False
        finally:
            client.close()

        if "SSH connection successful" not in output:
            logger.warning("SSH connection test returned unexpected output: %s", output.strip())
            return False

        logger.info("SSH connection test to %s passed", ip)
        return True

    def setup_ssh_for_instance(self, name: str, ip: str) -> OperationResult:
        """Provision SSH access to a running instance.

        Generates the key pair if needed, makes the instance trust it, writes
        the managed config block and tests connectivity. A failed
        connectivity test is reported as a warning only.

        Parameters
        ----------
        name : str
            Instance name
        ip : str
            Instance IPv4 address

        Returns
        -------
        OperationResult
            Success once the key and config are in place
        """
        try:
            public_key = self.ensure_key_pair()
        except KeyGenerationError as e:
            logger.error("Failed to generate SSH key: %s", e)
            return OperationResult.failure(ErrorKind.OTHER, f"Failed to generate SSH key: {e}")

        try:
            multipass = self.resolver.resolve()
        except RUN_ERRORS as e:
            logger.error("Multipass command not found: %s", e)
            return result_from_exception(e, fallback="Multipass command not found")

        try:
            self._exec(multipass, name, ENSURE_SSH_DIR_SCRIPT)
        except RUN_ERRORS as e:
            logger.error("Failed to create .ssh directory in %s: %s", name, e)
            return _prefixed(result_from_exception(e), "Failed to create .ssh directory in instance")

        try:
            self.authorize_key(multipass, name, public_key)
        except RUN_ERRORS as e:
            logger.error("Failed to add SSH key to %s: %s", name, e)
            return _prefixed(result_from_exception(e), "Failed to add SSH key to instance")

        try:
            self.write_config_block(name, ip)
        except CONFIG_FILE_ERRORS as e:
            logger.error("Failed to write SSH config %s: %s", self.config_path, e)
            return OperationResult.failure(ErrorKind.OTHER, f"Failed to write SSH config: {e}")

        if not self.test_connection(ip):
            return OperationResult.ok(
                f"SSH config was created for '{name}' but the connection test failed"
            )

        return OperationResult.ok()

    def remove_ssh_config_for_instance(self, name: str) -> OperationResult:
        """Drop the managed block for ``name``; no-op without a config file."""
        if not self.config_path.exists():
            return OperationResult.ok()

        try:
            existing = read_text_or_empty(self.config_path)
            atomic_file_write(self.config_path, remove_block(existing, name), mode=0o600)
        except CONFIG_FILE_ERRORS as e:
            logger.warning("Error removing SSH config entry for %s: %s", name, e)
            return OperationResult.failure(
                ErrorKind.SOFT_WARNING, f"Failed to remove SSH config entry for '{name}': {e}"
            )

        logger.info("Removed SSH config entry for %s", name)
        return OperationResult.ok()

    def connect_to_instance(self, name: str) -> ConnectResult:
        """Return the ``ssh`` command for a provisioned instance."""
        try:
            config_text = read_text_or_empty(self.config_path)
        except CONFIG_FILE_ERRORS as e:
            logger.error("Failed to read SSH config %s: %s", self.config_path, e)
            return ConnectResult(
                success=False,
                error=OperationError(ErrorKind.OTHER, f"Failed to read SSH config: {e}"),
            )

        if not has_block(config_text, name):
            return ConnectResult(
                success=False,
                error=OperationError(
                    ErrorKind.OTHER,
                    f"SSH is not set up for '{name}'. Run: multipass-run ssh {name}",
                ),
            )

        alias = host_alias(name)
        argv: tuple[str, ...] = ("ssh", alias)
        if self.config_path != Path(SSH_CONFIG_PATH).expanduser():
            argv = ("ssh", "-F", str(self.config_path), alias)
        return ConnectResult(success=True, host_alias=alias, argv=argv)


def _prefixed(result: OperationResult, prefix: str) -> OperationResult:
    if result.error is None:
        return result
    return OperationResult.failure(result.error.kind, f"{prefix}: {result.error.message}")

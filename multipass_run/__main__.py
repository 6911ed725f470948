#!/usr/bin/env python3
"""multipass-run - lifecycle management for Multipass instances."""

from __future__ import annotations

import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

from multipass_run.cli.parsing import build_launch_spec, parse_flag, parse_instance_name
from multipass_run.core.config import CONFIG_ENV_VAR, DEFAULT_CONFIG_FILE, ConfigLoader
from multipass_run.core.session import Emit, Session
from multipass_run.lifecycle import LifecycleManager
from multipass_run.templates import CONFIG_TEMPLATE
from multipass_run.utils import log_and_print_error, truncate_name


class MultipassRun:
    """Main CLI interface for multipass-run."""

    def __init__(
        self,
        session_factory: Callable[[Emit], Session] | None = None,
        config_path: str | None = None,
    ) -> None:
        """Initialize the CLI with optional dependency injection.

        Parameters
        ----------
        session_factory : Callable[[Emit], Session] | None
            Builds the session for lifecycle commands. If None, a session is
            built from the loaded configuration.
        config_path : str | None
            Configuration file; defaults to MULTIPASS_RUN_CONFIG, then
            multipass-run.yaml
        """
        self._config_loader = ConfigLoader()
        self._config_path = config_path
        self._session_factory_override = session_factory
        self._lifecycle_manager: LifecycleManager | None = None

    def _load_effective_config(self) -> dict[str, Any]:
        config = self._config_loader.load_config(self._config_path)
        merged = self._config_loader.get_effective_config(config)
        self._config_loader.validate_config(merged)
        return merged

    def _create_session(self, emit: Emit) -> Session:
        if self._session_factory_override is not None:
            return self._session_factory_override(emit)
        return Session.from_config(self._load_effective_config(), emit=emit)

    @property
    def lifecycle_manager(self) -> LifecycleManager:
        """Get the lifecycle manager instance."""
        if self._lifecycle_manager is None:
            self._lifecycle_manager = LifecycleManager(
                session_factory=self._create_session,
                log_and_print_error=log_and_print_error,
                truncate_name=truncate_name,
            )
        return self._lifecycle_manager

    def list(self) -> None:
        """List active and deleted instances."""
        return self.lifecycle_manager.list()

    def info(self, name: str) -> None:
        """Show detailed information about an instance."""
        return self.lifecycle_manager.info(parse_instance_name(name))

    def images(self) -> None:
        """List images available for launch."""
        return self.lifecycle_manager.images()

    def launch(
        self,
        name: str | None = None,
        image: str | None = None,
        cpus: str | int | None = None,
        memory: str | None = None,
        disk: str | None = None,
        ssh: str | bool = False,
    ) -> None:
        """Launch a new instance.

        Parameters
        ----------
        name : str | None
            Instance name; defaults to instance-<unix time>
        image : str | None
            Image or alias, e.g. 24.04 or jammy; multipass picks the default
            when omitted
        cpus : str | int | None
            Number of CPUs
        memory : str | None
            Memory size with K, M or G suffix (minimum 128M)
        disk : str | None
            Disk size with K, M or G suffix (minimum 512M)
        ssh : str | bool
            Provision SSH access once the instance has an address
        """
        spec = build_launch_spec(name, image, cpus, memory, disk, ssh)
        return self.lifecycle_manager.launch(spec)

    def start(self, name: str) -> None:
        """Start a stopped or suspended instance."""
        return self.lifecycle_manager.start(parse_instance_name(name))

    def stop(self, name: str) -> None:
        """Stop a running instance."""
        return self.lifecycle_manager.stop(parse_instance_name(name))

    def suspend(self, name: str) -> None:
        """Suspend a running instance."""
        return self.lifecycle_manager.suspend(parse_instance_name(name))

    def delete(self, name: str, purge: str | bool = False) -> None:
        """Delete an instance; with --purge it cannot be recovered."""
        return self.lifecycle_manager.delete(
            parse_instance_name(name), purge=parse_flag(purge, "purge")
        )

    def recover(self, name: str) -> None:
        """Recover a deleted instance."""
        return self.lifecycle_manager.recover(parse_instance_name(name))

    def purge(self, name: str | None = None) -> None:
        """Permanently remove one instance, or all deleted instances."""
        return self.lifecycle_manager.purge(None if name is None else parse_instance_name(name))

    def ssh(self, name: str) -> None:
        """Set up SSH access to a running instance."""
        return self.lifecycle_manager.ssh(parse_instance_name(name))

    def connect(self, name: str) -> None:
        """Open an SSH session to an instance set up with `ssh`."""
        sys.exit(self.lifecycle_manager.connect(parse_instance_name(name)))

    def init(self, force: bool = False) -> None:
        """Create a default multipass-run.yaml configuration file."""
        config_path = self._config_path or os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_FILE)
        config_file = Path(config_path)

        if config_file.exists() and not force:
            log_and_print_error(
                "%s already exists. Use --force to overwrite.",
                config_path,
            )
            sys.exit(1)

        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, "w") as f:
            f.write(CONFIG_TEMPLATE)

        print(f"Created {config_path} configuration file.")


if __name__ == "__main__":
    from multipass_run.cli.main import main

    main()

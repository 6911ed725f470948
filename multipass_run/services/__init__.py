"""Services layered on top of the provider (SSH access)."""

from __future__ import annotations

from multipass_run.services.ssh import ConnectResult, SSHProvisioner

__all__ = ["ConnectResult", "SSHProvisioner"]

"""Managed host blocks inside the local SSH client configuration.

Each managed block starts with a marker comment naming its instance and runs
up to the next ``Host`` declaration for a different alias (or the next managed
marker). Blocks are found by that marker, so rewriting one never touches
unrelated configuration.
"""

from __future__ import annotations

from dataclasses import dataclass

from multipass_run.constants import (
    SSH_HOST_PREFIX,
    SSH_MARKER_PREFIX,
    SSH_MARKER_SUFFIX,
    SSH_USERNAME,
)


def host_alias(name: str) -> str:
    return f"{SSH_HOST_PREFIX}{name}"


def marker_for(name: str) -> str:
    return f"{SSH_MARKER_PREFIX} {name}"


@dataclass(frozen=True)
class SSHConfigBlock:
    """Host block written for one instance."""

    instance_name: str
    hostname: str
    identity_file: str
    user: str = SSH_USERNAME

    @property
    def host_alias(self) -> str:
        return host_alias(self.instance_name)

    @property
    def marker(self) -> str:
        return marker_for(self.instance_name)

    def render(self) -> str:
        lines = [
            f"{self.marker} {SSH_MARKER_SUFFIX}",
            f"Host {self.host_alias}",
            f"  HostName {self.hostname}",
            f"  User {self.user}",
            f"  IdentityFile {self.identity_file}",
            "  StrictHostKeyChecking no",
            "  UserKnownHostsFile /dev/null",
            "  LogLevel ERROR",
        ]
        return "\n".join(lines) + "\n"


def _is_marker_for(line: str, name: str) -> bool:
    stripped = line.strip()
    marker = marker_for(name)
    return stripped == marker or stripped.startswith(marker + " ")


def _ends_block(line: str, alias: str) -> bool:
    stripped = line.strip()
    if stripped.startswith(SSH_MARKER_PREFIX):
        return True
    if stripped.startswith("Match "):
        return True
    if stripped.startswith("Host "):
        return alias not in stripped.split()[1:]
    return False


def strip_block(config_text: str, name: str) -> str:
    """Return ``config_text`` without the managed block(s) for ``name``."""
    alias = host_alias(name)
    kept: list[str] = []
    skipping = False

    for line in config_text.split("\n"):
        if _is_marker_for(line, name):
            skipping = True
            continue
        if skipping and _ends_block(line, alias):
            skipping = False
        if not skipping:
            kept.append(line)

    return "\n".join(kept)


def has_block(config_text: str, name: str) -> bool:
    return any(_is_marker_for(line, name) for line in config_text.split("\n"))


def upsert_block(config_text: str, block: SSHConfigBlock) -> str:
    """Replace any block for the instance and prepend the new one."""
    remainder = strip_block(config_text, block.instance_name).strip()
    if not remainder:
        return block.render()
    return f"{block.render()}\n{remainder}\n"


def remove_block(config_text: str, name: str) -> str:
    remainder = strip_block(config_text, name).strip()
    return f"{remainder}\n" if remainder else ""

"""Virtualization providers driven through their command-line clients."""

from __future__ import annotations

from multipass_run.providers.exceptions import (
    ProviderCommandError,
    ProviderError,
    ProviderNotInstalledError,
    ProviderParseError,
)

__all__ = [
    "ProviderError",
    "ProviderCommandError",
    "ProviderNotInstalledError",
    "ProviderParseError",
]

"""Multipass provider: binary resolution, queries, lifecycle and launch."""

from __future__ import annotations

from multipass_run.providers.multipass.compute import LifecycleController
from multipass_run.providers.multipass.launch import LaunchOrchestrator, LaunchSpec
from multipass_run.providers.multipass.models import (
    Image,
    ImageCatalog,
    Instance,
    InstanceInfo,
    InstanceLists,
)
from multipass_run.providers.multipass.registry import InstanceRegistry
from multipass_run.providers.multipass.resolver import CommandResolver

__all__ = [
    "CommandResolver",
    "Image",
    "ImageCatalog",
    "Instance",
    "InstanceInfo",
    "InstanceLists",
    "InstanceRegistry",
    "LaunchOrchestrator",
    "LaunchSpec",
    "LifecycleController",
]

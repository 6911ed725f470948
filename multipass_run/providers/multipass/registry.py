"""Read-side queries against multipass: list, info and image catalog."""

from __future__ import annotations

import json
import logging
import subprocess
from typing import Any

from multipass_run.core.results import OperationError
from multipass_run.providers.exceptions import ProviderError, ProviderParseError
from multipass_run.providers.multipass.errors import USER_MESSAGES, classify_exception
from multipass_run.providers.multipass.models import (
    Image,
    ImageCatalog,
    Instance,
    InstanceInfo,
    InstanceLists,
)
from multipass_run.providers.multipass.resolver import CommandResolver

logger = logging.getLogger(__name__)

BLUEPRINT_KEYS = ("blueprints (deprecated)", "blueprints")
"""Catalog keys holding blueprints, preferred first (renamed across CLI versions)."""


def _load_json(stdout: str, command: str) -> Any:
    try:
        return json.loads(stdout)
    except json.JSONDecodeError as e:
        raise ProviderParseError(f"Could not parse multipass {command} output: {e}") from e


class InstanceRegistry:
    """Query multipass and build canonical models.

    Nothing here raises: list failures are classified into
    ``InstanceLists.error``, info and find failures return None.

    Parameters
    ----------
    resolver : CommandResolver
        Resolver used for every query
    """

    def __init__(self, resolver: CommandResolver) -> None:
        self.resolver = resolver

    def list_instances(self) -> InstanceLists:
        """Return all instances partitioned into active and deleted.

        Returns
        -------
        InstanceLists
            Partitioned instances, or empty lists plus a classified error
            when the query failed
        """
        try:
            proc = self.resolver.run(["list", "--format", "json"])
            data = _load_json(proc.stdout, "list")
        except (ProviderError, OSError, subprocess.SubprocessError) as e:
            kind = classify_exception(e)
            message = USER_MESSAGES.get(kind) or str(e) or "Failed to execute multipass command"
            logger.error("Failed to list multipass instances: %s", e)
            return InstanceLists(error=OperationError(kind=kind, message=message))

        if not isinstance(data, dict) or not isinstance(data.get("list"), list):
            return InstanceLists()

        instances = [
            Instance.from_json(entry) for entry in data["list"] if isinstance(entry, dict)
        ]
        return InstanceLists.partition(instances)

    def get_instance_info(self, name: str) -> InstanceInfo | None:
        """Return detailed information for one instance, or None on failure."""
        try:
            proc = self.resolver.run(["info", name, "--format", "json"])
            data = _load_json(proc.stdout, "info")
        except (ProviderError, OSError, subprocess.SubprocessError) as e:
            logger.error("Failed to fetch info for instance %s: %s", name, e)
            return None

        info = data.get("info") if isinstance(data, dict) else None
        record = info.get(name) if isinstance(info, dict) else None
        if not isinstance(record, dict):
            return None

        return InstanceInfo.from_info_json(name, record)

    def find_images(self) -> ImageCatalog | None:
        """Return the image catalog, or None on failure."""
        try:
            proc = self.resolver.run(["find", "--format", "json"])
            data = _load_json(proc.stdout, "find")
        except (ProviderError, OSError, subprocess.SubprocessError) as e:
            logger.error("Failed to fetch multipass images: %s", e)
            return None

        if not isinstance(data, dict):
            return None

        blueprints: dict[str, Any] = {}
        for key in BLUEPRINT_KEYS:
            if data.get(key):
                blueprints = data[key]
                break

        return ImageCatalog(
            images=_parse_images(data.get("images")),
            blueprints=_parse_images(blueprints),
            errors=tuple(str(e) for e in data.get("errors") or []),
        )

    def instance_name_exists(self, name: str) -> bool:
        """Case-insensitive match against active and deleted instances.

        A failed query counts as "does not exist".
        """
        return self.list_instances().name_exists(name)

    def is_image_already_downloaded(self, release: str) -> bool:
        """Guess whether an image is cached because an instance already uses it."""
        target = release.lower()
        if not target:
            return False
        for instance in self.list_instances().all():
            instance_release = instance.release.lower()
            if not instance_release:
                continue
            if target in instance_release or instance_release in target:
                return True
        return False


def _parse_images(raw: Any) -> dict[str, Image]:
    if not isinstance(raw, dict):
        return {}
    return {
        key: Image.from_json(key, value) for key, value in raw.items() if isinstance(value, dict)
    }

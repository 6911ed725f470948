"""Canonical instance and image models parsed from multipass JSON output."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from multipass_run.constants import DEFAULT_IMAGE_KEY, InstanceState
from multipass_run.core.results import OperationError

BYTES_PER_GB = 1024**3


def format_to_gb(value: int) -> str:
    """Format a byte count as ``"<n.nn> GB"``."""
    return f"{value / BYTES_PER_GB:.2f} GB"


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _first_ipv4(raw: Any) -> str:
    if isinstance(raw, list) and raw:
        return str(raw[0])
    return ""


@dataclass(frozen=True)
class Instance:
    """One row of ``multipass list``."""

    name: str
    state: str
    ipv4: str = ""
    release: str = "N/A"

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Instance:
        return cls(
            name=data.get("name") or "Unknown",
            state=data.get("state") or InstanceState.UNKNOWN.value,
            ipv4=_first_ipv4(data.get("ipv4")),
            release=data.get("release") or "N/A",
        )

    @property
    def is_deleted(self) -> bool:
        return InstanceState.matches(self.state, InstanceState.DELETED)

    @property
    def is_running(self) -> bool:
        return InstanceState.matches(self.state, InstanceState.RUNNING)

    @property
    def has_address(self) -> bool:
        return bool(self.ipv4) and self.ipv4 != "--"


@dataclass(frozen=True)
class Usage:
    """Used and total bytes of a resource."""

    used: int
    total: int

    @classmethod
    def from_json(cls, data: Any) -> Usage | None:
        if not isinstance(data, dict):
            return None
        return cls(used=_to_int(data.get("used")), total=_to_int(data.get("total")))

    def display(self) -> str:
        return f"{format_to_gb(self.used)} / {format_to_gb(self.total)}"


@dataclass(frozen=True)
class InstanceInfo(Instance):
    """Detailed record from ``multipass info``.

    Raw values are kept alongside the display strings the UI renders.
    """

    zone: str = "N/A"
    snapshot_count: int = 0
    cpu_count: str = "N/A"
    load_averages: tuple[float, ...] = ()
    disk_usage: Usage | None = None
    memory_usage: Usage | None = None
    mounts: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_info_json(cls, name: str, data: dict[str, Any]) -> InstanceInfo:
        """Build from the per-instance object under ``info.<name>``."""
        zone = data.get("zone")
        disks = data.get("disks")
        disk_usage = None
        if isinstance(disks, dict):
            disk_usage = Usage.from_json(disks.get("sda1"))

        mounts: dict[str, str] = {}
        raw_mounts = data.get("mounts")
        if isinstance(raw_mounts, dict):
            for source, target in raw_mounts.items():
                if isinstance(target, dict):
                    mounts[source] = str(target.get("target_path") or target)
                else:
                    mounts[source] = str(target)

        load = data.get("load")
        cpu_count = data.get("cpu_count")

        return cls(
            name=name,
            state=data.get("state") or InstanceState.UNKNOWN.value,
            ipv4=_first_ipv4(data.get("ipv4")),
            release=data.get("release") or "N/A",
            zone=(zone.get("name") if isinstance(zone, dict) else None) or "N/A",
            snapshot_count=max(_to_int(data.get("snapshot_count")), 0),
            cpu_count=str(cpu_count) if cpu_count not in (None, "") else "N/A",
            load_averages=tuple(load) if isinstance(load, list) else (),
            disk_usage=disk_usage,
            memory_usage=Usage.from_json(data.get("memory")),
            mounts=mounts,
        )

    @property
    def disk_usage_display(self) -> str:
        return self.disk_usage.display() if self.disk_usage else "N/A"

    @property
    def memory_usage_display(self) -> str:
        return self.memory_usage.display() if self.memory_usage else "N/A"

    @property
    def load_display(self) -> str:
        if not self.load_averages:
            return "N/A"
        return " ".join(str(value) for value in self.load_averages)

    @property
    def mounts_display(self) -> str:
        if not self.mounts:
            return "--"
        return ", ".join(f"{source} => {target}" for source, target in self.mounts.items())


@dataclass(frozen=True)
class InstanceLists:
    """Instances partitioned into active and soft-deleted.

    ``error`` is set when the list query failed as a whole, in which case both
    lists are empty.
    """

    active: tuple[Instance, ...] = ()
    deleted: tuple[Instance, ...] = ()
    error: OperationError | None = None

    @classmethod
    def partition(cls, instances: list[Instance]) -> InstanceLists:
        return cls(
            active=tuple(i for i in instances if not i.is_deleted),
            deleted=tuple(i for i in instances if i.is_deleted),
        )

    def all(self) -> tuple[Instance, ...]:
        return self.active + self.deleted

    def find(self, name: str) -> Instance | None:
        """Exact-name lookup across both partitions, active first."""
        for instance in self.all():
            if instance.name == name:
                return instance
        return None

    def name_exists(self, name: str) -> bool:
        lowered = name.lower()
        return any(instance.name.lower() == lowered for instance in self.all())


@dataclass(frozen=True)
class Image:
    """Catalog entry from ``multipass find``."""

    name: str
    aliases: frozenset[str] = frozenset()
    os: str = ""
    release: str = ""
    remote: str = ""
    version: str = ""

    @classmethod
    def from_json(cls, key: str, data: dict[str, Any]) -> Image:
        aliases = data.get("aliases") or []
        return cls(
            name=key,
            aliases=frozenset(str(alias) for alias in aliases),
            os=data.get("os") or "",
            release=data.get("release") or "",
            remote=data.get("remote") or "",
            version=data.get("version") or "",
        )

    @property
    def is_lts(self) -> bool:
        return "LTS" in self.release

    @property
    def label(self) -> str:
        return f"{self.os} {self.release}".strip()


@dataclass(frozen=True)
class ImageCatalog:
    """Result of ``multipass find``."""

    images: dict[str, Image] = field(default_factory=dict)
    blueprints: dict[str, Image] = field(default_factory=dict)
    errors: tuple[str, ...] = ()

    def sorted_images(self) -> list[Image]:
        """LTS images first, then the rest; each group newest key first."""
        lts = sorted((i for i in self.images.values() if i.is_lts), key=lambda i: i.name, reverse=True)
        other = sorted(
            (i for i in self.images.values() if not i.is_lts), key=lambda i: i.name, reverse=True
        )
        return lts + other

    @property
    def default_image_key(self) -> str | None:
        return DEFAULT_IMAGE_KEY if DEFAULT_IMAGE_KEY in self.images else None

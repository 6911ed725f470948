"""Requests accepted by a session and the replies it emits.

Both sides are closed unions of frozen dataclasses, one variant per verb, so
dispatch can be checked for exhaustiveness with ``typing.assert_never``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from multipass_run.core.results import OperationResult
from multipass_run.providers.multipass.launch import LaunchSpec
from multipass_run.providers.multipass.models import Instance, InstanceInfo, InstanceLists


@dataclass(frozen=True)
class RefreshList:
    verb: ClassVar[str] = "refresh-list"


@dataclass(frozen=True)
class GetInstanceInfo:
    name: str
    verb: ClassVar[str] = "get-instance-info"


@dataclass(frozen=True)
class StartInstance:
    name: str
    verb: ClassVar[str] = "start"


@dataclass(frozen=True)
class StopInstance:
    name: str
    verb: ClassVar[str] = "stop"


@dataclass(frozen=True)
class SuspendInstance:
    name: str
    verb: ClassVar[str] = "suspend"


@dataclass(frozen=True)
class LaunchInstance:
    spec: LaunchSpec
    verb: ClassVar[str] = "launch"

    @property
    def name(self) -> str:
        return self.spec.name


@dataclass(frozen=True)
class DeleteInstance:
    name: str
    purge: bool = False
    verb: ClassVar[str] = "delete"


@dataclass(frozen=True)
class RecoverInstance:
    name: str
    verb: ClassVar[str] = "recover"


@dataclass(frozen=True)
class PurgeInstance:
    name: str
    verb: ClassVar[str] = "purge"


@dataclass(frozen=True)
class PurgeAll:
    verb: ClassVar[str] = "purge-all"


@dataclass(frozen=True)
class SetupSSH:
    name: str
    verb: ClassVar[str] = "setup-ssh"


Request = (
    RefreshList
    | GetInstanceInfo
    | StartInstance
    | StopInstance
    | SuspendInstance
    | LaunchInstance
    | DeleteInstance
    | RecoverInstance
    | PurgeInstance
    | PurgeAll
    | SetupSSH
)


@dataclass(frozen=True)
class SnapshotReply:
    """Full instance lists, optimistic entries already merged in."""

    lists: InstanceLists


@dataclass(frozen=True)
class InfoReply:
    name: str
    info: InstanceInfo | None


@dataclass(frozen=True)
class ProgressReply:
    name: str
    message: str
    downloading: bool


@dataclass(frozen=True)
class ResultReply:
    """One-shot outcome of a request; ``verb`` names the request it answers."""

    verb: str
    name: str | None
    result: OperationResult


@dataclass(frozen=True)
class PollReply:
    """End of convergence observation for ``name``.

    A timeout is informational: the instance may still converge later.
    """

    verb: str
    name: str
    converged: bool
    instance: Instance | None


Reply = SnapshotReply | InfoReply | ProgressReply | ResultReply | PollReply

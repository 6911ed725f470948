"""Tests for LifecycleManager command output and exit codes."""

from unittest.mock import MagicMock, patch

import pytest

from multipass_run.core.messages import (
    DeleteInstance,
    PollReply,
    ProgressReply,
    PurgeAll,
    PurgeInstance,
    ResultReply,
    StartInstance,
    StopInstance,
)
from multipass_run.core.results import ErrorKind, OperationError, OperationResult
from multipass_run.lifecycle import LifecycleManager
from multipass_run.providers.multipass.launch import LaunchSpec
from multipass_run.providers.multipass.models import (
    Image,
    ImageCatalog,
    Instance,
    InstanceInfo,
    InstanceLists,
    Usage,
)
from multipass_run.services.ssh import ConnectResult
from multipass_run.utils import log_and_print_error, truncate_name


@pytest.fixture
def session() -> MagicMock:
    session = MagicMock()
    session.handle.return_value = OperationResult.ok()
    session.registry.list_instances.return_value = InstanceLists(
        active=(
            Instance("dev", "Running", ipv4="10.0.0.2", release="Ubuntu 24.04 LTS"),
            Instance("idle", "Stopped", release="Ubuntu 22.04 LTS"),
        ),
        deleted=(Instance("old", "Deleted"),),
    )
    return session


@pytest.fixture
def manager(session: MagicMock) -> LifecycleManager:
    return LifecycleManager(
        session_factory=lambda emit: session,
        log_and_print_error=log_and_print_error,
        truncate_name=truncate_name,
    )


class TestReport:
    def test_progress(self, manager: LifecycleManager, capsys: pytest.CaptureFixture) -> None:
        manager.report(ProgressReply("dev", "Retrieving image: 42%", True))

        assert capsys.readouterr().out == "  Retrieving image: 42%\n"

    def test_converged_poll(self, manager: LifecycleManager, capsys: pytest.CaptureFixture) -> None:
        manager.report(
            PollReply("start", "dev", True, Instance("dev", "Running", ipv4="10.0.0.2"))
        )

        assert capsys.readouterr().out == "Instance dev is now running (10.0.0.2).\n"

    def test_poll_timeout_is_a_warning(
        self, manager: LifecycleManager, caplog: pytest.LogCaptureFixture
    ) -> None:
        manager.report(PollReply("stop", "dev", False, Instance("dev", "Stopping")))

        assert "taking longer than expected (last state: Stopping)" in caplog.text

    def test_ssh_success(self, manager: LifecycleManager, capsys: pytest.CaptureFixture) -> None:
        manager.report(ResultReply("setup-ssh", "dev", OperationResult.ok()))

        assert capsys.readouterr().out == "SSH configured. Connect with: ssh multipass-dev\n"

    def test_ssh_failure(self, manager: LifecycleManager, capsys: pytest.CaptureFixture) -> None:
        manager.report(
            ResultReply(
                "setup-ssh", "dev", OperationResult.failure(ErrorKind.OTHER, "permission denied")
            )
        )

        assert "SSH setup for dev failed: permission denied" in capsys.readouterr().err

    def test_ssh_soft_warning(
        self, manager: LifecycleManager, caplog: pytest.LogCaptureFixture, capsys
    ) -> None:
        manager.report(
            ResultReply(
                "setup-ssh",
                "dev",
                OperationResult.failure(ErrorKind.SOFT_WARNING, "no IP address yet"),
            )
        )

        assert "no IP address yet" in caplog.text
        assert "Error" not in capsys.readouterr().err

    def test_other_results_are_not_printed(
        self, manager: LifecycleManager, capsys: pytest.CaptureFixture
    ) -> None:
        manager.report(ResultReply("start", "dev", OperationResult.ok()))

        assert capsys.readouterr().out == ""


class TestReadCommands:
    def test_list(self, manager: LifecycleManager, capsys: pytest.CaptureFixture) -> None:
        manager.list()

        out = capsys.readouterr().out
        assert "NAME" in out
        assert "10.0.0.2" in out
        assert "Ubuntu 22.04 LTS" in out
        assert "Deleted (recover with: multipass-run recover NAME):" in out
        assert "  old" in out

    def test_list_empty(
        self, manager: LifecycleManager, session: MagicMock, capsys: pytest.CaptureFixture
    ) -> None:
        session.registry.list_instances.return_value = InstanceLists()

        manager.list()

        assert capsys.readouterr().out == "No instances found\n"

    def test_list_error_exits(
        self, manager: LifecycleManager, session: MagicMock, capsys: pytest.CaptureFixture
    ) -> None:
        session.registry.list_instances.return_value = InstanceLists(
            error=OperationError(ErrorKind.DAEMON_NOT_RUNNING, "Multipass daemon is not running.")
        )

        with pytest.raises(SystemExit) as exc_info:
            manager.list()

        assert exc_info.value.code == 1
        assert "Multipass daemon is not running." in capsys.readouterr().err

    def test_info(
        self, manager: LifecycleManager, session: MagicMock, capsys: pytest.CaptureFixture
    ) -> None:
        session.registry.get_instance_info.return_value = InstanceInfo(
            "dev",
            "Running",
            ipv4="10.0.0.2",
            cpu_count="2",
            memory_usage=Usage(used=1024**3, total=4 * 1024**3),
        )

        manager.info("dev")

        out = capsys.readouterr().out
        assert "Instance Information: dev" in out
        assert "Memory usage: 1.00 GB / 4.00 GB" in out
        assert "Disk usage: N/A" in out

    def test_info_failure_exits(self, manager: LifecycleManager, session: MagicMock) -> None:
        session.registry.get_instance_info.return_value = None

        with pytest.raises(SystemExit):
            manager.info("ghost")

    def test_images_marks_default(
        self, manager: LifecycleManager, session: MagicMock, capsys: pytest.CaptureFixture
    ) -> None:
        session.registry.find_images.return_value = ImageCatalog(
            images={
                "24.04": Image("24.04", frozenset({"noble", "lts"}), "Ubuntu", "24.04 LTS"),
                "25.04": Image("25.04", frozenset({"plucky"}), "Ubuntu", "25.04"),
            },
            blueprints={"docker": Image("docker", os="Ubuntu", release="Docker")},
        )

        manager.images()

        lines = capsys.readouterr().out.splitlines()
        assert lines[2].startswith("24.04 *")
        assert "lts,noble" in lines[2]
        assert lines[3].startswith("25.04 ")
        assert "Blueprints:" in lines


class TestMutatingCommands:
    def test_start_waits_for_convergence(
        self, manager: LifecycleManager, session: MagicMock, capsys: pytest.CaptureFixture
    ) -> None:
        manager.start("idle")

        session.handle.assert_called_once_with(StartInstance("idle"))
        session.wait_for_polls.assert_called_once()
        assert "Starting idle..." in capsys.readouterr().out

    def test_start_already_running(
        self, manager: LifecycleManager, session: MagicMock, capsys: pytest.CaptureFixture
    ) -> None:
        manager.start("dev")

        session.handle.assert_not_called()
        assert capsys.readouterr().out == "Instance already running\n"

    def test_start_deleted_instance_exits(
        self, manager: LifecycleManager, session: MagicMock
    ) -> None:
        with pytest.raises(SystemExit):
            manager.start("old")

        session.handle.assert_not_called()

    def test_unknown_instance_exits(
        self, manager: LifecycleManager, capsys: pytest.CaptureFixture
    ) -> None:
        with pytest.raises(SystemExit) as exc_info:
            manager.stop("ghost")

        assert exc_info.value.code == 1
        assert "No instance named 'ghost' found." in capsys.readouterr().err

    def test_stop_already_stopped(
        self, manager: LifecycleManager, capsys: pytest.CaptureFixture
    ) -> None:
        manager.stop("idle")

        assert capsys.readouterr().out == "Instance already stopped\n"

    def test_failed_request_exits(
        self, manager: LifecycleManager, session: MagicMock, capsys: pytest.CaptureFixture
    ) -> None:
        session.handle.return_value = OperationResult.failure(ErrorKind.OTHER, "stop failed: busy")

        with pytest.raises(SystemExit) as exc_info:
            manager.stop("dev")

        assert exc_info.value.code == 1
        assert "stop failed: busy" in capsys.readouterr().err
        session.wait_for_polls.assert_not_called()

    def test_suspend_requires_running(self, manager: LifecycleManager) -> None:
        with pytest.raises(SystemExit):
            manager.suspend("idle")

    def test_delete_prints_recover_hint(
        self, manager: LifecycleManager, session: MagicMock, capsys: pytest.CaptureFixture
    ) -> None:
        manager.delete("dev")

        session.handle.assert_called_once_with(DeleteInstance("dev", purge=False))
        assert "Recover with: multipass-run recover dev" in capsys.readouterr().out

    def test_delete_already_deleted(
        self, manager: LifecycleManager, session: MagicMock, capsys: pytest.CaptureFixture
    ) -> None:
        manager.delete("old")

        session.handle.assert_not_called()
        assert "Purge with: multipass-run purge old" in capsys.readouterr().out

    def test_recover_requires_deleted(self, manager: LifecycleManager) -> None:
        with pytest.raises(SystemExit):
            manager.recover("dev")

    def test_purge_one(self, manager: LifecycleManager, session: MagicMock) -> None:
        manager.purge("old")

        session.handle.assert_called_once_with(PurgeInstance("old"))

    def test_purge_running_instance_exits(
        self, manager: LifecycleManager, session: MagicMock, capsys: pytest.CaptureFixture
    ) -> None:
        with pytest.raises(SystemExit):
            manager.purge("dev")

        session.handle.assert_not_called()
        assert "Stop or delete it first." in capsys.readouterr().err

    def test_purge_all(
        self, manager: LifecycleManager, session: MagicMock, capsys: pytest.CaptureFixture
    ) -> None:
        manager.purge()

        session.handle.assert_called_once_with(PurgeAll())
        assert "Purged: old" in capsys.readouterr().out

    def test_purge_all_without_deleted_instances(
        self, manager: LifecycleManager, session: MagicMock, capsys: pytest.CaptureFixture
    ) -> None:
        session.registry.list_instances.return_value = InstanceLists(
            active=(Instance("dev", "Running"),)
        )

        manager.purge()

        session.handle.assert_not_called()
        assert capsys.readouterr().out == "No deleted instances to purge\n"

    def test_launch_mentions_cached_image(
        self, manager: LifecycleManager, session: MagicMock, capsys: pytest.CaptureFixture
    ) -> None:
        session.registry.is_image_already_downloaded.return_value = True

        manager.launch(LaunchSpec(name="web", image="24.04"))

        out = capsys.readouterr().out
        assert "Launching web (24.04, image already cached)..." in out
        assert "Launched web." in out

    def test_interrupt_stops_waiting(
        self, manager: LifecycleManager, session: MagicMock, capsys: pytest.CaptureFixture
    ) -> None:
        session.wait_for_polls.side_effect = KeyboardInterrupt

        manager.stop("dev")

        session.handle.assert_called_once_with(StopInstance("dev"))
        session.close.assert_called_once()
        assert "continues in the background" in capsys.readouterr().out


class TestSSHCommands:
    def test_ssh_failure_exits(self, manager: LifecycleManager, session: MagicMock) -> None:
        session.handle.return_value = OperationResult.failure(ErrorKind.OTHER, "not running")

        with pytest.raises(SystemExit) as exc_info:
            manager.ssh("idle")

        assert exc_info.value.code == 1

    def test_connect_runs_ssh(self, manager: LifecycleManager, session: MagicMock) -> None:
        session.provisioner.connect_to_instance.return_value = ConnectResult(
            success=True, host_alias="multipass-dev", argv=("ssh", "multipass-dev")
        )

        with patch("multipass_run.lifecycle.subprocess.call", return_value=0) as call:
            assert manager.connect("dev") == 0

        call.assert_called_once_with(["ssh", "multipass-dev"])

    def test_connect_without_setup_exits(
        self, manager: LifecycleManager, session: MagicMock, capsys: pytest.CaptureFixture
    ) -> None:
        session.provisioner.connect_to_instance.return_value = ConnectResult(
            success=False,
            error=OperationError(ErrorKind.OTHER, "SSH is not set up for 'dev'."),
        )

        with pytest.raises(SystemExit):
            manager.connect("dev")

        assert "SSH is not set up for 'dev'." in capsys.readouterr().err

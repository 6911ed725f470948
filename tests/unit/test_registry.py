"""Unit tests for the instance registry and its models."""

import json

import pytest
from fakes.fake_multipass import LIST_ARGS, FakeMultipass, instance_record

from multipass_run.core.results import ErrorKind
from multipass_run.providers.multipass.models import Image, ImageCatalog, Instance
from multipass_run.providers.multipass.registry import InstanceRegistry

INFO_JSON = {
    "errors": [],
    "info": {
        "dev1": {
            "state": "Running",
            "zone": {"name": "zone-a"},
            "snapshot_count": 2,
            "ipv4": ["10.0.0.2", "172.17.0.1"],
            "release": "Ubuntu 22.04.4 LTS",
            "cpu_count": "2",
            "load": [0.12, 0.05, 0.01],
            "disks": {"sda1": {"used": "2147483648", "total": "10737418240"}},
            "memory": {"used": 536870912, "total": 2147483648},
            "mounts": {"/home/me/src": {"target_path": "/home/ubuntu/src"}},
        }
    },
}


@pytest.fixture
def registry(fake_multipass: FakeMultipass) -> InstanceRegistry:
    return InstanceRegistry(fake_multipass.resolver())


class TestListInstances:
    def test_parses_running_instance(
        self, fake_multipass: FakeMultipass, registry: InstanceRegistry
    ) -> None:
        fake_multipass.respond(
            LIST_ARGS,
            stdout='{"list":[{"name":"dev1","state":"Running","ipv4":["10.0.0.2"],"release":"22.04 LTS"}]}',
        )

        lists = registry.list_instances()

        assert lists.active == (Instance("dev1", "Running", "10.0.0.2", "22.04 LTS"),)
        assert lists.deleted == ()
        assert lists.error is None

    @pytest.mark.parametrize("state", ["Deleted", "deleted", "DELETED", "dElEtEd"])
    def test_deleted_state_in_any_casing_is_partitioned(
        self, state: str, fake_multipass: FakeMultipass, registry: InstanceRegistry
    ) -> None:
        fake_multipass.set_instances(
            instance_record("keep"), instance_record("gone", state=state, ipv4=None)
        )

        lists = registry.list_instances()

        assert [i.name for i in lists.active] == ["keep"]
        assert [i.name for i in lists.deleted] == ["gone"]

    def test_missing_fields_get_defaults(
        self, fake_multipass: FakeMultipass, registry: InstanceRegistry
    ) -> None:
        fake_multipass.respond(LIST_ARGS, stdout='{"list":[{}]}')

        (instance,) = registry.list_instances().active

        assert instance == Instance(name="Unknown", state="Unknown", ipv4="", release="N/A")

    def test_daemon_not_running_is_classified(
        self, fake_multipass: FakeMultipass, registry: InstanceRegistry
    ) -> None:
        fake_multipass.respond(
            LIST_ARGS, stderr="list failed: cannot connect to the multipass socket", returncode=1
        )

        lists = registry.list_instances()

        assert lists.all() == ()
        assert lists.error.kind is ErrorKind.DAEMON_NOT_RUNNING
        assert lists.error.message == "Multipass daemon is not running. Please start Multipass."

    def test_not_installed_is_classified(self) -> None:
        fake = FakeMultipass(missing={"multipass", "/snap/bin/multipass"})
        registry = InstanceRegistry(fake.resolver(("multipass", "/snap/bin/multipass")))

        lists = registry.list_instances()

        assert lists.error.kind is ErrorKind.NOT_INSTALLED
        assert lists.error.message == "Multipass is not installed on your system"

    def test_other_failure_keeps_raw_message(
        self, fake_multipass: FakeMultipass, registry: InstanceRegistry
    ) -> None:
        fake_multipass.respond(LIST_ARGS, stderr="unexpected server reply", returncode=1)

        lists = registry.list_instances()

        assert lists.error.kind is ErrorKind.OTHER
        assert lists.error.message == "unexpected server reply"

    def test_invalid_json_is_other_error(
        self, fake_multipass: FakeMultipass, registry: InstanceRegistry
    ) -> None:
        fake_multipass.respond(LIST_ARGS, stdout="not json")

        lists = registry.list_instances()

        assert lists.error.kind is ErrorKind.OTHER

    def test_unexpected_shape_yields_empty_lists(
        self, fake_multipass: FakeMultipass, registry: InstanceRegistry
    ) -> None:
        fake_multipass.respond(LIST_ARGS, stdout='{"instances": []}')

        lists = registry.list_instances()

        assert lists.all() == ()
        assert lists.error is None


class TestInstanceNameExists:
    def test_matches_case_insensitively_across_partitions(
        self, fake_multipass: FakeMultipass, registry: InstanceRegistry
    ) -> None:
        fake_multipass.set_instances(
            instance_record("mybox"), instance_record("oldbox", state="Deleted")
        )

        assert registry.instance_name_exists("MyBox")
        assert registry.instance_name_exists("OLDBOX")
        assert not registry.instance_name_exists("other")

    def test_failed_query_counts_as_absent(
        self, fake_multipass: FakeMultipass, registry: InstanceRegistry
    ) -> None:
        fake_multipass.respond(LIST_ARGS, stderr="boom", returncode=1)

        assert not registry.instance_name_exists("mybox")


class TestGetInstanceInfo:
    def test_formats_info(self, fake_multipass: FakeMultipass, registry: InstanceRegistry) -> None:
        fake_multipass.respond(["info", "dev1", "--format", "json"], stdout=json.dumps(INFO_JSON))

        info = registry.get_instance_info("dev1")

        assert info.name == "dev1"
        assert info.state == "Running"
        assert info.zone == "zone-a"
        assert info.snapshot_count == 2
        assert info.ipv4 == "10.0.0.2"
        assert info.cpu_count == "2"
        assert info.load_display == "0.12 0.05 0.01"
        assert info.disk_usage_display == "2.00 GB / 10.00 GB"
        assert info.memory_usage_display == "0.50 GB / 2.00 GB"
        assert info.mounts_display == "/home/me/src => /home/ubuntu/src"

    def test_missing_sections_render_placeholders(
        self, fake_multipass: FakeMultipass, registry: InstanceRegistry
    ) -> None:
        fake_multipass.respond(
            ["info", "bare", "--format", "json"],
            stdout=json.dumps({"info": {"bare": {"state": "Stopped"}}}),
        )

        info = registry.get_instance_info("bare")

        assert info.zone == "N/A"
        assert info.cpu_count == "N/A"
        assert info.load_display == "N/A"
        assert info.disk_usage_display == "N/A"
        assert info.memory_usage_display == "N/A"
        assert info.mounts_display == "--"
        assert info.release == "N/A"

    def test_returns_none_on_failure(
        self, fake_multipass: FakeMultipass, registry: InstanceRegistry
    ) -> None:
        fake_multipass.respond(
            ["info", "ghost", "--format", "json"], stderr='instance "ghost" does not exist', returncode=2
        )

        assert registry.get_instance_info("ghost") is None

    def test_returns_none_when_name_missing_from_reply(
        self, fake_multipass: FakeMultipass, registry: InstanceRegistry
    ) -> None:
        fake_multipass.respond(["info", "dev1", "--format", "json"], stdout='{"info": {}}')

        assert registry.get_instance_info("dev1") is None


class TestFindImages:
    def test_prefers_deprecated_blueprints_key(
        self, fake_multipass: FakeMultipass, registry: InstanceRegistry
    ) -> None:
        payload = {
            "errors": [],
            "images": {
                "22.04": {"aliases": ["jammy"], "os": "Ubuntu", "release": "22.04 LTS", "remote": "", "version": "20240101"},
            },
            "blueprints (deprecated)": {
                "docker": {"aliases": [], "os": "", "release": "", "remote": "", "version": "latest"},
            },
            "blueprints": {
                "minikube": {"aliases": [], "os": "", "release": "", "remote": "", "version": "latest"},
            },
        }
        fake_multipass.respond(["find", "--format", "json"], stdout=json.dumps(payload))

        catalog = registry.find_images()

        assert list(catalog.blueprints) == ["docker"]
        assert catalog.images["22.04"].aliases == frozenset({"jammy"})

    def test_falls_back_to_blueprints_key(
        self, fake_multipass: FakeMultipass, registry: InstanceRegistry
    ) -> None:
        payload = {
            "images": {},
            "blueprints (deprecated)": {},
            "blueprints": {"minikube": {"version": "latest"}},
        }
        fake_multipass.respond(["find", "--format", "json"], stdout=json.dumps(payload))

        assert list(registry.find_images().blueprints) == ["minikube"]

    def test_returns_none_on_failure(
        self, fake_multipass: FakeMultipass, registry: InstanceRegistry
    ) -> None:
        fake_multipass.respond(["find", "--format", "json"], stderr="network down", returncode=1)

        assert registry.find_images() is None


class TestImageCatalog:
    def test_sorted_images_lists_lts_first_newest_first(self) -> None:
        catalog = ImageCatalog(
            images={
                "20.04": Image("20.04", release="20.04 LTS"),
                "24.10": Image("24.10", release="24.10"),
                "24.04": Image("24.04", release="24.04 LTS"),
                "25.04": Image("25.04", release="25.04"),
            }
        )

        assert [i.name for i in catalog.sorted_images()] == ["24.04", "20.04", "25.04", "24.10"]
        assert catalog.default_image_key == "24.04"

    def test_default_image_key_absent(self) -> None:
        assert ImageCatalog(images={"22.04": Image("22.04")}).default_image_key is None


class TestIsImageAlreadyDownloaded:
    def test_matches_release_in_either_direction(
        self, fake_multipass: FakeMultipass, registry: InstanceRegistry
    ) -> None:
        fake_multipass.set_instances(
            instance_record("a", release="Ubuntu 22.04.4 LTS"),
            instance_record("b", state="Deleted", release="20.04"),
        )

        assert registry.is_image_already_downloaded("22.04")
        assert registry.is_image_already_downloaded("Ubuntu 20.04 LTS")
        assert not registry.is_image_already_downloaded("24.04")

    def test_empty_release_never_matches(
        self, fake_multipass: FakeMultipass, registry: InstanceRegistry
    ) -> None:
        fake_multipass.set_instances(instance_record("a"))

        assert not registry.is_image_already_downloaded("")

    def test_failed_query_reports_false(
        self, fake_multipass: FakeMultipass, registry: InstanceRegistry
    ) -> None:
        fake_multipass.respond(LIST_ARGS, stderr="boom", returncode=1)

        assert not registry.is_image_already_downloaded("22.04")

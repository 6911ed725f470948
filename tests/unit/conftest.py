"""Pytest configuration and fixtures for multipass-run tests."""

import sys
from collections.abc import Generator
from pathlib import Path

import pytest

unit_root = Path(__file__).parent
if str(unit_root) not in sys.path:
    sys.path.insert(0, str(unit_root))

from fakes.fake_multipass import FakeMultipass  # noqa: E402


@pytest.fixture(autouse=True)
def cleanup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep configuration and debug variables from leaking into tests.

    Yields
    ------
    None
        Control back to test after ensuring clean environment
    """
    monkeypatch.delenv("MULTIPASS_RUN_CONFIG", raising=False)
    monkeypatch.delenv("MULTIPASS_RUN_DEBUG", raising=False)

    yield


@pytest.fixture
def fake_multipass() -> FakeMultipass:
    return FakeMultipass()


@pytest.fixture
def ssh_paths(tmp_path: Path) -> dict[str, Path]:
    """Key and config locations inside a temporary home directory."""
    ssh_dir = tmp_path / "home" / ".ssh"
    return {
        "key_path": ssh_dir / "multipass_id_rsa",
        "config_path": ssh_dir / "config",
    }

"""
Test session bootstrap for magic_server

Ensures that the in-repo magic_server package is importable without requiring
an editable install, and that the shared simulated engine in this directory can
be imported from both unit and integration tests.

- Adds src/ to sys.path so `import magic_server` works.
- Adds tests/ to sys.path so `import fake_engine` works.
- Sends service log files to a temporary directory.
- Skips @pytest.mark.docker tests when no engine is reachable.
"""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

import docker
import pytest


def _add_sys_path(p: Path) -> None:
    """
    Prepend a filesystem path to sys.path if it's not already present.
    """
    rp = str(p.resolve())
    if rp not in sys.path:
        sys.path.insert(0, rp)


_THIS_FILE = Path(__file__).resolve()
_TESTS_DIR = _THIS_FILE.parent
_PROJECT_DIR = _TESTS_DIR.parent

_add_sys_path(_PROJECT_DIR / "src")
_add_sys_path(_TESTS_DIR)

os.environ.setdefault("MAGIC_LOG_DIR", str(Path(tempfile.gettempdir()) / "magic_workspaces_tests"))
# Tests run unauthenticated unless a test configures keys explicitly.
os.environ.pop("WORKSPACE_API_KEY", None)
os.environ.pop("WORKSPACE_API_KEYS", None)

from fake_engine import FakeDockerClient  # noqa: E402
from magic_server.app.config import ServerConfig, get_settings  # noqa: E402
from magic_server.app.workspaces.manager import WorkspaceManager  # noqa: E402
from magic_server.app.workspaces.runtime import ContainerRuntimeClient  # noqa: E402


def _docker_available() -> bool:
    try:
        client = docker.from_env(timeout=5)
        client.ping()
        client.close()
        return True
    except Exception:
        return False


def pytest_collection_modifyitems(config, items):
    if not any(item.get_closest_marker("docker") for item in items):
        return
    if _docker_available():
        return
    skip = pytest.mark.skip(reason="Docker engine not reachable")
    for item in items:
        if item.get_closest_marker("docker"):
            item.add_marker(skip)


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(monkeypatch) -> ServerConfig:
    monkeypatch.setenv("WORKSPACE_EXEC_TIMEOUT_SECONDS", "2")
    monkeypatch.setenv("WORKSPACE_EXEC_MAX_OUTPUT_BYTES", "4096")
    monkeypatch.setenv("WORKSPACE_LOGS_TIMEOUT_SECONDS", "2")
    monkeypatch.setenv("WORKSPACE_STOP_TIMEOUT_SECONDS", "1")
    return ServerConfig.from_env(dotenv=False)


@pytest.fixture
def engine() -> FakeDockerClient:
    client = FakeDockerClient()
    yield client
    client.close()


@pytest.fixture
def runtime(settings, engine) -> ContainerRuntimeClient:
    return ContainerRuntimeClient(settings=settings, docker_client=engine)


@pytest.fixture
def manager(runtime, settings) -> WorkspaceManager:
    return WorkspaceManager(runtime, settings=settings)

"""
Pytest configuration and fixtures for harness tests.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add the project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from mqharness.core.fixture import FixtureController  # noqa: E402
from mqharness.domain.models import HarnessConfig, RunContext  # noqa: E402

pytest_plugins = ["pytester", "mqharness.core.plugin"]


@pytest.fixture
def mock_docker_client():
    """Mock Docker client whose low-level API behaves like a healthy engine."""
    client = MagicMock()
    client.ping.return_value = True

    api = client.api
    api.create_host_config.side_effect = lambda **kwargs: kwargs
    api.create_container.return_value = {"Id": "abc123"}
    api.exec_create.return_value = {"Id": "exec-1"}
    api.exec_start.return_value = b"Success\n"
    api.exec_inspect.return_value = {"Running": False, "ExitCode": 0}
    api.wait.return_value = {"StatusCode": 0}
    api.logs.return_value = b"Starting queue manager\n"
    api.inspect_container.return_value = {
        "Id": "abc123",
        "State": {"Status": "running"},
        "NetworkSettings": {
            "IPAddress": "172.17.0.2",
            "Ports": {"9443/tcp": [{"HostIp": "0.0.0.0", "HostPort": "32768"}]},
        },
    }
    api.build.return_value = iter(
        [{"stream": "Step 1/1 : FROM scratch\n"}, {"stream": "Successfully tagged\n"}]
    )

    return client


@pytest.fixture
def config(tmp_path):
    """Harness config rooted in a temporary directory, with no sleeping."""
    return HarnessConfig(
        coverage_dir=tmp_path / "coverage",
        termination_dir=tmp_path,
        exec_retry_delay=0,
        exec_poll_interval=0,
        ready_poll_interval=0,
    )


@pytest.fixture
def run():
    return RunContext(test_name="TestDevServer")


@pytest.fixture
def controller(mock_docker_client, run, config):
    return FixtureController(mock_docker_client, run, config)


@pytest.fixture
def running(controller):
    """A container that has been created and started through the controller."""
    return controller.create_and_start()

# -----------------------------------------------------------------------------
# PYTEST PLUGIN
# -----------------------------------------------------------------------------
# Exposes the harness as pytest fixtures. Registered through the pytest11
# entry point, so any suite that installs mqharness can request them:
#
#   def test_startup(fixture_controller):
#       cid = fixture_controller.create_and_start()
#       fixture_controller.wait_ready(cid, timeout=120)
#
# The fixture_controller finalizer removes every container the test created,
# whether the test passed, failed an assertion or raised.
# -----------------------------------------------------------------------------

import pytest

from mqharness.core.fixture import FixtureController
from mqharness.core.resources import ResourceManager
from mqharness.domain.models import HarnessConfig, RunContext
from mqharness.infra.docker_client import DockerProvider, DockerProviderError


@pytest.fixture(scope="session")
def harness_config() -> HarnessConfig:
    """Harness settings, read from the environment once per session."""
    return HarnessConfig.from_env()


@pytest.fixture(scope="session")
def engine_client():
    """Connected Docker client. Skips the test if no engine is reachable."""
    try:
        provider = DockerProvider()
    except DockerProviderError as e:
        pytest.skip(f"Docker Engine unavailable: {e}")
    yield provider.get_client()
    provider.close()


@pytest.fixture
def run_context(request) -> RunContext:
    return RunContext(test_name=request.node.name)


@pytest.fixture
def fixture_controller(engine_client, run_context, harness_config):
    controller = FixtureController(engine_client, run_context, harness_config)
    yield controller
    controller.release_all()


@pytest.fixture
def resource_manager(engine_client, run_context) -> ResourceManager:
    return ResourceManager(engine_client, run_context)

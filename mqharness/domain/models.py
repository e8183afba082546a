# Copyright 2026 Pramod Kumar Voola
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

# -----------------------------------------------------------------------------
# DOMAIN MODELS - FIXTURE CONTRACT
# -----------------------------------------------------------------------------
# These Pydantic models define what a test asks of the harness: which image
# to run, which files go into a build context, what configuration the run
# uses, and what an exec session hands back.
#
# Configuration is read from the environment exactly once (from_env) and then
# passed explicitly to every controller. Nothing below reads os.environ later.
# -----------------------------------------------------------------------------

import os
import re
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_IMAGE = "mq-devserver:latest-x86-64"

# Fixed in-container locations the image under test expects
COVERAGE_MOUNT = "/var/coverage"
TERMINATION_LOG_MOUNT = "/dev/termination-log"

# Characters the engine accepts in container and volume names
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class ContainerState(str, Enum):
    """
    Lifecycle of a fixture container.

    absent -> created -> running -> (ready) -> exited | stopped -> removed

    READY is only reached through wait_ready. REMOVED is reachable from
    every other state.
    """

    ABSENT = "absent"
    CREATED = "created"
    RUNNING = "running"
    READY = "ready"
    EXITED = "exited"
    STOPPED = "stopped"
    REMOVED = "removed"


class BuildFile(BaseModel):
    """A single file placed in an image build context."""

    name: str = Field(..., min_length=1, description="Path inside the build context")
    body: str = Field("", description="File contents")


class ContainerSpec(BaseModel):
    """
    What a test wants to run.

    An empty image means "use the configured image". Binds are extra
    host:container mounts added on top of the coverage and termination-log
    binds the harness always attaches.
    """

    image: str = ""
    command: list[str] | None = None
    entrypoint: list[str] | None = None
    env: list[str] = Field(default_factory=list)
    binds: list[str] = Field(default_factory=list)


class ExecResult(BaseModel):
    """Outcome of an exec session: exit code and trimmed combined output."""

    exit_code: int
    output: str = ""


class RunContext(BaseModel):
    """
    Identity of the currently running test.

    Every per-test resource (container, volume, coverage file,
    termination log, image tag) is keyed on this name so that tests never
    share a resource by accident.
    """

    test_name: str = Field(..., min_length=1)

    @property
    def safe_name(self) -> str:
        return _UNSAFE_NAME_CHARS.sub("_", self.test_name)

    @property
    def container_name(self) -> str:
        return self.safe_name

    @property
    def volume_name(self) -> str:
        return self.safe_name

    @property
    def image_tag(self) -> str:
        return self.safe_name.lower()

    @property
    def coverage_file(self) -> str:
        return f"{self.safe_name}.cov"

    def termination_log(self, directory: Path) -> Path:
        """Host path of this test's termination log inside `directory`."""
        return directory / f"{self.safe_name}-termination-log"


class HarnessConfig(BaseModel):
    """
    Settings for a harness run.

    Fields:
    - image: default image when a ContainerSpec leaves it empty
    - cover: honour the coverage exit-code override file
    - coverage_dir: host directory bind-mounted at /var/coverage
    - termination_dir: host directory holding termination-log files; must be
      visible to the engine so the bind mount can be made
    - web_port: the service's fixed internal HTTPS port
    - stop_timeout: grace period (seconds) given to a stopping container
    - log_timeout: bound (seconds) on container log retrieval
    - exec_retry_delay / max_exec_retries: backoff for "exec already running"
    - exec_poll_interval: sleep between exec-inspect polls
    - ready_poll_interval / ready_command / ready_user: readiness probe
    """

    image: str = DEFAULT_IMAGE
    cover: bool = False
    coverage_dir: Path = Field(default_factory=lambda: Path.cwd() / "coverage")
    termination_dir: Path = Path("/tmp")
    web_port: int = 9443
    stop_timeout: int = Field(10, ge=0)
    log_timeout: float = Field(5.0, gt=0)
    exec_retry_delay: float = Field(1.0, ge=0)
    max_exec_retries: int = Field(30, ge=0)
    exec_poll_interval: float = Field(0.1, ge=0)
    ready_poll_interval: float = Field(1.0, ge=0)
    ready_command: list[str] = Field(default_factory=lambda: ["chkmqready"])
    ready_user: str = "mqm"

    class Config:
        """Configuration is fixed once a run starts."""

        frozen = True

    @classmethod
    def from_env(cls, cwd: Path | None = None) -> "HarnessConfig":
        """
        Build a config from TEST_IMAGE and TEST_COVER.

        A .env file in the working directory is loaded first, without
        overriding variables that are already set.
        """
        load_dotenv()
        base = cwd or Path.cwd()
        cover = os.getenv("TEST_COVER", "")
        return cls(
            image=os.getenv("TEST_IMAGE", DEFAULT_IMAGE),
            cover=cover in ("true", "1"),
            coverage_dir=base / "coverage",
        )

    @property
    def web_port_key(self) -> str:
        return f"{self.web_port}/tcp"

    @property
    def coverage_bind(self) -> str:
        return f"{self.coverage_dir}:{COVERAGE_MOUNT}"

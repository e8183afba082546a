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
# THE FIXTURE CONTROLLER - CONTAINER LIFECYCLE
# -----------------------------------------------------------------------------
# Responsibility: Owns every container a test creates, from create to remove.
#
#   create -> mounts/ports -> start -> probe-ready -> exec/inspect
#          -> diagnostics -> stop -> remove
#
# Error tiers:
# - Fatal: create, start, wait, exec and build failures raise FixtureError.
#   The fixture itself is broken and later assertions would be meaningless.
# - Diagnostic: inspect-before-stop, log capture and the termination message
#   are logged and ignored. They never prevent cleanup.
# - Transient: "exec already running" is retried after a fixed delay, up to
#   HarnessConfig.max_exec_retries times.
# -----------------------------------------------------------------------------

import io
import json
import re
import threading
import time
from pathlib import Path

from docker import DockerClient
from docker.errors import APIError, DockerException
from requests.exceptions import RequestException
from rich.console import Console
from rich.markup import escape

from mqharness.core.archive import FileSet, generate_tar
from mqharness.domain.models import (
    TERMINATION_LOG_MOUNT,
    ContainerSpec,
    ContainerState,
    ExecResult,
    HarnessConfig,
    RunContext,
)

console = Console()

# Configuration
ONE_SHOT_WAIT_SECONDS = 10
COVERAGE_OUTPUT = "container.cov"  # Written by the instrumented binary on exit
COVERAGE_EXIT_CODE = "exitCode"  # Real exit status when coverage is enabled

# Errors the SDK surfaces: API errors and transport-level failures
ENGINE_ERRORS = (DockerException, RequestException)
CLEANUP_ERRORS = (*ENGINE_ERRORS, OSError)

# In-band form, as printed by the engine into the exec output stream
_EXEC_CONFLICT = re.compile(r"Error: Exec command .* is already running")
# API error bodies carry the same message without the "Error: " prefix
_API_EXEC_CONFLICT = re.compile(r"exec command .* is already running", re.IGNORECASE)


class FixtureError(Exception):
    """Raised when the fixture itself is broken (create, start, wait, remove...)."""

    def __init__(self, message: str, container_id: str | None = None) -> None:
        super().__init__(message)
        self.container_id = container_id


class FixtureStateError(FixtureError):
    """Raised when an operation is not legal in the container's current state."""

    pass


class FixtureTimeoutError(FixtureError):
    """Raised when a readiness probe does not succeed within its timeout."""

    pass


class ExecConflictError(FixtureError):
    """Raised when the engine reports that the exec command is already running."""

    pass


class BuildError(FixtureError):
    """Raised when the engine reports an image build error."""

    def __init__(self, message: str, tag: str) -> None:
        super().__init__(message)
        self.tag = tag


def is_exec_conflict(text: str) -> bool:
    """True if exec output carries the engine's "already running" error."""
    return bool(_EXEC_CONFLICT.search(text))


def is_api_exec_conflict(error: APIError) -> bool:
    """True if an API error is the engine's "already running" conflict."""
    return bool(_API_EXEC_CONFLICT.search(str(error)))


def reduce_json_logs(logs: str) -> str:
    """
    Reduce JSON-structured log lines to their message field.

    Lines starting with "{" are parsed as JSON and rewritten as
    {"message": "<message>"}; anything else is passed through unchanged.
    """
    lines = []
    for line in logs.splitlines():
        if line.startswith("{"):
            try:
                entry = json.loads(line)
            except ValueError:
                lines.append(line)
                continue
            message = entry.get("message", "") if isinstance(entry, dict) else ""
            lines.append(f'{{"message": "{message}"}}')
        else:
            lines.append(line)
    return "".join(f"{line}\n" for line in lines)


class FixtureController:
    """
    Lifecycle manager for the disposable containers of one test.

    Every container created through the controller is tracked with its
    ContainerState. release_all() stops and removes whatever is left, so a
    test that fails half-way does not leak containers into the next run.
    """

    def __init__(self, client: DockerClient, run: RunContext, config: HarnessConfig) -> None:
        """
        Initialize the controller.

        Args:
            client: Connected Docker SDK client.
            run: Identity of the test that owns the containers.
            config: Harness settings, read once for the whole run.
        """
        self._client = client
        self._api = client.api
        self._run = run
        self._config = config
        self._states: dict[str, ContainerState] = {}

    @property
    def run(self) -> RunContext:
        return self._run

    @property
    def config(self) -> HarnessConfig:
        return self._config

    @property
    def termination_log(self) -> Path:
        return self._run.termination_log(self._config.termination_dir)

    def state(self, container_id: str) -> ContainerState:
        """Current state of a container, ABSENT if this controller never created it."""
        return self._states.get(container_id, ContainerState.ABSENT)

    def tracked(self) -> list[str]:
        """IDs of containers created by this controller and not yet removed."""
        return [cid for cid, s in self._states.items() if s is not ContainerState.REMOVED]

    # -------------------------------------------------------------------------
    # Mounts
    # -------------------------------------------------------------------------

    def _termination_bind(self) -> str:
        """
        Create an empty termination-log file and return its bind string.

        A bind mount is used because files under /dev cannot be copied out
        of a container. The file must exist before the container starts.
        """
        path = self.termination_log
        path.unlink(missing_ok=True)
        path.touch(mode=0o600)
        return f"{path}:{TERMINATION_LOG_MOUNT}"

    def termination_message(self) -> str:
        """Returns the termination message, or an empty string if not set."""
        try:
            return self.termination_log.read_text()
        except OSError as e:
            console.print(f"[yellow][FIXTURE] No termination message: {escape(str(e))}[/yellow]")
            return ""

    def expect_termination_message(self) -> str:
        message = self.termination_message()
        if not message:
            raise AssertionError("Expected termination message to be set")
        return message

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def create_and_start(self, spec: ContainerSpec | None = None) -> str:
        """
        Create and start a container for the current test.

        If `spec` names no image, the configured image is used. The
        coverage directory and the termination log are always bind-mounted,
        and the web port is published on a host port the engine picks.

        Args:
            spec: What to run. Defaults to the configured image's entrypoint.

        Returns:
            The container ID.

        Raises:
            FixtureError: If the engine rejects create or start.
        """
        spec = spec or ContainerSpec()
        image = spec.image or self._config.image
        environment = [*spec.env, f"COVERAGE_FILE={self._run.coverage_file}"]

        try:
            self._config.coverage_dir.mkdir(parents=True, exist_ok=True)
            termination_bind = self._termination_bind()
        except OSError as e:
            console.print(f"[red][FIXTURE] Bind setup failed: {escape(str(e))}[/red]")
            raise FixtureError(f"Failed to prepare bind mounts for {image}: {e}") from e
        binds = [self._config.coverage_bind, termination_bind, *spec.binds]

        console.print(f"[cyan][FIXTURE] Running container ({image})[/cyan]")
        try:
            host_config = self._api.create_host_config(
                binds=binds,
                # HostIp only: the engine assigns a free host port
                port_bindings={self._config.web_port_key: ("0.0.0.0", None)},
            )
            response = self._api.create_container(
                image,
                command=spec.command,
                entrypoint=spec.entrypoint,
                environment=environment,
                ports=[self._config.web_port],
                name=self._run.container_name,
                host_config=host_config,
            )
        except ENGINE_ERRORS as e:
            console.print(f"[red][FIXTURE] Create failed: {escape(str(e))}[/red]")
            self.termination_log.unlink(missing_ok=True)
            raise FixtureError(f"Failed to create container from {image}: {e}") from e

        container_id = response["Id"]
        self._states[container_id] = ContainerState.CREATED

        try:
            self.start(container_id)
        except FixtureError:
            try:
                self.stop_and_remove(container_id)
            except FixtureError as cleanup_error:
                console.print(f"[yellow][CLEANUP] {escape(str(cleanup_error))}[/yellow]")
            raise

        return container_id

    def start(self, container_id: str) -> None:
        console.print(f"[cyan][FIXTURE] Starting container: {container_id}[/cyan]")
        try:
            self._api.start(container_id)
        except ENGINE_ERRORS as e:
            console.print(f"[red][FIXTURE] Start failed: {escape(str(e))}[/red]")
            raise FixtureError(f"Failed to start container {container_id}: {e}", container_id) from e
        self._states[container_id] = ContainerState.RUNNING

    def stop(self, container_id: str) -> None:
        """Stop a container, giving it the configured grace period."""
        console.print(f"[cyan][FIXTURE] Stopping container: {container_id}[/cyan]")
        try:
            self._api.stop(container_id, timeout=self._config.stop_timeout)
        except ENGINE_ERRORS as e:
            raise FixtureError(f"Failed to stop container {container_id}: {e}", container_id) from e
        self._states[container_id] = ContainerState.STOPPED

    def run_one_shot(self, *command: str) -> tuple[int, str]:
        """
        Run `command` as the entrypoint of a fresh container.

        Returns:
            Tuple of (exit_code, console_log). The container is always removed.
        """
        container_id = self.create_and_start(ContainerSpec(entrypoint=list(command)))
        try:
            exit_code = self.wait_exit(container_id, ONE_SHOT_WAIT_SECONDS)
            return exit_code, self.inspect_logs(container_id)
        finally:
            self.stop_and_remove(container_id)

    def wait_exit(self, container_id: str, timeout: float | None = None) -> int:
        """
        Block until the container exits and return its exit code.

        Args:
            container_id: Container to wait for.
            timeout: Seconds to wait. None waits as long as the engine does.

        Raises:
            FixtureError: If the engine wait fails or times out.
        """
        try:
            result = self._api.wait(container_id, timeout=timeout)
        except ENGINE_ERRORS as e:
            raise FixtureError(f"Failed waiting for container {container_id}: {e}", container_id) from e

        self._states[container_id] = ContainerState.EXITED
        exit_code = result["StatusCode"]

        if self._config.cover:
            # Coverage output is only produced on a clean exit, so the
            # instrumented binary writes its real exit code to a file instead
            exit_code = self.coverage_exit_code(exit_code)
        return exit_code

    def coverage_exit_code(self, original: int) -> int:
        """
        Exit code from the coverage exit-code file, or `original` if unusable.

        The file is deleted once read, even when its contents are invalid.
        """
        path = self._config.coverage_dir / COVERAGE_EXIT_CODE
        if not path.exists():
            console.print(f"[dim][FIXTURE] No coverage exit code at {path}[/dim]")
            return original
        try:
            exit_code = int(path.read_text().strip())
        except (OSError, ValueError) as e:
            console.print(f"[yellow][FIXTURE] Ignoring coverage exit code: {escape(str(e))}[/yellow]")
            return original
        finally:
            path.unlink(missing_ok=True)

        console.print(f"[cyan][FIXTURE] Retrieved exit code {exit_code} from file[/cyan]")
        return exit_code

    # -------------------------------------------------------------------------
    # Exec
    # -------------------------------------------------------------------------

    def exec_command(self, container_id: str, user: str, cmd: list[str]) -> ExecResult:
        """
        Run a command in a running container.

        Args:
            container_id: A RUNNING or READY container.
            user: User to run the command as.
            cmd: argv of the command.

        Returns:
            ExecResult with the exit code and trimmed combined output.

        Raises:
            FixtureStateError: If the container is not running.
            ExecConflictError: If the engine keeps reporting the exec as
                already running after max_exec_retries retries.
            FixtureError: On any other engine error.
        """
        state = self.state(container_id)
        if state not in (ContainerState.RUNNING, ContainerState.READY):
            raise FixtureStateError(
                f"Cannot exec in container {container_id}: it is {state.value}", container_id
            )

        retries = 0
        while True:
            try:
                return self._exec_once(container_id, user, cmd)
            except ExecConflictError:
                if retries >= self._config.max_exec_retries:
                    console.print(f"[red][FIXTURE] Exec still conflicting after {retries} retries[/red]")
                    raise
                retries += 1
                console.print(
                    f"[yellow][FIXTURE] Exec command already running, retry "
                    f"{retries}/{self._config.max_exec_retries}[/yellow]"
                )
                time.sleep(self._config.exec_retry_delay)

    def _exec_once(self, container_id: str, user: str, cmd: list[str]) -> ExecResult:
        try:
            exec_id = self._api.exec_create(
                container_id,
                cmd,
                stdout=True,
                stderr=True,
                stdin=False,
                tty=False,
                privileged=False,
                user=user,
            )["Id"]
            # Without a TTY the SDK strips the per-frame stream headers
            raw = self._api.exec_start(exec_id, detach=False, tty=False)
        except APIError as e:
            if is_api_exec_conflict(e):
                raise ExecConflictError(str(e), container_id) from e
            raise FixtureError(f"Exec {cmd} failed in {container_id}: {e}", container_id) from e
        except ENGINE_ERRORS as e:
            raise FixtureError(f"Exec {cmd} failed in {container_id}: {e}", container_id) from e

        exit_code = self._wait_exec(container_id, exec_id)
        output = raw.decode("utf-8", errors="replace").strip() if raw else ""

        # The conflict is sometimes reported in-band instead of as an API error
        if is_exec_conflict(output):
            raise ExecConflictError(output, container_id)

        return ExecResult(exit_code=exit_code, output=output)

    def _wait_exec(self, container_id: str, exec_id: str) -> int:
        """Poll exec-inspect until the session stops running."""
        while True:
            try:
                inspect = self._api.exec_inspect(exec_id)
            except ENGINE_ERRORS as e:
                raise FixtureError(f"Exec inspect failed for {exec_id}: {e}", container_id) from e
            if not inspect["Running"]:
                return inspect.get("ExitCode") or 0
            time.sleep(self._config.exec_poll_interval)

    def wait_ready(
        self,
        container_id: str,
        command: list[str] | None = None,
        user: str | None = None,
        poll_interval: float | None = None,
        timeout: float | None = None,
    ) -> int:
        """
        Exec the readiness probe until it exits 0.

        Args:
            container_id: A running container.
            command: Probe argv. Defaults to config.ready_command.
            user: Probe user. Defaults to config.ready_user.
            poll_interval: Sleep between probes. Defaults to config.ready_poll_interval.
            timeout: Give up after this many seconds. None polls forever.

        Returns:
            Number of probes executed.

        Raises:
            FixtureTimeoutError: If the probe has not succeeded within `timeout`.
        """
        command = command or self._config.ready_command
        user = user or self._config.ready_user
        interval = self._config.ready_poll_interval if poll_interval is None else poll_interval
        deadline = None if timeout is None else time.monotonic() + timeout

        attempts = 0
        while True:
            attempts += 1
            result = self.exec_command(container_id, user, command)
            if result.exit_code == 0:
                self._states[container_id] = ContainerState.READY
                console.print("[green][FIXTURE] MQ is ready[/green]")
                return attempts
            if deadline is not None and time.monotonic() >= deadline:
                raise FixtureTimeoutError(
                    f"Container {container_id} not ready after {timeout}s ({attempts} probes)",
                    container_id,
                )
            time.sleep(interval)

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def inspect(self, container_id: str) -> dict:
        try:
            return self._api.inspect_container(container_id)
        except ENGINE_ERRORS as e:
            raise FixtureError(f"Failed to inspect container {container_id}: {e}", container_id) from e

    def get_ip_address(self, container_id: str) -> str:
        return self.inspect(container_id)["NetworkSettings"]["IPAddress"]

    def get_web_port(self, container_id: str) -> str:
        """Host port the engine bound to the container's web port."""
        ports = self.inspect(container_id)["NetworkSettings"]["Ports"] or {}
        bindings = ports.get(self._config.web_port_key)
        if not bindings:
            raise FixtureError(
                f"No host binding for {self._config.web_port_key} on {container_id}", container_id
            )
        return bindings[0]["HostPort"]

    def inspect_logs(self, container_id: str) -> str:
        """
        Combined stdout/stderr of a container.

        Bounded by config.log_timeout: the fetch runs on a worker thread so a
        hanging engine cannot block the test.

        Raises:
            FixtureError: If the logs cannot be read in time.
        """
        result: dict = {"logs": b"", "error": None}

        def _fetch():
            try:
                result["logs"] = self._api.logs(container_id, stdout=True, stderr=True)
            except ENGINE_ERRORS as e:
                result["error"] = e

        thread = threading.Thread(target=_fetch, daemon=True)
        thread.start()
        thread.join(timeout=self._config.log_timeout)

        if thread.is_alive():
            raise FixtureError(
                f"Timed out after {self._config.log_timeout}s reading logs of {container_id}",
                container_id,
            )
        if result["error"] is not None:
            raise FixtureError(
                f"Failed to read logs of {container_id}: {result['error']}", container_id
            ) from result["error"]

        logs = result["logs"]
        return logs.decode("utf-8", errors="replace") if isinstance(logs, bytes) else str(logs)

    def inspect_text_logs(self, container_id: str) -> str:
        return reduce_json_logs(self.inspect_logs(container_id))

    # -------------------------------------------------------------------------
    # Cleanup
    # -------------------------------------------------------------------------

    def stop_and_remove(self, container_id: str) -> None:
        """
        Stop a container, collect its diagnostics and remove it.

        Each step runs even if an earlier one failed; failures are logged.
        Only a failed final remove is raised, after every other step ran.

        Raises:
            FixtureError: If the engine refuses to remove the container.
        """
        steps = (
            ("inspect", self._log_inspection),
            ("stop", self._stop_for_cleanup),
            ("coverage", self._collect_coverage),
            ("console log", self._log_console),
            ("termination message", self._log_termination_message),
            ("termination log", self._remove_termination_log),
        )
        for name, step in steps:
            try:
                step(container_id)
            except (*CLEANUP_ERRORS, FixtureError) as e:
                console.print(
                    f"[yellow][CLEANUP] {name} failed for {container_id}: {escape(str(e))}[/yellow]"
                )

        console.print(f"[cyan][CLEANUP] Removing container: {container_id}[/cyan]")
        try:
            # v=True also removes anonymous volumes the container created
            self._api.remove_container(container_id, v=True, force=True)
        except ENGINE_ERRORS as e:
            console.print(f"[red][CLEANUP] Remove failed: {escape(str(e))}[/red]")
            raise FixtureError(f"Failed to remove container {container_id}: {e}", container_id) from e
        self._states[container_id] = ContainerState.REMOVED

    def release_all(self) -> None:
        """
        Stop and remove every container this controller still owns.

        Raises:
            FixtureError: If one or more containers could not be removed.
        """
        failures = []
        for container_id in self.tracked():
            try:
                self.stop_and_remove(container_id)
            except FixtureError as e:
                failures.append(e)
        self.termination_log.unlink(missing_ok=True)

        if failures:
            raise FixtureError(
                f"Failed to remove {len(failures)} container(s): "
                + "; ".join(str(f) for f in failures)
            )

    def _log_inspection(self, container_id: str) -> None:
        info = self._api.inspect_container(container_id)
        console.print(f"[dim][CLEANUP] Inspected container {container_id}:[/dim]")
        console.print(escape(json.dumps(info, indent=4, default=str)), style="dim")

    def _stop_for_cleanup(self, container_id: str) -> None:
        # Stopping lets the instrumented binary write its coverage output
        console.print(f"[cyan][CLEANUP] Stopping container: {container_id}[/cyan]")
        self._api.stop(container_id, timeout=self._config.stop_timeout)
        if self.state(container_id) is not ContainerState.EXITED:
            self._states[container_id] = ContainerState.STOPPED
        console.print("[cyan][CLEANUP] Container stopped[/cyan]")

    def _collect_coverage(self, container_id: str) -> None:
        produced = self._config.coverage_dir / COVERAGE_OUTPUT
        if produced.exists():
            target = self._config.coverage_dir / self._run.coverage_file
            produced.rename(target)
            console.print(f"[cyan][CLEANUP] Coverage saved: {target}[/cyan]")

    def _log_console(self, container_id: str) -> None:
        logs = self.inspect_text_logs(container_id)
        console.print(f"[cyan][CLEANUP] Console log from container {container_id}:[/cyan]")
        console.print(escape(logs), style="dim")

    def _log_termination_message(self, container_id: str) -> None:
        message = self.termination_message()
        if message:
            console.print(f"[yellow][CLEANUP] Termination message: {escape(message)}[/yellow]")

    def _remove_termination_log(self, container_id: str) -> None:
        self.termination_log.unlink(missing_ok=True)

    # -------------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------------

    def build_image(self, files: FileSet) -> str:
        """
        Build an image from an in-memory file set.

        `files` is a name -> body mapping or an iterable of BuildFile.

        The image is tagged with the lower-cased test name.

        Returns:
            The image tag.

        Raises:
            BuildError: On the first error the engine reports.
        """
        tag = self._run.image_tag
        context = io.BytesIO(generate_tar(files))

        console.print(f"[cyan][BUILD] Building image: {tag}[/cyan]")
        try:
            # decode=True yields one dict per JSON progress message
            for message in self._api.build(
                fileobj=context, custom_context=True, tag=tag, rm=True, decode=True
            ):
                if "error" in message or "errorDetail" in message:
                    error = message.get("error") or message["errorDetail"].get("message", "")
                    console.print(f"[red][BUILD] {escape(error)}[/red]")
                    raise BuildError(f"Build of {tag} failed: {error}", tag)
                stream = message.get("stream", "").strip()
                if stream:
                    console.print(f"[dim][BUILD] {escape(stream)}[/dim]")
        except ENGINE_ERRORS as e:
            raise BuildError(f"Build of {tag} failed: {e}", tag) from e

        console.print(f"[green][BUILD] Image ready: {tag}[/green]")
        return tag

    def delete_image(self, image: str) -> None:
        """Force-remove an image. Errors are logged and ignored."""
        try:
            self._api.remove_image(image, force=True)
            console.print(f"[cyan][BUILD] Removed image: {image}[/cyan]")
        except ENGINE_ERRORS as e:
            console.print(f"[yellow][BUILD] Could not remove {image}: {escape(str(e))}[/yellow]")

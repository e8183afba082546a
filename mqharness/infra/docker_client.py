# -----------------------------------------------------------------------------
# DOCKER PROVIDER
# -----------------------------------------------------------------------------
# Responsibility: Connect to the container engine, validate the connection,
# and hand the SDK client to the fixture layer.
#
# This is part of the Infrastructure layer - the fixture controller only ever
# sees an already-validated DockerClient.
# -----------------------------------------------------------------------------

import os

import docker
from docker import DockerClient
from docker.errors import DockerException
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

console = Console()


class DockerProviderError(Exception):
    """Raised when the container engine is unreachable."""

    pass


class DockerProvider:
    """
    Docker SDK connection holder.

    Connects to DOCKER_HOST when it is set (e.g. a remote engine or a socket
    proxy), otherwise to whatever the SDK's environment defaults point at.
    """

    def __init__(self, base_url: str | None = None) -> None:
        """
        Initialize the Docker provider.

        Args:
            base_url: Engine endpoint. Falls back to DOCKER_HOST, then to the
                SDK defaults.
        """
        self._base_url = base_url or os.getenv("DOCKER_HOST")
        self._client: DockerClient | None = None

        self._connect()

    def _connect(self) -> None:
        """
        Establish connection to the Docker daemon.

        Raises:
            DockerProviderError: If the engine does not answer a ping.
        """
        try:
            if self._base_url:
                self._client = docker.DockerClient(base_url=self._base_url)
            else:
                self._client = docker.from_env()
            self._client.ping()
            console.print(
                f"[green][DOCKER] Connected to Docker Engine ({self._base_url or 'env'})[/green]"
            )
        except DockerException as e:
            self._client = None
            console.print(
                Panel(
                    "[bold red]Docker Engine Unavailable[/bold red]\n\n"
                    f"{escape(str(e))}\n\n"
                    "Set DOCKER_HOST or start the engine, then re-run the tests.",
                    title="HARNESS HALT",
                    border_style="red",
                )
            )
            raise DockerProviderError(f"Docker Engine is not available: {e}") from e

    def get_client(self) -> DockerClient:
        """
        Get the Docker client, verifying connection is still active.

        Returns:
            Active DockerClient instance.

        Raises:
            DockerProviderError: If Docker connection is lost.
        """
        if self._client is None:
            raise DockerProviderError("Docker client not initialized")

        try:
            self._client.ping()
            return self._client
        except DockerException as e:
            console.print(f"[red][DOCKER] Connection lost: {e}[/red]")
            raise DockerProviderError(f"Docker connection lost: {e}") from e

    def is_connected(self) -> bool:
        """
        Check if Docker is currently reachable.

        Returns:
            True if Docker is connected and responsive.
        """
        if self._client is None:
            return False
        try:
            self._client.ping()
            return True
        except DockerException:
            return False

    def close(self) -> None:
        """Release the client's HTTP connection pool."""
        if self._client is not None:
            self._client.close()
            self._client = None

# -----------------------------------------------------------------------------
# RESOURCE MANAGER - NETWORKS, VOLUMES, ARCHIVES
# -----------------------------------------------------------------------------
# Responsibility: Thin wrappers for the per-test engine resources that live
# outside a container's own lifecycle. Every failure here is fatal: a test
# that cannot create its network or volume cannot run.
# -----------------------------------------------------------------------------

from docker import DockerClient
from rich.console import Console
from rich.markup import escape

from mqharness.core.fixture import ENGINE_ERRORS, FixtureError
from mqharness.domain.models import RunContext

console = Console()

DEFAULT_NETWORK = "test"
VOLUME_DRIVER = "local"


class ResourceError(FixtureError):
    """Raised when a network, volume or archive operation fails."""

    pass


class ResourceManager:
    """Creates and removes the networks and volumes a test uses."""

    def __init__(self, client: DockerClient, run: RunContext) -> None:
        self._api = client.api
        self._run = run

    def create_network(self, name: str = DEFAULT_NETWORK) -> str:
        """
        Create a bridge network.

        Returns:
            The network ID.
        """
        console.print(f"[cyan][RESOURCE] Creating network: {name}[/cyan]")
        try:
            network_id = self._api.create_network(name)["Id"]
        except ENGINE_ERRORS as e:
            raise ResourceError(f"Failed to create network {name}: {e}") from e
        console.print(f"[green][RESOURCE] Created network {name} with ID {network_id}[/green]")
        return network_id

    def remove_network(self, network_id: str) -> None:
        console.print(f"[cyan][RESOURCE] Removing network ID: {network_id}[/cyan]")
        try:
            self._api.remove_network(network_id)
        except ENGINE_ERRORS as e:
            raise ResourceError(f"Failed to remove network {network_id}: {e}") from e

    def create_volume(self) -> dict:
        """
        Create a local volume named after the current test.

        Returns:
            The engine's description of the volume (Name, Driver, Mountpoint...).
        """
        name = self._run.volume_name
        try:
            volume = self._api.create_volume(
                name=name, driver=VOLUME_DRIVER, driver_opts={}, labels={}
            )
        except ENGINE_ERRORS as e:
            raise ResourceError(f"Failed to create volume {name}: {e}") from e
        console.print(f"[green][RESOURCE] Created volume {name}[/green]")
        return volume

    def remove_volume(self, name: str) -> None:
        console.print(f"[cyan][RESOURCE] Removing volume {name}[/cyan]")
        try:
            self._api.remove_volume(name, force=True)
        except ENGINE_ERRORS as e:
            raise ResourceError(f"Failed to remove volume {name}: {e}") from e

    def copy_from_container(self, container_id: str, path: str) -> bytes:
        """
        Copy a file or directory out of a container.

        Returns:
            The raw TAR stream the engine produces for `path`.
        """
        try:
            stream, _stat = self._api.get_archive(container_id, path)
            data = b"".join(stream)
        except ENGINE_ERRORS as e:
            console.print(f"[red][RESOURCE] Copy of {escape(path)} failed[/red]")
            raise ResourceError(
                f"Failed to copy {path} from {container_id}: {e}", container_id
            ) from e
        console.print(f"[dim][RESOURCE] Copied {len(data)} bytes from {container_id}:{escape(path)}[/dim]")
        return data

# -----------------------------------------------------------------------------
# INFRASTRUCTURE LAYER
# -----------------------------------------------------------------------------
# Contains low-level infrastructure wrappers:
# - DockerProvider: Docker SDK connection with ping validation
# -----------------------------------------------------------------------------

from .docker_client import DockerProvider, DockerProviderError

__all__ = ["DockerProvider", "DockerProviderError"]

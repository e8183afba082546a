# -----------------------------------------------------------------------------
# DOMAIN LAYER
# -----------------------------------------------------------------------------
# Contains the fixture contract (Pydantic models) shared by the controller,
# the resource helpers and the pytest plugin.
# -----------------------------------------------------------------------------

from .models import (
    BuildFile,
    ContainerSpec,
    ContainerState,
    ExecResult,
    HarnessConfig,
    RunContext,
)

__all__ = [
    "BuildFile",
    "ContainerSpec",
    "ContainerState",
    "ExecResult",
    "HarnessConfig",
    "RunContext",
]

# -----------------------------------------------------------------------------
# CORE LAYER
# -----------------------------------------------------------------------------
# The container test harness:
# - FixtureController: container lifecycle, exec, diagnostics, image builds
# - ResourceManager: networks, volumes, copy-from-container
# - generate_tar: in-memory build contexts
# -----------------------------------------------------------------------------

from .archive import generate_tar
from .fixture import (
    BuildError,
    ExecConflictError,
    FixtureController,
    FixtureError,
    FixtureStateError,
    FixtureTimeoutError,
)
from .resources import ResourceError, ResourceManager

__all__ = [
    "generate_tar",
    "FixtureController",
    "FixtureError", "FixtureStateError", "FixtureTimeoutError",
    "ExecConflictError", "BuildError",
    "ResourceManager", "ResourceError",
]

"""Container engine backends and build artifact generation for dockpilot."""

from .base import (
    BuildError,
    ComposeError,
    ContainerBackend,
    ContainerSpec,
    EngineError,
    EngineResult,
    EngineUnavailableError,
)
from .compose import ComposeGenerator, ComposeLayout
from .docker import DockerBackend
from .dockerfile import generate_dockerfile, write_dockerfile

__all__ = [
    "BuildError",
    "ComposeError",
    "ContainerBackend",
    "ContainerSpec",
    "EngineError",
    "EngineResult",
    "EngineUnavailableError",
    "ComposeGenerator",
    "ComposeLayout",
    "DockerBackend",
    "generate_dockerfile",
    "write_dockerfile",
]

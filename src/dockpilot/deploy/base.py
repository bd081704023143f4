"""Container engine boundary: result types, errors and the backend interface."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger("dockpilot.deploy")

LogCallback = Callable[[str], None]

CPU_PERIOD_US = 100_000


class EngineError(Exception):
    """Raised when the container engine rejects or fails an operation."""


class EngineUnavailableError(EngineError):
    """No usable engine connection."""


class BuildError(EngineError):
    """Image build failed or timed out."""


class ComposeError(EngineError):
    """The external compose process exited non-zero."""

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.exit_code = exit_code


@dataclass
class EngineResult:
    """Result of one engine operation."""
    success: bool
    container_id: Optional[str] = None
    image_id: Optional[str] = None
    exit_code: Optional[int] = None
    error: Optional[str] = None
    logs: list[str] = field(default_factory=list)


@dataclass
class ContainerSpec:
    """Everything needed to create and start one container."""
    image: str
    name: str
    port_bindings: dict[int, int] = field(default_factory=dict)  # host -> container
    env: dict[str, str] = field(default_factory=dict)
    volumes: dict[str, str] = field(default_factory=dict)  # host -> container
    memory_bytes: Optional[int] = None
    cpu_quota: Optional[int] = None
    cpu_period: int = CPU_PERIOD_US
    auto_remove: bool = True
    labels: dict[str, str] = field(default_factory=dict)


class ContainerBackend(ABC):
    """Operations the orchestrator needs from a container engine."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the engine can be reached."""

    @abstractmethod
    def image_exists(self, tag: str) -> bool:
        ...

    @abstractmethod
    def build_image(
        self,
        tag: str,
        context_path: Path,
        dockerfile_path: Path,
        *,
        on_log: Optional[LogCallback] = None,
        timeout: int = 300,
    ) -> EngineResult:
        """Build an image, streaming each output line to *on_log*."""

    @abstractmethod
    def remove_image(self, tag: str) -> EngineResult:
        """Remove an image; a missing image counts as success."""

    @abstractmethod
    def run_container(self, spec: ContainerSpec) -> EngineResult:
        """Create and start a container."""

    @abstractmethod
    def stop_container(self, container_id: str, timeout: int = 10) -> EngineResult:
        ...

    @abstractmethod
    def container_status(self, container_id: str) -> Optional[str]:
        ...

    @abstractmethod
    def compose_up(
        self,
        compose_file: Path,
        cwd: Path,
        *,
        on_log: Optional[LogCallback] = None,
        build: bool = False,
    ) -> EngineResult:
        """Run compose up detached and wait for the process to exit."""

    @abstractmethod
    def compose_down(self, compose_file: Path, cwd: Path) -> EngineResult:
        ...

    @staticmethod
    def _log(on_log: Optional[LogCallback], msg: str) -> None:
        if on_log:
            try:
                on_log(msg)
            except Exception:
                logger.debug("Log callback failed", exc_info=True)

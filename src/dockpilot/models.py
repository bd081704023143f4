"""Project records and the value types that travel with them."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional


class ProjectVariant(str, Enum):
    """Detected project archetype."""
    STATIC = "static"
    NODE = "node"
    FRONTEND_FRAMEWORK = "frontend"
    FULLSTACK = "fullstack"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        return _VARIANT_DISPLAY[self]

    @property
    def default_port(self) -> int:
        """Port convention used when nothing more specific is known."""
        if self is ProjectVariant.STATIC:
            return 80
        if self is ProjectVariant.UNKNOWN:
            return 8080
        return 3000


_VARIANT_DISPLAY = {
    ProjectVariant.STATIC: "HTML/CSS/JS",
    ProjectVariant.NODE: "Node.js",
    ProjectVariant.FRONTEND_FRAMEWORK: "React",
    ProjectVariant.FULLSTACK: "Full-stack",
    ProjectVariant.UNKNOWN: "Unknown",
}


class RunStatus(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


STACK_HANDLE_PREFIX = "compose-"


@dataclass(frozen=True)
class RunHandle:
    """Reference to a started unit: one container, or a compose stack keyed by project id."""
    value: str
    stack: bool = False

    @classmethod
    def container(cls, container_id: str) -> "RunHandle":
        return cls(value=container_id)

    @classmethod
    def for_stack(cls, project_id: str) -> "RunHandle":
        return cls(value=project_id, stack=True)

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["RunHandle"]:
        if not raw:
            return None
        if raw.startswith(STACK_HANDLE_PREFIX):
            return cls.for_stack(raw[len(STACK_HANDLE_PREFIX):])
        return cls.container(raw)

    def __str__(self) -> str:
        if self.stack:
            return f"{STACK_HANDLE_PREFIX}{self.value}"
        return self.value


@dataclass
class ResourceOptions:
    """Per-project container limits and bind mounts."""
    memory_limit_mb: int = 512
    cpu_limit: float = 1.0
    volume_mounts: dict[str, str] = field(default_factory=dict)

    @property
    def memory_bytes(self) -> int:
        return int(self.memory_limit_mb) * 1024 * 1024

    def cpu_quota(self, period: int) -> int:
        """CPU limit in quota units for the given CFS period (microseconds)."""
        return int(round(float(self.cpu_limit) * period))

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "ResourceOptions":
        data = data or {}
        return cls(
            memory_limit_mb=int(data.get("memory_limit_mb", 512)),
            cpu_limit=float(data.get("cpu_limit", 1.0)),
            volume_mounts=dict(data.get("volume_mounts", {})),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "memory_limit_mb": self.memory_limit_mb,
            "cpu_limit": self.cpu_limit,
            "volume_mounts": dict(self.volume_mounts),
        }


_IMMUTABLE_FIELDS = ("id", "path", "variant")


@dataclass
class Project:
    """A managed project.

    ``id``, ``path`` and ``variant`` are fixed once the record exists; port,
    env, resources, status and run handle change over its life.
    """
    name: str
    path: Path
    variant: ProjectVariant
    port: int = 0
    env: dict[str, str] = field(default_factory=dict)
    resources: ResourceOptions = field(default_factory=ResourceOptions)
    status: RunStatus = RunStatus.STOPPED
    run_handle: Optional[RunHandle] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", Path(self.path).resolve())
        object.__setattr__(self, "_frozen_identity", True)

    def __setattr__(self, name: str, value: Any) -> None:
        if name in _IMMUTABLE_FIELDS and getattr(self, "_frozen_identity", False):
            raise AttributeError(f"Project.{name} cannot be changed after creation")
        super().__setattr__(name, value)

    @property
    def short_id(self) -> str:
        return self.id[:8]

    @property
    def is_active(self) -> bool:
        return self.status in (RunStatus.STARTING, RunStatus.RUNNING)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        try:
            variant = ProjectVariant(data.get("variant", "unknown"))
        except ValueError:
            variant = ProjectVariant.UNKNOWN
        try:
            status = RunStatus(data.get("status", "stopped"))
        except ValueError:
            status = RunStatus.STOPPED
        return cls(
            id=data["id"],
            name=data.get("name") or Path(data["path"]).name,
            path=Path(data["path"]),
            variant=variant,
            port=int(data.get("port") or 0),
            env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
            resources=ResourceOptions.from_dict(data.get("resources")),
            status=status,
            run_handle=RunHandle.parse(data.get("run_handle")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "path": str(self.path),
            "variant": self.variant.value,
            "port": self.port,
            "env": dict(self.env),
            "resources": self.resources.to_dict(),
            "status": self.status.value,
            "run_handle": str(self.run_handle) if self.run_handle else None,
        }

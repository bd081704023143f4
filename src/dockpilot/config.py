"""Runtime settings for dockpilot, read from the environment."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional


def _default_home() -> Path:
    return Path.home() / ".dockpilot"


@dataclass
class Settings:
    home_dir: Path = field(default_factory=_default_home)
    log_dir: Optional[Path] = None
    projects_file: Optional[Path] = None
    docker_bin: str = "docker"
    compose_cmd: list[str] = field(default_factory=lambda: ["docker", "compose"])
    build_timeout: int = 300
    stop_timeout: int = 10
    max_workers: int = 4
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.home_dir = Path(self.home_dir).expanduser()
        if self.log_dir is None:
            self.log_dir = self.home_dir / "project-logs"
        if self.projects_file is None:
            self.projects_file = self.home_dir / "projects.json"
        self.log_dir = Path(self.log_dir).expanduser()
        self.projects_file = Path(self.projects_file).expanduser()

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        src = os.environ if env is None else env

        def clean(value: Optional[str]) -> Optional[str]:
            if value is None:
                return None
            v = str(value).strip()
            return v or None

        def as_int(key: str, default: int) -> int:
            raw = clean(src.get(key))
            if raw is None:
                return default
            try:
                return int(raw)
            except ValueError:
                return default

        home = clean(src.get("DOCKPILOT_HOME"))
        log_dir = clean(src.get("DOCKPILOT_LOG_DIR"))
        projects_file = clean(src.get("DOCKPILOT_PROJECTS_FILE"))
        compose = clean(src.get("DOCKPILOT_COMPOSE_CMD"))

        return cls(
            home_dir=Path(home) if home else _default_home(),
            log_dir=Path(log_dir) if log_dir else None,
            projects_file=Path(projects_file) if projects_file else None,
            docker_bin=clean(src.get("DOCKPILOT_DOCKER_BIN")) or "docker",
            compose_cmd=shlex.split(compose) if compose else ["docker", "compose"],
            build_timeout=as_int("DOCKPILOT_BUILD_TIMEOUT", 300),
            stop_timeout=as_int("DOCKPILOT_STOP_TIMEOUT", 10),
            max_workers=as_int("DOCKPILOT_MAX_WORKERS", 4),
            log_level=(clean(src.get("DOCKPILOT_LOG_LEVEL")) or "INFO").upper(),
        )

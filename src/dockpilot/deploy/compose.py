"""Docker Compose generation for FullStack projects (backend + frontend)."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

from .dockerfile import (
    backend_service_dockerfile,
    frontend_service_dockerfile,
    write_dockerfile,
)

logger = logging.getLogger("dockpilot.deploy.compose")

COMPOSE_FILE_NAME = "docker-compose.yml"
NETWORK_NAME = "app-network"

BACKEND_CANDIDATES = ("backend", "server", "api")
FRONTEND_CANDIDATES = ("frontend", "client", "web")

_COMPOSE_UNSAFE = re.compile(r"[^a-z0-9_-]")


def _first_existing(root: Path, candidates: tuple[str, ...]) -> str:
    for name in candidates:
        if (root / name).is_dir():
            return name
    return candidates[0]


def compose_project_name(project_dir: Path | str) -> str:
    """Project name docker compose derives from the directory name."""
    return _COMPOSE_UNSAFE.sub("", Path(project_dir).name.lower())


def backend_dir(project_dir: Path | str) -> str:
    return _first_existing(Path(project_dir), BACKEND_CANDIDATES)


def frontend_dir(project_dir: Path | str) -> str:
    return _first_existing(Path(project_dir), FRONTEND_CANDIDATES)


@dataclass
class ComposeLayout:
    """Where the FullStack services live and which host ports they get."""
    project_dir: Path
    backend: str
    frontend: str
    backend_port: int
    frontend_port: int

    @classmethod
    def resolve(cls, project_dir: Path | str, port: int) -> "ComposeLayout":
        root = Path(project_dir)
        return cls(
            project_dir=root,
            backend=backend_dir(root),
            frontend=frontend_dir(root),
            backend_port=port,
            frontend_port=port + 1,
        )

    @property
    def backend_path(self) -> Path:
        return self.project_dir / self.backend

    @property
    def frontend_path(self) -> Path:
        return self.project_dir / self.frontend

    @property
    def compose_path(self) -> Path:
        return self.project_dir / COMPOSE_FILE_NAME


class ComposeGenerator:
    """
    Generate the compose descriptor and per-service Dockerfiles.

    The backend publishes the project's port, the frontend publishes
    port + 1 and receives the backend URL in its environment.
    """

    def __init__(self, layout: ComposeLayout):
        self.layout = layout

    @classmethod
    def for_project(cls, project_dir: Path | str, port: int) -> "ComposeGenerator":
        return cls(ComposeLayout.resolve(project_dir, port))

    def generate(self, output_path: Optional[Path] = None) -> dict:
        layout = self.layout
        api_url = f"http://localhost:{layout.backend_port}"

        compose = {
            "version": "3.8",
            "services": {
                "backend": {
                    "build": {
                        "context": f"./{layout.backend}",
                        "dockerfile": "Dockerfile",
                    },
                    "ports": [f"{layout.backend_port}:{layout.backend_port}"],
                    "environment": [
                        "NODE_ENV=development",
                        f"PORT={layout.backend_port}",
                    ],
                    "volumes": [
                        f"./{layout.backend}:/app",
                        "/app/node_modules",
                    ],
                    "networks": [NETWORK_NAME],
                },
                "frontend": {
                    "build": {
                        "context": f"./{layout.frontend}",
                        "dockerfile": "Dockerfile",
                    },
                    "ports": [f"{layout.frontend_port}:{layout.frontend_port}"],
                    "environment": [
                        f"PORT={layout.frontend_port}",
                        f"REACT_APP_API_URL={api_url}",
                        f"VITE_API_URL={api_url}",
                    ],
                    "volumes": [
                        f"./{layout.frontend}:/app",
                        "/app/node_modules",
                    ],
                    "networks": [NETWORK_NAME],
                    "depends_on": ["backend"],
                },
            },
            "networks": {
                NETWORK_NAME: {
                    "driver": "bridge",
                },
            },
        }

        if output_path:
            output_path = Path(output_path)
            with open(output_path, "w") as f:
                yaml.dump(compose, f, default_flow_style=False, sort_keys=False)
            logger.info("Generated %s at: %s", COMPOSE_FILE_NAME, output_path)

        return compose

    def render(self) -> str:
        return yaml.dump(self.generate(), default_flow_style=False, sort_keys=False)

    def write_all(self) -> Path:
        """Write the compose file and both service Dockerfiles; returns the compose path."""
        layout = self.layout
        layout.backend_path.mkdir(parents=True, exist_ok=True)
        layout.frontend_path.mkdir(parents=True, exist_ok=True)

        self.generate(output_path=layout.compose_path)
        write_dockerfile(layout.backend_path, backend_service_dockerfile(layout.backend_path))
        write_dockerfile(layout.frontend_path, frontend_service_dockerfile(layout.frontend_path))
        return layout.compose_path

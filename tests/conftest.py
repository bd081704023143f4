from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Optional

import pytest
from dotenv import load_dotenv

_PROJECT_ROOT = Path(__file__).resolve().parents[1]
_SRC = (_PROJECT_ROOT / "src").resolve()
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

load_dotenv(_PROJECT_ROOT / ".env", override=False)

from dockpilot.config import Settings  # noqa: E402
from dockpilot.deploy.base import ContainerBackend, ContainerSpec, EngineResult  # noqa: E402


class FakeBackend(ContainerBackend):
    """In-memory engine that records every call."""

    def __init__(self, available: bool = True):
        self.available = available
        self.images: set[str] = set()
        self.running: dict[str, ContainerSpec] = {}
        self.calls: list[tuple] = []
        self.build_result: Optional[EngineResult] = None
        self.run_error: Optional[str] = None
        self.stop_error: Optional[str] = None
        self.compose_rc = 0
        self.build_lines = ["Step 1/5 : FROM node:20-alpine", "Successfully built abc123"]
        self._next_id = 0

    def names(self) -> list[str]:
        return [c[0] for c in self.calls]

    def is_available(self) -> bool:
        self.calls.append(("is_available",))
        return self.available

    def image_exists(self, tag):
        self.calls.append(("image_exists", tag))
        return tag in self.images

    def build_image(self, tag, context_path, dockerfile_path, *, on_log=None, timeout=300):
        self.calls.append(("build_image", tag, Path(dockerfile_path), timeout))
        for line in self.build_lines:
            self._log(on_log, line)
        if self.build_result is not None:
            return self.build_result
        self.images.add(tag)
        return EngineResult(success=True, exit_code=0, image_id=f"sha256:{tag}")

    def remove_image(self, tag):
        self.calls.append(("remove_image", tag))
        self.images.discard(tag)
        return EngineResult(success=True)

    def run_container(self, spec):
        self.calls.append(("run_container", spec))
        if self.run_error:
            return EngineResult(success=False, error=self.run_error)
        self._next_id += 1
        container_id = f"c{self._next_id:011d}"
        self.running[container_id] = spec
        return EngineResult(success=True, container_id=container_id)

    def stop_container(self, container_id, timeout=10):
        self.calls.append(("stop_container", container_id, timeout))
        if self.stop_error:
            return EngineResult(success=False, error=self.stop_error)
        self.running.pop(container_id, None)
        return EngineResult(success=True, container_id=container_id)

    def container_status(self, container_id):
        self.calls.append(("container_status", container_id))
        if container_id in self.running:
            return "running"
        if any(spec.name == container_id for spec in self.running.values()):
            return "running"
        return None

    def compose_up(self, compose_file, cwd, *, on_log=None, build=False):
        self.calls.append(("compose_up", Path(compose_file), build))
        self._log(on_log, "Container backend-1  Started")
        if self.compose_rc:
            return EngineResult(
                success=False,
                exit_code=self.compose_rc,
                error=f"Docker Compose failed with exit code: {self.compose_rc}",
            )
        return EngineResult(success=True, exit_code=0)

    def compose_down(self, compose_file, cwd):
        self.calls.append(("compose_down", Path(compose_file)))
        return EngineResult(success=True, exit_code=0)


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    home = tmp_path / "home"
    return Settings(home_dir=home, build_timeout=42, stop_timeout=3, max_workers=2)


@pytest.fixture
def make_project_dir(tmp_path: Path):
    """Create a project directory from a ``{relative path: content}`` mapping.

    Dict or list content is written as JSON.
    """
    def _make(files: dict, name: str = "app") -> Path:
        root = tmp_path / name
        root.mkdir(parents=True, exist_ok=True)
        for rel, content in files.items():
            path = root / rel
            if rel.endswith("/"):
                path.mkdir(parents=True, exist_ok=True)
                continue
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, (dict, list)):
                content = json.dumps(content)
            path.write_text(content)
        return root

    return _make

"""Read-only access to a project's package.json."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger("dockpilot.manifest")

MANIFEST_NAME = "package.json"


@dataclass
class PackageManifest:
    """Parsed package.json.

    ``exists`` is true whenever the file is present, even if it failed to
    parse; in that case ``data`` is empty and every lookup falls through
    to its default.
    """
    path: Path
    exists: bool = False
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, project_dir: Path | str) -> "PackageManifest":
        manifest_path = Path(project_dir) / MANIFEST_NAME
        if not manifest_path.is_file():
            return cls(path=manifest_path)
        try:
            data = json.loads(manifest_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.debug("Unreadable %s: %s", manifest_path, e)
            return cls(path=manifest_path, exists=True)
        if not isinstance(data, dict):
            logger.debug("Ignoring non-object manifest at %s", manifest_path)
            data = {}
        return cls(path=manifest_path, exists=True, data=data)

    def _section(self, key: str) -> dict[str, Any]:
        value = self.data.get(key)
        return value if isinstance(value, dict) else {}

    @property
    def scripts(self) -> dict[str, str]:
        return {k: v for k, v in self._section("scripts").items() if isinstance(v, str)}

    @property
    def dependencies(self) -> dict[str, Any]:
        return self._section("dependencies")

    @property
    def dev_dependencies(self) -> dict[str, Any]:
        return self._section("devDependencies")

    @property
    def engines(self) -> dict[str, Any]:
        return self._section("engines")

    @property
    def config(self) -> dict[str, Any]:
        return self._section("config")

    @property
    def main(self) -> Optional[str]:
        value = self.data.get("main")
        return value if isinstance(value, str) and value else None

    def has(self, key: str) -> bool:
        return key in self.data

    def has_script(self, *names: str) -> bool:
        scripts = self.scripts
        return any(n in scripts for n in names)

    def has_dependency(self, *names: str, dev: bool = True) -> bool:
        """True if any of *names* is a dependency (or dev dependency)."""
        deps = dict(self.dependencies)
        if dev:
            deps.update(self.dev_dependencies)
        return any(n in deps for n in names)

    def dependency_version(self, name: str) -> Optional[str]:
        value = self.dependencies.get(name)
        if value is None:
            value = self.dev_dependencies.get(name)
        return value if isinstance(value, str) else None


def major_version(spec: Optional[str]) -> Optional[int]:
    """Leading major number from a semver range such as ``^14.2.0`` or ``>=18``."""
    if not spec:
        return None
    match = re.search(r"\d+", spec)
    if not match:
        return None
    return int(match.group(0))

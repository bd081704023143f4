"""JSON persistence for the managed project list."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock
from typing import Iterable

from .models import Project, RunStatus

logger = logging.getLogger("dockpilot.store")


class ProjectStore:
    """Reads and rewrites ``projects.json``.

    Run state does not survive a restart: every loaded project comes back
    ``STOPPED`` with no run handle.
    """

    def __init__(self, storage_path: Path):
        self.storage_path = Path(storage_path)
        self._lock = Lock()

    def load(self) -> list[Project]:
        if not self.storage_path.exists():
            return []
        try:
            with open(self.storage_path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error("Failed to read %s: %s", self.storage_path, e)
            return []

        entries = data.get("projects", []) if isinstance(data, dict) else data
        projects: list[Project] = []
        for entry in entries or []:
            if not isinstance(entry, dict) or not entry.get("id") or not entry.get("path"):
                logger.warning("Skipping malformed project entry: %r", entry)
                continue
            try:
                project = Project.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping project entry %s: %s", entry.get("id"), e)
                continue
            project.status = RunStatus.STOPPED
            project.run_handle = None
            projects.append(project)

        logger.info("Loaded %d projects from %s", len(projects), self.storage_path)
        return projects

    def save(self, projects: Iterable[Project]) -> None:
        data = {"projects": [p.to_dict() for p in projects]}
        with self._lock:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.storage_path.with_suffix(self.storage_path.suffix + ".tmp")
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            tmp.replace(self.storage_path)
